"""
Error taxonomy of the tariff engine.

Every fatal outcome of a calculation is one of these exceptions. Each carries
the HTTP status the API answers with, so views only need a single
``except TariffEngineError`` branch.
"""

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class TariffEngineError(Exception):
    """Base exception for tariff engine errors"""
    status_code = 500
    error_code = "tariff_engine_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"message": self.message, "error": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(TariffEngineError):
    """Raised when the calculation input is malformed"""
    status_code = 400
    error_code = "validation_error"


class NotFoundError(TariffEngineError):
    """Raised when a client, site or applicable tariff does not exist"""
    status_code = 404
    error_code = "not_found"


class AmbiguousTariffError(TariffEngineError):
    """Raised when two or more records remain tied after every tie-break"""
    status_code = 409
    error_code = "ambiguous_tariff"


class MissingDistanceError(TariffEngineError):
    """Raised when a per-kilometer tariff has no route distance to work with"""
    status_code = 422
    error_code = "missing_distance"


class FormulaError(TariffEngineError):
    """Raised when a client formula cannot be parsed or evaluated"""
    status_code = 422
    error_code = "invalid_formula"


class RuleEvaluationError(TariffEngineError):
    """Raised inside the rule engine for a single broken rule; never escapes it"""
    status_code = 500
    error_code = "rule_evaluation_error"


class PermissionDeniedError(TariffEngineError):
    status_code = 403
    error_code = "permission_denied"


class InternalError(TariffEngineError):
    """Wraps any unexpected exception raised during a calculation"""
    status_code = 500
    error_code = "internal_error"


def api_exception_handler(exc, context):
    """
    DRF exception handler.

    Engine errors that escape a view become their own status and payload; framework
    errors (401, 403, 405...) get the ``message`` key the engine payloads carry.
    """
    if isinstance(exc, TariffEngineError):
        logger.warning(f"Unhandled {type(exc).__name__} in view: {exc.message}")
        return Response(exc.to_dict(), status=exc.status_code)
    response = exception_handler(exc, context)
    if response is not None and isinstance(response.data, dict) and "detail" in response.data:
        response.data["message"] = str(response.data["detail"])
    return response
