from __future__ import annotations

import logging

from rest_framework import status, views
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounts.permissions import CanEditTariffs
from tariff_engine.exceptions import TariffEngineError
from tariff_engine.services.conflicts import ConflictDetector
from tariff_engine.services.stores import DjangoTariffRecordStore

from .serializers import BulkValidityUpdateSerializer, ConflictDiagnosticSerializer, RouteKindCorrectionSerializer

logger = logging.getLogger(__name__)


def _detector() -> ConflictDetector:
    return ConflictDetector(DjangoTariffRecordStore())


def _invalid(errors, received):
    return Response(
        {"message": "Invalid request", "error": "validation_error", "errors": errors, "received": received},
        status=status.HTTP_400_BAD_REQUEST,
    )


class ConflictDiagnosticView(views.APIView):
    """Route-kind diagnostics for one client's tariffs (read-only)."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = ConflictDiagnosticSerializer(data=request.data)
        if not ser.is_valid():
            return _invalid(ser.errors, request.data)
        data = ser.validated_data
        report = _detector().detect(
            data["clienteId"],
            origin=data.get("origenId"),
            destination=data.get("destinoId"),
            method=data.get("metodoCalculo"),
        )
        return Response(report, status=status.HTTP_200_OK)


class RouteKindCorrectionView(views.APIView):
    permission_classes = [IsAuthenticated, CanEditTariffs]

    def post(self, request):
        ser = RouteKindCorrectionSerializer(data=request.data)
        if not ser.is_valid():
            return _invalid(ser.errors, request.data)
        data = ser.validated_data
        try:
            report = _detector().bulk_correct(data["tarifaIds"], data["tipo"])
        except TariffEngineError as e:
            return Response({**e.to_dict(), "received": request.data}, status=e.status_code)
        logger.info(f"{request.user.username} corrected route kind of {report['actualizados']} tariff(s)")
        return Response(report, status=status.HTTP_200_OK)


class BulkValidityUpdateView(views.APIView):
    permission_classes = [IsAuthenticated, CanEditTariffs]

    def post(self, request):
        ser = BulkValidityUpdateSerializer(data=request.data)
        if not ser.is_valid():
            return _invalid(ser.errors, request.data)
        data = ser.validated_data
        try:
            report = _detector().bulk_update_validity(
                data["tarifaIds"], data["vigenciaDesde"], data["vigenciaHasta"], route_kind=data.get("tipo")
            )
        except TariffEngineError as e:
            return Response({**e.to_dict(), "received": request.data}, status=e.status_code)
        logger.info(f"{request.user.username} moved validity of {len(report['actualizados'])} tariff(s)")
        return Response(report, status=status.HTTP_200_OK)
