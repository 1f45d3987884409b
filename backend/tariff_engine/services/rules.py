"""
Business Rules Engine for tariff calculations

Rules are surcharges or discounts layered on top of the base price produced by
the calculation method. They run in ascending priority (ties broken by code),
each one adding a delta to the running total:

- PERCENTAGE: ``basis * magnitude / 100``, where the basis is the method's base
  price for ``base_relative`` rules and the running total otherwise;
- ABSOLUTE: ``magnitude`` as is.

A broken rule (bad condition, unknown operator, unusable magnitude) never
aborts the calculation: it is reported in ``RuleOutcome.errors`` and skipped.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List

from ..dataclasses import BusinessRule, CalculationContext, RuleApplication, RuleCondition, RuleOutcome
from ..exceptions import RuleEvaluationError
from ..types import CalculationMethod, ModificationKind
from .utils import ZERO, d, money, percent_of

logger = logging.getLogger(__name__)


FIELD_GETTERS: Dict[str, Callable[[CalculationContext, CalculationMethod], Any]] = {
    "client": lambda ctx, method: ctx.client,
    "origin": lambda ctx, method: ctx.origin,
    "destination": lambda ctx, method: ctx.destination,
    "vehicleType": lambda ctx, method: ctx.vehicle_type,
    "routeKind": lambda ctx, method: ctx.route_kind_hint.value,
    "method": lambda ctx, method: method.value,
    "pallets": lambda ctx, method: ctx.pallets,
    "weightKg": lambda ctx, method: ctx.weight_kg,
    "volumeM3": lambda ctx, method: ctx.volume_m3,
    "packageCount": lambda ctx, method: ctx.package_count,
    "urgency": lambda ctx, method: ctx.urgency.value,
    "vehicleCount": lambda ctx, method: ctx.vehicle_count,
    "weekday": lambda ctx, method: ctx.date.weekday(),
    "month": lambda ctx, method: ctx.date.month,
    "date": lambda ctx, method: ctx.date.isoformat(),
}

# Field names used by rules imported from the legacy back-office
FIELD_ALIASES = {
    "cliente": "client",
    "origen": "origin",
    "destino": "destination",
    "tipoUnidad": "vehicleType",
    "tipoTramo": "routeKind",
    "metodoCalculo": "method",
    "palets": "pallets",
    "peso": "weightKg",
    "volumen": "volumeM3",
    "cantidadBultos": "packageCount",
    "urgencia": "urgency",
    "cantidadVehiculos": "vehicleCount",
    "diaSemana": "weekday",
    "mes": "month",
    "fecha": "date",
}

OPERATORS = ("eq", "ne", "gt", "lt", "gte", "lte", "between", "in", "contains")


def coerce_condition(raw) -> RuleCondition:
    """Accept RuleCondition instances or the stored JSON shape {field, operator, value, value_to}."""
    if isinstance(raw, RuleCondition):
        return raw
    if not isinstance(raw, dict):
        raise RuleEvaluationError(f"Condition must be an object, got {type(raw).__name__}")
    try:
        return RuleCondition(
            field=raw["field"],
            operator=raw["operator"],
            value=raw.get("value"),
            value_to=raw.get("value_to", raw.get("valueTo")),
        )
    except KeyError as e:
        raise RuleEvaluationError(f"Condition is missing '{e.args[0]}'")


def _comparable(actual, expected):
    """Compare numerically when the context value is numeric, as text otherwise."""
    if isinstance(actual, (int, Decimal)) and not isinstance(actual, bool):
        try:
            return d(actual), d(expected)
        except (InvalidOperation, ValueError):
            raise RuleEvaluationError(f"Expected a number to compare with, got {expected!r}")
    return str(actual), str(expected)


def evaluate_condition(condition: RuleCondition, context: CalculationContext, method: CalculationMethod) -> bool:
    """
    Evaluate a single condition against the context.

    A context value that was not supplied (e.g. no pallets) never satisfies
    a comparison, except ``ne``.

    Raises:
        RuleEvaluationError: If the field or operator is unknown or the value has the wrong shape
    """
    field_name = FIELD_ALIASES.get(condition.field, condition.field)
    getter = FIELD_GETTERS.get(field_name)
    if getter is None:
        raise RuleEvaluationError(f"Unknown condition field: {condition.field!r}")
    op = condition.operator
    if op not in OPERATORS:
        raise RuleEvaluationError(f"Unknown condition operator: {op!r}")

    actual = getter(context, method)
    if actual is None:
        return op == "ne"

    if op == "in":
        if not isinstance(condition.value, (list, tuple)):
            raise RuleEvaluationError("'in' expects a list value")
        return any(a == b for a, b in (_comparable(actual, v) for v in condition.value))
    if op == "contains":
        return str(condition.value).lower() in str(actual).lower()
    if op == "between":
        if condition.value is None or condition.value_to is None:
            raise RuleEvaluationError("'between' needs both value and value_to")
        low_a, low = _comparable(actual, condition.value)
        _, high = _comparable(actual, condition.value_to)
        return low <= low_a <= high

    left, right = _comparable(actual, condition.value)
    if op == "eq":
        return left == right
    if op == "ne":
        return left != right
    if op == "gt":
        return left > right
    if op == "lt":
        return left < right
    if op == "gte":
        return left >= right
    return left <= right


class RuleEngine:
    def __init__(self, rules):
        self.rules = rules

    def eligible_rules(self, context: CalculationContext, method: CalculationMethod) -> List[BusinessRule]:
        rules = [
            r for r in self.rules.rules_for(context.client, context.date)
            if r.in_force(context.date)
            and r.client in (None, context.client)
            and (r.calculation_method is None or r.calculation_method == method)
        ]
        return sorted(rules, key=lambda r: (r.priority, r.code))

    def apply(self, base_value: Decimal, context: CalculationContext, method: CalculationMethod) -> RuleOutcome:
        """
        Apply every eligible rule to the base price.

        Args:
            base_value: Price produced by the calculation method
            context: The calculation context the conditions are evaluated against
            method: Method of the resolved tariff record

        Returns:
            RuleOutcome: final total, ordered trace and any per-rule errors
        """
        outcome = RuleOutcome(total=base_value)
        running = base_value

        for rule in self.eligible_rules(context, method):
            outcome.evaluated += 1
            try:
                if not self._matches(rule, context, method):
                    continue
                application = self._apply_one(rule, base_value, running)
            except RuleEvaluationError as e:
                logger.warning(f"Skipping rule {rule.code}: {e.message}")
                outcome.errors.append({"code": rule.code, "name": rule.name, "error": e.message})
                continue

            running = application.running_total
            outcome.applied.append(application)
            if running < ZERO:
                outcome.warnings.append(f"Total is negative ({running}) after rule {rule.code}")
            if rule.exclusive:
                logger.debug(f"Rule {rule.code} is exclusive; remaining rules skipped")
                break

        outcome.total = running
        return outcome

    @staticmethod
    def skipped(base_value: Decimal) -> RuleOutcome:
        return RuleOutcome(total=base_value, stage="skipped")

    def _matches(self, rule: BusinessRule, context: CalculationContext, method: CalculationMethod) -> bool:
        if rule.load_error:
            raise RuleEvaluationError(rule.load_error)
        if rule.predicate is not None:
            try:
                return bool(rule.predicate(context))
            except Exception as e:
                raise RuleEvaluationError(f"Predicate failed: {e}") from e

        if not rule.conditions:
            return True
        results = [evaluate_condition(coerce_condition(c), context, method) for c in rule.conditions]
        operator = (rule.logical_operator or "AND").upper()
        if operator == "AND":
            return all(results)
        if operator == "OR":
            return any(results)
        raise RuleEvaluationError(f"Unknown logical operator: {rule.logical_operator!r}")

    def _apply_one(self, rule: BusinessRule, base_value: Decimal, running: Decimal) -> RuleApplication:
        try:
            magnitude = d(rule.magnitude)
        except (InvalidOperation, ValueError, TypeError):
            raise RuleEvaluationError(f"Invalid magnitude: {rule.magnitude!r}")
        if not magnitude.is_finite():
            raise RuleEvaluationError(f"Invalid magnitude: {rule.magnitude!r}")

        try:
            kind = ModificationKind(rule.modification_kind)
        except ValueError:
            raise RuleEvaluationError(f"Unknown modification kind: {rule.modification_kind!r}")

        if kind == ModificationKind.PERCENTAGE:
            basis = "base" if rule.base_relative else "running_total"
            basis_value = base_value if rule.base_relative else running
            delta = percent_of(basis_value, magnitude)
        else:
            basis = "absolute"
            basis_value = running
            delta = money(magnitude)

        return RuleApplication(
            code=rule.code,
            name=rule.name,
            delta=delta,
            basis=basis,
            basis_value=basis_value,
            running_total=money(running + delta),
        )

