from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .exceptions import ValidationError
from .services.utils import ZERO, d, decimal_key
from .types import CalculationMethod, ModificationKind, ResolutionRule, RouteKind, Urgency


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    parsed = parse_date(text)
    if parsed is None:
        as_dt = parse_datetime(text)
        parsed = as_dt.date() if as_dt else None
    if parsed is None:
        raise ValidationError(f"Invalid date: {value!r}", field="fecha")
    return parsed


def _as_decimal(value, name: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        amount = d(value)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number", field=name)
    if amount < 0:
        raise ValidationError(f"{name} must be zero or positive", field=name)
    return amount


def _extra_request(item) -> "ExtraRequest":
    quantity = _as_decimal(item.get("cantidad"), "extras.cantidad")
    return ExtraRequest(id=int(item["id"]), quantity=quantity if quantity is not None else Decimal("1"))


@dataclass(frozen=True)
class VehicleRequest:
    type: str
    quantity: int = 1


@dataclass(frozen=True)
class ExtraRequest:
    id: int
    quantity: Decimal = Decimal("1")


@dataclass(frozen=True)
class CalculationContext:
    client: int
    origin: int
    destination: int
    date: date = field(default_factory=timezone.localdate)
    vehicle_type: str = ""
    route_kind_hint: RouteKind = RouteKind.TRMC
    calculation_method: Optional[CalculationMethod] = None
    pallets: Optional[Decimal] = None
    weight_kg: Optional[Decimal] = None
    volume_m3: Optional[Decimal] = None
    package_count: Optional[int] = None
    urgency: Urgency = Urgency.NORMAL
    vehicles: Tuple[VehicleRequest, ...] = ()
    extras: Tuple[ExtraRequest, ...] = ()
    apply_rules: bool = True
    use_cache: bool = True
    include_breakdown: bool = False

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CalculationContext":
        """
        Build a context from an API-shaped payload (clienteId, origenId, ...).

        This is the single place where defaults are filled in and loose
        values (strings, Spanish enum spellings) are normalized.

        Raises:
            ValidationError: If a required id is missing or a value cannot be normalized
        """
        try:
            client = int(payload["clienteId"])
            origin = int(payload["origenId"])
            destination = int(payload["destinoId"])
        except KeyError as e:
            raise ValidationError(f"Missing required field: {e.args[0]}", field=e.args[0])
        except (TypeError, ValueError):
            raise ValidationError("clienteId, origenId and destinoId must be integers")

        raw_kind = payload.get("tipoTramo") or RouteKind.TRMC.value
        route_kind = RouteKind.normalize(raw_kind)
        if route_kind is None:
            raise ValidationError(f"tipoTramo must be TRMC or TRMI, got {raw_kind!r}", field="tipoTramo")

        method = None
        if payload.get("metodoCalculo"):
            try:
                method = CalculationMethod.parse(payload["metodoCalculo"])
            except ValueError as e:
                raise ValidationError(str(e), field="metodoCalculo")

        try:
            urgency = Urgency.parse(payload.get("urgencia") or Urgency.NORMAL.value)
        except ValueError as e:
            raise ValidationError(str(e), field="urgencia")

        vehicles = tuple(
            VehicleRequest(type=str(v.get("tipo", "")), quantity=int(v.get("cantidad", 1)))
            for v in payload.get("vehiculos") or []
        )
        extras = tuple(_extra_request(e) for e in payload.get("extras") or [])

        package_count = payload.get("cantidadBultos")
        return cls(
            client=client,
            origin=origin,
            destination=destination,
            date=_as_date(payload["fecha"]) if payload.get("fecha") else timezone.localdate(),
            vehicle_type=str(payload.get("tipoUnidad") or ""),
            route_kind_hint=route_kind,
            calculation_method=method,
            pallets=_as_decimal(payload.get("palets"), "palets"),
            weight_kg=_as_decimal(payload.get("peso"), "peso"),
            volume_m3=_as_decimal(payload.get("volumen"), "volumen"),
            package_count=int(package_count) if package_count is not None else None,
            urgency=urgency,
            vehicles=vehicles,
            extras=extras,
            apply_rules=bool(payload.get("aplicarReglas", True)),
            use_cache=bool(payload.get("usarCache", True)),
            include_breakdown=bool(payload.get("incluirDesgloseCalculo", False)),
        )

    @property
    def vehicle_count(self) -> int:
        return sum(v.quantity for v in self.vehicles)

    def fingerprint_payload(self) -> Dict[str, Any]:
        # include_breakdown only changes presentation; use_cache only decides whether we look here at all
        return {
            "client": self.client,
            "origin": self.origin,
            "destination": self.destination,
            "date": self.date.isoformat(),
            "vehicleType": self.vehicle_type,
            "routeKindHint": self.route_kind_hint.value,
            "method": self.calculation_method.value if self.calculation_method else None,
            "pallets": decimal_key(self.pallets),
            "weightKg": decimal_key(self.weight_kg),
            "volumeM3": decimal_key(self.volume_m3),
            "packageCount": self.package_count,
            "urgency": self.urgency.value,
            "vehicles": sorted([v.type, v.quantity] for v in self.vehicles),
            "extras": sorted([e.id, decimal_key(e.quantity)] for e in self.extras),
            "applyRules": self.apply_rules,
        }

    def fingerprint(self) -> str:
        canonical = json.dumps(self.fingerprint_payload(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clienteId": self.client,
            "origenId": self.origin,
            "destinoId": self.destination,
            "fecha": self.date.isoformat(),
            "tipoUnidad": self.vehicle_type,
            "tipoTramo": self.route_kind_hint.value,
            "metodoCalculo": self.calculation_method.value if self.calculation_method else None,
            "palets": str(self.pallets) if self.pallets is not None else None,
            "peso": str(self.weight_kg) if self.weight_kg is not None else None,
            "volumen": str(self.volume_m3) if self.volume_m3 is not None else None,
            "cantidadBultos": self.package_count,
            "urgencia": self.urgency.value,
            "vehiculos": [{"tipo": v.type, "cantidad": v.quantity} for v in self.vehicles],
            "extras": [{"id": e.id, "cantidad": str(e.quantity)} for e in self.extras],
            "aplicarReglas": self.apply_rules,
            "usarCache": self.use_cache,
            "incluirDesgloseCalculo": self.include_breakdown,
        }


@dataclass(frozen=True)
class TariffRecord:
    """Engine-side snapshot of a priced route; the ORM row lives in tariffs.models."""
    id: int
    client: int
    origin: int
    destination: int
    route_kind: Optional[str]
    calculation_method: CalculationMethod
    unit_value: Decimal
    valid_from: date
    valid_until: date
    toll_value: Decimal = ZERO
    active: bool = True
    route_id: Optional[int] = None

    @property
    def normalized_kind(self) -> Optional[RouteKind]:
        return RouteKind.normalize(self.route_kind)

    def covers(self, on_date: date) -> bool:
        return self.valid_from <= on_date <= self.valid_until

    def overlaps(self, other: "TariffRecord") -> bool:
        return self.valid_from <= other.valid_until and other.valid_from <= self.valid_until

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tipo": self.route_kind,
            "metodoCalculo": self.calculation_method.value,
            "valor": str(self.unit_value),
            "valorPeaje": str(self.toll_value),
            "vigenciaDesde": self.valid_from.isoformat(),
            "vigenciaHasta": self.valid_until.isoformat(),
            "activo": self.active,
        }


@dataclass(frozen=True)
class RuleCondition:
    field: str
    operator: str
    value: Any = None
    value_to: Any = None


@dataclass(frozen=True)
class BusinessRule:
    code: str
    name: str
    priority: int
    modification_kind: ModificationKind
    magnitude: Decimal
    base_relative: bool = False
    # RuleCondition instances or raw dicts straight from storage; coerced at evaluation time
    conditions: Tuple[Any, ...] = ()
    logical_operator: str = "AND"
    client: Optional[int] = None
    calculation_method: Optional[CalculationMethod] = None
    exclusive: bool = False
    active: bool = True
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    weekdays: Tuple[int, ...] = ()
    description: str = ""
    predicate: Optional[Callable[["CalculationContext"], bool]] = field(default=None, compare=False)
    # set when the stored row could not be read; the rule engine reports it instead of applying the rule
    load_error: Optional[str] = field(default=None, compare=False)

    def in_force(self, on_date: date) -> bool:
        if not self.active:
            return False
        if self.valid_from and on_date < self.valid_from:
            return False
        if self.valid_until and on_date > self.valid_until:
            return False
        if self.weekdays and on_date.weekday() not in self.weekdays:
            return False
        return True


@dataclass(frozen=True)
class ExtraCharge:
    id: int
    code: str
    name: str
    unit_value: Decimal


@dataclass(frozen=True)
class ClientFormula:
    """A client's pricing expression for one vehicle type (or "General") within a window."""
    id: Optional[int]
    client: Optional[int]
    vehicle_type: str
    expression: str
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    active: bool = True

    def in_force(self, on_date: date) -> bool:
        if not self.active:
            return False
        if self.valid_from and on_date < self.valid_from:
            return False
        if self.valid_until and on_date > self.valid_until:
            return False
        return True


@dataclass
class Resolution:
    record: TariffRecord
    candidate_count: int
    decided_by: ResolutionRule
    warnings: List[str] = field(default_factory=list)


@dataclass
class MethodOutcome:
    base_value: Decimal
    formula: str
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, str] = field(default_factory=dict)


@dataclass
class RuleApplication:
    code: str
    name: str
    delta: Decimal
    basis: str
    basis_value: Decimal
    running_total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "delta": str(self.delta),
            "basis": self.basis,
            "basisValue": str(self.basis_value),
            "runningTotal": str(self.running_total),
        }


@dataclass
class RuleOutcome:
    total: Decimal
    applied: List[RuleApplication] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    stage: str = "evaluated"
    evaluated: int = 0


@dataclass
class BreakdownLine:
    stage: str
    value: Decimal
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {"stage": self.stage, "value": str(self.value), "description": self.description}


@dataclass
class CalculationResult:
    base_value: Decimal
    toll_value: Decimal
    extras_value: Decimal
    total: Decimal
    method_used: CalculationMethod
    formula_applied: str
    context_used: CalculationContext
    rules_applied: List[RuleApplication] = field(default_factory=list)
    breakdown: Optional[List[BreakdownLine]] = None
    warnings: List[str] = field(default_factory=list)
    rule_errors: List[Dict[str, str]] = field(default_factory=list)
    cache_hit: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "baseValue": str(self.base_value),
            "tollValue": str(self.toll_value),
            "extrasValue": str(self.extras_value),
            "total": str(self.total),
            "methodUsed": self.method_used.value,
            "formulaApplied": self.formula_applied,
            "rulesApplied": [r.to_dict() for r in self.rules_applied],
            "contextUsed": self.context_used.to_dict(),
            "warnings": list(self.warnings),
            "ruleErrors": list(self.rule_errors),
            "cacheHit": self.cache_hit,
            "metadata": dict(self.metadata),
        }
        if self.breakdown is not None:
            payload["breakdown"] = [line.to_dict() for line in self.breakdown]
        return payload


@dataclass(frozen=True)
class AuditEntry:
    timestamp: datetime
    execution_time_ms: float
    context: CalculationContext
    result: Optional[CalculationResult] = None
    errors: Tuple[str, ...] = ()

    @property
    def failed(self) -> bool:
        return bool(self.errors)
