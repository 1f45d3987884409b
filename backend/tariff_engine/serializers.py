from __future__ import annotations

from datetime import datetime, time

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import serializers

from .dataclasses import CalculationContext
from .services.audit import GROUPINGS, AuditQuery
from .services.engine import engine_settings
from .services.simulation import Scenario, SimulationConfig
from .types import CalculationMethod, RouteKind, Urgency

MAX_SCENARIOS = 100


def _parse(value: str):
    """Return a date or datetime for YYYY-MM-DD / ISO-8601 input, None when it is neither."""
    try:
        return parse_date(value) or parse_datetime(value)
    except ValueError:
        return None


def parse_flexible_date(value: str):
    """Accept YYYY-MM-DD or a full ISO-8601 timestamp; return a date."""
    parsed = _parse(value)
    if parsed is None:
        raise serializers.ValidationError("Use YYYY-MM-DD or an ISO-8601 timestamp.")
    return parsed.date() if isinstance(parsed, datetime) else parsed


def parse_bound(value: str, end_of_day: bool = False) -> datetime:
    """Parse an audit time bound; a bare date covers the whole day."""
    parsed = _parse(value)
    if parsed is None:
        raise serializers.ValidationError("Use YYYY-MM-DD or an ISO-8601 timestamp.")
    if not isinstance(parsed, datetime):
        parsed = datetime.combine(parsed, time.max if end_of_day else time.min)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


class VehicleSerializer(serializers.Serializer):
    tipo = serializers.CharField(max_length=64)
    cantidad = serializers.IntegerField(min_value=1, required=False, default=1)


class ExtraItemSerializer(serializers.Serializer):
    id = serializers.IntegerField(min_value=1)
    cantidad = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False, default=1)


class CalculateRequestSerializer(serializers.Serializer):
    clienteId = serializers.IntegerField(min_value=1)
    origenId = serializers.IntegerField(min_value=1)
    destinoId = serializers.IntegerField(min_value=1)
    tipoUnidad = serializers.CharField(max_length=64)
    fecha = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    tipoTramo = serializers.CharField(required=False, default=RouteKind.TRMC.value)
    metodoCalculo = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    palets = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True)
    peso = serializers.DecimalField(max_digits=12, decimal_places=3, min_value=0, required=False, allow_null=True)
    volumen = serializers.DecimalField(max_digits=12, decimal_places=3, min_value=0, required=False, allow_null=True)
    cantidadBultos = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    urgencia = serializers.CharField(required=False, default=Urgency.NORMAL.value)
    vehiculos = VehicleSerializer(many=True, required=False)
    extras = ExtraItemSerializer(many=True, required=False)
    aplicarReglas = serializers.BooleanField(required=False, default=True)
    usarCache = serializers.BooleanField(required=False, default=True)
    incluirDesgloseCalculo = serializers.BooleanField(required=False, default=False)

    def validate_fecha(self, value):
        if not value:
            return None
        return parse_flexible_date(value)

    def validate_tipoTramo(self, value: str) -> str:
        kind = RouteKind.normalize(value)
        if kind is None:
            raise serializers.ValidationError("tipoTramo must be TRMC or TRMI.")
        return kind.value

    def validate_metodoCalculo(self, value):
        if not value:
            return None
        try:
            return CalculationMethod.parse(value).value
        except ValueError:
            raise serializers.ValidationError("metodoCalculo must be Kilometer, Pallet or Fixed.")

    def validate_urgencia(self, value: str) -> str:
        try:
            return Urgency.parse(value).value
        except ValueError:
            raise serializers.ValidationError("urgencia must be Normal, Urgente or Critico.")

    def to_context(self) -> CalculationContext:
        return CalculationContext.from_payload(self.validated_data)


class ScenarioSerializer(CalculateRequestSerializer):
    nombre = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)


class SimulationConfigSerializer(serializers.Serializer):
    compararMetodos = serializers.BooleanField(required=False, default=False)
    incluirDesglose = serializers.BooleanField(required=False, default=False)
    aplicarReglas = serializers.BooleanField(required=False, default=True)
    usarCache = serializers.BooleanField(required=False, default=False)


class SimulateRequestSerializer(serializers.Serializer):
    escenarios = ScenarioSerializer(many=True, allow_empty=False)
    configuracion = SimulationConfigSerializer(required=False)

    def validate_escenarios(self, value):
        if len(value) > MAX_SCENARIOS:
            raise serializers.ValidationError(f"At most {MAX_SCENARIOS} scenarios per simulation.")
        return value

    def to_scenarios(self):
        scenarios = []
        for index, item in enumerate(self.validated_data["escenarios"]):
            scenarios.append(
                Scenario(
                    name=item.get("nombre") or f"Escenario {index + 1}",
                    context=CalculationContext.from_payload(item),
                )
            )
        return scenarios

    def to_config(self) -> SimulationConfig:
        conf = self.validated_data.get("configuracion") or {}
        return SimulationConfig(
            compare_methods=conf.get("compararMetodos", False),
            include_breakdown=conf.get("incluirDesglose", False),
            apply_rules=conf.get("aplicarReglas", True),
            use_cache=conf.get("usarCache", False),
        )


class AuditQuerySerializer(serializers.Serializer):
    desde = serializers.CharField(required=False)
    hasta = serializers.CharField(required=False)
    clienteId = serializers.IntegerField(required=False, min_value=1)
    conErrores = serializers.BooleanField(required=False, default=False)
    limite = serializers.IntegerField(required=False, min_value=1, max_value=1000)
    incluirContexto = serializers.BooleanField(required=False, default=False)
    agruparPor = serializers.ChoiceField(choices=GROUPINGS, required=False)

    def validate_desde(self, value: str):
        return parse_bound(value)

    def validate_hasta(self, value: str):
        return parse_bound(value, end_of_day=True)

    def validate(self, attrs):
        since, until = attrs.get("desde"), attrs.get("hasta")
        if since and until and since > until:
            raise serializers.ValidationError({"hasta": "hasta must not be before desde."})
        return attrs

    def to_query(self) -> AuditQuery:
        data = self.validated_data
        return AuditQuery(
            since=data.get("desde"),
            until=data.get("hasta"),
            client=data.get("clienteId"),
            only_errors=data.get("conErrores", False),
            limit=data.get("limite") or engine_settings()["AUDIT_DEFAULT_LIMIT"],
            include_context=data.get("incluirContexto", False),
            group_by=data.get("agruparPor"),
        )
