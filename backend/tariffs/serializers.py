from __future__ import annotations

from rest_framework import serializers

from tariff_engine.types import CalculationMethod, RouteKind


class ConflictDiagnosticSerializer(serializers.Serializer):
    clienteId = serializers.IntegerField(min_value=1)
    origenId = serializers.IntegerField(min_value=1, required=False)
    destinoId = serializers.IntegerField(min_value=1, required=False)
    metodoCalculo = serializers.CharField(required=False, allow_blank=True)

    def validate_metodoCalculo(self, value):
        if not value:
            return None
        try:
            return CalculationMethod.parse(value)
        except ValueError:
            raise serializers.ValidationError("metodoCalculo must be Kilometer, Pallet or Fixed.")


class RouteKindCorrectionSerializer(serializers.Serializer):
    tarifaIds = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False, max_length=1000)
    tipo = serializers.CharField()

    def validate_tipo(self, value: str) -> str:
        kind = RouteKind.normalize(value)
        if kind is None:
            raise serializers.ValidationError("tipo must be TRMC or TRMI.")
        return kind.value


class BulkValidityUpdateSerializer(serializers.Serializer):
    tarifaIds = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False, max_length=1000)
    vigenciaDesde = serializers.DateField()
    vigenciaHasta = serializers.DateField()
    tipo = serializers.CharField(required=False, allow_blank=True)

    def validate_tipo(self, value):
        if not value:
            return None
        kind = RouteKind.normalize(value)
        if kind is None:
            raise serializers.ValidationError("tipo must be TRMC or TRMI.")
        return kind.value

    def validate(self, attrs):
        if attrs["vigenciaHasta"] <= attrs["vigenciaDesde"]:
            raise serializers.ValidationError({"vigenciaHasta": "vigenciaHasta must be after vigenciaDesde."})
        return attrs
