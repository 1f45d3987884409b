"""
Collaborators the engine reads from.

The engine only talks to these through a handful of methods, so tests swap
them for in-memory fakes. The classes here are the Django ORM-backed defaults
wired in by ``TariffEngineConfig.ready()``.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from django.db.models import Q

from core.models import Client, Extra, Site
from tariffs.models import BusinessRule as BusinessRuleModel
from tariffs.models import ClientFormula as ClientFormulaModel
from tariffs.models import Route
from tariffs.models import TariffRecord as TariffRecordModel

from ..dataclasses import BusinessRule, ClientFormula, ExtraCharge, TariffRecord
from ..exceptions import NotFoundError
from ..types import CalculationMethod, ModificationKind

logger = logging.getLogger(__name__)


def record_from_model(row: TariffRecordModel) -> TariffRecord:
    return TariffRecord(
        id=row.id,
        client=row.route.client_id,
        origin=row.route.origin_id,
        destination=row.route.destination_id,
        route_kind=row.route_kind,
        calculation_method=CalculationMethod.parse(row.calculation_method),
        unit_value=row.unit_value,
        toll_value=row.toll_value or Decimal("0"),
        valid_from=row.valid_from,
        valid_until=row.valid_until,
        active=row.active,
        route_id=row.route_id,
    )


def _weekdays(raw) -> Tuple[int, ...]:
    if raw is None or raw == []:
        return ()
    if not isinstance(raw, (list, tuple)) or any(
        not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= 6 for day in raw
    ):
        raise ValueError(f"weekdays must be a list of integers 0-6 (Monday=0), got {raw!r}")
    return tuple(raw)


def rule_from_model(row: BusinessRuleModel) -> BusinessRule:
    """
    Convert a stored rule.

    A row holding a value the engine cannot read (unknown modification kind or
    method, malformed weekdays) still comes back as a rule, carrying
    ``load_error``, so the rule engine reports it in ``rule_errors`` and the
    other rules keep running.
    """
    load_error = None
    try:
        modification_kind = ModificationKind(row.modification_kind)
        calculation_method = CalculationMethod.parse(row.calculation_method) if row.calculation_method else None
        weekdays = _weekdays(row.weekdays)
    except (TypeError, ValueError) as e:
        logger.warning(f"Business rule {row.code} (id {row.id}) cannot be read: {e}")
        load_error = f"Invalid stored rule: {e}"
        modification_kind, calculation_method, weekdays = row.modification_kind, None, ()

    return BusinessRule(
        code=row.code,
        name=row.name,
        description=row.description,
        priority=row.priority,
        modification_kind=modification_kind,
        magnitude=row.magnitude,
        base_relative=row.base_relative,
        conditions=tuple(row.conditions or ()),
        logical_operator=row.logical_operator,
        client=row.client_id,
        calculation_method=calculation_method,
        exclusive=row.exclusive,
        active=row.active,
        valid_from=row.valid_from,
        valid_until=row.valid_until,
        weekdays=weekdays,
        load_error=load_error,
    )


class DjangoTariffRecordStore:
    """Tariff Record Store over tariffs.TariffRecord."""

    def _base_queryset(self):
        return TariffRecordModel.objects.select_related("route")

    def find_candidates(
        self,
        client: int,
        origin: int,
        destination: int,
        on_date: date,
        method: Optional[CalculationMethod] = None,
    ) -> List[TariffRecord]:
        qs = self._base_queryset().filter(
            route__client_id=client,
            route__origin_id=origin,
            route__destination_id=destination,
            active=True,
            valid_from__lte=on_date,
            valid_until__gte=on_date,
        )
        if method is not None:
            qs = qs.filter(calculation_method=method.value)
        return [record_from_model(row) for row in qs]

    def list_records(
        self,
        client: int,
        origin: Optional[int] = None,
        destination: Optional[int] = None,
        method: Optional[CalculationMethod] = None,
        active_only: bool = True,
    ) -> List[TariffRecord]:
        qs = self._base_queryset().filter(route__client_id=client)
        if origin is not None:
            qs = qs.filter(route__origin_id=origin)
        if destination is not None:
            qs = qs.filter(route__destination_id=destination)
        if method is not None:
            qs = qs.filter(calculation_method=method.value)
        if active_only:
            qs = qs.filter(active=True)
        return [record_from_model(row) for row in qs.order_by("id")]

    def get(self, record_id: int) -> Optional[TariffRecord]:
        row = self._base_queryset().filter(pk=record_id).first()
        return record_from_model(row) if row else None

    def siblings(self, record: TariffRecord) -> List[TariffRecord]:
        """Other active records on the same route with the same method."""
        qs = (
            self._base_queryset()
            .filter(route_id=record.route_id, calculation_method=record.calculation_method.value, active=True)
            .exclude(pk=record.id)
        )
        return [record_from_model(row) for row in qs]

    def set_route_kind(self, record_id: int, route_kind: str) -> Optional[str]:
        row = TariffRecordModel.objects.filter(pk=record_id).first()
        if row is None:
            raise NotFoundError(f"Tariff record {record_id} not found", id=record_id)
        previous = row.route_kind
        row.route_kind = route_kind
        row.save(update_fields=["route_kind", "updated_at"])
        logger.info(f"Tariff record {record_id} route kind {previous!r} -> {route_kind!r}")
        return previous

    def set_validity(self, record_id: int, valid_from: date, valid_until: date) -> None:
        updated = TariffRecordModel.objects.filter(pk=record_id).update(valid_from=valid_from, valid_until=valid_until)
        if not updated:
            raise NotFoundError(f"Tariff record {record_id} not found", id=record_id)
        logger.info(f"Tariff record {record_id} validity set to {valid_from}..{valid_until}")


class DjangoDirectory:
    """Client/Site Directory over core.Client and core.Site."""

    def client_exists(self, client_id: int) -> bool:
        return Client.objects.filter(pk=client_id).exists()

    def site_exists(self, site_id: int) -> bool:
        return Site.objects.filter(pk=site_id).exists()


class DjangoDistanceLookup:
    """Route Distance Lookup: the distance stored on the record's route."""

    def distance_for(self, record: TariffRecord) -> Optional[Decimal]:
        if record.route_id is not None:
            qs = Route.objects.filter(pk=record.route_id)
        else:
            qs = Route.objects.filter(
                client_id=record.client, origin_id=record.origin, destination_id=record.destination
            )
        return qs.values_list("distance_km", flat=True).first()


class DjangoRuleStore:
    """Business Rule Store over tariffs.BusinessRule (global rules plus the client's own)."""

    def rules_for(self, client: int, on_date: date) -> List[BusinessRule]:
        qs = BusinessRuleModel.objects.filter(active=True, valid_from__lte=on_date).filter(
            Q(client__isnull=True) | Q(client_id=client)
        ).filter(Q(valid_until__isnull=True) | Q(valid_until__gte=on_date))
        return [rule_from_model(row) for row in qs.order_by("priority", "code")]


class DjangoExtrasCatalogue:
    """Per-client extras in force on a date."""

    def get(self, client: int, extra_id: int, on_date: date) -> Optional[ExtraCharge]:
        row = (
            Extra.objects.filter(pk=extra_id, client_id=client, valid_from__lte=on_date)
            .filter(Q(valid_until__isnull=True) | Q(valid_until__gte=on_date))
            .first()
        )
        if row is None:
            return None
        return ExtraCharge(id=row.id, code=row.code, name=row.name, unit_value=row.unit_value)



class DjangoFormulaStore:
    """Per-client formulas over tariffs.ClientFormula, in force on a date."""

    def formulas_for(self, client: int, on_date: date) -> List[ClientFormula]:
        qs = ClientFormulaModel.objects.filter(client_id=client, active=True, valid_from__lte=on_date).filter(
            Q(valid_until__isnull=True) | Q(valid_until__gte=on_date)
        )
        return [
            ClientFormula(
                id=row.id,
                client=row.client_id,
                vehicle_type=row.vehicle_type,
                expression=row.formula,
                valid_from=row.valid_from,
                valid_until=row.valid_until,
                active=row.active,
            )
            for row in qs.order_by("-valid_from", "-id")
        ]
