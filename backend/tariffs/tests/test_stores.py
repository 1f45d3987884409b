from datetime import date
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction

from core.models import Client, Extra, Site
from tariff_engine.exceptions import NotFoundError
from tariff_engine.services.stores import (
    DjangoDirectory,
    DjangoDistanceLookup,
    DjangoExtrasCatalogue,
    DjangoFormulaStore,
    DjangoRuleStore,
    DjangoTariffRecordStore,
)
from tariff_engine.types import CalculationMethod, ModificationKind
from tariffs.models import BusinessRule, ClientFormula, Route, TariffRecord

pytestmark = pytest.mark.django_db

JAN_1, JUN_30, YEAR_END = date(2025, 1, 1), date(2025, 6, 30), date(2025, 12, 31)


def _mk_route(distance_km=Decimal("120")):
    client = Client.objects.create(name="Acme")
    origin = Site.objects.create(name="Pilar", code="PIL")
    destination = Site.objects.create(name="Rosario", code="ROS")
    return Route.objects.create(client=client, origin=origin, destination=destination, distance_km=distance_km)


def _mk_tariff(route, method="Fixed", kind="TRMC", valid_from=JAN_1, valid_until=YEAR_END, **kw):
    kw.setdefault("unit_value", Decimal("100"))
    return TariffRecord.objects.create(route=route, route_kind=kind, calculation_method=method,
                                       valid_from=valid_from, valid_until=valid_until, **kw)


def test_find_candidates_filters_by_date_and_method():
    route = _mk_route()
    first = _mk_tariff(route, valid_until=JUN_30)
    _mk_tariff(route, valid_from=date(2025, 7, 1))
    pallet = _mk_tariff(route, method="Pallet")
    _mk_tariff(route, active=False)

    store = DjangoTariffRecordStore()
    found = store.find_candidates(route.client_id, route.origin_id, route.destination_id, date(2025, 3, 1))
    assert sorted(r.id for r in found) == sorted([first.id, pallet.id])

    only_pallet = store.find_candidates(
        route.client_id, route.origin_id, route.destination_id, date(2025, 3, 1), CalculationMethod.PALLET
    )
    assert [r.id for r in only_pallet] == [pallet.id]
    assert only_pallet[0].calculation_method is CalculationMethod.PALLET
    assert only_pallet[0].route_id == route.id


def test_record_snapshot_keeps_raw_route_kind():
    route = _mk_route()
    row = _mk_tariff(route, kind="trmi ")
    record = DjangoTariffRecordStore().get(row.id)
    assert record.route_kind == "trmi "
    assert record.normalized_kind.value == "TRMI"
    assert DjangoTariffRecordStore().get(row.id + 1000) is None


def test_siblings_and_writes():
    route = _mk_route()
    a = _mk_tariff(route, valid_until=JUN_30)
    b = _mk_tariff(route, valid_from=date(2025, 7, 1))
    _mk_tariff(route, method="Pallet")

    store = DjangoTariffRecordStore()
    assert [r.id for r in store.siblings(store.get(a.id))] == [b.id]

    assert store.set_route_kind(a.id, "TRMI") == "TRMC"
    a.refresh_from_db()
    assert a.route_kind == "TRMI"

    store.set_validity(b.id, date(2025, 8, 1), YEAR_END)
    b.refresh_from_db()
    assert b.valid_from == date(2025, 8, 1)

    with pytest.raises(NotFoundError):
        store.set_route_kind(999999, "TRMC")
    with pytest.raises(NotFoundError):
        store.set_validity(999999, JAN_1, YEAR_END)


def test_directory_and_distance():
    route = _mk_route(distance_km=Decimal("310.50"))
    row = _mk_tariff(route, method="Kilometer")

    directory = DjangoDirectory()
    assert directory.client_exists(route.client_id)
    assert not directory.client_exists(route.client_id + 100)
    assert directory.site_exists(route.origin_id)

    record = DjangoTariffRecordStore().get(row.id)
    assert DjangoDistanceLookup().distance_for(record) == Decimal("310.50")

    Route.objects.filter(pk=route.pk).update(distance_km=None)
    assert DjangoDistanceLookup().distance_for(record) is None


def test_rule_store_returns_global_and_client_rules_in_force():
    route = _mk_route()
    other = Client.objects.create(name="Other")
    BusinessRule.objects.create(code="global", name="Global", modification_kind="ABSOLUTE",
                                magnitude=Decimal("10"), valid_from=JAN_1, priority=20)
    BusinessRule.objects.create(code="mine", name="Mine", client=route.client, modification_kind="PERCENTAGE",
                                magnitude=Decimal("5"), valid_from=JAN_1, priority=10,
                                conditions=[{"field": "pallets", "operator": "gte", "value": 10}])
    BusinessRule.objects.create(code="theirs", name="Theirs", client=other, modification_kind="ABSOLUTE",
                                magnitude=Decimal("1"), valid_from=JAN_1)
    BusinessRule.objects.create(code="old", name="Old", modification_kind="ABSOLUTE",
                                magnitude=Decimal("1"), valid_from=date(2024, 1, 1), valid_until=date(2024, 12, 31))

    rules = DjangoRuleStore().rules_for(route.client_id, date(2025, 3, 1))
    assert [r.code for r in rules] == ["MINE", "GLOBAL"]
    assert rules[0].modification_kind is ModificationKind.PERCENTAGE
    assert rules[0].conditions == ({"field": "pallets", "operator": "gte", "value": 10},)
    assert rules[1].client is None


def test_rule_store_keeps_unreadable_rows_as_load_errors():
    route = _mk_route()
    BusinessRule.objects.create(code="broken", name="Broken", modification_kind="PERCENT",
                                magnitude=Decimal("5"), valid_from=JAN_1, priority=1)
    BusinessRule.objects.create(code="barge", name="Barge only", modification_kind="ABSOLUTE",
                                calculation_method="Barge", magnitude=Decimal("5"), valid_from=JAN_1, priority=2)
    BusinessRule.objects.create(code="bad-days", name="Bad days", modification_kind="ABSOLUTE",
                                magnitude=Decimal("5"), valid_from=JAN_1, priority=3, weekdays=5)
    BusinessRule.objects.create(code="fine", name="Fine", modification_kind="ABSOLUTE",
                                magnitude=Decimal("5"), valid_from=JAN_1, priority=4, weekdays=[5, 6])

    rules = {r.code: r for r in DjangoRuleStore().rules_for(route.client_id, date(2025, 3, 1))}

    assert "PERCENT" in rules["BROKEN"].load_error
    assert "Barge" in rules["BARGE"].load_error
    assert "weekdays" in rules["BAD-DAYS"].load_error
    assert rules["FINE"].load_error is None
    assert rules["FINE"].weekdays == (5, 6)

def test_extras_catalogue_is_per_client_and_dated():
    route = _mk_route()
    extra = Extra.objects.create(client=route.client, code="ESPERA", name="Waiting time",
                                 unit_value=Decimal("45"), valid_from=JAN_1, valid_until=JUN_30)
    catalogue = DjangoExtrasCatalogue()

    charge = catalogue.get(route.client_id, extra.id, date(2025, 2, 1))
    assert charge.code == "ESPERA"
    assert charge.unit_value == Decimal("45")
    assert catalogue.get(route.client_id, extra.id, date(2025, 7, 1)) is None
    assert catalogue.get(route.client_id + 100, extra.id, date(2025, 2, 1)) is None


class TestTariffRecordModel:
    def test_clean_rejects_empty_window(self):
        route = _mk_route()
        row = TariffRecord(route=route, calculation_method="Fixed", unit_value=Decimal("1"),
                           valid_from=JUN_30, valid_until=JUN_30)
        with pytest.raises(ValidationError):
            row.full_clean()

    def test_database_rejects_inverted_window(self):
        route = _mk_route()
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                _mk_tariff(route, valid_from=YEAR_END, valid_until=JAN_1)

    def test_rule_code_is_upper_cased(self):
        rule = BusinessRule.objects.create(code=" finde ", name="Weekend", modification_kind="ABSOLUTE",
                                           magnitude=Decimal("250"), valid_from=JAN_1)
        assert rule.code == "FINDE"


class TestClientFormulas:
    def test_store_returns_the_clients_formulas_in_force(self):
        route = _mk_route()
        other = Client.objects.create(name="Other")
        general = ClientFormula.objects.create(client=route.client, formula="Valor * Cantidad * 0.9", valid_from=JAN_1)
        semi = ClientFormula.objects.create(client=route.client, vehicle_type="Semi", formula="Valor * Cantidad + 50",
                                            valid_from=JAN_1, valid_until=JUN_30)
        ClientFormula.objects.create(client=other, formula="Valor * 2", valid_from=JAN_1)
        ClientFormula.objects.create(client=route.client, formula="Valor * 3", valid_from=JAN_1, active=False)

        march = DjangoFormulaStore().formulas_for(route.client_id, date(2025, 3, 1))
        assert sorted(f.id for f in march) == sorted([general.id, semi.id])
        assert {f.vehicle_type for f in march} == {"General", "Semi"}

        july = DjangoFormulaStore().formulas_for(route.client_id, date(2025, 7, 1))
        assert [f.expression for f in july] == ["Valor * Cantidad * 0.9"]

    def test_clean_rejects_unknown_variables_and_calls(self):
        route = _mk_route()
        row = ClientFormula(client=route.client, formula="Valor * Palets + Peaje", valid_from=JAN_1)
        with pytest.raises(ValidationError) as excinfo:
            row.full_clean()
        assert "formula" in excinfo.value.message_dict

        row.formula = "__import__('os').getcwd()"
        with pytest.raises(ValidationError):
            row.full_clean()

        row.formula = "max(Valor * Cantidad, 500)"
        row.full_clean()

    def test_database_rejects_inverted_window(self):
        route = _mk_route()
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                ClientFormula.objects.create(client=route.client, formula="Valor", valid_from=YEAR_END,
                                             valid_until=JAN_1)
