from datetime import date
from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import CommandError, call_command

from accounts.models import CustomUser
from core.models import Client, Extra, Site
from tariff_engine.dataclasses import CalculationContext, ExtraRequest
from tariff_engine.services.engine import build_default_engine
from tariff_engine.types import CalculationMethod, RouteKind, Urgency
from tariffs.models import BusinessRule, Route, TariffRecord

pytestmark = pytest.mark.django_db


def _seed(**options):
    out = StringIO()
    call_command("seed_tariff_demo", year=2025, stdout=out, **options)
    return out.getvalue()


def test_seed_is_idempotent():
    _seed()
    _seed()
    assert Client.objects.count() == 2
    assert Route.objects.count() == 3
    assert TariffRecord.objects.count() == 5
    assert BusinessRule.objects.count() == 3
    assert Extra.objects.count() == 2


def test_seed_with_users():
    output = _seed(with_users=True)
    assert "Test users ready (3 created)" in output
    assert set(CustomUser.objects.values_list("role", flat=True)) == {"operator", "manager", "admin"}


def test_seeded_data_prices_end_to_end():
    _seed()
    acme = Client.objects.get(name="Acme Logística")
    plant, depot, port = (Site.objects.get(code=c) for c in ("PIL", "ROS", "BUE"))
    helper = Extra.objects.get(code="AYUDANTE")
    engine = build_default_engine()

    # Wednesday; 2.65/km x 310 km after July, plus 1500 toll
    km = engine.calculate(CalculationContext(client=acme.id, origin=plant.id, destination=depot.id,
                                             date=date(2025, 8, 13), vehicle_type="Semi"))
    assert km.method_used is CalculationMethod.KILOMETER
    assert km.total == Decimal("2321.50")

    # TRMC record wins over the TRMI one; 20 pallets trigger the base-relative volume discount
    pallets = engine.calculate(CalculationContext(
        client=acme.id, origin=plant.id, destination=port.id, date=date(2025, 3, 12), vehicle_type="Semi",
        route_kind_hint=RouteKind.TRMC, pallets=Decimal("20"), urgency=Urgency.URGENT,
        extras=(ExtraRequest(helper.id, Decimal("1")),),
    ))
    assert pallets.metadata["resolution"]["decidedBy"] == "route_kind"
    assert [r.code for r in pallets.rules_applied] == ["URGENTE", "VOLUMEN-ACME"]
    # 600 + 15% (90) - 5% of base (30) + 80 helper
    assert pallets.total == Decimal("740.00")


def test_seeded_weekend_rule():
    _seed()
    norte = Client.objects.get(name="Distribuidora Norte")
    depot, port = Site.objects.get(code="ROS"), Site.objects.get(code="BUE")
    # 2025-03-15 is a Saturday
    result = build_default_engine().calculate(CalculationContext(
        client=norte.id, origin=depot.id, destination=port.id, date=date(2025, 3, 15), vehicle_type="Chasis",
    ))
    assert [r.code for r in result.rules_applied] == ["FINDE"]
    assert result.total == Decimal("870.00")


def test_detect_conflicts_reports_seeded_conflict():
    _seed()
    out = StringIO()
    call_command("detect_tariff_conflicts", stdout=out)
    output = out.getvalue()
    assert "TRMC/TRMI" in output
    assert "Found 1 conflict group(s)." in output


def test_detect_conflicts_clean_client():
    _seed()
    norte = Client.objects.get(name="Distribuidora Norte")
    out = StringIO()
    call_command("detect_tariff_conflicts", client=norte.id, stdout=out)
    assert "No route-kind conflicts found." in out.getvalue()


def test_detect_conflicts_bad_arguments():
    with pytest.raises(CommandError):
        call_command("detect_tariff_conflicts", client=424242, stdout=StringIO())
    with pytest.raises(CommandError):
        call_command("detect_tariff_conflicts", method="Barge", stdout=StringIO())
