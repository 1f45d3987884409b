# backend/tariffs/management/commands/seed_tariff_demo.py

from datetime import date
from decimal import Decimal

from django.core.management import call_command
from django.core.management.base import BaseCommand
from django.db import transaction

from core.models import Client, Extra, Site
from tariffs.models import BusinessRule, Route, TariffRecord


#region -------- Helper Functions --------
def upsert_client(name):
    return Client.objects.get_or_create(name=name)[0]


def upsert_site(name, code, client=None):
    site, _ = Site.objects.get_or_create(code=code, defaults={"name": name, "client": client})
    return site


def upsert_route(client, origin, destination, distance_km=None):
    route, _ = Route.objects.update_or_create(
        client=client, origin=origin, destination=destination, defaults={"distance_km": distance_km}
    )
    return route


def ensure_tariff(route, kind, method, unit_value, valid_from, valid_until, toll_value=Decimal("0")):
    tariff, _ = TariffRecord.objects.update_or_create(
        route=route,
        route_kind=kind,
        calculation_method=method,
        valid_from=valid_from,
        defaults={"unit_value": unit_value, "toll_value": toll_value, "valid_until": valid_until, "active": True},
    )
    return tariff


def ensure_rule(code, **fields):
    rule, _ = BusinessRule.objects.update_or_create(code=code, defaults=fields)
    return rule
#endregion


class Command(BaseCommand):
    help = "Seed demo clients, sites, routes, tariffs, business rules and extras for the tariff engine."

    def add_arguments(self, parser):
        parser.add_argument("--year", type=int, default=date.today().year, help="Year the demo tariffs cover")
        parser.add_argument("--with-users", action="store_true", default=False, help="Also create the test users")

    @transaction.atomic
    def handle(self, *args, **options):
        year = options["year"]
        start, end = date(year, 1, 1), date(year, 12, 31)

        acme = upsert_client("Acme Logística")
        norte = upsert_client("Distribuidora Norte")

        plant = upsert_site("Planta Pilar", "PIL", acme)
        depot = upsert_site("Depósito Rosario", "ROS", acme)
        port = upsert_site("Puerto Buenos Aires", "BUE")

        pil_ros = upsert_route(acme, plant, depot, Decimal("310.00"))
        pil_bue = upsert_route(acme, plant, port, Decimal("58.50"))
        ros_bue = upsert_route(norte, depot, port)

        ensure_tariff(pil_ros, "TRMC", "Kilometer", Decimal("2.40"), start, date(year, 6, 30), Decimal("1500.00"))
        ensure_tariff(pil_ros, "TRMC", "Kilometer", Decimal("2.65"), date(year, 7, 1), end, Decimal("1500.00"))
        ensure_tariff(pil_bue, "TRMC", "Pallet", Decimal("30.00"), start, end)
        # Same lane/method priced under both kinds: shows up in the conflict report
        ensure_tariff(pil_bue, "TRMI", "Pallet", Decimal("34.00"), start, end)
        ensure_tariff(ros_bue, "TRMC", "Fixed", Decimal("500.00"), start, end, Decimal("120.00"))

        ensure_rule(
            "URGENTE",
            name="Urgent delivery surcharge",
            modification_kind="PERCENTAGE",
            magnitude=Decimal("15"),
            priority=10,
            conditions=[{"field": "urgency", "operator": "in", "value": ["Urgent", "Critical"]}],
            valid_from=start,
        )
        ensure_rule(
            "FINDE",
            name="Weekend surcharge",
            modification_kind="ABSOLUTE",
            magnitude=Decimal("250"),
            priority=20,
            weekdays=[5, 6],
            valid_from=start,
        )
        ensure_rule(
            "VOLUMEN-ACME",
            name="Acme volume discount",
            client=acme,
            calculation_method="Pallet",
            modification_kind="PERCENTAGE",
            magnitude=Decimal("-5"),
            base_relative=True,
            priority=30,
            conditions=[{"field": "pallets", "operator": "gte", "value": 20}],
            valid_from=start,
        )

        Extra.objects.get_or_create(
            client=acme, code="AYUDANTE", valid_from=start,
            defaults={"name": "Loading helper", "unit_value": Decimal("80.00")},
        )
        Extra.objects.get_or_create(
            client=acme, code="ESPERA", valid_from=start,
            defaults={"name": "Waiting time (hour)", "unit_value": Decimal("45.00")},
        )

        self.stdout.write(self.style.SUCCESS(
            f"Seeded {Client.objects.count()} clients, {Route.objects.count()} routes, "
            f"{TariffRecord.objects.count()} tariffs, {BusinessRule.objects.count()} rules for {year}"
        ))

        if options["with_users"]:
            call_command("create_test_users", stdout=self.stdout)
