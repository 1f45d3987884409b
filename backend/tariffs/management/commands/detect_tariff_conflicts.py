from django.core.management.base import BaseCommand, CommandError

from core.models import Client
from tariff_engine.services.conflicts import ConflictDetector
from tariff_engine.services.stores import DjangoTariffRecordStore
from tariff_engine.types import CalculationMethod


class Command(BaseCommand):
    help = "Report route-kind (TRMC/TRMI) conflicts and unnormalized kinds in a client's tariffs."

    def add_arguments(self, parser):
        parser.add_argument("--client", type=int, help="Client id (default: every active client)")
        parser.add_argument("--origin", type=int, help="Restrict to one origin site id")
        parser.add_argument("--destination", type=int, help="Restrict to one destination site id")
        parser.add_argument("--method", help="Restrict to one calculation method (Kilometer, Pallet, Fixed)")

    def handle(self, *args, **options):
        method = None
        if options.get("method"):
            try:
                method = CalculationMethod.parse(options["method"])
            except ValueError as e:
                raise CommandError(str(e))

        if options.get("client"):
            if not Client.objects.filter(pk=options["client"]).exists():
                raise CommandError(f"Client {options['client']} not found")
            client_ids = [options["client"]]
        else:
            client_ids = list(Client.objects.filter(active=True).values_list("id", flat=True))

        if not client_ids:
            self.stdout.write(self.style.WARNING("No clients found to inspect."))
            return

        detector = ConflictDetector(DjangoTariffRecordStore())
        total_conflicts = 0
        for client_id in client_ids:
            report = detector.detect(
                client_id, origin=options.get("origin"), destination=options.get("destination"), method=method
            )
            counts = report["porTipo"]
            self.stdout.write(
                f"Client {client_id}: {report['totalTarifas']} tariff(s) "
                f"(TRMC={counts['TRMC']} TRMI={counts['TRMI']} otros={counts['otros']} nulos={counts['nulos']})"
            )
            for item in report["tramosSinTipoNormalizado"]:
                self.stdout.write(f"  - tariff {item['id']}: route kind {item['tipo']!r} is not normalized")
            for conflict in report["posiblesConflictos"]:
                total_conflicts += 1
                ids = ", ".join(str(t["id"]) for t in conflict["tarifas"])
                self.stdout.write(
                    self.style.WARNING(f"  Conflict {conflict['clave']}: {'/'.join(conflict['tipos'])} -> tariffs {ids}")
                )
                for a, b in conflict["solapamientos"]:
                    self.stdout.write(f"    overlapping windows: {a} and {b}")

        self.stdout.write("-" * 20)
        if total_conflicts:
            self.stdout.write(self.style.ERROR(f"Found {total_conflicts} conflict group(s)."))
        else:
            self.stdout.write(self.style.SUCCESS("No route-kind conflicts found."))
