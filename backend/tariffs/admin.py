from django.contrib import admin, messages

from tariff_engine.services.conflicts import ConflictDetector
from tariff_engine.services.stores import DjangoTariffRecordStore

from .models import BusinessRule, ClientFormula, Route, TariffRecord


@admin.register(Route)
class RouteAdmin(admin.ModelAdmin):
    list_display = ("id", "client", "origin", "destination", "distance_km")
    list_filter = ("client",)
    search_fields = ("client__name", "origin__name", "destination__name")


@admin.register(TariffRecord)
class TariffRecordAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "route",
        "route_kind",
        "calculation_method",
        "unit_value",
        "toll_value",
        "valid_from",
        "valid_until",
        "active",
    )
    list_filter = ("route_kind", "calculation_method", "active", "route__client")
    search_fields = ("route__client__name", "route__origin__name", "route__destination__name")
    actions = ["detect_conflicts"]

    def detect_conflicts(self, request, queryset):
        detector = ConflictDetector(DjangoTariffRecordStore())
        client_ids = sorted(set(queryset.values_list("route__client_id", flat=True)))
        any_conflict = False
        for client_id in client_ids:
            report = detector.detect(client_id)
            for conflict in report["posiblesConflictos"]:
                any_conflict = True
                ids = ", ".join(str(t["id"]) for t in conflict["tarifas"])
                messages.warning(
                    request,
                    f"Client {client_id} {conflict['clave']}: kinds {'/'.join(conflict['tipos'])} (tariffs {ids})",
                )
            if report["porTipo"]["otros"] or report["porTipo"]["nulos"]:
                messages.warning(
                    request,
                    f"Client {client_id}: {len(report['tramosSinTipoNormalizado'])} tariff(s) with unnormalized route kind",
                )
        if not any_conflict:
            messages.info(request, "No route-kind conflicts for the selected tariffs' clients.")

    detect_conflicts.short_description = "Detect route-kind conflicts"


@admin.register(BusinessRule)
class BusinessRuleAdmin(admin.ModelAdmin):
    list_display = (
        "code",
        "name",
        "client",
        "calculation_method",
        "modification_kind",
        "magnitude",
        "base_relative",
        "priority",
        "exclusive",
        "active",
    )
    list_filter = ("active", "modification_kind", "calculation_method", "client")
    search_fields = ("code", "name")
    ordering = ("priority", "code")


@admin.register(ClientFormula)
class ClientFormulaAdmin(admin.ModelAdmin):
    list_display = ("id", "client", "vehicle_type", "formula", "valid_from", "valid_until", "active")
    list_filter = ("active", "vehicle_type", "client")
    search_fields = ("client__name", "vehicle_type", "formula")
