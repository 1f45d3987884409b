from django.contrib import admin

from .models import Client, Extra, Site


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "active", "created_at")
    list_filter = ("active",)
    search_fields = ("name",)


@admin.register(Site)
class SiteAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "code", "client", "active")
    list_filter = ("active", "client")
    search_fields = ("name", "code")


@admin.register(Extra)
class ExtraAdmin(admin.ModelAdmin):
    list_display = ("id", "client", "code", "name", "unit_value", "valid_from", "valid_until")
    list_filter = ("client",)
    search_fields = ("code", "name")
