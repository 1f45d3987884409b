from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include("accounts.urls")),
    path("api/tarifa-engine/", include("tariff_engine.urls")),
    path("api/tramos/", include("tariffs.urls")),
]
