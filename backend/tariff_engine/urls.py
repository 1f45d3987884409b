from django.urls import path

from .views import TariffAuditView, TariffCacheClearView, TariffCalculateView, TariffSimulateView

urlpatterns = [
    path("calculate", TariffCalculateView.as_view(), name="tariff-calculate"),
    path("simulate", TariffSimulateView.as_view(), name="tariff-simulate"),
    path("audit", TariffAuditView.as_view(), name="tariff-audit"),
    path("clear-cache", TariffCacheClearView.as_view(), name="tariff-clear-cache"),
]
