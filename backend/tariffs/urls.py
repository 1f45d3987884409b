from django.urls import path

from .views import BulkValidityUpdateView, ConflictDiagnosticView, RouteKindCorrectionView

urlpatterns = [
    path("diagnostico-tipos", ConflictDiagnosticView.as_view(), name="tramos-diagnostico-tipos"),
    path("corregir-tipos", RouteKindCorrectionView.as_view(), name="tramos-corregir-tipos"),
    path("vigencia-masiva", BulkValidityUpdateView.as_view(), name="tramos-vigencia-masiva"),
]
