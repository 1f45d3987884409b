from django.apps import AppConfig


class TariffEngineConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "tariff_engine"
    verbose_name = "Tariff engine"
    engine = None

    def ready(self):
        # Collaborators hit the database lazily, so building the engine here is safe.
        from .services.engine import build_default_engine

        self.engine = build_default_engine()
