import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Route",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("distance_km", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "client",
                    models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="routes", to="core.client"),
                ),
                (
                    "origin",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="routes_from", to="core.site"),
                ),
                (
                    "destination",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="routes_to", to="core.site"),
                ),
            ],
            options={"unique_together": {("client", "origin", "destination")}},
        ),
        migrations.CreateModel(
            name="TariffRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "route_kind",
                    models.CharField(
                        blank=True,
                        choices=[("TRMC", "TRMC"), ("TRMI", "TRMI")],
                        default="TRMC",
                        max_length=16,
                        null=True,
                    ),
                ),
                (
                    "calculation_method",
                    models.CharField(
                        choices=[("Kilometer", "Kilometer"), ("Pallet", "Pallet"), ("Fixed", "Fixed")],
                        max_length=16,
                    ),
                ),
                (
                    "unit_value",
                    models.DecimalField(
                        decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(0)]
                    ),
                ),
                (
                    "toll_value",
                    models.DecimalField(
                        decimal_places=2, default=0, max_digits=12, validators=[django.core.validators.MinValueValidator(0)]
                    ),
                ),
                ("valid_from", models.DateField()),
                ("valid_until", models.DateField()),
                ("active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "route",
                    models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="tariffs", to="tariffs.route"),
                ),
            ],
            options={"ordering": ["route_id", "valid_from"]},
        ),
        migrations.AddConstraint(
            model_name="tariffrecord",
            constraint=models.CheckConstraint(
                condition=models.Q(("valid_until__gt", models.F("valid_from"))),
                name="tariff_record_valid_window",
            ),
        ),
        migrations.AddConstraint(
            model_name="tariffrecord",
            constraint=models.CheckConstraint(
                condition=models.Q(("unit_value__gte", 0), ("toll_value__gte", 0)),
                name="tariff_record_non_negative_values",
            ),
        ),
        migrations.CreateModel(
            name="BusinessRule",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=32, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                (
                    "calculation_method",
                    models.CharField(
                        blank=True,
                        choices=[("Kilometer", "Kilometer"), ("Pallet", "Pallet"), ("Fixed", "Fixed")],
                        max_length=16,
                        null=True,
                    ),
                ),
                ("conditions", models.JSONField(blank=True, default=list)),
                (
                    "logical_operator",
                    models.CharField(choices=[("AND", "AND"), ("OR", "OR")], default="AND", max_length=3),
                ),
                (
                    "modification_kind",
                    models.CharField(choices=[("PERCENTAGE", "Percentage"), ("ABSOLUTE", "Absolute")], max_length=16),
                ),
                ("magnitude", models.DecimalField(decimal_places=4, max_digits=12)),
                ("base_relative", models.BooleanField(default=False)),
                (
                    "priority",
                    models.PositiveIntegerField(default=100, validators=[django.core.validators.MinValueValidator(1)]),
                ),
                ("exclusive", models.BooleanField(default=False)),
                ("active", models.BooleanField(default=True)),
                ("valid_from", models.DateField()),
                ("valid_until", models.DateField(blank=True, null=True)),
                ("weekdays", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "client",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="business_rules",
                        to="core.client",
                    ),
                ),
            ],
            options={"ordering": ["priority", "code"]},
        ),
    ]
