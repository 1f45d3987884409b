from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from tariff_engine.services.formulas import validate_formula


class Route(models.Model):
    """A client's origin -> destination leg ("tramo")."""
    client = models.ForeignKey('core.Client', models.CASCADE, related_name='routes')
    origin = models.ForeignKey('core.Site', models.PROTECT, related_name='routes_from')
    destination = models.ForeignKey('core.Site', models.PROTECT, related_name='routes_to')
    distance_km = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = (('client', 'origin', 'destination'),)

    def __str__(self):
        return f"{self.client} {self.origin} -> {self.destination}"


class TariffRecord(models.Model):
    ROUTE_KIND_CHOICES = [
        ('TRMC', 'TRMC'),
        ('TRMI', 'TRMI'),
    ]
    METHOD_CHOICES = [
        ('Kilometer', 'Kilometer'),
        ('Pallet', 'Pallet'),
        ('Fixed', 'Fixed'),
    ]

    route = models.ForeignKey('tariffs.Route', models.CASCADE, related_name='tariffs')
    # Free text on purpose: legacy rows may hold "trmc ", "" or null until corrected.
    route_kind = models.CharField(max_length=16, choices=ROUTE_KIND_CHOICES, default='TRMC', blank=True, null=True)
    calculation_method = models.CharField(max_length=16, choices=METHOD_CHOICES)
    unit_value = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    toll_value = models.DecimalField(max_digits=12, decimal_places=2, default=0, validators=[MinValueValidator(0)])
    valid_from = models.DateField()
    valid_until = models.DateField()
    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['route_id', 'valid_from']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(valid_until__gt=models.F('valid_from')),
                name='tariff_record_valid_window',
            ),
            models.CheckConstraint(
                condition=models.Q(unit_value__gte=0) & models.Q(toll_value__gte=0),
                name='tariff_record_non_negative_values',
            ),
        ]

    def clean(self):
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise ValidationError({'valid_until': 'valid_until must be after valid_from'})

    def __str__(self):
        return f"{self.route} [{self.route_kind}/{self.calculation_method}] {self.valid_from}..{self.valid_until}"


class BusinessRule(models.Model):
    """Surcharge/discount applied on top of the method's base price."""
    MODIFICATION_CHOICES = [
        ('PERCENTAGE', 'Percentage'),
        ('ABSOLUTE', 'Absolute'),
    ]
    LOGICAL_OPERATOR_CHOICES = [
        ('AND', 'AND'),
        ('OR', 'OR'),
    ]

    code = models.CharField(max_length=32, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    client = models.ForeignKey('core.Client', models.CASCADE, blank=True, null=True, related_name='business_rules')
    calculation_method = models.CharField(max_length=16, choices=TariffRecord.METHOD_CHOICES, blank=True, null=True)
    # [{"field": "pallets", "operator": "gte", "value": 10, "value_to": null}, ...]
    conditions = models.JSONField(default=list, blank=True)
    logical_operator = models.CharField(max_length=3, choices=LOGICAL_OPERATOR_CHOICES, default='AND')
    modification_kind = models.CharField(max_length=16, choices=MODIFICATION_CHOICES)
    magnitude = models.DecimalField(max_digits=12, decimal_places=4)
    base_relative = models.BooleanField(default=False)
    priority = models.PositiveIntegerField(default=100, validators=[MinValueValidator(1)])
    exclusive = models.BooleanField(default=False)
    active = models.BooleanField(default=True)
    valid_from = models.DateField()
    valid_until = models.DateField(blank=True, null=True)
    weekdays = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['priority', 'code']

    def save(self, *args, **kwargs):
        self.code = (self.code or '').strip().upper()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.code} ({self.priority})"


class ClientFormula(models.Model):
    """
    A client's pricing expression for one vehicle type within a window.

    ``vehicle_type="General"`` applies to every type the client has no formula
    for. Without any formula in force the engine prices ``Valor * Cantidad``.
    """
    client = models.ForeignKey('core.Client', models.CASCADE, related_name='formulas')
    vehicle_type = models.CharField(max_length=64, default='General')
    formula = models.CharField(max_length=500)
    valid_from = models.DateField()
    valid_until = models.DateField(blank=True, null=True)
    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['client_id', 'vehicle_type', '-valid_from']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(valid_until__isnull=True) | models.Q(valid_until__gt=models.F('valid_from')),
                name='client_formula_valid_window',
            ),
        ]

    def clean(self):
        errors = {}
        problems = validate_formula(self.formula)
        if problems:
            errors['formula'] = problems
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            errors['valid_until'] = 'valid_until must be after valid_from'
        if errors:
            raise ValidationError(errors)

    def __str__(self):
        return f"{self.client} [{self.vehicle_type}] {self.formula}"
