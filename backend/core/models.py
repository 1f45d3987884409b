from django.core.validators import MinValueValidator
from django.db import models


class Client(models.Model):
    name = models.CharField(max_length=255, unique=True)
    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class Site(models.Model):
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=32, blank=True, null=True)
    client = models.ForeignKey('core.Client', models.SET_NULL, blank=True, null=True, related_name='sites')
    latitude = models.DecimalField(max_digits=9, decimal_places=6, blank=True, null=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, blank=True, null=True)
    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.code})" if self.code else self.name


class Extra(models.Model):
    """Client-specific extra charge (loading help, waiting time, ...) priced per unit."""
    client = models.ForeignKey('core.Client', models.CASCADE, related_name='extras')
    code = models.CharField(max_length=32)
    name = models.CharField(max_length=255)
    unit_value = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    valid_from = models.DateField()
    valid_until = models.DateField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = (('client', 'code', 'valid_from'),)

    def __str__(self):
        return f"{self.code} - {self.name}"
