from __future__ import annotations

from enum import Enum
from typing import Optional


class CalculationMethod(str, Enum):
    KILOMETER = "Kilometer"
    PALLET = "Pallet"
    FIXED = "Fixed"

    @classmethod
    def parse(cls, raw) -> "CalculationMethod":
        """Accept the canonical names plus the legacy Spanish spellings (Kilometro, PALET, Fijo...)."""
        if isinstance(raw, cls):
            return raw
        key = str(raw or "").strip().upper()
        method = _METHOD_ALIASES.get(key)
        if method is None:
            raise ValueError(f"Unknown calculation method: {raw!r}")
        return method


_METHOD_ALIASES = {
    "KILOMETER": CalculationMethod.KILOMETER,
    "KILOMETRO": CalculationMethod.KILOMETER,
    "KM": CalculationMethod.KILOMETER,
    "PALLET": CalculationMethod.PALLET,
    "PALET": CalculationMethod.PALLET,
    "FIXED": CalculationMethod.FIXED,
    "FIJO": CalculationMethod.FIXED,
}


class RouteKind(str, Enum):
    TRMC = "TRMC"
    TRMI = "TRMI"

    @classmethod
    def normalize(cls, raw) -> Optional["RouteKind"]:
        """Trim + upper-case; None when the value is not a known kind."""
        if raw is None:
            return None
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return None


class Urgency(str, Enum):
    NORMAL = "Normal"
    URGENT = "Urgent"
    CRITICAL = "Critical"

    @classmethod
    def parse(cls, raw) -> "Urgency":
        if isinstance(raw, cls):
            return raw
        key = str(raw or "").strip().lower()
        urgency = _URGENCY_ALIASES.get(key)
        if urgency is None:
            raise ValueError(f"Unknown urgency: {raw!r}")
        return urgency


_URGENCY_ALIASES = {
    "normal": Urgency.NORMAL,
    "urgent": Urgency.URGENT,
    "urgente": Urgency.URGENT,
    "critical": Urgency.CRITICAL,
    "critico": Urgency.CRITICAL,
    "crítico": Urgency.CRITICAL,
}


class ModificationKind(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    ABSOLUTE = "ABSOLUTE"


class ResolutionRule(str, Enum):
    """Which tie-break step picked the record."""
    SINGLE = "single"
    ROUTE_KIND = "route_kind"
    LATEST_VALID_FROM = "latest_valid_from"
