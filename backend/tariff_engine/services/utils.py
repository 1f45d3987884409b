from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def d(val) -> Decimal:
    """Coerce incoming values to Decimal safely."""
    if isinstance(val, Decimal):
        return val
    return Decimal(str(val))


def money(val) -> Decimal:
    """Quantize an amount to cents, rounding halves away from zero."""
    return d(val).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, pct) -> Decimal:
    return money(d(amount) * d(pct) / HUNDRED)


def decimal_key(val):
    """Stable textual form for fingerprints: 20, 20.0 and 20.00 all map to '20'."""
    if val is None:
        return None
    normalized = d(val).normalize()
    # normalize() turns 20 into 2E+1; render it back without exponent
    return format(normalized, "f")
