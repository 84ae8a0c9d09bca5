# Overview: Cent arithmetic for prices and decimal quantities.

"""
Storage unit: integer cents. Quantities are Decimals (weighed goods allowed),
so a line amount is price_cents * quantity rounded half-up to a whole cent.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

QUANTITY_PLACES = Decimal("0.001")
MAX_AMOUNT_CENTS = 999_999_999


def to_quantity(value) -> Decimal:
    """Coerce JSON/str/int input into a Decimal quantity (3 places)."""
    if isinstance(value, bool):
        raise ValueError("quantity must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        qty = Decimal(str(value))
    except (InvalidOperation, TypeError):
        raise ValueError("quantity must be a number")
    if not qty.is_finite():
        raise ValueError("quantity must be a number")
    return qty.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def line_amount_cents(unit_cents: int, quantity) -> int:
    """unit_cents x quantity, rounded half-up to whole cents."""
    amount = Decimal(unit_cents) * Decimal(quantity)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_cents(cents: int | None) -> str:
    """1050 -> '10.50' (display only, single currency)."""
    cents = cents or 0
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"
