from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def round2(value: Decimal) -> Decimal:
    """Round half-up to whole cents."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps the short repr, Decimal(float) would keep binary noise
        return Decimal(str(value))
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def parse_percentage(raw: object) -> Decimal:
    """
    Parse a percentage typed into the split form.

    Empty or unparsable input counts as 0; the result is clamped to [0, 100].
    """
    if raw is None:
        return Decimal(0)
    try:
        value = to_decimal(raw)
    except ValueError:
        return Decimal(0)
    if not value.is_finite():
        return Decimal(0)
    return min(max(value, Decimal(0)), HUNDRED)

