from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


MONEY_QUANT = Decimal("0.01")
PCT_QUANT = Decimal("0.000001")
WEIGHT_QUANT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def to_decimal(value: Decimal | int | float | str | None, *, default: Decimal = ZERO) -> Decimal:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def money(value: Decimal | int | float | str) -> Decimal:
    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def pct(value: Decimal | int | float | str) -> Decimal:
    return to_decimal(value).quantize(PCT_QUANT, rounding=ROUND_HALF_UP)


def weight(value: Decimal | int | float | str) -> Decimal:
    return to_decimal(value).quantize(WEIGHT_QUANT, rounding=ROUND_HALF_UP)


def ratio_pct(numerator: Decimal, denominator: Decimal) -> Decimal:
    """numerator / denominator * 100, unquantized; 0 when the denominator is 0."""
    if denominator == 0:
        return ZERO
    return (numerator / denominator) * HUNDRED


def within(a: Decimal, b: Decimal, tolerance: Decimal) -> bool:
    return abs(a - b) <= tolerance
