from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

from forecastcore.utils.decimal_math import HUNDRED, WEIGHT_QUANT, ZERO, money, weight


def allocate_by_pattern(total: Decimal, pattern: list[Decimal]) -> list[Decimal]:
    """Split ``total`` across slots in proportion to ``pattern``.

    Falls back to equal shares when the pattern sums to zero. Every share but the last is
    rounded to cents and the last slot takes the remainder, so the shares always add back
    to ``money(total)`` exactly.
    """
    if not pattern:
        return []

    total_amount = money(total)
    pattern_total = sum(pattern, ZERO)
    if pattern_total == ZERO:
        proportions = [Decimal(1) / Decimal(len(pattern))] * len(pattern)
    else:
        proportions = [value / pattern_total for value in pattern]

    running = money(0)
    shares: list[Decimal] = []
    for index, proportion in enumerate(proportions):
        if index < len(proportions) - 1:
            share = money(total_amount * proportion)
            running = money(running + share)
        else:
            share = money(total_amount - running)
        shares.append(share)
    return shares


def allocate_weight_points(total: Decimal, basis: list[Decimal]) -> list[Decimal]:
    """Split weight points across months proportionally, never producing negative shares.

    Uses largest-remainder rounding at 0.01 so the result sums to ``weight(total)``.
    Ties go to the earlier slot.
    """
    if not basis:
        return []

    target = weight(total)
    if target <= ZERO:
        return [weight(0) for _ in basis]

    basis_total = sum(basis, ZERO)
    if basis_total == ZERO:
        raw = [target / Decimal(len(basis)) for _ in basis]
    else:
        raw = [target * value / basis_total for value in basis]

    floored = [value.quantize(WEIGHT_QUANT, rounding=ROUND_FLOOR) for value in raw]
    leftover_cents = int(((target - sum(floored, ZERO)) / WEIGHT_QUANT).to_integral_value())
    order = sorted(range(len(raw)), key=lambda index: (-(raw[index] - floored[index]), index))
    for index in order[:leftover_cents]:
        floored[index] = floored[index] + WEIGHT_QUANT
    return floored


def equal_weight() -> Decimal:
    return HUNDRED / Decimal(12)
