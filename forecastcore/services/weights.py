"""Monthly weight vectors: the share of an annual target that lands in each month.

Adjusted weights always sum to 100. The only sanctioned way to change one is
:func:`redistribute_weights`, which keeps locked months fixed and reshapes the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal

from forecastcore.services.allocation import allocate_by_pattern, allocate_weight_points, equal_weight
from forecastcore.utils.decimal_math import HUNDRED, ZERO, to_decimal, weight, within


logger = logging.getLogger(__name__)

MONTH_NUMBERS = tuple(range(1, 13))
QUARTER_MONTHS: dict[int, tuple[int, int, int]] = {
    1: (1, 2, 3),
    2: (4, 5, 6),
    3: (7, 8, 9),
    4: (10, 11, 12),
}
WEIGHT_SUM_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class MonthWeight:
    month_number: int
    original_weight: Decimal
    adjusted_weight: Decimal
    is_locked: bool = False


@dataclass(frozen=True)
class WeightRedistribution:
    weights: list[MonthWeight]
    total: Decimal
    warnings: list[str] = field(default_factory=list)
    tolerance: Decimal = WEIGHT_SUM_TOLERANCE

    @property
    def balanced(self) -> bool:
        return within(self.total, HUNDRED, self.tolerance)


def _validate_month(month_number: int) -> None:
    if month_number not in MONTH_NUMBERS:
        raise ValueError("month_number must be between 1 and 12.")


def _validate_vector(weights: list[MonthWeight]) -> None:
    numbers = sorted(item.month_number for item in weights)
    if numbers != list(MONTH_NUMBERS):
        raise ValueError("A weight vector needs exactly one row for each month 1-12.")


def weights_total(weights: list[MonthWeight]) -> Decimal:
    return sum((to_decimal(item.adjusted_weight) for item in weights), ZERO)


def weights_sum_ok(weights: list[MonthWeight], tolerance: Decimal = WEIGHT_SUM_TOLERANCE) -> bool:
    return within(weights_total(weights), HUNDRED, tolerance)


def weight_map(weights: list[MonthWeight]) -> dict[int, Decimal]:
    """Month number -> adjusted weight, 100/12 for any month without a row."""
    mapping = {number: equal_weight() for number in MONTH_NUMBERS}
    for item in weights:
        mapping[item.month_number] = to_decimal(item.adjusted_weight)
    return mapping


def calculate_initial_weights(prior_year_sales: dict[int, Decimal]) -> list[MonthWeight]:
    """Seed weights from each month's share of prior-year total sales.

    With no prior-year sales every month gets an exact 100/12.
    """
    values = [to_decimal(prior_year_sales.get(number)) for number in MONTH_NUMBERS]
    total = sum(values, ZERO)
    if total == ZERO:
        shares = [equal_weight() for _ in MONTH_NUMBERS]
    else:
        shares = allocate_weight_points(HUNDRED, values)
    return [
        MonthWeight(month_number=number, original_weight=share, adjusted_weight=share, is_locked=False)
        for number, share in zip(MONTH_NUMBERS, shares)
    ]


def redistribute_weights(
    current_weights: list[MonthWeight],
    changed_month: int,
    new_weight: Decimal | int | float | str,
    tolerance: Decimal = WEIGHT_SUM_TOLERANCE,
) -> WeightRedistribution:
    _validate_vector(current_weights)
    _validate_month(changed_month)
    target = weight(new_weight)
    if target < ZERO:
        raise ValueError("new_weight must be >= 0.")

    ordered = sorted(current_weights, key=lambda item: item.month_number)
    locked = [item for item in ordered if item.is_locked and item.month_number != changed_month]
    unlocked = [item for item in ordered if not item.is_locked and item.month_number != changed_month]
    locked_total = sum((to_decimal(item.adjusted_weight) for item in locked), ZERO)
    remaining = HUNDRED - target - locked_total

    adjusted: dict[int, Decimal] = {item.month_number: to_decimal(item.adjusted_weight) for item in ordered}
    adjusted[changed_month] = target
    warnings: list[str] = []

    if not unlocked:
        total = sum(adjusted.values(), ZERO)
        if not within(total, HUNDRED, tolerance):
            warnings.append(
                f"All other months are locked; weights total {total:.2f} instead of 100."
            )
    elif remaining < ZERO:
        for item in unlocked:
            adjusted[item.month_number] = weight(0)
        total = sum(adjusted.values(), ZERO)
        warnings.append(
            f"Locked weights plus month {changed_month} exceed 100; unlocked months set to 0 "
            f"and weights total {total:.2f}."
        )
    else:
        shares = allocate_weight_points(remaining, [to_decimal(item.adjusted_weight) for item in unlocked])
        for item, share in zip(unlocked, shares):
            adjusted[item.month_number] = share

    total = sum(adjusted.values(), ZERO)
    for message in warnings:
        logger.warning("Weight redistribution for month %s: %s", changed_month, message)

    return WeightRedistribution(
        weights=[replace(item, adjusted_weight=adjusted[item.month_number]) for item in ordered],
        total=total,
        warnings=warnings,
        tolerance=tolerance,
    )


def reset_weights(weights: list[MonthWeight]) -> list[MonthWeight]:
    return [
        replace(item, adjusted_weight=to_decimal(item.original_weight), is_locked=False)
        for item in sorted(weights, key=lambda row: row.month_number)
    ]


def distribute_quarter_to_months(
    quarter: int,
    value: Decimal | int | float | str,
    weights: list[MonthWeight],
) -> dict[int, Decimal]:
    """Split a quarter-level edit over its three months by their relative weights."""
    if quarter not in QUARTER_MONTHS:
        raise ValueError("quarter must be between 1 and 4.")
    mapping = weight_map(weights)
    months = QUARTER_MONTHS[quarter]
    shares = allocate_by_pattern(to_decimal(value), [mapping[number] for number in months])
    return dict(zip(months, shares))
