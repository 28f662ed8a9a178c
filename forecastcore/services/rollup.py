from __future__ import annotations

from decimal import Decimal

from forecastcore.models.enums import ValueSource
from forecastcore.services.drivers import MetricValue
from forecastcore.services.metric_schema import MetricDefinition
from forecastcore.services.sub_metrics import month_label
from forecastcore.services.weights import MONTH_NUMBERS, QUARTER_MONTHS
from forecastcore.utils.decimal_math import HUNDRED, ZERO, money, pct, ratio_pct, within


UNIFORM_VALUE_TOLERANCE = Decimal("0.01")


def _uniform_value(cells: list[MetricValue], tolerance: Decimal) -> Decimal | None:
    """The shared value when every month is locked alike, or every month is stored alike."""
    first = cells[0].value
    if all(cell.is_locked for cell in cells) and all(within(cell.value, first, tolerance) for cell in cells):
        return first
    if all(cell.source == ValueSource.stored for cell in cells) and all(
        within(cell.value, first, tolerance) for cell in cells
    ):
        return first
    return None


def _sum_field(cells_by_key: dict[str, list[MetricValue]], key: str, attr: str) -> Decimal:
    return sum((getattr(cell, attr) for cell in cells_by_key.get(key, [])), ZERO)


def _percentage_value(
    metric: MetricDefinition,
    cells_by_key: dict[str, list[MetricValue]],
    attr: str,
) -> Decimal:
    rule = metric.calculation
    if rule is not None and rule.numerator is not None and rule.denominator is not None:
        return pct(
            ratio_pct(
                _sum_field(cells_by_key, rule.numerator, attr),
                _sum_field(cells_by_key, rule.denominator, attr),
            )
        )
    cells = cells_by_key.get(metric.key, [])
    if not cells:
        return pct(0)
    return pct(_sum_field(cells_by_key, metric.key, attr) / Decimal(len(cells)))


def rollup_period(
    monthly: dict[str, dict[str, MetricValue]],
    months: list[str],
    metrics: tuple[MetricDefinition, ...],
    tolerance: Decimal = UNIFORM_VALUE_TOLERANCE,
) -> dict[str, MetricValue]:
    """Roll a set of months up into one value per metric.

    Dollar metrics sum. Percentage metrics are the ratio of their summed numerator and
    denominator, except when every month holds the same locked (or the same stored)
    value, which is then kept as is.
    """
    cells_by_key: dict[str, list[MetricValue]] = {}
    for month in months:
        for key, cell in monthly.get(month, {}).items():
            cells_by_key.setdefault(key, []).append(cell)

    result: dict[str, MetricValue] = {}
    for metric in metrics:
        cells = cells_by_key.get(metric.key, [])
        is_locked = any(cell.is_locked for cell in cells)
        if not metric.is_percentage:
            result[metric.key] = MetricValue(
                value=money(_sum_field(cells_by_key, metric.key, "value")),
                baseline_value=money(_sum_field(cells_by_key, metric.key, "baseline_value")),
                is_locked=is_locked,
            )
            continue

        value = _uniform_value(cells, tolerance) if len(cells) == len(months) and cells else None
        if value is None:
            value = _percentage_value(metric, cells_by_key, "value")
        result[metric.key] = MetricValue(
            value=pct(value),
            baseline_value=_percentage_value(metric, cells_by_key, "baseline_value"),
            is_locked=is_locked,
        )
    return result


def rollup_quarters(
    monthly: dict[str, dict[str, MetricValue]],
    metrics: tuple[MetricDefinition, ...],
    year: int,
    tolerance: Decimal = UNIFORM_VALUE_TOLERANCE,
) -> dict[int, dict[str, MetricValue]]:
    return {
        quarter: rollup_period(monthly, [month_label(year, number) for number in numbers], metrics, tolerance)
        for quarter, numbers in QUARTER_MONTHS.items()
    }


def rollup_annual(
    monthly: dict[str, dict[str, MetricValue]],
    metrics: tuple[MetricDefinition, ...],
    year: int,
    tolerance: Decimal = UNIFORM_VALUE_TOLERANCE,
) -> dict[str, MetricValue]:
    return rollup_period(monthly, [month_label(year, number) for number in MONTH_NUMBERS], metrics, tolerance)


def implied_growth(forecast_sales: Decimal, baseline_sales: Decimal) -> Decimal:
    """Growth % implied by annual forecast sales against the baseline year; 0 without a baseline."""
    if baseline_sales == ZERO:
        return pct(0)
    return pct((forecast_sales / baseline_sales - 1) * HUNDRED)
