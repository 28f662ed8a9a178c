from __future__ import annotations

import logging
from decimal import Decimal

from forecastcore.services.metric_schema import MetricDefinition, evaluation_order, get_metric
from forecastcore.services.sub_metrics import (
    RawEntry,
    SubMetricBaseline,
    is_sub_metric_key,
    month_label,
    parse_month,
    sub_metrics_by_parent,
)
from forecastcore.utils.decimal_math import ZERO, to_decimal


logger = logging.getLogger(__name__)


def _sum_rows(rows: list[RawEntry]) -> tuple[dict[str, dict[str, Decimal]], dict[str, set[str]]]:
    sums: dict[str, dict[str, Decimal]] = {}
    observed: dict[str, set[str]] = {}
    for row in rows:
        if is_sub_metric_key(row.metric_name):
            continue
        parse_month(row.month)
        if row.value is None:
            continue
        month_sums = sums.setdefault(row.month, {})
        month_sums[row.metric_name] = month_sums.get(row.metric_name, ZERO) + to_decimal(row.value)
        observed.setdefault(row.month, set()).add(row.metric_name)
    return sums, observed


def _backfill_parents(
    values: dict[str, Decimal],
    sub_sums: dict[str, Decimal],
    metrics: tuple[MetricDefinition, ...],
) -> None:
    for parent_key, sub_sum in sub_sums.items():
        metric = get_metric(metrics, parent_key)
        # Percentage parents are recomputed from their ratio rule, never summed.
        if metric is not None and metric.is_percentage:
            continue
        if values.get(parent_key, ZERO) == ZERO:
            logger.debug("Backfilled %s from its sub-metric sum %s", parent_key, sub_sum)
            values[parent_key] = sub_sum


def _fill_derived(
    values: dict[str, Decimal],
    metrics: tuple[MetricDefinition, ...],
    observed: set[str],
    *,
    annual: bool,
) -> None:
    by_key = {metric.key: metric for metric in metrics}
    for key in evaluation_order(metrics):
        metric = by_key[key]
        rule = metric.calculation
        if rule is None:
            continue
        if metric.is_percentage:
            if annual or key not in observed:
                values[key] = rule.evaluate(values)
        elif key not in observed:
            # e.g. parts transfer on statements that only report adjusted selling gross
            values[key] = rule.evaluate(values)


def build_monthly_baseline(
    raw_entries: list[RawEntry],
    sub_metric_baselines: list[SubMetricBaseline],
    metrics: tuple[MetricDefinition, ...],
) -> dict[str, dict[str, Decimal]]:
    """Per-month baseline values keyed by ``YYYY-MM`` then metric key."""
    sums, observed = _sum_rows(raw_entries)
    by_parent = sub_metrics_by_parent(sub_metric_baselines)

    months = set(sums)
    for item in sub_metric_baselines:
        for month in item.monthly_values:
            parse_month(month)
            months.add(month)

    result: dict[str, dict[str, Decimal]] = {}
    for month in sorted(months):
        values = dict(sums.get(month, {}))
        sub_sums: dict[str, Decimal] = {}
        for parent_key, items in by_parent.items():
            present = [item for item in items if month in item.monthly_values]
            if present:
                sub_sums[parent_key] = sum((item.value_for(month) for item in present), ZERO)
        _backfill_parents(values, sub_sums, metrics)
        _fill_derived(values, metrics, observed.get(month, set()), annual=False)
        result[month] = values
    return result


def build_annual_baseline(
    raw_entries: list[RawEntry],
    sub_metric_baselines: list[SubMetricBaseline],
    metrics: tuple[MetricDefinition, ...],
) -> dict[str, Decimal]:
    """Annual baseline totals; percentage metrics are ratios of the annual sums."""
    sums, observed = _sum_rows(raw_entries)
    totals: dict[str, Decimal] = {}
    seen: set[str] = set()
    for month, month_sums in sums.items():
        for key, value in month_sums.items():
            totals[key] = totals.get(key, ZERO) + value
        seen.update(observed.get(month, set()))

    sub_sums: dict[str, Decimal] = {}
    for parent_key, items in sub_metrics_by_parent(sub_metric_baselines).items():
        sub_sums[parent_key] = sum((item.annual_total for item in items), ZERO)
    _backfill_parents(totals, sub_sums, metrics)
    _fill_derived(totals, metrics, seen, annual=True)
    return totals


def monthly_series(
    monthly_baseline: dict[str, dict[str, Decimal]],
    metric_key: str,
    year: int,
) -> dict[int, Decimal]:
    """Month number -> value for one metric across a calendar year (missing months are 0)."""
    return {
        number: monthly_baseline.get(month_label(year, number), {}).get(metric_key, ZERO)
        for number in range(1, 13)
    }
