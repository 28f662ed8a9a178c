"""Monthly driver resolution for parent metrics.

Every (month, metric) cell is settled by the first source that applies:

1. a locked entry,
2. a stored (unlocked) entry,
3. the baseline fast path, when no driver has moved off its baseline,
4. the Sales / GP % / GP Net triangle and the expense drivers,
5. the metric's calculation rule over values already resolved this month,
6. the baseline month scaled by growth.

Sub-metric flow-up feeds back in through ``anchors``: parent totals that must equal
their sub-metric sums. Anchors behave like pinned values, but locked and stored
entries still beat them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from forecastcore.models.enums import ValueSource
from forecastcore.services.metric_schema import MetricDefinition, evaluation_order
from forecastcore.services.sub_metrics import is_sub_metric_key, month_label, parse_month
from forecastcore.services.weights import MONTH_NUMBERS
from forecastcore.utils.decimal_math import HUNDRED, ZERO, money, pct, ratio_pct, to_decimal, within


logger = logging.getLogger(__name__)

BASELINE_MATCH_TOLERANCE = Decimal("1.00")
TRIANGLE_KEYS = ("total_sales", "gp_net", "gp_percent")
DRIVER_METRIC_KEYS = frozenset(
    {
        "total_sales",
        "gp_net",
        "gp_percent",
        "sales_expense",
        "sales_expense_percent",
        "total_fixed_expense",
    }
)

Anchors = dict[str, dict[str, Decimal]]


@dataclass(frozen=True)
class ForecastEntryInput:
    month: str
    metric_key: str
    forecast_value: Decimal | None
    is_locked: bool = False


@dataclass(frozen=True)
class DriverSettings:
    growth_percent: Decimal = ZERO
    sales_expense_annual: Decimal | None = None
    fixed_expense_annual: Decimal | None = None


@dataclass(frozen=True)
class MetricValue:
    value: Decimal
    baseline_value: Decimal
    is_locked: bool = False
    source: ValueSource | None = None


@dataclass(frozen=True)
class TriangleResult:
    total_sales: Decimal
    gp_net: Decimal
    gp_percent: Decimal


@dataclass(frozen=True)
class DriverInputs:
    metrics: tuple[MetricDefinition, ...]
    forecast_year: int
    monthly_baseline: dict[str, dict[str, Decimal]]
    annual_baseline: dict[str, Decimal]
    weights: dict[int, Decimal]
    drivers: DriverSettings = field(default_factory=DriverSettings)
    entries: tuple[ForecastEntryInput, ...] = ()
    tolerance: Decimal = BASELINE_MATCH_TOLERANCE

    @property
    def baseline_year(self) -> int:
        return self.forecast_year - 1

    @property
    def growth_factor(self) -> Decimal:
        return Decimal(1) + to_decimal(self.drivers.growth_percent) / HUNDRED

    def baseline_month(self, number: int) -> dict[str, Decimal]:
        return self.monthly_baseline.get(month_label(self.baseline_year, number), {})


def quantize_metric(metric: MetricDefinition, value: Decimal) -> Decimal:
    return pct(value) if metric.is_percentage else money(value)


def driver_at_baseline(driver: Decimal | None, baseline_annual: Decimal, tolerance: Decimal) -> bool:
    """An unset driver, or one within ``tolerance`` of the baseline total, has not moved."""
    if driver is None:
        return True
    return within(to_decimal(driver), baseline_annual, tolerance)


def fast_path_allowed(inputs: DriverInputs) -> bool:
    drivers = inputs.drivers
    if to_decimal(drivers.growth_percent) != ZERO:
        return False
    if not driver_at_baseline(
        drivers.sales_expense_annual,
        inputs.annual_baseline.get("sales_expense", ZERO),
        inputs.tolerance,
    ):
        return False
    return driver_at_baseline(
        drivers.fixed_expense_annual,
        inputs.annual_baseline.get("total_fixed_expense", ZERO),
        inputs.tolerance,
    )


def index_pinned_entries(
    entries: tuple[ForecastEntryInput, ...] | list[ForecastEntryInput],
    forecast_year: int,
) -> dict[str, dict[str, ForecastEntryInput]]:
    """Month -> metric key -> entry, for parent entries that carry a value.

    Entries without a value fall through to computation; entries outside the
    forecast year are ignored.
    """
    pinned: dict[str, dict[str, ForecastEntryInput]] = {}
    for entry in entries:
        year, _ = parse_month(entry.month)
        if year != forecast_year:
            logger.debug("Ignoring entry %s/%s outside forecast year %s", entry.month, entry.metric_key, forecast_year)
            continue
        if entry.forecast_value is None or is_sub_metric_key(entry.metric_key):
            continue
        pinned.setdefault(entry.month, {})[entry.metric_key] = entry
    return pinned


def baseline_ratio(
    month_values: dict[str, Decimal],
    annual_values: dict[str, Decimal],
    numerator: str,
    denominator: str,
) -> Decimal:
    """Month ratio ×100, falling back to the annual ratio when the month has no denominator."""
    month_denominator = month_values.get(denominator, ZERO)
    if month_denominator != ZERO:
        return ratio_pct(month_values.get(numerator, ZERO), month_denominator)
    return ratio_pct(annual_values.get(numerator, ZERO), annual_values.get(denominator, ZERO))


def solve_triangle(
    weighted_sales: Decimal,
    baseline_gp_percent: Decimal,
    *,
    sales: Decimal | None = None,
    gp_percent: Decimal | None = None,
    gp_net: Decimal | None = None,
) -> TriangleResult:
    """Resolve Sales, GP % and GP Net for one month, solving for whichever is not pinned.

    A GP % pinned above the baseline margin lifts sales in proportion; a lower one never
    reduces sales. GP Net is computed from unrounded sales before either is rounded.
    """
    if sales is not None:
        resolved_sales = sales
        target_percent = gp_percent if gp_percent is not None else baseline_gp_percent
    elif gp_percent is not None and gp_net is not None:
        resolved_sales = ratio_pct(gp_net, gp_percent) if gp_percent != ZERO else weighted_sales
        target_percent = gp_percent
    elif gp_percent is not None:
        resolved_sales = weighted_sales
        if baseline_gp_percent > ZERO and gp_percent > baseline_gp_percent:
            resolved_sales = weighted_sales * gp_percent / baseline_gp_percent
        target_percent = gp_percent
    else:
        resolved_sales = weighted_sales
        target_percent = baseline_gp_percent

    resolved_gp_net = gp_net if gp_net is not None else resolved_sales * target_percent / HUNDRED
    sales_value = money(resolved_sales)
    gp_net_value = money(resolved_gp_net)
    if gp_percent is not None:
        gp_percent_value = pct(gp_percent)
    else:
        gp_percent_value = pct(ratio_pct(gp_net_value, sales_value))
    return TriangleResult(total_sales=sales_value, gp_net=gp_net_value, gp_percent=gp_percent_value)


def _pinned_value(
    pins: dict[str, ForecastEntryInput],
    month_anchors: dict[str, Decimal],
    key: str,
) -> Decimal | None:
    entry = pins.get(key)
    if entry is not None:
        return to_decimal(entry.forecast_value)
    if key in month_anchors:
        return to_decimal(month_anchors[key])
    return None


def _month_triangle(
    inputs: DriverInputs,
    number: int,
    pins: dict[str, ForecastEntryInput],
    month_anchors: dict[str, Decimal],
) -> TriangleResult:
    baseline_values = inputs.baseline_month(number)
    annual_sales = inputs.annual_baseline.get("total_sales", ZERO)
    weighted_sales = annual_sales * inputs.growth_factor * inputs.weights[number] / HUNDRED
    baseline_gp_percent = baseline_ratio(baseline_values, inputs.annual_baseline, "gp_net", "total_sales")
    return solve_triangle(
        weighted_sales,
        baseline_gp_percent,
        sales=_pinned_value(pins, month_anchors, "total_sales"),
        gp_percent=_pinned_value(pins, month_anchors, "gp_percent"),
        gp_net=_pinned_value(pins, month_anchors, "gp_net"),
    )


def plan_sales_expense(
    inputs: DriverInputs,
    triangles: dict[int, TriangleResult],
    pinned: dict[str, dict[str, ForecastEntryInput]],
    anchors: Anchors,
) -> dict[int, Decimal]:
    """Unrounded sales expense for every month whose sales expense is not pinned.

    Each month carries GP Net at the baseline sales-expense-to-GP ratio, or at its pinned
    sales expense % when one is set. When the annual driver has moved, the unpinned
    amounts are scaled so that they plus the pinned months add up to the driver.
    """
    planned: dict[int, Decimal] = {}
    held: dict[int, Decimal] = {}
    pinned_total = ZERO
    for number, triangle in triangles.items():
        month = month_label(inputs.forecast_year, number)
        pins = pinned.get(month, {})
        value = _pinned_value(pins, anchors.get(month, {}), "sales_expense")
        if value is not None:
            pinned_total += value
            continue
        percent_pin = pins.get("sales_expense_percent")
        if percent_pin is not None:
            held[number] = triangle.gp_net * to_decimal(percent_pin.forecast_value) / HUNDRED
            pinned_total += held[number]
            continue
        expense_ratio = baseline_ratio(
            inputs.baseline_month(number), inputs.annual_baseline, "sales_expense", "gp_net"
        )
        planned[number] = triangle.gp_net * expense_ratio / HUNDRED

    driver = inputs.drivers.sales_expense_annual
    if driver_at_baseline(driver, inputs.annual_baseline.get("sales_expense", ZERO), inputs.tolerance):
        return {**planned, **held}
    if not planned:
        return held

    remaining = to_decimal(driver) - pinned_total
    unscaled_total = sum(planned.values(), ZERO)
    if unscaled_total == ZERO:
        # No baseline ratio to scale: spread the driver over the open months by weight.
        weight_total = sum((inputs.weights[number] for number in planned), ZERO)
        scaled = {
            number: remaining * inputs.weights[number] / weight_total if weight_total != ZERO else ZERO
            for number in planned
        }
    else:
        scale = max(remaining / unscaled_total, ZERO)
        scaled = {number: value * scale for number, value in planned.items()}
    return {**scaled, **held}


def fixed_expense_for_month(inputs: DriverInputs, number: int) -> Decimal:
    baseline_month = inputs.baseline_month(number).get("total_fixed_expense", ZERO)
    baseline_annual = inputs.annual_baseline.get("total_fixed_expense", ZERO)
    driver = inputs.drivers.fixed_expense_annual
    if driver_at_baseline(driver, baseline_annual, inputs.tolerance):
        return baseline_month
    if baseline_annual == ZERO:
        return to_decimal(driver) * inputs.weights[number] / HUNDRED
    return baseline_month * to_decimal(driver) / baseline_annual


def _month_takes_fast_path(
    allowed: bool,
    pins: dict[str, ForecastEntryInput],
    month_anchors: dict[str, Decimal],
) -> bool:
    if not allowed or month_anchors:
        return False
    return not any(key in DRIVER_METRIC_KEYS for key in pins)


def _resolve_month(
    inputs: DriverInputs,
    number: int,
    order: list[str],
    by_key: dict[str, MetricDefinition],
    pins: dict[str, ForecastEntryInput],
    month_anchors: dict[str, Decimal],
    triangle: TriangleResult | None,
    sales_expense: Decimal | None,
) -> dict[str, MetricValue]:
    baseline_values = inputs.baseline_month(number)
    values: dict[str, Decimal] = {}
    changed: set[str] = set()
    resolved: dict[str, MetricValue] = {}

    for key in order:
        metric = by_key[key]
        baseline_value = quantize_metric(metric, baseline_values.get(key, ZERO))
        entry = pins.get(key)
        rule = metric.calculation

        if entry is not None:
            value = to_decimal(entry.forecast_value)
            source = ValueSource.locked if entry.is_locked else ValueSource.stored
        elif triangle is None:
            # Fast path: baseline unless a pinned dependency moved this month.
            if rule is not None and key != "gp_percent" and changed.intersection(rule.dependencies):
                value = rule.evaluate(values)
                source = ValueSource.calculated
            else:
                value = baseline_value
                source = ValueSource.baseline
        elif key in month_anchors:
            value = month_anchors[key]
            source = ValueSource.flow_up
        elif key in TRIANGLE_KEYS:
            value = getattr(triangle, key)
            source = ValueSource.driver
        elif key == "sales_expense":
            value = sales_expense if sales_expense is not None else ZERO
            source = ValueSource.driver
        elif key == "total_fixed_expense":
            value = fixed_expense_for_month(inputs, number)
            source = ValueSource.driver
        elif rule is not None:
            value = rule.evaluate(values)
            source = ValueSource.calculated
        elif metric.is_percentage:
            value = baseline_value
            source = ValueSource.baseline
        else:
            value = baseline_values.get(key, ZERO) * inputs.growth_factor
            source = ValueSource.scaled

        value = quantize_metric(metric, value)
        values[key] = value
        if value != baseline_value:
            changed.add(key)
        resolved[key] = MetricValue(
            value=value,
            baseline_value=baseline_value,
            is_locked=entry is not None and entry.is_locked,
            source=source,
        )
    return resolved


def resolve_monthly_values(
    inputs: DriverInputs,
    anchors: Anchors | None = None,
) -> dict[str, dict[str, MetricValue]]:
    """Resolve every schema metric for the twelve months of ``inputs.forecast_year``."""
    anchors = anchors or {}
    by_key = {metric.key: metric for metric in inputs.metrics}
    order = evaluation_order(inputs.metrics)
    pinned = index_pinned_entries(inputs.entries, inputs.forecast_year)
    allowed = fast_path_allowed(inputs)

    triangles: dict[int, TriangleResult] = {}
    fast_months: set[int] = set()
    for number in MONTH_NUMBERS:
        month = month_label(inputs.forecast_year, number)
        pins = pinned.get(month, {})
        month_anchors = anchors.get(month, {})
        if _month_takes_fast_path(allowed, pins, month_anchors):
            fast_months.add(number)
            continue
        triangles[number] = _month_triangle(inputs, number, pins, month_anchors)

    planned_expense = plan_sales_expense(inputs, triangles, pinned, anchors)
    if fast_months:
        logger.debug("Months on the baseline fast path: %s", sorted(fast_months))

    resolved: dict[str, dict[str, MetricValue]] = {}
    for number in MONTH_NUMBERS:
        month = month_label(inputs.forecast_year, number)
        resolved[month] = _resolve_month(
            inputs,
            number,
            order,
            by_key,
            pinned.get(month, {}),
            anchors.get(month, {}),
            triangles.get(number),
            planned_expense.get(number),
        )
    return resolved
