"""Forecast the statement line items (sub-metrics) underneath each parent metric.

Line items are matched across parents only by normalized name. Order indexes keep a
parent's items in statement order but never pair items of different parents.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from forecastcore.core.errors import InvalidIdentifierError
from forecastcore.models.enums import ValueKind
from forecastcore.services.allocation import allocate_by_pattern
from forecastcore.services.baseline import monthly_series
from forecastcore.services.drivers import MetricValue
from forecastcore.services.metric_schema import MetricDefinition
from forecastcore.services.sub_metrics import (
    SubMetricBaseline,
    index_by_name,
    month_label,
    normalize_name,
    parse_sub_metric_key,
    sub_metrics_by_parent,
)
from forecastcore.services.weights import MONTH_NUMBERS, QUARTER_MONTHS
from forecastcore.utils.decimal_math import HUNDRED, ZERO, money, pct, ratio_pct, to_decimal, within


logger = logging.getLogger(__name__)

PERCENT_MATCH_TOLERANCE = Decimal("0.01")
TRIO_PARENTS = ("total_sales", "gp_percent", "gp_net")
FLOW_UP_TRIO = ("total_sales", "gp_net")
# Dollar expense parent -> its percent-of-GP twin.
EXPENSE_TWINS = (
    ("sales_expense", "sales_expense_percent"),
    ("semi_fixed_expense", "semi_fixed_expense_percent"),
)

Series = dict[int, Decimal]


@dataclass(frozen=True)
class SubMetricOverride:
    sub_metric_key: str
    parent_key: str
    overridden_annual_value: Decimal


@dataclass(frozen=True)
class SubMetricForecast:
    key: str
    label: str
    parent_key: str
    order_index: int
    value_kind: ValueKind
    monthly_values: dict[str, Decimal]
    quarterly_values: dict[int, Decimal]
    annual_value: Decimal
    baseline_annual_value: Decimal
    is_overridden: bool = False
    is_synthesized: bool = False
    # True when the values come from an override on this item or on one it is derived from.
    driven_by_override: bool = False


@dataclass(frozen=True)
class SubMetricInputs:
    metrics: tuple[MetricDefinition, ...]
    forecast_year: int
    monthly_baseline: dict[str, dict[str, Decimal]]
    sub_metric_baselines: tuple[SubMetricBaseline, ...] = ()
    overrides: tuple[SubMetricOverride, ...] = ()
    percent_tolerance: Decimal = PERCENT_MATCH_TOLERANCE

    @property
    def baseline_year(self) -> int:
        return self.forecast_year - 1


@dataclass
class _Line:
    """Working state for one line item while its parent group is being forecast."""

    baseline: SubMetricBaseline
    is_percentage: bool
    monthly: Series = field(default_factory=dict)
    annual_override: Decimal | None = None
    is_overridden: bool = False
    is_synthesized: bool = False
    driven_by_override: bool = False
    # (numerator, denominator) series whose sums give this percentage's period values.
    ratio_pair: tuple[Series, Series] | None = None


def index_overrides(overrides: tuple[SubMetricOverride, ...] | list[SubMetricOverride]) -> dict[str, Decimal]:
    """Sub-metric key -> override value; unparseable keys are skipped and logged."""
    indexed: dict[str, Decimal] = {}
    for item in overrides:
        try:
            parse_sub_metric_key(item.sub_metric_key)
        except InvalidIdentifierError as exc:
            logger.warning("Skipping sub-metric override: %s", exc)
            continue
        indexed[item.sub_metric_key] = to_decimal(item.overridden_annual_value)
    return indexed


def synthesize_percent_sub_metrics(
    baselines: list[SubMetricBaseline],
    metrics: tuple[MetricDefinition, ...],
    parent_gp_net: dict[str, Decimal],
) -> list[SubMetricBaseline]:
    """Percent-of-GP line items for expense parents that only carry dollar line items.

    Each synthesized month is ``dollar / GP Net × 100``, with GP Net taken from the GP
    Net line items of that month when the statement has them, else ``parent_gp_net``.
    """
    schema_keys = {metric.key for metric in metrics}
    grouped = sub_metrics_by_parent(baselines)
    gp_net_items = grouped.get("gp_net", [])
    synthesized: list[SubMetricBaseline] = []
    for dollar_key, percent_key in EXPENSE_TWINS:
        if percent_key not in schema_keys or dollar_key not in grouped:
            continue
        existing = index_by_name(grouped.get(percent_key, []))
        for item in grouped[dollar_key]:
            if item.normalized_name in existing:
                continue
            monthly: dict[str, Decimal] = {}
            for month, value in item.monthly_values.items():
                present = [line for line in gp_net_items if month in line.monthly_values]
                if present:
                    gp_net = sum((line.value_for(month) for line in present), ZERO)
                else:
                    gp_net = parent_gp_net.get(month, ZERO)
                monthly[month] = ratio_pct(value, gp_net)
            synthesized.append(
                SubMetricBaseline(
                    parent_key=percent_key,
                    name=item.name,
                    order_index=item.order_index,
                    monthly_values=monthly,
                )
            )
    return synthesized


class _SubMetricRun:
    def __init__(
        self,
        inputs: SubMetricInputs,
        resolution: dict[str, dict[str, MetricValue]],
        frozen: dict[str, list[SubMetricForecast]],
    ) -> None:
        self.inputs = inputs
        self.by_key = {metric.key: metric for metric in inputs.metrics}
        self.frozen = frozen
        self.overrides = index_overrides(inputs.overrides)
        self.forecast = {
            key: {
                number: resolution.get(month_label(inputs.forecast_year, number), {}).get(
                    key, MetricValue(ZERO, ZERO)
                ).value
                for number in MONTH_NUMBERS
            }
            for key in self.by_key
        }
        self.baseline = {
            key: monthly_series(inputs.monthly_baseline, key, inputs.baseline_year) for key in self.by_key
        }
        self.groups, self.synthesized_keys = self._group_baselines()
        self.lines: dict[str, list[_Line]] = {}

    def _group_baselines(self) -> tuple[dict[str, list[SubMetricBaseline]], set[str]]:
        items: list[SubMetricBaseline] = []
        for item in self.inputs.sub_metric_baselines:
            if item.parent_key in self.by_key:
                items.append(item)
            else:
                logger.debug("Sub-metric %s has no parent %s in this schema", item.key, item.parent_key)

        parent_gp_net = {
            month: values.get("gp_net", ZERO) for month, values in self.inputs.monthly_baseline.items()
        }
        synthesized = synthesize_percent_sub_metrics(items, self.inputs.metrics, parent_gp_net)
        return sub_metrics_by_parent(items + synthesized), {item.key for item in synthesized}

    # -- per-line primitives -------------------------------------------------

    def _baseline_series(self, item: SubMetricBaseline) -> Series:
        return {
            number: item.value_for(month_label(self.inputs.baseline_year, number)) for number in MONTH_NUMBERS
        }

    def _new_line(self, item: SubMetricBaseline) -> _Line:
        metric = self.by_key[item.parent_key]
        line = _Line(
            baseline=item,
            is_percentage=metric.is_percentage,
            is_synthesized=item.key in self.synthesized_keys,
        )
        if item.key in self.overrides:
            line.annual_override = self.overrides[item.key]
        return line

    def _scale(self, line: _Line) -> Series:
        """Follow the parent's forecast/baseline ratio month by month."""
        parent_key = line.baseline.parent_key
        parent_forecast = self.forecast[parent_key]
        parent_baseline = self.baseline[parent_key]
        own = self._baseline_series(line.baseline)
        scaled: Series = {}
        for number in MONTH_NUMBERS:
            base = parent_baseline[number]
            value = own[number]
            if base == ZERO:
                scaled[number] = value
            elif line.is_percentage and within(
                parent_forecast[number], pct(base), self.inputs.percent_tolerance
            ):
                scaled[number] = value
            else:
                scaled[number] = value * parent_forecast[number] / base
        return scaled

    def _apply_own_override(self, line: _Line, pattern: list[Decimal] | None = None) -> None:
        value = line.annual_override
        if line.is_percentage:
            line.monthly = {number: value for number in MONTH_NUMBERS}
        else:
            if pattern is None:
                own = self._baseline_series(line.baseline)
                pattern = [own[number] for number in MONTH_NUMBERS]
            line.monthly = dict(zip(MONTH_NUMBERS, allocate_by_pattern(value, pattern)))
        line.is_overridden = True
        line.driven_by_override = True

    def _standalone(self, line: _Line) -> None:
        if line.annual_override is not None:
            self._apply_own_override(line)
        else:
            line.monthly = self._scale(line)

    # -- parent groups -------------------------------------------------------

    def _forecast_trio(self) -> None:
        sales_lines = [self._new_line(item) for item in self.groups.get("total_sales", [])]
        percent_lines = [self._new_line(item) for item in self.groups.get("gp_percent", [])]
        gp_lines = [self._new_line(item) for item in self.groups.get("gp_net", [])]

        for line in sales_lines + percent_lines:
            self._standalone(line)

        sales_by_name = {line.baseline.normalized_name: line for line in reversed(sales_lines)}
        percent_by_name = {line.baseline.normalized_name: line for line in reversed(percent_lines)}

        for line in gp_lines:
            name = line.baseline.normalized_name
            sales = sales_by_name.get(name)
            margin = percent_by_name.get(name)
            if line.annual_override is not None:
                self._apply_own_override(line, self._gp_net_pattern(line, sales))
                if sales is not None and margin is not None and margin.annual_override is None:
                    margin.monthly = {
                        number: ratio_pct(line.monthly[number], sales.monthly[number]) for number in MONTH_NUMBERS
                    }
                    margin.driven_by_override = True
            elif sales is not None and margin is not None:
                line.monthly = {
                    number: sales.monthly[number] * margin.monthly[number] / HUNDRED for number in MONTH_NUMBERS
                }
                line.driven_by_override = sales.driven_by_override or margin.driven_by_override
            else:
                line.monthly = self._scale(line)

        gp_by_name = {line.baseline.normalized_name: line for line in reversed(gp_lines)}
        for line in percent_lines:
            name = line.baseline.normalized_name
            sales = sales_by_name.get(name)
            gp_line = gp_by_name.get(name)
            if sales is not None and gp_line is not None:
                line.ratio_pair = (gp_line.monthly, sales.monthly)

        self.lines["total_sales"] = sales_lines
        self.lines["gp_percent"] = percent_lines
        self.lines["gp_net"] = gp_lines

    def _gp_net_pattern(self, line: _Line, sales: _Line | None) -> list[Decimal]:
        """Sales line forecast, else its baseline, else the GP Net line's own baseline."""
        candidates: list[list[Decimal]] = []
        if sales is not None:
            candidates.append([money(sales.monthly[number]) for number in MONTH_NUMBERS])
            sales_baseline = self._baseline_series(sales.baseline)
            candidates.append([sales_baseline[number] for number in MONTH_NUMBERS])
        own = self._baseline_series(line.baseline)
        candidates.append([own[number] for number in MONTH_NUMBERS])
        for pattern in candidates:
            if sum(pattern, ZERO) != ZERO:
                return pattern
        return [ZERO for _ in MONTH_NUMBERS]

    def _forecast_twins(self, dollar_key: str, percent_key: str) -> None:
        gp_net = self.forecast.get("gp_net", {number: ZERO for number in MONTH_NUMBERS})
        dollar_lines = [self._new_line(item) for item in self.groups.get(dollar_key, [])]
        percent_lines = [self._new_line(item) for item in self.groups.get(percent_key, [])]
        dollar_by_name = {line.baseline.normalized_name: line for line in reversed(dollar_lines)}
        percent_by_name = {line.baseline.normalized_name: line for line in reversed(percent_lines)}

        for line in dollar_lines:
            twin = percent_by_name.get(line.baseline.normalized_name)
            if line.annual_override is not None:
                self._apply_own_override(line)
            elif twin is not None and twin.annual_override is not None:
                line.monthly = {
                    number: twin.annual_override * gp_net[number] / HUNDRED for number in MONTH_NUMBERS
                }
                line.driven_by_override = True
            else:
                line.monthly = self._scale(line)

        for line in percent_lines:
            twin = dollar_by_name.get(line.baseline.normalized_name)
            if line.annual_override is not None:
                self._apply_own_override(line)
            elif twin is not None and twin.is_overridden:
                line.monthly = {number: ratio_pct(twin.monthly[number], gp_net[number]) for number in MONTH_NUMBERS}
                line.driven_by_override = True
            else:
                line.monthly = self._scale(line)
            if twin is not None:
                line.ratio_pair = (twin.monthly, gp_net)

        self.lines[dollar_key] = dollar_lines
        self.lines[percent_key] = percent_lines

    def _forecast_standalone(self, parent_key: str) -> None:
        lines = [self._new_line(item) for item in self.groups.get(parent_key, [])]
        for line in lines:
            self._standalone(line)
        self.lines[parent_key] = lines

    def run(self) -> dict[str, list[SubMetricForecast]]:
        if not any(key in self.frozen for key in TRIO_PARENTS):
            self._forecast_trio()
        handled = set(TRIO_PARENTS)

        for pair in EXPENSE_TWINS:
            if not any(key in self.frozen for key in pair):
                self._forecast_twins(*pair)
            else:
                for key in pair:
                    if key not in self.frozen:
                        self._forecast_standalone(key)
            handled.update(pair)

        for metric in self.inputs.metrics:
            if metric.key not in handled and metric.key not in self.frozen:
                self._forecast_standalone(metric.key)

        results: dict[str, list[SubMetricForecast]] = {}
        for metric in self.inputs.metrics:
            if metric.key in self.frozen:
                results[metric.key] = list(self.frozen[metric.key])
            elif self.lines.get(metric.key):
                results[metric.key] = [self._finish(metric, line) for line in self.lines[metric.key]]

        known = {item.key for items in results.values() for item in items}
        for key in self.overrides:
            if key not in known:
                logger.warning("Override for unknown sub-metric %s ignored", key)
        return results

    # -- output --------------------------------------------------------------

    def _period_value(self, metric: MetricDefinition, line: _Line, numbers: tuple[int, ...]) -> Decimal:
        values = [line.monthly[number] for number in numbers]
        if not line.is_percentage:
            return money(sum((money(value) for value in values), ZERO))
        if line.is_overridden:
            return pct(line.annual_override)
        quantized = [pct(value) for value in values]
        if all(value == quantized[0] for value in quantized):
            return quantized[0]
        if line.ratio_pair is not None:
            numerator, denominator = line.ratio_pair
            numerator_total = sum((money(numerator[number]) for number in numbers), ZERO)
            denominator_total = sum((money(denominator[number]) for number in numbers), ZERO)
            if denominator_total != ZERO:
                return pct(ratio_pct(numerator_total, denominator_total))
        rule = metric.calculation
        if rule is not None and rule.denominator is not None:
            weights = [self.forecast[rule.denominator][number] for number in numbers]
            weight_total = sum(weights, ZERO)
            if weight_total != ZERO:
                return pct(sum((value * w for value, w in zip(values, weights)), ZERO) / weight_total)
        return pct(sum(values, ZERO) / Decimal(len(values)))

    def _baseline_annual(self, metric: MetricDefinition, line: _Line) -> Decimal:
        own = self._baseline_series(line.baseline)
        if not metric.is_percentage:
            return money(sum(own.values(), ZERO))
        rule = metric.calculation
        values = [own[number] for number in MONTH_NUMBERS]
        if rule is not None and rule.denominator is not None:
            weights = [self.baseline[rule.denominator][number] for number in MONTH_NUMBERS]
            weight_total = sum(weights, ZERO)
            if weight_total != ZERO:
                return pct(sum((value * w for value, w in zip(values, weights)), ZERO) / weight_total)
        return pct(sum(values, ZERO) / Decimal(len(values)))

    def _finish(self, metric: MetricDefinition, line: _Line) -> SubMetricForecast:
        quantize = pct if line.is_percentage else money
        monthly = {
            month_label(self.inputs.forecast_year, number): quantize(line.monthly[number]) for number in MONTH_NUMBERS
        }
        return SubMetricForecast(
            key=line.baseline.key,
            label=line.baseline.name,
            parent_key=metric.key,
            order_index=line.baseline.order_index,
            value_kind=metric.value_kind,
            monthly_values=monthly,
            quarterly_values={
                quarter: self._period_value(metric, line, months) for quarter, months in QUARTER_MONTHS.items()
            },
            annual_value=self._period_value(metric, line, MONTH_NUMBERS),
            baseline_annual_value=self._baseline_annual(metric, line),
            is_overridden=line.is_overridden,
            is_synthesized=line.is_synthesized,
            driven_by_override=line.driven_by_override,
        )


def forecast_sub_metrics(
    inputs: SubMetricInputs,
    resolution: dict[str, dict[str, MetricValue]],
    frozen: dict[str, list[SubMetricForecast]] | None = None,
) -> dict[str, list[SubMetricForecast]]:
    """Forecast every line item against a parent resolution.

    Parents listed in ``frozen`` keep the forecasts they already have; the engine uses
    this once a parent's total has been anchored to its line items.
    """
    return _SubMetricRun(inputs, resolution, frozen or {}).run()


def flow_up_parents(
    forecasts: dict[str, list[SubMetricForecast]],
    metrics: tuple[MetricDefinition, ...],
) -> list[str]:
    """Dollar parents whose totals must become the sum of their line items.

    Any override in the Sales / GP % / GP Net group moves both Sales and GP Net; other
    dollar parents flow up only when one of their own items is override-driven.
    """
    trio_driven = any(item.driven_by_override for key in TRIO_PARENTS for item in forecasts.get(key, []))
    parents: list[str] = []
    for metric in metrics:
        items = forecasts.get(metric.key, [])
        if metric.is_percentage or not items:
            continue
        if metric.key in FLOW_UP_TRIO:
            if trio_driven:
                parents.append(metric.key)
        elif any(item.driven_by_override for item in items):
            parents.append(metric.key)
    return parents


def sub_metric_sums(
    forecasts: dict[str, list[SubMetricForecast]],
    parent_keys: list[str],
    forecast_year: int,
) -> dict[str, dict[str, Decimal]]:
    """Month -> parent key -> sum of that parent's line items."""
    sums: dict[str, dict[str, Decimal]] = {}
    for number in MONTH_NUMBERS:
        month = month_label(forecast_year, number)
        month_sums: dict[str, Decimal] = {}
        for key in parent_keys:
            month_sums[key] = money(sum((item.monthly_values.get(month, ZERO) for item in forecasts.get(key, [])), ZERO))
        sums[month] = month_sums
    return sums


def line_item_lookup(forecasts: dict[str, list[SubMetricForecast]], parent_key: str, name: str) -> SubMetricForecast | None:
    wanted = normalize_name(name)
    for item in forecasts.get(parent_key, []):
        if normalize_name(item.label) == wanted:
            return item
    return None
