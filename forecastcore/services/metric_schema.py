"""Per-brand metric definitions.

Each brand's statement layout produces a slightly different set of metrics and a
different way of rolling expenses into department profit and net operating profit.
Ordering matters: display, sub-metric pairing and dependency resolution all iterate
the tuple returned by :func:`get_metrics_for_brand` front to back.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from forecastcore.core.errors import ForecastConfigurationError
from forecastcore.models.enums import RuleType, TargetDirection, ValueKind
from forecastcore.utils.decimal_math import ZERO, ratio_pct


@dataclass(frozen=True)
class CalculationRule:
    rule_type: RuleType
    numerator: str | None = None
    denominator: str | None = None
    base: str | None = None
    deductions: tuple[str, ...] = ()
    additions: tuple[str, ...] = ()

    @property
    def dependencies(self) -> tuple[str, ...]:
        if self.rule_type == RuleType.ratio:
            return (self.numerator, self.denominator)
        return (self.base, *self.deductions, *self.additions)

    def evaluate(self, values: dict[str, Decimal]) -> Decimal:
        if self.rule_type == RuleType.ratio:
            return ratio_pct(values.get(self.numerator, ZERO), values.get(self.denominator, ZERO))
        total = values.get(self.base, ZERO)
        for key in self.deductions:
            total -= values.get(key, ZERO)
        for key in self.additions:
            total += values.get(key, ZERO)
        return total


def ratio(numerator: str, denominator: str) -> CalculationRule:
    return CalculationRule(RuleType.ratio, numerator=numerator, denominator=denominator)


def subtract(base: str, deductions: list[str]) -> CalculationRule:
    return CalculationRule(RuleType.subtract, base=base, deductions=tuple(deductions))


def complex_rule(base: str, deductions: list[str], additions: list[str]) -> CalculationRule:
    return CalculationRule(
        RuleType.complex,
        base=base,
        deductions=tuple(deductions),
        additions=tuple(additions),
    )


@dataclass(frozen=True)
class MetricDefinition:
    key: str
    name: str
    value_kind: ValueKind
    target_direction: TargetDirection
    description: str = ""
    calculation: CalculationRule | None = None
    has_sub_metrics: bool = False

    @property
    def is_percentage(self) -> bool:
        return self.value_kind == ValueKind.percentage


def _dollar(
    key: str,
    name: str,
    direction: TargetDirection,
    description: str,
    calculation: CalculationRule | None = None,
    *,
    subs: bool = False,
) -> MetricDefinition:
    return MetricDefinition(
        key=key,
        name=name,
        value_kind=ValueKind.dollar,
        target_direction=direction,
        description=description,
        calculation=calculation,
        has_sub_metrics=subs,
    )


def _percent(
    key: str,
    name: str,
    direction: TargetDirection,
    description: str,
    calculation: CalculationRule,
    *,
    subs: bool = False,
) -> MetricDefinition:
    return MetricDefinition(
        key=key,
        name=name,
        value_kind=ValueKind.percentage,
        target_direction=direction,
        description=description,
        calculation=calculation,
        has_sub_metrics=subs,
    )


ABOVE = TargetDirection.above
BELOW = TargetDirection.below

TOTAL_SALES = _dollar("total_sales", "Total Sales", ABOVE, "Total revenue for the period", subs=True)
GP_NET = _dollar("gp_net", "GP Net", ABOVE, "Gross profit after costs", subs=True)
GP_PERCENT = _percent(
    "gp_percent", "GP %", ABOVE, "Gross profit margin", ratio("gp_net", "total_sales"), subs=True
)
SALES_EXPENSE = _dollar("sales_expense", "Sales Expense", BELOW, "Total sales expenses", subs=True)
SALES_EXPENSE_PERCENT = _percent(
    "sales_expense_percent",
    "Sales Expense %",
    BELOW,
    "Sales expenses as % of GP Net",
    ratio("sales_expense", "gp_net"),
    subs=True,
)
SEMI_FIXED_EXPENSE = _dollar("semi_fixed_expense", "Semi Fixed Expense", BELOW, "Semi-fixed expenses", subs=True)
SEMI_FIXED_EXPENSE_PERCENT = _percent(
    "semi_fixed_expense_percent",
    "Semi Fixed Expense %",
    BELOW,
    "Semi-fixed expenses as % of GP Net",
    ratio("semi_fixed_expense", "gp_net"),
    subs=True,
)
TOTAL_FIXED_EXPENSE = _dollar("total_fixed_expense", "Total Fixed Expense", BELOW, "Total fixed expenses", subs=True)
RETURN_ON_GROSS = _percent(
    "return_on_gross",
    "Return on Gross",
    ABOVE,
    "Department Profit divided by GP Net",
    ratio("department_profit", "gp_net"),
)


GMC_CHEVROLET_METRICS: tuple[MetricDefinition, ...] = (
    TOTAL_SALES,
    GP_NET,
    GP_PERCENT,
    SALES_EXPENSE,
    SALES_EXPENSE_PERCENT,
    SEMI_FIXED_EXPENSE,
    SEMI_FIXED_EXPENSE_PERCENT,
    _dollar(
        "net_selling_gross",
        "Net Selling Gross",
        ABOVE,
        "GP Net less Sales Expense less Semi Fixed Expense",
        subtract("gp_net", ["sales_expense", "semi_fixed_expense"]),
    ),
    TOTAL_FIXED_EXPENSE,
    _dollar(
        "department_profit",
        "Department Profit",
        ABOVE,
        "GP Net less Sales Expense less Semi Fixed Expense less Fixed Expense",
        subtract("gp_net", ["sales_expense", "semi_fixed_expense", "total_fixed_expense"]),
    ),
    _dollar("parts_transfer", "Parts Transfer", ABOVE, "Internal parts transfers"),
    _dollar(
        "net",
        "Net Operating Profit",
        ABOVE,
        "Department Profit plus Parts Transfer",
        complex_rule("department_profit", [], ["parts_transfer"]),
    ),
    RETURN_ON_GROSS,
)

FORD_METRICS: tuple[MetricDefinition, ...] = (
    TOTAL_SALES,
    GP_NET,
    GP_PERCENT,
    SALES_EXPENSE,
    SALES_EXPENSE_PERCENT,
    _dollar(
        "adjusted_selling_gross",
        "Adjusted Selling Gross",
        ABOVE,
        "Net Selling Gross including part gross transfer",
    ),
    _dollar(
        "net_selling_gross",
        "Net Selling Gross",
        ABOVE,
        "GP Net less Sales Expense",
        subtract("gp_net", ["sales_expense"]),
    ),
    TOTAL_FIXED_EXPENSE,
    _dollar(
        "department_profit",
        "Department Profit",
        ABOVE,
        "GP Net less Sales Expense less Fixed Expense",
        subtract("gp_net", ["sales_expense", "total_fixed_expense"]),
    ),
    _dollar("dealer_salary", "Dealer Salary", BELOW, "Dealer salary expense"),
    _dollar(
        "parts_transfer",
        "Parts Transfer",
        ABOVE,
        "Adjusted Selling Gross less Net Selling Gross",
        subtract("adjusted_selling_gross", ["net_selling_gross"]),
    ),
    _dollar(
        "net",
        "Net Operating Profit",
        ABOVE,
        "Department Profit less Dealer Salary less Parts Transfer",
        subtract("department_profit", ["dealer_salary", "parts_transfer"]),
    ),
    RETURN_ON_GROSS,
)

NISSAN_METRICS: tuple[MetricDefinition, ...] = (
    TOTAL_SALES,
    GP_NET,
    GP_PERCENT,
    SALES_EXPENSE,
    SALES_EXPENSE_PERCENT,
    _dollar("total_direct_expenses", "Total Direct Expenses", BELOW, "Total direct expenses", subs=True),
    _dollar(
        "semi_fixed_expense",
        "Semi Fixed Expense",
        BELOW,
        "Total Direct Expenses less Sales Expense",
        subtract("total_direct_expenses", ["sales_expense"]),
    ),
    SEMI_FIXED_EXPENSE_PERCENT,
    _dollar(
        "net_selling_gross",
        "Net Selling Gross",
        ABOVE,
        "GP Net less Sales Expense less Semi Fixed Expense",
        subtract("gp_net", ["sales_expense", "semi_fixed_expense"]),
    ),
    TOTAL_FIXED_EXPENSE,
    _dollar(
        "department_profit",
        "Department Profit",
        ABOVE,
        "GP Net less Sales Expense less Semi Fixed Expense less Fixed Expense",
        subtract("gp_net", ["sales_expense", "semi_fixed_expense", "total_fixed_expense"]),
    ),
    RETURN_ON_GROSS,
)

# Mazda and KTRV statements carry no parts transfer and no net operating profit line.
MAZDA_METRICS: tuple[MetricDefinition, ...] = tuple(
    metric for metric in GMC_CHEVROLET_METRICS if metric.key not in {"parts_transfer", "net"}
)

# Stellantis statements report adjusted selling gross; parts transfer is the gap to NSG.
STELLANTIS_METRICS: tuple[MetricDefinition, ...] = (
    *GMC_CHEVROLET_METRICS[:7],
    _dollar(
        "adjusted_selling_gross",
        "Adjusted Selling Gross",
        ABOVE,
        "Net Selling Gross including part gross transfer",
    ),
    *GMC_CHEVROLET_METRICS[7:10],
    _dollar(
        "parts_transfer",
        "Parts Transfer",
        ABOVE,
        "Adjusted Selling Gross less Net Selling Gross",
        subtract("adjusted_selling_gross", ["net_selling_gross"]),
    ),
    *GMC_CHEVROLET_METRICS[11:],
)

BRAND_SCHEMAS: tuple[tuple[tuple[str, ...], tuple[MetricDefinition, ...]], ...] = (
    (("nissan",), NISSAN_METRICS),
    (("ford",), FORD_METRICS),
    (("mazda", "ktrv"), MAZDA_METRICS),
    (("stellantis", "chrysler", "jeep", "dodge", "ram"), STELLANTIS_METRICS),
)

DEFAULT_METRICS = GMC_CHEVROLET_METRICS


def get_metrics_for_brand(brand: str | None) -> tuple[MetricDefinition, ...]:
    """Return the ordered schema for ``brand``; GMC/Chevrolet (also Honda) by default."""
    if brand:
        lowered = brand.strip().lower()
        for needles, metrics in BRAND_SCHEMAS:
            if any(needle in lowered for needle in needles):
                return metrics
    return DEFAULT_METRICS


def get_metric(metrics: tuple[MetricDefinition, ...], key: str) -> MetricDefinition | None:
    for metric in metrics:
        if metric.key == key:
            return metric
    return None


def metric_keys(metrics: tuple[MetricDefinition, ...]) -> list[str]:
    return [metric.key for metric in metrics]


def validate_schema(metrics: tuple[MetricDefinition, ...]) -> None:
    keys = set(metric_keys(metrics))
    if len(keys) != len(metrics):
        raise ForecastConfigurationError("Duplicate metric keys in schema.", code="duplicate-metric")
    for metric in metrics:
        if metric.calculation is None:
            continue
        missing = [dep for dep in metric.calculation.dependencies if dep not in keys]
        if missing:
            raise ForecastConfigurationError(
                f"Metric '{metric.key}' references keys missing from the schema: {', '.join(missing)}.",
                code="unknown-metric-reference",
                details={"metric": metric.key, "missing": missing},
            )


def evaluation_order(metrics: tuple[MetricDefinition, ...]) -> list[str]:
    """Schema order, with each rule's dependencies moved ahead of it."""
    validate_schema(metrics)
    by_key = {metric.key: metric for metric in metrics}
    ordered: list[str] = []
    visiting: set[str] = set()

    def visit(key: str) -> None:
        if key in ordered:
            return
        if key in visiting:
            raise ForecastConfigurationError(
                f"Calculation rules form a cycle through '{key}'.",
                code="rule-cycle",
            )
        visiting.add(key)
        rule = by_key[key].calculation
        # GP% sits in the Sales / GP Net triangle and is solved alongside them.
        if rule is not None and key != "gp_percent":
            for dep in rule.dependencies:
                visit(dep)
        visiting.discard(key)
        ordered.append(key)

    for metric in metrics:
        visit(metric.key)
    return ordered
