from decimal import Decimal

from forecastcore.services.allocation import equal_weight
from forecastcore.services.baseline import build_annual_baseline, build_monthly_baseline
from forecastcore.services.drivers import DriverInputs, ForecastEntryInput, resolve_monthly_values
from forecastcore.services.metric_schema import GMC_CHEVROLET_METRICS
from forecastcore.services.sub_metric_forecast import (
    SubMetricInputs,
    SubMetricOverride,
    flow_up_parents,
    forecast_sub_metrics,
    line_item_lookup,
    sub_metric_sums,
    synthesize_percent_sub_metrics,
)
from forecastcore.services.sub_metrics import RawEntry, format_sub_metric_key, month_label, split_raw_entries
from forecastcore.services.weights import MONTH_NUMBERS
from forecastcore.utils.decimal_math import money, pct


# Counter Retail sales pattern: Jan 10%, Feb 8%, then 8.2% for each remaining month.
COUNTER_SALES = {1: Decimal("10000"), 2: Decimal("8000")}
PARENT_MONTH = {
    "total_sales": Decimal("100000"),
    "gp_net": Decimal("60000"),
    "sales_expense": Decimal("12000"),
    "total_fixed_expense": Decimal("20000"),
}

CR_SALES = format_sub_metric_key("total_sales", 1, "Counter Retail")
CR_GP_NET = format_sub_metric_key("gp_net", 1, "Counter Retail")
CR_GP_PERCENT = format_sub_metric_key("gp_percent", 1, "Counter Retail")


def _rows(*, with_trio: bool = True, extra: dict[str, Decimal] | None = None) -> list[RawEntry]:
    rows: list[RawEntry] = []
    for number in MONTH_NUMBERS:
        month = month_label(2025, number)
        for key, value in PARENT_MONTH.items():
            rows.append(RawEntry(month, key, value))
        if with_trio:
            sales = COUNTER_SALES.get(number, Decimal("8200"))
            rows.append(RawEntry(month, CR_SALES, sales))
            rows.append(RawEntry(month, CR_GP_NET, sales * Decimal("0.4")))
            rows.append(RawEntry(month, CR_GP_PERCENT, Decimal("40")))
        for key, value in (extra or {}).items():
            rows.append(RawEntry(month, key, value))
    return rows


def _forecast(
    rows: list[RawEntry],
    overrides: tuple[SubMetricOverride, ...] = (),
    entries: tuple[ForecastEntryInput, ...] = (),
):
    parents, subs = split_raw_entries(rows)
    monthly = build_monthly_baseline(parents, subs, GMC_CHEVROLET_METRICS)
    resolution = resolve_monthly_values(
        DriverInputs(
            metrics=GMC_CHEVROLET_METRICS,
            forecast_year=2026,
            monthly_baseline=monthly,
            annual_baseline=build_annual_baseline(parents, subs, GMC_CHEVROLET_METRICS),
            weights={number: equal_weight() for number in MONTH_NUMBERS},
            entries=entries,
        )
    )
    inputs = SubMetricInputs(
        metrics=GMC_CHEVROLET_METRICS,
        forecast_year=2026,
        monthly_baseline=monthly,
        sub_metric_baselines=tuple(subs),
        overrides=overrides,
    )
    return forecast_sub_metrics(inputs, resolution)


def _override(key: str, value: str) -> SubMetricOverride:
    return SubMetricOverride(sub_metric_key=key, parent_key=key.split(":")[1], overridden_annual_value=Decimal(value))


def test_no_override_keeps_line_items_at_baseline() -> None:
    forecasts = _forecast(_rows())
    sales = line_item_lookup(forecasts, "total_sales", "Counter Retail")
    assert sales.monthly_values["2026-01"] == money("10000.00")
    assert sales.annual_value == money("100000.00")
    assert sales.baseline_annual_value == money("100000.00")
    assert flow_up_parents(forecasts, GMC_CHEVROLET_METRICS) == []


def test_gp_net_override_follows_the_matching_sales_pattern() -> None:
    forecasts = _forecast(_rows(), overrides=(_override(CR_GP_NET, "50000"),))
    gp_net = line_item_lookup(forecasts, "gp_net", "Counter Retail")
    assert gp_net.is_overridden
    assert gp_net.monthly_values["2026-01"] == money("5000.00")
    assert gp_net.monthly_values["2026-02"] == money("4000.00")
    assert gp_net.annual_value == money("50000.00")


def test_gp_net_override_derives_gp_percent_from_annual_totals() -> None:
    forecasts = _forecast(_rows(), overrides=(_override(CR_GP_NET, "50000"),))
    margin = line_item_lookup(forecasts, "gp_percent", "Counter Retail")
    assert not margin.is_overridden
    assert margin.driven_by_override
    assert margin.monthly_values["2026-01"] == pct("50")
    assert margin.annual_value == pct("50")


def test_gp_net_override_flows_up_to_sales_and_gp_net() -> None:
    forecasts = _forecast(_rows(), overrides=(_override(CR_GP_NET, "50000"),))
    parents = flow_up_parents(forecasts, GMC_CHEVROLET_METRICS)
    assert parents == ["total_sales", "gp_net"]
    sums = sub_metric_sums(forecasts, parents, 2026)
    assert sums["2026-01"]["gp_net"] == money("5000.00")
    assert sums["2026-01"]["total_sales"] == money("10000.00")


def test_gp_net_is_sales_times_margin_without_override() -> None:
    forecasts = _forecast(_rows(), overrides=(_override(CR_GP_PERCENT, "45"),))
    margin = line_item_lookup(forecasts, "gp_percent", "Counter Retail")
    gp_net = line_item_lookup(forecasts, "gp_net", "Counter Retail")
    assert margin.monthly_values["2026-03"] == pct("45")
    assert margin.annual_value == pct("45")
    assert gp_net.monthly_values["2026-01"] == money("4500.00")
    assert gp_net.driven_by_override


def test_percentage_line_ignores_phantom_parent_variance() -> None:
    forecasts = _forecast(_rows())
    margin = line_item_lookup(forecasts, "gp_percent", "Counter Retail")
    assert all(value == pct("40") for value in margin.monthly_values.values())


def test_percentage_line_scales_with_a_moved_parent() -> None:
    entries = (ForecastEntryInput("2026-01", "gp_percent", Decimal("66"), is_locked=True),)
    forecasts = _forecast(_rows(), entries=entries)
    margin = line_item_lookup(forecasts, "gp_percent", "Counter Retail")
    assert margin.monthly_values["2026-01"] == pct("44")
    assert margin.monthly_values["2026-02"] == pct("40")


def test_zero_baseline_dollar_override_splits_evenly() -> None:
    shop_supplies = format_sub_metric_key("total_fixed_expense", 1, "Shop Supplies")
    rows = _rows(with_trio=False, extra={shop_supplies: Decimal("0")})
    forecasts = _forecast(rows, overrides=(_override(shop_supplies, "12000"),))
    item = line_item_lookup(forecasts, "total_fixed_expense", "Shop Supplies")
    assert set(item.monthly_values.values()) == {money("1000.00")}
    assert item.annual_value == money("12000.00")
    assert flow_up_parents(forecasts, GMC_CHEVROLET_METRICS) == ["total_fixed_expense"]


def test_dollar_only_expense_lines_get_synthesized_percent_twins() -> None:
    advertising = format_sub_metric_key("sales_expense", 1, "Advertising")
    rows = _rows(with_trio=False, extra={advertising: Decimal("1200")})
    forecasts = _forecast(rows)
    twin = line_item_lookup(forecasts, "sales_expense_percent", "Advertising")
    assert twin.is_synthesized
    assert twin.monthly_values["2026-01"] == pct("2")


def test_percent_override_on_synthesized_twin_drives_the_dollar_line() -> None:
    advertising = format_sub_metric_key("sales_expense", 1, "Advertising")
    rows = _rows(with_trio=False, extra={advertising: Decimal("1200")})
    percent_key = format_sub_metric_key("sales_expense_percent", 1, "Advertising")
    forecasts = _forecast(rows, overrides=(_override(percent_key, "3"),))
    dollar = line_item_lookup(forecasts, "sales_expense", "Advertising")
    assert dollar.monthly_values["2026-01"] == money("1800.00")
    assert dollar.driven_by_override
    assert "sales_expense" in flow_up_parents(forecasts, GMC_CHEVROLET_METRICS)


def test_synthesis_prefers_gp_net_line_items_over_parent() -> None:
    _, subs = split_raw_entries(
        [
            RawEntry("2025-01", format_sub_metric_key("gp_net", 1, "Counter Retail"), Decimal("4000")),
            RawEntry("2025-01", format_sub_metric_key("sales_expense", 1, "Advertising"), Decimal("400")),
            RawEntry("2025-02", format_sub_metric_key("sales_expense", 1, "Advertising"), Decimal("600")),
        ]
    )
    synthesized = synthesize_percent_sub_metrics(subs, GMC_CHEVROLET_METRICS, {"2025-02": Decimal("6000")})
    assert len(synthesized) == 1
    assert synthesized[0].parent_key == "sales_expense_percent"
    assert synthesized[0].monthly_values == {"2025-01": Decimal("10"), "2025-02": Decimal("10")}


def test_override_for_unknown_line_item_is_ignored(caplog) -> None:
    missing = format_sub_metric_key("gp_net", 9, "Nope")
    forecasts = _forecast(_rows(), overrides=(_override(missing, "100"),))
    assert line_item_lookup(forecasts, "gp_net", "Nope") is None
    assert "unknown sub-metric" in caplog.text
