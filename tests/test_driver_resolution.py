from decimal import Decimal

from forecastcore.models.enums import ValueSource
from forecastcore.services.allocation import equal_weight
from forecastcore.services.baseline import build_annual_baseline, build_monthly_baseline
from forecastcore.services.drivers import (
    DriverInputs,
    DriverSettings,
    ForecastEntryInput,
    fast_path_allowed,
    index_pinned_entries,
    resolve_monthly_values,
    solve_triangle,
)
from forecastcore.services.metric_schema import GMC_CHEVROLET_METRICS
from forecastcore.services.sub_metrics import RawEntry, month_label
from forecastcore.services.weights import MONTH_NUMBERS
from forecastcore.utils.decimal_math import money, pct


BASELINE_MONTH = {
    "total_sales": Decimal("100000"),
    "gp_net": Decimal("60000"),
    "sales_expense": Decimal("12000"),
    "semi_fixed_expense": Decimal("3000"),
    "total_fixed_expense": Decimal("20000"),
    "parts_transfer": Decimal("500"),
}


def _inputs(
    *,
    drivers: DriverSettings | None = None,
    entries: tuple[ForecastEntryInput, ...] = (),
) -> DriverInputs:
    rows = [
        RawEntry(month=month_label(2025, number), metric_name=key, value=value)
        for number in MONTH_NUMBERS
        for key, value in BASELINE_MONTH.items()
    ]
    return DriverInputs(
        metrics=GMC_CHEVROLET_METRICS,
        forecast_year=2026,
        monthly_baseline=build_monthly_baseline(rows, [], GMC_CHEVROLET_METRICS),
        annual_baseline=build_annual_baseline(rows, [], GMC_CHEVROLET_METRICS),
        weights={number: equal_weight() for number in MONTH_NUMBERS},
        drivers=drivers or DriverSettings(),
        entries=entries,
    )


def test_baseline_drivers_reproduce_baseline_exactly() -> None:
    inputs = _inputs()
    assert fast_path_allowed(inputs)
    resolved = resolve_monthly_values(inputs)
    for month, values in resolved.items():
        for key, cell in values.items():
            assert cell.value == cell.baseline_value, (month, key)
            assert cell.source == ValueSource.baseline
    assert resolved["2026-01"]["total_sales"].value == money("100000.00")


def test_equal_weights_spread_annual_sales_when_a_driver_moves() -> None:
    inputs = _inputs(drivers=DriverSettings(sales_expense_annual=Decimal("200000")))
    assert not fast_path_allowed(inputs)
    january = resolve_monthly_values(inputs)["2026-01"]
    assert january["total_sales"].value == money("100000.00")
    assert january["total_sales"].source == ValueSource.driver
    assert january["gp_net"].value == money("60000.00")
    # 12000/month at the baseline 20% ratio, scaled up to the 200000 driver
    assert january["sales_expense"].value == money("16666.67")


def test_growth_scales_sales_and_downstream_metrics() -> None:
    january = resolve_monthly_values(_inputs(drivers=DriverSettings(growth_percent=Decimal("10"))))["2026-01"]
    assert january["total_sales"].value == money("110000.00")
    assert january["gp_net"].value == money("66000.00")
    assert january["sales_expense"].value == money("13200.00")
    assert january["semi_fixed_expense"].value == money("3300.00")
    assert january["semi_fixed_expense"].source == ValueSource.scaled
    assert january["total_fixed_expense"].value == money("20000.00")
    assert january["department_profit"].value == money("29500.00")
    assert january["parts_transfer"].value == money("550.00")
    assert january["net"].value == money("30050.00")
    assert january["gp_percent"].value == pct("60")
    assert january["return_on_gross"].value == pct(Decimal("29500") / Decimal("66000") * 100)


def test_locked_gp_percent_increase_lifts_sales() -> None:
    entries = (ForecastEntryInput("2026-01", "gp_percent", Decimal("65"), is_locked=True),)
    january = resolve_monthly_values(_inputs(entries=entries))["2026-01"]
    assert january["total_sales"].value == money("108333.33")
    assert january["gp_net"].value == money("70416.67")
    assert january["gp_percent"].value == pct("65")
    assert january["gp_percent"].is_locked
    assert january["gp_percent"].source == ValueSource.locked


def test_locked_gp_percent_decrease_keeps_sales() -> None:
    entries = (ForecastEntryInput("2026-01", "gp_percent", Decimal("55"), is_locked=True),)
    january = resolve_monthly_values(_inputs(entries=entries))["2026-01"]
    assert january["total_sales"].value == money("100000.00")
    assert january["gp_net"].value == money("55000.00")


def test_locked_value_wins_over_growth_and_weights() -> None:
    entries = (ForecastEntryInput("2026-03", "total_sales", Decimal("150000"), is_locked=True),)
    inputs = _inputs(drivers=DriverSettings(growth_percent=Decimal("25")), entries=entries)
    march = resolve_monthly_values(inputs)["2026-03"]
    assert march["total_sales"].value == money("150000.00")
    assert march["total_sales"].is_locked
    assert march["gp_net"].value == money("90000.00")


def test_stored_entry_is_used_but_not_locked() -> None:
    entries = (ForecastEntryInput("2026-02", "total_sales", Decimal("90000")),)
    february = resolve_monthly_values(_inputs(entries=entries))["2026-02"]
    assert february["total_sales"].value == money("90000.00")
    assert february["total_sales"].source == ValueSource.stored
    assert not february["total_sales"].is_locked


def test_non_driver_entry_on_fast_path_recomputes_dependents() -> None:
    entries = (ForecastEntryInput("2026-01", "parts_transfer", Decimal("1500")),)
    resolved = resolve_monthly_values(_inputs(entries=entries))
    assert resolved["2026-01"]["net"].value == money("26500.00")
    assert resolved["2026-01"]["net"].source == ValueSource.calculated
    assert resolved["2026-02"]["net"].value == money("25500.00")


def test_pinned_sales_expense_percent_drives_sales_expense() -> None:
    entries = (ForecastEntryInput("2026-01", "sales_expense_percent", Decimal("25")),)
    january = resolve_monthly_values(_inputs(entries=entries))["2026-01"]
    assert january["sales_expense"].value == money("15000.00")
    assert january["sales_expense_percent"].value == pct("25")


def test_fixed_expense_driver_scales_baseline_months() -> None:
    inputs = _inputs(drivers=DriverSettings(fixed_expense_annual=Decimal("300000")))
    january = resolve_monthly_values(inputs)["2026-01"]
    assert january["total_fixed_expense"].value == money("25000.00")


def test_resolution_is_idempotent() -> None:
    entries = (ForecastEntryInput("2026-05", "gp_percent", Decimal("62"), is_locked=True),)
    inputs = _inputs(drivers=DriverSettings(growth_percent=Decimal("3.5")), entries=entries)
    assert resolve_monthly_values(inputs) == resolve_monthly_values(inputs)


def test_solve_triangle_from_gp_percent_and_gp_net() -> None:
    result = solve_triangle(
        Decimal("100000"),
        Decimal("60"),
        gp_percent=Decimal("50"),
        gp_net=Decimal("40000"),
    )
    assert result.total_sales == money("80000.00")
    assert result.gp_net == money("40000.00")
    assert result.gp_percent == pct("50")


def test_pinned_entries_skip_other_years_and_empty_values() -> None:
    entries = [
        ForecastEntryInput("2025-01", "total_sales", Decimal("1")),
        ForecastEntryInput("2026-01", "gp_net", None),
        ForecastEntryInput("2026-01", "sub:gp_net:001:Counter Retail", Decimal("5")),
        ForecastEntryInput("2026-01", "total_sales", Decimal("7")),
    ]
    pinned = index_pinned_entries(entries, 2026)
    assert list(pinned) == ["2026-01"]
    assert list(pinned["2026-01"]) == ["total_sales"]
