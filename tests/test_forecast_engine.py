from dataclasses import replace
from decimal import Decimal

import pytest

from forecastcore.core.errors import ForecastConfigurationError, InvalidIdentifierError
from forecastcore.services.allocation import equal_weight
from forecastcore.services.drivers import DriverSettings, ForecastEntryInput
from forecastcore.services.forecast_engine import ForecastSnapshot, apply_entry_to_snapshot, compute_forecast
from forecastcore.services.sub_metric_forecast import SubMetricOverride
from forecastcore.services.sub_metrics import RawEntry, format_sub_metric_key, month_label
from forecastcore.services.weights import MONTH_NUMBERS, MonthWeight
from forecastcore.utils.decimal_math import money


PARENT_MONTH = {
    "total_sales": Decimal("100000"),
    "gp_net": Decimal("60000"),
    "sales_expense": Decimal("12000"),
    "total_fixed_expense": Decimal("20000"),
}
LINES = {
    # name: (sales, gp_net)
    "Counter Retail": (Decimal("40000"), Decimal("16000")),
    "Wholesale": (Decimal("60000"), Decimal("44000")),
}


def _raw_entries(year: int = 2025) -> tuple[RawEntry, ...]:
    rows: list[RawEntry] = []
    for number in MONTH_NUMBERS:
        month = month_label(year, number)
        for key, value in PARENT_MONTH.items():
            rows.append(RawEntry(month, key, value))
        for order, (name, (sales, gp_net)) in enumerate(LINES.items(), start=1):
            rows.append(RawEntry(month, format_sub_metric_key("total_sales", order, name), sales))
            rows.append(RawEntry(month, format_sub_metric_key("gp_net", order, name), gp_net))
    return tuple(rows)


def _snapshot(**changes) -> ForecastSnapshot:
    snapshot = ForecastSnapshot(
        forecast_id=7,
        forecast_year=2026,
        brand="Chevrolet",
        raw_entries=_raw_entries(),
        weights=tuple(MonthWeight(number, equal_weight(), equal_weight()) for number in MONTH_NUMBERS),
    )
    return replace(snapshot, **changes)


def test_untouched_forecast_equals_baseline() -> None:
    result = compute_forecast(_snapshot())
    for month, values in result.months.items():
        for key, cell in values.items():
            assert cell.value == cell.baseline_value, (month, key)
    assert result.annual["total_sales"].value == money("1200000.00")
    assert result.implied_growth == Decimal("0")
    assert result.warnings == []


def test_compute_is_idempotent() -> None:
    snapshot = _snapshot(
        drivers=DriverSettings(growth_percent=Decimal("4")),
        entries=(ForecastEntryInput("2026-06", "gp_percent", Decimal("63"), is_locked=True),),
    )
    assert compute_forecast(snapshot) == compute_forecast(snapshot)


def test_growth_is_reported_as_implied_growth() -> None:
    result = compute_forecast(_snapshot(drivers=DriverSettings(growth_percent=Decimal("4"))))
    assert abs(result.implied_growth - Decimal("4")) < Decimal("0.001")
    assert result.months["2026-01"]["total_sales"].value == money("104000.00")


def test_gp_net_line_override_flows_up_to_parents() -> None:
    key = format_sub_metric_key("gp_net", 1, "Counter Retail")
    override = SubMetricOverride(sub_metric_key=key, parent_key="gp_net", overridden_annual_value=Decimal("240000"))
    result = compute_forecast(_snapshot(overrides=(override,)))
    january = result.months["2026-01"]

    line_total = sum(item.monthly_values["2026-01"] for item in result.sub_metrics["gp_net"])
    assert line_total == money("64000.00")
    assert january["gp_net"].value == line_total
    assert january["total_sales"].value == money("100000.00")
    assert january["sales_expense"].value == money("12800.00")
    assert january["department_profit"].value == money("31200.00")
    assert january["department_profit"].value != january["department_profit"].baseline_value


def test_locked_entry_survives_flow_up() -> None:
    key = format_sub_metric_key("gp_net", 1, "Counter Retail")
    override = SubMetricOverride(sub_metric_key=key, parent_key="gp_net", overridden_annual_value=Decimal("240000"))
    entries = (ForecastEntryInput("2026-01", "gp_net", Decimal("50000"), is_locked=True),)
    result = compute_forecast(_snapshot(overrides=(override,), entries=entries))
    assert result.months["2026-01"]["gp_net"].value == money("50000.00")
    assert result.months["2026-02"]["gp_net"].value == money("64000.00")


def test_partial_weights_warn_and_fall_back() -> None:
    weights = _snapshot().weights[:11]
    result = compute_forecast(_snapshot(weights=weights, drivers=DriverSettings(growth_percent=Decimal("1"))))
    assert len(result.warnings) == 2
    assert result.months["2026-12"]["total_sales"].value == money("101000.00")


def test_forecast_without_months_is_a_configuration_error() -> None:
    with pytest.raises(ForecastConfigurationError) as exc_info:
        compute_forecast(_snapshot(weights=()))
    assert exc_info.value.code == "no-months"


def test_rows_outside_the_baseline_year_are_ignored() -> None:
    snapshot = _snapshot(raw_entries=_raw_entries() + (RawEntry("2024-01", "total_sales", Decimal("999999")),))
    result = compute_forecast(snapshot)
    assert result.annual["total_sales"].baseline_value == money("1200000.00")


def test_apply_entry_replaces_the_same_cell() -> None:
    snapshot = _snapshot(entries=(ForecastEntryInput("2026-01", "total_sales", Decimal("1")),))
    updated = apply_entry_to_snapshot(snapshot, ForecastEntryInput("2026-01", "total_sales", Decimal("2"), True))
    assert updated.entries == (ForecastEntryInput("2026-01", "total_sales", Decimal("2"), True),)
    assert snapshot.entries[0].forecast_value == Decimal("1")

    result = compute_forecast(updated)
    assert result.months["2026-01"]["total_sales"].value == money("2.00")
    assert result.months["2026-01"]["total_sales"].is_locked


def test_apply_entry_rejects_malformed_month() -> None:
    with pytest.raises(InvalidIdentifierError):
        apply_entry_to_snapshot(_snapshot(), ForecastEntryInput("2026-1", "total_sales", Decimal("1")))
