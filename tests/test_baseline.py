from decimal import Decimal

import pytest

from forecastcore.core.errors import InvalidIdentifierError
from forecastcore.services.baseline import build_annual_baseline, build_monthly_baseline, monthly_series
from forecastcore.services.metric_schema import FORD_METRICS, GMC_CHEVROLET_METRICS
from forecastcore.services.sub_metrics import (
    LEGACY_ORDER_INDEX,
    RawEntry,
    format_sub_metric_key,
    parse_month,
    parse_sub_metric_key,
    split_raw_entries,
)


def _row(month: str, name: str, value: str | None) -> RawEntry:
    return RawEntry(month=month, metric_name=name, value=Decimal(value) if value is not None else None)


def test_sub_metric_keys_round_trip_and_keep_colons_in_names() -> None:
    key = format_sub_metric_key("gp_net", 3, "Parts: Counter")
    assert key == "sub:gp_net:003:Parts: Counter"
    parsed = parse_sub_metric_key(key)
    assert (parsed.parent_key, parsed.order_index, parsed.name) == ("gp_net", 3, "Parts: Counter")


def test_legacy_sub_metric_key_sorts_last() -> None:
    parsed = parse_sub_metric_key("sub:total_sales:Counter Retail")
    assert parsed.order_index == LEGACY_ORDER_INDEX
    assert parsed.name == "Counter Retail"


@pytest.mark.parametrize("bad_key", ["sub:", "sub::001:x", "sub:gp_net:001:  "])
def test_malformed_sub_metric_key_raises(bad_key) -> None:
    with pytest.raises(InvalidIdentifierError):
        parse_sub_metric_key(bad_key)


@pytest.mark.parametrize("bad_month", ["2025-13", "2025-1", "Jan 2025", ""])
def test_malformed_month_raises(bad_month) -> None:
    with pytest.raises(InvalidIdentifierError):
        parse_month(bad_month)


def test_split_raw_entries_groups_sub_rows_and_skips_bad_keys(caplog) -> None:
    rows = [
        _row("2025-01", "total_sales", "1000"),
        _row("2025-01", "sub:total_sales:001:Counter Retail", "600"),
        _row("2025-02", "sub:total_sales:001:Counter Retail", "700"),
        _row("2025-01", "sub:total_sales:002:Wholesale", "400"),
        _row("2025-01", "sub:", "5"),
    ]
    parents, subs = split_raw_entries(rows)
    assert [row.metric_name for row in parents] == ["total_sales"]
    assert [item.name for item in subs] == ["Counter Retail", "Wholesale"]
    assert subs[0].monthly_values == {"2025-01": Decimal("600"), "2025-02": Decimal("700")}
    assert subs[0].annual_total == Decimal("1300")
    assert "Skipping sub-metric row" in caplog.text


def test_annual_baseline_sums_and_recomputes_percentages() -> None:
    rows = [
        _row("2025-01", "total_sales", "1000"),
        _row("2025-01", "gp_net", "400"),
        _row("2025-01", "gp_percent", "39.9"),
        _row("2025-02", "total_sales", "3000"),
        _row("2025-02", "gp_net", "1500"),
        _row("2025-02", "sales_expense", None),
    ]
    annual = build_annual_baseline(rows, [], GMC_CHEVROLET_METRICS)
    assert annual["total_sales"] == Decimal("4000")
    assert annual["gp_net"] == Decimal("1900")
    assert annual["gp_percent"] == Decimal("47.5")
    assert annual.get("sales_expense", Decimal("0")) == Decimal("0")

    monthly = build_monthly_baseline(rows, [], GMC_CHEVROLET_METRICS)
    # observed monthly percentages are kept as reported
    assert monthly["2025-01"]["gp_percent"] == Decimal("39.9")
    assert monthly["2025-02"]["gp_percent"] == Decimal("50")


def test_parent_backfilled_from_sub_metrics_when_missing_or_zero() -> None:
    rows = [
        _row("2025-01", "total_sales", "0"),
        _row("2025-01", "sub:total_sales:001:Counter Retail", "600"),
        _row("2025-01", "sub:total_sales:002:Wholesale", "400"),
        _row("2025-01", "sub:gp_net:001:Counter Retail", "250"),
    ]
    parents, subs = split_raw_entries(rows)
    monthly = build_monthly_baseline(parents, subs, GMC_CHEVROLET_METRICS)
    assert monthly["2025-01"]["total_sales"] == Decimal("1000")
    assert monthly["2025-01"]["gp_net"] == Decimal("250")
    assert monthly["2025-01"]["gp_percent"] == Decimal("25")

    annual = build_annual_baseline(parents, subs, GMC_CHEVROLET_METRICS)
    assert annual["total_sales"] == Decimal("1000")


def test_ford_parts_transfer_backfilled_only_when_never_observed() -> None:
    rows = [
        _row("2025-01", "total_sales", "1000"),
        _row("2025-01", "gp_net", "400"),
        _row("2025-01", "sales_expense", "100"),
        _row("2025-01", "adjusted_selling_gross", "350"),
        _row("2025-02", "total_sales", "1000"),
        _row("2025-02", "gp_net", "400"),
        _row("2025-02", "sales_expense", "100"),
        _row("2025-02", "adjusted_selling_gross", "350"),
        _row("2025-02", "parts_transfer", "0"),
    ]
    monthly = build_monthly_baseline(rows, [], FORD_METRICS)
    january = monthly["2025-01"]
    assert january["net_selling_gross"] == Decimal("300")
    assert january["parts_transfer"] == Decimal("50")
    assert january["net"] == Decimal("250")
    assert monthly["2025-02"]["parts_transfer"] == Decimal("0")


def test_monthly_series_fills_missing_months_with_zero() -> None:
    monthly = build_monthly_baseline([_row("2025-03", "total_sales", "10")], [], GMC_CHEVROLET_METRICS)
    series = monthly_series(monthly, "total_sales", 2025)
    assert series[3] == Decimal("10")
    assert series[1] == Decimal("0")
    assert len(series) == 12


def test_malformed_month_in_raw_rows_raises() -> None:
    with pytest.raises(InvalidIdentifierError):
        build_monthly_baseline([_row("2025-1", "total_sales", "10")], [], GMC_CHEVROLET_METRICS)
