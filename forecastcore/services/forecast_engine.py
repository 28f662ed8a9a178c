"""Forecast pipeline: baseline -> driver resolution -> line items -> rollups.

:func:`compute_forecast` is a pure function of a :class:`ForecastSnapshot`. The database
helpers below only build snapshots; nothing computed here is cached between calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from forecastcore.core.config import Settings, get_settings
from forecastcore.core.errors import ForecastConfigurationError
from forecastcore.db.session import SessionLocal
from forecastcore.models.financial import FinancialEntry
from forecastcore.models.forecast import (
    DepartmentForecast,
    ForecastDriverSettings,
    ForecastEntry,
    ForecastSubMetricOverride,
    ForecastWeight,
)
from forecastcore.services.baseline import build_annual_baseline, build_monthly_baseline
from forecastcore.services.drivers import (
    DriverInputs,
    DriverSettings,
    ForecastEntryInput,
    MetricValue,
    resolve_monthly_values,
)
from forecastcore.services.metric_schema import MetricDefinition, get_metrics_for_brand, validate_schema
from forecastcore.services.rollup import implied_growth, rollup_annual, rollup_quarters
from forecastcore.services.sub_metric_forecast import (
    EXPENSE_TWINS,
    FLOW_UP_TRIO,
    TRIO_PARENTS,
    SubMetricForecast,
    SubMetricInputs,
    SubMetricOverride,
    flow_up_parents,
    forecast_sub_metrics,
    sub_metric_sums,
)
from forecastcore.services.sub_metrics import RawEntry, SubMetricBaseline, parse_month, split_raw_entries
from forecastcore.services.weights import MONTH_NUMBERS, MonthWeight, weight_map, weights_sum_ok, weights_total
from forecastcore.utils.decimal_math import ZERO, pct, to_decimal


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForecastSnapshot:
    forecast_year: int
    brand: str | None = None
    raw_entries: tuple[RawEntry, ...] = ()
    entries: tuple[ForecastEntryInput, ...] = ()
    weights: tuple[MonthWeight, ...] = ()
    overrides: tuple[SubMetricOverride, ...] = ()
    drivers: DriverSettings = field(default_factory=DriverSettings)
    forecast_id: int | None = None


@dataclass(frozen=True)
class ForecastResult:
    forecast_id: int | None
    forecast_year: int
    brand: str | None
    metrics: tuple[MetricDefinition, ...]
    months: dict[str, dict[str, MetricValue]]
    quarters: dict[int, dict[str, MetricValue]]
    annual: dict[str, MetricValue]
    sub_metrics: dict[str, list[SubMetricForecast]]
    implied_growth: Decimal
    warnings: list[str] = field(default_factory=list)


def _prior_year_rows(
    rows: list[RawEntry],
    baselines: list[SubMetricBaseline],
    baseline_year: int,
) -> tuple[list[RawEntry], list[SubMetricBaseline]]:
    kept_rows = [row for row in rows if parse_month(row.month)[0] == baseline_year]
    kept_baselines: list[SubMetricBaseline] = []
    for item in baselines:
        monthly = {
            month: value for month, value in item.monthly_values.items() if parse_month(month)[0] == baseline_year
        }
        if monthly:
            kept_baselines.append(replace(item, monthly_values=monthly))
    return kept_rows, kept_baselines


def _validate_snapshot(snapshot: ForecastSnapshot, metrics: tuple[MetricDefinition, ...]) -> None:
    validate_schema(metrics)
    if snapshot.forecast_year < 1:
        raise ForecastConfigurationError(
            f"Invalid forecast year {snapshot.forecast_year}.",
            code="invalid-forecast-year",
        )
    if not snapshot.weights:
        raise ForecastConfigurationError("Forecast has no registered months.", code="no-months")
    for item in snapshot.weights:
        if item.month_number not in MONTH_NUMBERS:
            raise ForecastConfigurationError(
                f"Weight row for month {item.month_number} is outside 1-12.",
                code="invalid-month-number",
            )


def _resolve_with_flow_up(
    driver_inputs: DriverInputs,
    sub_inputs: SubMetricInputs,
) -> tuple[dict[str, dict[str, MetricValue]], dict[str, list[SubMetricForecast]]]:
    """Resolve parents, then re-resolve wherever line-item overrides must flow up.

    Sales and GP Net are anchored first, since the expense line items depend on GP Net.
    Parents anchored to their line items keep those line items frozen afterwards.
    """
    metrics = driver_inputs.metrics
    year = driver_inputs.forecast_year
    months = resolve_monthly_values(driver_inputs)
    sub_metrics = forecast_sub_metrics(sub_inputs, months)

    anchors: dict[str, dict[str, Decimal]] = {}
    frozen: dict[str, list[SubMetricForecast]] = {}

    trio = [key for key in flow_up_parents(sub_metrics, metrics) if key in FLOW_UP_TRIO]
    if trio:
        logger.info("Line-item overrides flow up into %s", ", ".join(trio))
        anchors = sub_metric_sums(sub_metrics, trio, year)
        frozen = {key: sub_metrics[key] for key in TRIO_PARENTS if key in sub_metrics}
        months = resolve_monthly_values(driver_inputs, anchors)
        sub_metrics = forecast_sub_metrics(sub_inputs, months, frozen)

    others = [key for key in flow_up_parents(sub_metrics, metrics) if key not in FLOW_UP_TRIO]
    if others:
        logger.info("Line-item overrides flow up into %s", ", ".join(others))
        for month, values in sub_metric_sums(sub_metrics, others, year).items():
            anchors.setdefault(month, {}).update(values)
        twins = dict(EXPENSE_TWINS)
        for key in others:
            frozen[key] = sub_metrics[key]
            if twins.get(key) in sub_metrics:
                frozen[twins[key]] = sub_metrics[twins[key]]
        months = resolve_monthly_values(driver_inputs, anchors)
        sub_metrics = forecast_sub_metrics(sub_inputs, months, frozen)

    return months, sub_metrics


def compute_forecast(snapshot: ForecastSnapshot, *, settings: Settings | None = None) -> ForecastResult:
    settings = settings or get_settings()
    metrics = get_metrics_for_brand(snapshot.brand or settings.default_brand)
    _validate_snapshot(snapshot, metrics)

    baseline_year = snapshot.forecast_year - 1
    parent_rows, sub_baselines = split_raw_entries(list(snapshot.raw_entries))
    parent_rows, sub_baselines = _prior_year_rows(parent_rows, sub_baselines, baseline_year)
    monthly_baseline = build_monthly_baseline(parent_rows, sub_baselines, metrics)
    annual_baseline = build_annual_baseline(parent_rows, sub_baselines, metrics)

    warnings: list[str] = []
    weights = list(snapshot.weights)
    if len(weights) != len(MONTH_NUMBERS):
        warnings.append(f"Forecast has {len(weights)} weight rows; missing months use 100/12.")
    if not weights_sum_ok(weights, settings.weight_sum_tolerance):
        warnings.append(f"Monthly weights total {weights_total(weights):.2f} instead of 100.")
    for message in warnings:
        logger.warning("Forecast %s: %s", snapshot.forecast_id, message)

    driver_inputs = DriverInputs(
        metrics=metrics,
        forecast_year=snapshot.forecast_year,
        monthly_baseline=monthly_baseline,
        annual_baseline=annual_baseline,
        weights=weight_map(weights),
        drivers=snapshot.drivers,
        entries=snapshot.entries,
        tolerance=settings.baseline_match_tolerance,
    )
    sub_inputs = SubMetricInputs(
        metrics=metrics,
        forecast_year=snapshot.forecast_year,
        monthly_baseline=monthly_baseline,
        sub_metric_baselines=tuple(sub_baselines),
        overrides=snapshot.overrides,
        percent_tolerance=settings.percent_match_tolerance,
    )
    months, sub_metrics = _resolve_with_flow_up(driver_inputs, sub_inputs)

    annual = rollup_annual(months, metrics, snapshot.forecast_year, settings.percent_match_tolerance)
    sales = annual.get("total_sales")
    return ForecastResult(
        forecast_id=snapshot.forecast_id,
        forecast_year=snapshot.forecast_year,
        brand=snapshot.brand,
        metrics=metrics,
        months=months,
        quarters=rollup_quarters(months, metrics, snapshot.forecast_year, settings.percent_match_tolerance),
        annual=annual,
        sub_metrics=sub_metrics,
        implied_growth=(
            implied_growth(sales.value, annual_baseline.get("total_sales", ZERO)) if sales is not None else pct(0)
        ),
        warnings=warnings,
    )


def apply_entry_to_snapshot(snapshot: ForecastSnapshot, entry: ForecastEntryInput) -> ForecastSnapshot:
    """Fold a just-written entry into a snapshot without reading it back."""
    parse_month(entry.month)
    kept = tuple(
        item for item in snapshot.entries if (item.month, item.metric_key) != (entry.month, entry.metric_key)
    )
    return replace(snapshot, entries=(*kept, entry))


def get_forecast_or_404(db: Session, forecast_id: int) -> DepartmentForecast:
    forecast = db.get(DepartmentForecast, forecast_id)
    if forecast is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Forecast not found.")
    return forecast


def load_snapshot(db: Session, forecast_id: int) -> ForecastSnapshot:
    forecast = get_forecast_or_404(db, forecast_id)
    raw_rows = db.scalars(
        select(FinancialEntry)
        .where(FinancialEntry.department_id == forecast.department_id)
        .order_by(FinancialEntry.month, FinancialEntry.id)
    ).all()
    entries = db.scalars(
        select(ForecastEntry).where(ForecastEntry.forecast_id == forecast.id).order_by(ForecastEntry.id)
    ).all()
    weights = db.scalars(
        select(ForecastWeight)
        .where(ForecastWeight.forecast_id == forecast.id)
        .order_by(ForecastWeight.month_number)
    ).all()
    overrides = db.scalars(
        select(ForecastSubMetricOverride)
        .where(ForecastSubMetricOverride.forecast_id == forecast.id)
        .order_by(ForecastSubMetricOverride.id)
    ).all()
    settings_row = db.scalar(
        select(ForecastDriverSettings).where(ForecastDriverSettings.forecast_id == forecast.id)
    )

    drivers = DriverSettings()
    if settings_row is not None:
        drivers = DriverSettings(
            growth_percent=to_decimal(settings_row.growth_percent),
            sales_expense_annual=(
                to_decimal(settings_row.sales_expense) if settings_row.sales_expense is not None else None
            ),
            fixed_expense_annual=(
                to_decimal(settings_row.fixed_expense) if settings_row.fixed_expense is not None else None
            ),
        )

    return ForecastSnapshot(
        forecast_id=forecast.id,
        forecast_year=forecast.forecast_year,
        brand=forecast.brand,
        raw_entries=tuple(
            RawEntry(month=row.month, metric_name=row.metric_name, value=row.value) for row in raw_rows
        ),
        entries=tuple(
            ForecastEntryInput(
                month=row.month,
                metric_key=row.metric_name,
                forecast_value=row.forecast_value,
                is_locked=row.is_locked,
            )
            for row in entries
        ),
        weights=tuple(
            MonthWeight(
                month_number=row.month_number,
                original_weight=to_decimal(row.original_weight),
                adjusted_weight=to_decimal(row.adjusted_weight),
                is_locked=row.is_locked,
            )
            for row in weights
        ),
        overrides=tuple(
            SubMetricOverride(
                sub_metric_key=row.sub_metric_key,
                parent_key=row.parent_metric_key,
                overridden_annual_value=to_decimal(row.overridden_annual_value),
            )
            for row in overrides
        ),
        drivers=drivers,
    )


def compute_department_forecast(
    forecast_id: int,
    *,
    db: Session | None = None,
) -> ForecastResult:
    manage_session = db is None
    session = db if db is not None else SessionLocal()
    try:
        return compute_forecast(load_snapshot(session, forecast_id))
    finally:
        if manage_session:
            session.close()
