from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from forecastcore.core.config import get_settings
from forecastcore.core.errors import ForecastConfigurationError, InvalidIdentifierError
from forecastcore.models.financial import FinancialEntry
from forecastcore.models.forecast import (
    DepartmentForecast,
    ForecastDriverSettings,
    ForecastEntry,
    ForecastSubMetricOverride,
    ForecastWeight,
)
from forecastcore.services.baseline import build_monthly_baseline, monthly_series
from forecastcore.services.drivers import ForecastEntryInput
from forecastcore.services.metric_schema import get_metrics_for_brand
from forecastcore.services.sub_metrics import (
    RawEntry,
    month_label,
    parse_month,
    parse_sub_metric_key,
    split_raw_entries,
)
from forecastcore.services.weights import (
    MonthWeight,
    WeightRedistribution,
    calculate_initial_weights,
    distribute_quarter_to_months,
    redistribute_weights,
    weights_total,
)
from forecastcore.services.weights import reset_weights as reset_weight_vector
from forecastcore.utils.decimal_math import money, pct, to_decimal


logger = logging.getLogger(__name__)

# Marks a cell value the caller did not send, as opposed to an explicit None that clears it.
UNSET: Any = object()


@dataclass
class BulkWriteResult:
    written: int = 0
    skipped_locked: list[tuple[str, str]] = field(default_factory=list)


def _prior_year_sales(db: Session, department_id: int, baseline_year: int, brand: str | None) -> dict[int, Decimal]:
    prefix = f"{baseline_year:04d}-"
    rows = db.scalars(
        select(FinancialEntry).where(
            FinancialEntry.department_id == department_id,
            FinancialEntry.month.startswith(prefix),
        )
    ).all()
    parent_rows, sub_baselines = split_raw_entries(
        [RawEntry(month=row.month, metric_name=row.metric_name, value=row.value) for row in rows]
    )
    monthly = build_monthly_baseline(parent_rows, sub_baselines, get_metrics_for_brand(brand))
    return monthly_series(monthly, "total_sales", baseline_year)


def _check_forecast_month(forecast: DepartmentForecast, month: str) -> None:
    year, _ = parse_month(month)
    if year != forecast.forecast_year:
        raise InvalidIdentifierError(
            f"Month {month} is outside forecast year {forecast.forecast_year}.",
            code="month-outside-forecast",
        )


def _weight_rows(db: Session, forecast: DepartmentForecast) -> list[ForecastWeight]:
    rows = list(
        db.scalars(
            select(ForecastWeight)
            .where(ForecastWeight.forecast_id == forecast.id)
            .order_by(ForecastWeight.month_number)
        ).all()
    )
    if not rows:
        raise ForecastConfigurationError("Forecast has no registered months.", code="no-months")
    return rows


def _to_month_weights(rows: list[ForecastWeight]) -> list[MonthWeight]:
    return [
        MonthWeight(
            month_number=row.month_number,
            original_weight=to_decimal(row.original_weight),
            adjusted_weight=to_decimal(row.adjusted_weight),
            is_locked=row.is_locked,
        )
        for row in rows
    ]


def create_forecast(
    db: Session,
    *,
    department_id: int,
    forecast_year: int,
    brand: str | None = None,
    name: str | None = None,
) -> DepartmentForecast:
    existing = db.scalar(
        select(DepartmentForecast).where(
            DepartmentForecast.department_id == department_id,
            DepartmentForecast.forecast_year == forecast_year,
        )
    )
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A forecast already exists for this department and year.",
        )

    forecast = DepartmentForecast(
        department_id=department_id,
        forecast_year=forecast_year,
        brand=brand,
        name=name or f"{forecast_year} Forecast",
    )
    db.add(forecast)
    db.flush()

    prior_sales = _prior_year_sales(db, department_id, forecast_year - 1, brand)
    for item in calculate_initial_weights(prior_sales):
        db.add(
            ForecastWeight(
                forecast_id=forecast.id,
                month_number=item.month_number,
                original_weight=item.original_weight,
                adjusted_weight=item.adjusted_weight,
                is_locked=False,
            )
        )
    db.add(ForecastDriverSettings(forecast_id=forecast.id, growth_percent=pct(0)))
    db.flush()
    logger.info("Created forecast %s for department %s, year %s", forecast.id, department_id, forecast_year)
    return forecast


def _find_entry(db: Session, forecast_id: int, month: str, metric_key: str) -> ForecastEntry | None:
    return db.scalar(
        select(ForecastEntry).where(
            ForecastEntry.forecast_id == forecast_id,
            ForecastEntry.month == month,
            ForecastEntry.metric_name == metric_key,
        )
    )


def upsert_entry(
    db: Session,
    forecast: DepartmentForecast,
    *,
    month: str,
    metric_key: str,
    forecast_value: Decimal | None = UNSET,
    is_locked: bool | None = None,
    baseline_value: Decimal | None = None,
) -> ForecastEntry:
    """Write one cell.

    ``is_locked=None`` keeps the row's current lock state and an omitted
    ``forecast_value`` keeps its stored value, so a lock toggle never clears the cell.
    """
    _check_forecast_month(forecast, month)
    entry = _find_entry(db, forecast.id, month, metric_key)
    if entry is None:
        entry = ForecastEntry(
            forecast_id=forecast.id,
            month=month,
            metric_name=metric_key,
            is_locked=bool(is_locked),
        )
        db.add(entry)
    elif is_locked is not None:
        entry.is_locked = is_locked
    if forecast_value is not UNSET:
        entry.forecast_value = to_decimal(forecast_value) if forecast_value is not None else None
    if baseline_value is not None:
        entry.baseline_value = to_decimal(baseline_value)
    db.flush()
    return entry


def bulk_upsert_entries(
    db: Session,
    forecast: DepartmentForecast,
    entries: list[ForecastEntryInput],
) -> BulkWriteResult:
    """Cascade writes from one edit; rows that are already locked are left untouched.

    A cell listed more than once takes its last value.
    """
    collapsed = {(item.month, item.metric_key): item for item in entries}
    result = BulkWriteResult()
    for item in collapsed.values():
        _check_forecast_month(forecast, item.month)
        existing = _find_entry(db, forecast.id, item.month, item.metric_key)
        if existing is not None and existing.is_locked:
            result.skipped_locked.append((item.month, item.metric_key))
            continue
        if existing is None:
            existing = ForecastEntry(
                forecast_id=forecast.id,
                month=item.month,
                metric_name=item.metric_key,
                is_locked=item.is_locked,
            )
            db.add(existing)
        else:
            existing.is_locked = item.is_locked
        existing.forecast_value = to_decimal(item.forecast_value) if item.forecast_value is not None else None
        result.written += 1
    db.flush()
    if result.skipped_locked:
        logger.info("Forecast %s: skipped %s locked cells", forecast.id, len(result.skipped_locked))
    return result


def write_quarter_value(
    db: Session,
    forecast: DepartmentForecast,
    *,
    quarter: int,
    metric_key: str,
    value: Decimal,
) -> BulkWriteResult:
    """Spread a quarter total over its three months by their adjusted weights."""
    weights = _to_month_weights(_weight_rows(db, forecast))
    shares = distribute_quarter_to_months(quarter, value, weights)
    return bulk_upsert_entries(
        db,
        forecast,
        [
            ForecastEntryInput(
                month=month_label(forecast.forecast_year, number),
                metric_key=metric_key,
                forecast_value=share,
            )
            for number, share in shares.items()
        ],
    )


def update_weight(
    db: Session,
    forecast: DepartmentForecast,
    month_number: int,
    new_weight: Decimal | None = None,
    *,
    is_locked: bool | None = None,
) -> WeightRedistribution:
    """Set one month's weight and rebalance the unlocked rest.

    Without ``new_weight`` only the lock flag changes and nothing is redistributed.
    """
    tolerance = get_settings().weight_sum_tolerance
    rows = _weight_rows(db, forecast)
    if new_weight is None:
        target = next((row for row in rows if row.month_number == month_number), None)
        if target is None:
            raise ValueError("month_number must be between 1 and 12.")
        if is_locked is not None:
            target.is_locked = is_locked
        db.flush()
        weights = _to_month_weights(rows)
        return WeightRedistribution(weights=weights, total=weights_total(weights), tolerance=tolerance)

    redistribution = redistribute_weights(_to_month_weights(rows), month_number, new_weight, tolerance)
    by_month = {item.month_number: item for item in redistribution.weights}
    for row in rows:
        row.adjusted_weight = by_month[row.month_number].adjusted_weight
        if row.month_number == month_number and is_locked is not None:
            row.is_locked = is_locked
    db.flush()
    return redistribution


def reset_weights(db: Session, forecast: DepartmentForecast) -> list[ForecastWeight]:
    rows = _weight_rows(db, forecast)
    by_month = {item.month_number: item for item in reset_weight_vector(_to_month_weights(rows))}
    for row in rows:
        row.adjusted_weight = by_month[row.month_number].adjusted_weight
        row.is_locked = False
    db.flush()
    return rows


def save_driver_settings(
    db: Session,
    forecast: DepartmentForecast,
    *,
    growth_percent: Decimal,
    sales_expense: Decimal | None = None,
    fixed_expense: Decimal | None = None,
) -> ForecastDriverSettings:
    settings_row = db.scalar(
        select(ForecastDriverSettings).where(ForecastDriverSettings.forecast_id == forecast.id)
    )
    if settings_row is None:
        settings_row = ForecastDriverSettings(forecast_id=forecast.id)
        db.add(settings_row)
    settings_row.growth_percent = pct(growth_percent)
    settings_row.sales_expense = money(sales_expense) if sales_expense is not None else None
    settings_row.fixed_expense = money(fixed_expense) if fixed_expense is not None else None
    db.flush()
    return settings_row


def set_sub_metric_override(
    db: Session,
    forecast: DepartmentForecast,
    *,
    sub_metric_key: str,
    overridden_annual_value: Decimal,
) -> ForecastSubMetricOverride:
    parsed = parse_sub_metric_key(sub_metric_key)
    override = db.scalar(
        select(ForecastSubMetricOverride).where(
            ForecastSubMetricOverride.forecast_id == forecast.id,
            ForecastSubMetricOverride.sub_metric_key == sub_metric_key,
        )
    )
    if override is None:
        override = ForecastSubMetricOverride(
            forecast_id=forecast.id,
            sub_metric_key=sub_metric_key,
            parent_metric_key=parsed.parent_key,
        )
        db.add(override)
    override.overridden_annual_value = to_decimal(overridden_annual_value)
    db.flush()
    return override


def clear_sub_metric_override(db: Session, forecast: DepartmentForecast, sub_metric_key: str) -> bool:
    override = db.scalar(
        select(ForecastSubMetricOverride).where(
            ForecastSubMetricOverride.forecast_id == forecast.id,
            ForecastSubMetricOverride.sub_metric_key == sub_metric_key,
        )
    )
    if override is None:
        return False
    db.delete(override)
    db.flush()
    return True
