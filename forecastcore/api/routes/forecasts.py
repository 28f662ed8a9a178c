from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from forecastcore.api.deps import bad_request, get_db, unprocessable
from forecastcore.core.errors import ForecastError
from forecastcore.models.forecast import DepartmentForecast, ForecastDriverSettings, ForecastEntry, ForecastSubMetricOverride
from forecastcore.schemas.common import MessageResponse
from forecastcore.schemas.forecast import (
    BulkEntryRequest,
    BulkEntryResponse,
    DriverSettingsOut,
    DriverSettingsRequest,
    EntryOut,
    EntryWriteRequest,
    ForecastCreateRequest,
    ForecastOut,
    ForecastResultResponse,
    MetricValueOut,
    OverrideOut,
    OverrideRequest,
    QuarterWriteRequest,
    SubMetricForecastOut,
    WeightOut,
    WeightsResponse,
    WeightUpdateRequest,
)
from forecastcore.services.drivers import ForecastEntryInput, MetricValue
from forecastcore.services.forecast_engine import ForecastResult, compute_department_forecast, get_forecast_or_404
from forecastcore.services.forecast_store import (
    bulk_upsert_entries,
    clear_sub_metric_override,
    create_forecast,
    reset_weights,
    save_driver_settings,
    set_sub_metric_override,
    update_weight,
    upsert_entry,
    write_quarter_value,
)
from forecastcore.services.sub_metric_forecast import SubMetricForecast, line_item_lookup


router = APIRouter(tags=["forecasts"])


def _metric_value_out(cell: MetricValue) -> MetricValueOut:
    return MetricValueOut(
        value=cell.value,
        baseline_value=cell.baseline_value,
        is_locked=cell.is_locked,
        source=cell.source,
    )


def _sub_metric_out(item: SubMetricForecast) -> SubMetricForecastOut:
    return SubMetricForecastOut(
        key=item.key,
        label=item.label,
        parent_key=item.parent_key,
        order_index=item.order_index,
        value_kind=item.value_kind,
        monthly_values=item.monthly_values,
        quarterly_values=item.quarterly_values,
        annual_value=item.annual_value,
        baseline_annual_value=item.baseline_annual_value,
        is_overridden=item.is_overridden,
        is_synthesized=item.is_synthesized,
    )


def _result_response(result: ForecastResult) -> ForecastResultResponse:
    return ForecastResultResponse(
        forecast_id=result.forecast_id,
        forecast_year=result.forecast_year,
        brand=result.brand,
        metric_order=[metric.key for metric in result.metrics],
        months={
            month: {key: _metric_value_out(cell) for key, cell in values.items()}
            for month, values in result.months.items()
        },
        quarters={
            quarter: {key: _metric_value_out(cell) for key, cell in values.items()}
            for quarter, values in result.quarters.items()
        },
        annual={key: _metric_value_out(cell) for key, cell in result.annual.items()},
        sub_metrics={parent: [_sub_metric_out(item) for item in items] for parent, items in result.sub_metrics.items()},
        implied_growth=result.implied_growth,
        warnings=result.warnings,
    )


def _weights_response(forecast: DepartmentForecast, warnings: list[str] | None = None) -> WeightsResponse:
    weights = [
        WeightOut(
            month_number=row.month_number,
            original_weight=row.original_weight,
            adjusted_weight=row.adjusted_weight,
            is_locked=row.is_locked,
        )
        for row in sorted(forecast.weights, key=lambda item: item.month_number)
    ]
    return WeightsResponse(
        weights=weights,
        total=sum((item.adjusted_weight for item in weights), Decimal("0")),
        warnings=warnings or [],
    )


@router.post(
    "/departments/{department_id}/forecasts",
    response_model=ForecastOut,
    status_code=status.HTTP_201_CREATED,
)
def create_department_forecast(
    department_id: int,
    payload: ForecastCreateRequest,
    db: Session = Depends(get_db),
) -> DepartmentForecast:
    forecast = create_forecast(
        db,
        department_id=department_id,
        forecast_year=payload.forecast_year,
        brand=payload.brand,
        name=payload.name,
    )
    db.commit()
    db.refresh(forecast)
    return forecast


@router.get("/departments/{department_id}/forecasts", response_model=list[ForecastOut])
def list_department_forecasts(department_id: int, db: Session = Depends(get_db)) -> list[DepartmentForecast]:
    return list(
        db.scalars(
            select(DepartmentForecast)
            .where(DepartmentForecast.department_id == department_id)
            .order_by(DepartmentForecast.forecast_year.desc())
        ).all()
    )


@router.get("/forecasts/{forecast_id}/results", response_model=ForecastResultResponse)
def get_forecast_results(forecast_id: int, db: Session = Depends(get_db)) -> ForecastResultResponse:
    try:
        result = compute_department_forecast(forecast_id, db=db)
    except ForecastError as exc:
        raise unprocessable(exc) from exc
    return _result_response(result)


@router.get(
    "/forecasts/{forecast_id}/sub-metrics/{parent_key}/{name}",
    response_model=SubMetricForecastOut,
)
def get_sub_metric_forecast(
    forecast_id: int,
    parent_key: str,
    name: str,
    db: Session = Depends(get_db),
) -> SubMetricForecastOut:
    try:
        result = compute_department_forecast(forecast_id, db=db)
    except ForecastError as exc:
        raise unprocessable(exc) from exc
    item = line_item_lookup(result.sub_metrics, parent_key, name)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Line item not found.")
    return _sub_metric_out(item)


@router.put("/forecasts/{forecast_id}/entries", response_model=EntryOut)
def write_forecast_entry(
    forecast_id: int,
    payload: EntryWriteRequest,
    db: Session = Depends(get_db),
) -> ForecastEntry:
    forecast = get_forecast_or_404(db, forecast_id)
    # Leaving forecast_value out keeps the stored value; an explicit null clears it.
    values = {"forecast_value": payload.forecast_value} if "forecast_value" in payload.model_fields_set else {}
    try:
        entry = upsert_entry(
            db,
            forecast,
            month=payload.month,
            metric_key=payload.metric_key,
            is_locked=payload.is_locked,
            **values,
        )
    except ForecastError as exc:
        raise unprocessable(exc) from exc
    db.commit()
    db.refresh(entry)
    return entry


@router.put("/forecasts/{forecast_id}/entries/bulk", response_model=BulkEntryResponse)
def write_forecast_entries(
    forecast_id: int,
    payload: BulkEntryRequest,
    db: Session = Depends(get_db),
) -> BulkEntryResponse:
    forecast = get_forecast_or_404(db, forecast_id)
    try:
        result = bulk_upsert_entries(
            db,
            forecast,
            [
                ForecastEntryInput(
                    month=item.month,
                    metric_key=item.metric_key,
                    forecast_value=item.forecast_value,
                    is_locked=item.is_locked,
                )
                for item in payload.entries
            ],
        )
    except ForecastError as exc:
        raise unprocessable(exc) from exc
    db.commit()
    return BulkEntryResponse(
        written=result.written,
        skipped_locked=[f"{month}/{metric_key}" for month, metric_key in result.skipped_locked],
    )


@router.put("/forecasts/{forecast_id}/quarters/{quarter}", response_model=BulkEntryResponse)
def write_forecast_quarter(
    forecast_id: int,
    quarter: int,
    payload: QuarterWriteRequest,
    db: Session = Depends(get_db),
) -> BulkEntryResponse:
    forecast = get_forecast_or_404(db, forecast_id)
    try:
        result = write_quarter_value(
            db,
            forecast,
            quarter=quarter,
            metric_key=payload.metric_key,
            value=payload.value,
        )
    except ForecastError as exc:
        raise unprocessable(exc) from exc
    except ValueError as exc:
        raise bad_request(exc) from exc
    db.commit()
    return BulkEntryResponse(
        written=result.written,
        skipped_locked=[f"{month}/{metric_key}" for month, metric_key in result.skipped_locked],
    )


@router.put("/forecasts/{forecast_id}/weights/{month_number}", response_model=WeightsResponse)
def update_forecast_weight(
    forecast_id: int,
    month_number: int,
    payload: WeightUpdateRequest,
    db: Session = Depends(get_db),
) -> WeightsResponse:
    forecast = get_forecast_or_404(db, forecast_id)
    try:
        redistribution = update_weight(
            db,
            forecast,
            month_number,
            payload.adjusted_weight,
            is_locked=payload.is_locked,
        )
    except ForecastError as exc:
        raise unprocessable(exc) from exc
    except ValueError as exc:
        raise bad_request(exc) from exc
    db.commit()
    db.refresh(forecast)
    return _weights_response(forecast, redistribution.warnings)


@router.post("/forecasts/{forecast_id}/weights/reset", response_model=WeightsResponse)
def reset_forecast_weights(forecast_id: int, db: Session = Depends(get_db)) -> WeightsResponse:
    forecast = get_forecast_or_404(db, forecast_id)
    try:
        reset_weights(db, forecast)
    except ForecastError as exc:
        raise unprocessable(exc) from exc
    db.commit()
    db.refresh(forecast)
    return _weights_response(forecast)


@router.put("/forecasts/{forecast_id}/drivers", response_model=DriverSettingsOut)
def update_driver_settings(
    forecast_id: int,
    payload: DriverSettingsRequest,
    db: Session = Depends(get_db),
) -> ForecastDriverSettings:
    forecast = get_forecast_or_404(db, forecast_id)
    settings_row = save_driver_settings(
        db,
        forecast,
        growth_percent=payload.growth_percent,
        sales_expense=payload.sales_expense,
        fixed_expense=payload.fixed_expense,
    )
    db.commit()
    db.refresh(settings_row)
    return settings_row


@router.put("/forecasts/{forecast_id}/overrides", response_model=OverrideOut)
def put_sub_metric_override(
    forecast_id: int,
    payload: OverrideRequest,
    db: Session = Depends(get_db),
) -> ForecastSubMetricOverride:
    forecast = get_forecast_or_404(db, forecast_id)
    try:
        override = set_sub_metric_override(
            db,
            forecast,
            sub_metric_key=payload.sub_metric_key,
            overridden_annual_value=payload.overridden_annual_value,
        )
    except ForecastError as exc:
        raise unprocessable(exc) from exc
    db.commit()
    db.refresh(override)
    return override


@router.delete("/forecasts/{forecast_id}/overrides/{sub_metric_key:path}", response_model=MessageResponse)
def delete_sub_metric_override(
    forecast_id: int,
    sub_metric_key: str,
    db: Session = Depends(get_db),
) -> MessageResponse:
    forecast = get_forecast_or_404(db, forecast_id)
    if not clear_sub_metric_override(db, forecast, sub_metric_key):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Override not found.")
    db.commit()
    return MessageResponse(message=f"Override for {sub_metric_key} cleared.")
