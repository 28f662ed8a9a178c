from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from forecastcore.models.enums import RuleType, TargetDirection, ValueKind, ValueSource
from forecastcore.schemas.common import ORMModel


class CalculationRuleOut(BaseModel):
    rule_type: RuleType
    numerator: str | None = None
    denominator: str | None = None
    base: str | None = None
    deductions: list[str] = Field(default_factory=list)
    additions: list[str] = Field(default_factory=list)


class MetricDefinitionOut(BaseModel):
    key: str
    name: str
    value_kind: ValueKind
    target_direction: TargetDirection
    description: str
    calculation: CalculationRuleOut | None = None
    has_sub_metrics: bool


class BrandMetricsResponse(BaseModel):
    brand: str
    metrics: list[MetricDefinitionOut]


class ForecastCreateRequest(BaseModel):
    forecast_year: int = Field(ge=1900, le=9999)
    brand: str | None = None
    name: str | None = Field(default=None, max_length=255)


class ForecastOut(ORMModel):
    id: int
    department_id: int
    forecast_year: int
    name: str
    brand: str | None
    created_at: datetime


class EntryWriteRequest(BaseModel):
    month: str = Field(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    metric_key: str = Field(min_length=1, max_length=255)
    forecast_value: Decimal | None = None
    is_locked: bool | None = None


class BulkEntryItem(BaseModel):
    month: str = Field(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    metric_key: str = Field(min_length=1, max_length=255)
    forecast_value: Decimal | None = None
    is_locked: bool = False


class BulkEntryRequest(BaseModel):
    entries: list[BulkEntryItem] = Field(min_length=1)


class QuarterWriteRequest(BaseModel):
    metric_key: str = Field(min_length=1, max_length=255)
    value: Decimal


class EntryOut(ORMModel):
    id: int
    month: str
    metric_name: str
    forecast_value: Decimal | None
    baseline_value: Decimal | None
    is_locked: bool


class BulkEntryResponse(BaseModel):
    written: int
    skipped_locked: list[str]


class WeightUpdateRequest(BaseModel):
    adjusted_weight: Decimal | None = Field(default=None, ge=0)
    is_locked: bool | None = None


class WeightOut(BaseModel):
    month_number: int
    original_weight: Decimal
    adjusted_weight: Decimal
    is_locked: bool


class WeightsResponse(BaseModel):
    weights: list[WeightOut]
    total: Decimal
    warnings: list[str] = Field(default_factory=list)


class DriverSettingsRequest(BaseModel):
    growth_percent: Decimal = Decimal("0")
    sales_expense: Decimal | None = None
    fixed_expense: Decimal | None = None


class DriverSettingsOut(ORMModel):
    forecast_id: int
    growth_percent: Decimal
    sales_expense: Decimal | None
    fixed_expense: Decimal | None


class OverrideRequest(BaseModel):
    sub_metric_key: str = Field(min_length=5, max_length=255)
    overridden_annual_value: Decimal


class OverrideOut(ORMModel):
    id: int
    sub_metric_key: str
    parent_metric_key: str
    overridden_annual_value: Decimal


class MetricValueOut(BaseModel):
    value: Decimal
    baseline_value: Decimal
    is_locked: bool
    source: ValueSource | None = None


class SubMetricForecastOut(BaseModel):
    key: str
    label: str
    parent_key: str
    order_index: int
    value_kind: ValueKind
    monthly_values: dict[str, Decimal]
    quarterly_values: dict[int, Decimal]
    annual_value: Decimal
    baseline_annual_value: Decimal
    is_overridden: bool
    is_synthesized: bool


class ForecastResultResponse(BaseModel):
    forecast_id: int | None
    forecast_year: int
    brand: str | None
    metric_order: list[str]
    months: dict[str, dict[str, MetricValueOut]]
    quarters: dict[int, dict[str, MetricValueOut]]
    annual: dict[str, MetricValueOut]
    sub_metrics: dict[str, list[SubMetricForecastOut]]
    implied_growth: Decimal
    warnings: list[str]
