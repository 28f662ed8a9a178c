from forecastcore.models.enums import RuleType, TargetDirection, ValueKind, ValueSource
from forecastcore.models.financial import FinancialEntry
from forecastcore.models.forecast import (
    DepartmentForecast,
    ForecastDriverSettings,
    ForecastEntry,
    ForecastSubMetricOverride,
    ForecastWeight,
)

__all__ = [
    "RuleType",
    "TargetDirection",
    "ValueKind",
    "ValueSource",
    "FinancialEntry",
    "DepartmentForecast",
    "ForecastDriverSettings",
    "ForecastEntry",
    "ForecastSubMetricOverride",
    "ForecastWeight",
]
