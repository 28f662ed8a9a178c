from fastapi import APIRouter

from forecastcore.schemas.forecast import BrandMetricsResponse, CalculationRuleOut, MetricDefinitionOut
from forecastcore.services.metric_schema import get_metrics_for_brand


router = APIRouter(prefix="/brands", tags=["brands"])


@router.get("/{brand}/metrics", response_model=BrandMetricsResponse)
def list_brand_metrics(brand: str) -> BrandMetricsResponse:
    metrics = get_metrics_for_brand(brand)
    return BrandMetricsResponse(
        brand=brand,
        metrics=[
            MetricDefinitionOut(
                key=metric.key,
                name=metric.name,
                value_kind=metric.value_kind,
                target_direction=metric.target_direction,
                description=metric.description,
                calculation=(
                    CalculationRuleOut(
                        rule_type=metric.calculation.rule_type,
                        numerator=metric.calculation.numerator,
                        denominator=metric.calculation.denominator,
                        base=metric.calculation.base,
                        deductions=list(metric.calculation.deductions),
                        additions=list(metric.calculation.additions),
                    )
                    if metric.calculation is not None
                    else None
                ),
                has_sub_metrics=metric.has_sub_metrics,
            )
            for metric in metrics
        ],
    )
