from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from forecastcore.models.financial import FinancialEntry
from forecastcore.models.forecast import DepartmentForecast
from forecastcore.services.forecast_store import create_forecast, save_driver_settings
from forecastcore.services.sub_metrics import format_sub_metric_key, month_label
from forecastcore.utils.decimal_math import money


logger = logging.getLogger(__name__)

DEMO_DEPARTMENT_ID = 1
DEMO_BRAND = "GMC"

# Parts department seasonality: slow winter, strong spring and summer.
SEASONALITY = (
    Decimal("0.86"),
    Decimal("0.90"),
    Decimal("1.02"),
    Decimal("1.06"),
    Decimal("1.10"),
    Decimal("1.08"),
    Decimal("1.04"),
    Decimal("1.05"),
    Decimal("1.00"),
    Decimal("0.98"),
    Decimal("0.96"),
    Decimal("0.95"),
)

MONTHLY_SALES = Decimal("400000")
GP_PERCENT = Decimal("0.36")
SALES_EXPENSE_SHARE = Decimal("0.18")
SEMI_FIXED_SHARE = Decimal("0.09")
FIXED_EXPENSE = Decimal("52000")
PARTS_TRANSFER = Decimal("6500")

# (name, share of department sales, gross margin)
SALES_LINES = (
    ("Counter Retail", Decimal("0.30"), Decimal("0.42")),
    ("Wholesale", Decimal("0.45"), Decimal("0.24")),
    ("Repair Orders", Decimal("0.25"), Decimal("0.48")),
)
# Dollar-only expense lines; their percent-of-GP twins are derived.
SALES_EXPENSE_LINES = (
    ("Salesperson Compensation", Decimal("0.70")),
    ("Advertising", Decimal("0.30")),
)


def _ensure_financial_entry(db: Session, *, month: str, metric_name: str, value: Decimal) -> None:
    exists = db.scalar(
        select(FinancialEntry.id).where(
            FinancialEntry.department_id == DEMO_DEPARTMENT_ID,
            FinancialEntry.month == month,
            FinancialEntry.metric_name == metric_name,
        )
    )
    if exists is None:
        db.add(
            FinancialEntry(
                department_id=DEMO_DEPARTMENT_ID,
                month=month,
                metric_name=metric_name,
                value=value,
            )
        )


def _seed_statement_month(db: Session, *, year: int, number: int) -> None:
    month = month_label(year, number)
    factor = SEASONALITY[number - 1]
    sales_total = money(0)
    gp_total = money(0)
    for order, (name, share, margin) in enumerate(SALES_LINES, start=1):
        line_sales = money(MONTHLY_SALES * factor * share)
        line_gp = money(line_sales * margin)
        sales_total += line_sales
        gp_total += line_gp
        _ensure_financial_entry(
            db, month=month, metric_name=format_sub_metric_key("total_sales", order, name), value=line_sales
        )
        _ensure_financial_entry(
            db, month=month, metric_name=format_sub_metric_key("gp_net", order, name), value=line_gp
        )

    sales_expense = money(gp_total * SALES_EXPENSE_SHARE)
    running = money(0)
    for order, (name, share) in enumerate(SALES_EXPENSE_LINES, start=1):
        amount = money(sales_expense * share) if order < len(SALES_EXPENSE_LINES) else money(sales_expense - running)
        running += amount
        _ensure_financial_entry(
            db, month=month, metric_name=format_sub_metric_key("sales_expense", order, name), value=amount
        )

    semi_fixed = money(gp_total * SEMI_FIXED_SHARE)
    parents = {
        "total_sales": sales_total,
        "gp_net": gp_total,
        "sales_expense": sales_expense,
        "semi_fixed_expense": semi_fixed,
        "total_fixed_expense": FIXED_EXPENSE,
        "parts_transfer": PARTS_TRANSFER,
    }
    for key, value in parents.items():
        _ensure_financial_entry(db, month=month, metric_name=key, value=money(value))


def seed_demo_data(db: Session) -> None:
    forecast_year = date.today().year
    baseline_year = forecast_year - 1

    for number in range(1, 13):
        _seed_statement_month(db, year=baseline_year, number=number)
    db.flush()

    forecast = db.scalar(
        select(DepartmentForecast).where(
            DepartmentForecast.department_id == DEMO_DEPARTMENT_ID,
            DepartmentForecast.forecast_year == forecast_year,
        )
    )
    if forecast is None:
        forecast = create_forecast(
            db,
            department_id=DEMO_DEPARTMENT_ID,
            forecast_year=forecast_year,
            brand=DEMO_BRAND,
            name="Parts Department Forecast",
        )
        save_driver_settings(db, forecast, growth_percent=Decimal("4"))
        logger.info("Seeded demo forecast %s for %s", forecast.id, forecast_year)

    db.commit()
