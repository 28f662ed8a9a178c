from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from forecastcore.db.base import Base


class DepartmentForecast(Base):
    __tablename__ = "department_forecasts"
    __table_args__ = (
        UniqueConstraint("department_id", "forecast_year", name="uq_forecasts_department_year"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    department_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    forecast_year: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    brand: Mapped[str | None] = mapped_column(String(120), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    entries: Mapped[list["ForecastEntry"]] = relationship(
        "ForecastEntry", back_populates="forecast", cascade="all, delete-orphan"
    )
    weights: Mapped[list["ForecastWeight"]] = relationship(
        "ForecastWeight",
        back_populates="forecast",
        cascade="all, delete-orphan",
        order_by="ForecastWeight.month_number",
    )
    driver_settings: Mapped["ForecastDriverSettings | None"] = relationship(
        "ForecastDriverSettings",
        back_populates="forecast",
        cascade="all, delete-orphan",
        uselist=False,
    )
    sub_metric_overrides: Mapped[list["ForecastSubMetricOverride"]] = relationship(
        "ForecastSubMetricOverride", back_populates="forecast", cascade="all, delete-orphan"
    )


class ForecastEntry(Base):
    __tablename__ = "forecast_entries"
    __table_args__ = (
        UniqueConstraint("forecast_id", "month", "metric_name", name="uq_entries_forecast_month_metric"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    forecast_id: Mapped[int] = mapped_column(
        ForeignKey("department_forecasts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    metric_name: Mapped[str] = mapped_column(String(255), nullable=False)
    baseline_value: Mapped[Decimal | None] = mapped_column(Numeric(24, 6), nullable=True)
    forecast_value: Mapped[Decimal | None] = mapped_column(Numeric(24, 6), nullable=True)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    forecast: Mapped["DepartmentForecast"] = relationship("DepartmentForecast", back_populates="entries")


class ForecastWeight(Base):
    __tablename__ = "forecast_weights"
    __table_args__ = (
        UniqueConstraint("forecast_id", "month_number", name="uq_weights_forecast_month"),
        CheckConstraint("month_number BETWEEN 1 AND 12", name="ck_weights_month_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    forecast_id: Mapped[int] = mapped_column(
        ForeignKey("department_forecasts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    month_number: Mapped[int] = mapped_column(Integer, nullable=False)
    original_weight: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    adjusted_weight: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    forecast: Mapped["DepartmentForecast"] = relationship("DepartmentForecast", back_populates="weights")


class ForecastDriverSettings(Base):
    __tablename__ = "forecast_driver_settings"
    __table_args__ = (UniqueConstraint("forecast_id", name="uq_driver_settings_forecast"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    forecast_id: Mapped[int] = mapped_column(
        ForeignKey("department_forecasts.id", ondelete="CASCADE"),
        nullable=False,
    )
    growth_percent: Mapped[Decimal] = mapped_column(Numeric(12, 6), default=0, nullable=False)
    sales_expense: Mapped[Decimal | None] = mapped_column(Numeric(24, 2), nullable=True)
    fixed_expense: Mapped[Decimal | None] = mapped_column(Numeric(24, 2), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    forecast: Mapped["DepartmentForecast"] = relationship("DepartmentForecast", back_populates="driver_settings")


class ForecastSubMetricOverride(Base):
    __tablename__ = "forecast_submetric_overrides"
    __table_args__ = (
        UniqueConstraint("forecast_id", "sub_metric_key", name="uq_overrides_forecast_sub_metric"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    forecast_id: Mapped[int] = mapped_column(
        ForeignKey("department_forecasts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sub_metric_key: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_metric_key: Mapped[str] = mapped_column(String(120), nullable=False)
    overridden_annual_value: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    forecast: Mapped["DepartmentForecast"] = relationship(
        "DepartmentForecast", back_populates="sub_metric_overrides"
    )
