"""Initial schema for department forecasts.

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "financial_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("department_id", sa.Integer(), nullable=False),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("metric_name", sa.String(length=255), nullable=False),
        sa.Column("value", sa.Numeric(24, 6), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_financial_entries_id", "financial_entries", ["id"])
    op.create_index("ix_financial_entries_department_id", "financial_entries", ["department_id"])
    op.create_index("ix_financial_entries_month", "financial_entries", ["month"])

    op.create_table(
        "department_forecasts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("department_id", sa.Integer(), nullable=False),
        sa.Column("forecast_year", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("brand", sa.String(length=120), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("department_id", "forecast_year", name="uq_forecasts_department_year"),
    )
    op.create_index("ix_department_forecasts_id", "department_forecasts", ["id"])
    op.create_index("ix_department_forecasts_department_id", "department_forecasts", ["department_id"])

    op.create_table(
        "forecast_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "forecast_id",
            sa.Integer(),
            sa.ForeignKey("department_forecasts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("metric_name", sa.String(length=255), nullable=False),
        sa.Column("baseline_value", sa.Numeric(24, 6), nullable=True),
        sa.Column("forecast_value", sa.Numeric(24, 6), nullable=True),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("forecast_id", "month", "metric_name", name="uq_entries_forecast_month_metric"),
    )
    op.create_index("ix_forecast_entries_id", "forecast_entries", ["id"])
    op.create_index("ix_forecast_entries_forecast_id", "forecast_entries", ["forecast_id"])

    op.create_table(
        "forecast_weights",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "forecast_id",
            sa.Integer(),
            sa.ForeignKey("department_forecasts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("month_number", sa.Integer(), nullable=False),
        sa.Column("original_weight", sa.Numeric(8, 4), nullable=False),
        sa.Column("adjusted_weight", sa.Numeric(8, 4), nullable=False),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.UniqueConstraint("forecast_id", "month_number", name="uq_weights_forecast_month"),
        sa.CheckConstraint("month_number BETWEEN 1 AND 12", name="ck_weights_month_number"),
    )
    op.create_index("ix_forecast_weights_id", "forecast_weights", ["id"])
    op.create_index("ix_forecast_weights_forecast_id", "forecast_weights", ["forecast_id"])

    op.create_table(
        "forecast_driver_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "forecast_id",
            sa.Integer(),
            sa.ForeignKey("department_forecasts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("growth_percent", sa.Numeric(12, 6), nullable=False, server_default="0"),
        sa.Column("sales_expense", sa.Numeric(24, 2), nullable=True),
        sa.Column("fixed_expense", sa.Numeric(24, 2), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("forecast_id", name="uq_driver_settings_forecast"),
    )
    op.create_index("ix_forecast_driver_settings_id", "forecast_driver_settings", ["id"])

    op.create_table(
        "forecast_submetric_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "forecast_id",
            sa.Integer(),
            sa.ForeignKey("department_forecasts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sub_metric_key", sa.String(length=255), nullable=False),
        sa.Column("parent_metric_key", sa.String(length=120), nullable=False),
        sa.Column("overridden_annual_value", sa.Numeric(24, 6), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("forecast_id", "sub_metric_key", name="uq_overrides_forecast_sub_metric"),
    )
    op.create_index("ix_forecast_submetric_overrides_id", "forecast_submetric_overrides", ["id"])
    op.create_index(
        "ix_forecast_submetric_overrides_forecast_id", "forecast_submetric_overrides", ["forecast_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_forecast_submetric_overrides_forecast_id", table_name="forecast_submetric_overrides")
    op.drop_index("ix_forecast_submetric_overrides_id", table_name="forecast_submetric_overrides")
    op.drop_table("forecast_submetric_overrides")
    op.drop_index("ix_forecast_driver_settings_id", table_name="forecast_driver_settings")
    op.drop_table("forecast_driver_settings")
    op.drop_index("ix_forecast_weights_forecast_id", table_name="forecast_weights")
    op.drop_index("ix_forecast_weights_id", table_name="forecast_weights")
    op.drop_table("forecast_weights")
    op.drop_index("ix_forecast_entries_forecast_id", table_name="forecast_entries")
    op.drop_index("ix_forecast_entries_id", table_name="forecast_entries")
    op.drop_table("forecast_entries")
    op.drop_index("ix_department_forecasts_department_id", table_name="department_forecasts")
    op.drop_index("ix_department_forecasts_id", table_name="department_forecasts")
    op.drop_table("department_forecasts")
    op.drop_index("ix_financial_entries_month", table_name="financial_entries")
    op.drop_index("ix_financial_entries_department_id", table_name="financial_entries")
    op.drop_index("ix_financial_entries_id", table_name="financial_entries")
    op.drop_table("financial_entries")
