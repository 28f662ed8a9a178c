from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal

from forecastcore.core.errors import InvalidIdentifierError
from forecastcore.utils.decimal_math import ZERO, to_decimal


logger = logging.getLogger(__name__)

SUB_PREFIX = "sub"
LEGACY_ORDER_INDEX = 999
MONTH_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


@dataclass(frozen=True)
class SubMetricKey:
    parent_key: str
    order_index: int
    name: str

    @property
    def key(self) -> str:
        return format_sub_metric_key(self.parent_key, self.order_index, self.name)

    @property
    def normalized_name(self) -> str:
        return normalize_name(self.name)


@dataclass(frozen=True)
class SubMetricBaseline:
    parent_key: str
    name: str
    order_index: int
    monthly_values: dict[str, Decimal] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return format_sub_metric_key(self.parent_key, self.order_index, self.name)

    @property
    def normalized_name(self) -> str:
        return normalize_name(self.name)

    def value_for(self, month: str) -> Decimal:
        return self.monthly_values.get(month, ZERO)

    @property
    def annual_total(self) -> Decimal:
        return sum(self.monthly_values.values(), ZERO)


@dataclass(frozen=True)
class RawEntry:
    """One imported statement row: a month, a metric name and its value."""

    month: str
    metric_name: str
    value: Decimal | None


def normalize_name(name: str) -> str:
    return name.strip().lower()


def format_sub_metric_key(parent_key: str, order_index: int, name: str) -> str:
    return f"{SUB_PREFIX}:{parent_key}:{order_index:03d}:{name}"


def is_sub_metric_key(metric_name: str) -> bool:
    return metric_name.startswith(f"{SUB_PREFIX}:")


def parse_sub_metric_key(metric_name: str) -> SubMetricKey:
    """Parse ``sub:{parent}:{order}:{name}`` (or the legacy ``sub:{parent}:{name}``).

    Names may themselves contain colons, so everything after the order index is the name.
    Legacy keys without an order index sort after every ordered line item.
    """
    parts = metric_name.split(":")
    if len(parts) < 3 or parts[0] != SUB_PREFIX or not parts[1]:
        raise InvalidIdentifierError(f"Malformed sub-metric key '{metric_name}'.", code="bad-sub-metric-key")
    parent_key = parts[1]
    if len(parts) >= 4 and parts[2].isdigit():
        name = ":".join(parts[3:])
        order_index = int(parts[2])
    else:
        name = ":".join(parts[2:])
        order_index = LEGACY_ORDER_INDEX
    if not name.strip():
        raise InvalidIdentifierError(f"Sub-metric key '{metric_name}' has no name.", code="bad-sub-metric-key")
    return SubMetricKey(parent_key=parent_key, order_index=order_index, name=name)


def parse_month(month: str) -> tuple[int, int]:
    match = MONTH_PATTERN.match(month or "")
    if match is None:
        raise InvalidIdentifierError(f"Malformed month identifier '{month}'.", code="bad-month")
    return int(match.group(1)), int(match.group(2))


def month_label(year: int, number: int) -> str:
    return f"{year:04d}-{number:02d}"


def split_raw_entries(rows: list[RawEntry]) -> tuple[list[RawEntry], list[SubMetricBaseline]]:
    """Separate parent metric rows from ``sub:`` rows and group the latter into baselines.

    Rows whose sub-metric key cannot be parsed are skipped and logged.
    """
    parent_rows: list[RawEntry] = []
    grouped: dict[tuple[str, int, str], dict[str, Decimal]] = {}

    for row in rows:
        if not is_sub_metric_key(row.metric_name):
            parent_rows.append(row)
            continue
        try:
            parsed = parse_sub_metric_key(row.metric_name)
        except InvalidIdentifierError as exc:
            logger.warning("Skipping sub-metric row: %s", exc)
            continue
        bucket = grouped.setdefault((parsed.parent_key, parsed.order_index, parsed.name), {})
        bucket[row.month] = bucket.get(row.month, ZERO) + to_decimal(row.value)

    baselines = [
        SubMetricBaseline(parent_key=parent, name=name, order_index=order, monthly_values=values)
        for (parent, order, name), values in grouped.items()
    ]
    baselines.sort(key=lambda item: (item.parent_key, item.order_index, item.name))
    return parent_rows, baselines


def sub_metrics_by_parent(baselines: list[SubMetricBaseline]) -> dict[str, list[SubMetricBaseline]]:
    grouped: dict[str, list[SubMetricBaseline]] = {}
    for item in sorted(baselines, key=lambda row: (row.order_index, row.name)):
        grouped.setdefault(item.parent_key, []).append(item)
    return grouped


def index_by_name(items: list[SubMetricBaseline]) -> dict[str, SubMetricBaseline]:
    """Normalized-name lookup; the first line item wins when a statement repeats a name."""
    index: dict[str, SubMetricBaseline] = {}
    for item in items:
        index.setdefault(item.normalized_name, item)
    return index
