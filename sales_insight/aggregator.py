"""
Chart-ready aggregates from raw sales rows.

Design & Rationale:
- Pure transform: rows in, ChartData out. No model calls, no state, and the
  output is deterministic for a given input (fixed colour palette).
- Each aggregate only needs its own fields; a row missing one of them is
  skipped for that aggregate alone.
- Keys keep first-encountered order (groupby(sort=False)); sums are plain
  float sums with no rounding.
- Dates truncate to YYYY-MM-DD. A date that cannot be parsed is bucketed under
  INVALID_DATE_LABEL, which sorts after every ISO date.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .schemas import (
    ChartData,
    ScatterData,
    ScatterDataset,
    ScatterPoint,
    SeriesTotals,
    TimeSeries,
    TimeSeriesDataset,
)

logger = logging.getLogger(__name__)

INVALID_DATE_LABEL = "invalid-date"

# Strings pandas resolves against the wall clock
_RELATIVE_DATES = {"now", "today", "yesterday", "tomorrow"}

# Chart.js default palette
_PALETTE = [
    (54, 162, 235),
    (255, 99, 132),
    (75, 192, 192),
    (255, 159, 64),
    (153, 102, 255),
    (255, 205, 86),
    (201, 203, 207),
]


@dataclass(frozen=True)
class ColumnMapping:
    """Names of the row keys the aggregates read."""

    date: str = "日期"
    product: str = "產品"
    region: str = "區域"
    sales: str = "銷售額"

    @classmethod
    def from_vocabulary(cls, vocabulary) -> "ColumnMapping":
        c = vocabulary.columns
        return cls(date=c.date, product=c.product, region=c.region, sales=c.sales)


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return bool(pd.api.types.is_scalar(value) and pd.isna(value))


def _color(index: int, alpha: float) -> str:
    r, g, b = _PALETTE[index % len(_PALETTE)]
    return f"rgba({r}, {g}, {b}, {alpha})"


def normalize_date(value: Any) -> Optional[str]:
    """
    Truncate a date-like value to an ISO calendar date string.

    Returns None for a missing value and INVALID_DATE_LABEL for anything that
    cannot be read as a date.
    """
    if _is_missing(value):
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    if not isinstance(value, (datetime, str)):
        return INVALID_DATE_LABEL
    if isinstance(value, str):
        value = value.strip()
        if value.lower() in _RELATIVE_DATES:
            return INVALID_DATE_LABEL

    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError, OverflowError):
        return INVALID_DATE_LABEL

    if pd.isna(ts):
        return INVALID_DATE_LABEL
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC")
    return ts.strftime("%Y-%m-%d")


def _amount(value: Any) -> Optional[float]:
    """Sales amount as float, or None when absent or not numeric."""
    if _is_missing(value) or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(amount) else amount


def _label(value: Any) -> Optional[str]:
    return None if _is_missing(value) else str(value)


def _to_frame(rows: Sequence[Dict[str, Any]], columns: ColumnMapping) -> pd.DataFrame:
    records = [
        {
            "date": normalize_date(row.get(columns.date)),
            "product": _label(row.get(columns.product)),
            "region": _label(row.get(columns.region)),
            "sales": _amount(row.get(columns.sales)),
        }
        for row in rows
    ]
    df = pd.DataFrame.from_records(records, columns=["date", "product", "region", "sales"])
    df["sales"] = df["sales"].astype(float)
    return df


def _totals(df: pd.DataFrame, key: str) -> pd.Series:
    subset = df.dropna(subset=[key, "sales"])
    return subset.groupby(key, sort=False)["sales"].sum()


def _scatter(df: pd.DataFrame) -> ScatterData:
    points = df.dropna(subset=["product", "region", "sales"])
    datasets: List[ScatterDataset] = []
    for index, (region, group) in enumerate(points.groupby("region", sort=False)):
        data = [
            ScatterPoint(x=product, y=float(sales), size=float(sales) / 1000)
            for product, sales in zip(group["product"], group["sales"])
        ]
        datasets.append(ScatterDataset(label=region, data=data, backgroundColor=_color(index, 0.5)))
    return ScatterData(datasets=datasets)


def _time_series(df: pd.DataFrame, products: List[str]) -> TimeSeries:
    dated = df.dropna(subset=["date", "product", "sales"])
    by_day = {
        key: float(value)
        for key, value in dated.groupby(["date", "product"], sort=False)["sales"].sum().items()
    }
    labels = sorted(set(dated["date"]))
    datasets = [
        TimeSeriesDataset(
            label=product,
            data=[by_day.get((day, product), 0.0) for day in labels],
            borderColor=_color(index, 1),
            fill=False,
        )
        for index, product in enumerate(products)
    ]
    return TimeSeries(labels=labels, datasets=datasets)


def build_chart_data(
    rows: Sequence[Dict[str, Any]],
    columns: ColumnMapping = ColumnMapping(),
) -> ChartData:
    """Compute region/product totals, the region scatter and the product time series."""
    df = _to_frame(rows, columns)

    region_totals = _totals(df, "region")
    product_totals = _totals(df, "product")
    products = [str(p) for p in product_totals.index]

    invalid_dates = int((df["date"] == INVALID_DATE_LABEL).sum())
    if invalid_dates:
        logger.warning(f"{invalid_dates} row(s) with unparsable dates bucketed as '{INVALID_DATE_LABEL}'")

    chart_data = ChartData(
        regionSales=SeriesTotals(
            labels=[str(r) for r in region_totals.index],
            values=[float(v) for v in region_totals.values],
        ),
        productSales=SeriesTotals(labels=products, values=[float(v) for v in product_totals.values]),
        scatterData=_scatter(df),
        timeSeries=_time_series(df, products),
    )
    logger.info(
        f"Aggregated {len(df)} rows: {len(region_totals)} regions, {len(products)} products, "
        f"{len(chart_data.timeSeries.labels)} dates"
    )
    return chart_data
