"""
aggregator.py — Period aggregation and breakdowns.

Folds costed orders into daily or monthly PeriodSummary rows. Every
summary is a plain sum over its bucket, so the daily rows of a month add
up to that month's row field by field.

Also provides the derived views the settlement and analytics screens use:
growth against the preceding window, city and weekday shares, busiest
dates, per-source daily trends, and storefront revenue by courier.
"""

import logging
from datetime import date
from typing import Any

import numpy as np
import pandas as pd

from codrecon.models import SUMMARY_COLUMNS, Growth, OrderOutcome

logger = logging.getLogger(__name__)

GRANULARITY_FORMATS = {"day": "%Y-%m-%d", "month": "%Y-%m"}

WEEKDAY_NAMES = [
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
]

_SUM_FIELDS = {
    "gross_amount": "gross_amount",
    "fees": "fee",
    "taxes": "tax",
    "withholding_tax": "withholding_tax",
    "upfront_payments": "upfront_payment",
    "net_amount": "net_amount",
}


def period_key(order_dates: pd.Series, granularity: str) -> pd.Series:
    """Return the bucket key ('YYYY-MM-DD' or 'YYYY-MM') for each date."""
    if granularity not in GRANULARITY_FORMATS:
        raise ValueError(
            f"Unknown granularity {granularity!r}; expected one of {sorted(GRANULARITY_FORMATS)}"
        )
    return pd.to_datetime(order_dates).dt.strftime(GRANULARITY_FORMATS[granularity])


def _empty_summaries() -> pd.DataFrame:
    df = pd.DataFrame(columns=SUMMARY_COLUMNS)
    for col in SUMMARY_COLUMNS[1:4]:
        df[col] = df[col].astype(int)
    for col in SUMMARY_COLUMNS[4:]:
        df[col] = df[col].astype(float)
    return df


def _with_flags(costed: pd.DataFrame) -> pd.DataFrame:
    df = costed.copy()
    df["_delivered"] = (df["outcome"] == OrderOutcome.DELIVERED.value).astype(int)
    df["_returned"] = (df["outcome"] == OrderOutcome.RETURNED.value).astype(int)
    for col in _SUM_FIELDS.values():
        if col not in df.columns:
            df[col] = 0.0
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0.0)
    return df


def aggregate(costed: pd.DataFrame, granularity: str = "month") -> pd.DataFrame:
    """Fold costed orders into PeriodSummary rows.

    Args:
        costed: Output of fees.apply_fee_model().
        granularity: 'day' or 'month'.

    Returns:
        DataFrame with SUMMARY_COLUMNS, one row per period, sorted
        ascending by period_key.

    Raises:
        ValueError: If granularity is not 'day' or 'month'.
    """
    if granularity not in GRANULARITY_FORMATS:
        raise ValueError(
            f"Unknown granularity {granularity!r}; expected one of {sorted(GRANULARITY_FORMATS)}"
        )
    if costed.empty:
        return _empty_summaries()

    df = _with_flags(costed)
    df["period_key"] = period_key(df["order_date"], granularity)

    grouped = df.groupby("period_key", sort=True).agg(
        total_orders=("outcome", "size"),
        delivered_orders=("_delivered", "sum"),
        returned_orders=("_returned", "sum"),
        **{name: (col, "sum") for name, col in _SUM_FIELDS.items()},
    )
    summaries = grouped.reset_index()[SUMMARY_COLUMNS]

    logger.info(
        "Aggregated %d orders into %d %s periods",
        len(df),
        len(summaries),
        granularity,
    )
    return summaries


def summarise_totals(costed: pd.DataFrame) -> dict[str, Any]:
    """All-time PeriodSummary-shaped totals; zero-valued for empty input."""
    totals: dict[str, Any] = {
        "period_key": "all",
        "total_orders": 0,
        "delivered_orders": 0,
        "returned_orders": 0,
        **{name: 0.0 for name in _SUM_FIELDS},
    }
    if costed.empty:
        return totals

    df = _with_flags(costed)
    totals["total_orders"] = int(len(df))
    totals["delivered_orders"] = int(df["_delivered"].sum())
    totals["returned_orders"] = int(df["_returned"].sum())
    for name, col in _SUM_FIELDS.items():
        totals[name] = float(df[col].sum())
    return totals


# ---------------------------------------------------------------------------
# Growth
# ---------------------------------------------------------------------------

def _growth(current: float, previous: float) -> Growth:
    # Zero previous period reports 0% rather than an undefined change
    if previous == 0:
        pct = 0.0
    else:
        pct = round((current - previous) / previous * 100, 1)
    return Growth(current=current, previous=previous, percentage=pct)


def _window_totals(orders: pd.DataFrame, start: pd.Timestamp, end: pd.Timestamp) -> tuple[int, float]:
    if orders.empty:
        return 0, 0.0
    dates = pd.to_datetime(orders["order_date"])
    mask = (dates >= start) & (dates <= end)
    revenue = pd.to_numeric(orders.loc[mask, "gross_amount"], errors="coerce").fillna(0.0)
    return int(mask.sum()), float(revenue.sum())


def _compare_windows(
    orders: pd.DataFrame,
    current: tuple[pd.Timestamp, pd.Timestamp],
    previous: tuple[pd.Timestamp, pd.Timestamp],
) -> dict[str, Growth]:
    cur_count, cur_rev = _window_totals(orders, *current)
    prev_count, prev_rev = _window_totals(orders, *previous)
    return {
        "orders": _growth(cur_count, prev_count),
        "revenue": _growth(round(cur_rev, 2), round(prev_rev, 2)),
    }


def compute_growth(
    orders: pd.DataFrame,
    start: date | str,
    end: date | str,
) -> dict[str, Growth]:
    """Compare [start, end] against the equal-length window just before it.

    Returns:
        {'orders': Growth, 'revenue': Growth} with revenue from gross_amount.
    """
    start_ts = pd.Timestamp(start).normalize()
    end_ts = pd.Timestamp(end).normalize()
    length = (end_ts - start_ts).days + 1
    prev_end = start_ts - pd.Timedelta(days=1)
    prev_start = prev_end - pd.Timedelta(days=length - 1)
    return _compare_windows(orders, (start_ts, end_ts), (prev_start, prev_end))


def month_over_month(orders: pd.DataFrame, today: date | None = None) -> dict[str, Growth]:
    """Current calendar month against the previous calendar month."""
    today_ts = pd.Timestamp(today or date.today()).normalize()
    month_start = today_ts.replace(day=1)
    month_end = month_start + pd.offsets.MonthEnd(0)
    prev_end = month_start - pd.Timedelta(days=1)
    prev_start = prev_end.replace(day=1)
    return _compare_windows(orders, (month_start, month_end), (prev_start, prev_end))


def week_over_week(orders: pd.DataFrame, today: date | None = None) -> dict[str, Growth]:
    """The seven days ending `today` against the seven days before them."""
    end = pd.Timestamp(today or date.today()).normalize()
    return compute_growth(orders, end - pd.Timedelta(days=6), end)


# ---------------------------------------------------------------------------
# Breakdowns
# ---------------------------------------------------------------------------

def _share(counts: pd.Series) -> pd.Series:
    total = counts.sum()
    if total == 0:
        return pd.Series(0.0, index=counts.index)
    return (counts / total * 100).round(1)


def city_breakdown(orders: pd.DataFrame) -> pd.DataFrame:
    """Order count, gross revenue and percentage share per city."""
    columns = ["city", "count", "revenue", "percentage"]
    if orders.empty:
        return pd.DataFrame(columns=columns)

    grouped = (
        orders.assign(_gross=pd.to_numeric(orders["gross_amount"], errors="coerce").fillna(0.0))
        .groupby("city")
        .agg(count=("_gross", "size"), revenue=("_gross", "sum"))
        .reset_index()
    )
    grouped["revenue"] = grouped["revenue"].round(2)
    grouped["percentage"] = _share(grouped["count"])
    return (
        grouped.sort_values(["count", "city"], ascending=[False, True])
        .reset_index(drop=True)[columns]
    )


def weekday_breakdown(orders: pd.DataFrame) -> pd.DataFrame:
    """Order count per ISO weekday, Monday first; all seven days present."""
    if orders.empty:
        counts = pd.Series(0, index=range(7))
        revenue = pd.Series(0.0, index=range(7))
    else:
        weekday = pd.to_datetime(orders["order_date"]).dt.weekday
        gross = pd.to_numeric(orders["gross_amount"], errors="coerce").fillna(0.0)
        counts = weekday.value_counts().reindex(range(7), fill_value=0)
        revenue = gross.groupby(weekday).sum().reindex(range(7), fill_value=0.0)

    return pd.DataFrame(
        {
            "day": WEEKDAY_NAMES,
            "count": counts.to_numpy().astype(int),
            "revenue": np.round(revenue.to_numpy().astype(float), 2),
            "percentage": _share(counts).to_numpy(),
        }
    )


def top_dates(orders: pd.DataFrame, n: int = 5) -> pd.DataFrame:
    """The n busiest order days by count (ties broken by earlier date)."""
    if orders.empty:
        return pd.DataFrame(columns=["date", "count"])
    days = period_key(orders["order_date"], "day")
    counts = days.value_counts().rename_axis("date").reset_index(name="count")
    return (
        counts.sort_values(["count", "date"], ascending=[False, True])
        .head(n)
        .reset_index(drop=True)
    )


def daily_trends(orders: pd.DataFrame) -> pd.DataFrame:
    """Per-day order counts split by source, plus total and revenue."""
    if orders.empty:
        return pd.DataFrame(columns=["date", "total", "revenue"])

    df = orders.assign(
        date=period_key(orders["order_date"], "day"),
        _gross=pd.to_numeric(orders["gross_amount"], errors="coerce").fillna(0.0),
    )
    by_source = pd.crosstab(df["date"], df["source"])
    trends = by_source.copy()
    trends.insert(0, "total", by_source.sum(axis=1))
    trends["revenue"] = df.groupby("date")["_gross"].sum().round(2)
    trends.columns.name = None
    return trends.reset_index().sort_values("date").reset_index(drop=True)


PENDING_BUCKET = "cancelled_pending"


def _storefront_buckets(storefront_orders: pd.DataFrame) -> pd.DataFrame:
    """Storefront rows tagged with the courier bucket their revenue belongs to.

    Only fulfilled (Delivered) orders with a named courier count towards
    that courier. Refunded, voided, unfulfilled and courier-less orders all
    land in the pending bucket.
    """
    df = storefront_orders.copy()
    courier = df["courier"].fillna("").astype(str).str.strip()
    pending = (df["outcome"] != OrderOutcome.DELIVERED.value) | (courier == "")
    df["bucket"] = np.where(pending, PENDING_BUCKET, courier.str.lower())
    df["_gross"] = pd.to_numeric(df["gross_amount"], errors="coerce").fillna(0.0)
    return df


def storefront_courier_breakdown(storefront_orders: pd.DataFrame) -> pd.DataFrame:
    """Attribute storefront revenue to the courier partner that carried it."""
    columns = ["bucket", "orders", "revenue"]
    if storefront_orders.empty:
        return pd.DataFrame(columns=columns)

    df = _storefront_buckets(storefront_orders)
    breakdown = (
        df.groupby("bucket")
        .agg(orders=("_gross", "size"), revenue=("_gross", "sum"))
        .reset_index()
    )
    breakdown["revenue"] = breakdown["revenue"].round(2)
    logger.info(
        "Storefront revenue %.2f across %d buckets",
        breakdown["revenue"].sum(),
        len(breakdown),
    )
    return breakdown.sort_values(["revenue", "bucket"], ascending=[False, True]).reset_index(drop=True)[columns]


def storefront_courier_monthly(storefront_orders: pd.DataFrame) -> pd.DataFrame:
    """Storefront orders and revenue per month, with revenue split by bucket.

    Returns:
        DataFrame with month, orders, revenue and one revenue column per
        bucket (couriers alphabetically, then cancelled_pending), oldest
        month first.
    """
    empty = pd.DataFrame(columns=["month", "orders", "revenue", PENDING_BUCKET])
    if storefront_orders.empty:
        return empty

    df = _storefront_buckets(storefront_orders)
    df = df[pd.to_datetime(df["order_date"], errors="coerce").notna()].copy()
    if df.empty:
        return empty
    df["month"] = period_key(df["order_date"], "month")

    totals = df.groupby("month").agg(orders=("_gross", "size"), revenue=("_gross", "sum"))
    split = df.pivot_table(
        index="month", columns="bucket", values="_gross", aggfunc="sum", fill_value=0.0
    )
    buckets = sorted(b for b in split.columns if b != PENDING_BUCKET) + [PENDING_BUCKET]
    split = split.reindex(columns=buckets, fill_value=0.0)

    monthly = totals.join(split).round(2).sort_index().rename_axis("month").reset_index()
    monthly.columns.name = None
    return monthly

