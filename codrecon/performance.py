"""
performance.py — Courier performance analytics.

Descriptive companions to the alert rules: side-by-side courier rates,
the worst cities by return rate, and average order-to-delivery times.
"""

import logging

import pandas as pd

from codrecon.models import OrderOutcome

logger = logging.getLogger(__name__)

MAX_DELIVERY_DAYS = 60


def _rate(part: pd.Series, whole: pd.Series) -> pd.Series:
    return (part / whole.where(whole > 0) * 100).fillna(0.0).round(1)


def courier_comparison(orders: pd.DataFrame) -> pd.DataFrame:
    """Totals and delivery / return rates per courier."""
    columns = [
        "courier", "total", "delivered", "returned", "in_transit",
        "cancelled", "delivery_rate", "return_rate",
    ]
    if orders.empty:
        return pd.DataFrame(columns=columns)

    counts = pd.crosstab(orders["courier"], orders["outcome"])
    df = pd.DataFrame(index=counts.index)
    df["total"] = counts.sum(axis=1)
    df["delivered"] = counts.get(OrderOutcome.DELIVERED.value, 0)
    df["returned"] = counts.get(OrderOutcome.RETURNED.value, 0)
    df["in_transit"] = counts.get(OrderOutcome.IN_TRANSIT.value, 0)
    df["cancelled"] = counts.get(OrderOutcome.CANCELLED.value, 0)
    df["delivery_rate"] = _rate(df["delivered"], df["total"])
    df["return_rate"] = _rate(df["returned"], df["total"])
    return df.rename_axis("courier").reset_index().sort_values("courier").reset_index(drop=True)[columns]


def city_return_rates(
    orders: pd.DataFrame,
    min_orders: int = 3,
    limit: int = 20,
) -> pd.DataFrame:
    """Cities with at least `min_orders` orders, highest return rate first."""
    columns = ["city", "total", "returned", "rate"]
    if orders.empty:
        return pd.DataFrame(columns=columns)

    returned = (orders["outcome"] == OrderOutcome.RETURNED.value).astype(int)
    grouped = (
        orders.assign(_returned=returned)
        .groupby("city")
        .agg(total=("_returned", "size"), returned=("_returned", "sum"))
        .reset_index()
    )
    grouped = grouped[grouped["total"] >= min_orders].copy()
    grouped["rate"] = _rate(grouped["returned"], grouped["total"])
    return (
        grouped.sort_values(["rate", "city"], ascending=[False, True])
        .head(limit)
        .reset_index(drop=True)[columns]
    )


def delivery_times(orders: pd.DataFrame) -> dict[str, pd.DataFrame]:
    """Average order-to-delivery days, by courier and by city + courier.

    Uses the status-change date of Delivered orders; spans that are not
    strictly between 0 and MAX_DELIVERY_DAYS are treated as bad data and
    left out.

    Returns:
        {'by_courier': DataFrame, 'by_city_courier': DataFrame}
    """
    empty = {
        "by_courier": pd.DataFrame(columns=["courier", "avg_days", "delivered_count"]),
        "by_city_courier": pd.DataFrame(columns=["city", "courier", "avg_days", "delivered_count"]),
    }
    if orders.empty or "status_date" not in orders.columns:
        return empty

    delivered = orders[orders["outcome"] == OrderOutcome.DELIVERED.value].copy()
    delivered["_days"] = (
        pd.to_datetime(delivered["status_date"]) - pd.to_datetime(delivered["order_date"])
    ).dt.days
    delivered = delivered[(delivered["_days"] > 0) & (delivered["_days"] < MAX_DELIVERY_DAYS)]
    if delivered.empty:
        return empty

    by_courier = (
        delivered.groupby("courier")
        .agg(avg_days=("_days", "mean"), delivered_count=("_days", "size"))
        .round({"avg_days": 1})
        .reset_index()
    )
    by_city_courier = (
        delivered.groupby(["city", "courier"])
        .agg(avg_days=("_days", "mean"), delivered_count=("_days", "size"))
        .round({"avg_days": 1})
        .reset_index()
        .sort_values(["avg_days", "city", "courier"])
        .reset_index(drop=True)
    )
    logger.info(
        "Delivery times computed over %d delivered orders (%d couriers)",
        len(delivered),
        len(by_courier),
    )
    return {"by_courier": by_courier, "by_city_courier": by_city_courier}
