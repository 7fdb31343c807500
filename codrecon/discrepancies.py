"""
discrepancies.py — Courier returns the storefront never refunded.

A parcel the courier reports as returned should have its storefront order
refunded or voided (Cancelled after normalization). Anything else means
revenue is being counted for goods that came back.

Matching, per courier order:
    1. order reference, compared without a leading '#'
    2. tracking id
"""

import logging
from typing import Any

import pandas as pd

from codrecon.models import OrderOutcome

logger = logging.getLogger(__name__)

DISCREPANCY_COLUMNS = [
    "tracking_id",
    "order_ref",
    "courier",
    "city",
    "order_date",
    "gross_amount",
    "courier_status",
    "storefront_ref",
    "storefront_status",
    "reason",
]


def _ref_key(value: Any) -> str:
    return str(value or "").strip().lstrip("#").lower()


def _index_by(frame: pd.DataFrame, column: str, key_fn) -> dict[str, dict[str, Any]]:
    index: dict[str, dict[str, Any]] = {}
    for row in frame.to_dict(orient="records"):
        key = key_fn(row.get(column))
        if key and key not in index:
            index[key] = row
    return index


def find_return_discrepancies(
    courier_orders: pd.DataFrame,
    storefront_orders: pd.DataFrame,
) -> tuple[pd.DataFrame, dict[str, Any]]:
    """List courier returns whose storefront order is not cancelled.

    Args:
        courier_orders: Normalized courier order frame (any sources).
        storefront_orders: Normalized storefront order frame.

    Returns:
        Tuple of (discrepancy frame, summary dict with total_count,
        total_amount and by_courier).
    """
    summary: dict[str, Any] = {"total_count": 0, "total_amount": 0.0, "by_courier": {}}
    if courier_orders.empty:
        return pd.DataFrame(columns=DISCREPANCY_COLUMNS), summary

    returned = courier_orders[courier_orders["outcome"] == OrderOutcome.RETURNED.value]
    by_ref = _index_by(storefront_orders, "order_ref", _ref_key) if not storefront_orders.empty else {}
    by_tracking = (
        _index_by(storefront_orders, "tracking_id", lambda v: str(v or "").strip())
        if not storefront_orders.empty
        else {}
    )

    rows = []
    for order in returned.to_dict(orient="records"):
        match = by_ref.get(_ref_key(order.get("order_ref")))
        if match is None:
            match = by_tracking.get(str(order.get("tracking_id") or "").strip())

        if match is None:
            reason = "no_storefront_order"
        elif match["outcome"] != OrderOutcome.CANCELLED.value:
            reason = "not_refunded"
        else:
            continue

        rows.append(
            {
                "tracking_id": order["tracking_id"],
                "order_ref": order["order_ref"],
                "courier": order["courier"],
                "city": order["city"],
                "order_date": order["order_date"],
                "gross_amount": float(order["gross_amount"]),
                "courier_status": order.get("status_text", ""),
                "storefront_ref": match["order_ref"] if match else "",
                "storefront_status": match.get("status_text", "") if match else "",
                "reason": reason,
            }
        )

    if not rows:
        logger.info("No return discrepancies across %d returned orders", len(returned))
        return pd.DataFrame(columns=DISCREPANCY_COLUMNS), summary

    frame = pd.DataFrame(rows, columns=DISCREPANCY_COLUMNS).sort_values(
        ["courier", "tracking_id"]
    ).reset_index(drop=True)
    summary["total_count"] = int(len(frame))
    summary["total_amount"] = round(float(frame["gross_amount"].sum()), 2)
    summary["by_courier"] = {
        str(courier): int(count)
        for courier, count in frame["courier"].value_counts().sort_index().items()
    }
    logger.warning(
        "%d returned orders not refunded on the storefront (%.2f at stake)",
        summary["total_count"],
        summary["total_amount"],
    )
    return frame, summary
