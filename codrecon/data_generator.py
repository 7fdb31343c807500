"""
data_generator.py — Synthetic courier and storefront snapshot generator.

Generates a realistic order history for every configured source, written
in each vendor's own field layout, so the full pipeline can be run and
demonstrated without API credentials.

Built-in conditions the engine should surface:
    - a problem city whose parcels are returned far more often
    - a handful of parcels that never leave transit
    - some courier returns left un-refunded on the storefront

Outputs (in paths.snapshot_dir):
    <source>_orders.json    — order snapshot per source
    <source>_receipts.json  — settlement receipts for couriers that send them
"""

import logging
from datetime import date, timedelta
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from codrecon.sources import configured_sources

logger = logging.getLogger(__name__)

CITIES = [
    "Karachi", "Lahore", "Islamabad", "Rawalpindi", "Faisalabad",
    "Multan", "Peshawar", "Quetta", "Hyderabad", "Sialkot",
]

COURIER_NAMES = {"postex": "PostEx", "tranzo": "Tranzo", "zoom": "Zoom"}

# Raw vendor status text per canonical outcome
VENDOR_STATUSES = {
    "postex": {
        "delivered": ["Delivered", "Transferred"],
        "returned": ["Returned", "Return In Process"],
        "in_transit": ["Under Review", "Out For Delivery", "PostEx WareHouse"],
        "cancelled": ["Cancelled"],
    },
    "tranzo": {
        "delivered": ["Delivered"],
        "returned": ["Returned to Shipper", "Return Confirmed"],
        "in_transit": ["Booked", "In Transit", "Arrived at Destination"],
        "cancelled": ["Cancelled"],
    },
    "zoom": {
        "delivered": ["Delivered"],
        "returned": ["Returned"],
        "in_transit": ["Picked", "On Route"],
        "cancelled": ["Cancelled"],
    },
}

DEFAULT_GENERATION = {
    "seed": 42,
    "days_history": 90,
    "orders_per_day_mean": {"postex": 30, "tranzo": 18, "zoom": 8},
    "orders_per_day_std": 5,
    "amount_mean": 3200,
    "amount_std": 1100,
    "outcome_weights": {"delivered": 0.82, "returned": 0.1, "cancelled": 0.03},
    "problem_city": "Quetta",
    "problem_city_return_rate": 0.35,
    "stuck_orders": 6,
    "unrefunded_return_rate": 0.15,
}


def _generation_config(cfg: dict[str, Any]) -> dict[str, Any]:
    merged = dict(DEFAULT_GENERATION)
    merged.update((cfg or {}).get("data_generation") or {})
    return merged


def _pick_outcome(
    rng: np.random.Generator,
    age_days: int,
    city: str,
    gen: dict[str, Any],
) -> str:
    weights = gen["outcome_weights"]
    returned = weights["returned"]
    if city == gen["problem_city"]:
        returned = gen["problem_city_return_rate"]

    # Recent parcels are mostly still on the road
    if age_days <= 3:
        p_transit = 0.7
    elif age_days <= 5:
        p_transit = 0.25
    else:
        p_transit = 0.0

    roll = float(rng.random())
    if roll < p_transit:
        return "in_transit"
    roll = float(rng.random())
    if roll < weights["cancelled"]:
        return "cancelled"
    if roll < weights["cancelled"] + returned:
        return "returned"
    return "delivered"


def _courier_record(
    source: str,
    ref: int,
    order_day: date,
    status_day: date,
    city: str,
    amount: float,
    status: str,
) -> dict[str, Any]:
    tracking = f"{source[:2].upper()}{ref:09d}"
    if source == "tranzo":
        return {
            "tracking_number": tracking,
            "reference_number": str(ref),
            "order_status": status,
            "cod_amount": amount,
            "created_at": f"{order_day.isoformat()}T10:15:00+05:00",
            "updated_at": f"{status_day.isoformat()}T16:40:00+05:00",
            "destination_city_name": city.upper(),
        }
    record = {
        "trackingNumber": tracking,
        "orderRefNumber": str(ref),
        "transactionStatus" if source == "postex" else "orderStatus": status,
        "invoicePayment" if source == "postex" else "orderAmount": amount,
        "orderDate": order_day.isoformat(),
        "transactionDate" if source == "postex" else "lastStatusTime": status_day.isoformat(),
        "cityName": city,
    }
    if source == "postex":
        record["upfrontPayment"] = 0
    return record


def _generate_courier_orders(
    source: str,
    gen: dict[str, Any],
    rng: np.random.Generator,
    today: date,
    ref_start: int,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Generate one courier's raw orders plus the storefront rows mirroring them.

    Returns:
        Tuple of (courier records, storefront records).
    """
    days = int(gen["days_history"])
    mean = (gen["orders_per_day_mean"] or {}).get(source, 10)
    statuses = VENDOR_STATUSES.get(source, VENDOR_STATUSES["zoom"])
    courier_name = COURIER_NAMES.get(source, source.title())

    courier_rows = []
    storefront_rows = []
    ref = ref_start
    for age in range(days, -1, -1):
        order_day = today - timedelta(days=age)
        n_orders = max(0, int(rng.normal(mean, gen["orders_per_day_std"])))
        for _ in range(n_orders):
            ref += 1
            city = str(rng.choice(CITIES))
            amount = round(max(300.0, float(rng.normal(gen["amount_mean"], gen["amount_std"]))), 0)
            outcome = _pick_outcome(rng, age, city, gen)
            status = str(rng.choice(statuses[outcome]))
            span = 0 if outcome == "in_transit" else int(rng.integers(1, 6))
            status_day = min(today, order_day + timedelta(days=span))

            record = _courier_record(source, ref, order_day, status_day, city, amount, status)
            tracking = record.get("trackingNumber") or record.get("tracking_number")
            courier_rows.append(record)
            storefront_rows.append(
                _storefront_record(ref, order_day, city, amount, outcome, courier_name, tracking, rng, gen)
            )

    return courier_rows, storefront_rows


def _storefront_record(
    ref: int,
    order_day: date,
    city: str,
    amount: float,
    outcome: str,
    courier_name: str,
    tracking: str,
    rng: np.random.Generator,
    gen: dict[str, Any],
) -> dict[str, Any]:
    if outcome == "cancelled":
        financial, fulfilment = "voided", "unfulfilled"
    elif outcome == "returned" and float(rng.random()) >= gen["unrefunded_return_rate"]:
        financial, fulfilment = "refunded", "fulfilled"
    elif outcome == "delivered":
        financial, fulfilment = "paid", "fulfilled"
    else:
        financial, fulfilment = "pending", "fulfilled"

    return {
        "orderName": f"#{ref}",
        "trackingNumbers": [tracking],
        "financialStatus": financial,
        "fulfillmentStatus": fulfilment,
        "totalPrice": f"{amount:.2f}",
        "createdAt": f"{order_day.isoformat()}T09:00:00+05:00",
        "shippingCity": city,
        "courierPartner": courier_name,
    }


def _inject_stuck_orders(
    rows: list[dict[str, Any]],
    count: int,
    source: str,
    rng: np.random.Generator,
    today: date,
) -> int:
    """Push a few older parcels back into transit so they look stuck."""
    candidates = [
        i for i, r in enumerate(rows)
        if (today - date.fromisoformat(str(r.get("orderDate") or r.get("created_at"))[:10])).days > 7
    ]
    if not candidates:
        return 0
    chosen = rng.choice(candidates, size=min(count, len(candidates)), replace=False)
    in_transit = VENDOR_STATUSES.get(source, VENDOR_STATUSES["zoom"])["in_transit"][0]
    for idx in chosen:
        row = rows[int(idx)]
        for key in ("transactionStatus", "orderStatus", "order_status"):
            if key in row:
                row[key] = in_transit
    return len(chosen)


def _generate_receipts(
    source: str,
    rows: list[dict[str, Any]],
    today: date,
) -> list[dict[str, Any]]:
    """Weekly settlement receipts covering ~90% of delivered value.

    The most recent week is still pending, so some balance stays
    outstanding.
    """
    df = pd.DataFrame(rows)
    if df.empty:
        return []
    status_col = "order_status" if source == "tranzo" else "transactionStatus"
    amount_col = "cod_amount" if source == "tranzo" else "invoicePayment"
    date_col = "created_at" if source == "tranzo" else "orderDate"

    statuses = df[status_col].astype(str).str.lower()
    delivered = df[statuses.str.contains("delivered") | statuses.str.contains("transferred")].copy()
    delivered["_week"] = pd.to_datetime(delivered[date_col].str[:10]).dt.to_period("W").dt.end_time.dt.date

    current_week = pd.Timestamp(today).to_period("W").end_time.date()
    receipts = []
    for week_end, grp in delivered.groupby("_week"):
        paid_on = min(today, week_end + timedelta(days=2))
        amount = round(float(grp[amount_col].sum()) * 0.9, 2)
        pending = week_end >= current_week
        if source == "tranzo":
            receipts.append(
                {
                    "net_amount": amount,
                    "invoice_status": "Pending" if pending else "Settled",
                    "created_at": f"{paid_on.isoformat()}T12:00:00+05:00",
                }
            )
        else:
            receipts.append(
                {
                    "netAmount": amount,
                    "cashPaymentReceiptStatusId": 1 if pending else 3,
                    "createDatetime": f"{paid_on.isoformat()} 12:00:00",
                }
            )
    return receipts


def _write_snapshot(records: list[dict[str, Any]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(records).to_json(path, orient="records", indent=2)


def generate_snapshots(cfg: dict[str, Any], today: date | None = None) -> dict[str, int]:
    """Generate and write order / receipt snapshots for every configured source.

    Args:
        cfg: Parsed configuration dictionary.
        today: Last day of the generated history; defaults to today.

    Returns:
        Mapping of snapshot file name -> record count.

    Raises:
        OSError: If the snapshot directory cannot be created or written to.
    """
    gen = _generation_config(cfg)
    today = today or date.today()
    rng = np.random.default_rng(gen["seed"])
    sources = configured_sources(cfg)
    snapshot_dir = Path(((cfg or {}).get("paths") or {}).get("snapshot_dir", "data/snapshots"))

    logger.info("Starting snapshot generation (seed=%d, %d days)", gen["seed"], gen["days_history"])

    written: dict[str, int] = {}
    storefront_rows: list[dict[str, Any]] = []
    ref_start = 100000
    for name, source_cfg in sources.items():
        if str(source_cfg.get("kind", "courier")).lower() == "storefront":
            continue
        rows, mirrored = _generate_courier_orders(name, gen, rng, today, ref_start)
        ref_start += 100000
        stuck = _inject_stuck_orders(rows, int(gen["stuck_orders"]), name, rng, today)
        storefront_rows.extend(mirrored)

        orders_file = source_cfg.get("orders_file") or f"{name}_orders.json"
        _write_snapshot(rows, snapshot_dir / orders_file)
        written[orders_file] = len(rows)
        logger.info("Generated %d %s orders (%d stuck)", len(rows), name, stuck)

        if source_cfg.get("receipts_file"):
            receipts = _generate_receipts(name, rows, today)
            _write_snapshot(receipts, snapshot_dir / source_cfg["receipts_file"])
            written[source_cfg["receipts_file"]] = len(receipts)

    for name, source_cfg in sources.items():
        if str(source_cfg.get("kind", "")).lower() != "storefront":
            continue
        orders_file = source_cfg.get("orders_file") or f"{name}_orders.json"
        _write_snapshot(storefront_rows, snapshot_dir / orders_file)
        written[orders_file] = len(storefront_rows)

    logger.info(
        "Snapshots written to %s — %d files | %d records",
        snapshot_dir,
        len(written),
        sum(written.values()),
    )
    return written
