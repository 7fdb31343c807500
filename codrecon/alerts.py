"""
alerts.py — Threshold-driven Alert Detector.

Applies three independent detection rules to a normalized order frame and
returns Alert objects with their detail payloads. The rules read only the
outcome column, never fee figures, and never mutate their inputs, so two
runs over the same orders and thresholds yield the same alerts in the
same order.

Detection Rules:
    1. StuckInTransit   — InTransit orders older than transit_days
    2. ReturnSpike      — city return rate above return_rate_percent
    3. PerformanceDrop  — courier delivery rate below performance_rate_percent
"""

import logging
from collections import Counter
from datetime import date
from typing import Any

import pandas as pd

from codrecon.models import (
    ALERT_TYPE_ORDER,
    SEVERITY_ORDER,
    Alert,
    AlertType,
    OrderOutcome,
    Severity,
    Thresholds,
)

logger = logging.getLogger(__name__)

# Outcomes that count toward a courier's delivery-rate denominator
_RATED_OUTCOMES = [
    OrderOutcome.DELIVERED.value,
    OrderOutcome.RETURNED.value,
    OrderOutcome.IN_TRANSIT.value,
    OrderOutcome.CANCELLED.value,
]


def _reference_day(now: date | pd.Timestamp | None) -> pd.Timestamp:
    ts = pd.Timestamp(now) if now is not None else pd.Timestamp.today()
    if ts.tzinfo is not None:
        ts = ts.tz_localize(None)
    return ts.normalize()


def _pct(numerator: float, denominator: float) -> float:
    return numerator / denominator * 100 if denominator else 0.0


# ---------------------------------------------------------------------------
# Severity helpers
# ---------------------------------------------------------------------------

def transit_severity(days_in_transit: int, transit_days: int) -> Severity:
    """Critical once an order has been in transit twice the allowed time."""
    return Severity.CRITICAL if days_in_transit >= 2 * transit_days else Severity.WARNING


def return_severity(return_rate: float, threshold: float) -> Severity:
    return Severity.CRITICAL if return_rate > 1.5 * threshold else Severity.WARNING


def performance_severity(delivery_rate: float, threshold: float) -> Severity:
    return Severity.CRITICAL if delivery_rate < threshold - 20 else Severity.WARNING


# ---------------------------------------------------------------------------
# Rule 1: Stuck in transit
# ---------------------------------------------------------------------------

def detect_stuck_in_transit(
    orders: pd.DataFrame,
    thresholds: Thresholds = Thresholds(),
    now: date | pd.Timestamp | None = None,
) -> list[Alert]:
    """Flag InTransit orders whose age exceeds transit_days.

    Offending orders are grouped into at most two alerts, one per
    severity. Each alert's details carry the orders (longest-waiting
    first, capped at stuck_display_limit) and the uncapped total_count.

    Args:
        orders: Normalized order frame.
        thresholds: Alert thresholds.
        now: Reference date; defaults to today.

    Returns:
        List of StuckInTransit alerts (possibly empty).
    """
    limit = thresholds.transit_days
    logger.info("Running Rule 1: Stuck In Transit (threshold=%d days)", limit)
    if orders.empty:
        return []

    today = _reference_day(now)
    in_transit = orders[orders["outcome"] == OrderOutcome.IN_TRANSIT.value].copy()
    if in_transit.empty:
        return []

    in_transit["_days"] = (today - pd.to_datetime(in_transit["order_date"])).dt.days
    stuck = in_transit[in_transit["_days"] > limit].copy()
    stuck = stuck.sort_values(["_days", "tracking_id"], ascending=[False, True])
    stuck["_severity"] = stuck["_days"].map(lambda d: transit_severity(int(d), limit))

    alerts = []
    for severity in (Severity.CRITICAL, Severity.WARNING):
        group = stuck[stuck["_severity"] == severity]
        if group.empty:
            continue

        listed = [
            {
                "tracking_id": r["tracking_id"],
                "courier": r["courier"],
                "city": r["city"],
                "order_date": pd.Timestamp(r["order_date"]).date().isoformat(),
                "days_in_transit": int(r["_days"]),
                "amount": float(r["gross_amount"]),
                "last_status": r.get("status_text", ""),
            }
            for r in group.head(thresholds.stuck_display_limit).to_dict(orient="records")
        ]
        min_days = 2 * limit if severity is Severity.CRITICAL else limit + 1
        alerts.append(
            Alert(
                type=AlertType.STUCK_IN_TRANSIT,
                severity=severity,
                subject_key=f"stuck_{severity.value.lower()}",
                title=f"{len(group)} orders stuck in transit for {min_days}+ days",
                details={"orders": listed, "total_count": int(len(group))},
            )
        )

    logger.info("Rule 1 flagged %d stuck orders", len(stuck))
    return alerts


# ---------------------------------------------------------------------------
# Rule 2: City return-rate spike
# ---------------------------------------------------------------------------

def _outcome_counts(orders: pd.DataFrame, key: str) -> pd.DataFrame:
    counts = pd.crosstab(orders[key], orders["outcome"])
    for outcome in OrderOutcome:
        if outcome.value not in counts.columns:
            counts[outcome.value] = 0
    counts.columns.name = None
    return counts


def detect_return_spikes(
    orders: pd.DataFrame,
    thresholds: Thresholds = Thresholds(),
) -> list[Alert]:
    """Flag cities whose return rate exceeds return_rate_percent.

    Cities with fewer than min_city_orders orders are ignored so a couple
    of returns in a tiny city cannot raise an alert.
    """
    threshold = thresholds.return_rate_percent
    logger.info(
        "Running Rule 2: Return Spike (threshold=%.1f%%, min orders=%d)",
        threshold,
        thresholds.min_city_orders,
    )
    if orders.empty:
        return []

    counts = _outcome_counts(orders, "city")
    counts["total"] = counts[[o.value for o in OrderOutcome]].sum(axis=1)

    alerts = []
    for city, row in counts.sort_index().iterrows():
        total = int(row["total"])
        if total < thresholds.min_city_orders:
            continue
        returned = int(row[OrderOutcome.RETURNED.value])
        rate = _pct(returned, total)
        if rate <= threshold:
            continue
        alerts.append(
            Alert(
                type=AlertType.RETURN_SPIKE,
                severity=return_severity(rate, threshold),
                subject_key=str(city),
                title=f"Return rate {rate:.1f}% in {city}",
                details={
                    "city": str(city),
                    "total": total,
                    "returned": returned,
                    "in_transit": int(row[OrderOutcome.IN_TRANSIT.value]),
                    "return_rate": round(rate, 1),
                    "threshold": threshold,
                },
            )
        )

    logger.info("Rule 2 flagged %d cities", len(alerts))
    return alerts


# ---------------------------------------------------------------------------
# Rule 3: Courier performance drop
# ---------------------------------------------------------------------------

def _problem_cities(courier_orders: pd.DataFrame, thresholds: Thresholds) -> list[dict[str, Any]]:
    counts = _outcome_counts(courier_orders, "city")
    counts["rated"] = counts[_RATED_OUTCOMES].sum(axis=1)

    cities = []
    for city, row in counts.iterrows():
        rated = int(row["rated"])
        if rated < thresholds.min_problem_city_orders:
            continue
        delivered = int(row[OrderOutcome.DELIVERED.value])
        rate = _pct(delivered, rated)
        if rate < thresholds.problem_city_rate_percent:
            cities.append(
                {
                    "city": str(city),
                    "total": rated,
                    "delivered": delivered,
                    "delivery_rate": round(rate, 1),
                }
            )
    cities.sort(key=lambda c: (c["delivery_rate"], c["city"]))
    return cities[: thresholds.problem_city_limit]


def detect_performance_drops(
    orders: pd.DataFrame,
    thresholds: Thresholds = Thresholds(),
) -> list[Alert]:
    """Flag couriers whose delivery rate is below performance_rate_percent.

    delivery_rate = delivered / (delivered + returned + in_transit + cancelled).
    Each alert nests the courier's worst cities for diagnosis.
    """
    threshold = thresholds.performance_rate_percent
    logger.info(
        "Running Rule 3: Performance Drop (threshold=%.1f%%, min orders=%d)",
        threshold,
        thresholds.min_courier_orders,
    )
    if orders.empty:
        return []

    counts = _outcome_counts(orders, "courier")
    counts["rated"] = counts[_RATED_OUTCOMES].sum(axis=1)

    alerts = []
    for courier, row in counts.sort_index().iterrows():
        rated = int(row["rated"])
        if rated == 0 or rated < thresholds.min_courier_orders:
            continue
        delivered = int(row[OrderOutcome.DELIVERED.value])
        returned = int(row[OrderOutcome.RETURNED.value])
        rate = _pct(delivered, rated)
        if rate >= threshold:
            continue

        courier_orders = orders[orders["courier"] == courier]
        alerts.append(
            Alert(
                type=AlertType.PERFORMANCE_DROP,
                severity=performance_severity(rate, threshold),
                subject_key=str(courier),
                title=f"{courier} delivery rate at {rate:.1f}%",
                details={
                    "courier": str(courier),
                    "total": rated,
                    "delivered": delivered,
                    "returned": returned,
                    "in_transit": int(row[OrderOutcome.IN_TRANSIT.value]),
                    "cancelled": int(row[OrderOutcome.CANCELLED.value]),
                    "delivery_rate": round(rate, 1),
                    "return_rate": round(_pct(returned, rated), 1),
                    "problem_cities": _problem_cities(courier_orders, thresholds),
                },
            )
        )

    logger.info("Rule 3 flagged %d couriers", len(alerts))
    return alerts


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

def sort_alerts(alerts: list[Alert]) -> list[Alert]:
    return sorted(
        alerts,
        key=lambda a: (SEVERITY_ORDER[a.severity], ALERT_TYPE_ORDER[a.type], a.subject_key),
    )


def run_alerts(
    orders: pd.DataFrame,
    thresholds: Thresholds = Thresholds(),
    now: date | pd.Timestamp | None = None,
) -> list[Alert]:
    """Run all three rules and return their alerts, most severe first.

    Absence of data yields an empty list, never an error.
    """
    alerts = []
    alerts.extend(detect_stuck_in_transit(orders, thresholds, now))
    alerts.extend(detect_return_spikes(orders, thresholds))
    alerts.extend(detect_performance_drops(orders, thresholds))
    alerts = sort_alerts(alerts)

    summary = summarise_alerts(alerts)
    logger.info(
        "Alert detection complete — Critical: %d | Warning: %d | Info: %d",
        summary["critical"],
        summary["warning"],
        summary["info"],
    )
    return alerts


def summarise_alerts(alerts: list[Alert]) -> dict[str, Any]:
    """Count alerts per severity and per type."""
    by_severity = Counter(a.severity for a in alerts)
    by_type = Counter(a.type for a in alerts)
    stuck = sum(
        a.details.get("total_count", 0)
        for a in alerts
        if a.type is AlertType.STUCK_IN_TRANSIT
    )
    return {
        "total_alerts": len(alerts),
        "critical": by_severity.get(Severity.CRITICAL, 0),
        "warning": by_severity.get(Severity.WARNING, 0),
        "info": by_severity.get(Severity.INFO, 0),
        "by_type": {t.value: by_type.get(t, 0) for t in AlertType},
        "stuck_in_transit": stuck,
    }
