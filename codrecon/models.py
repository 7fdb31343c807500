"""
models.py — Shared vocabularies and value objects.

Order sets and period summaries travel as pandas DataFrames; the small
objects below describe everything else that crosses module boundaries.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class OrderOutcome(str, Enum):
    """Canonical delivery-lifecycle state of an order."""

    DELIVERED = "Delivered"
    RETURNED = "Returned"
    IN_TRANSIT = "InTransit"
    CANCELLED = "Cancelled"
    UNKNOWN = "Unknown"


class Severity(str, Enum):
    CRITICAL = "Critical"
    WARNING = "Warning"
    INFO = "Info"


class AlertType(str, Enum):
    STUCK_IN_TRANSIT = "StuckInTransit"
    RETURN_SPIKE = "ReturnSpike"
    PERFORMANCE_DROP = "PerformanceDrop"


class WindowKind(str, Enum):
    """Settlement windows offered to the reconciler."""

    CURRENT = "current"
    PREVIOUS = "previous"
    ALL = "all"


# Sort rank helpers for deterministic alert ordering
SEVERITY_ORDER = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}
ALERT_TYPE_ORDER = {
    AlertType.STUCK_IN_TRANSIT: 0,
    AlertType.RETURN_SPIKE: 1,
    AlertType.PERFORMANCE_DROP: 2,
}

# Columns of a normalized order frame, in presentation order
NORMALIZED_COLUMNS = [
    "tracking_id",
    "order_ref",
    "source",
    "city",
    "courier",
    "order_date",
    "status_date",
    "status_text",
    "outcome",
    "gross_amount",
    "upfront_payment",
    "vendor_reversal_fee",
    "vendor_reversal_tax",
]

COST_COLUMNS = ["fee", "tax", "withholding_tax", "upfront_payment", "net_amount"]

SUMMARY_COLUMNS = [
    "period_key",
    "total_orders",
    "delivered_orders",
    "returned_orders",
    "gross_amount",
    "fees",
    "taxes",
    "withholding_tax",
    "upfront_payments",
    "net_amount",
]


@dataclass(frozen=True)
class Thresholds:
    """Caller-configurable alert boundaries.

    Rates are percentages (15 means 15%).
    """

    transit_days: int = 5
    return_rate_percent: float = 15.0
    performance_rate_percent: float = 80.0
    min_city_orders: int = 5
    min_courier_orders: int = 10
    problem_city_rate_percent: float = 80.0
    min_problem_city_orders: int = 3
    stuck_display_limit: int = 50
    problem_city_limit: int = 10


@dataclass(frozen=True)
class FeeSchedule:
    """Per-source fee table entry. Rates are fractions of gross."""

    fee_rate: float = 0.0
    fee_flat: float = 0.0
    tax_rate: float = 0.0
    withholding_rate: float = 0.0
    return_fee_rate: float = 0.0
    return_fee_flat: float = 0.0
    use_vendor_reversal: bool = False
    settles: bool = True


@dataclass(frozen=True)
class Balance:
    """Amount a courier owes for one settlement window.

    outstanding is never clamped; a negative value means the courier has
    paid more than is currently computed as owed.
    """

    net_owed: float = 0.0
    received: float = 0.0
    outstanding: float = 0.0
    receipts_matched: int = 0
    window: str = WindowKind.ALL.value


@dataclass(frozen=True)
class Growth:
    current: float = 0.0
    previous: float = 0.0
    percentage: float = 0.0


@dataclass(frozen=True)
class Alert:
    type: AlertType
    severity: Severity
    subject_key: str
    title: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "subject_key": self.subject_key,
            "title": self.title,
            "details": self.details,
        }
