"""
normalizer.py — Order Normalizer.

Maps each source's raw order records onto one normalized frame whose
`outcome` column is drawn from the closed OrderOutcome vocabulary. This is
the only place that inspects free-text vendor statuses; aggregation,
reconciliation and alerting all work off the outcome column.

Classification (case-insensitive, first match wins):
    1. Cancelled  — any status field contains a cancel term
    2. Returned   — any status field contains a return term
    3. Delivered  — any status field matches a delivered pattern
    4. InTransit  — none of the above, but the order has a tracking id
    5. Unknown    — everything else

Cancelled is checked first so a cancelled-and-returned order counts once,
as cancelled, and contributes nothing financially.
"""

import json
import logging
import math
import numbers
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import pandas as pd

from codrecon.models import NORMALIZED_COLUMNS, OrderOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusVocabulary:
    cancelled: tuple[str, ...] = ("cancel",)
    returned: tuple[str, ...] = ("return",)
    delivered: tuple[str, ...] = (r"\bdelivered\b",)


@dataclass(frozen=True)
class SourceFields:
    """Candidate field names for one source, checked in order."""

    tracking: tuple[str, ...] = ("trackingNumber", "tracking_number")
    order_ref: tuple[str, ...] = ("orderRefNumber", "reference_number")
    status: tuple[str, ...] = ("transactionStatus", "orderStatus", "lastStatus")
    amount: tuple[str, ...] = ("invoicePayment", "orderAmount", "amount")
    order_date: tuple[str, ...] = ("orderDate", "order_date")
    status_date: tuple[str, ...] = ("transactionDate", "lastStatusTime")
    city: tuple[str, ...] = ("cityName", "city")
    courier: tuple[str, ...] = ("courier",)
    upfront: tuple[str, ...] = ("upfrontPayment",)
    reversal_fee: tuple[str, ...] = ("reversalFee",)
    reversal_tax: tuple[str, ...] = ("reversalTax",)
    default_courier: str = ""


STATUS_VOCABULARIES: dict[str, StatusVocabulary] = {
    "postex": StatusVocabulary(delivered=(r"\bdelivered\b", r"\btransferred\b")),
    "tranzo": StatusVocabulary(),
    "zoom": StatusVocabulary(),
    "shopify": StatusVocabulary(
        cancelled=("cancel", "refund", "void"),
        delivered=(r"^fulfilled$",),
    ),
}
DEFAULT_VOCABULARY = StatusVocabulary(delivered=(r"\bdelivered\b", r"\btransferred\b"))

SOURCE_FIELDS: dict[str, SourceFields] = {
    "postex": SourceFields(
        status_date=("transactionDate", "lastStatusTime"),
        reversal_fee=("reversalTransactionFee", "reversalFee"),
        reversal_tax=("reversalTransactionTax", "reversalTax"),
        default_courier="PostEx",
    ),
    "tranzo": SourceFields(
        status=("transactionStatus", "orderStatus", "order_status"),
        amount=("invoicePayment", "cod_amount", "orderAmount"),
        order_date=("orderDate", "created_at"),
        status_date=("transactionDate", "updated_at"),
        city=("cityName", "destination_city_name", "city_name"),
        default_courier="Tranzo",
    ),
    "zoom": SourceFields(
        status=("transactionStatus", "orderStatus", "lastStatus"),
        status_date=("lastStatusTime", "transactionDate"),
        default_courier="Zoom",
    ),
    "shopify": SourceFields(
        tracking=("trackingNumber", "trackingNumbers", "tracking_numbers"),
        order_ref=("orderName", "orderNumber", "name"),
        status=("financialStatus", "fulfillmentStatus", "financial_status", "fulfillment_status"),
        amount=("totalPrice", "total_price"),
        order_date=("createdAt", "created_at"),
        status_date=("updatedAt", "updated_at"),
        city=("shippingCity", "shipping_city"),
        courier=("courierPartner",),
        upfront=(),
        reversal_fee=(),
        reversal_tax=(),
    ),
}
DEFAULT_FIELDS = SourceFields()


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == "" or value.strip().lower() in ("null", "none", "nan")
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _first_present(record: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if not _is_missing(value):
            return value
    return None


def to_amount(value: Any) -> float:
    """Coerce a vendor amount to float; anything unparseable is 0.0."""
    if _is_missing(value) or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        value = value.replace(",", "").strip()
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    return amount if math.isfinite(amount) else 0.0


# Numeric timestamps at or above this are epoch milliseconds, below it seconds
EPOCH_MS_THRESHOLD = 10**11


def _epoch_unit(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if not re.fullmatch(r"\d{9,13}(\.\d+)?", text):
            return None
        value = float(text)
    if not isinstance(value, numbers.Real):
        return None
    return "ms" if abs(value) >= EPOCH_MS_THRESHOLD else "s"


def to_day(value: Any) -> pd.Timestamp | None:
    """Parse a date-ish value and truncate it to calendar-day granularity.

    Numbers (and all-digit strings of 9 to 13 digits) are Unix epochs, in
    milliseconds from EPOCH_MS_THRESHOLD upwards and in seconds below it.
    Timezone offsets are dropped without conversion: source timestamps
    are taken to already be in local time.
    """
    if _is_missing(value):
        return None
    unit = _epoch_unit(value)
    try:
        if unit is not None:
            ts = pd.to_datetime(float(value), unit=unit, errors="coerce")
        else:
            ts = pd.to_datetime(value, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return None
    if ts is None or pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_localize(None)
    return ts.normalize()



def _as_list(value: Any) -> list[Any]:
    if _is_missing(value):
        return []
    if isinstance(value, str) and value.strip().startswith("["):
        try:
            value = json.loads(value)
        except ValueError:
            return [value]
    if isinstance(value, (list, tuple)):
        return [v for v in value if not _is_missing(v)]
    return [value]


def _tracking_id(record: Mapping[str, Any], fields: SourceFields) -> str:
    for key in fields.tracking:
        ids = _as_list(record.get(key))
        if ids:
            return str(ids[0]).strip()
    for fulfilment in _as_list(record.get("fulfillments")):
        if isinstance(fulfilment, Mapping) and not _is_missing(fulfilment.get("tracking_number")):
            return str(fulfilment["tracking_number"]).strip()
    return ""


def _courier(record: Mapping[str, Any], fields: SourceFields) -> str:
    courier = _first_present(record, fields.courier)
    if courier is not None:
        return str(courier).strip()
    for fulfilment in _as_list(record.get("fulfillments")):
        if isinstance(fulfilment, Mapping) and not _is_missing(fulfilment.get("tracking_company")):
            return str(fulfilment["tracking_company"]).strip()
    return fields.default_courier


def _city(record: Mapping[str, Any], fields: SourceFields) -> str:
    city = _first_present(record, fields.city)
    if city is None:
        return "Unknown"
    # Title-case each word the way city keys are displayed
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), str(city).strip().lower())


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify_status(
    statuses: Iterable[Any],
    source: str = "",
    has_tracking: bool = True,
) -> OrderOutcome:
    """Map raw status strings onto an OrderOutcome.

    Args:
        statuses: Every status field of the record (None entries ignored).
        source: Source tag selecting the vocabulary.
        has_tracking: Whether the record carries a tracking id; without one
            an unrecognised status is Unknown rather than InTransit.

    Returns:
        The canonical outcome.
    """
    vocab = STATUS_VOCABULARIES.get(source.lower(), DEFAULT_VOCABULARY)
    texts = [" ".join(str(s).lower().split()) for s in statuses if not _is_missing(s)]

    if any(term in text for text in texts for term in vocab.cancelled):
        return OrderOutcome.CANCELLED
    if any(term in text for text in texts for term in vocab.returned):
        return OrderOutcome.RETURNED
    if any(re.search(pattern, text) for text in texts for pattern in vocab.delivered):
        return OrderOutcome.DELIVERED
    if has_tracking:
        return OrderOutcome.IN_TRANSIT
    return OrderOutcome.UNKNOWN


# ---------------------------------------------------------------------------
# Record / collection normalization
# ---------------------------------------------------------------------------

def normalize_record(
    record: Mapping[str, Any],
    source: str,
) -> tuple[dict[str, Any] | None, str | None]:
    """Normalize one raw record.

    Returns:
        (row, None) on success, or (None, reason) when a required field
        (a usable date, an identifiable amount) is absent.
    """
    if not isinstance(record, Mapping):
        return None, "not_a_record"

    source = source.lower()
    fields = SOURCE_FIELDS.get(source, DEFAULT_FIELDS)

    # Order-placed date wins; status-change date is the fallback
    order_date = to_day(_first_present(record, fields.order_date))
    status_date = to_day(_first_present(record, fields.status_date))
    if order_date is None:
        order_date = status_date
    if order_date is None:
        return None, "missing_date"

    raw_amount = _first_present(record, fields.amount)
    if raw_amount is None:
        return None, "missing_amount"

    tracking_id = _tracking_id(record, fields)
    statuses = [record.get(key) for key in fields.status]
    outcome = classify_status(statuses, source, has_tracking=bool(tracking_id))
    status_text = next((str(s) for s in statuses if not _is_missing(s)), "")

    row = {
        "tracking_id": tracking_id,
        "order_ref": str(_first_present(record, fields.order_ref) or "").strip(),
        "source": source,
        "city": _city(record, fields),
        "courier": _courier(record, fields),
        "order_date": order_date,
        "status_date": status_date if status_date is not None else pd.NaT,
        "status_text": status_text,
        "outcome": outcome.value,
        "gross_amount": to_amount(raw_amount),
        "upfront_payment": to_amount(_first_present(record, fields.upfront)),
        "vendor_reversal_fee": _optional_amount(record, fields.reversal_fee),
        "vendor_reversal_tax": _optional_amount(record, fields.reversal_tax),
    }
    return row, None


def _optional_amount(record: Mapping[str, Any], keys: Iterable[str]) -> float:
    value = _first_present(record, keys)
    return float("nan") if value is None else to_amount(value)


def empty_orders_frame() -> pd.DataFrame:
    df = pd.DataFrame({col: pd.Series(dtype=object) for col in NORMALIZED_COLUMNS})
    for col in ("gross_amount", "upfront_payment", "vendor_reversal_fee", "vendor_reversal_tax"):
        df[col] = df[col].astype(float)
    df["order_date"] = pd.to_datetime(df["order_date"])
    df["status_date"] = pd.to_datetime(df["status_date"])
    return df


def normalize_orders(
    records: Iterable[Mapping[str, Any]],
    source: str,
) -> tuple[pd.DataFrame, Counter]:
    """Normalize every record from one source.

    Records that cannot be normalized are dropped and tallied by reason,
    never silently lost.

    Args:
        records: Raw order records as handed over by the fetch layer.
        source: Source tag (postex, tranzo, zoom, shopify, ...).

    Returns:
        Tuple of (normalized frame, Counter of skip reasons).

    Raises:
        TypeError: If `records` is not iterable.
    """
    if records is None or isinstance(records, (str, bytes, Mapping)):
        raise TypeError(f"{source} records must be an iterable of mappings")
    iterator = iter(records)

    rows = []
    skipped: Counter = Counter()
    for record in iterator:
        row, reason = normalize_record(record, source)
        if row is None:
            skipped[reason] += 1
            logger.debug("Skipped %s record (%s)", source, reason)
            continue
        rows.append(row)

    if not rows:
        df = empty_orders_frame()
    else:
        df = pd.DataFrame(rows, columns=NORMALIZED_COLUMNS)
        df["order_date"] = pd.to_datetime(df["order_date"])
        df["status_date"] = pd.to_datetime(df["status_date"])

    if skipped:
        logger.warning(
            "Normalized %d %s orders, skipped %d (%s)",
            len(df),
            source,
            sum(skipped.values()),
            dict(skipped),
        )
    else:
        logger.info("Normalized %d %s orders", len(df), source)
    return df, skipped


def normalize_sources(
    records_by_source: Mapping[str, Iterable[Mapping[str, Any]]],
) -> tuple[pd.DataFrame, dict[str, dict[str, int]]]:
    """Normalize several sources into one frame.

    Source tags are lower-cased; every source passed in gets a skip entry,
    even when none of its records survive.

    Returns:
        Tuple of (combined frame, skip reasons -> count per source).
    """
    frames = []
    skipped: dict[str, dict[str, int]] = {}
    for source, records in records_by_source.items():
        df, reasons = normalize_orders(records, source)
        skipped[source.lower()] = dict(reasons)
        if not df.empty:
            frames.append(df)

    if not frames:
        return empty_orders_frame(), skipped
    return pd.concat(frames, ignore_index=True), skipped

