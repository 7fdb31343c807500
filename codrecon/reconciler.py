"""
reconciler.py — Receipt Reconciler.

Nets the settlement figures computed from orders against the payment
receipts each courier reports, producing the amount still owed.

Steps for one source and window:
    1. Keep receipts whose status is accepted and whose date falls in the
       window (calendar-month prefix match on the receipt date string).
    2. Sum them                                   -> received
    3. Sum net_amount of the window's summaries   -> net_owed
    4. outstanding = net_owed - received          (never clamped)
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Mapping

import pandas as pd

from codrecon.models import Balance, WindowKind
from codrecon.normalizer import to_amount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReceiptFields:
    amount: tuple[str, ...] = ("amount", "netAmount", "net_amount")
    status: tuple[str, ...] = ("status",)
    date: tuple[str, ...] = ("date", "createDatetime", "created_at")


RECEIPT_FIELDS: dict[str, ReceiptFields] = {
    # Cash payment receipts
    "postex": ReceiptFields(
        amount=("netAmount", "amount"),
        status=("cashPaymentReceiptStatusId", "status"),
        date=("createDatetime", "date"),
    ),
    # Merchant invoices
    "tranzo": ReceiptFields(
        amount=("net_amount", "netAmount", "amount"),
        status=("invoice_status", "invoiceStatus", "status"),
        date=("created_at", "createdAt", "date"),
    ),
}

RECEIPT_COLUMNS = ["amount", "status", "date"]


def _pick(record: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None and not (isinstance(value, float) and pd.isna(value)):
            return value
    return None


def _date_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date, pd.Timestamp)):
        return value.isoformat()
    return str(value).strip()


def _status_key(value: Any) -> str:
    # 2 and 2.0 (CSV round-trips) must compare equal to an accepted id of 2
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().lower()


def normalize_receipts(records: Iterable[Mapping[str, Any]], source: str = "") -> pd.DataFrame:
    """Map a source's receipt records onto amount / status / date columns.

    Amounts that cannot be parsed become 0.0; dates are kept as strings so
    window matching works on the calendar-day prefix of whatever the feed
    sent.
    """
    fields = RECEIPT_FIELDS.get(source.lower(), ReceiptFields())
    rows = []
    for record in records:
        if not isinstance(record, Mapping):
            continue
        rows.append(
            {
                "amount": to_amount(_pick(record, fields.amount)),
                "status": _pick(record, fields.status),
                "date": _date_text(_pick(record, fields.date)),
            }
        )
    return pd.DataFrame(rows, columns=RECEIPT_COLUMNS)


def window_month_keys(window: WindowKind | str, today: date | None = None) -> tuple[str, ...] | None:
    """Return the 'YYYY-MM' keys covered by a window, or None for all-time."""
    window = WindowKind(window)
    if window is WindowKind.ALL:
        return None
    today_ts = pd.Timestamp(today or date.today())
    current = today_ts.strftime("%Y-%m")
    if window is WindowKind.CURRENT:
        return (current,)
    previous = (today_ts.replace(day=1) - pd.Timedelta(days=1)).strftime("%Y-%m")
    return (previous,)


def filter_receipts(
    receipts: pd.DataFrame,
    accepted_statuses: Iterable[Any],
    window: WindowKind | str,
    today: date | None = None,
) -> pd.DataFrame:
    """Keep receipts with an accepted status whose date falls in the window."""
    if receipts.empty:
        return receipts.copy()

    accepted = {_status_key(s) for s in accepted_statuses}
    mask = receipts["status"].map(
        lambda s: s is not None and not pd.isna(s) and _status_key(s) in accepted
    ).astype(bool)

    month_keys = window_month_keys(window, today)
    if month_keys is not None:
        dates = receipts["date"].fillna("").astype(str)
        mask &= dates.map(lambda d: d.startswith(month_keys)).astype(bool)

    return receipts[mask].copy()


def reconcile(
    monthly: pd.DataFrame,
    receipts: pd.DataFrame | Iterable[Mapping[str, Any]],
    accepted_statuses: Iterable[Any],
    window: WindowKind | str = WindowKind.CURRENT,
    today: date | None = None,
    source: str = "",
) -> Balance:
    """Compute the outstanding balance for one settlement source.

    Args:
        monthly: Monthly PeriodSummary frame for the source.
        receipts: Receipt frame (amount/status/date) or raw receipt records.
        accepted_statuses: Statuses that count as paid out.
        window: current, previous or all.
        today: Reference date for the calendar windows.
        source: Source tag, used for raw receipt field mapping and logging.

    Returns:
        Balance with net_owed, received and outstanding. Outstanding may be
        negative.
    """
    window = WindowKind(window)
    if not isinstance(receipts, pd.DataFrame):
        receipts = normalize_receipts(receipts, source)

    matched = filter_receipts(receipts, accepted_statuses, window, today)
    received = float(matched["amount"].sum()) if not matched.empty else 0.0

    month_keys = window_month_keys(window, today)
    if monthly.empty:
        net_owed = 0.0
    elif month_keys is None:
        net_owed = float(monthly["net_amount"].sum())
    else:
        net_owed = float(monthly.loc[monthly["period_key"].isin(month_keys), "net_amount"].sum())

    net_owed = round(net_owed, 2)
    received = round(received, 2)
    balance = Balance(
        net_owed=net_owed,
        received=received,
        outstanding=round(net_owed - received, 2),
        receipts_matched=int(len(matched)),
        window=window.value,
    )

    log = logger.warning if balance.outstanding < 0 else logger.info
    log(
        "Reconciled %s (%s): owed %.2f | received %.2f across %d receipts | outstanding %.2f",
        source or "source",
        window.value,
        balance.net_owed,
        balance.received,
        balance.receipts_matched,
        balance.outstanding,
    )
    return balance


def reconcile_sources(
    monthly_by_source: Mapping[str, pd.DataFrame],
    receipts_by_source: Mapping[str, Any],
    accepted_statuses: Mapping[str, Iterable[Any]],
    window: WindowKind | str = WindowKind.CURRENT,
    today: date | None = None,
) -> dict[str, Balance]:
    """Reconcile every settling source; sources without receipts get received=0."""
    balances = {}
    for source, monthly in monthly_by_source.items():
        balances[source] = reconcile(
            monthly,
            receipts_by_source.get(source, []),
            accepted_statuses.get(source, ()),
            window=window,
            today=today,
            source=source,
        )
    return balances
