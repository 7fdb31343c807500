"""
test_reconciler.py — Unit tests for the receipt reconciler.

Tests cover:
    - Calendar-month window keys
    - Accepted-status and window filtering of receipts
    - Outstanding balance (including negative, never clamped)
    - Per-source receipt field maps
"""

import sys
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from codrecon.models import Balance, WindowKind
from codrecon.reconciler import (
    filter_receipts,
    normalize_receipts,
    reconcile,
    reconcile_sources,
    window_month_keys,
)

TODAY = date(2024, 3, 20)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _receipts(rows: list[tuple]) -> pd.DataFrame:
    return pd.DataFrame(rows, columns=["amount", "status", "date"])


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------

class TestWindowKeys:
    def test_current(self):
        assert window_month_keys(WindowKind.CURRENT, TODAY) == ("2024-03",)

    def test_previous(self):
        assert window_month_keys("previous", TODAY) == ("2024-02",)

    def test_previous_across_year_boundary(self):
        assert window_month_keys(WindowKind.PREVIOUS, date(2024, 1, 10)) == ("2023-12",)

    def test_all_is_unbounded(self):
        assert window_month_keys(WindowKind.ALL, TODAY) is None

    def test_invalid_window_raises(self):
        with pytest.raises(ValueError):
            window_month_keys("fortnight", TODAY)


# ---------------------------------------------------------------------------
# Receipt filtering
# ---------------------------------------------------------------------------

class TestFilterReceipts:
    """Tests for status and window filtering."""

    def test_unaccepted_status_excluded(self):
        receipts = _receipts([(100.0, "Settled", "2024-03-05"), (50.0, "Pending", "2024-03-06")])
        kept = filter_receipts(receipts, ["Settled"], WindowKind.CURRENT, TODAY)
        assert list(kept["amount"]) == [100.0]

    def test_status_match_is_case_insensitive(self):
        receipts = _receipts([(100.0, "SETTLED", "2024-03-05")])
        kept = filter_receipts(receipts, ["Settled"], WindowKind.CURRENT, TODAY)
        assert len(kept) == 1

    def test_numeric_status_ids(self):
        receipts = _receipts(
            [(100.0, 3, "2024-03-05"), (40.0, 3.0, "2024-03-06"), (60.0, "4", "2024-03-07"), (70.0, 1, "2024-03-07")]
        )
        kept = filter_receipts(receipts, (2, 3, 4), WindowKind.CURRENT, TODAY)
        assert kept["amount"].sum() == 200.0

    def test_other_month_excluded(self):
        receipts = _receipts([(100.0, "Settled", "2024-02-28"), (30.0, "Settled", "2024-03-01")])
        kept = filter_receipts(receipts, ["Settled"], WindowKind.CURRENT, TODAY)
        assert list(kept["amount"]) == [30.0]

    def test_missing_status_excluded(self):
        receipts = _receipts([(100.0, None, "2024-03-05")])
        assert filter_receipts(receipts, ["Settled"], WindowKind.ALL, TODAY).empty


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------

class TestReconcile:
    """Tests for the outstanding balance."""

    def test_fully_settled_month(self):
        monthly = pd.DataFrame({"period_key": ["2024-03"], "net_amount": [5950.0]})
        receipts = [{"amount": 5950, "status": "Settled", "date": "2024-03-18"}]
        balance = reconcile(monthly, receipts, ["Settled"], WindowKind.CURRENT, TODAY)
        assert balance.net_owed == 5950.0
        assert balance.received == 5950.0
        assert balance.outstanding == 0.0
        assert balance.receipts_matched == 1

    def test_window_restricts_net_owed(self):
        monthly = pd.DataFrame({"period_key": ["2024-02", "2024-03"], "net_amount": [1000.0, 400.0]})
        assert reconcile(monthly, [], ["Settled"], WindowKind.CURRENT, TODAY).net_owed == 400.0
        assert reconcile(monthly, [], ["Settled"], WindowKind.PREVIOUS, TODAY).net_owed == 1000.0
        assert reconcile(monthly, [], ["Settled"], WindowKind.ALL, TODAY).net_owed == 1400.0

    def test_overpayment_is_negative_not_clamped(self):
        monthly = pd.DataFrame({"period_key": ["2024-03"], "net_amount": [100.0]})
        receipts = [{"amount": 250.0, "status": "Settled", "date": "2024-03-02"}]
        balance = reconcile(monthly, receipts, ["Settled"], WindowKind.CURRENT, TODAY)
        assert balance.outstanding == -150.0

    def test_empty_everything_is_zero(self):
        balance = reconcile(pd.DataFrame(), [], [], WindowKind.CURRENT, TODAY)
        assert (balance.net_owed, balance.received, balance.outstanding) == (0.0, 0.0, 0.0)

    def test_malformed_receipt_amount_is_zero(self):
        monthly = pd.DataFrame({"period_key": ["2024-03"], "net_amount": [100.0]})
        receipts = [{"amount": "oops", "status": "Settled", "date": "2024-03-02"}]
        balance = reconcile(monthly, receipts, ["Settled"], WindowKind.CURRENT, TODAY)
        assert balance.received == 0.0
        assert balance.outstanding == 100.0

    def test_reconcile_sources_gives_balance_per_source(self):
        monthly = pd.DataFrame({"period_key": ["2024-03"], "net_amount": [500.0]})
        balances = reconcile_sources(
            {"postex": monthly, "tranzo": monthly},
            {"postex": [{"netAmount": 200, "cashPaymentReceiptStatusId": 3, "createDatetime": "2024-03-04 12:00:00"}]},
            {"postex": (2, 3, 4), "tranzo": ("Settled",)},
            WindowKind.CURRENT,
            TODAY,
        )
        assert balances["postex"].outstanding == 300.0
        assert balances["tranzo"].outstanding == 500.0
        assert isinstance(balances["tranzo"], Balance)


# ---------------------------------------------------------------------------
# Receipt field maps
# ---------------------------------------------------------------------------

class TestNormalizeReceipts:
    def test_postex_cash_payment_receipts(self):
        df = normalize_receipts(
            [{"netAmount": "1,200", "cashPaymentReceiptStatusId": 2, "createDatetime": "2024-03-04 12:00:00"}],
            "postex",
        )
        assert df.iloc[0]["amount"] == 1200.0
        assert df.iloc[0]["status"] == 2
        assert df.iloc[0]["date"].startswith("2024-03")

    def test_tranzo_invoices(self):
        df = normalize_receipts(
            [{"net_amount": 900, "invoice_status": "Approved", "created_at": "2024-03-09T12:00:00+05:00"}],
            "tranzo",
        )
        assert df.iloc[0]["amount"] == 900.0
        assert df.iloc[0]["status"] == "Approved"

    def test_non_mapping_rows_ignored(self):
        df = normalize_receipts([None, "x", {"amount": 1, "status": "Settled", "date": "2024-03-01"}])
        assert len(df) == 1
