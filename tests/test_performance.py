"""
test_performance.py — Unit tests for courier analytics and return discrepancies.

Tests cover:
    - Courier comparison rates
    - City return-rate ranking with minimum sample
    - Delivery-time averaging and bad-span filtering
    - Courier returns not refunded on the storefront
"""

import sys
from pathlib import Path

import pandas as pd

sys.path.insert(0, str(Path(__file__).parent.parent))

from codrecon.discrepancies import find_return_discrepancies
from codrecon.models import OrderOutcome
from codrecon.performance import city_return_rates, courier_comparison, delivery_times

D = OrderOutcome.DELIVERED.value
R = OrderOutcome.RETURNED.value
T = OrderOutcome.IN_TRANSIT.value
C = OrderOutcome.CANCELLED.value


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _make_order(**overrides) -> dict:
    """Return a minimal normalized order row with sensible defaults."""
    base = {
        "tracking_id": "PX000000001",
        "order_ref": "1001",
        "source": "postex",
        "city": "Karachi",
        "courier": "PostEx",
        "order_date": "2024-03-01",
        "status_date": "2024-03-04",
        "status_text": "",
        "outcome": D,
        "gross_amount": 1000.0,
    }
    base.update(overrides)
    return base


def _make_df(rows: list[dict]) -> pd.DataFrame:
    df = pd.DataFrame(rows)
    df["order_date"] = pd.to_datetime(df["order_date"])
    df["status_date"] = pd.to_datetime(df["status_date"])
    return df


# ---------------------------------------------------------------------------
# Courier comparison
# ---------------------------------------------------------------------------

class TestCourierComparison:
    def test_rates_per_courier(self):
        rows = [
            _make_order(tracking_id=f"P{i}", courier="PostEx", outcome=o)
            for i, o in enumerate([D, D, D, R])
        ] + [
            _make_order(tracking_id=f"Z{i}", courier="Zoom", outcome=o)
            for i, o in enumerate([D, T])
        ]
        table = courier_comparison(_make_df(rows)).set_index("courier")
        assert table.loc["PostEx", "delivery_rate"] == 75.0
        assert table.loc["PostEx", "return_rate"] == 25.0
        assert table.loc["Zoom", "in_transit"] == 1
        assert table.loc["Zoom", "cancelled"] == 0

    def test_empty(self):
        assert courier_comparison(pd.DataFrame()).empty


# ---------------------------------------------------------------------------
# City return rates
# ---------------------------------------------------------------------------

class TestCityReturnRates:
    def test_ranked_and_filtered(self):
        rows = (
            [_make_order(tracking_id=f"K{i}", city="Karachi", outcome=o) for i, o in enumerate([D, D, D, R])]
            + [_make_order(tracking_id=f"Q{i}", city="Quetta", outcome=o) for i, o in enumerate([R, R, D])]
            + [_make_order(tracking_id=f"M{i}", city="Multan", outcome=R) for i in range(2)]
        )
        table = city_return_rates(_make_df(rows))
        assert list(table["city"]) == ["Quetta", "Karachi"]
        assert table.iloc[0]["rate"] == 66.7

    def test_limit(self):
        rows = [
            _make_order(tracking_id=f"{city}{i}", city=city)
            for city in ("A", "B", "C")
            for i in range(3)
        ]
        assert len(city_return_rates(_make_df(rows), limit=2)) == 2


# ---------------------------------------------------------------------------
# Delivery times
# ---------------------------------------------------------------------------

class TestDeliveryTimes:
    def test_average_days_per_courier(self):
        rows = [
            _make_order(tracking_id="A", order_date="2024-03-01", status_date="2024-03-04"),
            _make_order(tracking_id="B", order_date="2024-03-01", status_date="2024-03-06"),
            # Same-day and implausibly long spans are ignored
            _make_order(tracking_id="C", order_date="2024-03-01", status_date="2024-03-01"),
            _make_order(tracking_id="D", order_date="2024-01-01", status_date="2024-03-15"),
            # Not delivered
            _make_order(tracking_id="E", outcome=R, status_date="2024-03-20"),
        ]
        times = delivery_times(_make_df(rows))
        by_courier = times["by_courier"].set_index("courier")
        assert by_courier.loc["PostEx", "avg_days"] == 4.0
        assert by_courier.loc["PostEx", "delivered_count"] == 2

    def test_city_courier_breakdown(self):
        rows = [
            _make_order(tracking_id="A", city="Karachi", status_date="2024-03-03"),
            _make_order(tracking_id="B", city="Lahore", status_date="2024-03-06"),
        ]
        table = delivery_times(_make_df(rows))["by_city_courier"]
        assert list(table["city"]) == ["Karachi", "Lahore"]
        assert list(table["avg_days"]) == [2.0, 5.0]

    def test_no_status_dates(self):
        rows = [_make_order(status_date=None)]
        assert delivery_times(_make_df(rows))["by_courier"].empty


# ---------------------------------------------------------------------------
# Return discrepancies
# ---------------------------------------------------------------------------

class TestReturnDiscrepancies:
    def _storefront(self, **overrides) -> dict:
        return _make_order(source="shopify", order_ref="#1001", tracking_id="", **overrides)

    def test_refunded_storefront_order_is_fine(self):
        courier = _make_df([_make_order(outcome=R)])
        storefront = _make_df([self._storefront(outcome=C)])
        frame, summary = find_return_discrepancies(courier, storefront)
        assert frame.empty
        assert summary["total_count"] == 0

    def test_paid_storefront_order_is_flagged(self):
        courier = _make_df([_make_order(outcome=R, gross_amount=1500.0)])
        storefront = _make_df([self._storefront(outcome=D, status_text="paid")])
        frame, summary = find_return_discrepancies(courier, storefront)
        assert list(frame["reason"]) == ["not_refunded"]
        assert summary["total_amount"] == 1500.0
        assert summary["by_courier"] == {"PostEx": 1}

    def test_match_by_tracking_id(self):
        courier = _make_df([_make_order(outcome=R, order_ref="ZZ-1")])
        storefront = _make_df(
            [_make_order(source="shopify", order_ref="#9999", tracking_id="PX000000001", outcome=C)]
        )
        frame, _ = find_return_discrepancies(courier, storefront)
        assert frame.empty

    def test_no_storefront_match(self):
        courier = _make_df([_make_order(outcome=R, order_ref="5555", tracking_id="PX5")])
        frame, _ = find_return_discrepancies(courier, pd.DataFrame())
        assert list(frame["reason"]) == ["no_storefront_order"]

    def test_delivered_courier_orders_ignored(self):
        courier = _make_df([_make_order(outcome=D)])
        storefront = _make_df([self._storefront(outcome=D)])
        frame, _ = find_return_discrepancies(courier, storefront)
        assert frame.empty
