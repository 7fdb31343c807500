"""
test_alerts.py — Unit tests for the alert detector.

Tests cover:
    - Stuck-in-transit ageing, severity boundaries and display cap
    - City return-rate spikes with the minimum-sample floor
    - Courier performance drops and nested problem cities
    - Ordering, idempotence and empty input
"""

import sys
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from codrecon.alerts import (
    detect_performance_drops,
    detect_return_spikes,
    detect_stuck_in_transit,
    performance_severity,
    return_severity,
    run_alerts,
    summarise_alerts,
    transit_severity,
)
from codrecon.config import thresholds_from_config
from codrecon.models import AlertType, OrderOutcome, Severity, Thresholds

NOW = date(2024, 3, 20)

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
        "order_date": "2024-03-20",
        "status_date": None,
        "status_text": "",
        "outcome": D,
        "gross_amount": 1000.0,
        "upfront_payment": 0.0,
    }
    base.update(overrides)
    return base


def _make_df(rows: list[dict]) -> pd.DataFrame:
    df = pd.DataFrame(rows)
    df["order_date"] = pd.to_datetime(df["order_date"])
    df["status_date"] = pd.to_datetime(df["status_date"])
    return df


def _batch(outcomes: list[str], prefix: str = "X", **overrides) -> list[dict]:
    return [
        _make_order(tracking_id=f"{prefix}{i:03d}", outcome=o, **overrides)
        for i, o in enumerate(outcomes)
    ]


# ---------------------------------------------------------------------------
# Severity helpers
# ---------------------------------------------------------------------------

class TestSeverityHelpers:
    def test_transit_boundaries(self):
        assert transit_severity(10, 5) is Severity.CRITICAL
        assert transit_severity(9, 5) is Severity.WARNING

    def test_return_boundaries(self):
        assert return_severity(22.5, 15) is Severity.WARNING
        assert return_severity(22.6, 15) is Severity.CRITICAL

    def test_performance_boundaries(self):
        assert performance_severity(60.0, 80) is Severity.WARNING
        assert performance_severity(59.9, 80) is Severity.CRITICAL


# ---------------------------------------------------------------------------
# Rule 1: Stuck in transit
# ---------------------------------------------------------------------------

class TestStuckInTransit:
    """Tests for the stuck-in-transit rule."""

    def test_twelve_days_is_critical(self):
        df = _make_df([_make_order(outcome=T, order_date="2024-03-08")])
        alerts = detect_stuck_in_transit(df, Thresholds(transit_days=5), NOW)
        assert len(alerts) == 1
        assert alerts[0].severity is Severity.CRITICAL
        assert alerts[0].details["orders"][0]["days_in_transit"] == 12

    def test_seven_days_is_warning(self):
        df = _make_df([_make_order(outcome=T, order_date="2024-03-13")])
        alerts = detect_stuck_in_transit(df, Thresholds(transit_days=5), NOW)
        assert len(alerts) == 1
        assert alerts[0].severity is Severity.WARNING
        assert alerts[0].subject_key == "stuck_warning"

    def test_at_threshold_not_flagged(self):
        """Exactly transit_days old is not stuck (strict >)."""
        df = _make_df([_make_order(outcome=T, order_date="2024-03-15")])
        assert detect_stuck_in_transit(df, Thresholds(transit_days=5), NOW) == []

    def test_only_in_transit_orders_considered(self):
        df = _make_df(_batch([D, R, C], order_date="2024-01-01"))
        assert detect_stuck_in_transit(df, Thresholds(), NOW) == []

    def test_grouped_by_severity(self):
        rows = [
            _make_order(tracking_id="A", outcome=T, order_date="2024-03-01"),
            _make_order(tracking_id="B", outcome=T, order_date="2024-03-08"),
            _make_order(tracking_id="C", outcome=T, order_date="2024-03-13"),
        ]
        alerts = detect_stuck_in_transit(_make_df(rows), Thresholds(), NOW)
        by_key = {a.subject_key: a for a in alerts}
        assert by_key["stuck_critical"].details["total_count"] == 2
        assert by_key["stuck_warning"].details["total_count"] == 1
        # Longest-waiting first
        listed = [o["tracking_id"] for o in by_key["stuck_critical"].details["orders"]]
        assert listed == ["A", "B"]

    def test_display_cap_keeps_total_count(self):
        rows = _batch([T] * 5, order_date="2024-03-01")
        alerts = detect_stuck_in_transit(_make_df(rows), Thresholds(stuck_display_limit=2), NOW)
        assert len(alerts[0].details["orders"]) == 2
        assert alerts[0].details["total_count"] == 5


# ---------------------------------------------------------------------------
# Rule 2: Return spikes
# ---------------------------------------------------------------------------

class TestReturnSpikes:
    """Tests for the city return-rate rule."""

    def test_twenty_percent_returns_is_warning(self):
        df = _make_df(_batch([D] * 7 + [R] * 2 + [T]))
        alerts = detect_return_spikes(df, Thresholds(return_rate_percent=15))
        assert len(alerts) == 1
        assert alerts[0].type is AlertType.RETURN_SPIKE
        assert alerts[0].severity is Severity.WARNING
        assert alerts[0].subject_key == "Karachi"
        assert alerts[0].details["return_rate"] == 20.0
        assert alerts[0].details["in_transit"] == 1

    def test_high_rate_is_critical(self):
        df = _make_df(_batch([D] * 6 + [R] * 4))
        alerts = detect_return_spikes(df, Thresholds(return_rate_percent=15))
        assert alerts[0].severity is Severity.CRITICAL

    def test_small_city_ignored(self):
        df = _make_df(_batch([D, D, R, R]))
        assert detect_return_spikes(df, Thresholds(min_city_orders=5)) == []

    def test_rate_at_threshold_not_flagged(self):
        df = _make_df(_batch([D] * 17 + [R] * 3))  # exactly 15%
        assert detect_return_spikes(df, Thresholds(return_rate_percent=15)) == []

    def test_one_alert_per_city(self):
        rows = _batch([D] * 5 + [R] * 5, prefix="K", city="Karachi") + _batch(
            [D] * 3 + [R] * 3, prefix="L", city="Lahore"
        )
        alerts = detect_return_spikes(_make_df(rows), Thresholds())
        assert sorted(a.subject_key for a in alerts) == ["Karachi", "Lahore"]


# ---------------------------------------------------------------------------
# Rule 3: Performance drops
# ---------------------------------------------------------------------------

class TestPerformanceDrops:
    """Tests for the courier delivery-rate rule."""

    def test_seventy_percent_is_warning(self):
        df = _make_df(_batch([D] * 7 + [R] * 2 + [T]))
        alerts = detect_performance_drops(df, Thresholds(performance_rate_percent=80))
        assert len(alerts) == 1
        assert alerts[0].severity is Severity.WARNING
        assert alerts[0].details["delivery_rate"] == 70.0

    def test_fifty_percent_is_critical(self):
        df = _make_df(_batch([D] * 5 + [R] * 5))
        alerts = detect_performance_drops(df, Thresholds(performance_rate_percent=80))
        assert alerts[0].severity is Severity.CRITICAL

    def test_cancelled_counts_in_denominator(self):
        df = _make_df(_batch([D] * 8 + [C] * 2))
        alerts = detect_performance_drops(df, Thresholds(performance_rate_percent=85))
        assert alerts[0].details["delivery_rate"] == 80.0

    def test_too_few_orders_ignored(self):
        df = _make_df(_batch([D] * 4 + [R] * 5))
        assert detect_performance_drops(df, Thresholds(min_courier_orders=10)) == []

    def test_problem_cities_nested(self):
        rows = _batch([D] * 6, prefix="K", city="Karachi") + _batch(
            [D, R, R, R], prefix="L", city="Lahore"
        )
        alerts = detect_performance_drops(_make_df(rows), Thresholds())
        problem = alerts[0].details["problem_cities"]
        assert [p["city"] for p in problem] == ["Lahore"]
        assert problem[0]["delivery_rate"] == 25.0

    def test_one_alert_per_courier(self):
        rows = _batch([D] * 5 + [R] * 5, prefix="P", courier="PostEx") + _batch(
            [D] * 10, prefix="Z", courier="Zoom"
        )
        alerts = detect_performance_drops(_make_df(rows), Thresholds())
        assert [a.subject_key for a in alerts] == ["PostEx"]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class TestRunAlerts:
    """Tests for the combined run."""

    def _mixed(self) -> pd.DataFrame:
        rows = _batch([D] * 7 + [R] * 2 + [T]) + [
            _make_order(tracking_id="OLD", outcome=T, order_date="2024-03-01", city="Multan"),
        ]
        return _make_df(rows)

    def test_most_severe_first(self):
        alerts = run_alerts(self._mixed(), Thresholds(), NOW)
        ranks = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}
        assert [ranks[a.severity] for a in alerts] == sorted(ranks[a.severity] for a in alerts)
        assert alerts[0].type is AlertType.STUCK_IN_TRANSIT

    def test_idempotent(self):
        df = self._mixed()
        original = df.copy()
        first = run_alerts(df, Thresholds(), NOW)
        second = run_alerts(df, Thresholds(), NOW)
        assert first == second
        pd.testing.assert_frame_equal(df, original)

    def test_empty_orders_no_alerts(self):
        assert run_alerts(pd.DataFrame(), Thresholds(), NOW) == []

    def test_summary_counts(self):
        alerts = run_alerts(self._mixed(), Thresholds(), NOW)
        summary = summarise_alerts(alerts)
        assert summary["total_alerts"] == len(alerts)
        assert summary["critical"] + summary["warning"] + summary["info"] == len(alerts)
        assert summary["by_type"]["StuckInTransit"] == 1
        assert summary["stuck_in_transit"] == 1

    @pytest.mark.parametrize("transit_days", [3, 5, 10])
    def test_thresholds_not_mutated(self, transit_days):
        thresholds = Thresholds(transit_days=transit_days)
        run_alerts(self._mixed(), thresholds, NOW)
        assert thresholds.transit_days == transit_days

    def test_to_dict_is_json_ready(self):
        stuck = [a for a in run_alerts(self._mixed(), Thresholds(), NOW)
                 if a.type is AlertType.STUCK_IN_TRANSIT][0]
        data = stuck.to_dict()
        assert data["type"] == "StuckInTransit"
        assert data["severity"] == stuck.severity.value
        assert data["subject_key"] == stuck.subject_key
        assert data["details"] is stuck.details

    def test_thresholds_from_quoted_config(self):
        thresholds = thresholds_from_config(
            {"alerts": {"transit_days": "5", "return_rate_percent": "15", "min_city_orders": "5"}}
        )
        alerts = run_alerts(self._mixed(), thresholds, NOW)
        assert alerts == run_alerts(self._mixed(), Thresholds(), NOW)
