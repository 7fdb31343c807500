"""
test_sources.py — Tests for snapshot loading and configuration helpers.

Tests cover:
    - JSON / CSV snapshot reading without value coercion
    - Missing or unsupported snapshots marking a source as failed
    - YAML loading and threshold / status / window defaults
"""

import json
import logging
import sys
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent))

from codrecon.config import (
    DEFAULT_ACCEPTED_STATUSES,
    accepted_statuses_from_config,
    load_config,
    thresholds_from_config,
    window_from_config,
)
from codrecon.models import Thresholds, WindowKind
from codrecon.sources import DEFAULT_SOURCES, configured_sources, load_snapshots, read_records


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

POSTEX_ORDERS = [
    {
        "trackingNumber": "PX000000001",
        "orderRefNumber": "1001",
        "transactionStatus": "Delivered",
        "invoicePayment": "1,250",
        "orderDate": "2024-03-01 10:00:00",
        "cityName": "Karachi",
    }
]


def _write_json(path: Path, records: list[dict]) -> Path:
    path.write_text(json.dumps(records))
    return path


def _sources_cfg(tmp_path: Path, **sources) -> dict:
    return {"paths": {"snapshot_dir": str(tmp_path)}, "sources": sources}


# ---------------------------------------------------------------------------
# read_records
# ---------------------------------------------------------------------------

class TestReadRecords:
    def test_json_values_kept_as_written(self, tmp_path):
        path = _write_json(tmp_path / "orders.json", POSTEX_ORDERS)
        records = read_records(path)
        assert records[0]["invoicePayment"] == "1,250"
        assert records[0]["orderDate"] == "2024-03-01 10:00:00"

    def test_csv(self, tmp_path):
        path = tmp_path / "orders.csv"
        path.write_text("trackingNumber,invoicePayment\nPX1,900\n")
        assert read_records(path) == [{"trackingNumber": "PX1", "invoicePayment": "900"}]

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_records(tmp_path / "nope.json")

    def test_unsupported_format_raises(self, tmp_path):
        path = tmp_path / "orders.xml"
        path.write_text("<orders/>")
        with pytest.raises(ValueError):
            read_records(path)


# ---------------------------------------------------------------------------
# load_snapshots
# ---------------------------------------------------------------------------

class TestLoadSnapshots:
    """Tests for concurrent per-source loading."""

    def test_orders_and_receipts(self, tmp_path):
        _write_json(tmp_path / "px.json", POSTEX_ORDERS)
        _write_json(tmp_path / "px_receipts.json", [{"netAmount": 100}])
        cfg = _sources_cfg(tmp_path, postex={"orders_file": "px.json", "receipts_file": "px_receipts.json"})

        orders, receipts, failed = load_snapshots(cfg)
        assert len(orders["postex"]) == 1
        assert receipts["postex"] == [{"netAmount": 100}]
        assert failed == []

    def test_missing_source_is_failed_not_fatal(self, tmp_path):
        _write_json(tmp_path / "px.json", POSTEX_ORDERS)
        cfg = _sources_cfg(tmp_path, postex={"orders_file": "px.json"}, zoom={"orders_file": "zoom.json"})

        orders, receipts, failed = load_snapshots(cfg)
        assert list(orders) == ["postex"]
        assert failed == ["zoom"]
        assert receipts == {}

    def test_missing_receipts_fail_the_source(self, tmp_path):
        _write_json(tmp_path / "px.json", POSTEX_ORDERS)
        cfg = _sources_cfg(tmp_path, postex={"orders_file": "px.json", "receipts_file": "gone.json"})
        _, _, failed = load_snapshots(cfg)
        assert failed == ["postex"]

    def test_snapshot_dir_override(self, tmp_path):
        _write_json(tmp_path / "postex_orders.json", POSTEX_ORDERS)
        cfg = {"sources": {"PostEx": {}}}
        orders, _, failed = load_snapshots(cfg, snapshot_dir=tmp_path)
        assert "postex" in orders
        assert failed == []

    def test_default_sources(self):
        assert configured_sources({}) == DEFAULT_SOURCES
        assert configured_sources(None)["shopify"]["kind"] == "storefront"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestConfig:
    """Tests for YAML loading and section defaults."""

    def test_load_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"alerts": {"transit_days": 7}}))
        assert load_config(str(path)) == {"alerts": {"transit_days": 7}}

    def test_empty_file_is_empty_dict(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(str(path)) == {}

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_threshold_defaults(self):
        assert thresholds_from_config({}) == Thresholds()

    def test_threshold_overrides_ignore_unknown_keys(self):
        thresholds = thresholds_from_config({"alerts": {"transit_days": 3, "colour": "red"}})
        assert thresholds.transit_days == 3
        assert thresholds.return_rate_percent == Thresholds().return_rate_percent

    def test_quoted_thresholds_coerced_to_field_types(self):
        thresholds = thresholds_from_config(
            {"alerts": {"transit_days": "7", "return_rate_percent": "12.5", "min_city_orders": 4.0}}
        )
        assert thresholds.transit_days == 7
        assert isinstance(thresholds.transit_days, int)
        assert thresholds.return_rate_percent == 12.5
        assert isinstance(thresholds.min_city_orders, int)

    @pytest.mark.parametrize("bad", ["abc", None, True, "2.5", "nan", [5]])
    def test_invalid_threshold_keeps_default(self, bad, caplog):
        with caplog.at_level(logging.WARNING, logger="codrecon.config"):
            thresholds = thresholds_from_config({"alerts": {"transit_days": bad}})
        assert thresholds.transit_days == Thresholds().transit_days
        assert "transit_days" in caplog.text


    def test_accepted_statuses_merge(self):
        merged = accepted_statuses_from_config({"settlement": {"accepted_statuses": {"Tranzo": ["Settled"]}}})
        assert merged["tranzo"] == ("Settled",)
        assert merged["postex"] == DEFAULT_ACCEPTED_STATUSES["postex"]

    def test_window(self):
        assert window_from_config(None) is WindowKind.CURRENT
        assert window_from_config({"settlement": {"window": "ALL"}}) is WindowKind.ALL

    def test_invalid_window_raises(self):
        with pytest.raises(ValueError):
            window_from_config({"settlement": {"window": "weekly"}})

    def test_shipped_config_loads(self):
        cfg = load_config(str(Path(__file__).parent.parent / "config.yaml"))
        assert thresholds_from_config(cfg) == Thresholds()
        assert set(configured_sources(cfg)) == {"postex", "tranzo", "zoom", "shopify"}
