"""
sources.py — Snapshot loading for every configured source.

Each source's order (and optional receipt) snapshot is read in its own
worker thread. A source whose files are missing, unreadable or slower
than its timeout is logged and reported in `failed_sources`; the other
sources still load, so the engine can run over a partial data set.

Supported snapshot formats: JSON array of records (.json) and CSV (.csv).
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30

DEFAULT_SOURCES: dict[str, dict[str, Any]] = {
    "postex": {
        "kind": "courier",
        "orders_file": "postex_orders.json",
        "receipts_file": "postex_receipts.json",
    },
    "tranzo": {
        "kind": "courier",
        "orders_file": "tranzo_orders.json",
        "receipts_file": "tranzo_receipts.json",
    },
    "zoom": {"kind": "courier", "orders_file": "zoom_orders.json"},
    "shopify": {"kind": "storefront", "orders_file": "shopify_orders.json"},
}


def configured_sources(cfg: dict[str, Any] | None) -> dict[str, dict[str, Any]]:
    """Return the `sources` section, or the built-in four when it is absent."""
    section = (cfg or {}).get("sources")
    if not section:
        return {name: dict(spec) for name, spec in DEFAULT_SOURCES.items()}
    return {name.lower(): dict(spec or {}) for name, spec in section.items()}


def read_records(path: Path) -> list[dict[str, Any]]:
    """Read a JSON or CSV snapshot into a list of plain records.

    Values are kept as the feed wrote them (no date or numeric coercion);
    the normalizer owns parsing.

    Raises:
        FileNotFoundError: If the snapshot does not exist.
        ValueError: If the extension is not .json or .csv.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".json":
        df = pd.read_json(path, orient="records", dtype=False, convert_dates=False)
    elif suffix == ".csv":
        df = pd.read_csv(path, dtype=str)
    else:
        raise ValueError(f"Unsupported snapshot format: {path.name}")

    return df.to_dict(orient="records")


def _load_source(
    name: str,
    spec: dict[str, Any],
    snapshot_dir: Path,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]] | None]:
    orders_file = spec.get("orders_file") or f"{name}_orders.json"
    orders = read_records(snapshot_dir / orders_file)

    receipts = None
    if spec.get("receipts_file"):
        receipts = read_records(snapshot_dir / spec["receipts_file"])

    logger.debug(
        "Loaded %s: %d orders, %s receipts",
        name,
        len(orders),
        "no" if receipts is None else len(receipts),
    )
    return orders, receipts


def load_snapshots(
    cfg: dict[str, Any] | None,
    snapshot_dir: str | Path | None = None,
) -> tuple[dict[str, list], dict[str, list], list[str]]:
    """Load every configured source's snapshots concurrently.

    Args:
        cfg: Parsed configuration (uses `sources` and `paths.snapshot_dir`).
        snapshot_dir: Override for the snapshot directory.

    Returns:
        Tuple of (orders_by_source, receipts_by_source, failed_sources).
    """
    sources = configured_sources(cfg)
    if snapshot_dir is None:
        snapshot_dir = ((cfg or {}).get("paths") or {}).get("snapshot_dir", "data/snapshots")
    snapshot_dir = Path(snapshot_dir)

    orders_by_source: dict[str, list] = {}
    receipts_by_source: dict[str, list] = {}
    failed: list[str] = []

    if not sources:
        return orders_by_source, receipts_by_source, failed

    executor = ThreadPoolExecutor(max_workers=len(sources), thread_name_prefix="snapshot")
    started = time.monotonic()
    futures = {
        name: executor.submit(_load_source, name, spec, snapshot_dir)
        for name, spec in sources.items()
    }

    for name, future in futures.items():
        timeout = float(sources[name].get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS))
        remaining = max(0.0, timeout - (time.monotonic() - started))
        try:
            orders, receipts = future.result(timeout=remaining)
        except FutureTimeoutError:
            future.cancel()
            logger.warning("Source %s timed out after %.0fs", name, timeout)
            failed.append(name)
            continue
        except (OSError, ValueError) as exc:
            logger.warning("Source %s failed to load: %s", name, exc)
            failed.append(name)
            continue

        orders_by_source[name] = orders
        if receipts is not None:
            receipts_by_source[name] = receipts

    # Slow readers are abandoned, not awaited
    executor.shutdown(wait=False, cancel_futures=True)

    logger.info(
        "Loaded %d/%d sources from %s (%d orders)%s",
        len(orders_by_source),
        len(sources),
        snapshot_dir,
        sum(len(o) for o in orders_by_source.values()),
        f" | failed: {', '.join(failed)}" if failed else "",
    )
    return orders_by_source, receipts_by_source, failed
