"""
engine.py — One reconciliation and alerting run.

Chains the pure stages over already-fetched inputs:

    normalize -> cost -> aggregate (daily + monthly, per source)
              -> reconcile (per settling source) -> detect alerts

The engine performs no I/O and keeps no state between calls; everything
it needs arrives as arguments and everything it produces is returned in
an EngineResult.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping

import pandas as pd

from codrecon.aggregator import (
    aggregate,
    storefront_courier_breakdown,
    storefront_courier_monthly,
    summarise_totals,
)
from codrecon.alerts import run_alerts, summarise_alerts
from codrecon.config import (
    accepted_statuses_from_config,
    thresholds_from_config,
    window_from_config,
)
from codrecon.discrepancies import find_return_discrepancies
from codrecon.fees import apply_fee_model, build_schedules
from codrecon.models import Alert, Balance, WindowKind
from codrecon.normalizer import empty_orders_frame, normalize_sources
from codrecon.reconciler import reconcile_sources

logger = logging.getLogger(__name__)


@dataclass
class EngineResult:
    orders: pd.DataFrame
    daily: dict[str, pd.DataFrame] = field(default_factory=dict)
    monthly: dict[str, pd.DataFrame] = field(default_factory=dict)
    totals: dict[str, dict[str, Any]] = field(default_factory=dict)
    balances: dict[str, Balance] = field(default_factory=dict)
    alerts: list[Alert] = field(default_factory=list)
    alert_summary: dict[str, Any] = field(default_factory=dict)
    storefront_couriers: pd.DataFrame = field(default_factory=pd.DataFrame)
    storefront_monthly: pd.DataFrame = field(default_factory=pd.DataFrame)
    discrepancies: pd.DataFrame = field(default_factory=pd.DataFrame)
    discrepancy_summary: dict[str, Any] = field(default_factory=dict)
    skipped: dict[str, int] = field(default_factory=dict)
    skip_reasons: dict[str, dict[str, int]] = field(default_factory=dict)
    failed_sources: list[str] = field(default_factory=list)
    storefronts: list[str] = field(default_factory=list)
    window: str = WindowKind.CURRENT.value

    @property
    def partial(self) -> bool:
        """True when at least one source could not be fetched."""
        return bool(self.failed_sources)

    @property
    def courier_orders(self) -> pd.DataFrame:
        return self.orders[~self.orders["source"].isin(self.storefronts)]


def storefront_sources(cfg: dict[str, Any] | None, schedules: Mapping[str, Any]) -> set[str]:
    """Sources whose orders are storefront revenue rather than courier parcels.

    A `kind: storefront` entry under `sources` wins; otherwise a source
    whose fee schedule does not settle is treated as a storefront.
    """
    configured = (cfg or {}).get("sources") or {}
    kinds = {
        name.lower(): str((source_cfg or {}).get("kind", "")).lower()
        for name, source_cfg in configured.items()
    }
    result = set()
    for name in set(kinds) | set(schedules):
        kind = kinds.get(name)
        schedule = schedules.get(name)
        if kind == "storefront":
            result.add(name)
        elif not kind and schedule is not None and not schedule.settles:
            result.add(name)
    return result


def run_engine(
    orders_by_source: Mapping[str, Iterable[Mapping[str, Any]]],
    receipts_by_source: Mapping[str, Any] | None = None,
    cfg: dict[str, Any] | None = None,
    window: WindowKind | str | None = None,
    today: date | None = None,
    failed_sources: Iterable[str] = (),
) -> EngineResult:
    """Run every engine stage over one batch of fetched source data.

    Args:
        orders_by_source: Raw order records keyed by source tag.
        receipts_by_source: Raw receipt records (or receipt frames) keyed
            by source tag.
        cfg: Parsed config.yaml; None uses the code defaults throughout.
        window: Settlement window; defaults to `settlement.window`.
        today: Reference date for windows and transit ages.
        failed_sources: Sources the fetch layer could not load. They are
            carried through so the result is flagged partial.

    Returns:
        EngineResult with summaries, balances and alerts.
    """
    receipts_by_source = receipts_by_source or {}
    today = today or date.today()
    window = WindowKind(window) if window is not None else window_from_config(cfg)
    schedules = build_schedules(cfg)
    thresholds = thresholds_from_config(cfg)
    accepted = accepted_statuses_from_config(cfg)
    storefronts = storefront_sources(cfg, schedules)

    result = EngineResult(
        orders=empty_orders_frame(),
        failed_sources=sorted({s.lower() for s in failed_sources}),
        window=window.value,
        storefronts=sorted(storefronts),
    )
    if result.partial:
        logger.warning(
            "Partial run: no data from %s", ", ".join(result.failed_sources)
        )

    # Stage 1: normalize + cost
    normalized, skip_reasons = normalize_sources(orders_by_source)
    result.skip_reasons = skip_reasons
    result.skipped = {source: sum(reasons.values()) for source, reasons in skip_reasons.items()}
    result.orders = apply_fee_model(normalized, schedules)

    # Stage 2: aggregate, per source
    for source in skip_reasons:
        costed = result.orders[result.orders["source"] == source]
        result.daily[source] = aggregate(costed, "day")
        result.monthly[source] = aggregate(costed, "month")
        result.totals[source] = summarise_totals(costed)
    result.totals["all"] = summarise_totals(result.courier_orders)

    # Stage 3: reconcile every settling source, fetched or not
    settling = sorted(
        s for s, sched in schedules.items() if sched.settles and s not in storefronts
    )
    empty_monthly = aggregate(result.orders.iloc[0:0], "month")
    result.balances = reconcile_sources(
        {source: result.monthly.get(source, empty_monthly) for source in settling},
        {source.lower(): receipts for source, receipts in receipts_by_source.items()},
        accepted,
        window=window,
        today=today,
    )

    # Stage 4: alerts over courier parcels only
    courier_orders = result.courier_orders
    storefront_orders = result.orders[result.orders["source"].isin(storefronts)]

    result.alerts = run_alerts(courier_orders, thresholds, now=today)
    result.alert_summary = summarise_alerts(result.alerts)

    # Stage 5: storefront cross-checks
    result.storefront_couriers = storefront_courier_breakdown(storefront_orders)
    result.storefront_monthly = storefront_courier_monthly(storefront_orders)
    result.discrepancies, result.discrepancy_summary = find_return_discrepancies(
        courier_orders, storefront_orders
    )

    logger.info(
        "Engine run complete — %d orders | %d balances | %d alerts | %d skipped",
        len(result.orders),
        len(result.balances),
        len(result.alerts),
        sum(result.skipped.values()),
    )
    return result


def build_run_summary(result: EngineResult) -> dict[str, Any]:
    """Flatten an EngineResult into the headline figures of a run."""
    totals = result.totals.get("all") or summarise_totals(pd.DataFrame())
    return {
        "window": result.window,
        "total_orders": int(totals["total_orders"]),
        "delivered_orders": int(totals["delivered_orders"]),
        "returned_orders": int(totals["returned_orders"]),
        "gross_amount": round(float(totals["gross_amount"]), 2),
        "net_owed": round(sum(b.net_owed for b in result.balances.values()), 2),
        "received": round(sum(b.received for b in result.balances.values()), 2),
        "outstanding": round(sum(b.outstanding for b in result.balances.values()), 2),
        "total_alerts": result.alert_summary.get("total_alerts", 0),
        "critical_alerts": result.alert_summary.get("critical", 0),
        "warning_alerts": result.alert_summary.get("warning", 0),
        "return_discrepancies": result.discrepancy_summary.get("total_count", 0),
        "skipped_records": int(sum(result.skipped.values())),
        "failed_sources": list(result.failed_sources),
        "partial": result.partial,
    }
