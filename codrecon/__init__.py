"""
cod-settlement-monitor — Source package.

Modules:
    models          — Outcome / severity vocabularies and value objects
    config          — config.yaml loading and threshold defaults
    normalizer      — Raw vendor records -> normalized order frame
    fees            — Per-source fee schedules and order costing
    aggregator      — Daily / monthly summaries, growth and breakdowns
    reconciler      — Courier receipts netted against what is owed
    alerts          — Stuck-in-transit, return-spike and performance rules
    performance     — Courier comparison and delivery-time analytics
    discrepancies   — Courier returns the storefront never refunded
    engine          — One full reconciliation and alerting run
    sources         — Concurrent snapshot loading with per-source timeouts
    data_generator  — Synthetic vendor snapshots for demos
    reporter        — Excel settlement workbook
"""
