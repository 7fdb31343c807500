"""
main.py — COD Settlement Monitor — CLI Entry Point.

Provides a command-line interface to run any combination of stages:
  1. generate-data   — Write synthetic courier / storefront snapshots
  2. reconcile       — Load snapshots, cost orders, reconcile courier balances
  3. alerts          — Run stuck-in-transit, return-spike and performance rules
  4. report          — Generate the Excel settlement workbook
  5. full-run        — Execute all stages in sequence

Usage examples:
    python main.py --full-run
    python main.py --generate-data --reconcile
    python main.py --alerts --window all
    python main.py --full-run --config custom_config.yaml

Environment:
    LOG_LEVEL           Override log verbosity (default: INFO)
"""

import argparse
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path

import yaml

from codrecon.models import WindowKind


def _configure_logging(log_dir: str = "logs", level: str = "INFO") -> None:
    """Set up rotating file handler and stream handler for the CLI.

    Log level is read from the LOG_LEVEL environment variable or the
    `level` parameter.

    Args:
        log_dir: Directory to write log files into.
        level: Default log level string (DEBUG, INFO, WARNING, ERROR).
    """
    effective_level = os.environ.get("LOG_LEVEL", level).upper()
    numeric_level = getattr(logging, effective_level, logging.INFO)

    Path(log_dir).mkdir(parents=True, exist_ok=True)
    log_filename = Path(log_dir) / f"settlement_{datetime.today().strftime('%Y%m%d')}.log"

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Rotating file handler: 10 MB max, keep 7
    file_handler = logging.handlers.RotatingFileHandler(
        log_filename, maxBytes=10 * 1024 * 1024, backupCount=7, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(stream_handler)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cod-settlement-monitor",
        description=(
            "COD Settlement Monitor — "
            "courier reconciliation and delivery alerting.\n\n"
            "Run --full-run to execute all stages in sequence."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --full-run
  python main.py --generate-data
  python main.py --reconcile --window previous
  python main.py --alerts --log-level DEBUG
        """,
    )

    parser.add_argument(
        "--config",
        default="config.yaml",
        metavar="PATH",
        help="Path to configuration YAML file (default: config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity level (default: INFO)",
    )
    parser.add_argument(
        "--window",
        choices=[w.value for w in WindowKind],
        default=None,
        help="Settlement window (default: settlement.window in config, else current)",
    )

    stages = parser.add_argument_group("Stages")
    stages.add_argument(
        "--generate-data",
        action="store_true",
        help="Write synthetic courier and storefront snapshots",
    )
    stages.add_argument(
        "--reconcile",
        action="store_true",
        help="Reconcile courier balances against settlement receipts",
    )
    stages.add_argument(
        "--alerts",
        action="store_true",
        help="Run the operational alert rules",
    )
    stages.add_argument(
        "--report",
        action="store_true",
        help="Generate the Excel settlement workbook",
    )
    stages.add_argument(
        "--full-run",
        action="store_true",
        help="Execute all stages: generate → reconcile → alerts → report",
    )
    return parser


def run_pipeline(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Execute the requested stages and return an exit code.

    The engine runs once and its result is shared in memory by the
    reconcile, alerts and report stages.

    Args:
        args: Parsed CLI arguments.
        logger: Configured logger.

    Returns:
        0 on success, 1 on any unhandled error.
    """
    from codrecon.config import load_config
    from codrecon.data_generator import generate_snapshots
    from codrecon.engine import build_run_summary, run_engine
    from codrecon.reporter import generate_report
    from codrecon.sources import load_snapshots

    do_all = args.full_run

    try:
        cfg = load_config(args.config)
    except (OSError, yaml.YAMLError) as exc:
        logger.error("Could not load configuration: %s", exc)
        return 1

    result = None

    # -------------------------------------------------------------------------
    # Stage 1: Generate data
    # -------------------------------------------------------------------------
    if do_all or args.generate_data:
        logger.info("=" * 60)
        logger.info("STAGE 1: Snapshot Generation")
        logger.info("=" * 60)
        try:
            written = generate_snapshots(cfg)
            logger.info(
                "Snapshot generation complete — %d records in %d files",
                sum(written.values()),
                len(written),
            )
        except Exception as exc:
            logger.error("Snapshot generation failed: %s", exc, exc_info=True)
            return 1

    # -------------------------------------------------------------------------
    # Stage 2: Engine run (required for reconcile / alerts / report)
    # -------------------------------------------------------------------------
    if do_all or args.reconcile or args.alerts or args.report:
        logger.info("=" * 60)
        logger.info("STAGE 2: Reconciliation")
        logger.info("=" * 60)
        try:
            orders, receipts, failed = load_snapshots(cfg)
            if not orders:
                logger.error("No source snapshots could be loaded. Run --generate-data first.")
                return 1
            result = run_engine(
                orders,
                receipts,
                cfg=cfg,
                window=args.window,
                failed_sources=failed,
            )
        except Exception as exc:
            logger.error("Reconciliation failed: %s", exc, exc_info=True)
            return 1

        if do_all or args.reconcile:
            for source, balance in sorted(result.balances.items()):
                logger.info(
                    "  %-10s owed %12.2f | received %12.2f | outstanding %12.2f",
                    source,
                    balance.net_owed,
                    balance.received,
                    balance.outstanding,
                )

    # -------------------------------------------------------------------------
    # Stage 3: Alerts
    # -------------------------------------------------------------------------
    if (do_all or args.alerts) and result is not None:
        logger.info("=" * 60)
        logger.info("STAGE 3: Alerts")
        logger.info("=" * 60)
        if not result.alerts:
            logger.info("No alerts — all couriers are within thresholds.")
        for alert in result.alerts:
            log = logger.warning if alert.severity.value == "Critical" else logger.info
            log("  [%s] %s", alert.severity.value, alert.title)

    # -------------------------------------------------------------------------
    # Stage 4: Excel Report
    # -------------------------------------------------------------------------
    if (do_all or args.report) and result is not None:
        logger.info("=" * 60)
        logger.info("STAGE 4: Excel Report Generation")
        logger.info("=" * 60)
        try:
            report_path = generate_report(result, cfg)
            logger.info("Report generated: %s", report_path)
        except Exception as exc:
            logger.error("Report generation failed: %s", exc, exc_info=True)
            return 1

    # -------------------------------------------------------------------------
    # Final summary
    # -------------------------------------------------------------------------
    logger.info("=" * 60)
    logger.info("RUN COMPLETE")
    if result is not None:
        summary = build_run_summary(result)
        logger.info("  %-35s %d", "Orders analysed:", summary["total_orders"])
        logger.info("  %-35s %.2f", "Net owed by couriers:", summary["net_owed"])
        logger.info("  %-35s %.2f", "Outstanding:", summary["outstanding"])
        logger.info(
            "  Alerts: Critical=%d | Warning=%d | Return discrepancies=%d",
            summary["critical_alerts"],
            summary["warning_alerts"],
            summary["return_discrepancies"],
        )
        if summary["partial"]:
            logger.warning("  Partial run — missing sources: %s", ", ".join(summary["failed_sources"]))
    logger.info("=" * 60)
    return 0


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, configure logging, and run the pipeline."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # Load config to get log directory
    try:
        with open(args.config, "r") as fh:
            cfg = yaml.safe_load(fh) or {}
        log_dir = (cfg.get("paths") or {}).get("log_dir", "logs")
    except (OSError, yaml.YAMLError):
        log_dir = "logs"

    _configure_logging(log_dir=log_dir, level=args.log_level)
    logger = logging.getLogger(__name__)

    if not any([args.full_run, args.generate_data, args.reconcile, args.alerts, args.report]):
        parser.print_help()
        sys.exit(0)

    logger.info(
        "COD Settlement Monitor v1.0 | %s",
        datetime.today().strftime("%Y-%m-%d %H:%M:%S"),
    )
    logger.info("Config: %s | Log level: %s", args.config, args.log_level)

    sys.exit(run_pipeline(args, logger))


if __name__ == "__main__":
    main()
