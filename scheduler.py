"""
scheduler.py — Unattended daily settlement run.

Keeps a BlockingScheduler alive and fires the settlement stages
(reconcile, alerts, workbook) once a day against the snapshots the
fetch layer has already written. Nothing is generated or downloaded
here.

The `scheduler` section of config.yaml sets the wall-clock time and
timezone of the run and how many attempts a failing run gets before
it waits for the next day:

    scheduler:
      run_time: "07:00"
      timezone: "Asia/Karachi"
      max_retries: 3
      retry_delay_seconds: 300

Usage:
    python scheduler.py                  # stay up, run daily
    python scheduler.py --run-now        # one run, exit status reflects it
    python scheduler.py --config custom.yaml

Without the daemon, the same run from crontab:
    0 7 * * * cd /path/to/project && python main.py --reconcile --alerts --report
"""

import argparse
import logging
import logging.handlers
import signal
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from codrecon.config import load_config

logger = logging.getLogger(__name__)

JOB_ID = "cod_settlement_daily"
# A run still starts if the process was down for up to this long at trigger time
MISFIRE_GRACE_SECONDS = 600


@dataclass(frozen=True)
class ScheduleSettings:
    hour: int = 7
    minute: int = 0
    timezone: str = "Asia/Karachi"
    max_retries: int = 3
    retry_delay: int = 300

    @property
    def run_time(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


def schedule_settings(cfg: dict[str, Any] | None) -> ScheduleSettings:
    """Read the `scheduler` section, falling back to ScheduleSettings defaults.

    Raises:
        ValueError: If run_time is not HH:MM or the retry settings are not
            positive whole numbers.
    """
    section = (cfg or {}).get("scheduler") or {}
    defaults = ScheduleSettings()

    run_time = str(section.get("run_time", defaults.run_time)).strip()
    try:
        hour_text, minute_text = run_time.split(":")
        hour, minute = int(hour_text), int(minute_text)
    except ValueError:
        raise ValueError(f"scheduler.run_time must be HH:MM, got {run_time!r}") from None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"scheduler.run_time out of range: {run_time!r}")

    max_retries = int(section.get("max_retries", defaults.max_retries))
    retry_delay = int(section.get("retry_delay_seconds", defaults.retry_delay))
    if max_retries < 1 or retry_delay < 0:
        raise ValueError("scheduler.max_retries must be >= 1 and retry_delay_seconds >= 0")

    return ScheduleSettings(
        hour=hour,
        minute=minute,
        timezone=str(section.get("timezone", defaults.timezone)),
        max_retries=max_retries,
        retry_delay=retry_delay,
    )


def _log_to_file(log_dir: str) -> None:
    """Send the daemon's records to logs/scheduler.log as well as stdout."""
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handlers = [
        logging.handlers.TimedRotatingFileHandler(
            Path(log_dir) / "scheduler.log", when="midnight", backupCount=30, encoding="utf-8"
        ),
        logging.StreamHandler(sys.stdout),
    ]
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # Job-store chatter from APScheduler is noise at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def scheduled_args(config_path: str) -> argparse.Namespace:
    """CLI namespace for `main.py --reconcile --alerts --report`."""
    return argparse.Namespace(
        config=config_path,
        log_level="INFO",
        window=None,
        full_run=False,
        generate_data=False,
        reconcile=True,
        alerts=True,
        report=True,
    )


def run_scheduled(config_path: str, max_retries: int, retry_delay: int) -> bool:
    """One settlement run, attempted up to `max_retries` times.

    A non-zero exit code and an exception both count as a failed attempt.

    Returns:
        True once an attempt succeeds; False when every attempt failed.
    """
    from main import run_pipeline

    started = datetime.now()
    logger.info("Settlement run triggered at %s", started.strftime("%Y-%m-%d %H:%M:%S"))

    args = scheduled_args(config_path)
    for attempt in range(1, max_retries + 1):
        try:
            exit_code = run_pipeline(args, logger)
        except Exception:
            logger.exception("Settlement attempt %d/%d crashed", attempt, max_retries)
        else:
            if exit_code == 0:
                logger.info(
                    "Settlement run finished on attempt %d in %.0fs",
                    attempt,
                    (datetime.now() - started).total_seconds(),
                )
                return True
            logger.error("Settlement attempt %d/%d exited with %d", attempt, max_retries, exit_code)

        if attempt < max_retries:
            logger.info("Next attempt in %ds", retry_delay)
            time.sleep(retry_delay)

    logger.error("No settlement workbook today: %d attempt(s) failed", max_retries)
    return False


def build_scheduler(config_path: str, settings: ScheduleSettings) -> BlockingScheduler:
    """Scheduler with the daily settlement job registered but not started."""
    scheduler = BlockingScheduler(timezone=settings.timezone)
    scheduler.add_job(
        run_scheduled,
        CronTrigger(hour=settings.hour, minute=settings.minute, timezone=settings.timezone),
        kwargs={
            "config_path": config_path,
            "max_retries": settings.max_retries,
            "retry_delay": settings.retry_delay,
        },
        id=JOB_ID,
        name="COD settlement reconciliation",
        replace_existing=True,
        misfire_grace_time=MISFIRE_GRACE_SECONDS,
        coalesce=True,
    )
    return scheduler


def _stop_on_signals(scheduler: BlockingScheduler) -> None:
    def _stop(signum, frame):
        logger.info("Received %s, shutting the scheduler down", signal.Signals(signum).name)
        scheduler.shutdown(wait=False)
        sys.exit(0)

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _stop)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="scheduler",
        description="Run the COD settlement reconciliation every day at a fixed time.",
    )
    parser.add_argument("--config", default="config.yaml", help="YAML settings file")
    parser.add_argument(
        "--run-now",
        action="store_true",
        help="skip the schedule: reconcile once and exit with its status",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    try:
        cfg = load_config(args.config)
        settings = schedule_settings(cfg)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    _log_to_file((cfg.get("paths") or {}).get("log_dir", "logs"))

    if args.run_now:
        ok = run_scheduled(args.config, settings.max_retries, settings.retry_delay)
        sys.exit(0 if ok else 1)

    scheduler = build_scheduler(args.config, settings)
    _stop_on_signals(scheduler)
    logger.info(
        "Waiting for the daily settlement run at %s %s (%d attempts, %ds apart)",
        settings.run_time,
        settings.timezone,
        settings.max_retries,
        settings.retry_delay,
    )
    scheduler.start()


if __name__ == "__main__":
    main()
