from datetime import UTC, date, datetime
import logging
from pathlib import Path

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from recordstream.config import Settings
from recordstream.pipeline import ConversionRunner
from recordstream.schemas import ConversionResult


logger = logging.getLogger(__name__)

INBOX_KINDS = {".txt": "users", ".csv": "csv"}


def convert_inbox(
    settings: Settings,
    session_factory: sessionmaker[Session],
    *,
    run_date: date,
) -> list[ConversionResult]:
    """Convert every user and CSV file sitting directly in the input directory.

    Run keys embed the date and file name, so a second pass on the same day
    reuses the runs that already succeeded.
    """
    inbox = Path(settings.input_dir)
    if not inbox.is_dir():
        logger.warning("input directory missing", extra={"input_dir": str(inbox)})
        return []

    runner = ConversionRunner(settings, session_factory)
    results: list[ConversionResult] = []
    for path in sorted(inbox.iterdir()):
        kind = INBOX_KINDS.get(path.suffix.lower())
        if kind is None or not path.is_file():
            continue

        result = runner.run(
            kind=kind,
            input_path=path,
            run_key=f"scheduled-{run_date.isoformat()}-{path.name}",
            trigger_source="scheduled",
        )
        results.append(result)
    return results


def _run_daily_conversion(settings: Settings, session_factory: sessionmaker[Session]) -> None:
    run_date = datetime.now(UTC).date()
    results = convert_inbox(settings, session_factory, run_date=run_date)

    failed = [result.run_key for result in results if result.status == "failed"]
    if failed:
        logger.error(
            "scheduled conversion had failures",
            extra={"run_date": run_date.isoformat(), "failed_run_keys": failed},
        )
        return
    logger.info(
        "scheduled conversion completed",
        extra={"run_date": run_date.isoformat(), "runs": len(results)},
    )


def start_scheduler(settings: Settings, session_factory: sessionmaker[Session], *, run_now: bool = False) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        _run_daily_conversion,
        "cron",
        args=[settings, session_factory],
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id="daily_conversion",
        replace_existing=True,
    )

    logger.info(
        "scheduler started",
        extra={
            "input_dir": settings.input_dir,
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
        },
    )

    if run_now:
        _run_daily_conversion(settings, session_factory)

    scheduler.start()
