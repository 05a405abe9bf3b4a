from datetime import timedelta
import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from reconciler.config import Settings
from reconciler.report_store import discard_results, find_stale_reports, mark_report_failed


logger = logging.getLogger(__name__)

STALE_REPORT_ERROR = "stale report reaped"


def reap_stale_reports(settings: Settings, session_factory: sessionmaker[Session]) -> list[int]:
    reaped: list[int] = []
    with session_factory() as db:
        stale = find_stale_reports(db, older_than=timedelta(minutes=settings.stale_report_minutes))
        for report in stale:
            discard_results(db, report.id)
            mark_report_failed(db, report, error=STALE_REPORT_ERROR)
            reaped.append(report.id)

    if reaped:
        logger.warning("stale reports marked failed", extra={"report_ids": reaped})
    else:
        logger.info("no stale reports found")
    return reaped


def start_reaper(settings: Settings, session_factory: sessionmaker[Session], *, run_now: bool = False) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        reap_stale_reports,
        "interval",
        args=[settings, session_factory],
        minutes=settings.reaper_interval_minutes,
        id="stale_report_reaper",
        replace_existing=True,
    )

    logger.info(
        "stale report reaper started",
        extra={
            "interval_minutes": settings.reaper_interval_minutes,
            "stale_report_minutes": settings.stale_report_minutes,
        },
    )

    if run_now:
        reap_stale_reports(settings, session_factory)

    scheduler.start()
