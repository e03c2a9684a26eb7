"""
Background scheduler: runs the daily billing job inside the FastAPI process.

Jobs:
  - Daily billing (09:00 PHT / 01:00 UTC)
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def _run_daily_billing():
    from allstar.infrastructure.db.session import session_scope
    from allstar.application.billing_jobs import run_daily_billing

    try:
        with session_scope() as db:
            report = run_daily_billing(db)
        for error in report.errors:
            logger.warning("Daily billing: %s", error)
    except Exception:
        logger.exception("Daily billing job failed")


def start_scheduler():
    """Start the background scheduler with the daily billing job."""
    scheduler.add_job(
        _run_daily_billing,
        CronTrigger(hour=1, minute=0, timezone="UTC"),
        id="daily_billing",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started: daily_billing (01:00 UTC)")


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
