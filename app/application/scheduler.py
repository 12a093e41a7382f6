"""
Background scheduler - periodic jobs inside the FastAPI process.

Jobs:
  - Integrity audit + repair of drifted recurring series (daily, UTC cron)
  - Rolling top-up of every active series to the materialization horizon
    (daily, right after the audit)
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def _run_integrity_audit():
    from app.infrastructure.db.session import session_scope
    from app.application.integrity import run_integrity_audit

    with session_scope() as db:
        try:
            reports = run_integrity_audit(db)
            logger.info("Integrity audit done: %d users repaired", len(reports))
        except Exception:
            logger.exception("Integrity audit job failed")


def _run_rolling_materialization():
    from app.infrastructure.db.session import session_scope
    from app.infrastructure.db.models import User
    from app.application.materialization import MaterializationEngine

    with session_scope() as db:
        try:
            engine = MaterializationEngine(db)
            total = 0
            for (user_id,) in db.query(User.id).all():
                total += sum(engine.materialize_for_user(user_id).values())
            logger.info("Rolling materialization done: %d sessions inserted", total)
        except Exception:
            logger.exception("Rolling materialization job failed")


def _top_up_slot(hour: int, minute: int) -> tuple[int, int]:
    """Cron slot 15 minutes after the audit, carried into the next hour."""
    top_hour, top_minute = divmod(hour * 60 + minute + 15, 60)
    return top_hour % 24, top_minute


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    settings = get_settings()
    hour, minute = settings.INTEGRITY_AUDIT_HOUR, settings.INTEGRITY_AUDIT_MINUTE

    scheduler.add_job(
        _run_integrity_audit,
        CronTrigger(hour=hour, minute=minute),
        id="integrity_audit",
        replace_existing=True,
    )

    top_hour, top_minute = _top_up_slot(hour, minute)
    scheduler.add_job(
        _run_rolling_materialization,
        CronTrigger(hour=top_hour, minute=top_minute),
        id="rolling_materialization",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started: integrity_audit (%02d:%02d UTC), rolling_materialization", hour, minute)


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
