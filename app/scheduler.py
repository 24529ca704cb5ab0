from apscheduler.schedulers.background import BackgroundScheduler
import atexit
import logging

from app.services.slot_allocator import prune_expired_slots
from app.utils.time_utils import to_utc_z, utcnow
from app.extensions import db

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def init_scheduler(app):
    """Initialize the APScheduler scheduler with Flask app context."""

    def scheduled_task():
        """Drop consultation times that are no longer bookable."""
        now = utcnow()

        try:
            with app.app_context():
                removed = prune_expired_slots(now)
                if removed:
                    logger.info(
                        "[SCHEDULER] %s - Pruned %d expired slot(s)", to_utc_z(now), removed
                    )
        except Exception as e:
            logger.error(
                "[SCHEDULER] %s - Error pruning expired slots: %s", to_utc_z(now), e
            )
            with app.app_context():
                db.session.rollback()

    scheduler.add_job(
        scheduled_task,
        "interval",
        minutes=5,
        id="prune_expired_slots",
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()
        logger.info("[SCHEDULER] Scheduler started")
        # Shut down the scheduler when exiting the app
        atexit.register(lambda: scheduler.shutdown(wait=False))
    else:
        logger.info("[SCHEDULER] Scheduler already running (skipping duplicate start)")
