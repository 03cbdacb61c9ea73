"""
Background scheduler for periodic maintenance.

- Purge expired sessions: expired rows are already refused by verify,
  this only keeps the table small.
- Expire pickup reservations: copies not collected in time go to the
  next patron in the queue.

Both run every MAINTENANCE_INTERVAL_HOURS (6 by default).
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from library_app.core.config import settings
from library_app.core.database import SessionLocal
from library_app.core.exceptions import LibraryError
from library_app.services.circulation_service import circulation_service
from library_app.services.session_registry import session_registry
import logging

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def purge_expired_sessions_job():
    """Delete session rows whose token TTL has passed"""
    db = SessionLocal()
    try:
        purged = session_registry.purge_expired(db)
        db.commit()
        if purged > 0:
            logger.info(f"Session cleanup completed: purged {purged} expired session(s)")
        else:
            logger.info("Session cleanup completed: no expired sessions")
    except SQLAlchemyError as e:
        logger.error(f"Error in purge_expired_sessions_job: {str(e)}")
        db.rollback()
    finally:
        db.close()


def expire_pickup_reservations_job():
    """Expire uncollected pickups and offer the copies onwards"""
    db = SessionLocal()
    try:
        expired = circulation_service.expire_pickups(db)
        logger.info(f"Reservation cleanup completed: expired {expired} pickup(s)")
    except LibraryError as e:
        # expire_pickups has already rolled back and logged the cause
        logger.error(f"Error in expire_pickup_reservations_job: {e.message}")
    finally:
        db.close()


def start_scheduler():
    """
    Start the background scheduler.

    This should be called when the FastAPI app starts.
    """
    if not scheduler.running:
        interval = IntervalTrigger(hours=settings.MAINTENANCE_INTERVAL_HOURS)
        scheduler.add_job(
            purge_expired_sessions_job,
            trigger=interval,
            id="purge_expired_sessions",
            name="Purge expired sessions",
            replace_existing=True
        )
        scheduler.add_job(
            expire_pickup_reservations_job,
            trigger=interval,
            id="expire_pickup_reservations",
            name="Expire pickup reservations",
            replace_existing=True
        )

        scheduler.start()
        logger.info(
            f"Background scheduler started. Maintenance jobs run every "
            f"{settings.MAINTENANCE_INTERVAL_HOURS} hours.")


def stop_scheduler():
    """
    Stop the background scheduler.

    This should be called when the FastAPI app shuts down.
    """
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped.")
