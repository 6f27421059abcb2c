# ===== app/tasks/calendar_tasks.py =====
import asyncio
import logging

from app.config.celery_config import celery_app
from app.config.database import SessionLocal
from app.core.exceptions import CalendarAuthError, CalendarNotConnectedError, ConfigurationError
from app.models import CalendarConnection
from app.services.calendar.registry import CalendarProviderRegistry
from app.services.calendar.sync_service import CalendarSyncService
from app.utils.encryption import get_token_cipher

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def sync_user_calendars(self, user_id: str):
    """Reconcile every active calendar connection of one user"""
    db = SessionLocal()
    try:
        registry = CalendarProviderRegistry(db, get_token_cipher())
        result = asyncio.run(CalendarSyncService(db, registry).sync_all_connections(user_id))
        logger.info(f"Calendar sync for user {user_id} finished: {result}")
        return {"status": "success", **result}

    except (CalendarAuthError, CalendarNotConnectedError, ConfigurationError) as exc:
        # Needs the user or an admin to act, retrying will not help
        logger.warning(f"Calendar sync skipped for user {user_id}: {exc.message}")
        return {"status": "failed", "reason": exc.message}

    except Exception as exc:
        logger.error(f"Calendar sync failed for user {user_id}: {exc}")
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    finally:
        db.close()


@celery_app.task
def sync_all_active_calendars():
    """Fan out one sync task per user with an active connection"""
    db = SessionLocal()
    try:
        user_ids = [
            row[0]
            for row in db.query(CalendarConnection.user_id)
            .filter(CalendarConnection.is_active.is_(True))
            .distinct()
            .all()
        ]
    finally:
        db.close()

    for user_id in user_ids:
        sync_user_calendars.delay(user_id)

    logger.info(f"Queued calendar sync for {len(user_ids)} users")
    return {"queued": len(user_ids)}
