"""
Notification delivery tasks: push queue drain and daily reminders.
"""

from typing import Dict, Optional
from celery import Task
from sqlalchemy.orm import Session
from core.config import settings
from core.database import get_db_sync
from tasks import celery_app
from services.notification_queue import process_notification_queue
from services.push_providers import PushProviderNotConfigured
from services.reminder_service import send_daily_reminders
import logging

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.process_notification_queue", bind=True)
def process_notification_queue_task(self: Task, batch_size: Optional[int] = None) -> Dict:
    """
    Drain one batch of pending pushes.

    A missing provider configuration is reported in the result instead of
    raising, so Beat keeps its schedule quiet until credentials arrive.
    """
    db: Session = get_db_sync()
    try:
        return process_notification_queue(db, batch_size=batch_size or settings.NOTIFICATION_BATCH_SIZE)
    except PushProviderNotConfigured as e:
        logger.warning(f"Notification queue skipped: {e}")
        return {"success": False, "message": str(e)}
    except Exception as e:
        db.rollback()
        logger.error(f"Notification queue drain failed: {e}", exc_info=True)
        raise
    finally:
        db.close()


@celery_app.task(name="tasks.send_daily_reminders", bind=True)
def send_daily_reminders_task(self: Task) -> Dict:
    db: Session = get_db_sync()
    try:
        return send_daily_reminders(db)
    except PushProviderNotConfigured as e:
        logger.warning(f"Daily reminders skipped: {e}")
        return {"success": False, "message": str(e)}
    except Exception as e:
        db.rollback()
        logger.error(f"Daily reminders failed: {e}", exc_info=True)
        raise
    finally:
        db.close()
