"""
Push Notification Queue Drain

Periodically invoked (Celery Beat or the cron HTTP trigger). Takes the
oldest unread notifications that have not been pushed yet, applies each
user's preferences, and pushes the rest one by one through the configured
provider.

Per item:
- pushed        -> push_sent_at stamped
- filtered out  -> push_sent_at stamped, counted as skipped
- provider error -> push_attempts += 1, push_error / push_failed_at recorded;
                    retried on the next run until NOTIFICATION_MAX_PUSH_ATTEMPTS

There is no in-run retry or backoff.
"""

from collections import OrderedDict
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from core.config import settings
from core.time_utils import utcnow
from models import Notification
from services.notification_service import allows_push, get_or_create_preferences
from services.push_providers import get_push_provider

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
MAX_BATCH_SIZE = 100


def clamp_batch_size(value: Any) -> int:
    """Clamp to [1, 100]; anything non-numeric (or 0) falls back to 50."""
    try:
        size = int(value)
    except (TypeError, ValueError):
        size = 0
    if size == 0:
        size = DEFAULT_BATCH_SIZE
    return min(max(size, 1), MAX_BATCH_SIZE)


def _pending_query(db: Session):
    return db.query(Notification).filter(
        Notification.push_sent_at.is_(None),
        Notification.is_read.is_(False),
        Notification.push_attempts < settings.NOTIFICATION_MAX_PUSH_ATTEMPTS,
    )


def queue_status(db: Session) -> Dict[str, Any]:
    return {
        "queued": _pending_query(db).count(),
        "provider": settings.PUSH_PROVIDER,
        "timestamp": utcnow().isoformat(),
    }


def process_notification_queue(
    db: Session,
    *,
    batch_size: Any = DEFAULT_BATCH_SIZE,
    provider=None,
) -> Dict[str, Any]:
    """
    Drain one batch. Commits after each user's group so a crash mid-batch
    never re-sends what was already delivered.

    Raises PushProviderNotConfigured when no provider can be built.
    """
    size = clamp_batch_size(batch_size)
    if provider is None:
        provider = get_push_provider()

    notifications: List[Notification] = (
        _pending_query(db)
        .order_by(Notification.created_at.asc(), Notification.id.asc())
        .limit(size)
        .all()
    )

    if not notifications:
        return {
            "success": True,
            "message": "No notifications to process",
            "processed": 0,
            "sent": 0,
            "skipped": 0,
            "failed": 0,
            "total": 0,
        }

    by_user: "OrderedDict[Any, List[Notification]]" = OrderedDict()
    for n in notifications:
        by_user.setdefault(n.user_id, []).append(n)

    results: Dict[str, Any] = {"processed": 0, "sent": 0, "skipped": 0, "failed": 0}
    errors: List[Dict[str, str]] = []

    for user_id, items in by_user.items():
        try:
            prefs = get_or_create_preferences(db, user_id)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to load notification preferences for {user_id}: {e}", exc_info=True)
            results["failed"] += len(items)
            continue

        for notification in items:
            now = utcnow()
            if not allows_push(prefs, notification.type):
                notification.push_sent_at = now
                results["skipped"] += 1
                continue

            try:
                outcome = provider.send(notification, str(user_id))
            except Exception as e:
                logger.error(f"Push send raised for notification {notification.id}: {e}", exc_info=True)
                outcome = None
                error_text = str(e)
            else:
                error_text = outcome.error

            results["processed"] += 1
            if outcome is not None and outcome.ok:
                notification.push_sent_at = now
                notification.push_error = None
                results["sent"] += 1
            else:
                notification.push_attempts = (notification.push_attempts or 0) + 1
                notification.push_failed_at = now
                notification.push_error = (error_text or "Unknown error")[:1000]
                results["failed"] += 1
                errors.append({"notification_id": str(notification.id), "error": notification.push_error})

        db.commit()

    message = (
        f"Processed {results['processed']} notifications: "
        f"{results['sent']} sent, {results['skipped']} skipped, {results['failed']} failed"
    )
    logger.info(message, extra={"extra_fields": {**results, "total": len(notifications)}})

    response: Dict[str, Any] = {
        "success": True,
        "message": message,
        **results,
        "total": len(notifications),
    }
    if errors:
        response["errors"] = errors
    return response
