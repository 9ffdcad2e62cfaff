"""
Notification endpoints.

User-facing: list, unread count, mark read, preferences.
Operator-facing: queue drain and queue status (cron secret or admin session).
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
import logging

from core.auth import get_current_user, require_cron_or_admin
from core.database import get_db
from core.exceptions import APIException
from models import User
from schemas import NotificationPreferencesUpdate
from services.notification_queue import process_notification_queue, queue_status
from services.notification_service import (
    get_or_create_preferences,
    list_notifications,
    mark_all_read,
    mark_read,
    serialize_notification,
    serialize_preferences,
    unread_count,
    update_preferences,
)
from services.push_providers import PushProviderNotConfigured

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


@router.get("")
def get_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = list_notifications(db, current_user.id, unread_only=unread_only, limit=limit)
    return {
        "notifications": [serialize_notification(n) for n in rows],
        "unread_count": unread_count(db, current_user.id),
    }


@router.get("/unread-count")
def get_unread_count(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"unread_count": unread_count(db, current_user.id)}


@router.post("/read-all")
def read_all(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"success": True, "updated": mark_all_read(db, user_id=current_user.id)}


@router.get("/preferences")
def get_preferences(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return serialize_preferences(get_or_create_preferences(db, current_user.id))


@router.put("/preferences")
def put_preferences(
    body: NotificationPreferencesUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    prefs = update_preferences(db, current_user.id, body.model_dump(exclude_none=True))
    return serialize_preferences(prefs)


@router.post("/process-queue")
def process_queue(
    batch_size: Optional[str] = Query(None, alias="batchSize"),
    _caller: Optional[User] = Depends(require_cron_or_admin),
    db: Session = Depends(get_db),
):
    """Drain one batch of pending pushes. batchSize is clamped to 1..100 (default 50)."""
    try:
        return process_notification_queue(db, batch_size=batch_size)
    except PushProviderNotConfigured as e:
        logger.error(f"Notification queue not processed: {e}")
        raise APIException(status_code=500, detail=str(e), error_code="PUSH_PROVIDER_NOT_CONFIGURED")


@router.get("/queue-status")
def get_queue_status(
    _caller: Optional[User] = Depends(require_cron_or_admin),
    db: Session = Depends(get_db),
):
    return queue_status(db)


@router.post("/{notification_id}/read")
def read_one(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    row = mark_read(db, user_id=current_user.id, notification_id=notification_id)
    return serialize_notification(row)
