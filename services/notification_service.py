"""
In-app notifications and per-user notification preferences.

Notifications created here are also the push queue: a row with
push_sent_at IS NULL is picked up by services.notification_queue.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

import logging
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import ForbiddenError, NotFoundError
from core.time_utils import utcnow
from models import Notification, NotificationPreference

logger = logging.getLogger(__name__)

PREFERENCE_FIELDS = (
    "enabled",
    "push_enabled",
    "daily_reminders",
    "progress_updates",
    "competition_start",
    "competition_ending",
    "competition_completed",
    "new_messages",
)

# Notification type -> preference switch that gates its push delivery.
# Types not listed here are always pushed (subject to enabled/push_enabled).
TYPE_PREFERENCE = {
    "daily_summary": "daily_reminders",
    "daily_reminder": "daily_reminders",
    "new_message": "new_messages",
    "achievement_earned": "progress_updates",
    "collaboration_milestone": "progress_updates",
    "competition_start": "competition_start",
    "competition_ending": "competition_ending",
    "competition_completed": "competition_completed",
}


def competition_url(competition_id) -> str:
    return f"/competition/{competition_id}"


def create_notification(
    db: Session,
    *,
    user_id: UUID,
    title: str,
    message: str,
    type: str,
    action_url: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Notification:
    row = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        action_url=action_url,
        data=data or {},
        is_read=False,
        created_at=utcnow(),
    )
    db.add(row)
    db.flush()
    return row


def get_or_create_preferences(db: Session, user_id: UUID) -> NotificationPreference:
    prefs = db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).first()
    if prefs:
        return prefs

    # Defaults: everything on. A concurrent insert surfaces as IntegrityError to the caller.
    prefs = NotificationPreference(user_id=user_id)
    db.add(prefs)
    db.flush()
    return prefs


def update_preferences(db: Session, user_id: UUID, updates: Dict[str, Any]) -> NotificationPreference:
    prefs = get_or_create_preferences(db, user_id)
    for field in PREFERENCE_FIELDS:
        if field in updates and updates[field] is not None:
            setattr(prefs, field, bool(updates[field]))
    db.flush()
    return prefs


def allows_push(prefs: NotificationPreference, notification_type: str) -> bool:
    if not prefs.enabled or not prefs.push_enabled:
        return False
    switch = TYPE_PREFERENCE.get(notification_type)
    if switch is None:
        return True
    return getattr(prefs, switch, True) is not False


def list_notifications(
    db: Session,
    user_id: UUID,
    *,
    unread_only: bool = False,
    limit: int = 50,
) -> List[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc()).limit(limit).all()


def unread_count(db: Session, user_id: UUID) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .count()
    )


def mark_read(db: Session, *, user_id: UUID, notification_id: UUID) -> Notification:
    row = db.query(Notification).filter(Notification.id == notification_id).first()
    if not row:
        raise NotFoundError("Notification", str(notification_id))
    if row.user_id != user_id:
        raise ForbiddenError("You do not own this notification")
    if not row.is_read:
        row.is_read = True
        row.read_at = utcnow()
        db.flush()
    return row


def mark_all_read(db: Session, *, user_id: UUID) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({Notification.is_read: True, Notification.read_at: utcnow()}, synchronize_session=False)
    )
    return int(updated or 0)


def serialize_notification(row: Notification) -> Dict[str, Any]:
    return {
        "id": str(row.id),
        "title": row.title,
        "message": row.message,
        "type": row.type,
        "action_url": row.action_url,
        "data": row.data or {},
        "is_read": bool(row.is_read),
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "push_sent_at": row.push_sent_at.isoformat() if row.push_sent_at else None,
    }


def serialize_preferences(prefs: NotificationPreference) -> Dict[str, Any]:
    return {field: bool(getattr(prefs, field)) for field in PREFERENCE_FIELDS}


def absolute_url(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    if path.startswith("http://") or path.startswith("https://"):
        return path
    return f"{settings.SITE_URL.rstrip('/')}{path}"
