"""
Competition message board.

Only active participants (and admins) read or post. Announcements are
reserved for the creator and admins; system messages are never accepted
from the API. Deletes are soft: deleted_at hides the post and its reactions
from every listing.

Posting queues a ``new_message`` notification for every other active
participant, so pushes follow their new_messages preference.

Unread state is a per-user read receipt: messages from others created after
last_read_at are unread. Receipts only move forward.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

import logging
from sqlalchemy import func
from sqlalchemy.orm import Session

from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from core.time_utils import ensure_utc, utcnow
from models import (
    MESSAGE_TYPES,
    Competition,
    CompetitionMessage,
    MessageReaction,
    MessageReadReceipt,
    User,
)
from services.competition_service import can_manage, get_competition, get_membership
from services.notification_service import competition_url, create_notification
from services.standings import active_participants

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000
MAX_EMOJI_LENGTH = 32
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
PREVIEW_LENGTH = 100


def ensure_member(db: Session, user: User, competition: Competition) -> None:
    if user.is_admin:
        return
    membership = get_membership(db, competition.id, user.id)
    if not membership or not membership.is_active:
        raise ForbiddenError("Not a participant in this competition")


def _clean_text(message: Optional[str]) -> str:
    text = (message or "").strip()
    if not text:
        raise ValidationError("Message cannot be empty", field="message")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters", field="message")
    return text


def get_message(db: Session, message_id: UUID) -> CompetitionMessage:
    message = (
        db.query(CompetitionMessage)
        .filter(CompetitionMessage.id == message_id, CompetitionMessage.deleted_at.is_(None))
        .first()
    )
    if not message:
        raise NotFoundError("Message", str(message_id))
    return message


def _preview(text: str) -> str:
    if len(text) <= PREVIEW_LENGTH:
        return text
    return text[:PREVIEW_LENGTH - 3].rstrip() + "..."


def _advance_receipt(
    db: Session,
    competition_id: UUID,
    user_id: UUID,
    read_at: datetime,
    message_id: Optional[UUID] = None,
) -> MessageReadReceipt:
    receipt = (
        db.query(MessageReadReceipt)
        .filter(MessageReadReceipt.competition_id == competition_id, MessageReadReceipt.user_id == user_id)
        .first()
    )
    if receipt is None:
        receipt = MessageReadReceipt(
            competition_id=competition_id,
            user_id=user_id,
            last_read_message_id=message_id,
            last_read_at=read_at,
        )
        db.add(receipt)
    elif ensure_utc(read_at) > ensure_utc(receipt.last_read_at):
        receipt.last_read_at = read_at
        receipt.last_read_message_id = message_id
    db.flush()
    return receipt


def send_message(
    db: Session,
    *,
    user: User,
    competition_id: UUID,
    message: str,
    type: str = "message",
    parent_message_id: Optional[UUID] = None,
    mentioned_users: Optional[List[UUID]] = None,
) -> CompetitionMessage:
    competition = get_competition(db, competition_id)
    ensure_member(db, user, competition)
    text = _clean_text(message)

    if type not in MESSAGE_TYPES:
        raise ValidationError(f"Unsupported message type: {type}", field="type")
    if type == "system":
        raise ForbiddenError("System messages cannot be posted")
    if type == "announcement" and not can_manage(user, competition):
        raise ForbiddenError("Only the competition creator can post announcements")

    if parent_message_id is not None:
        parent = get_message(db, parent_message_id)
        if parent.competition_id != competition.id:
            raise ValidationError("Reply must stay in the same competition", field="parent_message_id")

    row = CompetitionMessage(
        competition_id=competition.id,
        user_id=user.id,
        parent_message_id=parent_message_id,
        type=type,
        message=text,
        mentioned_users=[str(u) for u in (mentioned_users or [])],
        created_at=utcnow(),
    )
    db.add(row)
    db.flush()

    # The sender has seen everything up to their own post
    _advance_receipt(db, competition.id, user.id, row.created_at, row.id)

    recipients = [p.user_id for p in active_participants(db, competition.id) if p.user_id != user.id]
    for recipient_id in recipients:
        create_notification(
            db,
            user_id=recipient_id,
            title=f"💬 New message in {competition.name}",
            message=f"{user.name}: {_preview(text)}",
            type="new_message",
            action_url=competition_url(competition.id),
            data={
                "competition_id": str(competition.id),
                "competition_name": competition.name,
                "message_id": str(row.id),
                "sender_id": str(user.id),
                "sender_name": user.name,
                "message_type": type,
            },
        )
    db.flush()

    logger.info(
        f"Message posted in {competition.id}",
        extra={"extra_fields": {"message_id": str(row.id), "recipients": len(recipients)}},
    )
    return row


def list_messages(
    db: Session,
    *,
    user: User,
    competition_id: UUID,
    limit: int = DEFAULT_PAGE_SIZE,
    before: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    One page of the board, oldest first.

    Pages walk backwards in time: pass the returned next_cursor as ``before``
    to fetch the older page.
    """
    competition = get_competition(db, competition_id)
    ensure_member(db, user, competition)
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))

    q = db.query(CompetitionMessage).filter(
        CompetitionMessage.competition_id == competition.id,
        CompetitionMessage.deleted_at.is_(None),
    )
    if before is not None:
        q = q.filter(CompetitionMessage.created_at < ensure_utc(before))
    rows = q.order_by(CompetitionMessage.created_at.desc(), CompetitionMessage.id.desc()).limit(limit + 1).all()

    has_more = len(rows) > limit
    rows = list(reversed(rows[:limit]))
    return {
        "messages": serialize_messages(db, rows, viewer_id=user.id),
        "has_more": has_more,
        "next_cursor": ensure_utc(rows[0].created_at).isoformat() if has_more and rows else None,
    }


def edit_message(db: Session, *, user: User, message_id: UUID, message: str) -> CompetitionMessage:
    row = get_message(db, message_id)
    if row.user_id != user.id:
        raise ForbiddenError("Only the author can edit this message")
    if row.type == "system":
        raise ForbiddenError("System messages cannot be edited")

    now = utcnow()
    row.message = _clean_text(message)
    row.edited_at = now
    row.updated_at = now
    db.flush()
    return row


def delete_message(db: Session, *, user: User, message_id: UUID) -> CompetitionMessage:
    row = get_message(db, message_id)
    if row.user_id != user.id:
        competition = get_competition(db, row.competition_id)
        if not can_manage(user, competition):
            raise ForbiddenError("Only the author or the competition creator can delete this message")

    now = utcnow()
    row.deleted_at = now
    row.updated_at = now
    db.flush()
    logger.info(f"Message deleted: {row.id}", extra={"extra_fields": {"deleted_by": str(user.id)}})
    return row


def _clean_emoji(emoji: Optional[str]) -> str:
    value = (emoji or "").strip()
    if not value or len(value) > MAX_EMOJI_LENGTH:
        raise ValidationError("Invalid reaction", field="emoji")
    return value


def add_reaction(db: Session, *, user: User, message_id: UUID, emoji: str) -> MessageReaction:
    """Reacting twice with the same emoji returns the existing reaction."""
    row = get_message(db, message_id)
    ensure_member(db, user, get_competition(db, row.competition_id))
    value = _clean_emoji(emoji)

    existing = (
        db.query(MessageReaction)
        .filter(
            MessageReaction.message_id == row.id,
            MessageReaction.user_id == user.id,
            MessageReaction.emoji == value,
        )
        .first()
    )
    if existing:
        return existing

    reaction = MessageReaction(message_id=row.id, user_id=user.id, emoji=value)
    db.add(reaction)
    db.flush()
    return reaction


def remove_reaction(db: Session, *, user: User, message_id: UUID, emoji: str) -> None:
    value = _clean_emoji(emoji)
    deleted = (
        db.query(MessageReaction)
        .filter(
            MessageReaction.message_id == message_id,
            MessageReaction.user_id == user.id,
            MessageReaction.emoji == value,
        )
        .delete(synchronize_session=False)
    )
    if not deleted:
        raise NotFoundError("Reaction")


def unread_count(db: Session, *, user: User, competition_id: UUID) -> int:
    competition = get_competition(db, competition_id)
    ensure_member(db, user, competition)

    q = db.query(CompetitionMessage).filter(
        CompetitionMessage.competition_id == competition.id,
        CompetitionMessage.deleted_at.is_(None),
        CompetitionMessage.user_id != user.id,
    )
    receipt = (
        db.query(MessageReadReceipt)
        .filter(MessageReadReceipt.competition_id == competition.id, MessageReadReceipt.user_id == user.id)
        .first()
    )
    if receipt is not None:
        q = q.filter(CompetitionMessage.created_at > ensure_utc(receipt.last_read_at))
    return q.count()


def mark_read(
    db: Session,
    *,
    user: User,
    competition_id: UUID,
    message_id: Optional[UUID] = None,
) -> MessageReadReceipt:
    """Mark the board read up to message_id, or entirely when it is omitted."""
    competition = get_competition(db, competition_id)
    ensure_member(db, user, competition)

    if message_id is not None:
        row = get_message(db, message_id)
        if row.competition_id != competition.id:
            raise NotFoundError("Message", str(message_id))
        return _advance_receipt(db, competition.id, user.id, row.created_at, row.id)

    latest = (
        db.query(CompetitionMessage)
        .filter(CompetitionMessage.competition_id == competition.id, CompetitionMessage.deleted_at.is_(None))
        .order_by(CompetitionMessage.created_at.desc())
        .first()
    )
    read_at = max(utcnow(), ensure_utc(latest.created_at)) if latest else utcnow()
    return _advance_receipt(db, competition.id, user.id, read_at, latest.id if latest else None)


def serialize_messages(db: Session, rows: List[CompetitionMessage], *, viewer_id: UUID) -> List[Dict[str, Any]]:
    if not rows:
        return []
    ids = [r.id for r in rows]

    reactions: Dict[UUID, Dict[str, Dict[str, Any]]] = {}
    for reaction in (
        db.query(MessageReaction)
        .filter(MessageReaction.message_id.in_(ids))
        .order_by(MessageReaction.created_at.asc())
    ):
        bucket = reactions.setdefault(reaction.message_id, {}).setdefault(
            reaction.emoji, {"emoji": reaction.emoji, "count": 0, "user_ids": [], "reacted": False}
        )
        bucket["count"] += 1
        bucket["user_ids"].append(str(reaction.user_id))
        if reaction.user_id == viewer_id:
            bucket["reacted"] = True

    reply_counts = dict(
        db.query(CompetitionMessage.parent_message_id, func.count(CompetitionMessage.id))
        .filter(CompetitionMessage.parent_message_id.in_(ids), CompetitionMessage.deleted_at.is_(None))
        .group_by(CompetitionMessage.parent_message_id)
        .all()
    )
    authors = {u.id: u for u in db.query(User).filter(User.id.in_({r.user_id for r in rows})).all()}

    return [
        serialize_message(
            r,
            author=authors.get(r.user_id),
            reactions=list(reactions.get(r.id, {}).values()),
            reply_count=reply_counts.get(r.id, 0),
        )
        for r in rows
    ]


def serialize_message(
    row: CompetitionMessage,
    *,
    author: Optional[User] = None,
    reactions: Optional[List[Dict[str, Any]]] = None,
    reply_count: int = 0,
) -> Dict[str, Any]:
    return {
        "id": str(row.id),
        "competition_id": str(row.competition_id),
        "user_id": str(row.user_id),
        "author_name": author.name if author else None,
        "type": row.type,
        "message": row.message,
        "parent_message_id": str(row.parent_message_id) if row.parent_message_id else None,
        "mentioned_users": row.mentioned_users or [],
        "reactions": reactions or [],
        "reply_count": reply_count,
        "edited_at": ensure_utc(row.edited_at).isoformat() if row.edited_at else None,
        "created_at": ensure_utc(row.created_at).isoformat() if row.created_at else None,
    }


def serialize_receipt(receipt: MessageReadReceipt) -> Dict[str, Any]:
    return {
        "competition_id": str(receipt.competition_id),
        "last_read_message_id": str(receipt.last_read_message_id) if receipt.last_read_message_id else None,
        "last_read_at": ensure_utc(receipt.last_read_at).isoformat(),
    }
