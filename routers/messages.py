"""
Competition message board endpoints.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from models import User
from schemas import MarkMessagesRead, MessageCreate, MessageUpdate, ReactionCreate
from services.messaging_service import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    add_reaction,
    delete_message,
    edit_message,
    list_messages,
    mark_read,
    remove_reaction,
    send_message,
    serialize_messages,
    serialize_receipt,
    unread_count,
)

router = APIRouter(prefix="/v1", tags=["messages"])


@router.get("/competitions/{competition_id}/messages")
def get_messages(
    competition_id: UUID,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    before: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return list_messages(db, user=current_user, competition_id=competition_id, limit=limit, before=before)


@router.post("/competitions/{competition_id}/messages", status_code=status.HTTP_201_CREATED)
def post_message(
    competition_id: UUID,
    body: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    row = send_message(
        db,
        user=current_user,
        competition_id=competition_id,
        message=body.message,
        type=body.type,
        parent_message_id=body.parent_message_id,
        mentioned_users=body.mentioned_users,
    )
    return serialize_messages(db, [row], viewer_id=current_user.id)[0]


@router.get("/competitions/{competition_id}/messages/unread-count")
def get_unread_count(
    competition_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"unread_count": unread_count(db, user=current_user, competition_id=competition_id)}


@router.post("/competitions/{competition_id}/messages/read")
def read_messages(
    competition_id: UUID,
    body: Optional[MarkMessagesRead] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    receipt = mark_read(
        db,
        user=current_user,
        competition_id=competition_id,
        message_id=body.message_id if body else None,
    )
    return {
        **serialize_receipt(receipt),
        "unread_count": unread_count(db, user=current_user, competition_id=competition_id),
    }


@router.patch("/messages/{message_id}")
def update_message(
    message_id: UUID,
    body: MessageUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    row = edit_message(db, user=current_user, message_id=message_id, message=body.message)
    return serialize_messages(db, [row], viewer_id=current_user.id)[0]


@router.delete("/messages/{message_id}")
def remove_message(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    row = delete_message(db, user=current_user, message_id=message_id)
    return {"success": True, "id": str(row.id)}


@router.post("/messages/{message_id}/reactions", status_code=status.HTTP_201_CREATED)
def react(
    message_id: UUID,
    body: ReactionCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    reaction = add_reaction(db, user=current_user, message_id=message_id, emoji=body.emoji)
    return {"id": str(reaction.id), "message_id": str(reaction.message_id), "emoji": reaction.emoji}


@router.delete("/messages/{message_id}/reactions")
def unreact(
    message_id: UUID,
    emoji: str = Query(..., min_length=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    remove_reaction(db, user=current_user, message_id=message_id, emoji=emoji)
    return {"success": True}
