"""
Admin audit trail.

Every admin mutation of a competition (participant added, edited, removed;
issue triaged) appends one AdminAuditEvent row in the same transaction as
the change itself.
"""
from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import UUID

import logging
from fastapi import Request
from sqlalchemy.orm import Session

from models import AdminAuditEvent, User

logger = logging.getLogger(__name__)

MAX_USER_AGENT_LENGTH = 512


def _client_details(request: Optional[Request]) -> tuple[Optional[str], Optional[str]]:
    if request is None:
        return None, None
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    if user_agent:
        user_agent = user_agent[:MAX_USER_AGENT_LENGTH]
    return ip_address, user_agent


def record_admin_audit_event(
    db: Session,
    *,
    request: Optional[Request],
    actor: User,
    action: str,
    competition_id: Optional[UUID] = None,
    target_user_id: Optional[UUID] = None,
    reason: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> Optional[AdminAuditEvent]:
    """
    Append an audit row; returns None if it could not be written.

    Never raises: a failed audit write is logged and the admin action proceeds.
    Payloads stay small and never carry credentials.
    """
    ip_address, user_agent = _client_details(request)
    try:
        event = AdminAuditEvent(
            actor_user_id=actor.id,
            action=action,
            target_user_id=target_user_id,
            target_competition_id=competition_id,
            reason=reason,
            ip_address=ip_address,
            user_agent=user_agent,
            payload=payload or {},
        )
        db.add(event)
        db.flush()
        return event
    except Exception as e:
        logger.exception("Admin audit logging failed for %s: %s", action, str(e))
        return None
