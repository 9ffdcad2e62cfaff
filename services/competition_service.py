"""
Competition membership: create, join (by id or invite code), leave.
"""
from __future__ import annotations

import secrets
from typing import Any, Dict, List, Optional
from uuid import UUID

import logging
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from core.time_utils import ensure_utc, utcnow
from models import (
    COMPETITION_TYPES,
    SCORING_METHODS,
    ACTIVITY_TYPES,
    Competition,
    CompetitionIssue,
    CompetitionParticipant,
    User,
)
from services.notification_service import competition_url, create_notification
from services.standings import latest_weight_entry, recalculate_competition_standings

logger = logging.getLogger(__name__)

# No 0/O or 1/I so codes survive being read aloud
INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_CODE_LENGTH = 8

CLOSED_STATUSES = ("completed", "cancelled")


def generate_invite_code(db: Session) -> str:
    for _ in range(10):
        code = "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))
        if not db.query(Competition.id).filter(Competition.invite_code == code).first():
            return code
    raise RuntimeError("Could not generate a unique invite code")


def normalize_invite_code(code: str) -> str:
    return (code or "").strip().upper()


def create_competition(
    db: Session,
    *,
    creator: User,
    name: str,
    description: Optional[str] = None,
    competition_type: Optional[str] = "weight_loss",
    activity_type: str = "weight",
    scoring_method: str = "total_value",
    ranking_direction: str = "desc",
    duration_days: Optional[int] = None,
    max_participants: Optional[int] = None,
    join: bool = True,
) -> Competition:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Competition name is required", field="name")
    if competition_type is not None and competition_type not in COMPETITION_TYPES:
        raise ValidationError(f"Unsupported competition type: {competition_type}", field="competition_type")
    if activity_type not in ACTIVITY_TYPES:
        raise ValidationError(f"Unsupported activity type: {activity_type}", field="activity_type")
    if scoring_method not in SCORING_METHODS:
        raise ValidationError(f"Unsupported scoring method: {scoring_method}", field="scoring_method")
    if ranking_direction not in ("asc", "desc"):
        raise ValidationError("ranking_direction must be 'asc' or 'desc'", field="ranking_direction")
    duration = duration_days if duration_days is not None else settings.COMPETITION_DEFAULT_DURATION_DAYS
    if duration <= 0:
        raise ValidationError("duration_days must be positive", field="duration_days")
    if max_participants is not None and max_participants < 1:
        raise ValidationError("max_participants must be at least 1", field="max_participants")

    competition = Competition(
        name=name,
        description=description,
        competition_type=competition_type,
        activity_type=activity_type,
        scoring_method=scoring_method,
        ranking_direction=ranking_direction,
        duration_days=duration,
        max_participants=max_participants,
        status="pending",
        invite_code=generate_invite_code(db),
        created_by=creator.id,
    )
    db.add(competition)
    db.flush()

    if join:
        join_competition(db, user=creator, competition=competition, notify=False)

    logger.info(f"Competition created: {competition.id}", extra={"extra_fields": {"created_by": str(creator.id)}})
    return competition


def get_competition(db: Session, competition_id: UUID) -> Competition:
    competition = db.query(Competition).filter(Competition.id == competition_id).first()
    if not competition:
        raise NotFoundError("Competition", str(competition_id))
    return competition


def find_by_invite_code(db: Session, code: str) -> Competition:
    competition = db.query(Competition).filter(Competition.invite_code == normalize_invite_code(code)).first()
    if not competition:
        raise NotFoundError("Invite code", normalize_invite_code(code))
    return competition


def get_membership(db: Session, competition_id: UUID, user_id: UUID) -> Optional[CompetitionParticipant]:
    return (
        db.query(CompetitionParticipant)
        .filter(
            CompetitionParticipant.competition_id == competition_id,
            CompetitionParticipant.user_id == user_id,
        )
        .first()
    )


def list_user_competitions(db: Session, *, user: User, status: Optional[str] = None) -> List[Competition]:
    q = (
        db.query(Competition)
        .join(CompetitionParticipant, CompetitionParticipant.competition_id == Competition.id)
        .filter(CompetitionParticipant.user_id == user.id, CompetitionParticipant.is_active.is_(True))
    )
    if status:
        q = q.filter(Competition.status == status)
    return q.order_by(Competition.created_at.desc()).all()


def _active_count(db: Session, competition_id: UUID) -> int:
    return (
        db.query(CompetitionParticipant)
        .filter(
            CompetitionParticipant.competition_id == competition_id,
            CompetitionParticipant.is_active.is_(True),
        )
        .count()
    )


def join_competition(
    db: Session,
    *,
    user: User,
    competition: Competition,
    notify: bool = True,
    goal_weight: Optional[float] = None,
) -> CompetitionParticipant:
    """
    Add (or reactivate) a membership.

    The starting and current weight are seeded from the user's latest weight
    entry, then standings are recalculated.
    """
    if competition.status in CLOSED_STATUSES:
        raise ValidationError(f"Competition is {competition.status}", field="status")

    membership = get_membership(db, competition.id, user.id)
    if membership and membership.is_active:
        raise ConflictError("Already a participant in this competition")

    if competition.max_participants and _active_count(db, competition.id) >= competition.max_participants:
        raise ValidationError("Competition is full", field="max_participants")

    latest = latest_weight_entry(db, user.id)
    if membership:
        membership.is_active = True
        membership.joined_at = utcnow()
    else:
        membership = CompetitionParticipant(
            competition_id=competition.id,
            user_id=user.id,
            joined_at=utcnow(),
            is_active=True,
            total_entries=0,
        )
        db.add(membership)

    if goal_weight is not None:
        membership.goal_weight = goal_weight
    if latest is not None and competition.is_weight_based:
        if membership.starting_weight is None:
            membership.starting_weight = latest.weight
        membership.current_weight = latest.weight
    db.flush()

    if notify:
        create_notification(
            db,
            user_id=user.id,
            title="Competition Joined!",
            message=f"You've successfully joined {competition.name}. Good luck!",
            type="competition_joined",
            action_url=competition_url(competition.id),
            data={"competition_id": str(competition.id)},
        )

    recalculate_competition_standings(db, competition.id)
    return membership


def leave_competition(db: Session, *, user: User, competition: Competition) -> CompetitionParticipant:
    membership = get_membership(db, competition.id, user.id)
    if not membership or not membership.is_active:
        raise NotFoundError("Participation", str(competition.id))
    if competition.status in CLOSED_STATUSES:
        raise ValidationError(f"Competition is {competition.status}", field="status")
    membership.is_active = False
    membership.rank = None
    db.flush()
    recalculate_competition_standings(db, competition.id)
    return membership


def can_manage(user: User, competition: Competition) -> bool:
    return user.is_admin or competition.created_by == user.id


def ensure_can_view(db: Session, user: User, competition: Competition) -> None:
    if can_manage(user, competition):
        return
    if not get_membership(db, competition.id, user.id):
        raise ForbiddenError("Not a participant in this competition")


def report_issue(
    db: Session,
    *,
    user: User,
    competition: Competition,
    title: str,
    description: Optional[str] = None,
) -> CompetitionIssue:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Issue title is required", field="title")
    ensure_can_view(db, user, competition)
    issue = CompetitionIssue(
        competition_id=competition.id,
        reported_by=user.id,
        title=title,
        description=description,
        status="open",
    )
    db.add(issue)
    db.flush()
    return issue


def days_left(competition: Competition) -> Optional[int]:
    end = ensure_utc(competition.end_date)
    if end is None:
        return None
    remaining = (end - utcnow()).total_seconds()
    return max(0, int(-(-remaining // 86400)))


def serialize_competition(competition: Competition, *, participants_count: Optional[int] = None) -> Dict[str, Any]:
    data = {
        "id": str(competition.id),
        "name": competition.name,
        "description": competition.description,
        "competition_type": competition.competition_type,
        "activity_type": competition.activity_type,
        "scoring_method": competition.scoring_method,
        "ranking_direction": competition.ranking_direction,
        "status": competition.status,
        "duration_days": competition.duration_days,
        "start_date": competition.start_date.isoformat() if competition.start_date else None,
        "end_date": competition.end_date.isoformat() if competition.end_date else None,
        "max_participants": competition.max_participants,
        "invite_code": competition.invite_code,
        "created_by": str(competition.created_by) if competition.created_by else None,
        "created_at": competition.created_at.isoformat() if competition.created_at else None,
        "completed_at": competition.completed_at.isoformat() if competition.completed_at else None,
        "days_left": days_left(competition),
    }
    if participants_count is not None:
        data["participants_count"] = participants_count
    return data


def serialize_participant(p: CompetitionParticipant) -> Dict[str, Any]:
    return {
        "id": str(p.id),
        "competition_id": str(p.competition_id),
        "user_id": str(p.user_id),
        "name": p.user.name if p.user else None,
        "email": p.user.email if p.user else None,
        "joined_at": p.joined_at.isoformat() if p.joined_at else None,
        "starting_weight": p.starting_weight,
        "current_weight": p.current_weight,
        "goal_weight": p.goal_weight,
        "weight_change": p.weight_change,
        "weight_change_percentage": p.weight_change_percentage,
        "starting_value": p.starting_value,
        "current_value": p.current_value,
        "rank": p.rank,
        "is_active": bool(p.is_active),
        "total_entries": p.total_entries,
    }


def serialize_issue(issue: CompetitionIssue) -> Dict[str, Any]:
    return {
        "id": str(issue.id),
        "competition_id": str(issue.competition_id),
        "competition_name": issue.competition.name if issue.competition else None,
        "reported_by": str(issue.reported_by) if issue.reported_by else None,
        "title": issue.title,
        "description": issue.description,
        "status": issue.status,
        "resolution_notes": issue.resolution_notes,
        "resolved_at": issue.resolved_at.isoformat() if issue.resolved_at else None,
        "created_at": issue.created_at.isoformat() if issue.created_at else None,
        "updated_at": issue.updated_at.isoformat() if issue.updated_at else None,
    }
