"""
Admin API Router

Competition oversight for operators: every competition at a glance,
participant corrections, and triage of participant-reported issues.
Admin/super_admin role only. Every mutation writes an AdminAuditEvent.
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import Any, Dict, Optional
from uuid import UUID
import logging

from core.auth import require_admin
from core.database import get_db
from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.time_utils import utcnow
from models import (
    ISSUE_STATUSES,
    Competition,
    CompetitionIssue,
    CompetitionParticipant,
    User,
)
from schemas import AdminIssueUpdate, AdminParticipantAdd, AdminParticipantUpdate
from services.admin_audit import record_admin_audit_event
from services.competition_service import (
    get_competition,
    get_membership,
    serialize_competition,
    serialize_issue,
    serialize_participant,
)
from services.standings import apply_weight_change, latest_weight_entry, recalculate_competition_standings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])

PARTICIPANT_FIELDS = ("starting_weight", "current_weight", "goal_weight", "is_active")


def _participant_snapshot(p: CompetitionParticipant) -> Dict[str, Any]:
    return {field: getattr(p, field) for field in PARTICIPANT_FIELDS}


def _get_participant(db: Session, competition_id: UUID, participant_id: UUID) -> CompetitionParticipant:
    participant = (
        db.query(CompetitionParticipant)
        .filter(
            CompetitionParticipant.id == participant_id,
            CompetitionParticipant.competition_id == competition_id,
        )
        .first()
    )
    if not participant:
        raise NotFoundError("Participant", str(participant_id))
    return participant


@router.get("/competitions")
def list_competitions(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """All competitions, newest first, with participant and issue counts."""
    q = db.query(Competition)
    if status_filter:
        q = q.filter(Competition.status == status_filter)
    competitions = q.order_by(Competition.created_at.desc()).all()
    ids = [c.id for c in competitions]

    participant_counts: Dict[Any, int] = {}
    issue_counts: Dict[Any, Dict[str, int]] = {}
    if ids:
        participant_counts = dict(
            db.query(CompetitionParticipant.competition_id, func.count(CompetitionParticipant.id))
            .filter(
                CompetitionParticipant.competition_id.in_(ids),
                CompetitionParticipant.is_active.is_(True),
            )
            .group_by(CompetitionParticipant.competition_id)
            .all()
        )
        for competition_id, issue_status, count in (
            db.query(CompetitionIssue.competition_id, CompetitionIssue.status, func.count(CompetitionIssue.id))
            .filter(CompetitionIssue.competition_id.in_(ids))
            .group_by(CompetitionIssue.competition_id, CompetitionIssue.status)
            .all()
        ):
            bucket = issue_counts.setdefault(competition_id, {"open": 0, "total": 0})
            bucket["total"] += count
            if issue_status == "open":
                bucket["open"] += count

    return {
        "competitions": [
            {
                **serialize_competition(c, participants_count=participant_counts.get(c.id, 0)),
                "open_issues": issue_counts.get(c.id, {}).get("open", 0),
                "total_issues": issue_counts.get(c.id, {}).get("total", 0),
            }
            for c in competitions
        ],
        "total": len(competitions),
    }


@router.get("/competitions/{competition_id}/participants")
def list_participants(
    competition_id: UUID,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    competition = get_competition(db, competition_id)
    participants = (
        db.query(CompetitionParticipant)
        .filter(CompetitionParticipant.competition_id == competition.id)
        .order_by(CompetitionParticipant.joined_at.asc(), CompetitionParticipant.id.asc())
        .all()
    )
    return {
        "competition": serialize_competition(competition),
        "participants": [serialize_participant(p) for p in participants],
    }


@router.post("/competitions/{competition_id}/participants", status_code=201)
def add_participant(
    competition_id: UUID,
    body: AdminParticipantAdd,
    http_request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Add a user by id or email. Capacity limits do not apply to admins."""
    competition = get_competition(db, competition_id)

    if body.user_id is None and not body.email:
        raise ValidationError("user_id or email is required", field="user_id")
    q = db.query(User)
    if body.user_id is not None:
        user = q.filter(User.id == body.user_id).first()
    else:
        user = q.filter(User.email == body.email.strip().lower()).first()
    if not user:
        raise NotFoundError("User", str(body.user_id or body.email))

    membership = get_membership(db, competition.id, user.id)
    if membership and membership.is_active:
        raise ConflictError("User is already a participant in this competition")

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

    latest = latest_weight_entry(db, user.id)
    starting = body.starting_weight
    if starting is None:
        starting = membership.starting_weight if membership.starting_weight is not None else (latest.weight if latest else None)
    current = body.current_weight
    if current is None:
        current = latest.weight if latest else starting
    membership.starting_weight = starting
    membership.current_weight = current
    if body.goal_weight is not None:
        membership.goal_weight = body.goal_weight
    apply_weight_change(membership)
    db.flush()

    recalculate_competition_standings(db, competition.id)
    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="participant.add",
        competition_id=competition.id,
        target_user_id=user.id,
        reason=body.reason,
        payload={"after": _participant_snapshot(membership)},
    )
    return {"success": True, "participant": serialize_participant(membership)}


@router.patch("/competitions/{competition_id}/participants/{participant_id}")
def update_participant(
    competition_id: UUID,
    participant_id: UUID,
    body: AdminParticipantUpdate,
    http_request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    participant = _get_participant(db, competition_id, participant_id)
    updates = body.model_dump(exclude_none=True, include=set(PARTICIPANT_FIELDS))
    if not updates:
        raise ValidationError("No fields to update")

    before = _participant_snapshot(participant)
    for field, value in updates.items():
        setattr(participant, field, value)
    if participant.is_active is False:
        participant.rank = None
    apply_weight_change(participant)
    db.flush()

    recalculate_competition_standings(db, competition_id)
    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="participant.update",
        competition_id=competition_id,
        target_user_id=participant.user_id,
        reason=body.reason,
        payload={"before": before, "after": _participant_snapshot(participant)},
    )
    return {"success": True, "participant": serialize_participant(participant)}


@router.delete("/competitions/{competition_id}/participants/{participant_id}")
def remove_participant(
    competition_id: UUID,
    participant_id: UUID,
    http_request: Request,
    reason: Optional[str] = None,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Soft removal: the membership is deactivated, its history is kept."""
    participant = _get_participant(db, competition_id, participant_id)
    participant.is_active = False
    participant.rank = None
    db.flush()

    recalculate_competition_standings(db, competition_id)
    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="participant.remove",
        competition_id=competition_id,
        target_user_id=participant.user_id,
        reason=reason,
    )
    return {"success": True}


@router.get("/competition-issues")
def list_issues(
    status_filter: Optional[str] = Query(None, alias="status"),
    competition_id: Optional[UUID] = None,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    q = db.query(CompetitionIssue)
    if status_filter:
        q = q.filter(CompetitionIssue.status == status_filter)
    if competition_id:
        q = q.filter(CompetitionIssue.competition_id == competition_id)
    issues = q.order_by(CompetitionIssue.created_at.desc()).all()
    return {"issues": [serialize_issue(i) for i in issues], "total": len(issues)}


@router.patch("/competition-issues/{issue_id}")
def update_issue(
    issue_id: UUID,
    body: AdminIssueUpdate,
    http_request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    issue = db.query(CompetitionIssue).filter(CompetitionIssue.id == issue_id).first()
    if not issue:
        raise NotFoundError("Issue", str(issue_id))
    if body.status is None and body.resolution_notes is None:
        raise ValidationError("No fields to update")
    if body.status is not None and body.status not in ISSUE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ISSUE_STATUSES)}", field="status")

    before = {"status": issue.status, "resolution_notes": issue.resolution_notes}
    if body.status is not None:
        issue.status = body.status
        if body.status == "resolved":
            issue.resolved_at = utcnow()
            issue.resolved_by = current_user.id
        else:
            issue.resolved_at = None
            issue.resolved_by = None
    if body.resolution_notes is not None:
        issue.resolution_notes = body.resolution_notes
    issue.updated_at = utcnow()
    db.flush()

    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="issue.update",
        competition_id=issue.competition_id,
        payload={"issue_id": str(issue.id), "before": before, "after": {"status": issue.status, "resolution_notes": issue.resolution_notes}},
    )
    return {"success": True, "issue": serialize_issue(issue)}
