"""
Competition endpoints: create, browse, join/leave, leaderboard.

Joining or leaving recalculates standings in the same request.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
import logging

from core.auth import get_current_user, get_current_user_or_api_token
from core.database import get_db
from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from models import User
from schemas import CompetitionCreate, IssueCreate, JoinByCodeRequest, JoinCompetitionRequest
from services.competition_lifecycle import start_competition
from services.competition_service import (
    can_manage,
    create_competition,
    ensure_can_view,
    find_by_invite_code,
    get_competition,
    join_competition,
    leave_competition,
    list_user_competitions,
    report_issue,
    serialize_competition,
    serialize_issue,
    serialize_participant,
)
from services.standings import active_participants, get_leaderboard, recalculate_competition_standings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/competitions", tags=["competitions"])


@router.post("", status_code=status.HTTP_201_CREATED)
def create(
    body: CompetitionCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a pending competition; the creator joins it automatically."""
    competition = create_competition(
        db,
        creator=current_user,
        name=body.name,
        description=body.description,
        competition_type=body.competition_type,
        activity_type=body.activity_type,
        scoring_method=body.scoring_method,
        ranking_direction=body.ranking_direction,
        duration_days=body.duration_days,
        max_participants=body.max_participants,
    )
    return serialize_competition(competition, participants_count=len(active_participants(db, competition.id)))


@router.get("")
def list_mine(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    competitions = list_user_competitions(db, user=current_user, status=status_filter)
    return {"competitions": [serialize_competition(c) for c in competitions]}


@router.post("/join", status_code=status.HTTP_201_CREATED)
def join_by_code(
    body: JoinByCodeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    competition = find_by_invite_code(db, body.invite_code)
    participant = join_competition(db, user=current_user, competition=competition, goal_weight=body.goal_weight)
    return {
        "success": True,
        "competition": serialize_competition(competition),
        "participant": serialize_participant(participant),
    }


@router.get("/{competition_id}")
def detail(
    competition_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    competition = get_competition(db, competition_id)
    ensure_can_view(db, current_user, competition)
    participants = active_participants(db, competition.id)
    return {
        **serialize_competition(competition, participants_count=len(participants)),
        "participants": [serialize_participant(p) for p in participants],
    }


@router.post("/{competition_id}/join", status_code=status.HTTP_201_CREATED)
def join(
    competition_id: UUID,
    body: Optional[JoinCompetitionRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    competition = get_competition(db, competition_id)
    participant = join_competition(
        db,
        user=current_user,
        competition=competition,
        goal_weight=body.goal_weight if body else None,
    )
    return {"success": True, "participant": serialize_participant(participant)}


@router.post("/{competition_id}/leave")
def leave(
    competition_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    competition = get_competition(db, competition_id)
    leave_competition(db, user=current_user, competition=competition)
    return {"success": True}


@router.get("/{competition_id}/leaderboard")
def leaderboard(
    competition_id: UUID,
    current_user: User = Depends(get_current_user_or_api_token),
    db: Session = Depends(get_db),
):
    competition = get_competition(db, competition_id)
    ensure_can_view(db, current_user, competition)
    board = get_leaderboard(db, competition.id)
    if board is None:
        raise NotFoundError("Competition", str(competition_id))
    return board


@router.post("/{competition_id}/recalculate")
def recalculate(
    competition_id: UUID,
    current_user: User = Depends(get_current_user_or_api_token),
    db: Session = Depends(get_db),
):
    """Force a standings recalculation. Participants, the creator and admins may call it."""
    competition = get_competition(db, competition_id)
    ensure_can_view(db, current_user, competition)
    result = recalculate_competition_standings(db, competition.id)
    logger.info(
        f"Manual recalculation of {competition.id}",
        extra={"extra_fields": {"user_id": str(current_user.id), "updated_count": result.get("updated_count")}},
    )
    return result


@router.post("/{competition_id}/start")
def start(
    competition_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Start a pending competition now instead of waiting for the daily job."""
    competition = get_competition(db, competition_id)
    if not can_manage(current_user, competition):
        raise ForbiddenError("Only the creator or an admin can start this competition")
    summary = start_competition(db, competition.id)
    if summary is None:
        raise ValidationError(f"Competition is {competition.status}, only pending competitions can be started", field="status")
    return {"success": True, "competition": summary}


@router.post("/{competition_id}/issues", status_code=status.HTTP_201_CREATED)
def create_issue(
    competition_id: UUID,
    body: IssueCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    competition = get_competition(db, competition_id)
    issue = report_issue(db, user=current_user, competition=competition, title=body.title, description=body.description)
    return serialize_issue(issue)
