"""
Scheduled competition lifecycle.

    pending --start job--> started --finalize job (end_date passed)--> completed

Both jobs are best-effort loops: each competition is its own unit of work
(claim, do the work, commit). A failure rolls back that competition only,
is logged and counted, and the batch moves on.

Duplicate runs: every transition first claims the competition with a
conditional UPDATE (... WHERE status = <expected>). A run that loses the
race, or re-runs after the commit, updates zero rows and skips the
competition, so baselines are seeded once and completion notifications are
sent once. The claim shares the transaction with the work, so a failure
releases it and the next run retries.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

import logging
from sqlalchemy.orm import Session

from core.cache import invalidate_leaderboard
from core.config import settings
from core.time_utils import ensure_utc, start_of_day, utcnow
from models import CalculationResult, Competition
from services.calculation_results import SUBJECT_PARTICIPANT, get_winner_result, upsert_calculation_result
from services.notification_service import absolute_url, competition_url, create_notification
from services.push_providers import get_novu_client
from services.standings import (
    active_participants,
    apply_weight_change,
    latest_weight_entry,
    recalculate_competition_standings,
)

logger = logging.getLogger(__name__)


def _claim(db: Session, competition_id: UUID, *, expected: str, values: Dict[Any, Any]) -> bool:
    updated = (
        db.query(Competition)
        .filter(Competition.id == competition_id, Competition.status == expected)
        .update(values, synchronize_session=False)
    )
    return updated == 1


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------

def start_competition(db: Session, competition_id: UUID, *, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """
    Start one pending competition inside the caller's transaction.

    Returns a summary, or None when the competition was not pending (already
    started by another run, completed, cancelled or unknown).
    """
    now = ensure_utc(now) or utcnow()
    competition = db.query(Competition).filter(Competition.id == competition_id).first()
    if not competition:
        logger.warning(f"Start skipped, competition not found: {competition_id}")
        return None

    start_date = start_of_day(now)
    end_date = start_date + timedelta(days=competition.duration_days or settings.COMPETITION_DEFAULT_DURATION_DAYS)

    if not _claim(db, competition.id, expected="pending", values={
        Competition.status: "started",
        Competition.start_date: start_date,
        Competition.end_date: end_date,
        Competition.updated_at: now,
    }):
        return None
    db.refresh(competition)

    participants = active_participants(db, competition.id)
    seeded_at = now.isoformat()

    for participant in participants:
        if competition.is_weight_based:
            latest = latest_weight_entry(db, participant.user_id)
            baseline = float(latest.weight) if latest else None
            if baseline is not None:
                participant.starting_weight = baseline
                participant.current_weight = baseline
            apply_weight_change(participant)
        else:
            baseline = 0.0
            participant.starting_value = 0.0
            participant.current_value = 0.0
        participant.rank = None

        upsert_calculation_result(
            db,
            competition_id=competition.id,
            subject_id=participant.id,
            calculation_method=competition.scoring_method or "total_value",
            calculated_score=0,
            rank=None,
            percentile=None,
            calculation_data={
                "starting_value": baseline,
                "current_value": baseline,
                "total_contribution": 0,
                "value_change": 0,
                "value_change_percentage": 0,
                "entry_count": 0,
                "baseline": True,
                "seeded_at": seeded_at,
            },
            calculation_version="initial",
        )

        create_notification(
            db,
            user_id=participant.user_id,
            title="🏁 Competition Started!",
            message=f"{competition.name} has begun! Good luck!",
            type="competition_start",
            action_url=competition_url(competition.id),
            data={
                "competition_id": str(competition.id),
                "competition_name": competition.name,
                "duration_days": competition.duration_days,
                "activity_type": competition.activity_type,
            },
        )

    db.flush()
    # Cached boards still carry pre-start ranks
    invalidate_leaderboard(competition.id)
    logger.info(
        f"Competition started:{competition.name} ({competition.id}) with {len(participants)} participants",
        extra={"extra_fields": {"competition_id": str(competition.id), "participants": len(participants)}},
    )
    return {
        "id": str(competition.id),
        "name": competition.name,
        "participants": len(participants),
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
    }


def start_pending_competitions(db: Session, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = ensure_utc(now) or utcnow()
    pending_ids = [
        row.id
        for row in db.query(Competition.id)
        .filter(Competition.status == "pending")
        .order_by(Competition.created_at.asc())
        .all()
    ]

    results: Dict[str, Any] = {"started": 0, "skipped": 0, "failed": 0, "errors": [], "competitions": []}
    for competition_id in pending_ids:
        try:
            summary = start_competition(db, competition_id, now=now)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to start competition {competition_id}: {e}", exc_info=True)
            results["failed"] += 1
            results["errors"].append({"competition_id": str(competition_id), "error": str(e)})
            continue

        if summary is None:
            results["skipped"] += 1
        else:
            results["started"] += 1
            results["competitions"].append(summary)

    return {
        "success": True,
        "message": f"Started {results['started']} competition(s)",
        **results,
        "timestamp": now.isoformat(),
    }


# ---------------------------------------------------------------------------
# Finalize
# ---------------------------------------------------------------------------

def _completion_message(competition: Competition, rank: Optional[int], is_winner: bool) -> tuple[str, str]:
    if is_winner:
        return "🏆 Congratulations! You Won!", f"You finished in 1st place in {competition.name}! Great job!"
    if rank:
        return "🏁 Competition Completed!", f"{competition.name} has ended. You finished in position #{rank}."
    return "🏁 Competition Completed!", f"{competition.name} has ended. Check your final results!"


def finalize_competition(db: Session, competition_id: UUID, *, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """Complete one started competition. None when it was not claimable."""
    now = ensure_utc(now) or utcnow()

    if not _claim(db, competition_id, expected="started", values={
        Competition.status: "completed",
        Competition.completed_at: now,
        Competition.updated_at: now,
    }):
        return None

    competition = db.query(Competition).filter(Competition.id == competition_id).one()
    db.refresh(competition)

    recalculate_competition_standings(db, competition.id)

    participants = active_participants(db, competition.id)
    rankings = {
        r.subject_id: r
        for r in db.query(CalculationResult).populate_existing().filter(
            CalculationResult.competition_id == competition.id,
            CalculationResult.subject_type == SUBJECT_PARTICIPANT,
        )
    }
    winner = get_winner_result(db, competition.id)
    winner_participant_id = winner.subject_id if winner else None

    for participant in participants:
        ranking = rankings.get(participant.id)
        rank = ranking.rank if ranking else None
        is_winner = winner_participant_id is not None and participant.id == winner_participant_id
        title, message = _completion_message(competition, rank, is_winner)
        create_notification(
            db,
            user_id=participant.user_id,
            title=title,
            message=message,
            type="competition_completed",
            action_url=competition_url(competition.id),
            data={
                "competition_id": str(competition.id),
                "competition_name": competition.name,
                "rank": rank,
                "score": ranking.calculated_score if ranking else 0,
                "is_winner": is_winner,
            },
        )

    db.flush()
    winner_user_id = None
    if winner_participant_id is not None:
        winner_user_id = next((str(p.user_id) for p in participants if p.id == winner_participant_id), None)

    logger.info(
        f"Competition completed: {competition.name} ({competition.id})",
        extra={"extra_fields": {"competition_id": str(competition.id), "winner_user_id": winner_user_id}},
    )
    return {
        "id": str(competition.id),
        "name": competition.name,
        "completed_at": now.isoformat(),
        "winner_user_id": winner_user_id,
        "notifications": len(participants),
    }


def finalize_expired_competitions(db: Session, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = ensure_utc(now) or utcnow()
    expired_ids = [
        row.id
        for row in db.query(Competition.id)
        .filter(
            Competition.status == "started",
            Competition.end_date.isnot(None),
            Competition.end_date <= now,
        )
        .order_by(Competition.end_date.asc())
        .all()
    ]

    finalized: List[Dict[str, Any]] = []
    notifications = {"sent": 0, "failed": 0}
    errors: List[Dict[str, str]] = []
    for competition_id in expired_ids:
        try:
            summary = finalize_competition(db, competition_id, now=now)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to finalize competition {competition_id}: {e}", exc_info=True)
            notifications["failed"] += 1
            errors.append({"competition_id": str(competition_id), "error": str(e)})
            continue
        if summary is not None:
            finalized.append(summary)
            notifications["sent"] += summary["notifications"]

    response: Dict[str, Any] = {
        "success": True,
        "message": f"Finalized {len(finalized)} competition(s)",
        "finalized": len(finalized),
        "competitions": finalized,
        "notifications": notifications,
        "timestamp": now.isoformat(),
    }
    if errors:
        response["errors"] = errors
    return response


# ---------------------------------------------------------------------------
# Ending soon
# ---------------------------------------------------------------------------

def send_ending_soon_notifications(db: Session, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Warn participants of competitions ending in [now + N days, now + N + 1 days).

    Runs once a day, so each competition falls in the window exactly once.
    When Novu is configured the push goes out through the
    'competition-ending-soon' workflow and the in-app row is marked as pushed.
    """
    now = ensure_utc(now) or utcnow()
    days = settings.COMPETITION_ENDING_SOON_DAYS
    window_start = now + timedelta(days=days)
    window_end = window_start + timedelta(days=1)

    competitions = (
        db.query(Competition)
        .filter(
            Competition.status == "started",
            Competition.end_date >= window_start,
            Competition.end_date < window_end,
        )
        .all()
    )

    novu = get_novu_client()
    results: Dict[str, Any] = {"competitions": len(competitions), "notified": 0, "pushed": 0, "failed": 0}

    for competition in competitions:
        try:
            for participant in active_participants(db, competition.id):
                rank_text = f"#{participant.rank}" if participant.rank else "unranked"
                title = f"⚠️ {competition.name} ends in {days} days!"
                notification = create_notification(
                    db,
                    user_id=participant.user_id,
                    title=title,
                    message=f"Final push! Make every day count. You're currently ranked {rank_text}.",
                    type="competition_ending",
                    action_url=competition_url(competition.id),
                    data={
                        "competition_id": str(competition.id),
                        "competition_name": competition.name,
                        "rank": participant.rank,
                        "days_remaining": days,
                    },
                )
                results["notified"] += 1

                if novu is not None:
                    outcome = novu.trigger("competition-ending-soon", str(participant.user_id), {
                        "title": title,
                        "message": notification.message,
                        "competitionName": competition.name,
                        "competitionId": str(competition.id),
                        "rank": participant.rank,
                        "daysRemaining": days,
                        "actionUrl": absolute_url(competition_url(competition.id)),
                    })
                    if outcome.ok:
                        notification.push_sent_at = utcnow()
                        results["pushed"] += 1
                    else:
                        results["failed"] += 1
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Ending-soon notifications failed for {competition.id}: {e}", exc_info=True)
            results["failed"] += 1

    return {"success": True, "message": f"Checked {len(competitions)} competition(s) ending soon", **results}
