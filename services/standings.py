"""
Standings recalculation.

recalculate_competition_standings is the single entry point every write
path calls after participant data changes. For weight competitions it:

1. ranks the active participants with services.ranking
2. writes rank onto each participant (None for unrankable ones)
3. retires the previous current snapshot and inserts a new one, unless
   the ranking is unchanged
4. mirrors score/rank/percentile into calculation_result
5. drops the cached leaderboard

Activity competitions delegate to services.competition_scoring.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

import logging
from sqlalchemy.orm import Session

from core.cache import get_cache, invalidate_leaderboard, leaderboard_cache_key, set_cache
from core.config import settings
from core.time_utils import utcnow
from models import (
    CalculationResult,
    Competition,
    CompetitionParticipant,
    CompetitionStanding,
    User,
    WeightEntry,
)
from services.calculation_results import SUBJECT_PARTICIPANT, upsert_calculation_result
from services.competition_scoring import score_activity_competition
from services.ranking import percentile_for_rank, rank_participants, weight_change

logger = logging.getLogger(__name__)

CALCULATION_VERSION = "standings"


def active_participants(db: Session, competition_id: UUID) -> List[CompetitionParticipant]:
    """Active participants in join order; ties in ranking resolve to the earliest joiner."""
    return (
        db.query(CompetitionParticipant)
        .filter(
            CompetitionParticipant.competition_id == competition_id,
            CompetitionParticipant.is_active.is_(True),
        )
        .order_by(CompetitionParticipant.joined_at.asc(), CompetitionParticipant.id.asc())
        .all()
    )


def apply_weight_change(participant: CompetitionParticipant) -> None:
    change, pct = weight_change(participant.starting_weight, participant.current_weight)
    participant.weight_change = change
    participant.weight_change_percentage = pct


def latest_weight_entry(db: Session, user_id: UUID) -> Optional[WeightEntry]:
    return (
        db.query(WeightEntry)
        .filter(WeightEntry.user_id == user_id)
        .order_by(WeightEntry.date.desc(), WeightEntry.created_at.desc())
        .first()
    )


def _snapshot_changed(db: Session, competition_id: UUID, ranked) -> bool:
    """False when the current snapshot already holds exactly this ranking."""
    current = {
        (row.participant_id, row.rank, row.weight_change_percentage, row.last_weight_entry)
        for row in db.query(CompetitionStanding).filter(
            CompetitionStanding.competition_id == competition_id,
            CompetitionStanding.is_current.is_(True),
        )
    }
    proposed = {
        (e.participant.id, e.rank, e.participant.weight_change_percentage, e.participant.current_weight)
        for e in ranked
    }
    return current != proposed


def recalculate_competition_standings(
    db: Session,
    competition_id: UUID,
    *,
    write_snapshot: bool = True,
) -> Dict[str, Any]:
    """
    Re-rank one competition.

    Returns {"success", "message", "updated_count"}; a missing competition is
    reported, not raised, so batch callers can keep going.
    """
    competition = db.query(Competition).filter(Competition.id == competition_id).first()
    if not competition:
        logger.warning(f"Recalculation skipped, competition not found: {competition_id}")
        return {"success": False, "message": f"Competition {competition_id} not found", "updated_count": 0}

    if not competition.is_weight_based:
        result = score_activity_competition(db, competition)
        invalidate_leaderboard(competition.id)
        return result

    participants = active_participants(db, competition.id)
    for participant in participants:
        apply_weight_change(participant)

    ranked = rank_participants(participants, competition.competition_type)
    ranked_ids = {entry.participant.id for entry in ranked}
    for participant in participants:
        if participant.id not in ranked_ids:
            participant.rank = None
    for entry in ranked:
        entry.participant.rank = entry.rank

    now = utcnow()
    if write_snapshot and _snapshot_changed(db, competition.id, ranked):
        db.query(CompetitionStanding).filter(
            CompetitionStanding.competition_id == competition.id,
            CompetitionStanding.is_current.is_(True),
        ).update({CompetitionStanding.is_current: False}, synchronize_session=False)

        for entry in ranked:
            p = entry.participant
            db.add(CompetitionStanding(
                competition_id=competition.id,
                user_id=p.user_id,
                participant_id=p.id,
                rank=entry.rank,
                weight_change=p.weight_change,
                weight_change_percentage=p.weight_change_percentage,
                last_weight_entry=p.current_weight,
                calculated_at=now,
                is_current=True,
            ))

    # Rows for participants who dropped out of the ranking must not keep a stale rank
    db.query(CalculationResult).filter(
        CalculationResult.competition_id == competition.id,
        CalculationResult.subject_type == SUBJECT_PARTICIPANT,
        CalculationResult.subject_id.not_in(list(ranked_ids)),
    ).update({CalculationResult.rank: None, CalculationResult.percentile: None}, synchronize_session=False)

    total = len(ranked)
    for entry in ranked:
        p = entry.participant
        upsert_calculation_result(
            db,
            competition_id=competition.id,
            subject_id=p.id,
            calculated_score=entry.change_percentage,
            rank=entry.rank,
            percentile=percentile_for_rank(entry.rank, total),
            calculation_method="change_percentage",
            activity_entries_count=p.total_entries or 0,
            calculation_data={
                "starting_value": p.starting_weight,
                "current_value": p.current_weight,
                "value_change": p.weight_change,
                "value_change_percentage": p.weight_change_percentage,
                "calculated_at": now.isoformat(),
            },
            calculation_version=CALCULATION_VERSION,
        )

    db.flush()
    invalidate_leaderboard(competition.id)

    logger.info(
        f"Standings recalculated for {competition.id}: {total} ranked of {len(participants)} active",
        extra={"extra_fields": {"competition_id": str(competition.id), "ranked": total}},
    )
    return {
        "success": True,
        "message": f"Standings recalculated: {total} participants ranked",
        "updated_count": total,
    }


def rebalance_active_competitions(db: Session) -> Dict[str, Any]:
    """
    Best-effort pass over every started competition.

    Each competition commits on its own; a failure is logged, rolled back and
    counted without stopping the batch.
    """
    competition_ids = [
        row.id for row in db.query(Competition.id).filter(Competition.status == "started").all()
    ]
    results: Dict[str, Any] = {"processed": 0, "succeeded": 0, "failed": 0, "errors": []}

    for competition_id in competition_ids:
        results["processed"] += 1
        try:
            outcome = recalculate_competition_standings(db, competition_id)
            db.commit()
            if outcome.get("success"):
                results["succeeded"] += 1
            else:
                results["failed"] += 1
                results["errors"].append(f"{competition_id}: {outcome.get('message')}")
        except Exception as e:
            db.rollback()
            logger.error(f"Leaderboard rebalance failed for {competition_id}: {e}", exc_info=True)
            results["failed"] += 1
            results["errors"].append(f"{competition_id}: {e}")

    logger.info(
        f"Leaderboard rebalance complete: {results['succeeded']} ok, {results['failed']} failed",
        extra={"extra_fields": {k: v for k, v in results.items() if k != "errors"}},
    )
    return results


def _participant_row(p: CompetitionParticipant, user: Optional[User], score: Optional[float] = None) -> Dict[str, Any]:
    return {
        "participant_id": str(p.id),
        "user_id": str(p.user_id),
        "name": user.name if user else None,
        "rank": p.rank,
        "starting_weight": p.starting_weight,
        "current_weight": p.current_weight,
        "weight_change": p.weight_change,
        "weight_change_percentage": p.weight_change_percentage,
        "starting_value": p.starting_value,
        "current_value": p.current_value,
        "score": score,
        "last_entry_date": p.last_entry_date.isoformat() if p.last_entry_date else None,
    }


def get_leaderboard(db: Session, competition_id: UUID, *, use_cache: bool = True) -> Optional[Dict[str, Any]]:
    """Ranked participants first (by rank), then unranked ones in join order. None if the competition is unknown."""
    key = leaderboard_cache_key(competition_id)
    if use_cache:
        cached = get_cache(key)
        if cached is not None:
            return cached

    competition = db.query(Competition).filter(Competition.id == competition_id).first()
    if not competition:
        return None

    participants = active_participants(db, competition.id)
    users = {
        u.id: u
        for u in db.query(User).filter(User.id.in_([p.user_id for p in participants])).all()
    } if participants else {}
    scores = {
        r.subject_id: r.calculated_score
        for r in db.query(CalculationResult).populate_existing().filter(
            CalculationResult.competition_id == competition.id,
            CalculationResult.subject_type == SUBJECT_PARTICIPANT,
        )
    }

    ranked = sorted((p for p in participants if p.rank is not None), key=lambda p: p.rank)
    unranked = [p for p in participants if p.rank is None]

    calculated_at = (
        db.query(CompetitionStanding.calculated_at)
        .filter(CompetitionStanding.competition_id == competition.id, CompetitionStanding.is_current.is_(True))
        .order_by(CompetitionStanding.calculated_at.desc())
        .limit(1)
        .scalar()
    )

    payload = {
        "competition_id": str(competition.id),
        "competition_type": competition.competition_type,
        "activity_type": competition.activity_type,
        "status": competition.status,
        "calculated_at": calculated_at.isoformat() if calculated_at else None,
        "standings": [_participant_row(p, users.get(p.user_id), scores.get(p.id)) for p in ranked],
        "unranked": [_participant_row(p, users.get(p.user_id), scores.get(p.id)) for p in unranked],
    }
    if use_cache:
        set_cache(key, payload, ttl=settings.LEADERBOARD_CACHE_TTL)
    return payload
