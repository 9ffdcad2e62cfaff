"""
Scoring for activity competitions (steps, distance, calories, custom).

Weight competitions are ranked by weight-change percentage in
services.ranking; everything else is scored from the participant's activity
entries inside the competition window using the competition's
scoring_method, then ranked by ranking_direction.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence

import logging
from sqlalchemy.orm import Session

from core.time_utils import ensure_utc, utcnow
from models import ActivityEntry, CalculationResult, Competition, CompetitionParticipant
from services.calculation_results import SUBJECT_PARTICIPANT, upsert_calculation_result
from services.ranking import percentile_for_rank

logger = logging.getLogger(__name__)

CALCULATION_VERSION = "v2"


@dataclass(frozen=True)
class ActivityMetrics:
    first_value: float = 0.0
    last_value: float = 0.0
    best_value: float = 0.0
    average_value: float = 0.0
    total_value: float = 0.0
    count: int = 0
    days_active: int = 0


def calculate_metrics(entries: Sequence[ActivityEntry]) -> ActivityMetrics:
    """Entries must be in chronological order."""
    if not entries:
        return ActivityMetrics()
    values = [float(e.value) for e in entries]
    total = sum(values)
    return ActivityMetrics(
        first_value=values[0],
        last_value=values[-1],
        best_value=max(values),
        average_value=total / len(values),
        total_value=total,
        count=len(values),
        days_active=len({e.date for e in entries}),
    )


def calculate_score(metrics: ActivityMetrics, scoring_method: Optional[str]) -> float:
    if scoring_method == "change_percentage":
        if metrics.first_value == 0:
            return 0.0
        return (metrics.last_value - metrics.first_value) / metrics.first_value * 100
    if scoring_method in ("total_value", "cumulative"):
        return metrics.total_value
    if scoring_method == "best_value":
        return metrics.best_value
    if scoring_method == "average_value":
        return metrics.average_value
    return 0.0


def _window(competition: Competition) -> tuple[Optional[date], Optional[date]]:
    start = ensure_utc(competition.start_date)
    end = ensure_utc(competition.end_date)
    return (start.date() if start else None, end.date() if end else None)


def participant_entries(db: Session, competition: Competition, user_id) -> List[ActivityEntry]:
    start, end = _window(competition)
    q = db.query(ActivityEntry).filter(
        ActivityEntry.user_id == user_id,
        ActivityEntry.activity_type == competition.activity_type,
        ActivityEntry.deleted_at.is_(None),
    )
    if start is not None:
        q = q.filter(ActivityEntry.date >= start)
    if end is not None:
        q = q.filter(ActivityEntry.date <= end)
    return q.order_by(ActivityEntry.date.asc(), ActivityEntry.created_at.asc()).all()


def score_activity_competition(db: Session, competition: Competition) -> Dict:
    """
    Recompute scores and ranks for every active participant.

    Returns {"success", "message", "updated_count"}.
    """
    participants = (
        db.query(CompetitionParticipant)
        .filter(
            CompetitionParticipant.competition_id == competition.id,
            CompetitionParticipant.is_active.is_(True),
        )
        .order_by(CompetitionParticipant.joined_at.asc(), CompetitionParticipant.id.asc())
        .all()
    )

    # Participants who left keep their row but lose their place
    db.query(CalculationResult).filter(
        CalculationResult.competition_id == competition.id,
        CalculationResult.subject_type == SUBJECT_PARTICIPANT,
        CalculationResult.subject_id.not_in([p.id for p in participants]),
    ).update({CalculationResult.rank: None, CalculationResult.percentile: None}, synchronize_session=False)

    if not participants:
        return {"success": True, "message": "No active participants found", "updated_count": 0}

    existing_baselines = {
        row.subject_id: (row.calculation_data or {}).get("starting_value")
        for row in db.query(CalculationResult).populate_existing().filter(
            CalculationResult.competition_id == competition.id,
            CalculationResult.subject_type == SUBJECT_PARTICIPANT,
        )
    }

    scored = []
    for participant in participants:
        entries = participant_entries(db, competition, participant.user_id)
        metrics = calculate_metrics(entries)
        baseline = existing_baselines.get(participant.id)
        if baseline is None:
            baseline = participant.starting_value
        starting_value = float(baseline) if baseline is not None else metrics.first_value
        score = calculate_score(metrics, competition.scoring_method) if entries else 0.0
        scored.append((participant, metrics, starting_value, round(score, 4)))

    descending = (competition.ranking_direction or "desc") != "asc"
    ordered = sorted(scored, key=lambda item: item[3], reverse=descending)
    total = len(ordered)
    now = utcnow()

    for index, (participant, metrics, starting_value, score) in enumerate(ordered):
        rank = index + 1
        participant.rank = rank
        participant.current_value = metrics.last_value if metrics.count else participant.current_value
        if participant.starting_value is None:
            participant.starting_value = starting_value
        value_change = metrics.last_value - starting_value if metrics.count else 0.0
        upsert_calculation_result(
            db,
            competition_id=competition.id,
            subject_id=participant.id,
            calculated_score=score,
            rank=rank,
            percentile=percentile_for_rank(rank, total),
            calculation_method=competition.scoring_method,
            activity_entries_count=metrics.count,
            days_active=metrics.days_active,
            calculation_data={
                "starting_value": starting_value,
                "current_value": metrics.last_value,
                "value_change": value_change,
                "value_change_percentage": 0 if starting_value == 0 else value_change / starting_value * 100,
                "best_value": metrics.best_value,
                "average_value": metrics.average_value,
                "total_value": metrics.total_value,
                "calculated_at": now.isoformat(),
            },
            calculation_version=CALCULATION_VERSION,
        )

    db.flush()
    logger.info(
        f"Activity competition scored: {competition.id} ({total} participants)",
        extra={"extra_fields": {"competition_id": str(competition.id), "participants": total}},
    )
    return {
        "success": True,
        "message": f"Competition recalculated: {total} participants",
        "updated_count": total,
    }
