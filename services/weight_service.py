"""
Weight and activity logging.

Logging a weight updates every active participation of the user:
- starting_weight is set from the first weight seen, if missing
- current_weight, weight_change and weight_change_percentage are refreshed
- standings of each affected started competition are recalculated

Recalculation failures are logged and never fail the write.
"""
from __future__ import annotations

from datetime import date as date_type
from math import ceil, isfinite
from typing import Any, Dict, List, Optional

import logging
from sqlalchemy.orm import Session

from core.exceptions import ValidationError
from core.time_utils import utcnow
from models import ActivityEntry, ACTIVITY_TYPES, Competition, CompetitionParticipant, User, WeightEntry
from services.standings import apply_weight_change, recalculate_competition_standings

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _validate_weight(weight: Any) -> float:
    if isinstance(weight, bool):
        raise ValidationError("Weight must be a positive number", field="weight")
    try:
        value = float(weight)
    except (TypeError, ValueError):
        raise ValidationError("Weight must be a positive number", field="weight")
    if not isfinite(value) or value <= 0:
        raise ValidationError("Weight must be a positive number", field="weight")
    return round(value, 2)


def _active_memberships(db: Session, user_id) -> List[CompetitionParticipant]:
    return (
        db.query(CompetitionParticipant)
        .join(Competition, Competition.id == CompetitionParticipant.competition_id)
        .filter(
            CompetitionParticipant.user_id == user_id,
            CompetitionParticipant.is_active.is_(True),
            Competition.status.in_(("pending", "started")),
        )
        .all()
    )


def _recalculate_quietly(db: Session, competition_ids) -> None:
    """Each re-rank runs in its own savepoint; a failure undoes only that ranking."""
    for competition_id in competition_ids:
        try:
            with db.begin_nested():
                recalculate_competition_standings(db, competition_id)
        except Exception as e:
            logger.error(f"Standings recalculation failed for {competition_id} after entry: {e}", exc_info=True)


def log_weight(
    db: Session,
    *,
    user: User,
    weight: Any,
    date: Optional[date_type] = None,
    notes: Optional[str] = None,
    body_fat_percentage: Optional[float] = None,
    muscle_mass: Optional[float] = None,
    source: str = "manual",
) -> WeightEntry:
    value = _validate_weight(weight)
    entry_date = date or utcnow().date()

    entry = WeightEntry(
        user_id=user.id,
        weight=value,
        body_fat_percentage=body_fat_percentage,
        muscle_mass=muscle_mass,
        notes=notes,
        date=entry_date,
    )
    db.add(entry)
    db.add(ActivityEntry(
        user_id=user.id,
        activity_type="weight",
        value=value,
        unit="lbs",
        source=source,
        notes=notes,
        date=entry_date,
    ))

    to_recalculate = []
    for participant in _active_memberships(db, user.id):
        if participant.starting_weight is None:
            participant.starting_weight = value
        participant.current_weight = value
        apply_weight_change(participant)
        participant.total_entries = (participant.total_entries or 0) + 1
        if participant.last_entry_date is None or entry_date >= participant.last_entry_date:
            participant.last_entry_date = entry_date
        if participant.competition.status == "started" and participant.competition.is_weight_based:
            to_recalculate.append(participant.competition_id)

    db.flush()
    _recalculate_quietly(db, to_recalculate)

    logger.info(
        "Weight logged",
        extra={"extra_fields": {"user_id": str(user.id), "competitions_updated": len(to_recalculate)}},
    )
    return entry


def list_weight_entries(db: Session, *, user: User, limit: int = 30, offset: int = 0) -> Dict[str, Any]:
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    offset = max(0, int(offset))

    q = db.query(WeightEntry).filter(WeightEntry.user_id == user.id)
    total = q.count()
    rows = (
        q.order_by(WeightEntry.date.desc(), WeightEntry.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {
        "entries": [serialize_weight_entry(r) for r in rows],
        "page": offset // limit + 1,
        "per_page": limit,
        "total_items": total,
        "total_pages": ceil(total / limit) if total else 0,
    }


def log_activity(
    db: Session,
    *,
    user: User,
    activity_type: str,
    value: Any,
    unit: Optional[str] = None,
    date: Optional[date_type] = None,
    notes: Optional[str] = None,
    source: str = "manual",
) -> ActivityEntry:
    if activity_type == "weight":
        log_weight(db, user=user, weight=value, date=date, notes=notes, source=source)
        return (
            db.query(ActivityEntry)
            .filter(ActivityEntry.user_id == user.id, ActivityEntry.activity_type == "weight")
            .order_by(ActivityEntry.created_at.desc())
            .first()
        )

    if activity_type not in ACTIVITY_TYPES:
        raise ValidationError(f"Unsupported activity type: {activity_type}", field="activity_type")
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Value must be a number", field="value")
    if not isfinite(numeric):
        raise ValidationError("Value must be a number", field="value")
    if numeric < 0:
        raise ValidationError("Value must not be negative", field="value")

    entry = ActivityEntry(
        user_id=user.id,
        activity_type=activity_type,
        value=numeric,
        unit=unit,
        source=source,
        notes=notes,
        date=date or utcnow().date(),
    )
    db.add(entry)
    db.flush()

    competition_ids = [
        row.id
        for row in db.query(Competition.id)
        .join(CompetitionParticipant, CompetitionParticipant.competition_id == Competition.id)
        .filter(
            CompetitionParticipant.user_id == user.id,
            CompetitionParticipant.is_active.is_(True),
            Competition.status == "started",
            Competition.activity_type == activity_type,
        )
        .all()
    ]
    _recalculate_quietly(db, competition_ids)
    return entry


def serialize_weight_entry(row: WeightEntry) -> Dict[str, Any]:
    return {
        "id": str(row.id),
        "weight": row.weight,
        "body_fat_percentage": row.body_fat_percentage,
        "muscle_mass": row.muscle_mass,
        "notes": row.notes,
        "date": row.date.isoformat() if row.date else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def serialize_activity_entry(row: ActivityEntry) -> Dict[str, Any]:
    return {
        "id": str(row.id),
        "activity_type": row.activity_type,
        "value": row.value,
        "unit": row.unit,
        "source": row.source,
        "date": row.date.isoformat() if row.date else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
