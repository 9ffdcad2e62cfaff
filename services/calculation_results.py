"""
Upserts into calculation_result keyed by (competition_id, subject_type, subject_id).

Seeding at competition start and every recalculation write through here,
so re-running either never produces a second row for the same subject.
"""
from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from core.time_utils import utcnow
from models import CalculationResult

SUBJECT_PARTICIPANT = "participant"

_UPDATABLE = (
    "calculation_method",
    "calculated_score",
    "rank",
    "percentile",
    "activity_entries_count",
    "days_active",
    "calculation_data",
    "calculation_version",
    "calculated_at",
)


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported database dialect for upsert: {dialect}")


def upsert_calculation_result(
    db: Session,
    *,
    competition_id: UUID,
    subject_id: UUID,
    subject_type: str = SUBJECT_PARTICIPANT,
    calculated_score: float = 0.0,
    rank: Optional[int] = None,
    percentile: Optional[float] = None,
    calculation_method: Optional[str] = None,
    activity_entries_count: int = 0,
    days_active: int = 0,
    calculation_data: Optional[Dict[str, Any]] = None,
    calculation_version: Optional[str] = None,
) -> None:
    values = {
        "competition_id": competition_id,
        "subject_type": subject_type,
        "subject_id": subject_id,
        "calculation_method": calculation_method,
        "calculated_score": float(calculated_score or 0.0),
        "rank": rank,
        "percentile": percentile,
        "activity_entries_count": int(activity_entries_count or 0),
        "days_active": int(days_active or 0),
        "calculation_data": calculation_data or {},
        "calculation_version": calculation_version,
        "calculated_at": utcnow(),
    }
    insert = _insert_for(db)
    stmt = insert(CalculationResult).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["competition_id", "subject_type", "subject_id"],
        set_={k: stmt.excluded[k] for k in _UPDATABLE},
    )
    db.execute(stmt)


def get_winner_result(db: Session, competition_id: UUID) -> Optional[CalculationResult]:
    return (
        db.query(CalculationResult)
        .populate_existing()
        .filter(
            CalculationResult.competition_id == competition_id,
            CalculationResult.subject_type == SUBJECT_PARTICIPANT,
            CalculationResult.rank == 1,
        )
        .first()
    )
