"""
Competition ranking.

One pure function orders participants for a competition type and assigns
dense 1-based ranks. Every write path (weight logging, joins, admin edits,
the leaderboard rebalance job, finalization) goes through rank_participants
so the ordering rules live in exactly one place.

Sign convention:
    weight_change            = starting - current   (positive = weight lost)
    weight_change_percentage = weight_change / starting * 100

Ordering by competition type:
    weight_loss, body_fat_loss   descending percentage (most lost first)
    weight_gain, muscle_gain     ascending percentage  (most gained first)
    anything else / None         weight_loss ordering

Ties keep input order (Python's sort is stable). Callers pass participants
ordered by (joined_at, id), so the earliest joiner wins a tie.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

DESCENDING_TYPES = frozenset({"weight_loss", "body_fat_loss"})
ASCENDING_TYPES = frozenset({"weight_gain", "muscle_gain"})


@dataclass(frozen=True)
class RankedEntry:
    participant: Any
    rank: int
    change_percentage: float


def weight_change(starting: Optional[float], current: Optional[float]) -> Tuple[Optional[float], Optional[float]]:
    """Return (change, percentage) or (None, None) when either side is unknown or starting <= 0."""
    if starting is None or current is None:
        return None, None
    starting = float(starting)
    current = float(current)
    if starting <= 0:
        return None, None
    change = round(starting - current, 2)
    percentage = round((starting - current) / starting * 100, 2)
    return change, percentage


def is_rankable(participant: Any) -> bool:
    starting = getattr(participant, "starting_weight", None)
    current = getattr(participant, "current_weight", None)
    return starting is not None and current is not None and float(starting) > 0


def sorts_descending(competition_type: Optional[str]) -> bool:
    return competition_type not in ASCENDING_TYPES


def _percentage(participant: Any) -> float:
    pct = getattr(participant, "weight_change_percentage", None)
    if pct is None:
        _, pct = weight_change(participant.starting_weight, participant.current_weight)
    return float(pct or 0.0)


def rank_participants(participants: Iterable[Any], competition_type: Optional[str]) -> List[RankedEntry]:
    """
    Order the eligible participants and assign ranks 1..N.

    Participants missing a starting or current weight, or with a non-positive
    starting weight, are left out entirely.
    """
    eligible = [p for p in participants if is_rankable(p)]
    ordered = sorted(eligible, key=_percentage, reverse=sorts_descending(competition_type))
    return [
        RankedEntry(participant=p, rank=index + 1, change_percentage=_percentage(p))
        for index, p in enumerate(ordered)
    ]


def percentile_for_rank(rank: int, total: int) -> float:
    """100 for first place, falling linearly to 100/total for last."""
    if total <= 0:
        return 0.0
    return round((total - rank + 1) / total * 100, 2)
