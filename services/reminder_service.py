"""
Daily competition reminders.

Once a day every active participant of a running competition gets a Novu
'daily-competition-reminder' trigger with the days remaining. Users who
turned off daily reminders (or notifications altogether) are skipped.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

import logging
from sqlalchemy.orm import Session

from core.time_utils import ensure_utc, utcnow
from models import Competition, CompetitionParticipant, User
from services.notification_service import absolute_url, allows_push, competition_url, get_or_create_preferences
from services.push_providers import NovuClient

logger = logging.getLogger(__name__)

WORKFLOW_ID = "daily-competition-reminder"


def days_remaining(competition: Competition, now: datetime) -> int:
    end = ensure_utc(competition.end_date)
    if end is None:
        return 0
    seconds = (end - now).total_seconds()
    return max(0, int(-(-seconds // 86400)))


def send_daily_reminders(
    db: Session,
    *,
    now: Optional[datetime] = None,
    client: Optional[NovuClient] = None,
) -> Dict[str, Any]:
    """
    Raises PushProviderNotConfigured when Novu has no API key; per-user
    failures are counted and never abort the run.
    """
    now = ensure_utc(now) or utcnow()
    if client is None:
        client = NovuClient()

    competitions = (
        db.query(Competition)
        .filter(
            Competition.status == "started",
            Competition.end_date.isnot(None),
            Competition.end_date >= now,
        )
        .all()
    )

    results: Dict[str, Any] = {"competitions": len(competitions), "sent": 0, "skipped": 0, "failed": 0}
    errors = []

    for competition in competitions:
        remaining = days_remaining(competition, now)
        rows = (
            db.query(CompetitionParticipant, User)
            .join(User, User.id == CompetitionParticipant.user_id)
            .filter(
                CompetitionParticipant.competition_id == competition.id,
                CompetitionParticipant.is_active.is_(True),
            )
            .order_by(CompetitionParticipant.joined_at.asc(), CompetitionParticipant.id.asc())
            .all()
        )
        for participant, user in rows:
            if not allows_push(get_or_create_preferences(db, user.id), "daily_reminder"):
                results["skipped"] += 1
                continue

            outcome = client.trigger(WORKFLOW_ID, str(user.id), {
                "userName": user.name,
                "competitionName": competition.name,
                "competitionId": str(competition.id),
                "daysRemaining": remaining,
                "rank": participant.rank,
                "actionUrl": absolute_url(competition_url(competition.id)),
            })
            if outcome.ok:
                results["sent"] += 1
            else:
                results["failed"] += 1
                errors.append({"user_id": str(user.id), "competition_id": str(competition.id), "error": outcome.error})

    # Preference rows created on first use
    db.commit()

    logger.info(
        f"Daily reminders: {results['sent']} sent, {results['skipped']} skipped, {results['failed']} failed",
        extra={"extra_fields": results},
    )
    response: Dict[str, Any] = {
        "success": True,
        "message": f"Sent {results['sent']} reminder(s)",
        **results,
        "timestamp": now.isoformat(),
    }
    if errors:
        response["errors"] = errors
    return response
