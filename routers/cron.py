"""
Scheduler HTTP triggers.

External schedulers call the GET routes with "Authorization: Bearer
$CRON_SECRET". The POST twins also accept an admin session so operators can
run a job by hand. Each route runs the same service function as the
matching Celery task.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Any, Callable, Dict, Optional
import logging

from core.auth import require_cron_or_admin, require_cron_secret
from core.database import get_db
from core.exceptions import APIException
from core.time_utils import utcnow
from models import User
from services.competition_lifecycle import (
    finalize_expired_competitions,
    send_ending_soon_notifications,
    start_pending_competitions,
)
from services.notification_queue import process_notification_queue
from services.push_providers import PushProviderNotConfigured
from services.reminder_service import send_daily_reminders
from services.standings import rebalance_active_competitions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/cron", tags=["cron"])


def _rebalance(db: Session) -> Dict[str, Any]:
    results = rebalance_active_competitions(db)
    return {
        "success": True,
        "message": f"Rebalanced {results['succeeded']} of {results['processed']} competition(s)",
        **results,
        "timestamp": utcnow().isoformat(),
    }


JOBS: Dict[str, Callable[[Session], Dict[str, Any]]] = {
    "start-competitions": start_pending_competitions,
    "finalize-competitions": finalize_expired_competitions,
    "daily-reminders": send_daily_reminders,
    "process-notifications": process_notification_queue,
    "rebalance-leaderboards": _rebalance,
    "ending-soon": send_ending_soon_notifications,
}


def _run(job: str, db: Session, triggered_by: str) -> Dict[str, Any]:
    logger.info(f"Cron job {job} triggered", extra={"extra_fields": {"job": job, "triggered_by": triggered_by}})
    try:
        return JOBS[job](db)
    except PushProviderNotConfigured as e:
        logger.error(f"Cron job {job} cannot run: {e}")
        raise APIException(status_code=500, detail=str(e), error_code="PUSH_PROVIDER_NOT_CONFIGURED")


def _register(job: str) -> None:
    def scheduled(
        _: None = Depends(require_cron_secret),
        db: Session = Depends(get_db),
    ):
        return _run(job, db, "cron")

    def manual(
        caller: Optional[User] = Depends(require_cron_or_admin),
        db: Session = Depends(get_db),
    ):
        return _run(job, db, f"admin:{caller.id}" if caller else "cron")

    name = job.replace("-", "_")
    router.add_api_route(f"/{job}", scheduled, methods=["GET"], name=f"cron_{name}")
    router.add_api_route(f"/{job}", manual, methods=["POST"], name=f"cron_{name}_manual")


for _job in JOBS:
    _register(_job)
