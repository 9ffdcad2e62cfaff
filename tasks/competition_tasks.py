"""
Competition lifecycle tasks.

Thin wrappers over services.competition_lifecycle and services.standings so
Beat and the /v1/cron HTTP triggers run exactly the same code. The services
commit per competition; a task only owns its session.
"""

from typing import Dict
from celery import Task
from sqlalchemy.orm import Session
from core.database import get_db_sync
from tasks import celery_app
from services.competition_lifecycle import (
    finalize_expired_competitions,
    send_ending_soon_notifications,
    start_pending_competitions,
)
from services.standings import rebalance_active_competitions
import logging

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.start_pending_competitions", bind=True)
def start_pending_competitions_task(self: Task) -> Dict:
    db: Session = get_db_sync()
    try:
        result = start_pending_competitions(db)
        logger.info(f"Start job: {result['started']} started, {result['failed']} failed")
        return result
    except Exception as e:
        db.rollback()
        logger.error(f"Start job failed: {e}", exc_info=True)
        raise
    finally:
        db.close()


@celery_app.task(name="tasks.finalize_expired_competitions", bind=True)
def finalize_expired_competitions_task(self: Task) -> Dict:
    db: Session = get_db_sync()
    try:
        result = finalize_expired_competitions(db)
        logger.info(f"Finalize job: {result['message']}")
        return result
    except Exception as e:
        db.rollback()
        logger.error(f"Finalize job failed: {e}", exc_info=True)
        raise
    finally:
        db.close()


@celery_app.task(name="tasks.rebalance_leaderboards", bind=True)
def rebalance_leaderboards_task(self: Task) -> Dict:
    """Re-rank every started competition."""
    db: Session = get_db_sync()
    try:
        return rebalance_active_competitions(db)
    except Exception as e:
        db.rollback()
        logger.error(f"Leaderboard rebalance failed: {e}", exc_info=True)
        raise
    finally:
        db.close()


@celery_app.task(name="tasks.send_ending_soon_notifications", bind=True)
def send_ending_soon_notifications_task(self: Task) -> Dict:
    db: Session = get_db_sync()
    try:
        return send_ending_soon_notifications(db)
    except Exception as e:
        db.rollback()
        logger.error(f"Ending-soon job failed: {e}", exc_info=True)
        raise
    finally:
        db.close()
