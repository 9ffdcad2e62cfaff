"""
Weight and activity logging endpoints.

Accept a session token or a personal API token, so the same endpoints serve
the web app, the mobile app and iOS Shortcuts.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from core.auth import get_current_user_or_api_token
from core.database import get_db
from models import User
from schemas import ActivityCreate, WeightCreate
from services.weight_service import (
    list_weight_entries,
    log_activity,
    log_weight,
    serialize_activity_entry,
    serialize_weight_entry,
)

router = APIRouter(prefix="/v1", tags=["weight"])


@router.post("/weight", status_code=status.HTTP_201_CREATED)
def create_weight_entry(
    body: WeightCreate,
    current_user: User = Depends(get_current_user_or_api_token),
    db: Session = Depends(get_db),
):
    """
    Log a weight.

    Every active competition the user is in picks up the new value and
    running competitions are re-ranked.
    """
    entry = log_weight(
        db,
        user=current_user,
        weight=body.weight,
        date=body.date,
        notes=body.notes,
        body_fat_percentage=body.body_fat_percentage,
        muscle_mass=body.muscle_mass,
    )
    return {"success": True, "entry": serialize_weight_entry(entry)}


@router.get("/weight")
def get_weight_entries(
    limit: int = Query(30, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user_or_api_token),
    db: Session = Depends(get_db),
):
    return list_weight_entries(db, user=current_user, limit=limit, offset=offset)


@router.post("/activities", status_code=status.HTTP_201_CREATED)
def create_activity_entry(
    body: ActivityCreate,
    current_user: User = Depends(get_current_user_or_api_token),
    db: Session = Depends(get_db),
):
    entry = log_activity(
        db,
        user=current_user,
        activity_type=body.activity_type,
        value=body.value,
        unit=body.unit,
        date=body.date,
        notes=body.notes,
    )
    return {"success": True, "entry": serialize_activity_entry(entry)}
