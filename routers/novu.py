"""
Novu subscriber sync.

The web and mobile apps call this after sign-in so the user exists as a
Novu subscriber (subscriber id = user id) before any workflow targets them.
"""
from fastapi import APIRouter, Depends
from typing import Optional
import logging

from core.auth import get_current_user_or_api_token
from core.exceptions import APIException, UpstreamError
from models import User
from schemas import NovuSubscriberRequest
from services.push_providers import NovuClient, PushProviderNotConfigured

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/novu", tags=["novu"])


@router.post("/subscriber")
def register_subscriber(
    body: Optional[NovuSubscriberRequest] = None,
    current_user: User = Depends(get_current_user_or_api_token),
):
    try:
        client = NovuClient()
    except PushProviderNotConfigured as e:
        raise APIException(status_code=500, detail=str(e), error_code="PUSH_PROVIDER_NOT_CONFIGURED")

    body = body or NovuSubscriberRequest()
    subscriber_id = str(current_user.id)
    result = client.upsert_subscriber(
        subscriber_id,
        email=body.email or current_user.email,
        first_name=body.first_name or current_user.first_name or current_user.display_name,
        last_name=body.last_name or current_user.last_name,
    )
    if not result.ok:
        logger.warning(f"Novu subscriber sync failed for {subscriber_id}: {result.error}")
        raise UpstreamError(f"Failed to register Novu subscriber: {result.error}")

    return {"success": True, "subscriber_id": subscriber_id}
