"""
Push Provider Clients

Thin HTTP clients for the two push backends the app has used:
- Novu: workflow triggers (/v1/events/trigger) and subscriber sync (/v1/subscribers/{id})
- OneSignal: direct push (/api/v1/notifications)

Each send returns a PushResult instead of raising, so batch callers can
record a per-item outcome and keep going. Configuration problems raise
PushProviderNotConfigured up front.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

import requests

from core.config import settings

logger = logging.getLogger(__name__)


class PushProviderNotConfigured(RuntimeError):
    pass


@dataclass
class PushResult:
    ok: bool
    error: Optional[str] = None
    status_code: Optional[int] = None


def _error_text(response: requests.Response) -> str:
    text = (response.text or "").strip()
    return f"HTTP {response.status_code}: {text[:500]}" if text else f"HTTP {response.status_code}"


class NovuClient:
    """Novu REST API (ApiKey auth)."""

    name = "novu"

    # Notification type -> Novu workflow id, for types whose workflow id is not
    # just the type with dashes.
    WORKFLOWS = {
        "daily_summary": "daily-competition-reminder",
        "competition_ending": "competition-ending-soon",
        "new_message": "new-competition-message",
    }

    def __init__(self, api_key: Optional[str] = None, api_url: Optional[str] = None, timeout: Optional[int] = None):
        self.api_key = api_key if api_key is not None else settings.NOVU_API_KEY
        self.api_url = (api_url or settings.NOVU_API_URL).rstrip("/")
        self.timeout = timeout or settings.EXTERNAL_API_TIMEOUT
        if not self.api_key:
            raise PushProviderNotConfigured("NOVU_API_KEY not configured")

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"ApiKey {self.api_key}",
            "Content-Type": "application/json",
        }

    def workflow_for(self, notification_type: str) -> str:
        return self.WORKFLOWS.get(notification_type, notification_type.replace("_", "-"))

    def trigger(self, workflow_id: str, subscriber_id: str, payload: Dict[str, Any]) -> PushResult:
        url = f"{self.api_url}/v1/events/trigger"
        body = {
            "name": workflow_id,
            "to": {"subscriberId": subscriber_id},
            "payload": payload,
        }
        try:
            r = requests.post(url, json=body, headers=self._headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Novu trigger {workflow_id} failed for {subscriber_id}: {e}")
            return PushResult(ok=False, error=str(e))
        if not r.ok:
            logger.warning(f"Novu trigger {workflow_id} rejected for {subscriber_id}: {r.status_code}")
            return PushResult(ok=False, error=_error_text(r), status_code=r.status_code)
        return PushResult(ok=True, status_code=r.status_code)

    def upsert_subscriber(
        self,
        subscriber_id: str,
        *,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> PushResult:
        url = f"{self.api_url}/v1/subscribers/{subscriber_id}"
        body = {
            "subscriberId": subscriber_id,
            "email": email,
            "firstName": first_name,
            "lastName": last_name,
        }
        try:
            r = requests.put(url, json={k: v for k, v in body.items() if v is not None}, headers=self._headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            return PushResult(ok=False, error=str(e))
        if not r.ok:
            return PushResult(ok=False, error=_error_text(r), status_code=r.status_code)
        return PushResult(ok=True, status_code=r.status_code)

    def send(self, notification, user_id: str) -> PushResult:
        payload = {
            "title": notification.title,
            "message": notification.message,
            "notificationId": str(notification.id),
            "type": notification.type,
            "actionUrl": notification.action_url,
            **(notification.data or {}),
        }
        return self.trigger(self.workflow_for(notification.type), user_id, payload)


class OneSignalClient:
    """OneSignal REST API (Basic auth with the REST key)."""

    name = "onesignal"

    def __init__(self, app_id: Optional[str] = None, rest_api_key: Optional[str] = None, timeout: Optional[int] = None):
        self.app_id = app_id if app_id is not None else settings.ONESIGNAL_APP_ID
        self.rest_api_key = rest_api_key if rest_api_key is not None else settings.ONESIGNAL_REST_API_KEY
        self.url = settings.ONESIGNAL_API_URL
        self.timeout = timeout or settings.EXTERNAL_API_TIMEOUT
        if not self.app_id or not self.rest_api_key:
            raise PushProviderNotConfigured("ONESIGNAL_APP_ID or ONESIGNAL_REST_API_KEY not configured")

    def send(self, notification, user_id: str) -> PushResult:
        body = {
            "app_id": self.app_id,
            "include_external_user_ids": [user_id],
            "channel_for_external_user_ids": "push",
            "headings": {"en": notification.title},
            "contents": {"en": notification.message},
            "data": {
                "notificationId": str(notification.id),
                "type": notification.type,
                "actionUrl": notification.action_url,
                **(notification.data or {}),
            },
        }
        headers = {
            "Authorization": f"Basic {self.rest_api_key}",
            "Content-Type": "application/json",
        }
        try:
            r = requests.post(self.url, json=body, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            return PushResult(ok=False, error=str(e))
        if not r.ok:
            return PushResult(ok=False, error=_error_text(r), status_code=r.status_code)
        return PushResult(ok=True, status_code=r.status_code)


def get_push_provider(name: Optional[str] = None):
    """Provider selected by PUSH_PROVIDER (novu by default)."""
    name = (name or settings.PUSH_PROVIDER or "novu").lower()
    if name == "onesignal":
        return OneSignalClient()
    if name == "novu":
        return NovuClient()
    raise PushProviderNotConfigured(f"Unknown push provider: {name}")


def get_novu_client() -> Optional[NovuClient]:
    """Novu client, or None when NOVU_API_KEY is unset (callers treat that as 'skip')."""
    try:
        return NovuClient()
    except PushProviderNotConfigured:
        return None
