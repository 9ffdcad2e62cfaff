"""
Notification inbox, preferences and the Novu subscriber sync endpoint.
"""
from unittest.mock import MagicMock, patch

from services.notification_service import create_notification


def _notify(db_session, user, **kwargs):
    row = create_notification(
        db_session,
        user_id=user.id,
        title=kwargs.pop("title", "Heads up"),
        message=kwargs.pop("message", "Something happened"),
        type=kwargs.pop("type", "system"),
    )
    db_session.commit()
    return row


def test_list_and_unread_count(client, db_session, user, headers, make_user):
    _notify(db_session, user, title="first")
    _notify(db_session, user, title="second")
    _notify(db_session, make_user(), title="not yours")

    data = client.get("/v1/notifications", headers=headers).json()

    assert data["unread_count"] == 2
    assert {n["title"] for n in data["notifications"]} == {"first", "second"}
    assert client.get("/v1/notifications/unread-count", headers=headers).json() == {"unread_count": 2}


def test_mark_one_read(client, db_session, user, headers):
    row = _notify(db_session, user)

    response = client.post(f"/v1/notifications/{row.id}/read", headers=headers)

    assert response.status_code == 200
    assert response.json()["is_read"] is True
    assert client.get("/v1/notifications/unread-count", headers=headers).json()["unread_count"] == 0


def test_cannot_mark_someone_elses_notification(client, db_session, make_user, headers):
    row = _notify(db_session, make_user())

    response = client.post(f"/v1/notifications/{row.id}/read", headers=headers)

    assert response.status_code == 403


def test_mark_all_read(client, db_session, user, headers):
    _notify(db_session, user)
    _notify(db_session, user)

    response = client.post("/v1/notifications/read-all", headers=headers)

    assert response.json() == {"success": True, "updated": 2}
    assert client.get("/v1/notifications?unread_only=true", headers=headers).json()["notifications"] == []


def test_preferences_default_on_and_update(client, headers):
    defaults = client.get("/v1/notifications/preferences", headers=headers).json()
    assert all(defaults.values())

    updated = client.put("/v1/notifications/preferences", json={"daily_reminders": False}, headers=headers).json()

    assert updated["daily_reminders"] is False
    assert updated["push_enabled"] is True
    assert client.get("/v1/notifications/preferences", headers=headers).json()["daily_reminders"] is False


def test_queue_status_requires_cron_or_admin(client, headers, cron_headers, admin_headers):
    assert client.get("/v1/notifications/queue-status", headers=headers).status_code == 403
    assert client.get("/v1/notifications/queue-status", headers=cron_headers).json()["queued"] == 0
    assert client.get("/v1/notifications/queue-status", headers=admin_headers).status_code == 200


def test_process_queue_with_novu(client, db_session, user, cron_headers, monkeypatch):
    from core.config import settings

    monkeypatch.setattr(settings, "NOVU_API_KEY", "novu-test-key")
    _notify(db_session, user, type="competition_start")

    with patch("services.push_providers.requests.post", return_value=MagicMock(ok=True, status_code=201)):
        response = client.post("/v1/notifications/process-queue?batchSize=10", headers=cron_headers)

    assert response.status_code == 200
    assert response.json()["sent"] == 1


def test_novu_subscriber_not_configured(client, headers):
    response = client.post("/v1/novu/subscriber", headers=headers)

    assert response.status_code == 500
    assert response.json()["error"] == "NOVU_API_KEY not configured"


def test_novu_subscriber_sync(client, user, headers, monkeypatch):
    from core.config import settings

    monkeypatch.setattr(settings, "NOVU_API_KEY", "novu-test-key")
    with patch("services.push_providers.requests.put", return_value=MagicMock(ok=True, status_code=200)) as put:
        response = client.post("/v1/novu/subscriber", json={"first_name": "Sam"}, headers=headers)

    assert response.json() == {"success": True, "subscriber_id": str(user.id)}
    assert put.call_args.args[0].endswith(f"/v1/subscribers/{user.id}")
    assert put.call_args.kwargs["json"]["firstName"] == "Sam"
    assert put.call_args.kwargs["json"]["email"] == user.email


def test_novu_subscriber_upstream_failure(client, headers, monkeypatch):
    from core.config import settings

    monkeypatch.setattr(settings, "NOVU_API_KEY", "novu-test-key")
    with patch("services.push_providers.requests.put", return_value=MagicMock(ok=False, status_code=401, text="bad key")):
        response = client.post("/v1/novu/subscriber", headers=headers)

    assert response.status_code == 502
    assert response.json()["error"] == "Failed to register Novu subscriber: HTTP 401: bad key"
