"""
Scheduler HTTP triggers: cron secret on GET, cron secret or admin on POST.
"""
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from core.time_utils import utcnow
from models import Competition

JOBS = [
    "start-competitions",
    "finalize-competitions",
    "rebalance-leaderboards",
    "ending-soon",
]


@pytest.mark.parametrize("job", JOBS)
def test_get_requires_cron_secret(client, headers, job):
    assert client.get(f"/v1/cron/{job}").status_code == 401
    assert client.get(f"/v1/cron/{job}", headers={"Authorization": "Bearer wrong"}).status_code == 401
    # A valid user session is not the cron secret
    assert client.get(f"/v1/cron/{job}", headers=headers).status_code == 401


@pytest.mark.parametrize("job", JOBS)
def test_get_with_cron_secret(client, cron_headers, job):
    response = client.get(f"/v1/cron/{job}", headers=cron_headers)

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_post_accepts_admin_session(client, admin_headers):
    response = client.post("/v1/cron/rebalance-leaderboards", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["message"] == "Rebalanced 0 of 0 competition(s)"


def test_post_rejects_regular_user(client, headers):
    response = client.post("/v1/cron/start-competitions", headers=headers)

    assert response.status_code == 403


def test_start_competitions_via_cron(client, db_session, cron_headers, user, make_competition, add_participant):
    competition = make_competition(user)
    add_participant(competition, user, 200, 200)

    response = client.get("/v1/cron/start-competitions", headers=cron_headers)

    assert response.json()["started"] == 1
    assert response.json()["message"] == "Started 1 competition(s)"
    db_session.expire_all()
    assert db_session.get(Competition, competition.id).status == "started"


def test_finalize_competitions_via_cron(client, db_session, cron_headers, user, make_competition, add_participant):
    competition = make_competition(
        user,
        status="started",
        start_date=utcnow() - timedelta(days=30),
        end_date=utcnow() - timedelta(minutes=1),
    )
    add_participant(competition, user, 200, 190)

    response = client.post("/v1/cron/finalize-competitions", headers=cron_headers)

    assert response.json()["finalized"] == 1
    assert response.json()["competitions"][0]["winner_user_id"] == str(user.id)


def test_daily_reminders_fail_without_novu(client, cron_headers):
    response = client.get("/v1/cron/daily-reminders", headers=cron_headers)

    assert response.status_code == 500
    assert response.json()["error_code"] == "PUSH_PROVIDER_NOT_CONFIGURED"


def test_daily_reminders_with_novu(client, cron_headers, user, make_competition, add_participant, monkeypatch):
    from core.config import settings

    monkeypatch.setattr(settings, "NOVU_API_KEY", "novu-test-key")
    competition = make_competition(user, status="started", end_date=utcnow() + timedelta(days=5))
    add_participant(competition, user, 200, 190)

    with patch("services.push_providers.requests.post", return_value=MagicMock(ok=True, status_code=201)):
        response = client.get("/v1/cron/daily-reminders", headers=cron_headers)

    assert response.status_code == 200
    assert response.json()["sent"] == 1


def test_process_notifications_fails_without_provider(client, cron_headers):
    response = client.get("/v1/cron/process-notifications", headers=cron_headers)

    assert response.status_code == 500
    assert response.json()["error_code"] == "PUSH_PROVIDER_NOT_CONFIGURED"
