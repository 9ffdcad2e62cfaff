"""
Weight logging endpoint: session and API token auth, validation, and the
knock-on update of competitions the user is in.
"""
from unittest.mock import patch

from models import CompetitionParticipant, CompetitionStanding, WeightEntry
from services.api_token_service import create_api_token


def test_log_weight_with_session_token(client, user, headers, db_session):
    response = client.post("/v1/weight", json={"weight": 182.4, "date": "2026-02-01", "notes": "morning"}, headers=headers)

    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["entry"]["weight"] == 182.4
    assert data["entry"]["date"] == "2026-02-01"
    assert db_session.query(WeightEntry).filter(WeightEntry.user_id == user.id).count() == 1


def test_log_weight_with_api_token(client, user, db_session):
    _, raw = create_api_token(db_session, user=user, name="Shortcut")
    db_session.commit()

    response = client.post("/v1/weight", json={"weight": 180}, headers={"Authorization": f"Bearer {raw}"})

    assert response.status_code == 201
    assert response.json()["entry"]["weight"] == 180.0


def test_weight_is_rounded_to_two_decimals(client, headers):
    response = client.post("/v1/weight", json={"weight": 180.4567}, headers=headers)

    assert response.status_code == 201
    assert response.json()["entry"]["weight"] == 180.46


def test_missing_weight_is_rejected(client, headers):
    response = client.post("/v1/weight", json={}, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"] == "Weight must be a positive number"


def test_non_positive_weight_is_rejected(client, headers, db_session):
    for bad in (0, -5):
        response = client.post("/v1/weight", json={"weight": bad}, headers=headers)
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR_WEIGHT"

    assert db_session.query(WeightEntry).count() == 0


def test_requires_authentication(client):
    response = client.post("/v1/weight", json={"weight": 180})

    assert response.status_code == 401
    assert "error" in response.json()


def test_list_weight_entries_newest_first_with_paging(client, user, headers, log_weight_entry):
    from datetime import date

    for day, weight in ((1, 190.0), (2, 189.0), (3, 188.0)):
        log_weight_entry(user, weight, day=date(2026, 2, day))

    response = client.get("/v1/weight?limit=2&offset=0", headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert [e["weight"] for e in data["entries"]] == [188.0, 189.0]
    assert data["total_items"] == 3
    assert data["total_pages"] == 2
    assert data["page"] == 1

    second = client.get("/v1/weight?limit=2&offset=2", headers=headers).json()
    assert [e["weight"] for e in second["entries"]] == [190.0]
    assert second["page"] == 2


def test_logging_updates_running_competition(
    client, db_session, make_user, make_competition, add_participant, auth_for
):
    a, b = make_user(), make_user()
    competition = make_competition(a, status="started")
    pa = add_participant(competition, a, 200, 200)
    pb = add_participant(competition, b, 200, 195)

    response = client.post("/v1/weight", json={"weight": 188}, headers=auth_for(a))
    assert response.status_code == 201

    db_session.expire_all()
    pa = db_session.get(CompetitionParticipant, pa.id)
    pb = db_session.get(CompetitionParticipant, pb.id)
    assert pa.current_weight == 188.0
    assert pa.weight_change == 12.0
    assert pa.weight_change_percentage == 6.0
    assert pa.total_entries == 1
    assert pa.rank == 1
    assert pb.rank == 2


def test_first_weight_seeds_missing_starting_weight(client, db_session, user, headers, make_competition, add_participant):
    competition = make_competition(user)
    participant = add_participant(competition, user)

    client.post("/v1/weight", json={"weight": 210}, headers=headers)

    db_session.expire_all()
    participant = db_session.get(CompetitionParticipant, participant.id)
    assert participant.starting_weight == 210.0
    assert participant.current_weight == 210.0
    assert participant.weight_change == 0.0


def test_completed_competition_is_not_touched(client, db_session, user, headers, make_competition, add_participant):
    competition = make_competition(user, status="completed")
    participant = add_participant(competition, user, 200, 190)

    client.post("/v1/weight", json={"weight": 170}, headers=headers)

    db_session.expire_all()
    assert db_session.get(CompetitionParticipant, participant.id).current_weight == 190.0


def test_log_activity(client, headers):
    response = client.post("/v1/activities", json={"activity_type": "steps", "value": 12000, "unit": "steps"}, headers=headers)

    assert response.status_code == 201
    entry = response.json()["entry"]
    assert entry["activity_type"] == "steps"
    assert entry["value"] == 12000.0


def test_log_activity_rejects_unknown_type(client, headers):
    response = client.post("/v1/activities", json={"activity_type": "juggling", "value": 3}, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"] == "Unsupported activity type: juggling"


def test_non_finite_weight_is_rejected(client, headers, db_session):
    response = client.post(
        "/v1/weight",
        content='{"weight": Infinity}',
        headers={**headers, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "VALIDATION_ERROR_WEIGHT"
    assert db_session.query(WeightEntry).count() == 0


def test_non_finite_activity_value_is_rejected(client, headers):
    response = client.post(
        "/v1/activities",
        content='{"activity_type": "steps", "value": Infinity}',
        headers={**headers, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "VALIDATION_ERROR_VALUE"


def test_entry_survives_database_error_during_reranking(
    client, db_session, make_user, make_competition, add_participant, auth_for
):
    a, b = make_user(), make_user()
    competition = make_competition(a, status="started")
    pa = add_participant(competition, a, 200, 200, rank=1)
    add_participant(competition, b, 200, 195, rank=2)

    def failing_recalculation(db, competition_id, **kwargs):
        # rank and participant_id are NOT NULL, so this flush raises IntegrityError
        db.add(CompetitionStanding(competition_id=competition_id))
        db.flush()

    with patch("services.weight_service.recalculate_competition_standings", side_effect=failing_recalculation):
        response = client.post("/v1/weight", json={"weight": 190}, headers=auth_for(a))

    assert response.status_code == 201
    assert db_session.query(WeightEntry).filter(WeightEntry.user_id == a.id).count() == 1
    assert db_session.query(CompetitionStanding).count() == 0

    db_session.expire_all()
    pa = db_session.get(CompetitionParticipant, pa.id)
    assert pa.current_weight == 190.0
    assert pa.weight_change == 10.0
    assert pa.rank == 1
