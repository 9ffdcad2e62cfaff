"""
Competition endpoints: create, join, leave, leaderboard, manual start, issues.
"""
from datetime import date

from models import CalculationResult, CompetitionIssue, CompetitionParticipant


def test_create_competition_joins_creator(client, user, headers, log_weight_entry):
    log_weight_entry(user, 201.5, day=date(2026, 1, 5))

    response = client.post(
        "/v1/competitions",
        json={"name": "  New Year Cut  ", "competition_type": "weight_loss", "duration_days": 60},
        headers=headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "New Year Cut"
    assert data["status"] == "pending"
    assert data["duration_days"] == 60
    assert data["participants_count"] == 1
    assert len(data["invite_code"]) == 8

    detail = client.get(f"/v1/competitions/{data['id']}", headers=headers).json()
    assert detail["participants"][0]["user_id"] == str(user.id)
    assert detail["participants"][0]["starting_weight"] == 201.5


def test_create_rejects_unknown_competition_type(client, headers):
    response = client.post("/v1/competitions", json={"name": "Odd", "competition_type": "fastest_mile"}, headers=headers)

    assert response.status_code == 400
    assert response.json()["error_code"] == "VALIDATION_ERROR_COMPETITION_TYPE"


def test_create_requires_a_name(client, headers):
    response = client.post("/v1/competitions", json={"name": "   "}, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"] == "Competition name is required"


def test_list_only_my_competitions(client, user, headers, make_user, make_competition, add_participant):
    other = make_user()
    mine = make_competition(user, name="Mine")
    add_participant(mine, user)
    make_competition(other, name="Not mine")

    response = client.get("/v1/competitions", headers=headers)

    assert [c["name"] for c in response.json()["competitions"]] == ["Mine"]


def test_join_and_duplicate_join(client, make_user, make_competition, auth_for):
    owner, joiner = make_user(), make_user()
    competition = make_competition(owner)

    first = client.post(f"/v1/competitions/{competition.id}/join", headers=auth_for(joiner))
    assert first.status_code == 201
    assert first.json()["participant"]["user_id"] == str(joiner.id)

    again = client.post(f"/v1/competitions/{competition.id}/join", headers=auth_for(joiner))
    assert again.status_code == 409
    assert again.json()["error"] == "Already a participant in this competition"


def test_join_closed_competition(client, make_user, make_competition, auth_for):
    owner, joiner = make_user(), make_user()
    competition = make_competition(owner, status="completed")

    response = client.post(f"/v1/competitions/{competition.id}/join", headers=auth_for(joiner))

    assert response.status_code == 400
    assert response.json()["error"] == "Competition is completed"


def test_join_full_competition(client, make_user, make_competition, add_participant, auth_for):
    owner, joiner = make_user(), make_user()
    competition = make_competition(owner, max_participants=1)
    add_participant(competition, owner)

    response = client.post(f"/v1/competitions/{competition.id}/join", headers=auth_for(joiner))

    assert response.status_code == 400
    assert response.json()["error"] == "Competition is full"


def test_join_unknown_competition(client, headers):
    response = client.post("/v1/competitions/00000000-0000-0000-0000-000000000000/join", headers=headers)

    assert response.status_code == 404


def test_join_by_invite_code_is_case_insensitive(client, make_user, make_competition, auth_for):
    owner, joiner = make_user(), make_user()
    competition = make_competition(owner, invite_code="ABCD2345")

    response = client.post("/v1/competitions/join", json={"invite_code": " abcd2345 "}, headers=auth_for(joiner))

    assert response.status_code == 201
    assert response.json()["competition"]["id"] == str(competition.id)

    missing = client.post("/v1/competitions/join", json={"invite_code": "ZZZZ9999"}, headers=auth_for(joiner))
    assert missing.status_code == 404


def test_joining_notifies_the_joiner(client, make_user, make_competition, auth_for):
    owner, joiner = make_user(), make_user()
    competition = make_competition(owner, name="Spring Cut")

    client.post(f"/v1/competitions/{competition.id}/join", headers=auth_for(joiner))

    notes = client.get("/v1/notifications", headers=auth_for(joiner)).json()
    assert notes["unread_count"] == 1
    assert notes["notifications"][0]["message"] == "You've successfully joined Spring Cut. Good luck!"


def test_leave_and_rejoin(client, db_session, make_user, make_competition, add_participant, auth_for):
    owner, member = make_user(), make_user()
    competition = make_competition(owner, status="started")
    add_participant(competition, owner, 200, 190)
    participant = add_participant(competition, member, 200, 180)

    left = client.post(f"/v1/competitions/{competition.id}/leave", headers=auth_for(member))
    assert left.status_code == 200

    db_session.expire_all()
    participant = db_session.get(CompetitionParticipant, participant.id)
    assert participant.is_active is False
    assert participant.rank is None

    rejoined = client.post(f"/v1/competitions/{competition.id}/join", headers=auth_for(member))
    assert rejoined.status_code == 201
    assert rejoined.json()["participant"]["id"] == str(participant.id)
    assert rejoined.json()["participant"]["starting_weight"] == 200.0


def test_leave_when_not_a_member(client, make_user, make_competition, auth_for):
    owner, stranger = make_user(), make_user()
    competition = make_competition(owner)

    response = client.post(f"/v1/competitions/{competition.id}/leave", headers=auth_for(stranger))

    assert response.status_code == 404


def test_detail_hidden_from_non_members(client, make_user, make_competition, auth_for):
    owner, stranger = make_user(), make_user()
    competition = make_competition(owner)

    response = client.get(f"/v1/competitions/{competition.id}", headers=auth_for(stranger))

    assert response.status_code == 403


def test_leaderboard(client, make_user, make_competition, add_participant, auth_for):
    a, b, c = make_user(display_name="Ann"), make_user(display_name="Bo"), make_user(display_name="Cy")
    competition = make_competition(a, status="started")
    add_participant(competition, a, 200, 190)
    add_participant(competition, b, 150, 135)
    add_participant(competition, c)

    recalculated = client.post(f"/v1/competitions/{competition.id}/recalculate", headers=auth_for(a))
    assert recalculated.json()["updated_count"] == 2

    board = client.get(f"/v1/competitions/{competition.id}/leaderboard", headers=auth_for(b)).json()

    assert [row["name"] for row in board["standings"]] == ["Bo", "Ann"]
    assert [row["rank"] for row in board["standings"]] == [1, 2]
    assert board["standings"][0]["weight_change_percentage"] == 10.0
    assert [row["name"] for row in board["unranked"]] == ["Cy"]


def test_manual_start_by_creator(client, db_session, user, headers, make_competition, add_participant):
    competition = make_competition(user)
    add_participant(competition, user, 200, 200)

    response = client.post(f"/v1/competitions/{competition.id}/start", headers=headers)

    assert response.status_code == 200
    assert response.json()["competition"]["participants"] == 1
    assert db_session.query(CalculationResult).filter(CalculationResult.competition_id == competition.id).count() == 1

    again = client.post(f"/v1/competitions/{competition.id}/start", headers=headers)
    assert again.status_code == 400
    assert again.json()["error_code"] == "VALIDATION_ERROR_STATUS"


def test_manual_start_by_member_is_forbidden(client, make_user, make_competition, add_participant, auth_for):
    owner, member = make_user(), make_user()
    competition = make_competition(owner)
    add_participant(competition, member)

    response = client.post(f"/v1/competitions/{competition.id}/start", headers=auth_for(member))

    assert response.status_code == 403


def test_report_issue(client, db_session, user, headers, make_competition, add_participant):
    competition = make_competition(user)
    add_participant(competition, user)

    response = client.post(
        f"/v1/competitions/{competition.id}/issues",
        json={"title": "My weigh-in is wrong", "description": "Logged 18 instead of 180"},
        headers=headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "open"
    assert data["competition_name"] == "Summer Shred"
    assert db_session.query(CompetitionIssue).count() == 1
