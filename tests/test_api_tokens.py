"""
Personal API tokens: lifecycle over HTTP and bearer authentication.
"""
from datetime import timedelta

from core.security import hash_api_token
from core.time_utils import utcnow
from models import ApiToken


def test_create_returns_raw_token_once(client, user, headers, db_session):
    response = client.post("/v1/tokens", json={"name": "iPhone Shortcut", "expires_in_days": 30}, headers=headers)

    assert response.status_code == 201
    data = response.json()
    assert data["token"].startswith("fc_")
    assert len(data["token"]) == 67
    assert data["name"] == "iPhone Shortcut"
    assert data["expires_at"] is not None

    row = db_session.query(ApiToken).filter(ApiToken.user_id == user.id).one()
    assert row.token_hash == hash_api_token(data["token"])
    assert data["token"] not in row.token_preview

    listed = client.get("/v1/tokens", headers=headers).json()["tokens"]
    assert [t["id"] for t in listed] == [data["id"]]
    assert "token" not in listed[0]


def test_create_rejects_blank_name(client, headers):
    response = client.post("/v1/tokens", json={"name": ""}, headers=headers)

    assert response.status_code == 400


def test_api_token_cannot_manage_tokens(client, headers):
    raw = client.post("/v1/tokens", json={"name": "watch"}, headers=headers).json()["token"]

    response = client.get("/v1/tokens", headers={"Authorization": f"Bearer {raw}"})

    assert response.status_code == 401


def test_authentication_stamps_last_used(client, headers, db_session):
    created = client.post("/v1/tokens", json={"name": "watch"}, headers=headers).json()

    response = client.get("/v1/weight", headers={"Authorization": f"Bearer {created['token']}"})

    assert response.status_code == 200
    db_session.expire_all()
    row = db_session.query(ApiToken).filter(ApiToken.token_hash == hash_api_token(created["token"])).one()
    assert row.last_used_at is not None


def test_expired_token_is_rejected(client, headers, db_session):
    created = client.post("/v1/tokens", json={"name": "old"}, headers=headers).json()
    db_session.query(ApiToken).filter(ApiToken.token_hash == hash_api_token(created["token"])).update(
        {ApiToken.expires_at: utcnow() - timedelta(minutes=1)}, synchronize_session=False
    )
    db_session.commit()

    response = client.get("/v1/weight", headers={"Authorization": f"Bearer {created['token']}"})

    assert response.status_code == 401
    assert response.json()["error"] == "API token has expired"


def test_deactivated_token_is_rejected(client, headers):
    created = client.post("/v1/tokens", json={"name": "paused"}, headers=headers).json()

    patched = client.patch(f"/v1/tokens/{created['id']}", json={"is_active": False}, headers=headers)
    assert patched.status_code == 200
    assert patched.json()["is_active"] is False

    response = client.get("/v1/weight", headers={"Authorization": f"Bearer {created['token']}"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid or inactive API token"


def test_unknown_token_is_rejected(client):
    response = client.get("/v1/weight", headers={"Authorization": "Bearer fc_" + "0" * 64})

    assert response.status_code == 401


def test_delete_token(client, headers):
    created = client.post("/v1/tokens", json={"name": "temp"}, headers=headers).json()

    response = client.delete(f"/v1/tokens/{created['id']}", headers=headers)

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert client.get("/v1/tokens", headers=headers).json()["tokens"] == []
    assert client.get("/v1/weight", headers={"Authorization": f"Bearer {created['token']}"}).status_code == 401


def test_other_users_token_cannot_be_deleted(client, headers, make_user, auth_for):
    created = client.post("/v1/tokens", json={"name": "mine"}, headers=headers).json()
    intruder = make_user()

    response = client.delete(f"/v1/tokens/{created['id']}", headers=auth_for(intruder))

    assert response.status_code == 403
    assert response.json()["error_code"] == "FORBIDDEN"
