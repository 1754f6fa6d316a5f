from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select

from ireporter.core.config import Settings
from ireporter.core.exceptions import Unauthenticated
from ireporter.core.security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)
from ireporter.models.incident import Incident, MediaFile
from ireporter.schemas.incident import IncidentCreate

SECRET = "unit-secret"
HOUR = timedelta(hours=1)


def test_password_hash_roundtrip():
    hashed = get_password_hash("s3cret!")

    assert hashed != "s3cret!"
    assert verify_password("s3cret!", hashed)
    assert not verify_password("wrong", hashed)


def test_expired_token_is_rejected():
    token = create_access_token({"sub": "u1", "role": "user"}, SECRET, timedelta(seconds=-1))

    with pytest.raises(Unauthenticated):
        decode_access_token(token, SECRET)


def test_token_with_unknown_role_is_rejected():
    token = create_access_token({"sub": "u1", "role": "superuser"}, SECRET, HOUR)

    with pytest.raises(Unauthenticated):
        decode_access_token(token, SECRET)


def test_token_resolves_caller():
    token = create_access_token({"sub": "u1", "role": "admin", "email": "a@example.com"}, SECRET, HOUR)

    caller = decode_access_token(token, SECRET)

    assert caller.id == "u1"
    assert caller.is_admin
    assert caller.email == "a@example.com"


def test_token_signed_with_other_key_is_rejected():
    token = create_access_token({"sub": "u1", "role": "admin"}, "another-secret", HOUR)

    with pytest.raises(Unauthenticated):
        decode_access_token(token, SECRET)


def test_secret_key_is_required(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


async def test_app_verifies_tokens_with_its_own_secret(client, settings):
    own = create_access_token({"sub": "u1", "role": "user"}, settings.SECRET_KEY, HOUR)
    foreign = create_access_token({"sub": "u1", "role": "admin"}, "import-time-secret", HOUR)

    accepted = await client.get("/incidents", headers={"Authorization": f"Bearer {own}"})
    rejected = await client.get("/incidents", headers={"Authorization": f"Bearer {foreign}"})

    assert accepted.status_code == 200
    assert rejected.status_code == 401


async def test_issued_token_is_signed_with_app_secret(client, settings):
    resp = await client.post(
        "/auth/signup",
        json={"email": "keyed@example.com", "password": "hunter22", "name": "Keyed User"},
    )

    caller = decode_access_token(resp.json()["token"], settings.SECRET_KEY)
    assert caller.email == "keyed@example.com"


async def test_signup_then_signin(client):
    signup = await client.post(
        "/auth/signup",
        json={"email": "new@example.com", "password": "hunter22", "name": "New Reporter"},
    )

    assert signup.status_code == 201
    user = signup.json()["user"]
    assert user["role"] == "user"
    assert "hashedPassword" not in user
    assert signup.json()["token"]

    signin = await client.post("/auth/signin", json={"email": "new@example.com", "password": "hunter22"})

    assert signin.status_code == 200
    assert signin.json()["user"]["id"] == user["id"]

    profile = await client.get("/auth/profile", headers={"Authorization": f"Bearer {signin.json()['token']}"})
    assert profile.json()["email"] == "new@example.com"


async def test_signup_duplicate_email_conflicts(client, citizen):
    resp = await client.post(
        "/auth/signup",
        json={"email": "jane@example.com", "password": "hunter22", "name": "Another Jane"},
    )

    assert resp.status_code == 409


async def test_signup_as_admin_is_refused_by_default(client):
    resp = await client.post(
        "/auth/signup",
        json={"email": "boss@example.com", "password": "hunter22", "name": "Boss", "role": "admin"},
    )

    assert resp.status_code == 403


async def test_signup_validation(client):
    resp = await client.post("/auth/signup", json={"email": "not-an-email", "password": "123", "name": "X"})

    assert resp.status_code == 400


async def test_signin_wrong_password(client, citizen):
    resp = await client.post("/auth/signin", json={"email": "jane@example.com", "password": "nope"})

    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid email or password"}


async def test_oauth2_token_form(client, settings, citizen):
    resp = await client.post("/auth/token", data={"username": "jane@example.com", "password": "password123"})

    assert resp.status_code == 200
    assert resp.json()["token_type"] == "bearer"
    assert decode_access_token(resp.json()["access_token"], settings.SECRET_KEY).id == citizen.id


async def test_list_users_admin_only(client, citizen, admin, citizen_headers, admin_headers):
    assert (await client.get("/users", headers=citizen_headers)).status_code == 403

    resp = await client.get("/users", headers=admin_headers)

    assert resp.status_code == 200
    assert {u["email"] for u in resp.json()} == {"jane@example.com", "admin@example.com"}


async def test_update_profile(client, citizen_headers):
    resp = await client.put(
        "/users/profile",
        json={"name": "Jane Q. Citizen", "profilePicture": "https://cdn.example.com/jane.png"},
        headers=citizen_headers,
    )

    assert resp.status_code == 200
    assert resp.json()["name"] == "Jane Q. Citizen"
    assert resp.json()["profilePicture"] == "https://cdn.example.com/jane.png"
    assert resp.json()["email"] == "jane@example.com"


async def test_update_profile_email_taken(client, other_citizen, citizen_headers):
    resp = await client.put("/users/profile", json={"email": "john@example.com"}, headers=citizen_headers)

    assert resp.status_code == 409
    assert resp.json() == {"error": "Email already in use"}


async def test_update_profile_without_fields(client, citizen_headers):
    resp = await client.put("/users/profile", json={}, headers=citizen_headers)

    assert resp.status_code == 400


async def test_change_password(client, citizen_headers):
    wrong = await client.patch(
        "/users/password",
        json={"currentPassword": "nope", "newPassword": "brand-new"},
        headers=citizen_headers,
    )
    ok = await client.patch(
        "/users/password",
        json={"currentPassword": "password123", "newPassword": "brand-new"},
        headers=citizen_headers,
    )
    signin = await client.post("/auth/signin", json={"email": "jane@example.com", "password": "brand-new"})

    assert wrong.status_code == 400
    assert ok.status_code == 200
    assert signin.status_code == 200


async def test_admin_deletes_user_with_their_reports(app, client, service, citizen, as_caller, report_body, admin_headers):
    report_body["media"] = [{"type": "image", "url": "https://cdn.example.com/a.jpg"}]
    await service.create_incident(as_caller(citizen), IncidentCreate.model_validate(report_body))

    resp = await client.delete(f"/users/{citizen.id}", headers=admin_headers)

    assert resp.status_code == 200
    async with app.state.db.session() as session:
        assert await session.scalar(select(func.count()).select_from(Incident)) == 0
        assert await session.scalar(select(func.count()).select_from(MediaFile)) == 0


async def test_admin_cannot_delete_self(client, admin, admin_headers):
    resp = await client.delete(f"/users/{admin.id}", headers=admin_headers)

    assert resp.status_code == 400


async def test_delete_unknown_user(client, admin_headers):
    resp = await client.delete("/users/missing", headers=admin_headers)

    assert resp.status_code == 404


async def test_deleted_user_token_no_longer_reaches_profile(client, citizen, citizen_headers, admin_headers):
    await client.delete(f"/users/{citizen.id}", headers=admin_headers)

    resp = await client.get("/users/profile", headers=citizen_headers)

    assert resp.status_code == 401
