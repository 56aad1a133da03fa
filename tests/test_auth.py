import time

import pytest

from app.core.security import decode_access_token
from app.models.user import User

pytestmark = pytest.mark.asyncio

REGISTRATION = {
    "name": "Ana Souza",
    "email": "Ana@Example.com",
    "password": "secret123",
    "role": "Data Analyst",
    "interest": "python, data ,",
}


async def test_register_creates_student_and_token(client):
    resp = await client.post("/api/auth/register", json=REGISTRATION)
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["user"]["email"] == "ana@example.com"
    assert data["user"]["role"] == "student"
    assert data["user"]["profile"]["interests"] == ["python", "data"]
    assert data["user"]["profile"]["position"] == "Data Analyst"
    payload = decode_access_token(data["token"])
    assert payload["id"] == data["user"]["id"]
    assert abs(payload["exp"] - time.time() - 7 * 24 * 3600) < 60


async def test_register_duplicate_email(client):
    await client.post("/api/auth/register", json=REGISTRATION)
    resp = await client.post("/api/auth/register", json={**REGISTRATION, "email": "ana@example.com"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "CONFLICT"


async def test_register_short_password(client):
    resp = await client.post("/api/auth/register", json={**REGISTRATION, "password": "123"})
    assert resp.status_code == 400


async def test_register_rejects_bot_user_agent(client):
    resp = await client.post(
        "/api/auth/register", json=REGISTRATION, headers={"User-Agent": "Googlebot/2.1"}
    )
    assert resp.status_code == 403
    assert await User.find_all().count() == 0


async def test_register_rejects_email_held_by_lead(client):
    lead = await client.post("/api/leads", json={"name": "Ana", "email": "ana@example.com", "lead_type": "ebook"})
    assert lead.json()["lead"]["role"] == "lead"

    resp = await client.post("/api/auth/register", json=REGISTRATION)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "CONFLICT"
    users = await User.find_all().to_list()
    assert len(users) == 1
    assert users[0].role == "lead"
    assert users[0].password_hash is None


async def test_register_missing_field_is_bad_request(client):
    resp = await client.post("/api/auth/register", json={"name": "A", "password": "secret123"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_bot_requests_do_not_use_register_budget(client, redis):
    bot = {"User-Agent": "Googlebot/2.1", "X-Forwarded-For": "10.0.0.7"}
    for _ in range(12):
        r = await client.post("/api/auth/register", json=REGISTRATION, headers=bot)
        assert r.status_code == 403
    resp = await client.post("/api/auth/register", json=REGISTRATION, headers={"X-Forwarded-For": "10.0.0.7"})
    assert resp.status_code == 200
    assert await redis.get("ratelimit:auth:register:ip:10.0.0.7") == "1"


async def test_login_and_me(client, make_user):
    await make_user(email="bob@example.com")
    resp = await client.post("/api/auth/login", json={"email": "BOB@example.com", "password": "secret123"})
    assert resp.status_code == 200
    token = resp.json()["token"]

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "bob@example.com"


async def test_login_failure_is_generic(client, make_user):
    await make_user(email="bob@example.com")
    wrong_password = await client.post("/api/auth/login", json={"email": "bob@example.com", "password": "nope"})
    unknown_email = await client.post("/api/auth/login", json={"email": "who@example.com", "password": "nope"})
    assert wrong_password.status_code == unknown_email.status_code == 400
    assert wrong_password.json()["error"]["message"] == unknown_email.json()["error"]["message"]


async def test_me_requires_valid_token(client, db):
    assert (await client.get("/api/auth/me")).status_code == 401
    bad = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


async def test_token_for_deleted_user_is_rejected(client, make_user, auth_headers):
    user = await make_user()
    headers = auth_headers(user)
    await user.delete()
    assert (await client.get("/api/auth/me", headers=headers)).status_code == 401


async def test_change_password(client, make_user, auth_headers):
    user = await make_user()
    headers = auth_headers(user)
    wrong = await client.post(
        "/api/auth/change-password",
        json={"current_password": "bad", "new_password": "newsecret"},
        headers=headers,
    )
    assert wrong.status_code == 400

    ok = await client.post(
        "/api/auth/change-password",
        json={"current_password": "secret123", "new_password": "newsecret"},
        headers=headers,
    )
    assert ok.json() == {"success": True}
    login = await client.post("/api/auth/login", json={"email": user.email, "password": "newsecret"})
    assert login.status_code == 200


async def test_check_email(client, make_user):
    await make_user(email="taken@example.com")
    assert (await client.get("/api/auth/check-email", params={"email": "taken@example.com"})).json() == {"exists": True}
    assert (await client.get("/api/auth/check-email", params={"email": "free@example.com"})).json() == {"exists": False}


async def test_lead_capture_keeps_existing_role(client, make_user):
    await make_user(email="student@example.com")
    resp = await client.post(
        "/api/leads",
        json={"name": "Student", "email": "student@example.com", "lead_type": "webinar", "utm": {"source": "ads"}},
    )
    assert resp.json()["lead"]["role"] == "student"
    stored = await User.find_one(User.email == "student@example.com")
    assert stored.lead_type == "webinar"
    assert stored.lead_details["utm"] == {"source": "ads"}
