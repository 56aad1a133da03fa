from datetime import datetime

import httpx
import pytest
from beanie import PydanticObjectId

from app.core.exceptions import BadRequestError, ForbiddenError
from app.core.security import load_gate_cookie
from app.models.admin_log import AdminLog
from app.models.certificate import Certificate
from app.models.consultation_request import ConsultationRequest
from app.models.proposal import Proposal
from app.models.service_price import PriceRange, ServicePrice
from app.models.user import User
from app.services.gate import verify_turnstile


async def _certificate(code="ABC123XYZ", status="issued", **fields) -> Certificate:
    cert = Certificate(
        user_id=PydanticObjectId(),
        user_name="Ana Souza",
        course_title="Python Basics",
        course_slug="python-basics",
        certificate_number="CERT-2026-0001",
        verification_code=code,
        status=status,
        issued_at=datetime(2026, 3, 1),
        quiz_score=92.5,
        **fields,
    )
    await cert.insert()
    return cert


def _price(slug="landing-page", track="standard", recommended=1500.0) -> ServicePrice:
    return ServicePrice(
        category="web",
        service_slug=slug,
        track=track,
        unit_label="page",
        unit_type="per_page",
        price_range=PriceRange(min=1000.0, recommended=recommended, max=2500.0),
    )


# Certificates

@pytest.mark.asyncio
async def test_verify_issued_certificate_case_insensitive(client):
    await _certificate()
    resp = await client.get("/api/certificates/verify/abc123xyz")
    assert resp.status_code == 200
    data = resp.json()
    assert data["valid"] is True
    assert data["certificate"]["student_name"] == "Ana Souza"
    assert data["certificate"]["quiz_score"] == 92.5


@pytest.mark.asyncio
async def test_verify_revoked_certificate(client):
    await _certificate(status="revoked", revoked_at=datetime(2026, 4, 1), revoked_reason="Plagiarism")
    data = (await client.get("/api/certificates/verify/ABC123XYZ")).json()
    assert data["valid"] is False
    assert data["status"] == "revoked"
    assert data["reason"] == "Plagiarism"


@pytest.mark.asyncio
async def test_verify_pending_certificate_is_not_valid(client):
    await _certificate(status="pending_quiz")
    data = (await client.get("/api/certificates/verify/ABC123XYZ")).json()
    assert data == {"valid": False, "status": "pending_quiz"}


@pytest.mark.asyncio
async def test_verify_unknown_certificate(client):
    resp = await client.get("/api/certificates/verify/NOPE")
    assert resp.status_code == 404


# Consultation

@pytest.mark.asyncio
async def test_consultation_request_links_lead(client):
    body = {
        "name": "Carla",
        "email": "Carla@Example.com",
        "company": " Acme ",
        "source": "services-cart",
        "cart_items": [
            {"id": "1", "type": "service", "name": "Landing page", "quantity": 2, "price": 1500.0, "service_slug": "landing-page"}
        ],
        "cart_total": 3000.0,
    }
    resp = await client.post("/api/consultation/request", json=body)
    assert resp.status_code == 200
    request_id = resp.json()["request_id"]

    stored = await ConsultationRequest.get(PydanticObjectId(request_id))
    assert stored.email == "carla@example.com"
    assert stored.company == "Acme"
    assert stored.status == "pending"
    lead = await User.find_one(User.email == "carla@example.com")
    assert lead.role == "lead"
    assert stored.user_id == lead.id

    by_id = await client.get("/api/consultation/request", params={"id": request_id})
    assert by_id.json()["request"]["cart_total"] == 3000.0
    by_email = await client.get("/api/consultation/request", params={"email": "carla@example.com"})
    assert by_email.json()["request"]["id"] == request_id


@pytest.mark.asyncio
async def test_consultation_request_survives_lead_failure(client, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("users down")

    monkeypatch.setattr("app.services.users.upsert_lead", broken)
    resp = await client.post("/api/consultation/request", json={"name": "Carla", "email": "carla@example.com"})
    assert resp.status_code == 200
    stored = await ConsultationRequest.get(PydanticObjectId(resp.json()["request_id"]))
    assert stored.user_id is None


@pytest.mark.asyncio
async def test_consultation_lookup_requires_a_key(client):
    assert (await client.get("/api/consultation/request")).status_code == 400
    assert (await client.get("/api/consultation/request", params={"email": "none@example.com"})).status_code == 404


@pytest.mark.asyncio
async def test_consultation_status_transitions(client, make_user, auth_headers):
    admin = await make_user(email="admin@example.com", role="admin")
    created = await client.post("/api/consultation/request", json={"name": "Carla", "email": "carla@example.com"})
    url = f"/api/admin/consultations/{created.json()['request_id']}/status"

    scheduled = await client.post(
        url,
        json={"status": "scheduled", "scheduled_start_utc": "2026-06-01T14:00:00"},
        headers=auth_headers(admin),
    )
    assert scheduled.json()["request"]["status"] == "scheduled"
    assert scheduled.json()["request"]["scheduled_start_utc"] == "2026-06-01T14:00:00"
    completed = await client.post(url, json={"status": "completed"}, headers=auth_headers(admin))
    assert completed.json()["request"]["status"] == "completed"
    reopened = await client.post(url, json={"status": "cancelled"}, headers=auth_headers(admin))
    assert reopened.status_code == 400


# Pricing

@pytest.mark.asyncio
async def test_service_prices_are_cached(client, redis):
    await _price().insert()
    first = await client.get("/api/service-prices")
    assert first.json()["count"] == 1
    assert first.json()["prices"][0]["price_range"]["recommended"] == 1500.0

    await _price(slug="dashboard").insert()
    cached = await client.get("/api/service-prices")
    assert cached.json()["count"] == 1
    assert await redis.ttl("service:prices") > 0

    by_slug = await client.get("/api/service-prices", params={"serviceSlug": "dashboard"})
    assert by_slug.json()["count"] == 1
    assert by_slug.json()["prices"][0]["service_slug"] == "dashboard"


@pytest.mark.asyncio
async def test_admin_refresh_reloads_service_prices(client, redis, make_user, auth_headers):
    admin = await make_user(email="admin@example.com", role="admin")
    await _price().insert()
    await client.get("/api/service-prices")
    await client.get("/api/service-prices", params={"serviceSlug": "landing-page"})
    await _price(slug="dashboard").insert()

    resp = await client.post("/api/admin/service-prices/refresh", headers=auth_headers(admin))
    assert resp.status_code == 200
    assert await redis.exists("service:prices", "service:prices:landing-page") == 0
    assert (await client.get("/api/service-prices")).json()["count"] == 2
    assert await AdminLog.find(AdminLog.action == "service_prices_refreshed").count() == 1


@pytest.mark.asyncio
async def test_service_price_refresh_requires_admin(client, make_user, auth_headers):
    student = await make_user()
    resp = await client.post("/api/admin/service-prices/refresh", headers=auth_headers(student))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_service_proposal_saved(client):
    body = {
        "name": "Carla",
        "email": "Carla@Example.com",
        "total": 3000.0,
        "selections": [
            {"service_slug": "landing-page", "unit_label": "page", "track": "standard", "quantity": 2, "unit_price": 1500.0, "subtotal": 3000.0}
        ],
    }
    resp = await client.post("/api/service-proposals", json=body)
    assert resp.status_code == 200
    assert resp.json()["ok"] is True
    proposal = await Proposal.get(PydanticObjectId(resp.json()["id"]))
    assert proposal.email == "carla@example.com"
    assert proposal.status == "new"


@pytest.mark.asyncio
async def test_service_proposal_validation(client):
    no_selection = await client.post(
        "/api/service-proposals", json={"name": "Carla", "email": "carla@example.com", "total": 0, "selections": []}
    )
    assert no_selection.status_code == 400
    bad_email = await client.post(
        "/api/service-proposals", json={"name": "Carla", "email": "not-an-email", "total": 0, "selections": []}
    )
    assert bad_email.status_code == 400


# Gate

@pytest.mark.asyncio
async def test_gate_sets_signed_cookie(client, monkeypatch):
    calls = []

    async def accept(token, client_ip=None, transport=None):
        calls.append((token, client_ip))

    monkeypatch.setattr("app.services.gate.verify_turnstile", accept)
    resp = await client.post("/api/gate/verify", json={"token": "tt"}, headers={"X-Forwarded-For": "9.9.9.9"})
    assert resp.status_code == 200
    assert calls == [("tt", "9.9.9.9")]
    set_cookie = resp.headers["set-cookie"]
    assert set_cookie.startswith("gate=")
    assert "HttpOnly" in set_cookie
    assert "Secure" not in set_cookie
    assert load_gate_cookie(resp.cookies["gate"]) is not None


@pytest.mark.asyncio
async def test_gate_rejection_sets_no_cookie(client, monkeypatch):
    async def reject(token, client_ip=None, transport=None):
        raise ForbiddenError("Verification failed")

    monkeypatch.setattr("app.services.gate.verify_turnstile", reject)
    resp = await client.post("/api/gate/verify", json={"token": "tt"})
    assert resp.status_code == 403
    assert "set-cookie" not in resp.headers


@pytest.mark.asyncio
async def test_turnstile_success_and_failure():
    seen = []

    def handler(request):
        seen.append(request.content.decode())
        ok = b"response=good" in request.content
        return httpx.Response(200, json={"success": ok, "error-codes": [] if ok else ["invalid-input-response"]})

    transport = httpx.MockTransport(handler)
    await verify_turnstile("good", "1.2.3.4", transport=transport)
    assert "remoteip=1.2.3.4" in seen[0]
    with pytest.raises(ForbiddenError):
        await verify_turnstile("bad", None, transport=transport)


@pytest.mark.asyncio
async def test_turnstile_unreachable_is_forbidden():
    def handler(request):
        raise httpx.ConnectTimeout("timeout")

    with pytest.raises(ForbiddenError):
        await verify_turnstile("good", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_turnstile_missing_token():
    with pytest.raises(BadRequestError):
        await verify_turnstile("")
