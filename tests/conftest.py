import json
import os
from typing import AsyncGenerator

import fakeredis
import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Settings are cached on first use; configure before the app is imported.
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "platform_test")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-min-32-characters-long")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("ASAAS_API_KEY", "test-asaas-key")
os.environ.setdefault("ASAAS_WEBHOOK_TOKEN", "test-webhook-token")
os.environ.setdefault("PRINTIFY_WEBHOOK_SECRET", "printify-secret")
os.environ.setdefault("PRODIGI_WEBHOOK_SECRET", "prodigi-secret")
os.environ.setdefault("ADMIN_FLUSH_SECRET", "flush-secret")
os.environ.setdefault("TURNSTILE_SECRET_KEY", "turnstile-secret")
os.environ.setdefault("RESEND_API_KEY", "")


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[None, None]:
    """Fresh in-memory document store per test."""
    from mongomock_motor import AsyncMongoMockClient

    from app.db.init import init_db, reset_connections

    reset_connections()
    await init_db(AsyncMongoMockClient())
    yield
    reset_connections()


@pytest.fixture
def redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


class FakeGateway:
    """Stands in for the Asaas REST API; records every request it receives."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.charge_status = "PENDING"
        self.customers: list[dict] = []
        self.fail_paths: set[str] = set()

    def json_body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content or b"{}")

    def paths(self) -> list[str]:
        return [f"{r.method} {r.url.path.removeprefix('/api/v3')}" for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/v3")
        body = json.loads(request.content) if request.content else {}
        if f"{request.method} {path}" in self.fail_paths:
            return httpx.Response(400, json={"errors": [{"code": "invalid_value", "description": "Invalid value"}]})
        match (request.method, path):
            case ("GET", "/customers"):
                return httpx.Response(200, json={"data": self.customers})
            case ("POST", "/customers"):
                return httpx.Response(200, json={"id": "cus_1", **body})
            case ("POST", "/payments"):
                return httpx.Response(200, json={
                    "id": "pay_1",
                    "status": self.charge_status,
                    "value": body.get("value"),
                    "billingType": body.get("billingType"),
                    "dueDate": body.get("dueDate"),
                    "invoiceUrl": "https://sandbox.asaas.com/i/pay_1",
                    "bankSlipUrl": "https://sandbox.asaas.com/b/pay_1",
                    "creditCard": {"creditCardBrand": "VISA"},
                })
            case ("GET", "/payments/pay_1/pixQrCode"):
                return httpx.Response(200, json={
                    "encodedImage": "aGVsbG8=",
                    "payload": "00020126580014br.gov.bcb.pix",
                    "expirationDate": "2030-01-01 23:59:59",
                })
            case ("GET", "/payments/pay_1/identificationField"):
                return httpx.Response(200, json={"identificationField": "23790.00000 1", "barCode": "2379000000"})
            case ("POST", "/payments/pay_1/refund"):
                return httpx.Response(200, json={"id": "pay_1", "status": "REFUND_REQUESTED"})
            case ("POST", "/creditCard/tokenizeCreditCard"):
                return httpx.Response(200, json={
                    "creditCardNumber": "1111",
                    "creditCardBrand": "VISA",
                    "creditCardToken": "tok_secret_123",
                })
            case ("POST", "/subscriptions"):
                return httpx.Response(200, json={"id": "sub_1", "status": "ACTIVE", "nextDueDate": body.get("nextDueDate")})
            case ("DELETE", "/subscriptions/sub_1"):
                return httpx.Response(200, json={"deleted": True, "id": "sub_1"})
        return httpx.Response(404, json={"errors": [{"code": "not_found", "description": f"No route {path}"}]})


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def asaas_client(gateway):
    from app.services.asaas import AsaasClient

    return AsaasClient(api_key="test-asaas-key", transport=httpx.MockTransport(gateway))


@pytest_asyncio.fixture
async def client(db, redis, asaas_client) -> AsyncGenerator[AsyncClient, None]:
    from app.db.init import get_redis
    from app.main import app
    from app.services.asaas import get_asaas_client

    app.dependency_overrides[get_redis] = lambda: redis
    app.dependency_overrides[get_asaas_client] = lambda: asaas_client
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"User-Agent": "Mozilla/5.0 (pytest)"},
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def make_user(db):
    from app.core.security import hash_password
    from app.models.user import User

    async def _make(email: str = "student@example.com", role: str = "student", password: str | None = "secret123", **fields):
        user = User(
            email=email,
            name=fields.pop("name", "Test User"),
            role=role,
            password_hash=hash_password(password) if password else None,
            **fields,
        )
        await user.insert()
        return user

    return _make


@pytest.fixture
def auth_headers():
    from app.core.security import create_access_token

    def _headers(user) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(str(user.id), user.email, user.role)}"}

    return _headers


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture outgoing email instead of calling Resend."""
    sent: list[dict] = []

    async def fake_send(to, subject, body_html, transport=None):
        sent.append({"to": to, "subject": subject, "html": body_html})
        return True

    monkeypatch.setattr("app.services.email.send_email", fake_send)
    return sent
