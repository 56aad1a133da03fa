import pytest

from app.core.encryption import decrypt_token
from app.models.payment import Payment
from app.models.subscription import Subscription
from app.models.user import User

pytestmark = pytest.mark.asyncio

VALID_CPF = "52998224725"
WEBHOOK_HEADERS = {"asaas-access-token": "test-webhook-token"}
CARD = {
    "holder_name": "Maria Silva",
    "number": "4111111111111111",
    "expiry_month": "12",
    "expiry_year": "2030",
    "ccv": "123",
}


async def _subscribe(client, headers, method="credit_card", plan_id="pro"):
    body = {"plan_id": plan_id, "cycle": "monthly", "method": method, "cpf_cnpj": VALID_CPF}
    if method == "credit_card":
        body.update(credit_card=CARD, address={"postal_code": "01001000", "number": "100"})
    return await client.post("/api/subscriptions", json=body, headers=headers)


async def test_plans_are_public(client):
    plans = (await client.get("/api/subscriptions/plans")).json()["plans"]
    assert {p["id"] for p in plans} == {"starter", "pro", "business"}


async def test_card_subscription_stores_encrypted_token(client, make_user, auth_headers, gateway):
    user = await make_user()
    resp = await _subscribe(client, auth_headers(user))
    assert resp.status_code == 200
    summary = resp.json()["subscription"]
    assert summary["status"] == "active"
    assert summary["value"] == 79.90
    assert summary["credit_card_last_four"] == "1111"

    sent = gateway.json_body()
    assert sent["cycle"] == "MONTHLY"
    assert sent["creditCardToken"] == "tok_secret_123"
    assert "creditCard" not in sent

    stored = await Subscription.find_one(Subscription.user_id == user.id)
    assert stored.credit_card_token_encrypted != "tok_secret_123"
    assert decrypt_token(stored.credit_card_token_encrypted) == "tok_secret_123"


async def test_unknown_plan_rejected(client, make_user, auth_headers, gateway):
    user = await make_user()
    resp = await _subscribe(client, auth_headers(user), method="pix", plan_id="platinum")
    assert resp.status_code == 400
    assert gateway.requests == []


async def test_cancel_subscription(client, make_user, auth_headers, gateway):
    user = await make_user()
    sub_id = (await _subscribe(client, auth_headers(user), method="pix")).json()["subscription"]["id"]

    other = await make_user(email="other@example.com")
    assert (await client.delete(f"/api/subscriptions/{sub_id}", headers=auth_headers(other))).status_code == 404

    resp = await client.delete(f"/api/subscriptions/{sub_id}", headers=auth_headers(user))
    assert resp.json()["subscription"]["status"] == "cancelled"
    assert gateway.paths()[-1] == "DELETE /subscriptions/sub_1"
    again = await client.delete(f"/api/subscriptions/{sub_id}", headers=auth_headers(user))
    assert again.status_code == 400


async def test_subscription_charge_from_webhook_grants_plan(client, make_user, auth_headers, sent_emails):
    user = await make_user()
    await _subscribe(client, auth_headers(user), method="pix")

    body = {
        "id": "evt_sub_charge",
        "event": "PAYMENT_RECEIVED",
        "payment": {
            "id": "pay_sub_1",
            "subscription": "sub_1",
            "status": "RECEIVED",
            "value": 79.90,
            "billingType": "PIX",
            "dueDate": "2026-05-01",
        },
    }
    resp = await client.post("/api/payments/webhook", json=body, headers=WEBHOOK_HEADERS)
    assert resp.json() == {"received": True, "status": "paid"}

    payment = await Payment.find_one(Payment.provider_payment_id == "pay_sub_1")
    assert payment.source == "subscription"
    assert payment.method == "pix"
    sub = await Subscription.find_one(Subscription.asaas_subscription_id == "sub_1")
    assert sub.total_payments == 1
    assert sub.total_paid == 79.90
    stored = await User.get(user.id)
    assert stored.subscription.plan == "pro"
    assert stored.subscription.status == "active"


async def test_subscription_deleted_event_downgrades_user(client, make_user, auth_headers):
    user = await make_user()
    await _subscribe(client, auth_headers(user), method="pix")
    body = {"id": "evt_sub_del", "event": "SUBSCRIPTION_DELETED", "subscription": {"id": "sub_1", "status": "INACTIVE"}}

    resp = await client.post("/api/payments/webhook", json=body, headers=WEBHOOK_HEADERS)
    assert resp.json() == {"received": True, "status": "cancelled"}
    duplicate = await client.post("/api/payments/webhook", json=body, headers=WEBHOOK_HEADERS)
    assert duplicate.json() == {"received": True, "duplicate": True}

    stored = await User.get(user.id)
    assert stored.subscription.plan == "free"
    assert stored.subscription.status == "cancelled"


async def test_subscription_updated_event(client, make_user, auth_headers):
    user = await make_user()
    await _subscribe(client, auth_headers(user), method="pix")
    body = {
        "event": "SUBSCRIPTION_UPDATED",
        "subscription": {"id": "sub_1", "status": "ACTIVE", "value": 799.0, "cycle": "YEARLY", "nextDueDate": "2027-01-10"},
    }
    resp = await client.post("/api/payments/webhook", json=body, headers=WEBHOOK_HEADERS)
    assert resp.json()["status"] == "active"
    sub = await Subscription.find_one(Subscription.asaas_subscription_id == "sub_1")
    assert sub.cycle == "yearly"
    assert sub.value == 799.0
    assert sub.next_due_date.year == 2027
