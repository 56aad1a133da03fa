import pytest
from beanie import PydanticObjectId

from app.core.audit import log_admin_action
from app.models.admin_log import AdminLog
from app.models.fulfillment_order import FulfillmentOrder
from app.models.user import User

pytestmark = pytest.mark.asyncio


async def test_admin_login_issues_day_token_and_logs(client, make_user):
    await make_user(email="admin@example.com", role="admin")
    resp = await client.post("/api/admin/auth", json={"email": "admin@example.com", "password": "secret123"})
    assert resp.status_code == 200
    assert resp.json()["admin"]["role"] == "admin"

    entry = await AdminLog.find_one(AdminLog.action == "admin_login")
    assert entry.category == "auth"
    assert entry.user_agent == "Mozilla/5.0 (pytest)"


async def test_admin_login_rejections(client, make_user):
    await make_user(email="admin@example.com", role="admin")
    await make_user(email="student@example.com")
    bad = await client.post("/api/admin/auth", json={"email": "admin@example.com", "password": "wrong"})
    assert bad.status_code == 401
    unknown = await client.post("/api/admin/auth", json={"email": "ghost@example.com", "password": "x"})
    assert unknown.status_code == 401
    student = await client.post("/api/admin/auth", json={"email": "student@example.com", "password": "secret123"})
    assert student.status_code == 403


async def test_audit_write_failure_does_not_break_action(client, make_user, monkeypatch):
    await make_user(email="admin@example.com", role="admin")

    async def broken_insert(self, *args, **kwargs):
        raise RuntimeError("write failed")

    monkeypatch.setattr(AdminLog, "insert", broken_insert)
    resp = await client.post("/api/admin/auth", json={"email": "admin@example.com", "password": "secret123"})
    assert resp.status_code == 200


async def test_log_admin_action_swallows_store_errors(make_user, monkeypatch):
    admin = await make_user(email="admin@example.com", role="admin")

    async def broken_insert(self, *args, **kwargs):
        raise RuntimeError("write failed")

    monkeypatch.setattr(AdminLog, "insert", broken_insert)
    assert await log_admin_action(admin, "settings_changed", "system") is None


async def test_logs_listing_filters_and_paginates(client, make_user, auth_headers):
    admin = await make_user(email="admin@example.com", role="admin")
    for i in range(3):
        await log_admin_action(admin, f"user_role_changed_{i}", "user")
    await log_admin_action(admin, "payment_refund_requested", "order")

    resp = await client.get("/api/admin/logs", params={"category": "user", "limit": 2}, headers=auth_headers(admin))
    data = resp.json()
    assert data["total"] == 3
    assert data["pages"] == 2
    assert len(data["items"]) == 2
    assert all(item["category"] == "user" for item in data["items"])

    by_action = await client.get("/api/admin/logs", params={"action": "REFUND"}, headers=auth_headers(admin))
    assert by_action.json()["total"] == 1


async def test_admin_routes_require_admin_role(client, make_user, auth_headers):
    student = await make_user()
    assert (await client.get("/api/admin/logs", headers=auth_headers(student))).status_code == 403
    assert (await client.get("/api/admin/users", headers=auth_headers(student))).status_code == 403
    assert (await client.get("/api/admin/logs")).status_code == 401


async def test_list_users_search(client, make_user, auth_headers):
    admin = await make_user(email="admin@example.com", role="admin")
    await make_user(email="maria@example.com", name="Maria")
    await make_user(email="joao@example.com", name="Joao", role="lead", password=None)

    resp = await client.get("/api/admin/users", params={"search": "mar"}, headers=auth_headers(admin))
    assert [u["email"] for u in resp.json()["items"]] == ["maria@example.com"]
    leads = await client.get("/api/admin/users", params={"role": "lead"}, headers=auth_headers(admin))
    assert leads.json()["total"] == 1


async def test_update_user_role_is_logged(client, make_user, auth_headers):
    admin = await make_user(email="admin@example.com", role="admin")
    student = await make_user()
    resp = await client.patch(
        f"/api/admin/users/{student.id}", json={"role": "instructor"}, headers=auth_headers(admin)
    )
    assert resp.status_code == 200
    assert (await User.get(student.id)).role == "instructor"
    entry = await AdminLog.find_one(AdminLog.action == "user_role_changed")
    assert entry.target_id == str(student.id)
    assert entry.details == {"email": student.email, "from": "student", "to": "instructor"}


async def test_admin_cannot_demote_self(client, make_user, auth_headers):
    admin = await make_user(email="admin@example.com", role="admin")
    resp = await client.patch(f"/api/admin/users/{admin.id}", json={"role": "student"}, headers=auth_headers(admin))
    assert resp.status_code == 400


async def test_update_unknown_role_is_validation_error(client, make_user, auth_headers):
    admin = await make_user(email="admin@example.com", role="admin")
    student = await make_user()
    resp = await client.patch(f"/api/admin/users/{student.id}", json={"role": "owner"}, headers=auth_headers(admin))
    assert resp.status_code == 400


async def test_tracking_update_moves_order_forward_only(client, make_user, auth_headers, sent_emails):
    admin = await make_user(email="admin@example.com", role="admin")
    order = FulfillmentOrder(
        order_number="FP-2026-00003",
        payment_id=PydanticObjectId(),
        user_id=PydanticObjectId(),
        user_email="buyer@example.com",
        status="in_production",
    )
    await order.insert()
    url = f"/api/admin/fulfillment/{order.id}/tracking"

    shipped = await client.post(
        url, json={"status": "shipped", "carrier": "Correios", "tracking_number": "BR123"}, headers=auth_headers(admin)
    )
    assert shipped.json() == {"success": True, "status": "shipped", "changed": True}
    back = await client.post(url, json={"status": "in_production"}, headers=auth_headers(admin))
    assert back.json() == {"success": True, "status": "shipped", "changed": False}

    stored = await FulfillmentOrder.get(order.id)
    assert stored.shipping.tracking_number == "BR123"
    assert len(sent_emails) == 1
    assert await AdminLog.find(AdminLog.action == "fulfillment_tracking_updated").count() == 2


async def test_tracking_update_unknown_order(client, make_user, auth_headers):
    admin = await make_user(email="admin@example.com", role="admin")
    resp = await client.post(
        f"/api/admin/fulfillment/{PydanticObjectId()}/tracking", json={"status": "shipped"}, headers=auth_headers(admin)
    )
    assert resp.status_code == 404
