from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel

from app.core.audit import admin_log_dict, list_admin_logs, log_admin_action
from app.core.config import get_settings
from app.core.exceptions import ServiceUnavailableError, UnauthorizedError
from app.core.logging import get_logger
from app.core.pagination import build_page, paginate
from app.core.security import tokens_match
from app.db.init import get_redis, parse_object_id
from app.deps import require_admin
from app.models.fulfillment_order import FulfillmentStatus
from app.models.user import UserRole, User
from app.services import consultations as consultations_service
from app.services import payments as payments_service
from app.services import pricing as pricing_service
from app.services import users as user_service
from app.services import webhooks as webhooks_service
from app.services.asaas import AsaasClient, get_asaas_client
from app.services.rate_limit import flush_rate_limits, get_client_ip

router = APIRouter()
log = get_logger(__name__)


class AdminLoginRequest(BaseModel):
    email: str
    password: str


class UpdateUserRequest(BaseModel):
    role: UserRole


class RefundRequest(BaseModel):
    value: float | None = None
    reason: str | None = None


class ConsultationStatusRequest(BaseModel):
    status: Literal["scheduled", "completed", "cancelled"]
    scheduled_start_utc: datetime | None = None
    scheduled_end_utc: datetime | None = None


class TrackingUpdateRequest(BaseModel):
    status: FulfillmentStatus | None = None
    carrier: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    message: str | None = None


def _request_meta(request: Request) -> dict:
    return {"ip": get_client_ip(request), "user_agent": request.headers.get("user-agent")}


@router.post("/auth")
async def admin_auth(body: AdminLoginRequest, request: Request):
    """Admin login; issues a 24h token."""
    user, token = await user_service.admin_login(body.email, body.password, **_request_meta(request))
    return {
        "success": True,
        "token": token,
        "admin": {"id": str(user.id), "email": user.email, "name": user.name, "role": user.role},
    }


@router.get("/logs")
async def admin_logs(
    admin: User = Depends(require_admin),
    category: str | None = None,
    admin_email: str | None = None,
    action: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
):
    page, limit, skip = paginate(page, limit)
    logs, total = await list_admin_logs(skip, limit, category, admin_email, action, start_date, end_date)
    return build_page([admin_log_dict(entry) for entry in logs], page, limit, total)


@router.get("/users")
async def admin_list_users(
    admin: User = Depends(require_admin),
    role: str | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
):
    page, limit, skip = paginate(page, limit)
    users, total = await user_service.list_users(skip, limit, role=role, search=search)
    return build_page([u.public_dict() for u in users], page, limit, total)


@router.patch("/users/{user_id}")
async def admin_update_user(
    user_id: str,
    body: UpdateUserRequest,
    request: Request,
    admin: User = Depends(require_admin),
):
    user = await user_service.update_user_role(
        admin, parse_object_id(user_id, "User not found"), body.role, **_request_meta(request)
    )
    return {"success": True, "user": user.public_dict()}


@router.post("/payments/{payment_id}/refund")
async def admin_refund(
    payment_id: str,
    body: RefundRequest,
    request: Request,
    admin: User = Depends(require_admin),
    client: AsaasClient = Depends(get_asaas_client),
):
    """Request a refund at the gateway. The payment becomes refunded when the gateway confirms it."""
    return await payments_service.admin_refund_payment(
        admin, payment_id, value=body.value, reason=body.reason, client=client, **_request_meta(request)
    )


@router.post("/consultations/{request_id}/status")
async def admin_consultation_status(
    request_id: str,
    body: ConsultationStatusRequest,
    request: Request,
    admin: User = Depends(require_admin),
):
    consultation = await consultations_service.update_status(
        admin,
        request_id,
        body.status,
        scheduled_start_utc=body.scheduled_start_utc,
        scheduled_end_utc=body.scheduled_end_utc,
        **_request_meta(request),
    )
    return {"success": True, "request": consultations_service.request_summary(consultation)}


@router.post("/fulfillment/{order_id}/tracking")
async def admin_tracking_update(
    order_id: str,
    body: TrackingUpdateRequest,
    request: Request,
    admin: User = Depends(require_admin),
):
    """Record a carrier tracking poll result on a fulfillment order."""
    order, changed = await webhooks_service.record_tracking_update(
        parse_object_id(order_id, "Fulfillment order not found"),
        body.status,
        carrier=body.carrier,
        tracking_number=body.tracking_number,
        tracking_url=body.tracking_url,
        message=body.message,
    )
    await log_admin_action(
        admin,
        "fulfillment_tracking_updated",
        "order",
        target_type="order",
        target_id=str(order.id),
        details={"status": order.status, "tracking_number": body.tracking_number, "changed": changed},
        **_request_meta(request),
    )
    return {"success": True, "status": order.status, "changed": changed}


@router.post("/flush-ratelimits")
async def admin_flush_ratelimits(
    x_admin_secret: str | None = Header(default=None, alias="X-Admin-Secret"),
    redis=Depends(get_redis),
):
    """Clear every rate-limit and block key. Guarded by a shared secret, not a session."""
    secret = get_settings().admin_flush_secret
    if not secret:
        raise ServiceUnavailableError("Flush secret not configured")
    if not tokens_match(x_admin_secret, secret):
        raise UnauthorizedError("Invalid admin secret")
    deleted = await flush_rate_limits(redis)
    log.info("admin_flush_ratelimits", deleted=deleted)
    return {"success": True, "deleted": deleted}


@router.post("/service-prices/refresh")
async def admin_refresh_service_prices(
    request: Request,
    admin: User = Depends(require_admin),
    redis=Depends(get_redis),
):
    """Invalidate cached service prices after catalogue edits."""
    deleted = await pricing_service.refresh_service_prices(redis)
    await log_admin_action(
        admin, "service_prices_refreshed", "system", details={"slug_keys": deleted}, **_request_meta(request)
    )
    return {"success": True}
