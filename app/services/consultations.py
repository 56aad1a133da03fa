"""Consultation requests captured from the service cart."""

from datetime import datetime
from typing import Any

from app.core.audit import log_admin_action
from app.core.config import get_settings
from app.core.exceptions import BadRequestError, NotFoundError
from app.core.logging import get_logger
from app.db.init import parse_object_id
from app.models.consultation_request import CONSULTATION_TRANSITIONS, CartItemSnapshot, ConsultationRequest
from app.models.user import User
from app.services import users as users_service

log = get_logger(__name__)


async def create_request(
    name: str,
    email: str,
    company: str | None = None,
    role: str | None = None,
    phone: str | None = None,
    details: str | None = None,
    source: str | None = None,
    referrer_url: str | None = None,
    utm: dict[str, str] | None = None,
    cart_items: list[CartItemSnapshot] | None = None,
    cart_total: float = 0.0,
) -> ConsultationRequest:
    name = (name or "").strip()
    email = users_service.normalize_email(email)
    if not name or not email:
        raise BadRequestError("Name and email are required")

    user_id = None
    try:
        lead = await users_service.upsert_lead(name, email, source=source or "consultation", lead_type="consultation")
        user_id = lead.id
    except Exception as e:
        # The request is still stored without a linked user.
        log.warning("consultation_lead_upsert_failed", email=email, error=str(e))

    request = ConsultationRequest(
        user_id=user_id,
        name=name,
        email=email,
        company=company.strip() if company else None,
        role=role.strip() if role else None,
        phone=phone.strip() if phone else None,
        details=details.strip() if details else None,
        source=source or "unknown",
        referrer_url=referrer_url,
        utm=utm or {},
        cart_items=cart_items or [],
        cart_total=cart_total,
        booking_url=get_settings().booking_url or None,
        status="pending",
    )
    await request.insert()
    log.info("consultation_requested", email=email, cart_items=len(request.cart_items), source=request.source)
    return request


async def get_request(request_id: str | None = None, email: str | None = None) -> ConsultationRequest:
    if not request_id and not email:
        raise BadRequestError("Request id or email is required")
    if request_id:
        found = await ConsultationRequest.get(parse_object_id(request_id, "Consultation request not found"))
    else:
        found = await ConsultationRequest.find(
            ConsultationRequest.email == users_service.normalize_email(email)
        ).sort(-ConsultationRequest.created_at).first_or_none()
    if found is None:
        raise NotFoundError("Consultation request not found")
    return found


async def update_status(
    admin: User,
    request_id: str,
    status: str,
    scheduled_start_utc: datetime | None = None,
    scheduled_end_utc: datetime | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> ConsultationRequest:
    request = await get_request(request_id=request_id)
    allowed = CONSULTATION_TRANSITIONS.get(request.status, frozenset())
    if status not in allowed:
        raise BadRequestError(f"Cannot move consultation from {request.status} to {status}")
    previous = request.status
    request.status = status
    if scheduled_start_utc:
        request.scheduled_start_utc = scheduled_start_utc
    if scheduled_end_utc:
        request.scheduled_end_utc = scheduled_end_utc
    request.updated_at = datetime.utcnow()
    await request.save()
    await log_admin_action(
        admin,
        "consultation_status_changed",
        "order",
        target_type="order",
        target_id=str(request.id),
        details={"from": previous, "to": status},
        ip=ip,
        user_agent=user_agent,
    )
    return request


def request_summary(request: ConsultationRequest) -> dict[str, Any]:
    return {
        "id": str(request.id),
        "name": request.name,
        "email": request.email,
        "status": request.status,
        "source": request.source,
        "cart_items": [i.model_dump() for i in request.cart_items],
        "cart_total": request.cart_total,
        "booking_url": request.booking_url,
        "scheduled_start_utc": request.scheduled_start_utc.isoformat() if request.scheduled_start_utc else None,
        "created_at": request.created_at.isoformat(),
    }
