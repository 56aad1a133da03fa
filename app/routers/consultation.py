from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.deps import rate_limited
from app.models.consultation_request import CartItemSnapshot
from app.services import consultations as consultations_service

router = APIRouter()


class ConsultationRequestIn(BaseModel):
    name: str
    email: str
    company: str | None = None
    role: str | None = None
    phone: str | None = None
    details: str | None = None
    source: str | None = None
    referrer_url: str | None = None
    utm: dict[str, str] | None = None
    cart_items: list[CartItemSnapshot] = Field(default_factory=list)
    cart_total: float = Field(default=0.0, ge=0)


@router.post("/request", dependencies=[Depends(rate_limited("consultation"))])
async def create_consultation_request(body: ConsultationRequestIn):
    request = await consultations_service.create_request(
        body.name,
        body.email,
        company=body.company,
        role=body.role,
        phone=body.phone,
        details=body.details,
        source=body.source,
        referrer_url=body.referrer_url,
        utm=body.utm,
        cart_items=body.cart_items,
        cart_total=body.cart_total,
    )
    return {"success": True, "request_id": str(request.id), "booking_url": request.booking_url}


@router.get("/request")
async def get_consultation_request(id: str | None = None, email: str | None = None):
    request = await consultations_service.get_request(request_id=id, email=email)
    return {"success": True, "request": consultations_service.request_summary(request)}
