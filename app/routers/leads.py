from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.deps import rate_limited
from app.services import users as user_service

router = APIRouter()


class LeadRequest(BaseModel):
    name: str
    email: str
    source: str | None = None
    lead_type: str | None = None
    referrer_url: str | None = None
    details: str | None = None
    utm: dict[str, str] | None = None


@router.post("", dependencies=[Depends(rate_limited("leads"))])
async def capture_lead(body: LeadRequest):
    lead = await user_service.upsert_lead(
        body.name,
        body.email,
        source=body.source,
        lead_type=body.lead_type,
        details={"referrer_url": body.referrer_url, "details": body.details, "utm": body.utm or {}},
    )
    return {"success": True, "lead": {"id": str(lead.id), "email": lead.email, "name": lead.name, "role": lead.role}}
