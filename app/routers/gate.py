from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from app.core.config import get_settings
from app.core.security import GATE_COOKIE_NAME, create_gate_cookie
from app.deps import rate_limited
from app.services import gate as gate_service
from app.services.rate_limit import get_client_ip

router = APIRouter()


class GateVerifyRequest(BaseModel):
    token: str = ""


@router.post("/verify", dependencies=[Depends(rate_limited("gate"))])
async def verify_gate(body: GateVerifyRequest, request: Request, response: Response):
    """Turnstile challenge; success sets a signed httpOnly cookie for 7 days."""
    settings = get_settings()
    ip = get_client_ip(request)
    await gate_service.verify_turnstile(body.token, ip)
    response.set_cookie(
        key=GATE_COOKIE_NAME,
        value=create_gate_cookie(ip),
        max_age=settings.gate_cookie_max_age,
        httponly=True,
        secure=settings.env == "production",
        samesite="lax",
        path="/",
    )
    return {"success": True}
