"""Cloudflare Turnstile check in front of the site."""

import httpx

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, ForbiddenError, ServiceUnavailableError
from app.core.logging import get_logger

log = get_logger(__name__)

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


async def verify_turnstile(token: str, client_ip: str | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
    """Raise ForbiddenError unless Turnstile accepts the token."""
    if not token:
        raise BadRequestError("Token missing")
    secret = get_settings().turnstile_secret_key
    if not secret:
        raise ServiceUnavailableError("Gate verification not configured")
    form = {"secret": secret, "response": token}
    if client_ip and client_ip != "unknown":
        form["remoteip"] = client_ip
    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            resp = await client.post(TURNSTILE_VERIFY_URL, data=form)
        result = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        log.error("turnstile_unreachable", error=str(e))
        raise ForbiddenError("Verification failed") from e
    if not result.get("success"):
        log.warning("turnstile_rejected", error_codes=result.get("error-codes"))
        raise ForbiddenError("Verification failed")
