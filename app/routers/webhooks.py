"""Fulfillment partner callbacks. The signature is checked on the raw body before it is parsed."""

import orjson
from fastapi import APIRouter, Header, Request

from app.core.exceptions import BadRequestError
from app.core.logging import get_logger
from app.services import webhooks as webhooks_service

router = APIRouter()
log = get_logger(__name__)


async def _verified_body(request: Request, provider: str, signature: str | None) -> dict:
    payload = await request.body()
    webhooks_service.verify_partner_signature(provider, payload, signature)
    try:
        body = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise BadRequestError("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise BadRequestError("Invalid JSON body")
    return body


@router.post("/printify")
async def printify_webhook(
    request: Request,
    x_printify_signature: str | None = Header(default=None, alias="X-Printify-Signature"),
):
    body = await _verified_body(request, "printify", x_printify_signature)
    try:
        return await webhooks_service.handle_printify_webhook(body)
    except Exception as e:
        log.exception("printify_webhook_failed", printify_event=body.get("type"), error=str(e))
        return {"received": True, "error": "Processing failed"}


@router.post("/prodigi")
async def prodigi_webhook(
    request: Request,
    x_prodigi_signature: str | None = Header(default=None, alias="X-Prodigi-Signature"),
):
    body = await _verified_body(request, "prodigi", x_prodigi_signature)
    try:
        return await webhooks_service.handle_prodigi_webhook(body)
    except Exception as e:
        log.exception("prodigi_webhook_failed", prodigi_event=body.get("event"), error=str(e))
        return {"received": True, "error": "Processing failed"}
