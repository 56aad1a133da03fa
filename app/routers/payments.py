from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field

from app.core.exceptions import BadRequestError
from app.core.logging import get_logger
from app.deps import get_current_user
from app.models.payment import Address, PaymentMethod
from app.models.user import User
from app.services import payments as payments_service
from app.services import webhooks as webhooks_service
from app.services.asaas import AsaasClient, CreditCard, get_asaas_client
from app.services.rate_limit import get_client_ip

router = APIRouter()
log = get_logger(__name__)


class CreatePaymentRequest(BaseModel):
    items: list[payments_service.CheckoutItem] = Field(min_length=1)
    method: PaymentMethod
    cpf_cnpj: str | None = None
    phone: str | None = None
    address: Address | None = None
    credit_card: CreditCard | None = None
    installments: int = Field(default=1, ge=1, le=12)


@router.post("")
async def create_payment(
    body: CreatePaymentRequest,
    request: Request,
    user: User = Depends(get_current_user),
    client: AsaasClient = Depends(get_asaas_client),
):
    """Create a charge. The payment starts pending; the gateway webhook confirms it."""
    payment = await payments_service.create_payment(
        user,
        body.items,
        body.method,
        cpf_cnpj=body.cpf_cnpj,
        phone=body.phone,
        address=body.address,
        credit_card=body.credit_card,
        installments=body.installments,
        remote_ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        client=client,
    )
    return {"success": True, "payment": payment.summary()}


@router.get("")
async def list_payments(
    user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    return await payments_service.list_user_payments(user, page, limit)


@router.get("/webhook")
async def webhook_health():
    return {"status": "ok", "provider": "asaas", "message": "Webhook endpoint is active"}


@router.post("/webhook")
async def asaas_webhook(
    request: Request,
    asaas_access_token: str | None = Header(default=None, alias="asaas-access-token"),
    access_token: str | None = Query(default=None),
):
    """Asaas events. Verification failures are 401/503; processing failures are logged and acknowledged."""
    webhooks_service.verify_asaas_token(asaas_access_token, access_token)
    try:
        body = await request.json()
    except ValueError as e:
        raise BadRequestError("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise BadRequestError("Invalid JSON body")
    try:
        return await webhooks_service.handle_asaas_webhook(body)
    except Exception as e:
        log.exception("asaas_webhook_failed", asaas_event=body.get("event"), error=str(e))
        return {"received": True, "error": "Processing failed"}


@router.get("/{payment_id}")
async def get_payment(payment_id: str, user: User = Depends(get_current_user)):
    payment = await payments_service.get_user_payment(user, payment_id)
    return {"payment": payment.summary()}
