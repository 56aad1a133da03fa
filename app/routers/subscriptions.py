from typing import Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from app.deps import get_current_user
from app.models.payment import Address
from app.models.user import User
from app.services import subscriptions as subscriptions_service
from app.services.asaas import AsaasClient, CreditCard, get_asaas_client
from app.services.rate_limit import get_client_ip

router = APIRouter()


class CreateSubscriptionRequest(BaseModel):
    plan_id: str
    cycle: Literal["monthly", "yearly"] = "monthly"
    method: Literal["pix", "boleto", "credit_card"]
    cpf_cnpj: str | None = None
    phone: str | None = None
    address: Address | None = None
    credit_card: CreditCard | None = None


@router.get("/plans")
async def list_plans():
    return {"plans": subscriptions_service.list_plans()}


@router.post("")
async def create_subscription(
    body: CreateSubscriptionRequest,
    request: Request,
    user: User = Depends(get_current_user),
    client: AsaasClient = Depends(get_asaas_client),
):
    sub = await subscriptions_service.create_subscription(
        user,
        body.plan_id,
        body.cycle,
        body.method,
        cpf_cnpj=body.cpf_cnpj,
        phone=body.phone,
        address=body.address,
        credit_card=body.credit_card,
        remote_ip=get_client_ip(request),
        client=client,
    )
    return {"success": True, "subscription": sub.summary()}


@router.get("")
async def list_subscriptions(user: User = Depends(get_current_user)):
    subs = await subscriptions_service.list_user_subscriptions(user)
    return {"subscriptions": [s.summary() for s in subs]}


@router.delete("/{subscription_id}")
async def cancel_subscription(
    subscription_id: str,
    user: User = Depends(get_current_user),
    client: AsaasClient = Depends(get_asaas_client),
):
    sub = await subscriptions_service.cancel_subscription(user, subscription_id, client=client)
    return {"success": True, "subscription": sub.summary()}
