"""Recurring plans billed by Asaas."""

from datetime import datetime
from typing import Any

from app.core.encryption import encrypt_token
from app.core.exceptions import BadRequestError, NotFoundError, ServiceUnavailableError
from app.core.logging import get_logger
from app.db.init import parse_object_id
from app.models.payment import Address, Payment, PaymentItem, WebhookEvent
from app.models.subscription import SUBSCRIPTION_PLANS, Subscription
from app.models.user import User, UserSubscription
from app.services.asaas import (
    AsaasClient,
    CardHolderInfo,
    CreditCard,
    UnknownGatewayValue,
    default_due_date,
    get_asaas_client,
    map_billing_type_to_method,
    map_cycle_to_asaas,
    map_cycle_to_internal,
    map_method_to_billing_type,
    map_subscription_status,
    require_valid_cpf_cnpj,
)
from app.services.payments import generate_order_number, parse_gateway_date

log = get_logger(__name__)

PLAN_CYCLES = ("monthly", "yearly")


def list_plans() -> list[dict]:
    return list(SUBSCRIPTION_PLANS.values())


async def create_subscription(
    user: User,
    plan_id: str,
    cycle: str,
    method: str,
    cpf_cnpj: str | None = None,
    phone: str | None = None,
    address: Address | None = None,
    credit_card: CreditCard | None = None,
    remote_ip: str | None = None,
    client: AsaasClient | None = None,
) -> Subscription:
    client = client or get_asaas_client()
    if not client.is_configured():
        raise ServiceUnavailableError("Payment gateway not configured")
    plan = SUBSCRIPTION_PLANS.get(plan_id)
    if plan is None:
        raise BadRequestError(f"Unknown plan: {plan_id}")
    if cycle not in PLAN_CYCLES:
        raise BadRequestError("Cycle must be monthly or yearly")
    if method not in ("pix", "boleto", "credit_card"):
        raise BadRequestError(f"Unsupported payment method: {method}")
    tax_id = require_valid_cpf_cnpj(cpf_cnpj or user.billing.cpf_cnpj)
    if not tax_id:
        raise BadRequestError("CPF/CNPJ is required")

    value = plan[f"{cycle}_price"]
    customer = await client.get_or_create_customer({
        "name": user.name or user.email,
        "email": user.email,
        "cpfCnpj": tax_id,
        "mobilePhone": phone,
        "externalReference": str(user.id),
    })

    payload: dict[str, Any] = {
        "customer": customer["id"],
        "billingType": map_method_to_billing_type(method).value,
        "value": value,
        "nextDueDate": default_due_date(0 if method == "credit_card" else 1),
        "cycle": map_cycle_to_asaas(cycle).value,
        "description": f"{plan['name']} plan ({cycle})",
        "externalReference": f"sub:{user.id}:{plan_id}",
    }
    token_encrypted = last_four = brand = None
    if method == "credit_card":
        if credit_card is None or address is None or not address.postal_code or not address.number:
            raise BadRequestError("Card data, postal code and address number are required")
        holder = CardHolderInfo(
            name=credit_card.holder_name,
            email=user.email,
            cpf_cnpj=tax_id,
            postal_code=address.postal_code,
            address_number=address.number,
            phone=phone,
        )
        tokenized = await client.tokenize_credit_card(customer["id"], credit_card, holder, remote_ip or "")
        token = tokenized.get("creditCardToken")
        if not token:
            raise BadRequestError("Card could not be tokenized")
        payload["creditCardToken"] = token
        payload["creditCardHolderInfo"] = holder.to_asaas()
        payload["remoteIp"] = remote_ip
        token_encrypted = encrypt_token(token)
        last_four = tokenized.get("creditCardNumber") or credit_card.to_asaas()["number"][-4:]
        brand = tokenized.get("creditCardBrand")

    remote = await client.create_subscription(payload)
    sub = Subscription(
        user_id=user.id,
        user_email=user.email,
        user_name=user.name,
        plan_id=plan_id,
        plan_name=plan["name"],
        plan_slug=plan_id,
        asaas_subscription_id=remote["id"],
        asaas_customer_id=customer["id"],
        status=map_subscription_status(remote["status"]) if remote.get("status") else "pending",
        billing_type=method,
        value=value,
        cycle=cycle,
        description=payload["description"],
        next_due_date=datetime.fromisoformat(remote.get("nextDueDate") or payload["nextDueDate"]),
        credit_card_token_encrypted=token_encrypted,
        credit_card_last_four=last_four,
        credit_card_brand=brand,
        external_reference=payload["externalReference"],
    )
    await sub.insert()
    log.info("subscription_created", plan=plan_id, cycle=cycle, user_id=str(user.id))
    return sub


async def list_user_subscriptions(user: User) -> list[Subscription]:
    return await Subscription.find(Subscription.user_id == user.id).sort(-Subscription.created_at).to_list()


async def cancel_subscription(user: User, subscription_id: str, client: AsaasClient | None = None) -> Subscription:
    sub = await Subscription.get(parse_object_id(subscription_id, "Subscription not found"))
    if sub is None or sub.user_id != user.id:
        raise NotFoundError("Subscription not found")
    if sub.status == "cancelled":
        raise BadRequestError("Subscription already cancelled")
    client = client or get_asaas_client()
    await client.cancel_subscription(sub.asaas_subscription_id)
    sub.status = "cancelled"
    sub.cancelled_at = datetime.utcnow()
    sub.updated_at = sub.cancelled_at
    await sub.save()
    log.info("subscription_cancelled", subscription_id=str(sub.id), user_id=str(user.id))
    return sub


# Webhook side

async def create_subscription_charge(data: dict[str, Any]) -> Payment | None:
    """Local payment for a charge the gateway generated from a subscription."""
    sub = await Subscription.find_one(Subscription.asaas_subscription_id == data.get("subscription"))
    if sub is None:
        return None
    try:
        method = map_billing_type_to_method(data.get("billingType") or "UNDEFINED")
    except UnknownGatewayValue:
        method = "undefined"
    value = float(data.get("value") or sub.value)
    payment = Payment(
        order_number=await generate_order_number(),
        user_id=sub.user_id,
        user_email=sub.user_email,
        user_name=sub.user_name,
        provider_payment_id=data.get("id"),
        provider_customer_id=sub.asaas_customer_id,
        provider_subscription_id=sub.asaas_subscription_id,
        method=method,
        status="pending",
        items=[
            PaymentItem(
                product_slug=sub.plan_slug,
                type="subscription",
                name=f"{sub.plan_name} plan",
                unit_price=value,
                total_price=value,
            )
        ],
        subtotal=value,
        total=value,
        invoice_url=data.get("invoiceUrl"),
        payment_url=data.get("invoiceUrl"),
        expires_at=parse_gateway_date(data.get("dueDate")),
        source="subscription",
    )
    await payment.insert()
    log.info("subscription_charge_recorded", order_number=payment.order_number, subscription_id=str(sub.id))
    return payment


async def record_paid_charge(payment: Payment) -> None:
    sub = await Subscription.find_one(Subscription.asaas_subscription_id == payment.provider_subscription_id)
    if sub is None:
        return
    sub.total_payments += 1
    sub.total_paid = round(sub.total_paid + payment.total, 2)
    sub.last_payment_date = payment.paid_at or datetime.utcnow()
    if sub.status == "pending":
        sub.status = "active"
    sub.updated_at = datetime.utcnow()
    await sub.save()


async def _downgrade_user(sub: Subscription) -> None:
    user = await User.get(sub.user_id)
    if user is None:
        return
    user.subscription = UserSubscription(plan="free", status="cancelled")
    user.updated_at = datetime.utcnow()
    await user.save()


async def process_subscription_event(event: str, event_id: str | None, body: dict[str, Any]) -> dict:
    data = body.get("subscription") or {}
    sub = await Subscription.find_one(Subscription.asaas_subscription_id == data.get("id"))
    if sub is None:
        log.warning("asaas_subscription_unmatched", asaas_event=event, asaas_subscription_id=data.get("id"))
        return {"received": True, "warning": "Subscription not found"}

    event_key = event_id or f"{event}:{data.get('id')}:{data.get('status')}:{data.get('dateCreated')}"
    if sub.has_event(event_key):
        return {"received": True, "duplicate": True}
    sub.webhook_events.append(WebhookEvent(event=event, event_id=event_key, data={"status": data.get("status")}))

    match event:
        case "SUBSCRIPTION_DELETED" | "SUBSCRIPTION_INACTIVATED":
            if sub.status != "cancelled":
                sub.status = "cancelled"
                sub.cancelled_at = datetime.utcnow()
            await _downgrade_user(sub)
        case "SUBSCRIPTION_CREATED" | "SUBSCRIPTION_UPDATED":
            if data.get("status"):
                try:
                    sub.status = map_subscription_status(data["status"])
                except UnknownGatewayValue as e:
                    log.warning("asaas_unknown_subscription_status", error=str(e))
            if data.get("value") is not None:
                sub.value = float(data["value"])
            if data.get("cycle"):
                try:
                    sub.cycle = map_cycle_to_internal(data["cycle"])
                except UnknownGatewayValue as e:
                    log.warning("asaas_unknown_cycle", error=str(e))
            if data.get("nextDueDate"):
                sub.next_due_date = datetime.fromisoformat(data["nextDueDate"])
            if sub.status == "expired":
                await _downgrade_user(sub)
        case _:
            log.info("asaas_subscription_event_ignored", asaas_event=event)

    sub.updated_at = datetime.utcnow()
    await sub.save()
    return {"received": True, "status": sub.status}

