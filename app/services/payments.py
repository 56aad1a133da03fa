"""Checkout through Asaas and reconciliation of gateway payment events."""

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.audit import log_admin_action
from app.core.config import get_settings
from app.core.exceptions import BadRequestError, NotFoundError, ServiceUnavailableError
from app.core.logging import get_logger
from app.core.pagination import Page, build_page, paginate
from app.db.init import parse_object_id
from app.models.counter import Counter
from app.models.fulfillment_order import FulfillmentItem, FulfillmentOrder, TimelineEvent
from app.models.payment import (
    Address,
    BoletoData,
    CreditCardData,
    ItemType,
    Payment,
    PaymentItem,
    PixData,
    can_transition,
)
from app.models.subscription import SUBSCRIPTION_PLANS
from app.models.user import EnrolledCourse, User, UserSubscription
from app.services import email as email_service
from app.services.asaas import (
    AsaasClient,
    CardHolderInfo,
    CreditCard,
    UnknownGatewayValue,
    get_asaas_client,
    map_payment_status,
    require_valid_cpf_cnpj,
)

log = get_logger(__name__)

PLAN_ACCESS_DAYS = 30
XP_PER_CURRENCY_UNIT = 10
PHYSICAL_ITEM_TYPES = ("product", "pod")

# Early-payment discount, late fee and monthly interest applied to every boleto.
BOLETO_DISCOUNT = {"value": 5, "dueDateLimitDays": 3, "type": "PERCENTAGE"}
BOLETO_FINE = {"value": 1}
BOLETO_INTEREST = {"value": 2}


class CheckoutItem(BaseModel):
    product_id: str | None = None
    product_slug: str | None = None
    type: ItemType
    name: str = Field(min_length=1)
    description: str | None = None
    quantity: int = Field(default=1, ge=1)
    unit_price: float = Field(ge=0)


def parse_gateway_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        log.warning("gateway_date_unparsed", value=value)
        return None


async def generate_order_number() -> str:
    """
    <PREFIX>-<YEAR>-<5-digit sequence> from a per-year counter.
    Each call reserves a distinct number, so concurrent checkouts never share one.
    """
    prefix = get_settings().order_number_prefix
    year = datetime.utcnow().year
    counters = Counter.get_motor_collection()
    while True:
        counter = await counters.find_one_and_update(
            {"name": f"order_number:{prefix}:{year}"},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        order_number = f"{prefix}-{year}-{counter['seq']:05d}"
        # Skip numbers already taken by payments stored before the counter existed.
        if not await Payment.find(Payment.order_number == order_number).count():
            return order_number


def _build_items(items: list[CheckoutItem]) -> list[PaymentItem]:
    return [
        PaymentItem(
            product_id=i.product_id,
            product_slug=i.product_slug,
            type=i.type,
            name=i.name,
            description=i.description,
            quantity=i.quantity,
            unit_price=i.unit_price,
            total_price=round(i.unit_price * i.quantity, 2),
        )
        for i in items
    ]


async def _save_billing_autofill(
    user: User,
    cpf_cnpj: str,
    phone: str | None,
    address: Address | None,
    customer_id: str | None,
) -> None:
    """Fill missing billing fields on the user; failures never break checkout."""
    try:
        billing = user.billing
        billing.cpf_cnpj = billing.cpf_cnpj or cpf_cnpj
        billing.phone = billing.phone or phone
        if address:
            billing.postal_code = billing.postal_code or address.postal_code
            billing.address = billing.address or address.street
            billing.address_number = billing.address_number or address.number
            billing.city = billing.city or address.city
            billing.state = billing.state or address.state
        if customer_id:
            billing.asaas_customer_id = customer_id
        user.updated_at = datetime.utcnow()
        await user.save()
    except Exception as e:
        log.warning("billing_autofill_failed", user_id=str(user.id), error=str(e))


async def create_payment(
    user: User,
    items: list[CheckoutItem],
    method: str,
    cpf_cnpj: str | None = None,
    phone: str | None = None,
    address: Address | None = None,
    credit_card: CreditCard | None = None,
    installments: int = 1,
    remote_ip: str | None = None,
    user_agent: str | None = None,
    client: AsaasClient | None = None,
) -> Payment:
    """Create the gateway charge and a local pending payment. Confirmation only ever comes from the webhook."""
    client = client or get_asaas_client()
    if not client.is_configured():
        raise ServiceUnavailableError("Payment gateway not configured")
    if not items:
        raise BadRequestError("At least one item is required")

    tax_id = require_valid_cpf_cnpj(cpf_cnpj or user.billing.cpf_cnpj)
    if not tax_id:
        raise BadRequestError("CPF/CNPJ is required")
    if method == "credit_card":
        if credit_card is None:
            raise BadRequestError("Credit card data is required")
        if address is None or not address.postal_code or not address.number:
            raise BadRequestError("Postal code and address number are required for card payments")

    payment_items = _build_items(items)
    subtotal = round(sum(i.total_price for i in payment_items), 2)
    if subtotal <= 0:
        raise BadRequestError("Order total must be greater than zero")

    order_number = await generate_order_number()
    customer = await client.get_or_create_customer({
        "name": user.name or user.email,
        "email": user.email,
        "cpfCnpj": tax_id,
        "mobilePhone": phone,
        "postalCode": address.postal_code if address else None,
        "addressNumber": address.number if address else None,
        "externalReference": str(user.id),
    })
    description = ", ".join(i.name for i in payment_items)[:500]

    pix_data = boleto_data = card_data = None
    match method:
        case "pix":
            charge = await client.create_pix_payment(customer["id"], subtotal, description, order_number)
            qr = await client.get_pix_qr_code(charge["id"])
            pix_data = PixData(
                qr_code_base64=qr.get("encodedImage"),
                qr_code_payload=qr.get("payload"),
                expiration_date=parse_gateway_date(qr.get("expirationDate")),
            )
        case "boleto":
            charge = await client.create_boleto_payment(
                customer["id"],
                subtotal,
                description,
                order_number,
                discount=BOLETO_DISCOUNT,
                fine=BOLETO_FINE,
                interest=BOLETO_INTEREST,
            )
            ident = await client.get_boleto_identification(charge["id"])
            boleto_data = BoletoData(
                bar_code=ident.get("barCode"),
                digitable_line=ident.get("identificationField"),
                bank_slip_url=charge.get("bankSlipUrl"),
                due_date=parse_gateway_date(charge.get("dueDate")),
            )
        case "credit_card":
            holder = CardHolderInfo(
                name=credit_card.holder_name,
                email=user.email,
                cpf_cnpj=tax_id,
                postal_code=address.postal_code,
                address_number=address.number,
                address_complement=address.complement,
                phone=phone,
            )
            charge = await client.create_credit_card_payment(
                customer["id"],
                subtotal,
                holder,
                credit_card=credit_card,
                description=description,
                external_reference=order_number,
                installment_count=installments,
                remote_ip=remote_ip,
            )
            card_info = charge.get("creditCard") or {}
            card_data = CreditCardData(
                brand=card_info.get("creditCardBrand"),
                last_four_digits=credit_card.to_asaas()["number"][-4:],
                holder_name=credit_card.holder_name,
                installments=installments,
                installment_value=round(subtotal / installments, 2) if installments > 1 else None,
            )
        case "undefined":
            charge = await client.create_undefined_payment(customer["id"], subtotal, description, order_number)
        case _:
            raise BadRequestError(f"Unsupported payment method: {method}")

    payment = Payment(
        order_number=order_number,
        user_id=user.id,
        user_email=user.email,
        user_name=user.name,
        customer_cpf_cnpj=tax_id,
        customer_phone=phone,
        customer_address=address,
        provider_payment_id=charge.get("id"),
        provider_customer_id=customer.get("id"),
        method=method,
        status="pending",
        items=payment_items,
        subtotal=subtotal,
        total=subtotal,
        pix_data=pix_data,
        boleto_data=boleto_data,
        credit_card_data=card_data,
        payment_url=charge.get("invoiceUrl"),
        invoice_url=charge.get("invoiceUrl"),
        expires_at=parse_gateway_date(charge.get("dueDate")),
        external_reference=order_number,
        ip_address=remote_ip,
        user_agent=user_agent,
    )
    payment.add_event("PAYMENT_CREATED", data={"gateway_status": charge.get("status")})
    await payment.insert()
    log.info("payment_created", order_number=order_number, method=method, total=subtotal, user_id=str(user.id))

    await _save_billing_autofill(user, tax_id, phone, address, customer.get("id"))
    return payment


async def list_user_payments(user: User, page: int = 1, limit: int = 20) -> Page:
    page, limit, skip = paginate(page, limit, max_limit=100)
    query = Payment.find(Payment.user_id == user.id)
    total = await query.count()
    items = await query.sort(-Payment.created_at).skip(skip).limit(limit).to_list()
    return build_page([p.summary() for p in items], page, limit, total)


async def get_user_payment(user: User, payment_id: str) -> Payment:
    payment = await Payment.get(parse_object_id(payment_id, "Payment not found"))
    if payment is None or payment.user_id != user.id:
        raise NotFoundError("Payment not found")
    return payment


async def admin_refund_payment(
    admin: User,
    payment_id: str,
    value: float | None = None,
    reason: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    client: AsaasClient | None = None,
) -> dict:
    """Ask the gateway for a refund. The local status changes when PAYMENT_REFUNDED arrives."""
    payment = await Payment.get(parse_object_id(payment_id, "Payment not found"))
    if payment is None:
        raise NotFoundError("Payment not found")
    if payment.status not in ("paid", "confirmed"):
        raise BadRequestError(f"Cannot refund a payment in status {payment.status}")
    if not payment.provider_payment_id:
        raise BadRequestError("Payment has no gateway charge")
    if value is not None and (value <= 0 or value > payment.total):
        raise BadRequestError("Refund value must be between 0 and the payment total")

    client = client or get_asaas_client()
    result = await client.refund_payment(payment.provider_payment_id, value=value, description=reason)
    payment.refund_reason = reason
    payment.add_event("REFUND_REQUESTED", data={"value": value, "admin_email": admin.email})
    payment.updated_at = datetime.utcnow()
    await payment.save()

    await log_admin_action(
        admin,
        "payment_refund_requested",
        "order",
        target_type="order",
        target_id=str(payment.id),
        details={"order_number": payment.order_number, "value": value or payment.total, "reason": reason},
        ip=ip,
        user_agent=user_agent,
    )
    log.info("payment_refund_requested", order_number=payment.order_number, admin_email=admin.email)
    return {"requested": True, "order_number": payment.order_number, "gateway_status": result.get("status")}


# Access

async def grant_access(payment: Payment) -> None:
    user = await User.get(payment.user_id)
    if user is None:
        log.warning("grant_access_user_missing", order_number=payment.order_number)
        return
    now = datetime.utcnow()
    for item in payment.items:
        match item.type:
            case "course":
                slug = item.product_slug or item.name
                existing = next((c for c in user.enrolled_courses if c.course_slug == slug), None)
                if existing:
                    existing.is_active = True
                else:
                    user.enrolled_courses.append(
                        EnrolledCourse(course_id=item.product_id, course_slug=slug, enrolled_at=now)
                    )
            case "subscription":
                plan = item.product_slug if item.product_slug in SUBSCRIPTION_PLANS else "pro"
                user.subscription = UserSubscription(
                    plan=plan,
                    status="active",
                    expires_at=now + timedelta(days=PLAN_ACCESS_DAYS),
                )
            case _:
                pass
    user.xp += int(payment.total // XP_PER_CURRENCY_UNIT)
    user.updated_at = now
    await user.save()
    log.info("access_granted", order_number=payment.order_number, user_id=str(user.id))


async def revoke_access(payment: Payment) -> None:
    user = await User.get(payment.user_id)
    if user is None:
        return
    slugs = {i.product_slug or i.name for i in payment.items if i.type == "course"}
    for course in user.enrolled_courses:
        if course.course_slug in slugs:
            course.is_active = False
    if any(i.type == "subscription" for i in payment.items):
        user.subscription = UserSubscription(plan="free", status="cancelled")
    user.xp = max(0, user.xp - int(payment.total // XP_PER_CURRENCY_UNIT))
    user.updated_at = datetime.utcnow()
    await user.save()
    log.info("access_revoked", order_number=payment.order_number, user_id=str(user.id))


async def ensure_fulfillment_order(payment: Payment) -> FulfillmentOrder | None:
    """One fulfillment order per paid payment with physical or POD items."""
    physical = [i for i in payment.items if i.type in PHYSICAL_ITEM_TYPES]
    if not physical:
        return None
    existing = await FulfillmentOrder.find_one(FulfillmentOrder.payment_id == payment.id)
    if existing:
        return existing
    order = FulfillmentOrder(
        order_number=payment.order_number,
        payment_id=payment.id,
        user_id=payment.user_id,
        user_email=payment.user_email,
        user_name=payment.user_name,
        items=[
            FulfillmentItem(
                product_id=i.product_id,
                product_slug=i.product_slug,
                type=i.type,
                name=i.name,
                quantity=i.quantity,
                unit_price=i.unit_price,
                total_price=i.total_price,
                fulfillment_type="pod" if i.type == "pod" else "physical",
            )
            for i in physical
        ],
        fulfillment_type="pod" if all(i.type == "pod" for i in physical) else "physical",
        timeline=[TimelineEvent(status="pending", message="Order received, awaiting fulfillment")],
    )
    try:
        await order.insert()
    except DuplicateKeyError:
        return await FulfillmentOrder.find_one(FulfillmentOrder.payment_id == payment.id)
    log.info("fulfillment_order_created", order_number=payment.order_number)
    return order


# Webhook reconciliation

def status_for_event(event: str, gateway_status: str | None) -> str | None:
    """Target local status for a PAYMENT_* event; the event name wins over the payload status."""
    match event:
        case "PAYMENT_CONFIRMED" | "PAYMENT_RECEIVED":
            return "paid"
        case "PAYMENT_REFUNDED" | "PAYMENT_PARTIALLY_REFUNDED":
            return "refunded"
        case "PAYMENT_DELETED":
            return "cancelled"
        case (
            "PAYMENT_CREDIT_CARD_CAPTURE_REFUSED"
            | "PAYMENT_REPROVED_BY_RISK_ANALYSIS"
            | "PAYMENT_CHARGEBACK_REQUESTED"
            | "PAYMENT_CHARGEBACK_DISPUTE"
            | "PAYMENT_AWAITING_CHARGEBACK_REVERSAL"
        ):
            return "failed"
        case "PAYMENT_OVERDUE":
            return "overdue"
        case "PAYMENT_AWAITING_RISK_ANALYSIS":
            return "processing"
    if gateway_status:
        return map_payment_status(gateway_status)
    return None


async def find_payment_for_event(provider_payment_id: str | None, external_reference: str | None) -> Payment | None:
    if provider_payment_id:
        payment = await Payment.find_one(Payment.provider_payment_id == provider_payment_id)
        if payment:
            return payment
    if external_reference:
        return await Payment.find_one(Payment.order_number == external_reference)
    return None


async def _on_paid(payment: Payment, data: dict[str, Any]) -> None:
    payment.paid_at = parse_gateway_date(data.get("paymentDate") or data.get("clientPaymentDate")) or datetime.utcnow()
    if payment.access_granted:
        return
    await grant_access(payment)
    payment.access_granted = True
    await ensure_fulfillment_order(payment)
    if payment.provider_subscription_id:
        from app.services.subscriptions import record_paid_charge
        await record_paid_charge(payment)
    await email_service.send_payment_confirmed(payment.user_email, payment.user_name, payment.order_number, payment.total)


async def _on_refunded(payment: Payment, event: str, data: dict[str, Any]) -> None:
    payment.refunded_at = datetime.utcnow()
    full = event == "PAYMENT_REFUNDED"
    payment.refund_amount = payment.total if full else data.get("refundedValue") or data.get("value")
    refunds = data.get("refunds") or []
    if refunds and refunds[-1].get("description"):
        payment.refund_reason = refunds[-1]["description"]
    if full and payment.access_granted:
        await revoke_access(payment)
        payment.access_granted = False


async def process_payment_event(event: str, event_id: str | None, body: dict[str, Any]) -> dict:
    data = body.get("payment") or {}
    provider_id = data.get("id")
    external_ref = data.get("externalReference")

    payment = await find_payment_for_event(provider_id, external_ref)
    if payment is None and data.get("subscription"):
        from app.services.subscriptions import create_subscription_charge
        payment = await create_subscription_charge(data)
    if payment is None:
        log.warning("asaas_webhook_unmatched", asaas_event=event, provider_payment_id=provider_id, external_reference=external_ref)
        return {"received": True, "warning": "Payment not found"}

    event_key = event_id or f"{event}:{provider_id}:{data.get('status')}"
    if payment.has_event(event_key):
        log.info("asaas_webhook_duplicate", asaas_event=event, order_number=payment.order_number)
        return {"received": True, "duplicate": True}

    record = {"gateway_status": data.get("status"), "value": data.get("value")}
    try:
        new_status = status_for_event(event, data.get("status"))
    except UnknownGatewayValue as e:
        log.warning("asaas_unknown_status", asaas_event=event, order_number=payment.order_number, error=str(e))
        payment.add_event(event, event_key, {**record, "error": str(e)})
        await payment.save()
        return {"received": True, "warning": str(e)}

    previous = payment.status
    if new_status and new_status != previous and not can_transition(previous, new_status):
        log.warning("payment_transition_rejected", order_number=payment.order_number, current=previous, target=new_status)
        payment.add_event(event, event_key, {**record, "rejected_transition": f"{previous}->{new_status}"})
        await payment.save()
        return {"received": True, "status": previous}

    payment.add_event(event, event_key, record)
    if new_status and new_status != previous:
        payment.status = new_status
        match new_status:
            case "paid":
                await _on_paid(payment, data)
            case "refunded":
                await _on_refunded(payment, event, data)
            case "cancelled":
                payment.cancelled_at = datetime.utcnow()
            case _:
                pass
        log.info("payment_status_changed", order_number=payment.order_number, previous=previous, status=new_status)
    elif new_status == "refunded" and event == "PAYMENT_REFUNDED":
        # Full refund after a partial one: status is already refunded but access is still granted.
        await _on_refunded(payment, event, data)
        log.info("payment_refund_completed", order_number=payment.order_number, refund_amount=payment.refund_amount)
    if data.get("invoiceUrl"):
        payment.invoice_url = data["invoiceUrl"]
    payment.updated_at = datetime.utcnow()
    await payment.save()
    return {"received": True, "status": payment.status}


async def process_invoice_event(event: str, body: dict[str, Any]) -> dict:
    invoice = body.get("invoice") or {}
    payment_ref = invoice.get("payment")
    payment = await find_payment_for_event(payment_ref, invoice.get("externalReference"))
    if payment is None:
        log.warning("asaas_invoice_unmatched", asaas_event=event, provider_payment_id=payment_ref)
        return {"received": True, "warning": "Payment not found"}
    url = invoice.get("pdfUrl") or invoice.get("invoiceUrl")
    if url:
        payment.invoice_url = url
        payment.updated_at = datetime.utcnow()
        await payment.save()
    return {"received": True}
