"""Inbound webhooks: Asaas (shared token), Printify and Prodigi (HMAC-signed bodies)."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.core.config import get_settings
from app.core.exceptions import NotFoundError, ServiceUnavailableError, UnauthorizedError
from app.core.logging import get_logger
from app.core.security import verify_webhook_signature
from app.models.fulfillment_order import FulfillmentOrder, SupplierOrder
from app.models.pod_order import PODOrder, Shipment
from app.models.user import PODEarnings, User
from app.services import email as email_service
from app.services import payments as payments_service
from app.services import subscriptions as subscriptions_service
from app.services.asaas import verify_webhook_token

log = get_logger(__name__)

TERMINAL_FULFILLMENT = ("delivered", "cancelled", "refunded")
FULFILLMENT_RANK = {
    "pending": 0,
    "processing": 1,
    "awaiting_supplier": 1,
    "in_production": 2,
    "shipped": 3,
    "delivered": 4,
}


# Asaas

def verify_asaas_token(header_token: str | None, query_token: str | None) -> None:
    expected = get_settings().asaas_webhook_token
    if not expected:
        raise ServiceUnavailableError("Webhook token not configured")
    if not verify_webhook_token(header_token or query_token, expected):
        raise UnauthorizedError("Invalid webhook token")


async def handle_asaas_webhook(body: dict[str, Any]) -> dict:
    event = body.get("event") or ""
    event_id = body.get("id")
    log.info("asaas_webhook_received", asaas_event=event, event_id=event_id)
    if event.startswith("PAYMENT_"):
        return await payments_service.process_payment_event(event, event_id, body)
    if event.startswith("SUBSCRIPTION_"):
        return await subscriptions_service.process_subscription_event(event, event_id, body)
    if event.startswith("INVOICE_"):
        return await payments_service.process_invoice_event(event, body)
    log.info("asaas_webhook_ignored", asaas_event=event)
    return {"received": True, "ignored": True}


# Fulfillment partners

def verify_partner_signature(provider: str, payload: bytes, signature: str | None) -> None:
    """Raises before any side effect: 503 without a configured secret, 401 on mismatch."""
    settings = get_settings()
    secret = settings.printify_webhook_secret if provider == "printify" else settings.prodigi_webhook_secret
    if not secret:
        raise ServiceUnavailableError("Webhook secret not configured")
    if not verify_webhook_signature(payload, signature, secret):
        log.warning("webhook_signature_invalid", provider=provider)
        raise UnauthorizedError("Invalid webhook signature")


@dataclass
class FulfillmentUpdate:
    """A partner event normalized to what changes on our side."""
    provider: str
    provider_order_id: str | None
    merchant_reference: str | None
    status: str | None
    message: str
    provider_status: str | None = None
    carrier: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    line_items: list[dict[str, Any]] = field(default_factory=list)
    sent_to_production_at: datetime | None = None
    details: dict[str, Any] = field(default_factory=dict)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def parse_printify_event(body: dict[str, Any]) -> FulfillmentUpdate | None:
    event = body.get("type")
    resource = body.get("resource") or {}
    data = resource.get("data") or {}
    order_id = data.get("id") or resource.get("id")
    reference = data.get("external_id")
    base = {"provider": "printify", "provider_order_id": order_id, "merchant_reference": reference}

    match event:
        case "order:created":
            return FulfillmentUpdate(
                **base, status="processing", provider_status=data.get("status"),
                message="Order confirmed by Printify",
            )
        case "order:updated":
            provider_status = data.get("status")
            match provider_status:
                case "pending" | "on-hold":
                    status = "processing"
                case "sending-to-production" | "in-production":
                    status = "in_production"
                case "fulfilled" | "shipped":
                    status = "shipped"
                case "canceled":
                    status = "cancelled"
                case _:
                    status = None
            return FulfillmentUpdate(
                **base, status=status, provider_status=provider_status,
                message=f"Printify status: {provider_status}", line_items=data.get("line_items") or [],
            )
        case "order:sent-to-production":
            return FulfillmentUpdate(
                **base, status="in_production", provider_status="in-production", message="Order in production",
                sent_to_production_at=_parse_time(data.get("sent_to_production_at")),
            )
        case "order:shipment:created":
            shipments = data.get("shipments") or []
            if not shipments:
                return None
            s = shipments[0]
            return FulfillmentUpdate(
                **base, status="shipped", provider_status="shipped",
                message=f"Shipped via {s.get('carrier') or 'carrier'}",
                carrier=s.get("carrier"), tracking_number=s.get("number"), tracking_url=s.get("url"),
            )
        case "order:shipment:delivered":
            return FulfillmentUpdate(**base, status="delivered", provider_status="delivered", message="Order delivered")
    return None


def parse_prodigi_event(body: dict[str, Any]) -> FulfillmentUpdate | None:
    event = body.get("event")
    order = body.get("order") or {}
    shipments = order.get("shipments") or []
    base = {"provider": "prodigi", "provider_order_id": order.get("id"), "merchant_reference": order.get("merchantReference")}

    match event:
        case "order.status.changed":
            stage = ((order.get("status") or {}).get("stage") or "").lower()
            match stage:
                case "inprogress" | "in progress" | "awaiting_assets":
                    status = "processing"
                case "complete":
                    status = "shipped" if shipments else None
                case "cancelled":
                    status = "cancelled"
                case _:
                    status = None
            return FulfillmentUpdate(**base, status=status, provider_status=stage or None, message=f"Prodigi stage: {stage}")
        case "order.shipment.sent":
            if not shipments:
                return None
            s = shipments[0]
            carrier = (s.get("carrier") or {}).get("name") or "Prodigi"
            tracking = s.get("tracking") or {}
            return FulfillmentUpdate(
                **base, status="shipped", provider_status="shipped", message=f"Shipped via {carrier}",
                carrier=carrier, tracking_number=tracking.get("number"), tracking_url=tracking.get("url"),
            )
        case "order.shipment.delivered":
            return FulfillmentUpdate(**base, status="delivered", provider_status="delivered", message="Order delivered")
        case "order.cancelled":
            reason = (order.get("cancellation") or {}).get("reason") or "No reason given"
            return FulfillmentUpdate(
                **base, status="cancelled", provider_status="cancelled",
                message=f"Order cancelled: {reason}", details={"reason": reason},
            )
    return None


def _should_move(current: str, target: str | None) -> bool:
    if target is None or target == current or current in TERMINAL_FULFILLMENT:
        return False
    if target in ("cancelled", "failed", "refunded"):
        return True
    return FULFILLMENT_RANK.get(target, 0) > FULFILLMENT_RANK.get(current, 0)


async def _find_fulfillment_order(update: FulfillmentUpdate) -> FulfillmentOrder | None:
    clauses = []
    if update.provider_order_id:
        clauses.append({"supplier_orders.provider_order_id": update.provider_order_id})
    if update.merchant_reference:
        clauses.append({"order_number": update.merchant_reference})
    if not clauses:
        return None
    return await FulfillmentOrder.find_one({"$or": clauses})


async def _find_pod_order(update: FulfillmentUpdate) -> PODOrder | None:
    clauses = []
    if update.provider_order_id:
        clauses.append({"printify_order_id": update.provider_order_id})
    if update.merchant_reference:
        clauses.append({"order_number": update.merchant_reference})
    if not clauses:
        return None
    return await PODOrder.find_one({"$or": clauses})


async def _notify(order: FulfillmentOrder, update: FulfillmentUpdate) -> None:
    match order.status:
        case "in_production":
            await email_service.send_order_in_production(order.user_email, order.user_name, order.order_number)
        case "shipped":
            await email_service.send_order_shipped(
                order.user_email,
                order.user_name,
                order.order_number,
                carrier=update.carrier,
                tracking_number=update.tracking_number,
                tracking_url=update.tracking_url,
            )
        case "delivered":
            await email_service.send_order_delivered(order.user_email, order.user_name, order.order_number)
        case "cancelled":
            await email_service.send_order_cancelled(order.user_email, order.user_name, order.order_number)
        case _:
            pass


async def _apply_to_fulfillment_order(order: FulfillmentOrder, update: FulfillmentUpdate) -> bool:
    now = datetime.utcnow()
    supplier = order.supplier_order(update.provider_order_id, update.provider)
    if supplier is None and update.provider_order_id:
        supplier = SupplierOrder(provider=update.provider, provider_order_id=update.provider_order_id, submitted_at=now)
        order.supplier_orders.append(supplier)
    if supplier is not None:
        supplier.provider_order_id = supplier.provider_order_id or update.provider_order_id
        if update.provider_status:
            supplier.provider_status = update.provider_status
        if update.status == "processing" and supplier.confirmed_at is None:
            supplier.confirmed_at = now
        if update.status == "shipped" and supplier.actual_ship_date is None:
            supplier.actual_ship_date = now
        supplier.last_sync_at = now

    if update.tracking_number:
        order.shipping.carrier = update.carrier
        order.shipping.tracking_number = update.tracking_number
        order.shipping.tracking_url = update.tracking_url

    moved = False
    if _should_move(order.status, update.status):
        notify = update.status in ("in_production", "shipped", "delivered", "cancelled")
        details = {**update.details}
        if update.tracking_number:
            details.update(carrier=update.carrier, tracking_number=update.tracking_number, tracking_url=update.tracking_url)
        moved = order.move_to(update.status, update.message, details, notified=notify)
        if moved and update.status == "delivered":
            order.completed_at = now
            order.shipping.actual_delivery = now
            for item in order.items:
                item.status = "delivered"
                item.delivered_at = now
        if moved and update.status == "cancelled":
            order.cancelled_at = now
    order.updated_at = now
    await order.save()

    if moved:
        await _notify(order, update)
    return moved


async def _finalize_creator_earnings(pod: PODOrder) -> None:
    if pod.earnings_finalized or not pod.creator_id:
        return
    creator = await User.get(pod.creator_id)
    if creator is not None:
        earnings = creator.pod_earnings or PODEarnings()
        commission = pod.total_creator_commission
        earnings.pending_earnings = max(0.0, round(earnings.pending_earnings - commission, 2))
        earnings.total_earnings = round(earnings.total_earnings + commission, 2)
        creator.pod_earnings = earnings
        await creator.save()
        log.info("creator_earnings_finalized", creator_id=str(creator.id), commission=commission)
    pod.earnings_finalized = True


async def _apply_to_pod_order(pod: PODOrder, update: FulfillmentUpdate) -> None:
    now = datetime.utcnow()
    if update.provider_order_id and not pod.printify_order_id:
        pod.printify_order_id = update.provider_order_id
    for li in update.line_items:
        item = next((i for i in pod.items if i.printify_product_id == li.get("product_id")), None)
        if item:
            item.printify_status = li.get("status")
            item.sent_to_production_at = _parse_time(li.get("sent_to_production_at")) or item.sent_to_production_at
    if update.tracking_number and pod.shipment(update.tracking_number) is None:
        pod.shipments.append(
            Shipment(
                carrier=update.carrier or update.provider,
                tracking_number=update.tracking_number,
                tracking_url=update.tracking_url or "",
                shipped_at=now,
            )
        )
    if _should_move(pod.status, update.status):
        pod.status = update.status
        match update.status:
            case "in_production":
                pod.sent_to_production_at = update.sent_to_production_at or now
            case "shipped":
                pod.shipped_at = now
            case "delivered":
                pod.delivered_at = now
                for s in pod.shipments:
                    s.status = "delivered"
                    s.delivered_at = s.delivered_at or now
            case _:
                pass
    if pod.status == "delivered":
        await _finalize_creator_earnings(pod)
    pod.updated_at = now
    await pod.save()


async def apply_fulfillment_update(update: FulfillmentUpdate) -> dict:
    order = await _find_fulfillment_order(update)
    pod = await _find_pod_order(update)
    if order is None and pod is None:
        log.warning(
            "fulfillment_webhook_unmatched",
            provider=update.provider,
            provider_order_id=update.provider_order_id,
            merchant_reference=update.merchant_reference,
        )
        return {"received": True, "warning": "Order not found"}

    moved = False
    if order is not None:
        moved = await _apply_to_fulfillment_order(order, update)
    if pod is not None:
        await _apply_to_pod_order(pod, update)
    log.info(
        "fulfillment_webhook_applied",
        provider=update.provider,
        provider_order_id=update.provider_order_id,
        status=update.status,
        changed=moved,
    )
    return {"received": True, "changed": moved}


async def handle_printify_webhook(body: dict[str, Any]) -> dict:
    update = parse_printify_event(body)
    if update is None:
        log.info("printify_webhook_ignored", printify_event=body.get("type"))
        return {"received": True, "ignored": True}
    return await apply_fulfillment_update(update)


async def handle_prodigi_webhook(body: dict[str, Any]) -> dict:
    update = parse_prodigi_event(body)
    if update is None:
        log.info("prodigi_webhook_ignored", prodigi_event=body.get("event"))
        return {"received": True, "ignored": True}
    return await apply_fulfillment_update(update)


async def record_tracking_update(
    order_id,
    status: str | None,
    carrier: str | None = None,
    tracking_number: str | None = None,
    tracking_url: str | None = None,
    message: str | None = None,
) -> tuple[FulfillmentOrder, bool]:
    """Apply a carrier tracking result to a fulfillment order through the same rules as partner events."""
    order = await FulfillmentOrder.get(order_id)
    if order is None:
        raise NotFoundError("Fulfillment order not found")
    supplier = order.supplier_orders[0] if order.supplier_orders else None
    update = FulfillmentUpdate(
        provider=supplier.provider if supplier else "other",
        provider_order_id=supplier.provider_order_id if supplier else None,
        merchant_reference=order.order_number,
        status=status,
        message=message or f"Tracking update: {status or 'no status change'}",
        carrier=carrier,
        tracking_number=tracking_number,
        tracking_url=tracking_url,
    )
    moved = await _apply_to_fulfillment_order(order, update)
    return order, moved
