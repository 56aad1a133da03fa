"""Transactional email through the Resend HTTP API. Sending never raises."""

import html

import httpx

from app.core.config import get_settings
from app.core.logging import get_logger

log = get_logger(__name__)

RESEND_URL = "https://api.resend.com/emails"


async def send_email(to: str, subject: str, body_html: str, transport: httpx.AsyncBaseTransport | None = None) -> bool:
    settings = get_settings()
    if not settings.resend_api_key:
        log.warning("email_not_configured", to=to, subject=subject)
        return False
    payload = {
        "from": f"{settings.email_from_name} <{settings.email_from}>",
        "to": [to],
        "subject": subject,
        "html": body_html,
    }
    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            resp = await client.post(
                RESEND_URL,
                json=payload,
                headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            )
        resp.raise_for_status()
    except httpx.HTTPError as e:
        log.error("email_send_failed", to=to, subject=subject, error=str(e))
        return False
    log.info("email_sent", to=to, subject=subject)
    return True


def _layout(title: str, paragraphs: list[str]) -> str:
    settings = get_settings()
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return (
        f"<h2>{html.escape(title)}</h2>{body}"
        f'<p><a href="{html.escape(settings.site_url)}">{html.escape(settings.email_from_name)}</a></p>'
    )


async def send_payment_confirmed(to: str, name: str, order_number: str, total: float) -> bool:
    return await send_email(
        to,
        f"Payment confirmed - {order_number}",
        _layout(
            "Payment confirmed",
            [
                f"Hi {html.escape(name or 'there')},",
                f"We received your payment of R$ {total:.2f} for order <b>{html.escape(order_number)}</b>.",
            ],
        ),
    )


async def send_order_in_production(to: str, name: str, order_number: str) -> bool:
    return await send_email(
        to,
        f"Your order {order_number} is in production",
        _layout("In production", [f"Hi {html.escape(name or 'there')},", f"Order <b>{html.escape(order_number)}</b> is being made."]),
    )


async def send_order_shipped(
    to: str,
    name: str,
    order_number: str,
    carrier: str | None = None,
    tracking_number: str | None = None,
    tracking_url: str | None = None,
) -> bool:
    lines = [f"Hi {html.escape(name or 'there')},", f"Order <b>{html.escape(order_number)}</b> has shipped."]
    if tracking_number:
        lines.append(f"Carrier: {html.escape(carrier or '-')} / Tracking: {html.escape(tracking_number)}")
    if tracking_url:
        lines.append(f'<a href="{html.escape(tracking_url)}">Track your package</a>')
    return await send_email(to, f"Your order {order_number} has shipped", _layout("Shipped", lines))


async def send_order_delivered(to: str, name: str, order_number: str) -> bool:
    return await send_email(
        to,
        f"Your order {order_number} was delivered",
        _layout("Delivered", [f"Hi {html.escape(name or 'there')},", f"Order <b>{html.escape(order_number)}</b> was delivered."]),
    )


async def send_order_cancelled(to: str, name: str, order_number: str) -> bool:
    return await send_email(
        to,
        f"Your order {order_number} was cancelled",
        _layout("Cancelled", [f"Hi {html.escape(name or 'there')},", f"Order <b>{html.escape(order_number)}</b> was cancelled."]),
    )
