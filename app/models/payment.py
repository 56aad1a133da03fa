from datetime import datetime
from typing import Any, Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import BaseModel, Field

PaymentStatus = Literal[
    "pending",
    "processing",
    "confirmed",
    "paid",
    "overdue",
    "failed",
    "refunded",
    "cancelled",
]
PaymentMethod = Literal["pix", "boleto", "credit_card", "undefined"]
ItemType = Literal["course", "service", "subscription", "product", "pod"]

# Terminal states accept only refund transitions; refunded is final.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing", "confirmed", "paid", "overdue", "failed", "refunded", "cancelled"}),
    "processing": frozenset({"confirmed", "paid", "overdue", "failed", "refunded", "cancelled"}),
    "confirmed": frozenset({"paid", "failed", "refunded"}),
    "overdue": frozenset({"confirmed", "paid", "failed", "cancelled"}),
    "paid": frozenset({"refunded"}),
    "failed": frozenset({"refunded"}),
    "cancelled": frozenset({"refunded"}),
    "refunded": frozenset(),
}


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


class PaymentItem(BaseModel):
    product_id: str | None = None
    product_slug: str | None = None
    type: ItemType
    name: str
    description: str | None = None
    quantity: int = 1
    unit_price: float
    total_price: float


class Address(BaseModel):
    postal_code: str | None = None
    street: str | None = None
    number: str | None = None
    complement: str | None = None
    neighborhood: str | None = None
    city: str | None = None
    state: str | None = None


class PixData(BaseModel):
    qr_code_base64: str | None = None
    qr_code_payload: str | None = None  # copy-and-paste code
    expiration_date: datetime | None = None


class BoletoData(BaseModel):
    bar_code: str | None = None
    digitable_line: str | None = None
    bank_slip_url: str | None = None
    due_date: datetime | None = None


class CreditCardData(BaseModel):
    brand: str | None = None
    last_four_digits: str | None = None
    holder_name: str | None = None
    installments: int = 1
    installment_value: float | None = None


class WebhookEvent(BaseModel):
    event: str
    event_id: str | None = None
    received_at: datetime = Field(default_factory=datetime.utcnow)
    data: dict[str, Any] = Field(default_factory=dict)


class Payment(Document):
    order_number: Indexed(str, unique=True)
    user_id: PydanticObjectId
    user_email: str
    user_name: str = ""

    customer_cpf_cnpj: str | None = None
    customer_phone: str | None = None
    customer_address: Address | None = None

    provider: str = "asaas"
    provider_payment_id: str | None = None
    provider_customer_id: str | None = None
    provider_subscription_id: str | None = None

    method: PaymentMethod
    status: PaymentStatus = "pending"
    items: list[PaymentItem] = Field(default_factory=list)

    subtotal: float
    discount: float = 0.0
    fees: float = 0.0
    total: float
    currency: str = "BRL"

    pix_data: PixData | None = None
    boleto_data: BoletoData | None = None
    credit_card_data: CreditCardData | None = None

    payment_url: str | None = None
    invoice_url: str | None = None

    paid_at: datetime | None = None
    expires_at: datetime | None = None
    cancelled_at: datetime | None = None
    refunded_at: datetime | None = None
    refund_reason: str | None = None
    refund_amount: float | None = None

    access_granted: bool = False
    external_reference: str | None = None
    source: str = "checkout"
    ip_address: str | None = None
    user_agent: str | None = None
    notes: str | None = None

    webhook_events: list[WebhookEvent] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payments"
        indexes = [
            [("user_id", 1), ("status", 1)],
            [("provider", 1), ("provider_payment_id", 1)],
            [("created_at", -1)],
        ]

    def has_event(self, event_id: str | None) -> bool:
        return bool(event_id) and any(e.event_id == event_id for e in self.webhook_events)

    def add_event(self, event: str, event_id: str | None = None, data: dict[str, Any] | None = None) -> None:
        self.webhook_events.append(WebhookEvent(event=event, event_id=event_id, data=data or {}))

    def summary(self) -> dict:
        return {
            "id": str(self.id),
            "order_number": self.order_number,
            "status": self.status,
            "method": self.method,
            "total": self.total,
            "currency": self.currency,
            "payment_url": self.payment_url,
            "invoice_url": self.invoice_url,
            "items": [i.model_dump() for i in self.items],
            "pix_data": self.pix_data.model_dump(mode="json") if self.pix_data else None,
            "boleto_data": self.boleto_data.model_dump(mode="json") if self.boleto_data else None,
            "credit_card_data": self.credit_card_data.model_dump() if self.credit_card_data else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "created_at": self.created_at.isoformat(),
        }
