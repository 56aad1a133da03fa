from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field

from app.models.payment import PaymentMethod, WebhookEvent

SubscriptionStatus = Literal["active", "inactive", "expired", "cancelled", "pending"]
SubscriptionCycle = Literal[
    "weekly", "biweekly", "monthly", "bimonthly", "quarterly", "semiannually", "yearly"
]

SUBSCRIPTION_PLANS = {
    "starter": {"id": "starter", "name": "Starter", "monthly_price": 29.90, "yearly_price": 299.00},
    "pro": {"id": "pro", "name": "Pro", "monthly_price": 79.90, "yearly_price": 799.00},
    "business": {"id": "business", "name": "Business", "monthly_price": 199.90, "yearly_price": 1999.00},
}


class Subscription(Document):
    user_id: PydanticObjectId
    user_email: str
    user_name: str = ""

    plan_id: str
    plan_name: str
    plan_slug: str

    asaas_subscription_id: Indexed(str, unique=True)
    asaas_customer_id: str

    status: SubscriptionStatus = "pending"
    billing_type: PaymentMethod
    value: float
    cycle: SubscriptionCycle
    description: str | None = None

    start_date: datetime = Field(default_factory=datetime.utcnow)
    next_due_date: datetime | None = None
    cancelled_at: datetime | None = None

    credit_card_token_encrypted: str | None = None
    credit_card_last_four: str | None = None
    credit_card_brand: str | None = None

    total_payments: int = 0
    total_paid: float = 0.0
    last_payment_date: datetime | None = None

    external_reference: str | None = None
    notes: str | None = None
    webhook_events: list[WebhookEvent] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "subscriptions"
        indexes = [
            [("user_id", 1), ("status", 1)],
            [("next_due_date", 1)],
        ]

    def has_event(self, event_id: str | None) -> bool:
        return bool(event_id) and any(e.event_id == event_id for e in self.webhook_events)

    def summary(self) -> dict:
        return {
            "id": str(self.id),
            "plan": self.plan_slug,
            "plan_name": self.plan_name,
            "status": self.status,
            "cycle": self.cycle,
            "value": self.value,
            "billing_type": self.billing_type,
            "next_due_date": self.next_due_date.isoformat() if self.next_due_date else None,
            "credit_card_last_four": self.credit_card_last_four,
            "created_at": self.created_at.isoformat(),
        }
