from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field

ConsultationStatus = Literal["pending", "scheduled", "completed", "cancelled"]

CONSULTATION_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"scheduled", "cancelled"}),
    "scheduled": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}


class CartItemSnapshot(BaseModel):
    id: str
    type: Literal["service", "course"]
    name: str
    quantity: int
    price: float
    service_slug: str | None = None
    unit_label: str | None = None
    track: str | None = None
    slug: str | None = None


class ConsultationRequest(Document):
    user_id: PydanticObjectId | None = None
    name: str
    email: str
    company: str | None = None
    role: str | None = None
    phone: str | None = None
    details: str | None = None
    source: str = "unknown"
    referrer_url: str | None = None
    utm: dict[str, str] = Field(default_factory=dict)

    cart_items: list[CartItemSnapshot] = Field(default_factory=list)
    cart_total: float = 0.0

    scheduled_start_utc: datetime | None = None
    scheduled_end_utc: datetime | None = None
    booking_url: str | None = None

    status: ConsultationStatus = "pending"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "consultation_requests"
        indexes = [[("email", 1), ("created_at", -1)], [("status", 1)]]
