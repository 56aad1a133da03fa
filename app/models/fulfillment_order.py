from datetime import datetime
from typing import Any, Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import BaseModel, Field
from pymongo import IndexModel

FulfillmentStatus = Literal[
    "pending",
    "processing",
    "awaiting_supplier",
    "in_production",
    "shipped",
    "delivered",
    "cancelled",
    "failed",
    "refunded",
]
FulfillmentType = Literal["digital", "pod", "dropshipping", "physical"]
SupplierName = Literal["printify", "prodigi", "other"]


class TimelineEvent(BaseModel):
    status: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    notified: bool = False


class ShippingInfo(BaseModel):
    carrier: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None


class SupplierOrder(BaseModel):
    provider: SupplierName
    provider_order_id: str | None = None
    provider_status: str | None = None
    submitted_at: datetime | None = None
    confirmed_at: datetime | None = None
    actual_ship_date: datetime | None = None
    cost: float = 0.0
    currency: str = "BRL"
    last_sync_at: datetime | None = None


class FulfillmentItem(BaseModel):
    product_id: str | None = None
    product_slug: str | None = None
    type: str
    name: str
    quantity: int = 1
    unit_price: float = 0.0
    total_price: float = 0.0
    fulfillment_type: FulfillmentType = "pod"
    status: FulfillmentStatus = "pending"
    delivered_at: datetime | None = None


class FulfillmentOrder(Document):
    order_number: Indexed(str)
    payment_id: PydanticObjectId
    user_id: PydanticObjectId
    user_email: str
    user_name: str = ""

    items: list[FulfillmentItem] = Field(default_factory=list)
    fulfillment_type: FulfillmentType = "pod"
    status: FulfillmentStatus = "pending"
    shipping: ShippingInfo = Field(default_factory=ShippingInfo)
    supplier_orders: list[SupplierOrder] = Field(default_factory=list)
    timeline: list[TimelineEvent] = Field(default_factory=list)

    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "fulfillment_orders"
        indexes = [
            IndexModel([("payment_id", 1)], unique=True),
            [("supplier_orders.provider_order_id", 1)],
            [("user_id", 1), ("created_at", -1)],
        ]

    def supplier_order(self, provider_order_id: str | None, provider: str | None = None) -> SupplierOrder | None:
        for so in self.supplier_orders:
            if provider_order_id and so.provider_order_id == provider_order_id:
                return so
        if provider:
            for so in self.supplier_orders:
                if so.provider == provider:
                    return so
        return None

    def move_to(self, status: str, message: str, details: dict[str, Any] | None = None, notified: bool = False) -> bool:
        """Record a status change on the timeline. Returns False when already in that status."""
        if self.status == status:
            return False
        self.status = status
        self.timeline.append(
            TimelineEvent(status=status, message=message, details=details or {}, notified=notified)
        )
        self.updated_at = datetime.utcnow()
        return True
