from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import BaseModel, Field

PODOrderStatus = Literal[
    "pending",
    "confirmed",
    "processing",
    "in_production",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
    "failed",
]


class Shipment(BaseModel):
    carrier: str = ""
    tracking_number: str = ""
    tracking_url: str = ""
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    status: Literal["pending", "shipped", "in_transit", "delivered", "exception"] = "shipped"


class PODOrderItem(BaseModel):
    printify_product_id: str | None = None
    name: str
    quantity: int = 1
    printify_status: str | None = None
    sent_to_production_at: datetime | None = None


class PODOrder(Document):
    """Print-on-demand order placed on behalf of a creator's product."""
    order_number: Indexed(str)
    printify_order_id: str | None = None  # supplier order id (Printify or Prodigi)
    creator_id: PydanticObjectId | None = None
    buyer_email: str = ""
    items: list[PODOrderItem] = Field(default_factory=list)
    status: PODOrderStatus = "pending"
    shipments: list[Shipment] = Field(default_factory=list)
    total_creator_commission: float = 0.0
    earnings_finalized: bool = False
    sent_to_production_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "pod_orders"
        indexes = [[("printify_order_id", 1)], [("creator_id", 1), ("status", 1)]]

    def shipment(self, tracking_number: str | None) -> Shipment | None:
        if not tracking_number:
            return None
        return next((s for s in self.shipments if s.tracking_number == tracking_number), None)
