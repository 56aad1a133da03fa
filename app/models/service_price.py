from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import BaseModel, Field

PriceUnitType = Literal[
    "per_project",
    "per_screen",
    "per_page",
    "per_hour",
    "per_day",
    "per_month",
    "per_workflow",
    "per_collection",
    "per_minute",
    "per_release",
    "per_language",
    "per_format",
]


class PriceRange(BaseModel):
    currency: str = "BRL"
    min: float
    recommended: float
    max: float


class ServicePrice(Document):
    category: str
    service_slug: str
    track: str
    unit_label: str
    description: str = ""
    unit_type: PriceUnitType
    min_quantity: int = 1
    default_quantity: int = 1
    price_range: PriceRange
    dependencies: list[str] = Field(default_factory=list)
    upsell_suggestions: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    last_validated_at: datetime | None = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "service_prices"
        indexes = [[("service_slug", 1), ("track", 1), ("unit_label", 1)]]
