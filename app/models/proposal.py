from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import BaseModel, Field


class ProposalSelection(BaseModel):
    service_slug: str
    unit_label: str
    track: str
    quantity: int
    unit_price: float
    subtotal: float


class Proposal(Document):
    """Service quote submitted from the pricing calculator."""
    name: str
    email: str
    company: str | None = None
    notes: str | None = None
    total: float
    selections: list[ProposalSelection] = Field(default_factory=list)
    status: Literal["new", "contacted", "converted", "closed"] = "new"
    source: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "service_proposals"
