"""Service price catalogue (cached) and proposals from the pricing calculator."""

from pydantic import BaseModel, EmailStr, Field

from app.core.logging import get_logger
from app.models.proposal import Proposal, ProposalSelection
from app.models.service_price import ServicePrice
from app.services.cache import CACHE_KEYS, CACHE_TTL, get_or_set, invalidate, invalidate_pattern

log = get_logger(__name__)


class ProposalIn(BaseModel):
    name: str = Field(min_length=2)
    email: EmailStr
    company: str | None = None
    notes: str | None = None
    source: str | None = None
    total: float = Field(ge=0)
    selections: list[ProposalSelection] = Field(min_length=1)


def _price_dict(price: ServicePrice) -> dict:
    data = price.model_dump(mode="json", exclude={"id", "revision_id"})
    data["id"] = str(price.id)
    return data


async def _load_prices(service_slug: str | None = None) -> list[dict]:
    query = ServicePrice.find(ServicePrice.service_slug == service_slug) if service_slug else ServicePrice.find()
    prices = await query.sort(+ServicePrice.category, +ServicePrice.service_slug, +ServicePrice.track).to_list()
    return [_price_dict(p) for p in prices]


async def get_service_prices(redis, service_slug: str | None = None) -> list[dict]:
    key = CACHE_KEYS.service_prices_by_slug(service_slug) if service_slug else CACHE_KEYS.SERVICE_PRICES
    return await get_or_set(redis, key, lambda: _load_prices(service_slug), CACHE_TTL["service_prices"])


async def save_proposal(payload: ProposalIn) -> Proposal:
    proposal = Proposal(
        name=payload.name.strip(),
        email=str(payload.email).lower(),
        company=payload.company,
        notes=payload.notes,
        source=payload.source,
        total=payload.total,
        selections=payload.selections,
        status="new",
    )
    await proposal.insert()
    log.info("proposal_saved", email=proposal.email, total=proposal.total, selections=len(proposal.selections))
    return proposal


async def refresh_service_prices(redis) -> int:
    """Drop the cached catalogue so the next read reloads it; returns how many keys were removed."""
    deleted = await invalidate_pattern(redis, CACHE_KEYS.service_prices_by_slug("*"))
    await invalidate(redis, CACHE_KEYS.SERVICE_PRICES)
    log.info("service_prices_invalidated", slug_keys=deleted)
    return deleted
