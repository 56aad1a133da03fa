from fastapi import APIRouter, Depends, Query

from app.db.init import get_redis
from app.deps import rate_limited
from app.services import pricing as pricing_service

router = APIRouter()


@router.get("/service-prices")
async def list_service_prices(
    service_slug: str | None = Query(default=None, alias="serviceSlug"),
    redis=Depends(get_redis),
):
    prices = await pricing_service.get_service_prices(redis, service_slug)
    return {"prices": prices, "count": len(prices)}


@router.post("/service-proposals", dependencies=[Depends(rate_limited("service-proposals"))])
async def create_proposal(body: pricing_service.ProposalIn):
    proposal = await pricing_service.save_proposal(body)
    return {"ok": True, "id": str(proposal.id)}
