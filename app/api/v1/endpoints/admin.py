from fastapi import APIRouter, Depends

from app.api.deps import get_aggregator
from app.schemas.listing import PurgeOut, RefreshOut, StatsOut
from app.services.aggregator import ListingAggregator
from app.services.internal_admin import require_internal_admin

router = APIRouter(prefix="/admin", dependencies=[Depends(require_internal_admin)])


@router.post("/listings/refresh", response_model=RefreshOut)
async def refresh_listings(aggregator: ListingAggregator = Depends(get_aggregator)) -> RefreshOut:
    summary = await aggregator.fetch_and_reconcile_all()
    return RefreshOut.model_validate(summary.as_dict())


@router.get("/listings/stats", response_model=StatsOut)
async def listing_stats(aggregator: ListingAggregator = Depends(get_aggregator)) -> StatsOut:
    return StatsOut(**(await aggregator.source_stats()))


@router.delete("/sources/{source}/listings", response_model=PurgeOut)
async def purge_source_listings(
    source: str,
    aggregator: ListingAggregator = Depends(get_aggregator),
) -> PurgeOut:
    deleted = await aggregator.purge_source(source)
    return PurgeOut(source=source, deleted=deleted)
