from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.api.deps import get_aggregator
from app.schemas.listing import HealthOut
from app.services.aggregator import ListingAggregator

router = APIRouter()


@router.get("/health", response_model=HealthOut)
async def health(aggregator: ListingAggregator = Depends(get_aggregator)) -> HealthOut:
    statuses = await aggregator.health_check_all()
    return HealthOut(
        apis={name: s.value for name, s in statuses.items()},
        config_errors=aggregator.registry.config_errors(),
        timestamp=datetime.now(timezone.utc),
    )
