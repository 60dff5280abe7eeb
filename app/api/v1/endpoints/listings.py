from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.api.deps import get_aggregator
from app.canonical.listing import StoredListing
from app.core.errors import ListingNotFound, SearchValidationError
from app.schemas.listing import ListingDetailOut, ListingOut, ListingsOut, SearchOut
from app.services.aggregator import ListingAggregator
from app.services.search import extract_criteria

router = APIRouter()


def _out(listing: StoredListing) -> ListingOut:
    return ListingOut.model_validate(listing.model_dump(exclude={"raw_data"}))


@router.get("/listings", response_model=ListingsOut)
async def list_listings(
    aggregator: ListingAggregator = Depends(get_aggregator),
) -> ListingsOut:
    rows = await aggregator.get_all_active()
    return ListingsOut(listings=[_out(r) for r in rows], count=len(rows))


# declared before /listings/{listing_id} so "search" is not taken for an id
@router.get("/listings/search", response_model=SearchOut)
async def search_listings(
    request: Request,
    include_inactive: bool = Query(default=False),
    aggregator: ListingAggregator = Depends(get_aggregator),
) -> SearchOut:
    params = dict(request.query_params)
    try:
        rows = await aggregator.search(params, include_inactive=include_inactive)
    except SearchValidationError as e:
        raise HTTPException(status_code=400, detail={"errors": e.errors})
    return SearchOut(
        listings=[_out(r) for r in rows],
        count=len(rows),
        search_params=extract_criteria(params),
    )


@router.get("/listings/{listing_id}", response_model=ListingDetailOut)
async def get_listing(
    listing_id: str,
    aggregator: ListingAggregator = Depends(get_aggregator),
) -> ListingDetailOut:
    try:
        listing = await aggregator.get_by_id(listing_id)
    except ListingNotFound:
        raise HTTPException(status_code=404, detail="Listing not found")
    return ListingDetailOut.model_validate(listing.model_dump())
