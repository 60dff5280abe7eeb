from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class ListingOut(BaseModel):
    id: str
    source: str
    external_id: str

    address: str | None
    city: str | None
    state: str | None
    zip_code: str | None
    price: Decimal | None
    bedrooms: int | None
    bathrooms: Decimal | None
    square_feet: int | None
    description: str | None
    images: list[str]
    property_type: str | None
    year_built: int | None
    lot_size: int | None
    listing_date: date | None

    active: bool
    created_at: datetime
    updated_at: datetime


class ListingDetailOut(ListingOut):
    # original upstream element, only on the single-listing view
    raw_data: dict = Field(default_factory=dict)


class ListingsOut(BaseModel):
    listings: list[ListingOut]
    count: int


class SearchOut(ListingsOut):
    search_params: dict[str, str]


class HealthOut(BaseModel):
    status: str = "running"
    apis: dict[str, str]
    config_errors: dict[str, str] = Field(default_factory=dict)
    timestamp: datetime


class SourceOutcomeOut(BaseModel):
    status: str
    fetched: int
    created: int
    updated: int
    failed: int
    error: str | None = None


class RefreshOut(BaseModel):
    ok: bool
    started_at: datetime
    finished_at: datetime | None
    sources: dict[str, SourceOutcomeOut]


class StatsOut(BaseModel):
    total: int
    active: int
    by_source: dict[str, int]


class PurgeOut(BaseModel):
    source: str
    deleted: int
