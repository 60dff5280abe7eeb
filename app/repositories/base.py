from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

from app.canonical.listing import ListingCandidate, StoredListing


@dataclass(frozen=True)
class ListingQuery:
    """
    Store-agnostic predicate over listings. All set attributes are ANDed.

    The memory store evaluates it with matches(); the SQL store translates it to WHERE clauses.
    A range bound never matches a listing whose attribute is unknown (None).
    """
    id: str | None = None
    source: str | None = None
    external_id: str | None = None
    active: bool | None = True

    city_contains: str | None = None
    state: str | None = None
    property_type: str | None = None

    min_price: Decimal | None = None
    max_price: Decimal | None = None
    min_bedrooms: int | None = None
    max_bedrooms: int | None = None
    min_bathrooms: Decimal | None = None
    max_bathrooms: Decimal | None = None

    def matches(self, r: StoredListing) -> bool:
        if self.id is not None and r.id != self.id:
            return False
        if self.source is not None and r.source != self.source:
            return False
        if self.external_id is not None and r.external_id != self.external_id:
            return False
        if self.active is not None and r.active != self.active:
            return False

        if self.city_contains is not None:
            if r.city is None or self.city_contains.lower() not in r.city.lower():
                return False
        if self.state is not None:
            if r.state is None or r.state.lower() != self.state.lower():
                return False
        if self.property_type is not None:
            if r.property_type is None or r.property_type.lower() != self.property_type.lower():
                return False

        return (
            _in_range(r.price, self.min_price, self.max_price)
            and _in_range(r.bedrooms, self.min_bedrooms, self.max_bedrooms)
            and _in_range(r.bathrooms, self.min_bathrooms, self.max_bathrooms)
        )


def _in_range(value: Any, lo: Any, hi: Any) -> bool:
    if lo is None and hi is None:
        return True
    if value is None:
        return False
    if lo is not None and value < lo:
        return False
    if hi is not None and value > hi:
        return False
    return True


class DuplicateListing(Exception):
    """(source, external_id) already exists in the store."""


class ListingRepository(Protocol):
    """
    Narrow storage interface the aggregation core depends on.

    Implementations must make update() atomic per record: a concurrent reader sees either
    the old or the new version, never a mix.
    """

    async def create(self, candidate: ListingCandidate, *, now: datetime) -> StoredListing:
        ...

    async def update(self, listing_id: str, fields: dict[str, Any], *, now: datetime) -> StoredListing:
        ...

    async def get(self, listing_id: str) -> StoredListing | None:
        ...

    async def find_by(self, query: ListingQuery) -> list[StoredListing]:
        """Matching listings, most recently updated first."""
        ...

    async def count(self, query: ListingQuery | None = None) -> int:
        ...

    async def list_active(self) -> list[StoredListing]:
        ...

    async def count_by_source(self) -> dict[str, int]:
        ...

    async def purge_source(self, source: str) -> int:
        ...
