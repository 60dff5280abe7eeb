from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import Select

from app.canonical.listing import ListingCandidate, StoredListing
from app.models.listing import Listing
from app.repositories.base import DuplicateListing, ListingQuery


_IMMUTABLE = frozenset({"id", "source", "external_id", "created_at"})


def _apply_query(stmt: Select, q: ListingQuery) -> Select:
    if q.id is not None:
        stmt = stmt.where(Listing.id == q.id)
    if q.source is not None:
        stmt = stmt.where(Listing.source == q.source)
    if q.external_id is not None:
        stmt = stmt.where(Listing.external_id == q.external_id)
    if q.active is not None:
        stmt = stmt.where(Listing.active.is_(q.active))

    if q.city_contains is not None:
        stmt = stmt.where(func.lower(Listing.city).contains(q.city_contains.lower(), autoescape=True))
    if q.state is not None:
        stmt = stmt.where(func.lower(Listing.state) == q.state.lower())
    if q.property_type is not None:
        stmt = stmt.where(func.lower(Listing.property_type) == q.property_type.lower())

    # NULL never satisfies a comparison, so unknown values drop out of ranged queries
    if q.min_price is not None:
        stmt = stmt.where(Listing.price >= q.min_price)
    if q.max_price is not None:
        stmt = stmt.where(Listing.price <= q.max_price)
    if q.min_bedrooms is not None:
        stmt = stmt.where(Listing.bedrooms >= q.min_bedrooms)
    if q.max_bedrooms is not None:
        stmt = stmt.where(Listing.bedrooms <= q.max_bedrooms)
    if q.min_bathrooms is not None:
        stmt = stmt.where(Listing.bathrooms >= q.min_bathrooms)
    if q.max_bathrooms is not None:
        stmt = stmt.where(Listing.bathrooms <= q.max_bathrooms)
    return stmt


def _to_domain(row: Listing) -> StoredListing:
    return StoredListing.model_validate(row)


class SqlListingRepository:
    """
    ListingRepository backed by the `listings` table.

    Every call runs in its own session/transaction, so an update is committed atomically.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, candidate: ListingCandidate, *, now: datetime) -> StoredListing:
        async with self._session_factory() as db:
            row = Listing(
                **candidate.model_dump(mode="python"),
                active=True,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise DuplicateListing(f"{candidate.source}/{candidate.external_id}") from e
            await db.refresh(row)
            return _to_domain(row)

    async def update(self, listing_id: str, fields: dict[str, Any], *, now: datetime) -> StoredListing:
        async with self._session_factory() as db:
            row = (
                await db.execute(select(Listing).where(Listing.id == listing_id).with_for_update())
            ).scalar_one_or_none()
            if row is None:
                raise KeyError(listing_id)
            for k, v in fields.items():
                if k in _IMMUTABLE:
                    continue
                setattr(row, k, v)
            row.updated_at = now
            await db.commit()
            await db.refresh(row)
            return _to_domain(row)

    async def get(self, listing_id: str) -> StoredListing | None:
        async with self._session_factory() as db:
            row = (await db.execute(select(Listing).where(Listing.id == listing_id))).scalar_one_or_none()
            return _to_domain(row) if row else None

    async def find_by(self, query: ListingQuery) -> list[StoredListing]:
        stmt = _apply_query(select(Listing), query).order_by(
            Listing.updated_at.desc(), Listing.created_at.desc()
        )
        async with self._session_factory() as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [_to_domain(r) for r in rows]

    async def count(self, query: ListingQuery | None = None) -> int:
        stmt = select(func.count()).select_from(Listing)
        if query is not None:
            stmt = _apply_query(stmt, query)
        async with self._session_factory() as db:
            return int((await db.execute(stmt)).scalar_one())

    async def list_active(self) -> list[StoredListing]:
        return await self.find_by(ListingQuery(active=True))

    async def count_by_source(self) -> dict[str, int]:
        stmt = select(Listing.source, func.count()).group_by(Listing.source).order_by(Listing.source)
        async with self._session_factory() as db:
            return {source: int(n) for source, n in (await db.execute(stmt)).all()}

    async def purge_source(self, source: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(delete(Listing).where(Listing.source == source))
            await db.commit()
            return int(result.rowcount or 0)
