from __future__ import annotations

import asyncio
import copy
from collections import Counter
from datetime import datetime
from typing import Any

from app.canonical.listing import ListingCandidate, StoredListing
from app.core.ids import gen_id
from app.repositories.base import DuplicateListing, ListingQuery


def _recent_first(rows: list[StoredListing]) -> list[StoredListing]:
    return sorted(rows, key=lambda r: (r.updated_at, r.created_at), reverse=True)


class InMemoryListingRepository:
    """
    Arena of immutable StoredListing snapshots plus a (source, external_id) index.

    Writes go through one lock; an update swaps the whole snapshot and readers get deep
    copies, so nobody sees a half-applied change or edits the store behind the lock.
    """

    def __init__(self) -> None:
        self._rows: dict[str, StoredListing] = {}
        self._by_identity: dict[tuple[str, str], str] = {}
        self._lock = asyncio.Lock()

    async def create(self, candidate: ListingCandidate, *, now: datetime) -> StoredListing:
        key = (candidate.source, candidate.external_id)
        async with self._lock:
            if key in self._by_identity:
                raise DuplicateListing(f"{key[0]}/{key[1]}")
            row = StoredListing(
                **copy.deepcopy(candidate.model_dump()),
                id=gen_id("lst"),
                active=True,
                created_at=now,
                updated_at=now,
            )
            self._rows[row.id] = row
            self._by_identity[key] = row.id
            return row.model_copy(deep=True)

    async def update(self, listing_id: str, fields: dict[str, Any], *, now: datetime) -> StoredListing:
        async with self._lock:
            current = self._rows.get(listing_id)
            if current is None:
                raise KeyError(listing_id)
            changes = {
                k: copy.deepcopy(v)
                for k, v in fields.items()
                if k not in ("id", "source", "external_id", "created_at")
            }
            changes["updated_at"] = now
            # re-validate so the snapshot keeps canonical types
            row = StoredListing.model_validate({**current.model_dump(), **changes})
            self._rows[listing_id] = row
            return row.model_copy(deep=True)

    async def get(self, listing_id: str) -> StoredListing | None:
        row = self._rows.get(listing_id)
        return row.model_copy(deep=True) if row else None

    async def find_by(self, query: ListingQuery) -> list[StoredListing]:
        return [r.model_copy(deep=True) for r in self._matching(query)]

    def _matching(self, query: ListingQuery) -> list[StoredListing]:
        if query.source is not None and query.external_id is not None:
            row_id = self._by_identity.get((query.source, query.external_id))
            rows = [self._rows[row_id]] if row_id else []
            return [r for r in rows if query.matches(r)]
        return _recent_first([r for r in list(self._rows.values()) if query.matches(r)])

    async def count(self, query: ListingQuery | None = None) -> int:
        if query is None:
            return len(self._rows)
        return len(self._matching(query))

    async def list_active(self) -> list[StoredListing]:
        return await self.find_by(ListingQuery(active=True))

    async def count_by_source(self) -> dict[str, int]:
        return dict(Counter(r.source for r in list(self._rows.values())))

    async def purge_source(self, source: str) -> int:
        async with self._lock:
            doomed = [rid for rid, r in self._rows.items() if r.source == source]
            for rid in doomed:
                row = self._rows.pop(rid)
                self._by_identity.pop((row.source, row.external_id), None)
            return len(doomed)
