from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Hashable, Iterable

from app.canonical.listing import MUTABLE_FIELDS, ListingCandidate
from app.core.errors import ReconciliationFailure
from app.repositories.base import ListingQuery, ListingRepository


log = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconcileSummary:
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, int]:
        return {"created": self.created, "updated": self.updated, "failed": self.failed}


class KeyedLock:
    """One asyncio.Lock per key; entries are dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                self._locks.pop(key, None)
                self._users.pop(key, None)


class Reconciler:
    """
    Create-or-update merge of candidates into the canonical store, keyed by (source, external_id).

    Best effort: a failing candidate is counted and logged, the rest of the batch continues.
    """

    def __init__(
        self,
        repo: ListingRepository,
        *,
        clock: Clock = utcnow,
        preserve_nonempty_on_update: bool = False,
        locks: KeyedLock | None = None,
    ):
        self._repo = repo
        self._clock = clock
        self._preserve_nonempty = preserve_nonempty_on_update
        self._locks = locks or KeyedLock()

    def _update_fields(self, candidate: ListingCandidate) -> dict[str, Any]:
        fields = {k: getattr(candidate, k) for k in MUTABLE_FIELDS}
        if self._preserve_nonempty:
            # keep what we have when the new payload brings nothing
            for k in ("images", "raw_data"):
                if not fields[k]:
                    fields.pop(k)
        return fields

    async def reconcile_one(self, candidate: ListingCandidate) -> str:
        """Returns "created" or "updated"; raises ReconciliationFailure."""
        key = (candidate.source, candidate.external_id)
        async with self._locks.hold(key):
            try:
                existing = await self._repo.find_by(
                    ListingQuery(source=candidate.source, external_id=candidate.external_id, active=None)
                )
                now = self._clock()
                if not existing:
                    await self._repo.create(candidate, now=now)
                    return "created"
                await self._repo.update(existing[0].id, self._update_fields(candidate), now=now)
                return "updated"
            except ReconciliationFailure:
                raise
            except Exception as e:
                raise ReconciliationFailure(candidate.source, candidate.external_id, e) from e

    async def reconcile(self, candidates: Iterable[ListingCandidate]) -> ReconcileSummary:
        summary = ReconcileSummary()
        for candidate in candidates:
            try:
                outcome = await self.reconcile_one(candidate)
            except ReconciliationFailure as e:
                summary.failed += 1
                summary.errors.append({
                    "source": e.source,
                    "external_id": e.external_id,
                    "message": f"{type(e.cause).__name__}: {e.cause}",
                })
                log.warning("reconcile: %s", e, exc_info=e.cause)
                continue
            if outcome == "created":
                summary.created += 1
            else:
                summary.updated += 1

        log.info(
            "reconcile: created=%d updated=%d failed=%d",
            summary.created, summary.updated, summary.failed,
        )
        return summary
