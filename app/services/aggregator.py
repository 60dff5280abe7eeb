from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping

from app.canonical.listing import StoredListing
from app.core.errors import ListingNotFound, MalformedResponse
from app.repositories.base import ListingQuery, ListingRepository
from app.services.health import HealthMonitor
from app.services.http_client import HealthStatus, SourceHttpClient
from app.services.normalizer import normalize
from app.services.reconcile import Reconciler, utcnow
from app.services.search import search
from app.sources.registry import SourceDescriptor, SourceRegistry


log = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    OK = "ok"
    UNREACHABLE = "unreachable"
    MALFORMED = "malformed"
    MISCONFIGURED = "misconfigured"
    TIMED_OUT = "timed_out"


@dataclass
class SourceOutcome:
    source: str
    status: OutcomeStatus
    fetched: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "fetched": self.fetched,
            "created": self.created,
            "updated": self.updated,
            "failed": self.failed,
            "error": self.error,
        }


@dataclass
class AggregationSummary:
    started_at: datetime
    finished_at: datetime | None = None
    sources: dict[str, SourceOutcome] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(o.status is OutcomeStatus.OK for o in self.sources.values())

    @property
    def created(self) -> int:
        return sum(o.created for o in self.sources.values())

    @property
    def updated(self) -> int:
        return sum(o.updated for o in self.sources.values())

    def as_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "ok": self.ok,
            "sources": {name: o.as_dict() for name, o in self.sources.items()},
        }


class ListingAggregator:
    """
    Core facade: one aggregation pass across all sources, plus read views over the store.

    Sources are fetched concurrently (one task each) under an overall ceiling; a failure in
    one source is recorded in the summary and never stops the others.
    """

    def __init__(
        self,
        *,
        registry: SourceRegistry,
        client: SourceHttpClient,
        repo: ListingRepository,
        reconciler: Reconciler | None = None,
        cache_duration_seconds: float = 300.0,
        aggregation_timeout_seconds: float = 60.0,
        monotonic: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._registry = registry
        self._client = client
        self._repo = repo
        self._reconciler = reconciler or Reconciler(repo, clock=clock)
        self._health = HealthMonitor(registry, client)
        self._cache_duration = cache_duration_seconds
        self._ceiling = aggregation_timeout_seconds
        self._monotonic = monotonic
        self._clock = clock

        self._refresh_lock = asyncio.Lock()
        self._last_refresh: float | None = None
        self._last_summary: AggregationSummary | None = None

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def client(self) -> SourceHttpClient:
        return self._client

    @property
    def repository(self) -> ListingRepository:
        return self._repo

    @property
    def last_summary(self) -> AggregationSummary | None:
        return self._last_summary

    @property
    def last_health(self) -> dict[str, HealthStatus]:
        return self._health.last_statuses

    # --- aggregation ---

    async def _run_source(self, source: SourceDescriptor) -> SourceOutcome:
        if source.config_error is not None:
            return SourceOutcome(source.name, OutcomeStatus.MISCONFIGURED, error=source.config_error.message)

        fetched = await self._client.fetch(source)
        if not fetched.ok:
            return SourceOutcome(source.name, OutcomeStatus.UNREACHABLE, error=str(fetched.error))

        try:
            candidates = normalize(fetched.body or "", source.name, source.shape_hint)
        except MalformedResponse as e:
            log.warning("aggregate %s: %s", source.name, e)
            return SourceOutcome(source.name, OutcomeStatus.MALFORMED, error=str(e))

        summary = await self._reconciler.reconcile(candidates)
        return SourceOutcome(
            source.name,
            OutcomeStatus.OK,
            fetched=len(candidates),
            created=summary.created,
            updated=summary.updated,
            failed=summary.failed,
        )

    async def _guarded(self, source: SourceDescriptor) -> SourceOutcome:
        try:
            return await self._run_source(source)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("aggregate %s: unexpected failure", source.name)
            return SourceOutcome(source.name, OutcomeStatus.UNREACHABLE, error=f"{type(e).__name__}: {e}")

    async def fetch_and_reconcile_all(self) -> AggregationSummary:
        summary = AggregationSummary(started_at=self._clock())
        sources = list(self._registry)
        log.info("aggregate: starting pass over %d source(s)", len(sources))

        tasks = {asyncio.create_task(self._guarded(s), name=f"aggregate:{s.name}"): s for s in sources}
        if tasks:
            done, pending = await asyncio.wait(tasks.keys(), timeout=self._ceiling)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

            for task, source in tasks.items():
                if task in done:
                    summary.sources[source.name] = task.result()
                else:
                    log.warning("aggregate %s: cancelled after %.1fs ceiling", source.name, self._ceiling)
                    summary.sources[source.name] = SourceOutcome(
                        source.name,
                        OutcomeStatus.TIMED_OUT,
                        error=f"exceeded aggregation ceiling of {self._ceiling:.1f}s",
                    )

        summary.finished_at = self._clock()
        self._last_refresh = self._monotonic()
        self._last_summary = summary
        log.info(
            "aggregate: done created=%d updated=%d %s",
            summary.created,
            summary.updated,
            {name: o.status.value for name, o in summary.sources.items()},
        )
        return summary

    # --- read views ---

    async def _needs_refresh(self) -> bool:
        if self._last_refresh is None:
            # nothing fetched by this process yet: only an empty store forces a pass
            if await self._repo.count(ListingQuery(active=True)) == 0:
                return True
            # data found in the store ages from the moment this process first serves it
            self._last_refresh = self._monotonic()
            return False
        return self._monotonic() - self._last_refresh >= self._cache_duration

    async def get_all_active(self) -> list[StoredListing]:
        if await self._needs_refresh():
            async with self._refresh_lock:
                # another caller may have refreshed while we waited
                if await self._needs_refresh():
                    await self.fetch_and_reconcile_all()
        return await self._repo.list_active()

    async def search(self, criteria: Mapping[str, Any], *, include_inactive: bool = False) -> list[StoredListing]:
        return await search(self._repo, criteria, include_inactive=include_inactive)

    async def get_by_id(self, listing_id: str) -> StoredListing:
        listing = await self._repo.get(listing_id)
        if listing is None or not listing.active:
            raise ListingNotFound(listing_id)
        return listing

    async def health_check_all(self) -> dict[str, HealthStatus]:
        return await self._health.check_all()

    # --- admin ---

    async def purge_source(self, source: str) -> int:
        deleted = await self._repo.purge_source(source)
        log.info("purge %s: deleted %d listing(s)", source, deleted)
        return deleted

    async def source_stats(self) -> dict[str, Any]:
        by_source = await self._repo.count_by_source()
        return {
            "total": sum(by_source.values()),
            "active": await self._repo.count(ListingQuery(active=True)),
            "by_source": by_source,
        }
