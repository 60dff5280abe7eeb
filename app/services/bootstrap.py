from __future__ import annotations

import asyncio

import httpx

from app.core.config import Settings
from app.core.db import get_session_factory
from app.repositories.base import ListingRepository
from app.repositories.memory import InMemoryListingRepository
from app.repositories.sql import SqlListingRepository
from app.services.aggregator import ListingAggregator
from app.services.http_client import SourceHttpClient
from app.services.reconcile import Reconciler
from app.services.retry import RetryPolicy, Sleeper
from app.sources.registry import build_source_registry


def build_repository(settings: Settings) -> ListingRepository:
    if settings.store_backend == "memory":
        return InMemoryListingRepository()
    return SqlListingRepository(get_session_factory())


def build_client(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> SourceHttpClient:
    return SourceHttpClient(
        timeout_seconds=settings.fetch_timeout_seconds,
        health_timeout_seconds=settings.health_timeout_seconds,
        retry_policy=RetryPolicy(
            max_attempts=settings.fetch_max_attempts,
            delay_seconds=settings.fetch_backoff_seconds,
        ),
        sleep=sleep,
        transport=transport,
        default_headers={"User-Agent": f"{settings.service_name}/0.1"},
    )


def build_aggregator(
    settings: Settings,
    *,
    repo: ListingRepository | None = None,
    client: SourceHttpClient | None = None,
) -> ListingAggregator:
    repo = repo or build_repository(settings)
    return ListingAggregator(
        registry=build_source_registry(settings),
        client=client or build_client(settings),
        repo=repo,
        reconciler=Reconciler(repo, preserve_nonempty_on_update=settings.preserve_nonempty_on_update),
        cache_duration_seconds=settings.cache_duration_seconds,
        aggregation_timeout_seconds=settings.aggregation_timeout_seconds,
    )
