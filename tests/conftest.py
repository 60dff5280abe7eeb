from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import Base + models so metadata is complete
from app.models.base import Base
from app.models.listing import Listing  # noqa: F401

from app.api.deps import get_aggregator
from app.core.config import settings
from app.main import app
from app.repositories.memory import InMemoryListingRepository
from app.repositories.sql import SqlListingRepository
from app.services.aggregator import ListingAggregator
from app.services.http_client import SourceHttpClient
from app.services.retry import RetryPolicy
from app.sources.registry import SourceDescriptor, SourceRegistry


ADMIN_KEY = "test-admin-key-0123456789"


class FakeClock:
    """Deterministic clock: every call advances one second."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class Upstream:
    """
    Routes MockTransport requests to per-host handlers and counts calls.

    Handlers get the httpx.Request and return an httpx.Response (or raise an httpx error).
    """

    def __init__(self) -> None:
        self.handlers: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: dict[str, int] = {}

    def route(self, host: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.handlers[host] = handler

    def json(self, host: str, payload, status_code: int = 200) -> None:
        self.route(host, lambda req: httpx.Response(status_code, json=payload))

    def text(self, host: str, body: str, status_code: int = 200) -> None:
        self.route(host, lambda req: httpx.Response(status_code, text=body))

    def timeout(self, host: str) -> None:
        def _raise(req: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=req)
        self.route(host, _raise)

    def transport(self) -> httpx.MockTransport:
        def _handle(req: httpx.Request) -> httpx.Response:
            host = req.url.host
            self.calls[host] = self.calls.get(host, 0) + 1
            if host not in self.handlers:
                return httpx.Response(404, json={"error": "no route"})
            return self.handlers[host](req)
        return httpx.MockTransport(_handle)


def make_source(name: str, **kw) -> SourceDescriptor:
    return SourceDescriptor(
        name=name,
        url=kw.pop("url", f"https://{name}.test/listings"),
        headers=kw.pop("headers", {"X-RapidAPI-Key": "test-key"}),
        params=kw.pop("params", {"limit": 50}),
        **kw,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def memory_repo() -> InMemoryListingRepository:
    return InMemoryListingRepository()


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
async def http_client(upstream, sleeper):
    client = SourceHttpClient(
        timeout_seconds=1.0,
        health_timeout_seconds=0.5,
        retry_policy=RetryPolicy(max_attempts=3, delay_seconds=1.0),
        sleep=sleeper,
        transport=upstream.transport(),
    )
    yield client
    await client.aclose()


@pytest.fixture
def two_sources() -> SourceRegistry:
    return SourceRegistry([make_source("a"), make_source("b")])


class RecordingSleep:
    """Sleeper that returns immediately and remembers the requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
async def aggregator(two_sources, http_client, memory_repo, clock, monotonic):
    return ListingAggregator(
        registry=two_sources,
        client=http_client,
        repo=memory_repo,
        clock=clock,
        monotonic=monotonic,
        cache_duration_seconds=300,
        aggregation_timeout_seconds=5,
    )


@pytest.fixture
async def client(aggregator, monkeypatch):
    """
    HTTP client against the app with the test aggregator injected via dependency override.
    """
    monkeypatch.setattr(settings, "internal_admin_key", ADMIN_KEY)
    app.dependency_overrides[get_aggregator] = lambda: aggregator

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def session_factory():
    # one shared in-memory connection so every session sees the same tables
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    finally:
        await engine.dispose()


@pytest.fixture
def sql_repo(session_factory) -> SqlListingRepository:
    return SqlListingRepository(session_factory)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Internal-Admin-Key": ADMIN_KEY}
