import pytest

from app.core.errors import ConfigurationError
from app.services.health import HealthMonitor
from app.services.http_client import HealthStatus
from app.sources.registry import SourceRegistry

from conftest import make_source


@pytest.mark.asyncio
async def test_check_all_reports_every_source(http_client, upstream):
    upstream.json("up.test", [])
    upstream.text("broken.test", "nope", status_code=401)
    upstream.timeout("down.test")
    registry = SourceRegistry([
        make_source("up"),
        make_source("broken"),
        make_source("down"),
        make_source("nokey", config_error=ConfigurationError("nokey", "RAPIDAPI_KEY is not configured")),
    ])
    monitor = HealthMonitor(registry, http_client)

    statuses = await monitor.check_all()

    assert statuses == {
        "up": HealthStatus.HEALTHY,
        "broken": HealthStatus.ERROR,
        "down": HealthStatus.UNAVAILABLE,
        "nokey": HealthStatus.ERROR,
    }
    assert monitor.last_statuses == statuses
    assert "nokey.test" not in upstream.calls


@pytest.mark.asyncio
async def test_a_crashing_check_is_unavailable(http_client, upstream, monkeypatch):
    upstream.json("b.test", [])

    async def _health_check(source):
        if source.name == "a":
            raise RuntimeError("check bug")
        return HealthStatus.HEALTHY

    monkeypatch.setattr(http_client, "health_check", _health_check)
    monitor = HealthMonitor(SourceRegistry([make_source("a"), make_source("b")]), http_client)

    assert await monitor.check_all() == {"a": HealthStatus.UNAVAILABLE, "b": HealthStatus.HEALTHY}


@pytest.mark.asyncio
async def test_latest_status_replaces_the_previous_one(http_client, upstream):
    monitor = HealthMonitor(SourceRegistry([make_source("a")]), http_client)

    upstream.timeout("a.test")
    await monitor.check_all()
    assert monitor.last_statuses == {"a": HealthStatus.UNAVAILABLE}

    upstream.json("a.test", [])
    await monitor.check_all()
    assert monitor.last_statuses == {"a": HealthStatus.HEALTHY}


@pytest.mark.asyncio
async def test_health_endpoint(client, upstream):
    upstream.json("a.test", [])
    upstream.timeout("b.test")

    r = await client.get("/v1/health")

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "running"
    assert body["apis"] == {"a": "healthy", "b": "unavailable"}
    assert body["config_errors"] == {}
    assert "timestamp" in body
