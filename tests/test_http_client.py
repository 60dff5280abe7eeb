import json

import httpx
import pytest

from app.core.errors import ConfigurationError
from app.services.http_client import HealthStatus, SourceHttpClient
from app.services.retry import RetryPolicy, no_sleep

from conftest import make_source


@pytest.mark.asyncio
async def test_fetch_success_returns_body_on_first_attempt(http_client, upstream, sleeper):
    upstream.json("a.test", {"listings": []})

    res = await http_client.fetch(make_source("a"))

    assert res.ok
    assert res.attempts == 1
    assert res.status_code == 200
    assert json.loads(res.body) == {"listings": []}
    assert res.error is None
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_fetch_sends_source_headers_and_params(http_client, upstream):
    seen: list[httpx.Request] = []

    def _handler(req: httpx.Request) -> httpx.Response:
        seen.append(req)
        return httpx.Response(200, json=[])

    upstream.route("a.test", _handler)
    source = make_source("a", headers={"X-RapidAPI-Key": "k1", "X-RapidAPI-Host": "a.test"}, params={"city": "Austin", "limit": 5})

    await http_client.fetch(source)

    assert seen[0].headers["X-RapidAPI-Key"] == "k1"
    assert seen[0].headers["X-RapidAPI-Host"] == "a.test"
    assert seen[0].url.params["city"] == "Austin"
    assert seen[0].url.params["limit"] == "5"


@pytest.mark.asyncio
async def test_timeouts_use_the_whole_retry_budget(http_client, upstream, sleeper):
    upstream.timeout("b.test")

    res = await http_client.fetch(make_source("b"))

    assert not res.ok
    assert res.attempts == 3
    assert upstream.calls["b.test"] == 3
    # a fixed delay between attempts, none after the last one
    assert sleeper.delays == [1.0, 1.0]
    assert res.error is not None
    assert res.error.source == "b"
    assert res.error.attempts == 3
    assert res.error.status_code is None


@pytest.mark.asyncio
async def test_recovers_when_a_retry_succeeds(http_client, upstream, sleeper):
    responses = iter([httpx.Response(503, text="busy"), httpx.Response(200, json=[{"id": "1"}])])
    upstream.route("a.test", lambda req: next(responses))

    res = await http_client.fetch(make_source("a"))

    assert res.ok
    assert res.attempts == 2
    assert sleeper.delays == [1.0]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 403, 404])
async def test_definitive_client_errors_are_not_retried(http_client, upstream, sleeper, status):
    upstream.json("a.test", {"message": "nope"}, status_code=status)

    res = await http_client.fetch(make_source("a"))

    assert not res.ok
    assert res.attempts == 1
    assert upstream.calls["a.test"] == 1
    assert res.status_code == status
    assert res.error.status_code == status
    assert sleeper.delays == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
async def test_transient_statuses_are_retried(http_client, upstream, status):
    upstream.text("a.test", "try later", status_code=status)

    res = await http_client.fetch(make_source("a"))

    assert not res.ok
    assert res.attempts == 3
    assert upstream.calls["a.test"] == 3


@pytest.mark.asyncio
async def test_connection_errors_are_retried(http_client, upstream):
    def _refuse(req: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=req)

    upstream.route("a.test", _refuse)

    res = await http_client.fetch(make_source("a"))

    assert not res.ok
    assert res.attempts == 3
    assert "connection refused" in res.error.cause


@pytest.mark.asyncio
async def test_single_attempt_policy_never_sleeps(upstream, sleeper):
    upstream.timeout("a.test")
    async with SourceHttpClient(
        retry_policy=RetryPolicy(max_attempts=1),
        sleep=sleeper,
        transport=upstream.transport(),
    ) as client:
        res = await client.fetch(make_source("a"))

    assert res.attempts == 1
    assert sleeper.delays == []


def test_retry_policy_rejects_nonsense():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(delay_seconds=-1)


@pytest.mark.asyncio
async def test_health_check_tri_state(upstream):
    upstream.json("up.test", [])
    upstream.text("broken.test", "boom", status_code=500)
    upstream.timeout("down.test")

    async with SourceHttpClient(sleep=no_sleep, transport=upstream.transport()) as client:
        assert await client.health_check(make_source("up")) is HealthStatus.HEALTHY
        assert await client.health_check(make_source("broken")) is HealthStatus.ERROR
        assert await client.health_check(make_source("down")) is HealthStatus.UNAVAILABLE

    # health checks are single requests, never retried
    assert upstream.calls == {"up.test": 1, "broken.test": 1, "down.test": 1}


@pytest.mark.asyncio
async def test_health_check_of_misconfigured_source_makes_no_request(http_client, upstream):
    source = make_source("a", config_error=ConfigurationError("a", "RAPIDAPI_KEY is not configured"))

    assert await http_client.health_check(source) is HealthStatus.ERROR
    assert upstream.calls == {}
