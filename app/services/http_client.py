from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

import httpx

from app.core.errors import SourceUnreachable
from app.services.retry import RetryPolicy, Sleeper
from app.sources.registry import SourceDescriptor


log = logging.getLogger(__name__)

# Worth another attempt; every other non-2xx is treated as definitive.
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    ERROR = "error"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class HttpResult:
    """Outcome of a single HTTP attempt."""
    ok: bool
    status_code: int | None
    body: str | None = None

    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False

    elapsed_ms: int | None = None


@dataclass(frozen=True)
class FetchResult:
    """Outcome of fetch(): the raw body on success, a SourceUnreachable otherwise."""
    source: str
    ok: bool
    attempts: int
    body: str | None = None
    status_code: int | None = None
    error: SourceUnreachable | None = None


def _cap_text(s: str, *, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + f"...(truncated, {len(s)} chars)"


class SourceHttpClient:
    """
    HTTP client for upstream listing sources.

    - Uses one AsyncClient instance (connection pooling).
    - fetch() retries transient failures per RetryPolicy, sleeping through the
      injected sleeper between attempts.
    - Never raises to the caller; failures come back as structured results.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        health_timeout_seconds: float = 5.0,
        retry_policy: RetryPolicy | None = None,
        sleep: Sleeper = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
        default_headers: Mapping[str, str] | None = None,
        max_error_body_chars: int = 500,
    ):
        self._timeout = httpx.Timeout(timeout_seconds)
        self._health_timeout = httpx.Timeout(health_timeout_seconds)
        self._retry = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._max_error_body = max_error_body_chars
        self._client = httpx.AsyncClient(
            timeout=self._timeout,
            transport=transport,
            headers=dict(default_headers or {}),
            follow_redirects=True,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SourceHttpClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def _get(
        self,
        *,
        url: str,
        headers: Mapping[str, str],
        params: Mapping[str, Any],
        timeout: httpx.Timeout,
    ) -> HttpResult:
        try:
            resp = await self._client.get(
                url,
                headers=dict(headers),
                params={k: str(v) for k, v in params.items()},
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            return HttpResult(
                ok=False,
                status_code=None,
                error_code="TIMEOUT",
                error_message=str(e) or type(e).__name__,
                retryable=True,
            )
        except httpx.RequestError as e:
            # DNS errors, connection refused, TLS, etc.
            return HttpResult(
                ok=False,
                status_code=None,
                error_code="REQUEST_ERROR",
                error_message=str(e) or type(e).__name__,
                retryable=True,
            )
        except httpx.InvalidURL as e:
            # a malformed request will not get better on retry
            return HttpResult(
                ok=False,
                status_code=None,
                error_code="INVALID_URL",
                error_message=str(e),
                retryable=False,
            )

        elapsed_ms = int(resp.elapsed.total_seconds() * 1000) if resp.elapsed else None

        if 200 <= resp.status_code < 300:
            return HttpResult(
                ok=True,
                status_code=resp.status_code,
                body=resp.text,
                elapsed_ms=elapsed_ms,
            )

        return HttpResult(
            ok=False,
            status_code=resp.status_code,
            body=_cap_text(resp.text, max_chars=self._max_error_body),
            error_code=f"HTTP_{resp.status_code}",
            error_message=f"HTTP {resp.status_code}",
            retryable=resp.status_code in RETRYABLE_STATUS_CODES,
            elapsed_ms=elapsed_ms,
        )

    async def fetch(self, source: SourceDescriptor) -> FetchResult:
        last: HttpResult | None = None
        attempt = 0

        for attempt in self._retry.attempts():
            last = await self._get(
                url=source.url,
                headers=source.headers,
                params=source.params,
                timeout=self._timeout,
            )
            if last.ok:
                log.info("fetch %s: HTTP %s in %sms (attempt %d)", source.name, last.status_code, last.elapsed_ms, attempt)
                return FetchResult(
                    source=source.name,
                    ok=True,
                    attempts=attempt,
                    body=last.body,
                    status_code=last.status_code,
                )

            if not last.retryable:
                log.warning("fetch %s: %s, not retrying", source.name, last.error_message)
                break

            if attempt < self._retry.max_attempts:
                delay = self._retry.delay_for(attempt)
                log.info(
                    "fetch %s: retry %d/%d in %.1fs: %s",
                    source.name, attempt, self._retry.max_attempts - 1, delay, last.error_message,
                )
                await self._sleep(delay)

        assert last is not None
        error = SourceUnreachable(
            source.name,
            attempts=attempt,
            cause=last.error_message or last.error_code or "unknown error",
            status_code=last.status_code,
        )
        log.warning("fetch %s: giving up: %s", source.name, error)
        return FetchResult(
            source=source.name,
            ok=False,
            attempts=attempt,
            status_code=last.status_code,
            error=error,
        )

    async def health_check(self, source: SourceDescriptor) -> HealthStatus:
        if source.config_error is not None:
            return HealthStatus.ERROR

        res = await self._get(
            url=source.url,
            headers=source.headers,
            params=source.params,
            timeout=self._health_timeout,
        )
        if res.ok:
            return HealthStatus.HEALTHY
        if res.status_code is not None:
            return HealthStatus.ERROR
        return HealthStatus.UNAVAILABLE
