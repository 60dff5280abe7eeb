from __future__ import annotations

import asyncio
import logging

from app.services.http_client import HealthStatus, SourceHttpClient
from app.sources.registry import SourceDescriptor, SourceRegistry


log = logging.getLogger(__name__)


class HealthMonitor:
    """Checks every registered source concurrently; remembers only the latest status per source."""

    def __init__(self, registry: SourceRegistry, client: SourceHttpClient):
        self._registry = registry
        self._client = client
        self._last: dict[str, HealthStatus] = {}

    @property
    def last_statuses(self) -> dict[str, HealthStatus]:
        return dict(self._last)

    async def _check(self, source: SourceDescriptor) -> HealthStatus:
        if source.config_error is not None:
            log.warning("health %s: %s", source.name, source.config_error.message)
            return HealthStatus.ERROR
        try:
            return await self._client.health_check(source)
        except Exception:
            # one broken check must not take the others down
            log.exception("health %s: check crashed", source.name)
            return HealthStatus.UNAVAILABLE

    async def check_all(self) -> dict[str, HealthStatus]:
        sources = list(self._registry)
        statuses = await asyncio.gather(*(self._check(s) for s in sources))
        result = {s.name: status for s, status in zip(sources, statuses)}
        self._last.update(result)
        log.info("health: %s", {k: v.value for k, v in result.items()})
        return result
