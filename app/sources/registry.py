from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping

from app.core.config import Settings
from app.core.errors import ConfigurationError
from app.core.ids import mask_secret


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceDescriptor:
    """
    Everything the fetch client needs to query one upstream.

    config_error is set instead of raising when the source cannot be used
    (e.g. missing credential); health checks and aggregation report it.
    """
    name: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)
    # name of the shape rule to try first ("array", "listings", "properties", "results", "single")
    shape_hint: str | None = None
    config_error: ConfigurationError | None = None

    @property
    def usable(self) -> bool:
        return self.config_error is None


@dataclass(frozen=True)
class _SourceDef:
    name: str
    url: str
    host: str
    build_params: Callable[[Settings], dict[str, Any]]
    shape_hint: str | None = None


# Adding a source = adding one entry here.
_SOURCE_DEFS: tuple[_SourceDef, ...] = (
    _SourceDef(
        name="realty_in_us",
        url="https://realty-in-us.p.rapidapi.com/properties/v2/list-for-sale",
        host="realty-in-us.p.rapidapi.com",
        build_params=lambda s: {
            "city": s.search_city,
            "state_code": s.search_state,
            "limit": s.fetch_limit,
            "offset": 0,
            "sort": "relevant",
        },
        shape_hint="properties",
    ),
    _SourceDef(
        name="zillow_com1",
        url="https://zillow-com1.p.rapidapi.com/propertyExtendedSearch",
        host="zillow-com1.p.rapidapi.com",
        build_params=lambda s: {
            "location": f"{s.search_city}, {s.search_state}",
            "home_type": "Houses",
            "limit": s.fetch_limit,
        },
        shape_hint="results",
    ),
    _SourceDef(
        name="redfin_com_data",
        url="https://redfin-com-data.p.rapidapi.com/property/search",
        host="redfin-com-data.p.rapidapi.com",
        build_params=lambda s: {
            "city": s.search_city,
            "state": s.search_state,
            "limit": s.fetch_limit,
        },
    ),
)


def known_source_names() -> list[str]:
    return [d.name for d in _SOURCE_DEFS]


class SourceRegistry:
    """Immutable, explicitly constructed catalogue of upstream sources."""

    def __init__(self, descriptors: list[SourceDescriptor] | tuple[SourceDescriptor, ...]):
        names = [d.name for d in descriptors]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate source names: {names}")
        self._descriptors: tuple[SourceDescriptor, ...] = tuple(descriptors)

    def __iter__(self) -> Iterator[SourceDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def names(self) -> list[str]:
        return [d.name for d in self._descriptors]

    def get(self, name: str) -> SourceDescriptor:
        for d in self._descriptors:
            if d.name == name:
                return d
        raise KeyError(f"Unknown source: {name}")

    def config_errors(self) -> dict[str, str]:
        return {d.name: d.config_error.message for d in self._descriptors if d.config_error}


def build_source_registry(settings: Settings) -> SourceRegistry:
    api_key = settings.rapidapi_key.get_secret_value().strip() if settings.rapidapi_key else ""

    wanted = set(settings.enabled_sources) if settings.enabled_sources is not None else None
    if wanted is not None:
        unknown = wanted - set(known_source_names())
        if unknown:
            log.warning("registry: ignoring unknown enabled_sources %s", sorted(unknown))

    descriptors: list[SourceDescriptor] = []
    for d in _SOURCE_DEFS:
        if wanted is not None and d.name not in wanted:
            continue

        config_error = None
        headers = {"X-RapidAPI-Host": d.host}
        if api_key:
            headers["X-RapidAPI-Key"] = api_key
        else:
            config_error = ConfigurationError(d.name, "RAPIDAPI_KEY is not configured")
            log.warning("registry: source %s disabled: %s", d.name, config_error.message)

        descriptors.append(
            SourceDescriptor(
                name=d.name,
                url=d.url,
                headers=headers,
                params=d.build_params(settings),
                shape_hint=d.shape_hint,
                config_error=config_error,
            )
        )

    log.info(
        "registry: %d source(s) configured (%s), api key %s",
        len(descriptors),
        ", ".join(x.name for x in descriptors),
        mask_secret(api_key),
    )
    return SourceRegistry(descriptors)
