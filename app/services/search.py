from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Mapping

from app.canonical.listing import StoredListing
from app.core.errors import SearchValidationError
from app.repositories.base import ListingQuery, ListingRepository


SEARCH_FILTERS: tuple[str, ...] = (
    "city",
    "state",
    "min_price",
    "max_price",
    "min_bedrooms",
    "max_bedrooms",
    "min_bathrooms",
    "max_bathrooms",
    "property_type",
)

NUMERIC_FILTERS: tuple[str, ...] = (
    "min_price",
    "max_price",
    "min_bedrooms",
    "max_bedrooms",
    "min_bathrooms",
    "max_bathrooms",
)

_RANGES: tuple[str, ...] = ("price", "bedrooms", "bathrooms")

_NON_NEGATIVE_INT = re.compile(r"^\d+$")


def extract_criteria(params: Mapping[str, Any]) -> dict[str, str]:
    """Keep allow-listed, non-blank filters; everything else is dropped."""
    out: dict[str, str] = {}
    for key in SEARCH_FILTERS:
        v = params.get(key)
        if v is None:
            continue
        s = str(v).strip()
        if s:
            out[key] = s
    return out


def validate_criteria(criteria: Mapping[str, str]) -> list[str]:
    errors: list[str] = []
    numbers: dict[str, int] = {}

    for key in NUMERIC_FILTERS:
        if key not in criteria:
            continue
        if _NON_NEGATIVE_INT.match(criteria[key]):
            numbers[key] = int(criteria[key])
        else:
            errors.append(f"{key} must be a valid number")

    for attr in _RANGES:
        lo, hi = numbers.get(f"min_{attr}"), numbers.get(f"max_{attr}")
        if lo is not None and hi is not None and lo > hi:
            errors.append(f"min_{attr} cannot be greater than max_{attr}")

    return errors


def parse_criteria(params: Mapping[str, Any], *, include_inactive: bool = False) -> ListingQuery:
    """
    Turn request parameters into a ListingQuery.

    Raises SearchValidationError (with every problem found) before any query runs.
    """
    criteria = extract_criteria(params)
    errors = validate_criteria(criteria)
    if errors:
        raise SearchValidationError(errors)

    def _dec(key: str) -> Decimal | None:
        return Decimal(criteria[key]) if key in criteria else None

    def _int(key: str) -> int | None:
        return int(criteria[key]) if key in criteria else None

    return ListingQuery(
        active=None if include_inactive else True,
        city_contains=criteria.get("city"),
        state=criteria.get("state"),
        property_type=criteria.get("property_type"),
        min_price=_dec("min_price"),
        max_price=_dec("max_price"),
        min_bedrooms=_int("min_bedrooms"),
        max_bedrooms=_int("max_bedrooms"),
        min_bathrooms=_dec("min_bathrooms"),
        max_bathrooms=_dec("max_bathrooms"),
    )


async def search(
    repo: ListingRepository,
    params: Mapping[str, Any],
    *,
    include_inactive: bool = False,
) -> list[StoredListing]:
    query = parse_criteria(params, include_inactive=include_inactive)
    return await repo.find_by(query)
