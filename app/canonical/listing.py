from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- lenient coercion helpers ---
# Upstream payloads are untrusted: anything that does not parse is "unknown" (None), never zero.

# Largest decimal exponent accepted: below 10**10, so every value fits Numeric(12, 2).
MAX_MAGNITUDE = 9
# Integer columns are 32-bit.
MAX_INT = 2**31 - 1


def _to_decimal(v: Any) -> Decimal | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, str):
        v = v.strip().replace(",", "").lstrip("$")
        if not v:
            return None
    try:
        d = Decimal(str(v))
    except (InvalidOperation, ValueError):
        return None
    # reject before anything expands the exponent (int() on 1e999999999 never returns)
    if not d.is_finite() or d.adjusted() > MAX_MAGNITUDE:
        return None
    return d


def _to_int(v: Any) -> int | None:
    d = _to_decimal(v)
    if d is None:
        return None
    n = int(d)
    return n if abs(n) <= MAX_INT else None


def _to_text(v: Any) -> str | None:
    if v is None or isinstance(v, (dict, list)):
        return None
    s = str(v).strip()
    return s or None


def _to_date(v: Any) -> date | None:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        # epoch seconds or epoch millis
        ts = float(v)
        if ts > 10_000_000_000:
            ts = ts / 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(v, str):
        s = v.strip()
        try:
            return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        try:
            return date.fromisoformat(s[:10])
        except ValueError:
            return None
    return None


def _to_images(v: Any) -> list[str]:
    if v is None:
        return []
    if isinstance(v, (str, dict)):
        v = [v]
    if not isinstance(v, list):
        return []
    out: list[str] = []
    for item in v:
        if isinstance(item, dict):
            item = item.get("url") or item.get("href") or item.get("src")
        s = _to_text(item)
        if s and s not in out:
            out.append(s)
    return out


class ListingFields(BaseModel):
    """
    Canonical listing attributes shared by candidates and stored records.

    Validators run in "before" mode so an unparseable or out-of-range upstream value
    becomes None instead of failing the whole record.
    """
    model_config = ConfigDict(extra="ignore")

    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None

    price: Decimal | None = None
    bedrooms: int | None = None
    bathrooms: Decimal | None = None
    square_feet: int | None = None

    description: str | None = None
    images: list[str] = Field(default_factory=list)
    property_type: str | None = None
    year_built: int | None = None
    lot_size: int | None = None
    listing_date: date | None = None

    @field_validator("address", "city", "state", "zip_code", "description", "property_type", mode="before")
    @classmethod
    def clean_text(cls, v: Any) -> str | None:
        return _to_text(v)

    @field_validator("price", mode="before")
    @classmethod
    def positive_price(cls, v: Any) -> Decimal | None:
        d = _to_decimal(v)
        return d if d is not None and d > 0 else None

    @field_validator("bedrooms", mode="before")
    @classmethod
    def non_negative_bedrooms(cls, v: Any) -> int | None:
        n = _to_int(v)
        return n if n is not None and n >= 0 else None

    @field_validator("bathrooms", mode="before")
    @classmethod
    def non_negative_bathrooms(cls, v: Any) -> Decimal | None:
        d = _to_decimal(v)
        return d if d is not None and d >= 0 else None

    @field_validator("square_feet", "lot_size", mode="before")
    @classmethod
    def positive_area(cls, v: Any) -> int | None:
        n = _to_int(v)
        return n if n is not None and n > 0 else None

    @field_validator("year_built", mode="before")
    @classmethod
    def plausible_year(cls, v: Any) -> int | None:
        n = _to_int(v)
        return n if n is not None and 1600 <= n <= 3000 else None

    @field_validator("images", mode="before")
    @classmethod
    def image_urls(cls, v: Any) -> list[str]:
        return _to_images(v)

    @field_validator("listing_date", mode="before")
    @classmethod
    def parse_listing_date(cls, v: Any) -> date | None:
        return _to_date(v)


class ListingCandidate(ListingFields):
    """A normalized listing that has not been reconciled into the store yet."""
    source: str = Field(min_length=1, max_length=80)
    external_id: str = Field(min_length=1, max_length=200)
    raw_data: dict[str, Any] = Field(default_factory=dict)


class StoredListing(ListingCandidate):
    model_config = ConfigDict(extra="ignore", from_attributes=True)

    id: str
    active: bool = True
    created_at: datetime
    updated_at: datetime


# Fields refreshed when a (source, external_id) pair is seen again.
MUTABLE_FIELDS: tuple[str, ...] = (
    "price",
    "description",
    "images",
    "property_type",
    "year_built",
    "lot_size",
    "listing_date",
    "raw_data",
)
