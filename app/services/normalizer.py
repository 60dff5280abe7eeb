from __future__ import annotations

import copy
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from pydantic import ValidationError

from app.canonical.listing import ListingCandidate
from app.core.errors import MalformedResponse
from app.core.ids import gen_token


log = logging.getLogger(__name__)


# --- shape resolution ---

class _NoMatch(Exception):
    pass


@dataclass(frozen=True)
class ArrayShape:
    name = "array"

    def extract(self, data: Any) -> list[Any]:
        if isinstance(data, list):
            return data
        raise _NoMatch


@dataclass(frozen=True)
class KeyedShape:
    key: str

    @property
    def name(self) -> str:
        return self.key

    def extract(self, data: Any) -> list[Any]:
        if not isinstance(data, dict) or data.get(self.key) is None:
            raise _NoMatch
        items = data[self.key]
        if not isinstance(items, list):
            raise MalformedResponse("?", f"'{self.key}' is {type(items).__name__}, expected a list")
        return items


@dataclass(frozen=True)
class SingleObjectShape:
    name = "single"

    def extract(self, data: Any) -> list[Any]:
        if isinstance(data, dict):
            return [data]
        raise _NoMatch


ShapeRule = ArrayShape | KeyedShape | SingleObjectShape

DEFAULT_SHAPE_RULES: tuple[ShapeRule, ...] = (
    ArrayShape(),
    KeyedShape("listings"),
    KeyedShape("properties"),
    KeyedShape("results"),
    SingleObjectShape(),
)


def _ordered_rules(shape_hint: str | None) -> list[ShapeRule]:
    rules = list(DEFAULT_SHAPE_RULES)
    if not shape_hint:
        return rules
    hinted = [r for r in rules if r.name == shape_hint]
    if not hinted:
        # a hint may name a collection key outside the default set
        hinted = [KeyedShape(shape_hint)]
    return hinted + [r for r in rules if r not in hinted]


def resolve_shape(data: Any, shape_hint: str | None = None) -> tuple[str, list[Any]]:
    """Return (rule name, elements) for the first rule that matches the decoded body."""
    for rule in _ordered_rules(shape_hint):
        try:
            return rule.name, rule.extract(data)
        except _NoMatch:
            continue
    raise MalformedResponse("?", f"unsupported top-level JSON value: {type(data).__name__}")


# --- field mapping ---

# Canonical field -> payload keys, first present wins.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "address": ("address", "streetAddress", "street_address", "address_line", "line"),
    "city": ("city",),
    "state": ("state", "state_code", "stateCode"),
    "zip_code": ("zip_code", "zip", "zipcode", "zipCode", "postal_code", "postalCode"),
    "price": ("price", "list_price", "listPrice", "unformattedPrice"),
    "bedrooms": ("bedrooms", "beds", "bed"),
    "bathrooms": ("bathrooms", "baths", "bath"),
    "square_feet": ("square_feet", "sqft", "livingArea", "living_area", "building_size"),
    "description": ("description", "remarks", "text"),
    "images": ("images", "photos", "imgSrc", "image_urls", "photo_urls", "primary_photo"),
    "property_type": ("property_type", "propertyType", "homeType", "prop_type", "type"),
    "year_built": ("year_built", "yearBuilt"),
    "lot_size": ("lot_size", "lotSize", "lotAreaValue", "lot_sqft"),
    "listing_date": ("listing_date", "list_date", "listDate", "listed_date", "date_listed"),
}

IDENTITY_KEYS: tuple[str, ...] = ("id", "external_id", "listing_id", "property_id", "zpid")


def _is_present(v: Any) -> bool:
    if v is None:
        return False
    if isinstance(v, str) and not v.strip():
        return False
    return True


def _first_present(payload: dict[str, Any], keys: Iterable[str]) -> Any:
    for k in keys:
        if _is_present(payload.get(k)):
            return payload[k]
    return None


def _flatten_address(payload: dict[str, Any]) -> dict[str, Any]:
    """Lift a nested address/location object to top-level keys without overriding flat ones."""
    nested = payload.get("address")
    if not isinstance(nested, dict):
        nested = payload.get("location") if isinstance(payload.get("location"), dict) else None
        if nested is not None and isinstance(nested.get("address"), dict):
            nested = nested["address"]
    if not isinstance(nested, dict):
        return payload

    view = {k: v for k, v in payload.items() if not (k == "address" and isinstance(v, dict))}
    for k, v in nested.items():
        if not _is_present(view.get(k)):
            view[k] = v
    return view


def identity_of(payload: dict[str, Any]) -> str | None:
    v = _first_present(payload, IDENTITY_KEYS)
    if v is None or isinstance(v, (dict, list, bool)):
        return None
    return str(v).strip()


def map_fields(payload: dict[str, Any]) -> dict[str, Any]:
    view = _flatten_address(payload)
    return {field: _first_present(view, keys) for field, keys in FIELD_ALIASES.items()}


def _payload_fingerprint(payload: dict[str, Any]) -> str:
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


class _IdSynthesizer:
    """
    Per-call id factory for elements without an identity field.

    Identical payloads get the same id; distinct payloads get distinct ids that never
    equal a real id seen in the same batch.
    """

    def __init__(self, source: str, reserved: set[str]):
        self._source = source
        self._reserved = reserved
        self._by_fingerprint: dict[str, str] = {}

    def for_payload(self, payload: dict[str, Any]) -> str:
        fp = _payload_fingerprint(payload)
        if fp in self._by_fingerprint:
            return self._by_fingerprint[fp]
        while True:
            candidate = f"{self._source}_{gen_token(8)}"
            if candidate not in self._reserved:
                break
        self._reserved.add(candidate)
        self._by_fingerprint[fp] = candidate
        return candidate


def decode_body(raw_body: str | bytes, source: str) -> Any:
    try:
        return json.loads(raw_body)
    # ValueError also covers integers past the interpreter's digit limit
    except (ValueError, UnicodeDecodeError, TypeError) as e:
        raise MalformedResponse(source, f"invalid JSON: {e}") from e


def normalize(raw_body: str | bytes, source: str, shape_hint: str | None = None) -> list[ListingCandidate]:
    """
    Convert one upstream response body into listing candidates stamped with `source`.

    Raises MalformedResponse when the body is not JSON or has no usable shape.
    Elements that are not JSON objects are skipped.
    """
    data = decode_body(raw_body, source)
    try:
        shape, elements = resolve_shape(data, shape_hint)
    except MalformedResponse as e:
        raise MalformedResponse(source, e.cause) from e

    payloads = [el for el in elements if isinstance(el, dict)]
    skipped = len(elements) - len(payloads)
    if skipped:
        log.warning("normalize %s: skipped %d non-object element(s)", source, skipped)

    real_ids = {i for i in (identity_of(p) for p in payloads) if i}
    synth = _IdSynthesizer(source, reserved=set(real_ids))

    out: list[ListingCandidate] = []
    for payload in payloads:
        external_id = identity_of(payload) or synth.for_payload(payload)
        try:
            candidate = ListingCandidate(
                **map_fields(payload),
                source=source,
                external_id=external_id,
                raw_data=copy.deepcopy(payload),
            )
        except ValidationError as e:
            log.warning("normalize %s: dropping element %s: %s", source, external_id, e.errors())
            continue
        out.append(candidate)

    log.info("normalize %s: %d candidate(s) via %s shape", source, len(out), shape)
    return out
