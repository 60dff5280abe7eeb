from __future__ import annotations

from typing import Any


class AggregatorError(Exception):
    """Base class for failures raised by the aggregation core."""


class ConfigurationError(AggregatorError):
    """A source cannot be used because process configuration is incomplete."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class SourceUnreachable(AggregatorError):
    """
    Upstream could not be fetched after the retry budget was spent
    (or the failure was definitive and not worth retrying).
    """

    def __init__(
        self,
        source: str,
        *,
        attempts: int,
        cause: str,
        status_code: int | None = None,
    ):
        super().__init__(f"{source}: unreachable after {attempts} attempt(s): {cause}")
        self.source = source
        self.attempts = attempts
        self.cause = cause
        self.status_code = status_code


class MalformedResponse(AggregatorError):
    def __init__(self, source: str, cause: str):
        super().__init__(f"{source}: malformed response: {cause}")
        self.source = source
        self.cause = cause


class SearchValidationError(AggregatorError):
    def __init__(self, errors: list[str]):
        super().__init__(", ".join(errors))
        self.errors = errors


class ReconciliationFailure(AggregatorError):
    def __init__(self, source: str, external_id: str, cause: Any):
        super().__init__(f"{source}/{external_id}: {cause}")
        self.source = source
        self.external_id = external_id
        self.cause = cause


class ListingNotFound(AggregatorError):
    def __init__(self, listing_id: str):
        super().__init__(f"Listing not found: {listing_id}")
        self.listing_id = listing_id
