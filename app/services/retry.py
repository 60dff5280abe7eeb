from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable


Sleeper = Callable[[float], Awaitable[None]]


async def no_sleep(_: float) -> None:
    return None


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with a fixed delay between attempts.

    max_attempts counts the first try (3 = one request + two retries).
    """
    max_attempts: int = 3
    delay_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")

    def delay_for(self, attempt: int) -> float:
        # fixed backoff, attempt is 1-based
        return self.delay_seconds

    def attempts(self) -> range:
        return range(1, self.max_attempts + 1)
