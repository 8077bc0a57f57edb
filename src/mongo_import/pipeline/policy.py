from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for failing page queries.

    `max_attempts=None` retries forever, which is the importer's historical
    behaviour. Backoff grows by `backoff_multiplier` per consecutive failure
    and is capped at `max_backoff_ms`; jitter scales it to 50-100%.
    """

    max_attempts: Optional[int] = None
    initial_backoff_ms: int = 100
    max_backoff_ms: int = 5_000
    backoff_multiplier: float = 2.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts is not None and self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0 or None")
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ValueError("backoff must be >= 0")

    @classmethod
    def from_limit(cls, max_attempts: int, **kwargs) -> "RetryPolicy":
        """Build from a config value where 0 means unlimited."""
        return cls(max_attempts=max_attempts or None, **kwargs)

    @property
    def unlimited(self) -> bool:
        return self.max_attempts is None

    def should_retry(self, attempt: int) -> bool:
        """`attempt` is the number of consecutive failures so far (1-based)."""
        return self.max_attempts is None or attempt < self.max_attempts

    def next_backoff_ms(self, attempt: int) -> int:
        # exponent capped so unlimited retries never overflow the float
        exponent = min(max(0, attempt - 1), 32)
        base = self.initial_backoff_ms * (self.backoff_multiplier**exponent)
        delay = min(self.max_backoff_ms, int(base))
        if self.jitter and delay > 0:
            delay = int(delay * random.uniform(0.5, 1.0))
        return delay
