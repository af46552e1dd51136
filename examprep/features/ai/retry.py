"""
examprep/features/ai/retry.py

Capped exponential backoff shared by every AI endpoint.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from examprep.core.config import Settings, settings


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 15.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "RetryPolicy":
        cfg = cfg or settings
        return cls(
            max_attempts=cfg.AI_MAX_ATTEMPTS,
            base_delay=cfg.AI_RETRY_BASE_DELAY_SECONDS,
            max_delay=cfg.AI_RETRY_MAX_DELAY_SECONDS,
        )

    def delay_for(self, retry_number: int) -> float:
        """Sleep before retry `retry_number` (0-based): base * 2^n, capped."""
        return min(self.base_delay * (2 ** retry_number), self.max_delay)

    def delays(self) -> Iterator[float]:
        """Sleeps between attempts; one fewer than max_attempts."""
        for retry_number in range(self.max_attempts - 1):
            yield self.delay_for(retry_number)

    def worst_case_seconds(self, probe_timeout: float, attempt_timeouts: Iterable[float]) -> float:
        """Upper bound on one call: probe + every attempt (failover included) + every sleep."""
        return probe_timeout + sum(attempt_timeouts) + sum(self.delays())
