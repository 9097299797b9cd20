"""Tunables for the mapping engine."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_PLACEHOLDER_PREFIX = "STANDALONE_"


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Bounded exponential backoff for failed propagations.

    ``max_retries`` counts retries after the first attempt, so a key is tried
    at most ``max_retries + 1`` times per scheduled intent.
    """

    max_retries: int = 3
    base_delay: float = 5.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, retry_count: int) -> float:
        """Delay before retry number ``retry_count + 1``."""

        return min(self.base_delay * self.multiplier**retry_count, self.max_delay)


@dataclass(frozen=True, slots=True)
class EngineSettings:
    debounce_seconds: float = 2.0
    bind_delay_seconds: float = 1.0
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    health_interval_seconds: float = 600.0
    sync_interval_seconds: float = 300.0
    gateway_timeout_seconds: float = 10.0
    recovery_attempts: int = 5
    recovery_retry_seconds: float = 5.0
    history_size: int = 100
    placeholder_prefix: str = DEFAULT_PLACEHOLDER_PREFIX
