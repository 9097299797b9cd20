"""Timing and retry defaults for the mapping engine."""

from __future__ import annotations

import os

from linksync.domain.mapping.settings import (
    DEFAULT_PLACEHOLDER_PREFIX,
    BackoffPolicy,
    EngineSettings,
)

from .env import optional_positive_float, optional_positive_int


def get_engine_settings() -> EngineSettings:
    """Build engine settings, honouring optional ``LINKSYNC_*`` overrides."""

    defaults = EngineSettings()
    backoff_defaults = defaults.backoff
    backoff = BackoffPolicy(
        max_retries=optional_positive_int(
            "LINKSYNC_MAX_RETRIES", backoff_defaults.max_retries
        ),
        base_delay=optional_positive_float(
            "LINKSYNC_RETRY_BASE_SECONDS", backoff_defaults.base_delay
        ),
        multiplier=backoff_defaults.multiplier,
        max_delay=optional_positive_float(
            "LINKSYNC_RETRY_MAX_SECONDS", backoff_defaults.max_delay
        ),
    )
    placeholder_prefix = os.getenv("LINKSYNC_PLACEHOLDER_PREFIX") or DEFAULT_PLACEHOLDER_PREFIX
    return EngineSettings(
        debounce_seconds=optional_positive_float(
            "LINKSYNC_DEBOUNCE_SECONDS", defaults.debounce_seconds
        ),
        bind_delay_seconds=optional_positive_float(
            "LINKSYNC_BIND_DELAY_SECONDS", defaults.bind_delay_seconds
        ),
        backoff=backoff,
        health_interval_seconds=optional_positive_float(
            "LINKSYNC_HEALTH_INTERVAL_SECONDS", defaults.health_interval_seconds
        ),
        sync_interval_seconds=optional_positive_float(
            "LINKSYNC_SYNC_INTERVAL_SECONDS", defaults.sync_interval_seconds
        ),
        gateway_timeout_seconds=optional_positive_float(
            "LINKSYNC_GATEWAY_CALL_TIMEOUT", defaults.gateway_timeout_seconds
        ),
        recovery_attempts=optional_positive_int(
            "LINKSYNC_RECOVERY_ATTEMPTS", defaults.recovery_attempts
        ),
        recovery_retry_seconds=optional_positive_float(
            "LINKSYNC_RECOVERY_RETRY_SECONDS", defaults.recovery_retry_seconds
        ),
        history_size=optional_positive_int("LINKSYNC_HISTORY_SIZE", defaults.history_size),
        placeholder_prefix=placeholder_prefix,
    )
