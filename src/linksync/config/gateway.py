"""Resource API gateway configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_positive_float, optional_positive_int, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

GATEWAY_TIMEOUT_SECONDS = 10.0
GATEWAY_MAX_CALLS = 5
GATEWAY_PER_SECONDS = 1.0


@dataclass(frozen=True, slots=True)
class GatewayConfig:
    """Holds resource API configuration values."""

    base_url: str
    token: str
    resilience: ResilienceConfig


def get_gateway_config(*, resilience: ResilienceConfig | None = None) -> GatewayConfig:
    values = require_env_vars(("LINKSYNC_GATEWAY_URL", "LINKSYNC_GATEWAY_TOKEN"))
    base_url = values["LINKSYNC_GATEWAY_URL"].rstrip("/") + "/"
    token = values["LINKSYNC_GATEWAY_TOKEN"].strip()
    return GatewayConfig(
        base_url=base_url,
        token=token,
        resilience=resilience
        or ResilienceConfig(
            name="resource-api",
            base_url=base_url,
            timeout_seconds=optional_positive_float(
                "LINKSYNC_GATEWAY_TIMEOUT", GATEWAY_TIMEOUT_SECONDS
            ),
            retry=RetryPolicy(),
            ratelimit=RateLimit(
                max_calls=optional_positive_int("LINKSYNC_GATEWAY_MAX_CALLS", GATEWAY_MAX_CALLS),
                per_seconds=GATEWAY_PER_SECONDS,
            ),
            default_headers={"Authorization": f"Bot {token}", "Accept": "application/json"},
        ),
    )
