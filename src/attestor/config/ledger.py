"""Ledger (confirmation source) configuration values."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .env import env_float, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig

LEDGER_BASE_URL = "https://de-api.constellationnetwork.io/v1"
LEDGER_TIMEOUT_SECONDS = 8.0


@dataclass(frozen=True)
class LedgerConfig:
    """Holds ledger API credentials and client behaviour."""

    api_key: str
    organization_id: str
    tenant_id: str
    resilience: ResilienceConfig

    @property
    def base_url(self) -> str:
        return self.resilience.base_url or LEDGER_BASE_URL


def get_ledger_config(*, resilience: ResilienceConfig | None = None) -> LedgerConfig:
    values = require_env_vars(("LEDGER_API_KEY", "LEDGER_ORGANIZATION_ID", "LEDGER_TENANT_ID"))
    base_url = os.getenv("LEDGER_BASE_URL") or LEDGER_BASE_URL
    return LedgerConfig(
        api_key=values["LEDGER_API_KEY"],
        organization_id=values["LEDGER_ORGANIZATION_ID"],
        tenant_id=values["LEDGER_TENANT_ID"],
        resilience=resilience
        or ResilienceConfig(
            name="ledger",
            base_url=base_url.rstrip("/"),
            timeout_seconds=env_float("LEDGER_TIMEOUT_SECONDS", LEDGER_TIMEOUT_SECONDS),
            ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
            default_headers={"Accept": "application/json", "User-Agent": "attestor/1.0"},
        ),
    )
