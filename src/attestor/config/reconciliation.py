"""Reconciliation loop defaults and environment overrides."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int
from .errors import ConfigurationError

DEFAULT_TICK_INTERVAL_SECONDS = 30.0
DEFAULT_ATTEMPT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_FACTOR = 1.0
DEFAULT_MAX_BACKOFF_SECONDS = 30.0
DEFAULT_BACKOFF_JITTER = 0.25


@dataclass(frozen=True, slots=True)
class ReconciliationConfig:
    tick_interval_seconds: float = DEFAULT_TICK_INTERVAL_SECONDS
    attempt_timeout_seconds: float = DEFAULT_ATTEMPT_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS
    backoff_jitter: float = DEFAULT_BACKOFF_JITTER

    def __post_init__(self) -> None:
        if self.tick_interval_seconds <= 0:
            raise ConfigurationError("Tick interval must be positive")
        if self.attempt_timeout_seconds <= 0:
            raise ConfigurationError("Attempt timeout must be positive")
        if self.max_attempts < 1:
            raise ConfigurationError("Max attempts must be at least 1")
        if self.backoff_factor <= 0:
            raise ConfigurationError("Backoff factor must be positive")
        if self.max_backoff_seconds < self.backoff_factor:
            raise ConfigurationError("Max backoff must not be smaller than the backoff factor")
        if not 0 <= self.backoff_jitter <= 1:
            raise ConfigurationError("Backoff jitter must be between 0 and 1")


def get_reconciliation_config() -> ReconciliationConfig:
    return ReconciliationConfig(
        tick_interval_seconds=env_float(
            "ATTESTOR_TICK_INTERVAL_SECONDS", DEFAULT_TICK_INTERVAL_SECONDS
        ),
        attempt_timeout_seconds=env_float(
            "ATTESTOR_ATTEMPT_TIMEOUT_SECONDS", DEFAULT_ATTEMPT_TIMEOUT_SECONDS
        ),
        max_attempts=env_int("ATTESTOR_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        backoff_factor=env_float("ATTESTOR_BACKOFF_FACTOR", DEFAULT_BACKOFF_FACTOR),
        max_backoff_seconds=env_float("ATTESTOR_MAX_BACKOFF_SECONDS", DEFAULT_MAX_BACKOFF_SECONDS),
        backoff_jitter=env_float("ATTESTOR_BACKOFF_JITTER", DEFAULT_BACKOFF_JITTER),
    )
