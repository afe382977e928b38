"""Application configuration helpers."""

from __future__ import annotations

from attestor.common.logging import configure_logging

from .env import require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .ledger import LedgerConfig, get_ledger_config
from .reconciliation import ReconciliationConfig, get_reconciliation_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "LedgerConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ReconciliationConfig",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "configure_logging",
    "get_database_config",
    "get_ledger_config",
    "get_reconciliation_config",
    "get_storage_config",
    "require_env_var",
    "require_env_vars",
]
