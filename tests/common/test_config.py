from __future__ import annotations

import logging
import os

import pytest

from attestor.config import (
    ConfigurationError,
    MissingConfigurationError,
    ReconciliationConfig,
    configure_logging,
    get_ledger_config,
    get_reconciliation_config,
    require_env_var,
    require_env_vars,
)


def test_require_env_vars_returns_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", "value")

    result = require_env_vars(["EXAMPLE_VAR"])

    assert result["EXAMPLE_VAR"] == "value"


def test_require_env_vars_names_every_missing_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MISSING_A", raising=False)
    monkeypatch.delenv("MISSING_B", raising=False)

    with pytest.raises(MissingConfigurationError) as exc:
        require_env_vars(["MISSING_B", "MISSING_A"])

    assert "MISSING_A, MISSING_B" in str(exc.value)


def test_require_env_var_handles_blank_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", "   ")

    with pytest.raises(MissingConfigurationError):
        require_env_var("EXAMPLE_VAR")


def test_require_env_vars_restores_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEMP_VAR", "123")

    assert os.getenv("TEMP_VAR") == "123"
    result = require_env_var("TEMP_VAR")
    assert result == "123"


def test_reconciliation_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ATTESTOR_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("ATTESTOR_ATTEMPT_TIMEOUT_SECONDS", "2.5")
    monkeypatch.delenv("ATTESTOR_TICK_INTERVAL_SECONDS", raising=False)

    config = get_reconciliation_config()

    assert config.max_attempts == 7
    assert config.attempt_timeout_seconds == 2.5
    assert config.tick_interval_seconds == ReconciliationConfig().tick_interval_seconds


def test_reconciliation_config_rejects_non_numeric_values(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("ATTESTOR_MAX_ATTEMPTS", "many")

    with pytest.raises(ConfigurationError, match="ATTESTOR_MAX_ATTEMPTS"):
        get_reconciliation_config()


@pytest.mark.parametrize(
    "overrides",
    [
        {"tick_interval_seconds": 0},
        {"attempt_timeout_seconds": -1},
        {"max_attempts": 0},
        {"backoff_factor": 2.0, "max_backoff_seconds": 1.0},
        {"backoff_jitter": 1.5},
    ],
)
def test_reconciliation_config_validates_values(overrides: dict[str, float]) -> None:
    with pytest.raises(ConfigurationError):
        ReconciliationConfig(**overrides)  # type: ignore[arg-type]


def test_ledger_config_requires_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LEDGER_API_KEY", "key")
    monkeypatch.delenv("LEDGER_ORGANIZATION_ID", raising=False)
    monkeypatch.delenv("LEDGER_TENANT_ID", raising=False)

    with pytest.raises(MissingConfigurationError) as exc:
        get_ledger_config()

    assert "LEDGER_ORGANIZATION_ID" in str(exc.value)
    assert "LEDGER_TENANT_ID" in str(exc.value)


def test_configure_logging_quiets_httpx() -> None:
    configure_logging(level=logging.DEBUG, force=True)

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING

    configure_logging(force=True)
