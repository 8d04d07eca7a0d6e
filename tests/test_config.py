"""Tests for gate configuration."""

from __future__ import annotations

import pytest

from sessiongate.config import ConfigError, GateConfig


class TestGateConfig:
    """Tests for GateConfig.from_env."""

    def test_defaults(self) -> None:
        """An empty environment yields the defaults."""
        config = GateConfig.from_env({})

        assert config.addr == "[::]:8001"
        assert config.namespace is None
        assert config.context is None
        assert config.max_workers == 64
        assert config.open_timeout == 300
        assert config.log_level == "INFO"

    def test_reads_environment(self) -> None:
        """SESSIONGATE_* variables override the defaults."""
        config = GateConfig.from_env({
            "SESSIONGATE_ADDR": "127.0.0.1:9000",
            "SESSIONGATE_NAMESPACE": "cliapp-session-gate",
            "SESSIONGATE_CONTEXT": "dev",
            "SESSIONGATE_MAX_WORKERS": "16",
            "SESSIONGATE_OPEN_TIMEOUT": "12.5",
            "SESSIONGATE_LOG_LEVEL": "debug",
        })

        assert config.addr == "127.0.0.1:9000"
        assert config.namespace == "cliapp-session-gate"
        assert config.context == "dev"
        assert config.max_workers == 16
        assert config.open_timeout == 12.5
        assert config.log_level == "DEBUG"

    def test_empty_namespace_is_none(self) -> None:
        """An empty namespace variable disables namespace setup."""
        config = GateConfig.from_env({"SESSIONGATE_NAMESPACE": ""})

        assert config.namespace is None

    def test_invalid_number(self) -> None:
        """Unparseable numbers raise ConfigError."""
        with pytest.raises(ConfigError, match="Invalid numeric setting"):
            GateConfig.from_env({"SESSIONGATE_MAX_WORKERS": "many"})

    def test_max_workers_must_be_positive(self) -> None:
        """Zero workers is rejected."""
        with pytest.raises(ConfigError, match="at least 1"):
            GateConfig.from_env({"SESSIONGATE_MAX_WORKERS": "0"})

    def test_reads_os_environ(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without an explicit mapping the process environment is used."""
        monkeypatch.setenv("SESSIONGATE_ADDR", "[::]:9999")

        assert GateConfig.from_env().addr == "[::]:9999"
