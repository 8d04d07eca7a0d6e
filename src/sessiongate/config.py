"""Configuration for the session gate."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


class ConfigError(Exception):
    """Invalid configuration value."""

    pass


@dataclass
class GateConfig:
    """Configuration for the session gate server.

    Attributes:
        addr: Address to listen on.
        namespace: Namespace to prepare at startup (None to skip).
        context: Kubeconfig context, used when running outside the cluster.
        max_workers: Concurrent OpenApp streams the server accepts.
        open_timeout: Seconds to wait for an app to go Live (0 for no limit).
        watch_interval: Seconds between polls while waiting for an app.
        oc_timeout: Timeout for each oc command in seconds.
        log_level: Logging level name.
    """

    addr: str = "[::]:8001"
    namespace: str | None = None
    context: str | None = None
    max_workers: int = 64
    open_timeout: float = 300
    watch_interval: float = 2.0
    oc_timeout: int = 30
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GateConfig:
        """Build a config from SESSIONGATE_* environment variables.

        Args:
            environ: Environment to read (defaults to os.environ).

        Returns:
            Config with defaults for unset variables.

        Raises:
            ConfigError: If a numeric variable cannot be parsed.
        """
        env = os.environ if environ is None else environ
        config = cls()

        config.addr = env.get("SESSIONGATE_ADDR", config.addr)
        config.namespace = env.get("SESSIONGATE_NAMESPACE") or None
        config.context = env.get("SESSIONGATE_CONTEXT") or None
        config.log_level = env.get("SESSIONGATE_LOG_LEVEL", config.log_level).upper()

        try:
            if "SESSIONGATE_MAX_WORKERS" in env:
                config.max_workers = int(env["SESSIONGATE_MAX_WORKERS"])
            if "SESSIONGATE_OPEN_TIMEOUT" in env:
                config.open_timeout = float(env["SESSIONGATE_OPEN_TIMEOUT"])
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        if config.max_workers < 1:
            raise ConfigError("SESSIONGATE_MAX_WORKERS must be at least 1")

        return config
