from __future__ import annotations

from dataclasses import dataclass

from tenant_provisioner.services.config.env import env_float, optional_env


@dataclass(frozen=True)
class WorkerConfig:
    """Process-level settings: log verbosity and the shutdown grace window."""

    log_level: str = "INFO"
    shutdown_grace_seconds: float = 30.0

    @staticmethod
    def from_env() -> "WorkerConfig":
        return WorkerConfig(
            log_level=(optional_env("LOG_LEVEL") or "INFO").upper(),
            shutdown_grace_seconds=env_float("SHUTDOWN_GRACE_SECONDS", 30.0),
        )
