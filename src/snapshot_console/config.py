from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import logging
import os

import structlog


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env(name: str, default: str | None = None):
    return field(default_factory=lambda: os.getenv(name, default))


@dataclass(frozen=True)
class AppConfig:
    """Runtime settings, read from ``SNAPSHOT_CONSOLE_*`` variables when constructed."""

    velero_namespace: str = _env("SNAPSHOT_CONSOLE_VELERO_NAMESPACE", "velero")
    kubeconfig_path: str | None = _env("SNAPSHOT_CONSOLE_KUBECONFIG_PATH")
    kubeconfig_content: str | None = _env("SNAPSHOT_CONSOLE_KUBECONFIG_CONTENT")
    kube_context: str | None = _env("SNAPSHOT_CONSOLE_KUBE_CONTEXT")
    in_cluster: bool = field(default_factory=lambda: _env_flag("SNAPSHOT_CONSOLE_IN_CLUSTER"))
    download_poll_attempts: int = field(
        default_factory=lambda: int(os.getenv("SNAPSHOT_CONSOLE_DOWNLOAD_POLL_ATTEMPTS", "30"))
    )
    download_poll_interval_seconds: float = field(
        default_factory=lambda: float(os.getenv("SNAPSHOT_CONSOLE_DOWNLOAD_POLL_INTERVAL_SECONDS", "1.0"))
    )
    http_timeout_seconds: int = field(default_factory=lambda: int(os.getenv("SNAPSHOT_CONSOLE_HTTP_TIMEOUT_SECONDS", "60")))
    metadata_db_path: Path = field(
        default_factory=lambda: Path(os.getenv("SNAPSHOT_CONSOLE_METADATA_DB_PATH", "./data/snapshots.db"))
    )
    log_level: str = _env("SNAPSHOT_CONSOLE_LOG_LEVEL", "INFO")
    log_json: bool = field(default_factory=lambda: _env_flag("SNAPSHOT_CONSOLE_LOG_JSON"))


def ensure_directories(config: AppConfig) -> None:
    config.metadata_db_path.parent.mkdir(parents=True, exist_ok=True)


def configure_logging(level: str = "INFO", *, json_output: bool = False) -> None:
    numeric_level = logging.getLevelName(level.strip().upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"unknown log level: {level}")

    renderer: structlog.typing.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
    )
