"""Runtime configuration for the async-bash scheduler."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

STORE_BACKENDS = ("file", "sqlite")


@dataclass(slots=True)
class StorageSettings:
    """Where job descriptors, logs and outbound messages live."""

    data_dir: Path = Path(".data")
    queue_dir: Path = Path(".data/async-jobs")
    output_dir: Path = Path(".data/async-jobs/output")
    outbox_dir: Path = Path(".data/outbox")
    backend: str = "file"
    db_path: Path = Path(".data/async-bash.db")


@dataclass(slots=True)
class SchedulingSettings:
    """Scheduler cadence, concurrency and process policy."""

    concurrency: int = 2
    report_seconds: int = 60
    tick_seconds: float = 5.0
    default_timeout_ms: int = 86_400_000
    kill_grace_ms: int = 5_000
    shell: str = "bash"


@dataclass(slots=True)
class NotificationSettings:
    """Delivery target defaults and optional agent enrichment."""

    default_channel: str = "telegram"
    agent_url: str | None = None
    agent_session_id: str | None = None
    feedback_timeout_seconds: float = 60.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    storage: StorageSettings = field(default_factory=StorageSettings)
    scheduling: SchedulingSettings = field(default_factory=SchedulingSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, data_dir: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        resolved_data_dir = data_dir or Path(os.getenv("ASYNC_BASH_DATA_DIR", ".data"))
        queue_dir = _env_path("ASYNC_BASH_QUEUE_DIR", resolved_data_dir / "async-jobs")
        return cls(
            storage=StorageSettings(
                data_dir=resolved_data_dir,
                queue_dir=queue_dir,
                output_dir=_env_path("ASYNC_BASH_OUTPUT_DIR", queue_dir / "output"),
                outbox_dir=_env_path("ASYNC_BASH_OUTBOX_DIR", resolved_data_dir / "outbox"),
                backend=os.getenv("ASYNC_BASH_STORE_BACKEND", "file").strip().lower(),
                db_path=_env_path("ASYNC_BASH_DB_PATH", resolved_data_dir / "async-bash.db"),
            ),
            scheduling=SchedulingSettings(
                concurrency=int(os.getenv("ASYNC_BASH_CONCURRENCY", "2")),
                report_seconds=int(os.getenv("ASYNC_BASH_REPORT_SECONDS", "60")),
                tick_seconds=float(os.getenv("ASYNC_BASH_TICK_SECONDS", "5")),
                default_timeout_ms=int(os.getenv("ASYNC_BASH_DEFAULT_TIMEOUT_MS", "86400000")),
                kill_grace_ms=int(os.getenv("ASYNC_BASH_KILL_GRACE_MS", "5000")),
                shell=os.getenv("ASYNC_BASH_SHELL", "bash"),
            ),
            notifications=NotificationSettings(
                default_channel=os.getenv("ASYNC_BASH_DEFAULT_CHANNEL", "telegram"),
                agent_url=_env_optional("ASYNC_BASH_AGENT_URL"),
                agent_session_id=_env_optional("ASYNC_BASH_AGENT_SESSION_ID"),
                feedback_timeout_seconds=float(
                    os.getenv("ASYNC_BASH_FEEDBACK_TIMEOUT_SECONDS", "60"),
                ),
            ),
            log_level=os.getenv("ASYNC_BASH_LOG_LEVEL", "INFO").strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error for values the scheduler cannot run with."""

        if self.storage.backend not in STORE_BACKENDS:
            raise ValueError(
                f"ASYNC_BASH_STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}: "
                f"{self.storage.backend!r}",
            )
        if self.scheduling.concurrency < 1:
            raise ValueError("ASYNC_BASH_CONCURRENCY must be >= 1.")
        if self.scheduling.report_seconds < 1:
            raise ValueError("ASYNC_BASH_REPORT_SECONDS must be >= 1.")
        if self.scheduling.tick_seconds <= 0:
            raise ValueError("ASYNC_BASH_TICK_SECONDS must be > 0.")
        if self.scheduling.default_timeout_ms <= 0:
            raise ValueError("ASYNC_BASH_DEFAULT_TIMEOUT_MS must be a positive integer.")
        if self.scheduling.kill_grace_ms < 0:
            raise ValueError("ASYNC_BASH_KILL_GRACE_MS must be >= 0.")
        if not self.scheduling.shell.strip():
            raise ValueError("ASYNC_BASH_SHELL must not be empty.")
        if self.notifications.feedback_timeout_seconds <= 0:
            raise ValueError("ASYNC_BASH_FEEDBACK_TIMEOUT_SECONDS must be > 0.")
        agent_url = self.notifications.agent_url
        if agent_url is not None:
            parsed = urlparse(agent_url)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(
                    "Invalid ASYNC_BASH_AGENT_URL: "
                    f"{agent_url!r}. Expected an absolute URL with http:// or https:// scheme.",
                )
            if not self.notifications.agent_session_id:
                raise ValueError(
                    "ASYNC_BASH_AGENT_SESSION_ID is required when ASYNC_BASH_AGENT_URL is set.",
                )


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name, "").strip()
    return Path(value) if value else default


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None
