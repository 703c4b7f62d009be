"""Domain models for background shell jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from async_bash.scheduler.timeutil import from_iso, to_iso, utc_now


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    # Reserved: nothing in the scheduler produces it yet.
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self]

    def can_transition_to(self, target: JobStatus) -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMEOUT, JobStatus.CANCELLED},
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.TIMEOUT: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class InvalidStatusTransitionError(ValueError):
    """Raised when a job is asked to move against its lifecycle."""

    def __init__(self, job_id: str, current: JobStatus, target: JobStatus) -> None:
        super().__init__(
            f"Job {job_id}: illegal status transition {current.value} -> {target.value}",
        )
        self.job_id = job_id
        self.current = current
        self.target = target


class JobNotFoundError(LookupError):
    """Raised when a job id has no persisted descriptor."""


@dataclass(slots=True)
class Progress:
    """Incremental output accounting for one running job."""

    total_bytes: int = 0
    total_lines: int = 0
    delta_bytes_since_report: int = 0
    delta_lines_since_report: int = 0
    reports_sent: int = 0
    last_report_at: datetime | None = None
    last_output_at: datetime | None = None

    def record_output(self, chunk: bytes, *, at: datetime | None = None) -> None:
        """Fold one output chunk into cumulative and per-interval counters."""

        size = len(chunk)
        lines = chunk.count(b"\n")
        self.total_bytes += size
        self.total_lines += lines
        self.delta_bytes_since_report += size
        self.delta_lines_since_report += lines
        self.last_output_at = at or utc_now()

    def mark_reported(self, *, at: datetime | None = None) -> None:
        """Reset per-interval counters after a periodic report."""

        self.reports_sent += 1
        self.last_report_at = at or utc_now()
        self.delta_bytes_since_report = 0
        self.delta_lines_since_report = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalBytes": self.total_bytes,
            "totalLines": self.total_lines,
            "deltaBytesSinceReport": self.delta_bytes_since_report,
            "deltaLinesSinceReport": self.delta_lines_since_report,
            "reportsSent": self.reports_sent,
            "lastReportAt": to_iso(self.last_report_at),
            "lastOutputAt": to_iso(self.last_output_at),
        }

    @classmethod
    def from_dict(cls, raw: Any) -> Progress:
        if not isinstance(raw, dict):
            return cls()
        return cls(
            total_bytes=_int_or_zero(raw.get("totalBytes")),
            total_lines=_int_or_zero(raw.get("totalLines")),
            delta_bytes_since_report=_int_or_zero(raw.get("deltaBytesSinceReport")),
            delta_lines_since_report=_int_or_zero(raw.get("deltaLinesSinceReport")),
            reports_sent=_int_or_zero(raw.get("reportsSent")),
            last_report_at=_optional_datetime(raw.get("lastReportAt")),
            last_output_at=_optional_datetime(raw.get("lastOutputAt")),
        )


@dataclass(slots=True)
class Job:
    """One queued shell command and its full lifecycle record."""

    id: str
    command: str
    timeout_ms: int
    created_at: datetime
    updated_at: datetime
    status: JobStatus = JobStatus.QUEUED
    workdir: str | None = None
    channel: str = "telegram"
    user_id: str = ""
    session_id: str | None = None
    output_file: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    exit_code: int | None = None
    error: str | None = None
    completion_notified_at: datetime | None = None
    progress: Progress = field(default_factory=Progress)

    def transition_to(self, target: JobStatus) -> None:
        """Move to ``target`` or raise if the lifecycle forbids it."""

        if not self.status.can_transition_to(target):
            raise InvalidStatusTransitionError(self.id, self.status, target)
        self.status = target

    def mark_completion_notified(self, *, at: datetime | None = None) -> None:
        if not self.status.is_terminal:
            raise ValueError(
                f"Job {self.id}: completion notice requires a terminal status, "
                f"got {self.status.value}",
            )
        if self.completion_notified_at is None:
            self.completion_notified_at = at or utc_now()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted descriptor layout."""

        payload: dict[str, Any] = {
            "id": self.id,
            "command": self.command,
            "workdir": self.workdir,
            "timeoutMs": self.timeout_ms,
            "status": self.status.value,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
            "startedAt": to_iso(self.started_at),
            "finishedAt": to_iso(self.finished_at),
            "exitCode": self.exit_code,
            "error": self.error,
            "outputFile": self.output_file,
            "completionNotifiedAt": to_iso(self.completion_notified_at),
            "channel": self.channel,
            "userID": self.user_id,
            "sessionID": self.session_id,
            "progress": self.progress.to_dict(),
        }
        return {key: value for key, value in payload.items() if value is not None}

    @classmethod
    def from_dict(cls, raw: Any) -> Job:
        """Deserialize and validate a persisted descriptor."""

        if not isinstance(raw, dict):
            raise TypeError("job descriptor must be an object")
        job_id = raw.get("id")
        command = raw.get("command")
        if not isinstance(job_id, str) or not job_id.strip():
            raise ValueError("job.id must be a non-empty string")
        if not isinstance(command, str):
            raise TypeError("job.command must be a string")

        timeout_raw = raw.get("timeoutMs")
        timeout_ms = int(timeout_raw) if isinstance(timeout_raw, int | float) else 0
        created_at = _optional_datetime(raw.get("createdAt")) or utc_now()
        exit_code_raw = raw.get("exitCode")
        workdir = raw.get("workdir")

        return cls(
            id=job_id,
            command=command,
            timeout_ms=timeout_ms,
            created_at=created_at,
            updated_at=_optional_datetime(raw.get("updatedAt")) or created_at,
            status=JobStatus(raw.get("status", JobStatus.QUEUED.value)),
            workdir=workdir if isinstance(workdir, str) and workdir.strip() else None,
            channel=str(raw.get("channel") or "telegram"),
            user_id=str(raw.get("userID") or ""),
            session_id=_optional_str(raw.get("sessionID")),
            output_file=_optional_str(raw.get("outputFile")),
            started_at=_optional_datetime(raw.get("startedAt")),
            finished_at=_optional_datetime(raw.get("finishedAt")),
            exit_code=int(exit_code_raw) if isinstance(exit_code_raw, int) else None,
            error=_optional_str(raw.get("error")),
            completion_notified_at=_optional_datetime(raw.get("completionNotifiedAt")),
            progress=Progress.from_dict(raw.get("progress")),
        )


def _int_or_zero(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    return int(value)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _optional_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return from_iso(value)
    except ValueError:
        return None
