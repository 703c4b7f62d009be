"""Application service that turns a command request into a queued job."""

from __future__ import annotations

import re
import secrets
import string
import time
from dataclasses import dataclass

from async_bash.scheduler.models import Job, JobStatus
from async_bash.scheduler.store import JobStore
from async_bash.scheduler.timeutil import utc_now
from async_bash.scheduler.worker import MIN_TIMEOUT_MS

_ID_ALPHABET = string.digits + string.ascii_lowercase
_DANGEROUS_PATTERNS = (
    re.compile(r"(^|\s)shutdown(\s|$)"),
    re.compile(r"(^|\s)reboot(\s|$)"),
    re.compile(r"(^|\s)halt(\s|$)"),
    re.compile(r"(^|\s)poweroff(\s|$)"),
    re.compile(r"rm\s+-rf\s+/$"),
    re.compile(r"rm\s+-rf\s+/\s"),
    re.compile(r":\(\)\s*\{\s*:\|:&\s*\};:"),
    re.compile(r"mkfs(\.|\s)"),
    re.compile(r"dd\s+if=/dev/zero\s+of=/dev/"),
)


class CommandRejectedError(ValueError):
    """Command refused before it reached the queue."""


@dataclass(slots=True)
class EnqueueJob:
    """Input for queueing one background command."""

    command: str
    user_id: str
    channel: str = "telegram"
    workdir: str | None = None
    timeout_ms: int | None = None
    session_id: str | None = None


class JobService:
    """Validates requests and writes ``queued`` job descriptors."""

    def __init__(self, *, store: JobStore, default_timeout_ms: int = 86_400_000) -> None:
        self.store = store
        self.default_timeout_ms = default_timeout_ms

    async def enqueue(self, request: EnqueueJob) -> Job:
        command = request.command.strip()
        if not command:
            raise CommandRejectedError("command is required")
        if command_is_dangerous(command):
            raise CommandRejectedError(
                "Blocked by async_bash safety policy: dangerous command pattern detected.",
            )

        timeout_ms = (
            request.timeout_ms if request.timeout_ms is not None else self.default_timeout_ms
        )
        workdir = request.workdir.strip() if request.workdir else None
        now = utc_now()
        job = Job(
            id=make_job_id(),
            command=command,
            workdir=workdir or None,
            timeout_ms=max(MIN_TIMEOUT_MS, timeout_ms),
            status=JobStatus.QUEUED,
            channel=request.channel,
            user_id=request.user_id,
            session_id=request.session_id,
            created_at=now,
            updated_at=now,
        )
        await self.store.save(job)
        return job


def command_is_dangerous(command: str) -> bool:
    lowered = command.lower()
    return any(pattern.search(lowered) for pattern in _DANGEROUS_PATTERNS)


def make_job_id() -> str:
    """Time-derived id: epoch milliseconds plus six random base36 characters."""

    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{int(time.time() * 1000)}-{suffix}"
