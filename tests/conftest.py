"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

import pytest

from async_bash.scheduler.models import Job, JobStatus
from async_bash.scheduler.notifier import FeedbackNotifier
from async_bash.scheduler.scheduler import JobScheduler, SchedulerSettings
from async_bash.scheduler.store import FileJobStore
from async_bash.scheduler.timeutil import utc_now
from async_bash.scheduler.worker import WorkerSettings


@dataclass
class SentMessage:
    channel: str
    user_id: str
    text: str


@dataclass
class RecordingOutbox:
    """In-memory ``OutboxSink`` that can be told to fail."""

    messages: list[SentMessage] = field(default_factory=list)
    fail: bool = False

    async def enqueue(self, channel: str, user_id: str, text: str) -> str:
        if self.fail:
            raise OSError("outbox unavailable")
        self.messages.append(SentMessage(channel=channel, user_id=user_id, text=text))
        return f"msg-{len(self.messages)}"

    def texts_for(self, job_id: str) -> list[str]:
        return [m.text for m in self.messages if f"[async_bash {job_id}]" in m.text]


@dataclass
class FakeAgent:
    """Scriptable ``AgentService``."""

    reply: str = "Looks fine."
    fail: bool = False
    asks: list[str] = field(default_factory=list)
    injected: list[str] = field(default_factory=list)

    async def ask(self, channel: str, user_id: str, text: str) -> str:
        self.asks.append(text)
        if self.fail:
            raise RuntimeError("agent offline")
        return self.reply

    async def inject_context(self, text: str) -> None:
        self.injected.append(text)


def _make_job(
    job_id: str,
    command: str,
    *,
    timeout_ms: int = 5_000,
    age_seconds: float = 0.0,
    status: JobStatus = JobStatus.QUEUED,
    user_id: str = "42",
) -> Job:
    created_at = utc_now() - timedelta(seconds=age_seconds)
    return Job(
        id=job_id,
        command=command,
        timeout_ms=timeout_ms,
        created_at=created_at,
        updated_at=created_at,
        status=status,
        user_id=user_id,
        session_id="session-1",
    )


async def _wait_until_idle(scheduler: JobScheduler, *, timeout: float = 20.0) -> int:
    """Tick until nothing is queued or running; returns the peak active count."""

    peak = 0
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        await scheduler.tick()
        peak = max(peak, scheduler.active_count)
        pending = [
            job for job in await scheduler.store.list_jobs() if job.status is JobStatus.QUEUED
        ]
        if not pending and scheduler.active_count == 0:
            return peak
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("scheduler did not become idle in time")
        await asyncio.sleep(0.05)
        peak = max(peak, scheduler.active_count)


@pytest.fixture()
def make_job():
    return _make_job


@pytest.fixture()
def wait_until_idle():
    return _wait_until_idle


@pytest.fixture()
def outbox() -> RecordingOutbox:
    return RecordingOutbox()


@pytest.fixture()
def agent() -> FakeAgent:
    return FakeAgent()


@pytest.fixture()
def store(tmp_path: Path) -> FileJobStore:
    return FileJobStore(tmp_path / "queue")


@pytest.fixture()
def notifier(outbox: RecordingOutbox, agent: FakeAgent) -> FeedbackNotifier:
    return FeedbackNotifier(outbox=outbox, agent=agent, feedback_timeout_seconds=5)


@pytest.fixture()
def worker_settings(tmp_path: Path) -> WorkerSettings:
    return WorkerSettings(output_dir=tmp_path / "queue" / "output", kill_grace_ms=5_000)


@pytest.fixture()
def make_scheduler(store, notifier, worker_settings):
    def _factory(max_concurrency: int = 1, report_interval_seconds: float = 60) -> JobScheduler:
        return JobScheduler(
            store=store,
            notifier=notifier,
            worker_settings=worker_settings,
            settings=SchedulerSettings(
                max_concurrency=max_concurrency,
                report_interval_seconds=report_interval_seconds,
                tick_interval_seconds=0.05,
            ),
        )

    return _factory
