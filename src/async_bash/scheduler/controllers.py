"""Controllers for async-bash CLI commands."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Iterator
from contextlib import AsyncExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path

from async_bash.config import Settings
from async_bash.scheduler.agent_client import HttpAgentClient
from async_bash.scheduler.collaborators import AgentService, FileOutbox
from async_bash.scheduler.log_sink import read_log_tail
from async_bash.scheduler.models import JobNotFoundError, JobStatus
from async_bash.scheduler.notifier import FeedbackNotifier
from async_bash.scheduler.scheduler import JobScheduler, SchedulerSettings
from async_bash.scheduler.services import EnqueueJob, JobService
from async_bash.scheduler.store import FileJobStore, JobStore, SqliteJobStore
from async_bash.scheduler.timeutil import to_iso
from async_bash.scheduler.worker import WorkerSettings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class JobEnqueueCommand:
    """CLI input for queueing a command."""

    data_dir: Path | None
    command: str
    user_id: str
    channel: str | None
    workdir: str | None
    timeout_ms: int | None
    session_id: str | None


@dataclass(slots=True)
class JobListCommand:
    """CLI input for job listing."""

    data_dir: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class JobInspectCommand:
    """CLI input for job inspection."""

    data_dir: Path | None
    job_id: str


@dataclass(slots=True)
class JobTailCommand:
    """CLI input for printing the end of a job log."""

    data_dir: Path | None
    job_id: str
    max_bytes: int


@dataclass(slots=True)
class SchedulerRunCommand:
    """CLI input for running the scheduler."""

    data_dir: Path | None
    once: bool
    drain: bool


@dataclass(slots=True)
class RecoverCommand:
    """CLI input for a standalone recovery pass."""

    data_dir: Path | None


@dataclass(slots=True)
class OutboxListCommand:
    """CLI input for pending outbox messages."""

    data_dir: Path | None
    channel: str | None


@dataclass(slots=True)
class OutboxAckCommand:
    """CLI input for acknowledging a delivered outbox message."""

    data_dir: Path | None
    handle: str


class AsyncBashCliController:
    """Coordinates queue, scheduler, and inspection CLI operations."""

    def enqueue(self, command: JobEnqueueCommand) -> list[str]:
        settings = _settings(command.data_dir)
        with _store(settings) as store:
            service = JobService(
                store=store,
                default_timeout_ms=settings.scheduling.default_timeout_ms,
            )
            job = asyncio.run(
                service.enqueue(
                    EnqueueJob(
                        command=command.command,
                        user_id=command.user_id,
                        channel=command.channel or settings.notifications.default_channel,
                        workdir=command.workdir,
                        timeout_ms=command.timeout_ms,
                        session_id=command.session_id,
                    ),
                ),
            )
        return [
            f"Job queued: job_id={job.id} status={job.status.value} timeout_ms={job.timeout_ms}",
            "Progress updates and the final result will be sent to "
            f"{job.channel}/{job.user_id}.",
        ]

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = _settings(command.data_dir)
        status_filter = _parse_status(command.status)
        with _store(settings) as store:
            jobs = asyncio.run(store.list_jobs())
        if status_filter is not None:
            jobs = [job for job in jobs if job.status is status_filter]
        jobs = jobs[-command.limit :]

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            exit_text = "-" if job.exit_code is None else str(job.exit_code)
            lines.append(
                f"  {job.id} status={job.status.value} exit={exit_text} "
                f"created_at={to_iso(job.created_at)} command={_shorten(job.command)}",
            )
        return lines

    def inspect_job(self, command: JobInspectCommand) -> list[str]:
        settings = _settings(command.data_dir)
        with _store(settings) as store:
            try:
                job = asyncio.run(store.load(command.job_id))
            except JobNotFoundError:
                return [f"Job not found: {command.job_id}"]

        progress = job.progress
        return [
            f"Job: {job.id}",
            f"Command: {job.command}",
            f"Status: {job.status.value}",
            f"Workdir: {job.workdir or '-'}",
            f"Timeout: {job.timeout_ms}ms",
            f"Target: {job.channel}/{job.user_id or '-'}",
            f"Session: {job.session_id or '-'}",
            f"Created: {to_iso(job.created_at)}",
            f"Started: {to_iso(job.started_at) or '-'}",
            f"Finished: {to_iso(job.finished_at) or '-'}",
            f"Exit code: {'-' if job.exit_code is None else job.exit_code}",
            f"Error: {job.error or '-'}",
            f"Output: {job.output_file or '-'}",
            f"Completion notified: {to_iso(job.completion_notified_at) or '-'}",
            (
                f"Progress: total={progress.total_lines} lines/{progress.total_bytes} bytes "
                f"reports_sent={progress.reports_sent} "
                f"last_output_at={to_iso(progress.last_output_at) or '-'}"
            ),
        ]

    def tail_job(self, command: JobTailCommand) -> list[str]:
        settings = _settings(command.data_dir)
        with _store(settings) as store:
            try:
                job = asyncio.run(store.load(command.job_id))
            except JobNotFoundError:
                return [f"Job not found: {command.job_id}"]
        if not job.output_file:
            return [f"Job {job.id} has no output yet."]
        tail = read_log_tail(Path(job.output_file), command.max_bytes)
        return tail.splitlines() if tail else [f"Job {job.id} has no output yet."]

    def run_scheduler(self, command: SchedulerRunCommand) -> list[str]:
        settings = _settings(command.data_dir)
        _configure_logging(settings.log_level)
        with _store(settings) as store:
            active = asyncio.run(
                _run_scheduler(
                    settings=settings,
                    store=store,
                    once=command.once,
                    drain=command.drain,
                ),
            )
        return [f"Scheduler stopped: running_jobs={active}"]

    def recover(self, command: RecoverCommand) -> list[str]:
        settings = _settings(command.data_dir)
        with _store(settings) as store:
            recovered = asyncio.run(_recover(settings=settings, store=store))
        lines = [f"Recovered jobs: {len(recovered)}"]
        lines.extend(f"  {job_id} status=failed" for job_id in recovered)
        return lines

    def list_outbox(self, command: OutboxListCommand) -> list[str]:
        settings = _settings(command.data_dir)
        messages = FileOutbox(settings.storage.outbox_dir).list_pending(command.channel)
        lines = [f"Pending messages: {len(messages)}"]
        for message in messages:
            first_line = message.text.splitlines()[0] if message.text else ""
            lines.append(
                f"  {message.handle} {message.channel}/{message.user_id} {_shorten(first_line)}",
            )
        return lines

    def ack_outbox(self, command: OutboxAckCommand) -> list[str]:
        settings = _settings(command.data_dir)
        if FileOutbox(settings.storage.outbox_dir).ack(command.handle):
            return [f"Acknowledged: {command.handle}"]
        return [f"Message not found: {command.handle}"]


async def _run_scheduler(
    *,
    settings: Settings,
    store: JobStore,
    once: bool,
    drain: bool,
) -> int:
    async with AsyncExitStack() as stack:
        scheduler = await _build_scheduler(settings=settings, store=store, stack=stack)
        if once:
            await scheduler.recover()
            await scheduler.tick()
            if drain:
                await scheduler.drain()
            return scheduler.active_count

        stop = asyncio.Event()
        with _stop_on_signals(stop):
            await scheduler.run_forever(stop, drain=drain)
        return scheduler.active_count


async def _recover(*, settings: Settings, store: JobStore) -> list[str]:
    async with AsyncExitStack() as stack:
        scheduler = await _build_scheduler(settings=settings, store=store, stack=stack)
        recovered = await scheduler.recover()
    return [job.id for job in recovered]


async def _build_scheduler(
    *,
    settings: Settings,
    store: JobStore,
    stack: AsyncExitStack,
) -> JobScheduler:
    agent: AgentService | None = None
    notifications = settings.notifications
    if notifications.agent_url and notifications.agent_session_id:
        agent = await stack.enter_async_context(
            HttpAgentClient(
                base_url=notifications.agent_url,
                session_id=notifications.agent_session_id,
                timeout_seconds=notifications.feedback_timeout_seconds,
            ),
        )
    notifier = FeedbackNotifier(
        outbox=FileOutbox(settings.storage.outbox_dir),
        agent=agent,
        feedback_timeout_seconds=notifications.feedback_timeout_seconds,
    )
    scheduling = settings.scheduling
    return JobScheduler(
        store=store,
        notifier=notifier,
        worker_settings=WorkerSettings(
            output_dir=settings.storage.output_dir,
            shell=scheduling.shell,
            default_timeout_ms=scheduling.default_timeout_ms,
            kill_grace_ms=scheduling.kill_grace_ms,
        ),
        settings=SchedulerSettings(
            max_concurrency=scheduling.concurrency,
            report_interval_seconds=scheduling.report_seconds,
            tick_interval_seconds=scheduling.tick_seconds,
        ),
    )


@contextmanager
def _stop_on_signals(stop: asyncio.Event) -> Iterator[None]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError, ValueError):
            # Signal handlers can only be installed in main thread.
            continue
        installed.append(sig)
    try:
        yield
    finally:
        for sig in installed:
            with contextlib.suppress(ValueError, RuntimeError):
                loop.remove_signal_handler(sig)


@contextmanager
def _store(settings: Settings) -> Iterator[JobStore]:
    settings.validate()
    if settings.storage.backend == "sqlite":
        store = SqliteJobStore(settings.storage.db_path)
        store.init_schema()
        try:
            yield store
        finally:
            store.close()
        return
    yield FileJobStore(settings.storage.queue_dir)


def _settings(data_dir: Path | None) -> Settings:
    return Settings.from_env(data_dir=data_dir)


def _parse_status(value: str | None) -> JobStatus | None:
    if value is None:
        return None
    return JobStatus(value.lower())


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _shorten(text: str, limit: int = 60) -> str:
    single_line = " ".join(text.split())
    if len(single_line) <= limit:
        return single_line
    return single_line[: limit - 3] + "..."
