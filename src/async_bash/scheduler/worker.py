"""Worker that owns one job's subprocess from start to a terminal status."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from async_bash.scheduler.log_sink import DEFAULT_PREVIEW_BYTES, DEFAULT_TAIL_BYTES, LogSink
from async_bash.scheduler.models import Job, JobStatus
from async_bash.scheduler.notifier import FeedbackNotifier, NoticeStage
from async_bash.scheduler.store import JobStore
from async_bash.scheduler.timeutil import elapsed_ms, format_duration, to_iso, utc_now

logger = logging.getLogger(__name__)

MIN_TIMEOUT_MS = 1_000
PUMP_CHUNK_BYTES = 64 * 1024
ABORT_REAP_SECONDS = 5.0


@dataclass(slots=True)
class WorkerSettings:
    """Execution knobs shared by every worker of one scheduler."""

    output_dir: Path
    shell: str = "bash"
    default_timeout_ms: int = 86_400_000
    kill_grace_ms: int = 5_000
    preview_bytes: int = DEFAULT_PREVIEW_BYTES
    preview_chars: int = 4_000
    tail_bytes: int = DEFAULT_TAIL_BYTES


class JobWorker:
    """Runs exactly one job: spawn, pump output, enforce timeout, finalize."""

    def __init__(
        self,
        *,
        job: Job,
        store: JobStore,
        notifier: FeedbackNotifier,
        settings: WorkerSettings,
    ) -> None:
        self.job = job
        self.store = store
        self.notifier = notifier
        self.settings = settings
        self.timed_out = False
        self.log_sink = LogSink(self._resolve_output_file())
        self._process: asyncio.subprocess.Process | None = None
        self._pumps: list[asyncio.Task[None]] = []
        self._watchdog: asyncio.Task[None] | None = None
        self._start_error: str | None = None
        self._log_write_failed = False

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def effective_timeout_ms(self) -> int:
        return max(MIN_TIMEOUT_MS, self.job.timeout_ms)

    async def execute(self) -> Job:
        """Start and run to completion."""

        await self.start()
        return await self.run()

    async def start(self) -> None:
        """Prepare the log, mark the job running, announce it and spawn."""

        job = self.job
        if job.timeout_ms <= 0:
            job.timeout_ms = self.settings.default_timeout_ms
        job.output_file = str(self.log_sink.path)

        started_at = utc_now()
        try:
            await self.log_sink.write_header(
                job_id=job.id,
                started_at=to_iso(started_at) or "",
                command=job.command,
            )
        except OSError as error:
            self._start_error = f"Failed to prepare output log: {error}"

        job.transition_to(JobStatus.RUNNING)
        job.started_at = started_at
        job.progress.last_report_at = started_at
        await self.store.save(job)

        workdir_note = f" workdir={job.workdir}" if job.workdir else ""
        await self.notifier.notify(
            job,
            NoticeStage.PROGRESS,
            f"[async_bash {job.id}] Started. timeout={job.timeout_ms}ms{workdir_note}",
        )

        if self._start_error is None:
            await self._spawn()

    async def run(self) -> Job:
        """Wait for the process, then finalize, report and persist the job."""

        exit_code: int | None = None
        if self._process is not None:
            try:
                exit_code = await self._process.wait()
                await asyncio.gather(*self._pumps)
            except asyncio.CancelledError:
                await self._abort()
                raise
            except Exception as error:  # noqa: BLE001
                self.job.error = str(error) or type(error).__name__
            finally:
                await self._cancel_watchdog()
        elif self._start_error is not None:
            self.job.error = self._start_error

        self._finalize(exit_code=exit_code, finished_at=utc_now())
        await self._report_completion()
        self.job.mark_completion_notified()
        await self.store.save(self.job)
        logger.info(
            "Job %s finished: status=%s exit_code=%s",
            self.job.id,
            self.job.status.value,
            self.job.exit_code,
        )
        return self.job

    async def build_progress_report(self, now: datetime) -> str:
        """Raw periodic progress text for the notifier."""

        job = self.job
        progress = job.progress
        output_age = (
            format_duration(elapsed_ms(progress.last_output_at, now))
            if progress.last_output_at is not None
            else "n/a"
        )
        tail = await self.log_sink.read_tail(self.settings.tail_bytes)
        lines = [
            f"[async_bash {job.id}] running {format_duration(elapsed_ms(job.started_at, now))}.",
            (
                f"delta_output={progress.delta_lines_since_report} lines, "
                f"{progress.delta_bytes_since_report} bytes in last interval."
            ),
            f"total_output={progress.total_lines} lines, {progress.total_bytes} bytes.",
            f"last_output_age={output_age}",
        ]
        if tail:
            lines.extend(["recent output tail:", tail])
        return "\n".join(lines)

    def _resolve_output_file(self) -> Path:
        if self.job.output_file and self.job.output_file.strip():
            return Path(self.job.output_file)
        return self.settings.output_dir / f"{self.job.id}.log"

    async def _spawn(self) -> None:
        job = self.job
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.settings.shell,
                "-c",
                job.command,
                cwd=job.workdir or None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except Exception as error:  # noqa: BLE001
            self._start_error = f"Failed to spawn command: {error}"
            logger.warning("Job %s failed to spawn: %s", job.id, error)
            return

        self._pumps = [
            asyncio.create_task(self._pump(self._process.stdout)),
            asyncio.create_task(self._pump(self._process.stderr)),
        ]
        self._watchdog = asyncio.create_task(self._enforce_timeout())

    async def _pump(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(PUMP_CHUNK_BYTES)
            if not chunk:
                return
            self.job.progress.record_output(chunk)
            try:
                await self.log_sink.append(chunk)
            except OSError:
                # Keep draining so the child never blocks on a full pipe.
                if not self._log_write_failed:
                    logger.warning(
                        "Job %s: cannot append to %s",
                        self.job.id,
                        self.log_sink.path,
                        exc_info=True,
                    )
                self._log_write_failed = True

    async def _enforce_timeout(self) -> None:
        await asyncio.sleep(self.effective_timeout_ms / 1000)
        self.timed_out = True
        logger.info("Job %s timed out after %sms, terminating", self.job.id, self.job.timeout_ms)
        self._send_signal(signal.SIGTERM)
        await asyncio.sleep(max(0, self.settings.kill_grace_ms) / 1000)
        logger.warning("Job %s ignored SIGTERM, killing", self.job.id)
        self._send_signal(signal.SIGKILL)

    def _send_signal(self, sig: signal.Signals) -> None:
        process = self._process
        if process is None:
            return
        # The shell leads its own session; signal the whole group so children
        # that still hold the output pipes go down with it.
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            return
        except OSError:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.send_signal(sig)

    async def _abort(self) -> None:
        """Kill the process group of a worker whose task is being cancelled.

        The command runs in its own session, so a terminal interrupt never
        reaches it.
        The job stays ``running`` and the next recovery pass fails it.
        """

        process = self._process
        if process is None:
            return
        logger.warning("Job %s interrupted, killing process group %s", self.job.id, process.pid)
        self._send_signal(signal.SIGKILL)
        for pump in self._pumps:
            pump.cancel()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(process.wait(), timeout=ABORT_REAP_SECONDS)

    async def _cancel_watchdog(self) -> None:
        watchdog = self._watchdog
        if watchdog is None:
            return
        watchdog.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watchdog

    def _finalize(self, *, exit_code: int | None, finished_at: datetime) -> None:
        job = self.job
        job.finished_at = finished_at
        if self.timed_out:
            job.transition_to(JobStatus.TIMEOUT)
            job.error = f"Timed out after {job.timeout_ms}ms"
            job.exit_code = None
        elif exit_code == 0:
            job.transition_to(JobStatus.COMPLETED)
            job.exit_code = exit_code
        else:
            job.transition_to(JobStatus.FAILED)
            job.exit_code = exit_code

    async def _report_completion(self) -> None:
        job = self.job
        preview = await self.log_sink.read_preview(self.settings.preview_bytes)
        preview_text = preview.text.strip()[: self.settings.preview_chars] or "<no output>"
        exit_text = "null" if job.exit_code is None else str(job.exit_code)
        elapsed = format_duration(elapsed_ms(job.started_at, job.finished_at))

        lines = [
            f"[async_bash {job.id}] {job.status.value}.",
            f"exit={exit_text}, elapsed={elapsed}.",
            f"log={job.output_file}",
        ]
        if job.error:
            lines.append(f"error={job.error}")
        lines.extend(
            [
                "output preview is truncated." if preview.truncated else "output preview:",
                preview_text,
            ],
        )
        await self.notifier.notify(job, NoticeStage.COMPLETION, "\n".join(lines))

        await self.notifier.inject_context(
            job,
            "\n".join(
                [
                    f"[async_bash result] id={job.id}",
                    f"status={job.status.value}",
                    f"exitCode={exit_text}",
                    f"command={job.command}",
                    f"workdir={job.workdir or os.getcwd()}",
                    f"outputFile={job.output_file}",
                    "preview=(truncated)" if preview.truncated else "preview=(full)",
                    preview_text,
                ],
            ),
        )
