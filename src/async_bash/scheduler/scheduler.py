"""Periodic, non-overlapping scheduler for background shell jobs."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from async_bash.scheduler.models import Job, JobStatus
from async_bash.scheduler.notifier import FeedbackNotifier, NoticeStage
from async_bash.scheduler.store import JobStore, list_by_status, list_pending
from async_bash.scheduler.timeutil import utc_now
from async_bash.scheduler.worker import JobWorker, WorkerSettings

logger = logging.getLogger(__name__)

RECOVERY_ERROR = "worker restarted while command was running"


@dataclass(slots=True)
class SchedulerSettings:
    """Tick cadence and concurrency ceiling."""

    max_concurrency: int = 2
    report_interval_seconds: float = 60.0
    tick_interval_seconds: float = 5.0


class JobScheduler:
    """Reports on running jobs and admits queued ones, one tick at a time.

    All admission and mutation decisions happen inside :meth:`tick`, which is
    guarded by a busy flag: a tick requested while another one is still in
    flight is skipped, not queued.
    """

    def __init__(
        self,
        *,
        store: JobStore,
        notifier: FeedbackNotifier,
        worker_settings: WorkerSettings,
        settings: SchedulerSettings | None = None,
    ) -> None:
        settings = settings or SchedulerSettings()
        self.store = store
        self.notifier = notifier
        self.worker_settings = worker_settings
        self.max_concurrency = max(1, settings.max_concurrency)
        self.report_interval = timedelta(seconds=max(1.0, settings.report_interval_seconds))
        self.tick_interval_seconds = max(0.01, settings.tick_interval_seconds)
        self._workers: dict[str, JobWorker] = {}
        self._worker_tasks: dict[str, asyncio.Task[None]] = {}
        self._ticking = False
        self._tick_task: asyncio.Task[bool] | None = None

    @property
    def active_count(self) -> int:
        return len(self._workers)

    @property
    def running_job_ids(self) -> tuple[str, ...]:
        return tuple(self._workers)

    def worker_for(self, job_id: str) -> JobWorker | None:
        return self._workers.get(job_id)

    async def recover(self) -> list[Job]:
        """Fail jobs orphaned in ``running`` by a previous process and notify once."""

        recovered: list[Job] = []
        for job in await list_by_status(self.store, JobStatus.RUNNING):
            if job.completion_notified_at is not None or job.id in self._workers:
                continue
            now = utc_now()
            job.transition_to(JobStatus.FAILED)
            job.error = RECOVERY_ERROR
            job.finished_at = now
            job.mark_completion_notified(at=now)
            await self.store.save(job)
            await self.notifier.notify(
                job,
                NoticeStage.COMPLETION,
                f"[async_bash {job.id}] Marked failed: worker restarted while job was running.",
            )
            logger.warning("Recovered interrupted job %s as failed", job.id)
            recovered.append(job)
        return recovered

    async def tick(self) -> bool:
        """Run one report+admit cycle.

        Returns ``False`` only when skipped because another tick is in flight.
        A cycle whose body raised is logged and still returns ``True``: the
        tick ran, and the next one retries from the persisted state.
        """

        if self._ticking:
            logger.debug("Tick skipped: previous tick still running")
            return False
        self._ticking = True
        try:
            await self.report_running_jobs()
            await self.admit_queued_jobs()
        except Exception:  # noqa: BLE001
            logger.exception("Scheduler tick failed")
        finally:
            self._ticking = False
        return True

    async def report_running_jobs(self, now: datetime | None = None) -> list[str]:
        """Send a progress notice for every worker whose report interval elapsed."""

        now = now or utc_now()
        reported: list[str] = []
        for worker in list(self._workers.values()):
            job = worker.job
            if job.status is not JobStatus.RUNNING:
                continue
            progress = job.progress
            last_report_at = progress.last_report_at
            if last_report_at is not None and now - last_report_at < self.report_interval:
                continue

            raw = await worker.build_progress_report(now)
            await self.notifier.notify(job, NoticeStage.PROGRESS, raw)
            progress.mark_reported(at=now)
            await self.store.save(job)
            reported.append(job.id)
        return reported

    async def admit_queued_jobs(self) -> list[str]:
        """Start workers for the oldest queued jobs while capacity remains."""

        if len(self._workers) >= self.max_concurrency:
            return []
        admitted: list[str] = []
        for job in await list_pending(self.store):
            if len(self._workers) >= self.max_concurrency:
                break
            if job.id in self._workers:
                continue
            if await self._start_worker(job):
                admitted.append(job.id)
        return admitted

    async def run_forever(self, stop: asyncio.Event, *, drain: bool = False) -> None:
        """Recover, then fire a tick every interval until ``stop`` is set."""

        await self.recover()
        logger.info(
            "async_bash scheduler started: max_concurrency=%d report_interval=%ss",
            self.max_concurrency,
            int(self.report_interval.total_seconds()),
        )
        while not stop.is_set():
            if not self._ticking:
                self._tick_task = asyncio.create_task(self.tick())
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=self.tick_interval_seconds)

        if self._tick_task is not None:
            await self._tick_task
        if drain:
            await self.drain()
        else:
            await self.cancel_workers()
        logger.info("async_bash scheduler stopped with %d running job(s)", self.active_count)

    async def drain(self) -> None:
        """Wait until every started worker has finished."""

        while self._worker_tasks:
            await asyncio.gather(*list(self._worker_tasks.values()), return_exceptions=True)

    async def cancel_workers(self) -> list[str]:
        """Cancel every in-flight worker; their process groups are killed.

        Interrupted jobs stay ``running`` in the store and are failed by the
        next recovery pass.
        """

        tasks = dict(self._worker_tasks)
        if not tasks:
            return []
        logger.warning("Stopping %d running job(s) without draining", len(tasks))
        for task in tasks.values():
            task.cancel()
        await asyncio.gather(*tasks.values(), return_exceptions=True)
        return list(tasks)

    async def _start_worker(self, job: Job) -> bool:
        worker = JobWorker(
            job=job,
            store=self.store,
            notifier=self.notifier,
            settings=self.worker_settings,
        )
        self._workers[job.id] = worker
        try:
            await worker.start()
        except Exception:  # noqa: BLE001
            logger.exception("Failed to start job %s", job.id)
            self._workers.pop(job.id, None)
            return False
        self._worker_tasks[job.id] = asyncio.create_task(self._run_worker(worker))
        return True

    async def _run_worker(self, worker: JobWorker) -> None:
        job_id = worker.job.id
        try:
            await worker.run()
        except Exception:  # noqa: BLE001
            logger.exception("Worker for job %s crashed", job_id)
        finally:
            self._workers.pop(job_id, None)
            self._worker_tasks.pop(job_id, None)
