"""Storage interface for durable job records."""

from __future__ import annotations

from typing import Protocol

from async_bash.scheduler.models import Job, JobStatus


class JobStore(Protocol):
    """Protocol implemented by job record backends."""

    async def list_jobs(self) -> list[Job]:
        """Return every readable job ordered by ``created_at`` ascending."""

    async def load(self, job_id: str) -> Job:
        """Return one job or raise ``JobNotFoundError``."""

    async def save(self, job: Job) -> None:
        """Refresh ``updated_at`` and rewrite the whole record."""


async def list_by_status(store: JobStore, status: JobStatus) -> list[Job]:
    """Jobs in one status, oldest first."""

    return [job for job in await store.list_jobs() if job.status is status]


async def list_pending(store: JobStore) -> list[Job]:
    """Queued jobs, oldest first."""

    return await list_by_status(store, JobStatus.QUEUED)
