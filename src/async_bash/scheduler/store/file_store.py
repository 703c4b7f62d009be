"""File-per-job descriptor store."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from async_bash.scheduler.models import Job, JobNotFoundError
from async_bash.scheduler.timeutil import utc_now

logger = logging.getLogger(__name__)

DESCRIPTOR_SUFFIX = ".json"


class FileJobStore:
    """Durable queue of JSON descriptors, one file per job named by its id."""

    def __init__(self, queue_dir: Path) -> None:
        self.queue_dir = queue_dir
        self._write_lock = asyncio.Lock()

    def path_for(self, job_id: str) -> Path:
        return self.queue_dir / f"{job_id}{DESCRIPTOR_SUFFIX}"

    async def list_jobs(self) -> list[Job]:
        return await asyncio.to_thread(self._read_all)

    async def load(self, job_id: str) -> Job:
        path = self.path_for(job_id)
        try:
            raw = await asyncio.to_thread(load_json, path)
        except FileNotFoundError as error:
            raise JobNotFoundError(f"Job not found: {job_id}") from error
        return Job.from_dict(raw)

    async def save(self, job: Job) -> None:
        async with self._write_lock:
            job.updated_at = utc_now()
            payload = job.to_dict()
            await asyncio.to_thread(write_json, self.path_for(job.id), payload)

    def _read_all(self) -> list[Job]:
        self.queue_dir.mkdir(parents=True, exist_ok=True)
        jobs: list[Job] = []
        for path in sorted(self.queue_dir.glob(f"*{DESCRIPTOR_SUFFIX}")):
            try:
                jobs.append(Job.from_dict(load_json(path)))
            except (OSError, ValueError, TypeError) as error:
                logger.debug("Skipping malformed job descriptor %s: %s", path, error)
        jobs.sort(key=lambda job: job.created_at)
        return jobs


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Replace ``path`` with the JSON payload via a temp file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")
    os.replace(tmp_path, path)


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload
