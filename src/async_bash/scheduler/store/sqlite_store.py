"""Job store backed by SQLModel + SQLite."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import Session, col, create_engine, select

from async_bash.scheduler.models import Job, JobNotFoundError, JobStatus, Progress
from async_bash.scheduler.store.alembic_runner import upgrade_head
from async_bash.scheduler.store.sqlmodel_models import AsyncBashJobRow
from async_bash.scheduler.timeutil import utc_now

logger = logging.getLogger(__name__)


class SqliteJobStore:
    """Embedded-database alternative to the file-per-job store."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
        self._write_lock = asyncio.Lock()

    def init_schema(self) -> None:
        """Run schema migrations."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    def close(self) -> None:
        self.engine.dispose()

    async def list_jobs(self) -> list[Job]:
        return await asyncio.to_thread(self._read_all)

    async def load(self, job_id: str) -> Job:
        job = await asyncio.to_thread(self._read_one, job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    async def save(self, job: Job) -> None:
        async with self._write_lock:
            job.updated_at = utc_now()
            row = _to_row(job)
            await asyncio.to_thread(self._write_row, row)

    def _read_all(self) -> list[Job]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AsyncBashJobRow).order_by(
                    col(AsyncBashJobRow.created_at).asc(),
                    col(AsyncBashJobRow.job_id).asc(),
                ),
            ).all()
        jobs: list[Job] = []
        for row in rows:
            try:
                jobs.append(_to_job(row))
            except (ValueError, TypeError) as error:
                logger.debug("Skipping malformed job row %s: %s", row.job_id, error)
        return jobs

    def _read_one(self, job_id: str) -> Job | None:
        with Session(self.engine) as session:
            row = session.get(AsyncBashJobRow, job_id)
            return _to_job(row) if row is not None else None

    def _write_row(self, row: AsyncBashJobRow) -> None:
        with Session(self.engine) as session:
            session.merge(row)
            session.commit()


def build_sqlite_engine(*, db_path: Path, busy_timeout_ms: int) -> Engine:
    """Build SQLAlchemy engine with consistent SQLite policy."""

    db_url = f"sqlite:///{db_path}"
    engine = create_engine(
        db_url,
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )
    event.listen(
        engine,
        "connect",
        lambda dbapi_connection, _: _apply_sqlite_pragmas(
            dbapi_connection,
            busy_timeout_ms=busy_timeout_ms,
        ),
    )
    return engine


def _apply_sqlite_pragmas(dbapi_connection, *, busy_timeout_ms: int) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
    cursor.close()


def _to_row(job: Job) -> AsyncBashJobRow:
    return AsyncBashJobRow(
        job_id=job.id,
        command=job.command,
        workdir=job.workdir,
        timeout_ms=job.timeout_ms,
        status=job.status.value,
        channel=job.channel,
        user_id=job.user_id,
        session_id=job.session_id,
        output_file=job.output_file,
        exit_code=job.exit_code,
        error=job.error,
        progress_json=json.dumps(job.progress.to_dict(), sort_keys=True),
        created_at=job.created_at,
        updated_at=job.updated_at,
        started_at=job.started_at,
        finished_at=job.finished_at,
        completion_notified_at=job.completion_notified_at,
    )


def _to_job(row: AsyncBashJobRow) -> Job:
    return Job(
        id=row.job_id,
        command=row.command,
        workdir=row.workdir,
        timeout_ms=row.timeout_ms,
        status=JobStatus(row.status),
        channel=row.channel,
        user_id=row.user_id,
        session_id=row.session_id,
        output_file=row.output_file,
        exit_code=row.exit_code,
        error=row.error,
        progress=Progress.from_dict(json.loads(row.progress_json)),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        started_at=_optional_utc(row.started_at),
        finished_at=_optional_utc(row.finished_at),
        completion_notified_at=_optional_utc(row.completion_notified_at),
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _optional_utc(value: datetime | None) -> datetime | None:
    return _as_utc(value) if value is not None else None
