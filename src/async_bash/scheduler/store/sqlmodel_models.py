"""SQLModel ORM table for the SQLite job store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class AsyncBashJobRow(SQLModel, table=True):
    __tablename__ = "async_bash_jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_async_bash_jobs_queue", "status", "created_at"),)

    job_id: str = Field(primary_key=True)
    command: str = Field(sa_column=Column(Text, nullable=False))
    workdir: str | None = None
    timeout_ms: int
    status: str = Field(index=True)
    channel: str
    user_id: str = Field(index=True)
    session_id: str | None = None
    output_file: str | None = None
    exit_code: int | None = None
    error: str | None = Field(default=None, sa_column=Column(Text))
    progress_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completion_notified_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
