"""Create async_bash_jobs table for the SQLite job store."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "async_bash_jobs",
        sa.Column("job_id", sa.String(), primary_key=True),
        sa.Column("command", sa.Text(), nullable=False),
        sa.Column("workdir", sa.String(), nullable=True),
        sa.Column("timeout_ms", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("channel", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("output_file", sa.String(), nullable=True),
        sa.Column("exit_code", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("progress_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_notified_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_async_bash_jobs_status", "async_bash_jobs", ["status"])
    op.create_index("ix_async_bash_jobs_user_id", "async_bash_jobs", ["user_id"])
    op.create_index(
        "idx_async_bash_jobs_queue",
        "async_bash_jobs",
        ["status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_async_bash_jobs_queue", table_name="async_bash_jobs")
    op.drop_index("ix_async_bash_jobs_user_id", table_name="async_bash_jobs")
    op.drop_index("ix_async_bash_jobs_status", table_name="async_bash_jobs")
    op.drop_table("async_bash_jobs")
