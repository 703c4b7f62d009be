from datetime import UTC, datetime

import allure
import pytest

from async_bash.scheduler.models import (
    InvalidStatusTransitionError,
    Job,
    JobStatus,
    Progress,
)

pytestmark = [
    allure.epic("Job lifecycle"),
    allure.feature("Domain models"),
]


def _job(**overrides) -> Job:
    created = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)
    values = {
        "id": "1760778000000-abc123",
        "command": "echo hi",
        "timeout_ms": 5_000,
        "created_at": created,
        "updated_at": created,
    }
    values.update(overrides)
    return Job(**values)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (JobStatus.QUEUED, JobStatus.RUNNING),
        (JobStatus.RUNNING, JobStatus.COMPLETED),
        (JobStatus.RUNNING, JobStatus.FAILED),
        (JobStatus.RUNNING, JobStatus.TIMEOUT),
    ],
)
def test_allowed_transitions(current: JobStatus, target: JobStatus) -> None:
    job = _job(status=current)
    job.transition_to(target)
    assert job.status is target


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (JobStatus.QUEUED, JobStatus.COMPLETED),
        (JobStatus.COMPLETED, JobStatus.RUNNING),
        (JobStatus.FAILED, JobStatus.QUEUED),
        (JobStatus.TIMEOUT, JobStatus.FAILED),
    ],
)
def test_rejected_transitions(current: JobStatus, target: JobStatus) -> None:
    job = _job(status=current)
    with pytest.raises(InvalidStatusTransitionError):
        job.transition_to(target)
    assert job.status is current


def test_terminal_statuses() -> None:
    assert {status for status in JobStatus if status.is_terminal} == {
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.TIMEOUT,
        JobStatus.CANCELLED,
    }


def test_progress_counts_bytes_and_newlines() -> None:
    progress = Progress()
    at = datetime(2026, 10, 18, 9, 0, 5, tzinfo=UTC)
    progress.record_output(b"one\ntwo\n", at=at)
    progress.record_output(b"partial")

    assert progress.total_bytes == 15
    assert progress.total_lines == 2
    assert progress.delta_bytes_since_report == 15
    assert progress.delta_lines_since_report == 2
    assert progress.last_output_at is not None
    assert progress.last_output_at >= at


def test_mark_reported_resets_only_deltas() -> None:
    progress = Progress()
    progress.record_output(b"a\nb\n")
    reported_at = datetime(2026, 10, 18, 9, 1, tzinfo=UTC)

    progress.mark_reported(at=reported_at)

    assert progress.delta_bytes_since_report == 0
    assert progress.delta_lines_since_report == 0
    assert progress.total_bytes == 4
    assert progress.total_lines == 2
    assert progress.reports_sent == 1
    assert progress.last_report_at == reported_at


def test_completion_notified_requires_terminal_status_and_sticks() -> None:
    job = _job(status=JobStatus.RUNNING)
    with pytest.raises(ValueError, match="terminal status"):
        job.mark_completion_notified()

    job.transition_to(JobStatus.COMPLETED)
    first = datetime(2026, 10, 18, 10, 0, tzinfo=UTC)
    job.mark_completion_notified(at=first)
    job.mark_completion_notified(at=datetime(2026, 10, 18, 11, 0, tzinfo=UTC))
    assert job.completion_notified_at == first


def test_descriptor_uses_camel_case_keys_and_omits_unset_fields() -> None:
    job = _job(user_id="42", channel="telegram")
    payload = job.to_dict()

    assert payload["timeoutMs"] == 5_000
    assert payload["userID"] == "42"
    assert payload["status"] == "queued"
    assert payload["createdAt"].startswith("2026-10-18T09:00:00")
    assert "exitCode" not in payload
    assert "startedAt" not in payload
    assert payload["progress"]["totalBytes"] == 0


def test_descriptor_restores_finished_job() -> None:
    job = _job(user_id="42", status=JobStatus.RUNNING)
    job.started_at = datetime(2026, 10, 18, 9, 0, 1, tzinfo=UTC)
    job.transition_to(JobStatus.FAILED)
    job.exit_code = 3
    job.error = "boom"
    job.progress.record_output(b"x\n")

    restored = Job.from_dict(job.to_dict())

    assert restored.status is JobStatus.FAILED
    assert restored.exit_code == 3
    assert restored.error == "boom"
    assert restored.started_at == job.started_at
    assert restored.progress.total_lines == 1


def test_descriptor_fills_defaults_for_sparse_payload() -> None:
    job = Job.from_dict({"id": "j1", "command": "true"})

    assert job.status is JobStatus.QUEUED
    assert job.timeout_ms == 0
    assert job.channel == "telegram"
    assert job.user_id == ""
    assert job.progress == Progress()


@pytest.mark.parametrize(
    "raw",
    [
        [],
        {"command": "true"},
        {"id": "  ", "command": "true"},
        {"id": "j1"},
        {"id": "j1", "command": 42},
        {"id": "j1", "command": "true", "status": "paused"},
    ],
)
def test_descriptor_rejects_invalid_payloads(raw) -> None:
    with pytest.raises((TypeError, ValueError)):
        Job.from_dict(raw)
