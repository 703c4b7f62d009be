import asyncio
import os
import time
from pathlib import Path

import allure
import pytest

from async_bash.scheduler.models import JobStatus
from async_bash.scheduler.worker import JobWorker, WorkerSettings

pytestmark = [
    allure.epic("Job execution"),
    allure.feature("Worker"),
]


def _worker(job, store, notifier, settings: WorkerSettings) -> JobWorker:
    return JobWorker(job=job, store=store, notifier=notifier, settings=settings)


@pytest.mark.asyncio
async def test_successful_command_completes_and_notifies_once(
    store,
    notifier,
    outbox,
    agent,
    worker_settings,
    make_job,
) -> None:
    job = make_job("ok", "sleep 0.2 && echo done")
    await store.save(job)

    finished = await _worker(job, store, notifier, worker_settings).execute()

    assert finished.status is JobStatus.COMPLETED
    assert finished.exit_code == 0
    assert finished.error is None
    assert finished.started_at is not None
    assert finished.finished_at is not None
    assert finished.finished_at >= finished.started_at
    assert finished.completion_notified_at is not None
    assert finished.progress.total_lines == 1
    assert finished.progress.total_bytes == len(b"done\n")

    log_text = Path(finished.output_file).read_text("utf-8")
    assert log_text.startswith("# async_bash ok\n")
    assert log_text.endswith("done\n")

    persisted = await store.load("ok")
    assert persisted.status is JobStatus.COMPLETED
    assert persisted.completion_notified_at is not None

    texts = outbox.texts_for("ok")
    assert len(texts) == 2
    assert "Started. timeout=5000ms" in texts[0]
    assert texts[1].startswith("[async_bash ok] Completed")
    assert "> exit=0" in texts[1]
    assert len(agent.injected) == 1
    assert agent.injected[0].startswith("[async_bash result] id=ok")
    assert "status=completed" in agent.injected[0]


@pytest.mark.asyncio
async def test_nonzero_exit_fails_and_captures_stderr(
    store,
    notifier,
    outbox,
    worker_settings,
    make_job,
) -> None:
    job = make_job("bad", "echo oops >&2; exit 3")
    await store.save(job)

    finished = await _worker(job, store, notifier, worker_settings).execute()

    assert finished.status is JobStatus.FAILED
    assert finished.exit_code == 3
    assert "oops" in Path(finished.output_file).read_text("utf-8")
    assert "> [async_bash bad] failed." in outbox.texts_for("bad")[-1]


@pytest.mark.asyncio
async def test_command_past_timeout_is_terminated(
    store,
    notifier,
    outbox,
    worker_settings,
    make_job,
) -> None:
    job = make_job("slow", "sleep 10", timeout_ms=500)
    await store.save(job)
    started = time.monotonic()

    worker = _worker(job, store, notifier, worker_settings)
    finished = await worker.execute()

    # Timeouts below one second are raised to the one-second floor.
    assert worker.effective_timeout_ms == 1_000
    assert time.monotonic() - started < 1 + 5
    assert worker.timed_out is True
    assert finished.status is JobStatus.TIMEOUT
    assert finished.exit_code is None
    assert finished.error == "Timed out after 500ms"
    assert "error=Timed out after 500ms" in outbox.texts_for("slow")[-1]


@pytest.mark.asyncio
async def test_command_ignoring_sigterm_is_killed_after_grace(
    tmp_path: Path,
    store,
    notifier,
    make_job,
) -> None:
    settings = WorkerSettings(output_dir=tmp_path / "output", kill_grace_ms=200)
    job = make_job("stubborn", "trap '' TERM; sleep 30", timeout_ms=1_000)
    await store.save(job)
    started = time.monotonic()

    finished = await _worker(job, store, notifier, settings).execute()

    assert time.monotonic() - started < 10
    assert finished.status is JobStatus.TIMEOUT
    assert finished.exit_code is None


@pytest.mark.asyncio
async def test_missing_workdir_fails_without_spawning(
    tmp_path: Path,
    store,
    notifier,
    outbox,
    worker_settings,
    make_job,
) -> None:
    job = make_job("nowhere", "echo hi")
    job.workdir = str(tmp_path / "does-not-exist")
    await store.save(job)

    worker = _worker(job, store, notifier, worker_settings)
    finished = await worker.execute()

    assert worker.pid is None
    assert finished.status is JobStatus.FAILED
    assert finished.exit_code is None
    assert finished.error is not None
    assert finished.error.startswith("Failed to spawn command:")
    assert finished.completion_notified_at is not None
    assert len(outbox.texts_for("nowhere")) == 2


@pytest.mark.asyncio
async def test_unset_timeout_uses_default(
    store,
    notifier,
    worker_settings,
    make_job,
) -> None:
    job = make_job("default", "true", timeout_ms=0)
    await store.save(job)

    finished = await _worker(job, store, notifier, worker_settings).execute()

    assert finished.timeout_ms == worker_settings.default_timeout_ms
    assert finished.status is JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_progress_report_describes_recent_output(
    store,
    notifier,
    worker_settings,
    make_job,
) -> None:
    job = make_job("chatty", "printf 'a\\nb\\n'; sleep 0.3")
    await store.save(job)
    worker = _worker(job, store, notifier, worker_settings)
    await worker.start()
    try:
        deadline = time.monotonic() + 5
        while job.progress.total_lines < 2 and time.monotonic() < deadline:
            await asyncio.sleep(0.02)
        report = await worker.build_progress_report(job.started_at)
    finally:
        await worker.run()

    assert report.startswith("[async_bash chatty] running 0s.")
    assert "delta_output=2 lines, 4 bytes in last interval." in report
    assert "total_output=2 lines, 4 bytes." in report
    assert report.endswith("a\nb")


@pytest.mark.asyncio
async def test_unwritable_log_fails_job_without_spawning(
    tmp_path: Path,
    store,
    notifier,
    outbox,
    worker_settings,
    make_job,
) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("plain file", "utf-8")
    job = make_job("nolog", "echo never")
    job.output_file = str(blocker / "nolog.log")
    await store.save(job)

    worker = _worker(job, store, notifier, worker_settings)
    finished = await worker.execute()

    assert worker.pid is None
    assert finished.status is JobStatus.FAILED
    assert finished.exit_code is None
    assert finished.error is not None
    assert finished.error.startswith("Failed to prepare output log:")
    assert finished.completion_notified_at is not None
    texts = outbox.texts_for("nolog")
    assert len([text for text in texts if text.startswith("[async_bash nolog] Completed")]) == 1
    assert (await store.load("nolog")).status is JobStatus.FAILED


def _process_gone(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    # Killed orphans linger as zombies until init reaps them.
    try:
        stat = Path(f"/proc/{pid}/stat").read_text("utf-8")
    except OSError:
        return False
    return stat.rsplit(")", 1)[-1].split()[0] == "Z"


@pytest.mark.asyncio
async def test_cancelled_worker_kills_its_process_group(
    tmp_path: Path,
    store,
    notifier,
    worker_settings,
    make_job,
) -> None:
    pid_file = tmp_path / "child.pid"
    job = make_job("detached", f"sleep 60 & echo $! > {pid_file}; wait", timeout_ms=60_000)
    await store.save(job)
    worker = _worker(job, store, notifier, worker_settings)
    await worker.start()
    task = asyncio.create_task(worker.run())
    for _ in range(250):
        if pid_file.exists() and pid_file.read_text("utf-8").strip():
            break
        await asyncio.sleep(0.02)
    child_pid = int(pid_file.read_text("utf-8"))
    shell_pid = worker.pid
    assert shell_pid is not None

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert _process_gone(shell_pid)
    for _ in range(100):
        if _process_gone(child_pid):
            break
        await asyncio.sleep(0.02)
    assert _process_gone(child_pid)
    assert worker.job.status is JobStatus.RUNNING
    assert worker.job.completion_notified_at is None
