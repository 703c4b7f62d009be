"""CLI entrypoint for async-bash."""

from pathlib import Path

import rich_click as click

from async_bash import __version__
from async_bash.scheduler.controllers import (
    AsyncBashCliController,
    JobEnqueueCommand,
    JobInspectCommand,
    JobListCommand,
    JobTailCommand,
    OutboxAckCommand,
    OutboxListCommand,
    RecoverCommand,
    SchedulerRunCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AsyncBashCliController()

_STATUS_CHOICES = ["queued", "running", "completed", "failed", "timeout", "cancelled"]


@click.group()
@click.version_option(version=__version__, prog_name="async-bash")
def async_bash() -> None:
    """Background shell job scheduler CLI."""


@async_bash.group()
def jobs() -> None:
    """Job queue commands."""


@jobs.command("enqueue")
@click.option(
    "--data-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Data directory (queue, logs, outbox).",
)
@click.option("--user-id", required=True, help="Recipient of progress and result messages.")
@click.option(
    "--channel",
    default=None,
    help="Delivery channel; defaults to ASYNC_BASH_DEFAULT_CHANNEL.",
)
@click.option("--workdir", default=None, help="Working directory for the command.")
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=1),
    default=None,
    help="Kill the command after this many milliseconds (minimum 1000; default 24h).",
)
@click.option("--session-id", default=None, help="Originating conversation session id.")
@click.argument("command")
def jobs_enqueue(  # noqa: PLR0913
    data_dir: Path | None,
    user_id: str,
    channel: str | None,
    workdir: str | None,
    timeout_ms: int | None,
    session_id: str | None,
    command: str,
) -> None:
    """Queue a shell command for background execution."""

    try:
        lines = CONTROLLER.enqueue(
            JobEnqueueCommand(
                data_dir=data_dir,
                command=command,
                user_id=user_id,
                channel=channel,
                workdir=workdir,
                timeout_ms=timeout_ms,
                session_id=session_id,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@jobs.command("list")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Data directory.")
@click.option(
    "--status",
    type=click.Choice(_STATUS_CHOICES, case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print (most recent).",
)
def jobs_list(data_dir: Path | None, status: str | None, limit: int) -> None:
    """List jobs oldest first."""

    _emit_lines(CONTROLLER.list_jobs(JobListCommand(data_dir=data_dir, status=status, limit=limit)))


@jobs.command("inspect")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Data directory.")
@click.argument("job_id")
def jobs_inspect(data_dir: Path | None, job_id: str) -> None:
    """Show one job record."""

    _emit_lines(CONTROLLER.inspect_job(JobInspectCommand(data_dir=data_dir, job_id=job_id)))


@jobs.command("tail")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Data directory.")
@click.option(
    "--bytes",
    "max_bytes",
    type=click.IntRange(min=1),
    default=1200,
    show_default=True,
    help="How much of the log end to print.",
)
@click.argument("job_id")
def jobs_tail(data_dir: Path | None, max_bytes: int, job_id: str) -> None:
    """Print the end of a job's output log."""

    _emit_lines(
        CONTROLLER.tail_job(JobTailCommand(data_dir=data_dir, job_id=job_id, max_bytes=max_bytes)),
    )


@async_bash.command("run")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Data directory.")
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run recovery and a single tick, or tick until SIGINT/SIGTERM.",
)
@click.option(
    "--drain/--no-drain",
    default=False,
    show_default=True,
    help="Wait for started jobs to finish before exiting.",
)
def run(data_dir: Path | None, once: bool, drain: bool) -> None:
    """Run the scheduler: recovery pass, then periodic ticks."""

    _emit_lines(
        CONTROLLER.run_scheduler(SchedulerRunCommand(data_dir=data_dir, once=once, drain=drain)),
    )


@async_bash.command("recover")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Data directory.")
def recover(data_dir: Path | None) -> None:
    """Fail jobs left running by a crashed scheduler and notify their owners."""

    _emit_lines(CONTROLLER.recover(RecoverCommand(data_dir=data_dir)))


@async_bash.group()
def outbox() -> None:
    """Outbound message queue commands."""


@outbox.command("list")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Data directory.")
@click.option("--channel", default=None, help="Optional channel filter.")
def outbox_list(data_dir: Path | None, channel: str | None) -> None:
    """List messages waiting for a channel adapter."""

    _emit_lines(CONTROLLER.list_outbox(OutboxListCommand(data_dir=data_dir, channel=channel)))


@outbox.command("ack")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Data directory.")
@click.argument("handle")
def outbox_ack(data_dir: Path | None, handle: str) -> None:
    """Remove a delivered message from the outbox."""

    _emit_lines(CONTROLLER.ack_outbox(OutboxAckCommand(data_dir=data_dir, handle=handle)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    async_bash()
