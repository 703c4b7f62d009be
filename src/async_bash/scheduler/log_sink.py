"""Per-job append-only output log with bounded tail/preview reads."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

DEFAULT_PREVIEW_BYTES = 8000
DEFAULT_TAIL_BYTES = 1200
TRUNCATION_MARKER = "\n... [truncated] ...\n"


@dataclass(slots=True)
class LogPreview:
    """Head+tail view of a log file."""

    text: str
    truncated: bool


class LogSink:
    """Append-only output file of one job.

    Blocking file access runs in a worker thread so the event loop that
    drives the scheduler never waits on disk.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    async def write_header(self, *, job_id: str, started_at: str, command: str) -> None:
        header = f"# async_bash {job_id}\n# started={started_at}\n# command={command}\n\n"
        await asyncio.to_thread(self._prepare_and_append, header.encode("utf-8"))

    async def append(self, chunk: bytes) -> None:
        if not chunk:
            return
        await asyncio.to_thread(_append_bytes, self.path, chunk)

    async def read_tail(self, max_bytes: int = DEFAULT_TAIL_BYTES) -> str:
        return await asyncio.to_thread(read_log_tail, self.path, max_bytes)

    async def read_preview(self, max_bytes: int = DEFAULT_PREVIEW_BYTES) -> LogPreview:
        return await asyncio.to_thread(read_log_preview, self.path, max_bytes)

    def _prepare_and_append(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        _append_bytes(self.path, data)


def read_log_tail(path: Path, max_bytes: int = DEFAULT_TAIL_BYTES) -> str:
    """Return the last ``max_bytes`` of a log, stripped; empty if unreadable."""

    try:
        size = path.stat().st_size
    except OSError:
        return ""
    if size <= 0:
        return ""
    count = min(size, max(0, max_bytes))
    with path.open("rb") as handle:
        handle.seek(size - count)
        data = handle.read(count)
    return data.decode("utf-8", errors="replace").strip()


def read_log_preview(path: Path, max_bytes: int = DEFAULT_PREVIEW_BYTES) -> LogPreview:
    """Read the whole log if it fits ``max_bytes``, else half from each end."""

    try:
        size = path.stat().st_size
    except OSError:
        return LogPreview(text="", truncated=False)
    if size <= 0:
        return LogPreview(text="", truncated=False)

    with path.open("rb") as handle:
        if size <= max_bytes:
            return LogPreview(text=_decode(handle.read(size)), truncated=False)

        half = max_bytes // 2
        head = handle.read(half)
        handle.seek(max(0, size - half))
        tail = handle.read(half)
    return LogPreview(
        text=f"{_decode(head)}{TRUNCATION_MARKER}{_decode(tail)}",
        truncated=True,
    )


def _append_bytes(path: Path, data: bytes) -> None:
    with path.open("ab") as handle:
        handle.write(data)


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")
