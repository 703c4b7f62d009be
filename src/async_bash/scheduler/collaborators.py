"""Narrow interfaces to the conversational agent and the outbound message sink."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from async_bash.scheduler.store.file_store import load_json, write_json
from async_bash.scheduler.timeutil import to_iso, utc_now

logger = logging.getLogger(__name__)


class AgentService(Protocol):
    """Conversational-agent session the scheduler reports into."""

    async def ask(self, channel: str, user_id: str, text: str) -> str:
        """Send a one-shot prompt and return the reply text."""

    async def inject_context(self, text: str) -> None:
        """Insert text into the ongoing session without expecting a reply."""


class OutboxSink(Protocol):
    """At-least-once outbound message delivery."""

    async def enqueue(self, channel: str, user_id: str, text: str) -> str:
        """Queue one message and return an opaque handle."""


@dataclass(slots=True)
class OutboxMessage:
    """One pending outbound message."""

    handle: str
    channel: str
    user_id: str
    text: str
    created_at: str


class FileOutbox:
    """Outbox that stores one JSON file per message for channel adapters to drain."""

    def __init__(self, outbox_dir: Path) -> None:
        self.outbox_dir = outbox_dir

    async def enqueue(self, channel: str, user_id: str, text: str) -> str:
        handle = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"
        payload = {
            "id": handle,
            "channel": channel,
            "userID": user_id,
            "text": text,
            "createdAt": to_iso(utc_now()),
        }
        await asyncio.to_thread(write_json, self._path_for(handle), payload)
        return handle

    def list_pending(self, channel: str | None = None) -> list[OutboxMessage]:
        """Readable pending messages in enqueue order; malformed files are skipped."""

        if not self.outbox_dir.exists():
            return []
        pending: list[OutboxMessage] = []
        for path in sorted(self.outbox_dir.glob("*.json")):
            try:
                raw = load_json(path)
            except (OSError, ValueError, TypeError):
                logger.debug("Skipping malformed outbox file %s", path)
                continue
            user_id = raw.get("userID")
            text = raw.get("text")
            if not isinstance(user_id, str) or not isinstance(text, str):
                continue
            message_channel = str(raw.get("channel", ""))
            if channel is not None and message_channel != channel:
                continue
            pending.append(
                OutboxMessage(
                    handle=path.stem,
                    channel=message_channel,
                    user_id=user_id,
                    text=text,
                    created_at=str(raw.get("createdAt", "")),
                ),
            )
        return pending

    def ack(self, handle: str) -> bool:
        """Remove a delivered message; returns False if it was already gone."""

        try:
            self._path_for(handle).unlink()
        except FileNotFoundError:
            return False
        return True

    def _path_for(self, handle: str) -> Path:
        return self.outbox_dir / f"{handle}.json"
