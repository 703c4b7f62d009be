"""Compose progress/completion notices and hand them to the outbox."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from async_bash.scheduler.collaborators import AgentService, OutboxSink
from async_bash.scheduler.models import Job

logger = logging.getLogger(__name__)

NO_FEEDBACK_PLACEHOLDER = "No additional comment."


class NoticeStage(str, Enum):
    PROGRESS = "progress"
    COMPLETION = "completion"


_STAGE_TITLES = {
    NoticeStage.PROGRESS: "Progress update",
    NoticeStage.COMPLETION: "Completed",
}


@dataclass(slots=True)
class NotificationOutcome:
    """What happened to one notice; delivery never raises."""

    text: str
    used_fallback: bool
    delivered: bool
    handle: str | None = None


class FeedbackNotifier:
    """Best-effort notice delivery with optional agent enrichment."""

    def __init__(
        self,
        *,
        outbox: OutboxSink,
        agent: AgentService | None = None,
        feedback_timeout_seconds: float = 60.0,
    ) -> None:
        self.outbox = outbox
        self.agent = agent
        self.feedback_timeout_seconds = feedback_timeout_seconds

    async def notify(self, job: Job, stage: NoticeStage, raw: str) -> NotificationOutcome:
        """Enrich ``raw`` and queue the assembled message for the job's recipient."""

        feedback, used_fallback = await self._feedback(job, stage, raw)
        text = compose_notice(job_id=job.id, stage=stage, raw=raw, feedback=feedback)
        if not job.user_id:
            return NotificationOutcome(text=text, used_fallback=used_fallback, delivered=False)
        try:
            handle = await self.outbox.enqueue(job.channel, job.user_id, text)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to queue outbox message for job %s", job.id, exc_info=True)
            return NotificationOutcome(text=text, used_fallback=used_fallback, delivered=False)
        return NotificationOutcome(
            text=text,
            used_fallback=used_fallback,
            delivered=True,
            handle=handle,
        )

    async def inject_context(self, job: Job, text: str) -> bool:
        """Push ``text`` into the agent session; False when skipped or failed."""

        if self.agent is None:
            return False
        try:
            await asyncio.wait_for(
                self.agent.inject_context(text),
                timeout=self.feedback_timeout_seconds,
            )
        except Exception:  # noqa: BLE001
            logger.warning("Failed to inject result of job %s into session", job.id, exc_info=True)
            return False
        return True

    async def _feedback(self, job: Job, stage: NoticeStage, raw: str) -> tuple[str, bool]:
        if self.agent is None:
            return NO_FEEDBACK_PLACEHOLDER, True
        try:
            reply = await asyncio.wait_for(
                self.agent.ask(job.channel, job.user_id, build_feedback_prompt(job, stage, raw)),
                timeout=self.feedback_timeout_seconds,
            )
        except Exception:  # noqa: BLE001
            logger.warning(
                "Agent feedback failed for job %s (%s)",
                job.id,
                stage.value,
                exc_info=True,
            )
            return NO_FEEDBACK_PLACEHOLDER, True
        reply = reply.strip()
        if not reply:
            return NO_FEEDBACK_PLACEHOLDER, True
        return reply, False


def build_feedback_prompt(job: Job, stage: NoticeStage, raw: str) -> str:
    return "\n".join(
        [
            f"You are monitoring an async_bash {stage.value} update for user {job.user_id}.",
            "Raw update is provided below.",
            "Decide whether any concise assistant feedback is needed.",
            "Rules:",
            "- Keep it short (max 3 bullet points).",
            "- Do not call tools.",
            f"- If no additional insight is needed, reply exactly: {NO_FEEDBACK_PLACEHOLDER}",
            "",
            "Raw update:",
            raw,
        ],
    )


def compose_notice(*, job_id: str, stage: NoticeStage, raw: str, feedback: str) -> str:
    return "\n".join(
        [
            f"[async_bash {job_id}] {_STAGE_TITLES[stage]}",
            "Quoted output:",
            quote_text(raw),
            "",
            "Assistant feedback:",
            feedback,
        ],
    )


def quote_text(text: str) -> str:
    normalized = text.strip()
    if not normalized:
        return "> <empty>"
    return "\n".join(f"> {line}" for line in normalized.splitlines())
