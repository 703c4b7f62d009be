"""HTTP client for the conversational-agent session server."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0


class AgentClientError(RuntimeError):
    """Agent server call failed or returned an unusable payload."""


class HttpAgentClient:
    """``AgentService`` speaking to an agent server's session message endpoint.

    ``ask`` posts a prompt and waits for the assistant reply; ``inject_context``
    posts with ``noReply`` so the text only lands in the session history.
    """

    def __init__(
        self,
        *,
        base_url: str,
        session_id: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session_id = session_id
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    async def ask(self, channel: str, user_id: str, text: str) -> str:
        payload = await self._post_message(text, no_reply=False)
        reply = _extract_text(payload)
        logger.debug(
            "Agent replied to %s/%s with %d chars",
            channel,
            user_id,
            len(reply),
        )
        return reply

    async def inject_context(self, text: str) -> None:
        await self._post_message(text, no_reply=True)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpAgentClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def _post_message(self, text: str, *, no_reply: bool) -> dict[str, Any]:
        try:
            response = await self._client.post(
                f"/session/{self.session_id}/message",
                json={"noReply": no_reply, "parts": [{"type": "text", "text": text}]},
            )
            response.raise_for_status()
        except httpx.HTTPError as error:
            raise AgentClientError(f"Agent request failed: {error}") from error
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as error:
            raise AgentClientError("Agent returned a non-JSON response") from error
        if not isinstance(payload, dict):
            raise AgentClientError("Agent returned an unexpected payload")
        return payload


def _extract_text(payload: dict[str, Any]) -> str:
    parts = payload.get("parts")
    if not isinstance(parts, list):
        return ""
    texts = [
        str(part.get("text", ""))
        for part in parts
        if isinstance(part, dict) and part.get("type") == "text"
    ]
    return "\n".join(text for text in texts if text).strip()
