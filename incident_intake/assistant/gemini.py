from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Mapping, Sequence

import httpx

from incident_intake.core.config import Settings
from incident_intake.intake.models import Attachment

from .base import (
    AssistantCommunicationError,
    AssistantUnavailableError,
    InlineDataPart,
    Part,
    PriorTurn,
    build_parts,
)

logger = logging.getLogger(__name__)

_ROLE_MAP = {"user": "user", "assistant": "model"}


def _extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or "Unknown assistant error"

    if isinstance(data, Mapping):
        error = data.get("error")
        if isinstance(error, Mapping) and "message" in error:
            return str(error["message"])
    return "Assistant request failed"


def _part_to_json(part: Part) -> dict[str, Any]:
    if isinstance(part, InlineDataPart):
        return {"inlineData": {"mimeType": part.mime_type, "data": part.data}}
    return {"text": part.text}


def parse_sse_line(line: str) -> str | None:
    """Return the text carried by one ``data:`` line of the event stream."""

    if not line.startswith("data:"):
        return None
    payload = line[len("data:") :].strip()
    if not payload:
        return None
    try:
        chunk = json.loads(payload)
    except ValueError as exc:
        raise AssistantCommunicationError("Malformed assistant stream chunk") from exc

    if "error" in chunk:
        raise AssistantCommunicationError(str(chunk["error"].get("message", chunk["error"])))
    candidates = chunk.get("candidates") or []
    if not candidates:
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts)
    return text or None


class GeminiChatSession:
    """One dialogue with the Gemini API.

    The session keeps its own ``contents`` history. A turn is only added to
    it once its fragment stream has been fully read.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        url: str,
        headers: Mapping[str, str],
        system_instruction: str,
        history: list[dict[str, Any]],
    ) -> None:
        self._client = client
        self._url = url
        self._headers = dict(headers)
        self._system_instruction = system_instruction
        self._history = history
        self._closed = False

    @property
    def history(self) -> tuple[dict[str, Any], ...]:
        return tuple(self._history)

    async def send_turn(self, text: str, attachments: Sequence[Attachment] = ()) -> AsyncIterator[str]:
        if self._closed:
            raise AssistantCommunicationError("Assistant session is closed")

        parts = await build_parts(text, attachments)
        user_content = {"role": "user", "parts": [_part_to_json(part) for part in parts]}
        payload = {
            "systemInstruction": {"parts": [{"text": self._system_instruction}]},
            "contents": [*self._history, user_content],
        }

        fragments: list[str] = []
        try:
            async with self._client.stream(
                "POST", self._url, params={"alt": "sse"}, json=payload, headers=self._headers
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise AssistantCommunicationError(
                        _extract_error_message(response), status_code=response.status_code
                    )
                async for line in response.aiter_lines():
                    fragment = parse_sse_line(line)
                    if fragment:
                        fragments.append(fragment)
                        yield fragment
        except httpx.HTTPError as exc:
            raise AssistantCommunicationError(f"Assistant request failed: {exc}") from exc

        self._history.append(user_content)
        self._history.append({"role": "model", "parts": [{"text": "".join(fragments)}]})

    async def aclose(self) -> None:
        self._closed = True


class GeminiAssistant:
    """Assistant client over the Gemini ``streamGenerateContent`` endpoint."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float | None = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> GeminiAssistant:
        return cls(
            settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=settings.assistant_timeout_seconds,
        )

    @property
    def available(self) -> bool:
        return bool(self._api_key)

    @property
    def stream_url(self) -> str:
        return f"{self._base_url}/models/{self._model}:streamGenerateContent"

    async def open_session(self, system_instruction: str, prior_turns: Sequence[PriorTurn] = ()) -> GeminiChatSession:
        if not self.available:
            raise AssistantUnavailableError("Gemini API key is not configured")
        history = [
            {"role": _ROLE_MAP[turn.role], "parts": [{"text": turn.text}]}
            for turn in prior_turns
            if turn.text
        ]
        logger.debug("Opening assistant session with %d prior turn(s)", len(history))
        return GeminiChatSession(
            self._client,
            url=self.stream_url,
            headers={"x-goog-api-key": self._api_key or "", "Accept": "text/event-stream"},
            system_instruction=system_instruction,
            history=history,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
