from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Iterable, Literal, Protocol, Sequence, Union

from incident_intake.intake.models import Attachment, ChatTurn, Sender

logger = logging.getLogger(__name__)


class AssistantError(RuntimeError):
    """Base error for assistant issues."""


class AssistantUnavailableError(AssistantError):
    """Raised when no usable assistant session can be opened."""


class AssistantCommunicationError(AssistantError):
    """Raised when sending a turn or reading its fragments fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        prefix = f"[{self.status_code}] " if self.status_code is not None else ""
        return f"{prefix}{super().__str__()}"


@dataclass(slots=True, frozen=True)
class PriorTurn:
    role: Literal["user", "assistant"]
    text: str


@dataclass(slots=True, frozen=True)
class TextPart:
    text: str


@dataclass(slots=True, frozen=True)
class InlineDataPart:
    mime_type: str
    data: str  # base64


Part = Union[TextPart, InlineDataPart]


class AssistantSession(Protocol):
    def send_turn(
        self, text: str, attachments: Sequence[Attachment] = ()
    ) -> AsyncIterator[str]:  # pragma: no cover - protocol
        ...

    async def aclose(self) -> None:  # pragma: no cover - protocol
        ...


class AssistantClient(Protocol):
    @property
    def available(self) -> bool:  # pragma: no cover - protocol
        ...

    async def open_session(
        self, system_instruction: str, prior_turns: Sequence[PriorTurn] = ()
    ) -> AssistantSession:  # pragma: no cover - protocol
        ...


def build_prior_turns(transcript: Iterable[ChatTurn]) -> list[PriorTurn]:
    """History replayed when a session is re-opened: user and assistant text only."""

    turns: list[PriorTurn] = []
    for turn in transcript:
        if turn.sender is Sender.USER:
            turns.append(PriorTurn(role="user", text=turn.text))
        elif turn.sender is Sender.ASSISTANT:
            turns.append(PriorTurn(role="assistant", text=turn.text))
    return turns


def attachment_placeholder(attachment: Attachment) -> str:
    return (
        f'[System: User attached a file named "{attachment.name}" of type {attachment.mime_type}. '
        "Content not directly viewable by AI in this turn.]"
    )


async def build_parts(text: str, attachments: Sequence[Attachment] = ()) -> list[Part]:
    """Turn text plus attachments into request parts.

    Images are inlined from their binary handle. Other files are described
    by a placeholder text; their content is never sent.
    """

    parts: list[Part] = []
    if text:
        parts.append(TextPart(text))
    for attachment in attachments:
        if not attachment.is_image:
            parts.append(TextPart(attachment_placeholder(attachment)))
            continue
        if attachment.handle is None:
            parts.append(TextPart(f"[System: Failed to process attachment {attachment.name}]"))
            continue
        try:
            data = await attachment.handle.read()
        except OSError:
            logger.warning("Could not read attachment %s", attachment.name, exc_info=True)
            parts.append(TextPart(f"[System: Failed to process attachment {attachment.name}]"))
            continue
        parts.append(InlineDataPart(attachment.mime_type, base64.b64encode(data).decode("ascii")))
    return parts
