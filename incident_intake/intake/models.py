from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol, Sequence
from uuid import uuid4

PLACEHOLDER = "No especificado"
TITLE_PLACEHOLDER = "Título no especificado"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Sender(str, Enum):
    """Author of a turn in the intake dialogue."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class BinaryHandle(Protocol):
    """Client-side access to the raw bytes of an attachment."""

    async def read(self) -> bytes:  # pragma: no cover - protocol
        ...


@dataclass(slots=True, frozen=True)
class Attachment:
    """File offered during a turn.

    ``preview`` holds a ``data:`` URL for images once it has been computed.
    ``handle`` only exists while the attachment lives in memory and is never
    persisted.
    """

    id: str
    name: str
    mime_type: str
    size: int
    preview: str | None = None
    handle: BinaryHandle | None = field(default=None, compare=False, repr=False)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


@dataclass(slots=True, frozen=True)
class ChatTurn:
    """Single message of the dialogue. Immutable once appended."""

    id: str
    sender: Sender
    text: str
    timestamp: datetime
    attachments: tuple[Attachment, ...] = ()
    hidden: bool = False

    @classmethod
    def create(
        cls,
        sender: Sender,
        text: str,
        *,
        attachments: Sequence[Attachment] = (),
        hidden: bool = False,
        timestamp: datetime | None = None,
    ) -> ChatTurn:
        return cls(
            id=f"{sender.value}-{uuid4().hex}",
            sender=sender,
            text=text,
            timestamp=timestamp or utcnow(),
            attachments=tuple(attachments),
            hidden=hidden,
        )


class SummaryField(str, Enum):
    """Fields the assistant's final summary is parsed into."""

    TITLE = "title"
    STEPS_TO_REPRODUCE = "steps_to_reproduce"
    EXPECTED_BEHAVIOR = "expected_behavior"
    ACTUAL_BEHAVIOR = "actual_behavior"
    IMPACT = "impact"
    ENVIRONMENT = "environment"
    SUGGESTED_CATEGORY = "suggested_category"
    PRIORITY = "priority"
    REPORTER_NAME_HINT = "reporter_name_hint"

    @property
    def placeholder(self) -> str:
        return TITLE_PLACEHOLDER if self is SummaryField.TITLE else PLACEHOLDER


OPTIONAL_FIELDS = frozenset(
    {SummaryField.ENVIRONMENT, SummaryField.SUGGESTED_CATEGORY, SummaryField.PRIORITY}
)


@dataclass(slots=True, frozen=True)
class StructuredRecord:
    """Typed incident fields extracted from the assistant's summary."""

    title: str = TITLE_PLACEHOLDER
    steps_to_reproduce: str = PLACEHOLDER
    expected_behavior: str = PLACEHOLDER
    actual_behavior: str = PLACEHOLDER
    impact: str = PLACEHOLDER
    environment: str = PLACEHOLDER
    suggested_category: str = PLACEHOLDER
    priority: str = PLACEHOLDER
    reporter_name_hint: str = PLACEHOLDER

    def value(self, summary_field: SummaryField) -> str:
        return getattr(self, summary_field.value)

    def is_placeholder(self, summary_field: SummaryField) -> bool:
        return self.value(summary_field) == summary_field.placeholder

    def optional_value(self, summary_field: SummaryField) -> str | None:
        """Return the field value, or ``None`` while it holds its placeholder."""

        if self.is_placeholder(summary_field):
            return None
        return self.value(summary_field)


@dataclass(slots=True, frozen=True)
class Reporter:
    """Authenticated identity driving an intake session."""

    uid: str
    name: str
