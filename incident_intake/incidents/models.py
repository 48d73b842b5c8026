from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Sequence
from uuid import UUID

from incident_intake.intake.models import PLACEHOLDER, Attachment, ChatTurn, StructuredRecord


class IncidentStatus(str, Enum):
    """Lifecycle states of a persisted incident."""

    NEW = "Nuevo"
    IN_PROGRESS = "En Progreso"
    RESOLVED = "Resuelto"
    CLOSED = "Cerrado"
    PENDING_INFO = "Pendiente de Información"


class Priority(str, Enum):
    LOW = "Baja"
    MEDIUM = "Media"
    HIGH = "Alta"

    @classmethod
    def parse(cls, value: str | None) -> Priority | None:
        """Map the assistant's free-text priority onto a known level."""

        stripped = (value or "").strip()
        if not stripped:
            return None
        lowered = stripped.splitlines()[0].strip().lower()
        for priority in cls:
            if lowered.startswith(priority.value.lower()):
                return priority
        return None


@dataclass(slots=True)
class IncidentDraft:
    """Everything a confirmed intake session hands over for persistence."""

    title: str
    original_description: str
    transcript: Sequence[ChatTurn]
    record: StructuredRecord
    attachments: Sequence[Attachment]
    reporter_id: str
    assignee_id: str | None = None
    incident_id: UUID | None = None
    summary_text: str | None = None
    status: IncidentStatus | None = None
    # Id used when creating, so a retried create targets the same row.
    create_id: UUID | None = None


@dataclass(slots=True, frozen=True)
class IncidentWrite:
    """Sanitized write payload.

    ``None`` on an optional field means "not provided": updates keep the
    value already stored.
    """

    title: str
    original_description: str
    transcript: tuple[ChatTurn, ...]
    attachments: tuple[Attachment, ...]
    reported_by: str
    status: IncidentStatus | None = None
    llm_summary: str | None = None
    steps_to_reproduce: str | None = None
    expected_behavior: str | None = None
    actual_behavior: str | None = None
    impact: str | None = None
    environment: str | None = None
    assigned_to: str | None = None
    priority: Priority | None = None
    suggested_category: str | None = None


@dataclass(slots=True, frozen=True)
class PersistedIncident:
    """Durable incident record as read back from the store."""

    id: UUID
    title: str
    original_description: str
    transcript: tuple[ChatTurn, ...]
    attachments: tuple[Attachment, ...]
    reported_by: str
    status: IncidentStatus
    created_at: datetime
    updated_at: datetime
    llm_summary: str | None = None
    steps_to_reproduce: str | None = None
    expected_behavior: str | None = None
    actual_behavior: str | None = None
    impact: str | None = None
    environment: str | None = None
    assigned_to: str | None = None
    priority: Priority | None = None
    suggested_category: str | None = None

    def structured_record(self) -> StructuredRecord:
        return StructuredRecord(
            title=self.title,
            steps_to_reproduce=self.steps_to_reproduce or PLACEHOLDER,
            expected_behavior=self.expected_behavior or PLACEHOLDER,
            actual_behavior=self.actual_behavior or PLACEHOLDER,
            impact=self.impact or PLACEHOLDER,
            environment=self.environment or PLACEHOLDER,
            suggested_category=self.suggested_category or PLACEHOLDER,
            priority=self.priority.value if self.priority else PLACEHOLDER,
        )
