from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID, uuid4

from incident_intake.incidents.models import IncidentDraft, PersistedIncident

from .attachments import AttachmentManager
from .models import Attachment, ChatTurn, Reporter, StructuredRecord


@dataclass(slots=True)
class ConversationDraft:
    """In-memory aggregate of one intake session.

    The transcript only grows. At most one structured record exists at a
    time and a new summary replaces it.
    """

    original_description: str
    attachments: AttachmentManager = field(default_factory=AttachmentManager)
    incident: PersistedIncident | None = None
    transcript: list[ChatTurn] = field(default_factory=list)
    record: StructuredRecord | None = None
    summary_text: str | None = None
    assignee_id: str | None = None
    create_id: UUID = field(default_factory=uuid4)

    @classmethod
    def for_new_report(cls, description: str, *, attachments: AttachmentManager | None = None) -> ConversationDraft:
        return cls(original_description=description, attachments=attachments or AttachmentManager())

    @classmethod
    def for_incident(
        cls, incident: PersistedIncident, *, attachments: AttachmentManager | None = None
    ) -> ConversationDraft:
        return cls(
            original_description=incident.original_description,
            attachments=attachments or AttachmentManager(),
            incident=incident,
            transcript=list(incident.transcript),
            assignee_id=incident.assigned_to,
        )

    @property
    def editing(self) -> bool:
        return self.incident is not None

    def append(self, turn: ChatTurn) -> ChatTurn:
        self.transcript.append(turn)
        return turn

    def clear_summary(self) -> None:
        self.record = None
        self.summary_text = None

    def collected_attachments(self) -> tuple[Attachment, ...]:
        """Previously stored attachments, then those of every turn, without duplicates."""

        candidates: list[Attachment] = list(self.incident.attachments) if self.incident else []
        for turn in self.transcript:
            candidates.extend(turn.attachments)

        seen: set[str] = set()
        collected: list[Attachment] = []
        for attachment in candidates:
            if attachment.id in seen:
                continue
            seen.add(attachment.id)
            collected.append(attachment)
        return tuple(collected)

    def to_incident_draft(self, reporter: Reporter) -> IncidentDraft:
        if self.record is None:
            raise ValueError("No structured record to persist")
        return IncidentDraft(
            title=self.record.title,
            original_description=self.original_description,
            transcript=tuple(self.transcript),
            record=self.record,
            attachments=self.collected_attachments(),
            reporter_id=reporter.uid,
            assignee_id=self.assignee_id,
            incident_id=self.incident.id if self.incident else None,
            summary_text=self.summary_text,
            create_id=None if self.incident else self.create_id,
        )
