from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable, Iterable, Protocol, TypeVar
from uuid import UUID, uuid4

from opentelemetry import trace

from incident_intake.intake.models import Attachment, ChatTurn, SummaryField

from .models import IncidentDraft, IncidentStatus, IncidentWrite, PersistedIncident, Priority

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")


class PersistenceError(RuntimeError):
    """Raised when a write or the mandatory re-read did not succeed.

    The caller must not assume the incident was saved.
    """


class IncidentStore(Protocol):
    async def insert_incident(self, incident_id: UUID, write: IncidentWrite) -> None:  # pragma: no cover - protocol
        ...

    async def update_incident(self, incident_id: UUID, write: IncidentWrite) -> bool:  # pragma: no cover - protocol
        ...

    async def get_incident(self, incident_id: UUID) -> PersistedIncident | None:  # pragma: no cover - protocol
        ...


def sanitize_attachment(attachment: Attachment) -> Attachment:
    preview = attachment.preview if isinstance(attachment.preview, str) and attachment.preview else None
    return replace(attachment, preview=preview, handle=None)


def sanitize_attachments(attachments: Iterable[Attachment]) -> tuple[Attachment, ...]:
    return tuple(sanitize_attachment(attachment) for attachment in attachments)


def sanitize_transcript(transcript: Iterable[ChatTurn]) -> tuple[ChatTurn, ...]:
    return tuple(replace(turn, attachments=sanitize_attachments(turn.attachments)) for turn in transcript)


def build_incident_write(draft: IncidentDraft, *, reported_by: str | None = None) -> IncidentWrite:
    """Map a draft onto the stored schema.

    Optional fields still holding their placeholder are left as ``None`` so
    an update keeps whatever was stored before.
    """

    record = draft.record
    return IncidentWrite(
        title=record.title,
        original_description=draft.original_description,
        transcript=sanitize_transcript(draft.transcript),
        attachments=sanitize_attachments(draft.attachments),
        reported_by=reported_by if reported_by is not None else draft.reporter_id,
        status=draft.status,
        llm_summary=draft.summary_text or None,
        steps_to_reproduce=record.steps_to_reproduce,
        expected_behavior=record.expected_behavior,
        actual_behavior=record.actual_behavior,
        impact=record.impact,
        environment=record.optional_value(SummaryField.ENVIRONMENT),
        assigned_to=draft.assignee_id or None,
        priority=Priority.parse(record.optional_value(SummaryField.PRIORITY)),
        suggested_category=record.optional_value(SummaryField.SUGGESTED_CATEGORY),
    )


class IncidentReconciler:
    """Create or update the durable incident for a confirmed draft.

    Every write is followed by a re-read; only the re-read record is
    returned. Each store call is bounded by ``timeout`` seconds.
    """

    def __init__(
        self,
        store: IncidentStore,
        *,
        timeout: float | None = 30.0,
        id_factory: Callable[[], UUID] = uuid4,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._id_factory = id_factory

    async def reconcile(self, draft: IncidentDraft) -> PersistedIncident:
        if draft.incident_id is None:
            return await self._create(draft)
        return await self._update(draft.incident_id, draft)

    async def _create(self, draft: IncidentDraft) -> PersistedIncident:
        incident_id = draft.create_id or self._id_factory()
        write = build_incident_write(draft)
        if write.status is None:
            write = replace(write, status=IncidentStatus.NEW)

        with tracer.start_as_current_span("incident.create") as span:
            span.set_attribute("incident.id", str(incident_id))
            await self._step("insert", self._store.insert_incident(incident_id, write))
            persisted = await self._reread(incident_id)

        logger.info("Created incident %s for reporter %s", incident_id, persisted.reported_by)
        return persisted

    async def _update(self, incident_id: UUID, draft: IncidentDraft) -> PersistedIncident:
        with tracer.start_as_current_span("incident.update") as span:
            span.set_attribute("incident.id", str(incident_id))
            existing = await self._step("load", self._store.get_incident(incident_id))
            if existing is None:
                raise PersistenceError(f"Incident {incident_id} not found")

            write = build_incident_write(draft, reported_by=existing.reported_by)
            updated = await self._step("update", self._store.update_incident(incident_id, write))
            if not updated:
                raise PersistenceError(f"Incident {incident_id} not found")
            persisted = await self._reread(incident_id)

        if persisted.reported_by != existing.reported_by or persisted.created_at != existing.created_at:
            raise PersistenceError(f"Incident {incident_id} changed its reporter or creation time on update")
        logger.info("Updated incident %s", incident_id)
        return persisted

    async def _reread(self, incident_id: UUID) -> PersistedIncident:
        persisted = await self._step("re-read", self._store.get_incident(incident_id))
        if persisted is None:
            raise PersistenceError(f"Incident {incident_id} could not be read back after write")
        return persisted

    async def _step(self, name: str, operation: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Incident %s timed out after %s seconds", name, self._timeout)
            raise PersistenceError(f"Incident {name} timed out") from exc
        except PersistenceError:
            raise
        except Exception as exc:
            logger.exception("Incident %s failed", name)
            raise PersistenceError(f"Incident {name} failed: {exc}") from exc
