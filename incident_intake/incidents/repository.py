from __future__ import annotations

import json
from typing import Any, Mapping
from uuid import UUID

import asyncpg

from incident_intake.intake.models import Attachment, ChatTurn, Sender

from .models import IncidentStatus, IncidentWrite, PersistedIncident, Priority
from .timestamps import to_datetime, to_storage_timestamp

_INCIDENT_COLUMNS = """
    id, title, original_description, chat_transcript, attachments, llm_summary,
    steps_to_reproduce, expected_behavior, actual_behavior, impact, environment,
    reported_by, assigned_to, status, priority, suggested_category, created_at, updated_at
"""


class IncidentRepository:
    """Data access layer for incident records.

    ``created_at`` and ``updated_at`` are always set by the database clock.
    Writes only report whether a row was affected; callers re-read the row
    to obtain the stored values.
    """

    _CREATE_INCIDENTS_SQL = """
    CREATE TABLE IF NOT EXISTS incidents (
        id UUID PRIMARY KEY,
        title TEXT NOT NULL,
        original_description TEXT NOT NULL,
        chat_transcript JSONB NOT NULL DEFAULT '[]'::jsonb,
        attachments JSONB NOT NULL DEFAULT '[]'::jsonb,
        llm_summary TEXT NULL,
        steps_to_reproduce TEXT NULL,
        expected_behavior TEXT NULL,
        actual_behavior TEXT NULL,
        impact TEXT NULL,
        environment TEXT NULL,
        reported_by TEXT NOT NULL,
        assigned_to TEXT NULL,
        status TEXT NOT NULL,
        priority TEXT NULL,
        suggested_category TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _CREATE_INDEXES_SQL = """
    CREATE INDEX IF NOT EXISTS incidents_reported_by_idx ON incidents (reported_by);
    CREATE INDEX IF NOT EXISTS incidents_assigned_to_idx ON incidents (assigned_to)
    """

    _INSERT_INCIDENT_SQL = """
    INSERT INTO incidents (
        id, title, original_description, chat_transcript, attachments, llm_summary,
        steps_to_reproduce, expected_behavior, actual_behavior, impact, environment,
        reported_by, assigned_to, status, priority, suggested_category
    )
    VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
    ON CONFLICT (id) DO UPDATE
    SET title = EXCLUDED.title,
        original_description = EXCLUDED.original_description,
        chat_transcript = EXCLUDED.chat_transcript,
        attachments = EXCLUDED.attachments,
        llm_summary = EXCLUDED.llm_summary,
        steps_to_reproduce = EXCLUDED.steps_to_reproduce,
        expected_behavior = EXCLUDED.expected_behavior,
        actual_behavior = EXCLUDED.actual_behavior,
        impact = EXCLUDED.impact,
        environment = EXCLUDED.environment,
        assigned_to = EXCLUDED.assigned_to,
        priority = EXCLUDED.priority,
        suggested_category = EXCLUDED.suggested_category,
        updated_at = GREATEST(CURRENT_TIMESTAMP, incidents.updated_at)
    """

    _UPDATE_INCIDENT_SQL = """
    UPDATE incidents
    SET title = $2,
        original_description = $3,
        chat_transcript = $4::jsonb,
        attachments = $5::jsonb,
        llm_summary = COALESCE($6, llm_summary),
        steps_to_reproduce = COALESCE($7, steps_to_reproduce),
        expected_behavior = COALESCE($8, expected_behavior),
        actual_behavior = COALESCE($9, actual_behavior),
        impact = COALESCE($10, impact),
        environment = COALESCE($11, environment),
        assigned_to = COALESCE($12, assigned_to),
        status = COALESCE($13, status),
        priority = COALESCE($14, priority),
        suggested_category = COALESCE($15, suggested_category),
        updated_at = GREATEST(CURRENT_TIMESTAMP, updated_at)
    WHERE id = $1
    RETURNING id
    """

    _SELECT_INCIDENT_SQL = f"""
    SELECT {_INCIDENT_COLUMNS}
    FROM incidents
    WHERE id = $1
    """

    _LIST_INCIDENTS_SQL = f"""
    SELECT {_INCIDENT_COLUMNS}
    FROM incidents
    WHERE ($1::text IS NULL OR reported_by = $1)
      AND ($2::text IS NULL OR assigned_to = $2)
    ORDER BY created_at DESC
    """

    _UPDATE_STATUS_SQL = f"""
    UPDATE incidents
    SET status = $2,
        updated_at = GREATEST(CURRENT_TIMESTAMP, updated_at)
    WHERE id = $1
    RETURNING {_INCIDENT_COLUMNS}
    """

    _DELETE_INCIDENT_SQL = """
    DELETE FROM incidents WHERE id = $1
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_INCIDENTS_SQL)
            await connection.execute(self._CREATE_INDEXES_SQL)

    async def insert_incident(self, incident_id: UUID, write: IncidentWrite) -> None:
        """Create an incident; repeating it for the same id keeps reporter and creation time."""

        async with self._pool.acquire() as connection:
            await connection.execute(
                self._INSERT_INCIDENT_SQL,
                incident_id,
                write.title,
                write.original_description,
                encode_transcript(write.transcript),
                encode_attachments(write.attachments),
                write.llm_summary,
                write.steps_to_reproduce,
                write.expected_behavior,
                write.actual_behavior,
                write.impact,
                write.environment,
                write.reported_by,
                write.assigned_to,
                (write.status or IncidentStatus.NEW).value,
                None if write.priority is None else write.priority.value,
                write.suggested_category,
            )

    async def update_incident(self, incident_id: UUID, write: IncidentWrite) -> bool:
        """Update an incident; ``reported_by`` and ``created_at`` are never written."""

        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                self._UPDATE_INCIDENT_SQL,
                incident_id,
                write.title,
                write.original_description,
                encode_transcript(write.transcript),
                encode_attachments(write.attachments),
                write.llm_summary,
                write.steps_to_reproduce,
                write.expected_behavior,
                write.actual_behavior,
                write.impact,
                write.environment,
                write.assigned_to,
                None if write.status is None else write.status.value,
                None if write.priority is None else write.priority.value,
                write.suggested_category,
            )
        return row is not None

    async def get_incident(self, incident_id: UUID) -> PersistedIncident | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_INCIDENT_SQL, incident_id)
            if row is None:
                return None
            return self._row_to_incident(row)

    async def list_incidents(
        self,
        *,
        reported_by: str | None = None,
        assigned_to: str | None = None,
    ) -> list[PersistedIncident]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._LIST_INCIDENTS_SQL, reported_by, assigned_to)
            return [self._row_to_incident(row) for row in rows]

    async def change_status(self, incident_id: UUID, status: IncidentStatus) -> PersistedIncident | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._UPDATE_STATUS_SQL, incident_id, status.value)
            if row is None:
                return None
            return self._row_to_incident(row)

    async def delete_incident(self, incident_id: UUID) -> bool:
        async with self._pool.acquire() as connection:
            result = await connection.execute(self._DELETE_INCIDENT_SQL, incident_id)
        if isinstance(result, str):
            return result.strip().endswith(" 1")
        return bool(result)

    @staticmethod
    def _row_to_incident(row: Any) -> PersistedIncident:
        priority = row["priority"]
        return PersistedIncident(
            id=_to_uuid(row["id"]),
            title=str(row["title"]),
            original_description=str(row["original_description"]),
            transcript=decode_transcript(row["chat_transcript"]),
            attachments=decode_attachments(row["attachments"]),
            reported_by=str(row["reported_by"]),
            status=IncidentStatus(str(row["status"])),
            created_at=to_datetime(row["created_at"]),
            updated_at=to_datetime(row["updated_at"]),
            llm_summary=row["llm_summary"],
            steps_to_reproduce=row["steps_to_reproduce"],
            expected_behavior=row["expected_behavior"],
            actual_behavior=row["actual_behavior"],
            impact=row["impact"],
            environment=row["environment"],
            assigned_to=row["assigned_to"],
            priority=Priority(str(priority)) if priority else None,
            suggested_category=row["suggested_category"],
        )


def attachment_to_document(attachment: Attachment) -> dict[str, Any]:
    document: dict[str, Any] = {
        "id": attachment.id,
        "name": attachment.name,
        "mime_type": attachment.mime_type,
        "size": attachment.size,
    }
    if attachment.preview:
        document["preview"] = attachment.preview
    return document


def attachment_from_document(document: Mapping[str, Any]) -> Attachment:
    return Attachment(
        id=str(document["id"]),
        name=str(document["name"]),
        mime_type=str(document["mime_type"]),
        size=int(document["size"]),
        preview=document.get("preview") or None,
    )


def turn_to_document(turn: ChatTurn) -> dict[str, Any]:
    return {
        "id": turn.id,
        "sender": turn.sender.value,
        "text": turn.text,
        "timestamp": to_storage_timestamp(turn.timestamp),
        "attachments": [attachment_to_document(attachment) for attachment in turn.attachments],
        "hidden": turn.hidden,
    }


def turn_from_document(document: Mapping[str, Any]) -> ChatTurn:
    return ChatTurn(
        id=str(document["id"]),
        sender=Sender(str(document["sender"])),
        text=str(document["text"]),
        timestamp=to_datetime(document["timestamp"]),
        attachments=tuple(attachment_from_document(item) for item in document.get("attachments") or ()),
        hidden=bool(document.get("hidden", False)),
    )


def encode_transcript(transcript: tuple[ChatTurn, ...]) -> str:
    return json.dumps([turn_to_document(turn) for turn in transcript], ensure_ascii=False)


def encode_attachments(attachments: tuple[Attachment, ...]) -> str:
    return json.dumps([attachment_to_document(attachment) for attachment in attachments], ensure_ascii=False)


def _load_json(value: Any) -> list[Mapping[str, Any]]:
    # asyncpg hands JSONB back as text unless a type codec is registered.
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        return list(json.loads(value))
    return list(value)


def decode_transcript(value: Any) -> tuple[ChatTurn, ...]:
    return tuple(turn_from_document(item) for item in _load_json(value))


def decode_attachments(value: Any) -> tuple[Attachment, ...]:
    return tuple(attachment_from_document(item) for item in _load_json(value))


def _to_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    return UUID(str(value))
