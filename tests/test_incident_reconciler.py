from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from incident_intake.incidents.models import IncidentDraft, IncidentStatus, Priority
from incident_intake.incidents.reconciler import IncidentReconciler, PersistenceError, build_incident_write
from incident_intake.intake.attachments import BytesHandle
from incident_intake.intake.models import Attachment, ChatTurn, Sender, StructuredRecord

STARTED = datetime(2024, 4, 2, 10, 0, tzinfo=timezone.utc)


def _attachment(attachment_id: str, *, preview=None) -> Attachment:
    return Attachment(
        id=attachment_id,
        name=f"{attachment_id}.png",
        mime_type="image/png",
        size=3,
        preview=preview,
        handle=BytesHandle(b"png"),
    )


def _draft(**overrides) -> IncidentDraft:
    image = _attachment("file-1", preview="data:image/png;base64,cG5n")
    document = _attachment("file-2", preview="")
    values = dict(
        title="Impresora",
        original_description="La impresora no imprime",
        transcript=(
            ChatTurn(id="u1", sender=Sender.USER, text="No imprime", timestamp=STARTED, attachments=(image,)),
            ChatTurn(id="a1", sender=Sender.ASSISTANT, text="¿Qué modelo?", timestamp=STARTED),
            ChatTurn(id="u2", sender=Sender.USER, text="Adjunto log", timestamp=STARTED, attachments=(document,)),
        ),
        record=StructuredRecord(
            title="Impresora",
            steps_to_reproduce="Imprimir",
            expected_behavior="Sale el papel",
            actual_behavior="Nada",
            impact="Medio",
            priority="Alta\n\n¿Es correcto?",
        ),
        attachments=(image, document),
        reporter_id="user-1",
        summary_text="resumen",
    )
    values.update(overrides)
    return IncidentDraft(**values)


def test_build_write_sanitizes_attachments_and_optional_fields():
    write = build_incident_write(_draft())

    assert all(attachment.handle is None for attachment in write.attachments)
    assert write.attachments[0].preview == "data:image/png;base64,cG5n"
    assert write.attachments[1].preview is None
    assert write.transcript[0].attachments[0].handle is None
    assert write.environment is None
    assert write.suggested_category is None
    assert write.priority is Priority.HIGH
    assert write.assigned_to is None


@pytest.mark.asyncio
async def test_create_returns_reread_record(store):
    reconciler = IncidentReconciler(store)

    incident = await reconciler.reconcile(_draft(assignee_id="tech-9"))

    assert [kind for kind, *_ in store.writes] == ["insert"]
    assert incident == store.incidents[incident.id]
    assert incident.status is IncidentStatus.NEW
    assert incident.reported_by == "user-1"
    assert incident.assigned_to == "tech-9"
    assert incident.created_at == incident.updated_at


@pytest.mark.asyncio
async def test_round_trip_preserves_transcript_order_and_attachment_metadata(store):
    draft = _draft()

    incident = await IncidentReconciler(store).reconcile(draft)

    assert [turn.id for turn in incident.transcript] == ["u1", "a1", "u2"]
    assert [(a.id, a.name, a.mime_type, a.size) for a in incident.attachments] == [
        (a.id, a.name, a.mime_type, a.size) for a in draft.attachments
    ]


@pytest.mark.asyncio
async def test_update_preserves_reporter_and_creation_time(store):
    reconciler = IncidentReconciler(store)
    created = await reconciler.reconcile(_draft(record=replace(_draft().record, environment="Windows 11")))

    updated = await reconciler.reconcile(
        _draft(incident_id=created.id, reporter_id="admin-7", record=replace(_draft().record, title="Nuevo título"))
    )

    assert updated.id == created.id
    assert updated.reported_by == "user-1"
    assert updated.created_at == created.created_at
    assert updated.updated_at >= created.updated_at
    assert updated.updated_at != created.updated_at
    assert updated.title == "Nuevo título"
    assert updated.environment == "Windows 11"
    kind, _, write = store.writes[-1]
    assert kind == "update"
    assert write.reported_by == "user-1"


@pytest.mark.asyncio
async def test_update_of_missing_incident_fails(store):
    with pytest.raises(PersistenceError):
        await IncidentReconciler(store).reconcile(_draft(incident_id=uuid4()))


@pytest.mark.asyncio
async def test_reread_failure_surfaces_persistence_error(store):
    store.fail_reread = True

    with pytest.raises(PersistenceError) as excinfo:
        await IncidentReconciler(store).reconcile(_draft())

    assert isinstance(excinfo.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_missing_row_after_write_is_an_error(store):
    async def vanish(incident_id):
        return None

    store.get_incident = vanish

    with pytest.raises(PersistenceError, match="could not be read back"):
        await IncidentReconciler(store).reconcile(_draft())


@pytest.mark.asyncio
async def test_slow_write_times_out(store):
    async def hang(incident_id, write):
        await asyncio.sleep(10)

    store.insert_incident = hang

    with pytest.raises(PersistenceError, match="timed out") as excinfo:
        await IncidentReconciler(store, timeout=0.01).reconcile(_draft())

    assert isinstance(excinfo.value.__cause__, asyncio.TimeoutError)
