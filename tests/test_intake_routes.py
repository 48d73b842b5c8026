import base64
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

from incident_intake.dependencies import intake as intake_deps
from incident_intake.dependencies.auth import get_current_user
from incident_intake.incidents.models import IncidentStatus, PersistedIncident
from incident_intake.intake import prompts
from incident_intake.intake.models import ChatTurn, Sender
from incident_intake.intake.registry import SessionRegistry
from incident_intake.main import create_app
from incident_intake.users.models import Role, UserProfile

ANA = UserProfile(uid="user-1", email="ana@example.com", name="Ana Pérez")
LUIS = UserProfile(uid="user-2", email="luis@example.com", name="Luis Gómez")
ADMIN = UserProfile(uid="admin-1", email="admin@example.com", name="Admin", role=Role.ADMIN)


@pytest.fixture
def intake_client(make_context, make_assistant, summary_text, store):
    app = create_app()
    registry = SessionRegistry()
    assistant = make_assistant([["Hola Ana, ¿qué ocurre?"], ["Entendido"], [summary_text], ["¡Gracias!"]])
    context = make_context(assistant)
    repository = AsyncMock()
    current = {"user": ANA}

    async def override_registry():
        return registry

    async def override_context():
        return context

    async def override_repository():
        return repository

    app.dependency_overrides[intake_deps.get_session_registry] = override_registry
    app.dependency_overrides[intake_deps.get_intake_context] = override_context
    app.dependency_overrides[intake_deps.get_incident_repository] = override_repository
    app.dependency_overrides[get_current_user] = lambda: current["user"]

    client = TestClient(app)
    try:
        yield client, current, repository, registry
    finally:
        app.dependency_overrides.clear()


def _start(client) -> dict:
    response = client.post("/intake/sessions", json={"description": "No puedo exportar el informe"})
    assert response.status_code == 201
    return response.json()


def test_create_session_returns_first_turns(intake_client):
    client, _, _, registry = intake_client

    body = _start(client)

    assert body["state"] == "awaiting_user_input"
    assert [turn["sender"] for turn in body["transcript"]] == ["user", "assistant"]
    assert body["transcript"][1]["text"] == "Hola Ana, ¿qué ocurre?"
    assert body["incident_id"] is None
    assert len(registry) == 1


def test_create_session_requires_exactly_one_source(intake_client):
    client, _, _, _ = intake_client

    assert client.post("/intake/sessions", json={}).status_code == 422
    both = {"description": "x", "incident_id": str(uuid4())}
    assert client.post("/intake/sessions", json=both).status_code == 422


def test_reopen_missing_incident_returns_not_found(intake_client):
    client, _, repository, _ = intake_client
    repository.get_incident = AsyncMock(return_value=None)

    response = client.post("/intake/sessions", json={"incident_id": str(uuid4())})

    assert response.status_code == 404


def test_sessions_are_private_to_their_owner(intake_client):
    client, current, _, _ = intake_client
    session_id = _start(client)["id"]

    current["user"] = LUIS

    assert client.get(f"/intake/sessions/{session_id}").status_code == 404
    assert client.post(f"/intake/sessions/{session_id}/messages", json={"text": "hola"}).status_code == 404


def test_full_flow_confirms_and_discards_session(intake_client, store):
    client, _, _, registry = intake_client
    session_id = _start(client)["id"]

    message = client.post(f"/intake/sessions/{session_id}/messages", json={"text": "Sale un error 500"})
    assert message.status_code == 200
    assert message.json()["transcript"][-1]["text"] == "Entendido"

    summary = client.post(f"/intake/sessions/{session_id}/summary")
    assert summary.status_code == 200
    summary_body = summary.json()
    assert summary_body["state"] == "summary_presented"
    assert summary_body["record"]["title"] == "Error al exportar informe mensual"
    assert all(not turn["hidden"] for turn in summary_body["transcript"])

    assignee = client.put(f"/intake/sessions/{session_id}/assignee", json={"assignee_id": "tech-3"})
    assert assignee.json()["assignee_id"] == "tech-3"

    confirmed = client.post(f"/intake/sessions/{session_id}/confirm")
    assert confirmed.status_code == 200
    incident = confirmed.json()
    assert incident["reported_by"] == "user-1"
    assert incident["assigned_to"] == "tech-3"
    assert incident["status"] == "Nuevo"
    assert incident["priority"] == "Alta"
    assert incident["summary"].startswith("Título: Error al exportar informe mensual")
    assert len(store.incidents) == 1
    assert len(registry) == 0
    assert client.get(f"/intake/sessions/{session_id}").status_code == 404


def test_confirm_without_summary_conflicts(intake_client):
    client, _, _, _ = intake_client
    session_id = _start(client)["id"]

    assert client.post(f"/intake/sessions/{session_id}/confirm").status_code == 409
    assert client.post(f"/intake/sessions/{session_id}/revision").status_code == 409


def test_confirm_failure_reports_save_error(intake_client, store):
    client, _, _, registry = intake_client
    session_id = _start(client)["id"]
    client.post(f"/intake/sessions/{session_id}/messages", json={"text": "Sale un error 500"})
    client.post(f"/intake/sessions/{session_id}/summary")
    store.fail_reread = True

    response = client.post(f"/intake/sessions/{session_id}/confirm")

    assert response.status_code == 502
    assert response.json()["detail"] == prompts.SAVE_ERROR_MESSAGE
    session = client.get(f"/intake/sessions/{session_id}").json()
    assert session["state"] == "summary_presented"
    assert len(registry) == 1


def test_attachments_are_validated_and_removable(intake_client):
    client, _, _, _ = intake_client
    session_id = _start(client)["id"]
    payload = {
        "files": [
            {"name": "log.txt", "mime_type": "text/plain", "content_base64": base64.b64encode(b"trace").decode()},
            {"name": "tool.exe", "mime_type": "application/x-msdownload", "content_base64": ""},
        ]
    }

    response = client.post(f"/intake/sessions/{session_id}/attachments", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert [item["name"] for item in body["accepted"]] == ["log.txt"]
    assert body["rejected"] == ["tool.exe"]
    assert "tool.exe" in body["error"]

    attachment_id = body["accepted"][0]["id"]
    pending = client.get(f"/intake/sessions/{session_id}").json()["pending_attachments"]
    assert [item["id"] for item in pending] == [attachment_id]

    assert client.delete(f"/intake/sessions/{session_id}/attachments/{attachment_id}").status_code == 204
    assert client.delete(f"/intake/sessions/{session_id}/attachments/{attachment_id}").status_code == 404


def test_invalid_base64_is_rejected(intake_client):
    client, _, _, _ = intake_client
    session_id = _start(client)["id"]
    payload = {"files": [{"name": "log.txt", "mime_type": "text/plain", "content_base64": "***"}]}

    assert client.post(f"/intake/sessions/{session_id}/attachments", json=payload).status_code == 422


def test_speech_feed_updates_composer(intake_client):
    client, _, _, _ = intake_client
    session_id = _start(client)["id"]

    response = client.post(
        f"/intake/sessions/{session_id}/speech",
        json={"composer_text": "", "results": [{"transcript": "no funciona", "is_final": True}]},
    )

    assert response.status_code == 200
    assert "no funciona" in response.json()["composer_text"]


def test_cancel_session_discards_it(intake_client):
    client, _, _, registry = intake_client
    session_id = _start(client)["id"]

    assert client.delete(f"/intake/sessions/{session_id}").status_code == 204
    assert len(registry) == 0


def _incident(reported_by: str) -> PersistedIncident:
    now = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
    return PersistedIncident(
        id=uuid4(),
        title="Impresora sin conexión",
        original_description="No imprime",
        transcript=(
            ChatTurn.create(Sender.USER, "No imprime", timestamp=now),
            ChatTurn.create(Sender.ASSISTANT, "¿Qué impresora?", timestamp=now),
        ),
        attachments=(),
        reported_by=reported_by,
        status=IncidentStatus.NEW,
        created_at=now,
        updated_at=now,
    )


def test_reopen_is_limited_to_reporter_and_admin(intake_client):
    client, current, repository, _ = intake_client
    incident = _incident("user-2")
    repository.get_incident = AsyncMock(return_value=incident)

    forbidden = client.post("/intake/sessions", json={"incident_id": str(incident.id)})
    assert forbidden.status_code == 403

    current["user"] = ADMIN
    allowed = client.post("/intake/sessions", json={"incident_id": str(incident.id)})
    assert allowed.status_code == 201
    body = allowed.json()
    assert body["incident_id"] == str(incident.id)
    assert [turn["text"] for turn in body["transcript"]] == ["No imprime", "¿Qué impresora?", "Hola Ana, ¿qué ocurre?"]


def test_unavailable_sessions_are_not_kept(make_context, make_assistant):
    app = create_app()
    registry = SessionRegistry()
    context = make_context(make_assistant(available=False))

    async def override_registry():
        return registry

    async def override_context():
        return context

    app.dependency_overrides[intake_deps.get_session_registry] = override_registry
    app.dependency_overrides[intake_deps.get_intake_context] = override_context
    app.dependency_overrides[intake_deps.get_incident_repository] = lambda: AsyncMock()
    app.dependency_overrides[get_current_user] = lambda: ANA
    client = TestClient(app)

    for _ in range(50):
        body = _start(client)
        assert body["state"] == "unavailable"
        assert body["transcript"][-1]["text"] == prompts.ASSISTANT_UNAVAILABLE_MESSAGE

    assert len(registry) == 0
    assert client.get(f"/intake/sessions/{body['id']}").status_code == 404
    app.dependency_overrides.clear()
