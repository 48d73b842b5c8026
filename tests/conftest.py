from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Sequence
from uuid import UUID

import pytest

from incident_intake.incidents.models import IncidentStatus, IncidentWrite, PersistedIncident
from incident_intake.incidents.reconciler import IncidentReconciler
from incident_intake.intake.controller import IntakeContext
from incident_intake.intake.models import Attachment, Reporter
from incident_intake.assistant.base import AssistantUnavailableError, PriorTurn

SUMMARY_TEXT = """He preparado el siguiente resumen del problema. Por favor, revísalo.

TituloSugerido: Error al exportar informe mensual
PasosParaReproducir: Abrir informes y pulsar exportar
ComportamientoEsperado: Se descarga el PDF
ComportamientoActual: Aparece el error 500
ImpactoDelProblema: No se puede cerrar el mes
EntornoPotencial: Chrome en Windows 11
CategoriaSugerida: Funcionalidad
PrioridadSugerida: Alta
NombreDelReportador: Ana Pérez

¿Es correcto o deseas añadir o modificar algo antes de crear el ticket de incidencia?"""


class ScriptedSession:
    """Assistant session replaying scripted replies.

    Each reply is a list of fragments; an exception instance inside the list
    is raised at that point of the stream, an exception instead of a list is
    raised before the first fragment.
    """

    def __init__(self, replies: list) -> None:
        self.replies = list(replies)
        self.sent: list[tuple[str, tuple[Attachment, ...]]] = []
        self.closed = False

    async def send_turn(self, text: str, attachments: Sequence[Attachment] = ()):
        self.sent.append((text, tuple(attachments)))
        if not self.replies:
            raise ConnectionError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        for fragment in reply:
            if isinstance(fragment, BaseException):
                raise fragment
            yield fragment

    async def aclose(self) -> None:
        self.closed = True


class FakeAssistant:
    def __init__(self, replies: list | None = None, *, available: bool = True, open_error: Exception | None = None):
        self.session = ScriptedSession(replies or [])
        self._available = available
        self.open_error = open_error
        self.instructions: list[str] = []
        self.prior_turns: list[list[PriorTurn]] = []

    @property
    def available(self) -> bool:
        return self._available

    async def open_session(self, system_instruction: str, prior_turns: Sequence[PriorTurn] = ()):
        if not self._available:
            raise AssistantUnavailableError("not configured")
        if self.open_error is not None:
            raise self.open_error
        self.instructions.append(system_instruction)
        self.prior_turns.append(list(prior_turns))
        return self.session


class InMemoryIncidentStore:
    """Incident store stamping times from its own clock, like the database does."""

    def __init__(self) -> None:
        self.incidents: dict[UUID, PersistedIncident] = {}
        self.writes: list[tuple[str, UUID, IncidentWrite]] = []
        self.fail_reread = False
        self._clock = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def _now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def insert_incident(self, incident_id: UUID, write: IncidentWrite) -> None:
        self.writes.append(("insert", incident_id, write))
        now = self._now()
        existing = self.incidents.get(incident_id)
        self.incidents[incident_id] = PersistedIncident(
            id=incident_id,
            title=write.title,
            original_description=write.original_description,
            transcript=write.transcript,
            attachments=write.attachments,
            reported_by=existing.reported_by if existing else write.reported_by,
            status=existing.status if existing else write.status or IncidentStatus.NEW,
            created_at=existing.created_at if existing else now,
            updated_at=now,
            llm_summary=write.llm_summary,
            steps_to_reproduce=write.steps_to_reproduce,
            expected_behavior=write.expected_behavior,
            actual_behavior=write.actual_behavior,
            impact=write.impact,
            environment=write.environment,
            assigned_to=write.assigned_to,
            priority=write.priority,
            suggested_category=write.suggested_category,
        )

    async def update_incident(self, incident_id: UUID, write: IncidentWrite) -> bool:
        self.writes.append(("update", incident_id, write))
        current = self.incidents.get(incident_id)
        if current is None:
            return False

        def keep(new, old):
            return old if new is None else new

        self.incidents[incident_id] = replace(
            current,
            title=write.title,
            original_description=write.original_description,
            transcript=write.transcript,
            attachments=write.attachments,
            status=keep(write.status, current.status),
            llm_summary=keep(write.llm_summary, current.llm_summary),
            steps_to_reproduce=keep(write.steps_to_reproduce, current.steps_to_reproduce),
            expected_behavior=keep(write.expected_behavior, current.expected_behavior),
            actual_behavior=keep(write.actual_behavior, current.actual_behavior),
            impact=keep(write.impact, current.impact),
            environment=keep(write.environment, current.environment),
            assigned_to=keep(write.assigned_to, current.assigned_to),
            priority=keep(write.priority, current.priority),
            suggested_category=keep(write.suggested_category, current.suggested_category),
            updated_at=max(self._now(), current.updated_at),
        )
        return True

    async def get_incident(self, incident_id: UUID) -> PersistedIncident | None:
        if self.fail_reread and self.writes:
            raise ConnectionError("read back failed")
        return self.incidents.get(incident_id)


@pytest.fixture
def reporter() -> Reporter:
    return Reporter(uid="user-1", name="Ana Pérez")


@pytest.fixture
def store() -> InMemoryIncidentStore:
    return InMemoryIncidentStore()


@pytest.fixture
def make_context(store):
    def factory(assistant: FakeAssistant, *, turn_timeout: float | None = 1.0) -> IntakeContext:
        return IntakeContext(
            assistant=assistant,
            reconciler=IncidentReconciler(store, timeout=1.0),
            turn_timeout=turn_timeout,
        )

    return factory


@pytest.fixture
def make_assistant():
    return FakeAssistant


@pytest.fixture
def summary_text() -> str:
    return SUMMARY_TEXT
