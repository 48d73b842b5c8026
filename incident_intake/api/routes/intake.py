from __future__ import annotations

import base64
import binascii
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, model_validator

from incident_intake.dependencies.auth import CurrentUser
from incident_intake.dependencies.intake import get_incident_repository, get_intake_context, get_session_registry
from incident_intake.incidents.reconciler import PersistenceError
from incident_intake.incidents.repository import IncidentRepository
from incident_intake.intake.attachments import IncomingFile
from incident_intake.intake.controller import ConversationController, IntakeContext
from incident_intake.intake.registry import SessionNotFoundError, SessionRegistry
from incident_intake.intake.speech import SpeechResult
from incident_intake.intake.state import ConversationState, InvalidConversationStateError, SaveInProgressError

from .incidents import AttachmentResponse, IncidentResponse, TurnResponse, incident_to_response

router = APIRouter(prefix="/intake/sessions", tags=["intake"])


class SessionCreateRequest(BaseModel):
    description: str | None = Field(default=None, min_length=1)
    incident_id: UUID | None = None

    @model_validator(mode="after")
    def ensure_single_source(self) -> SessionCreateRequest:
        if (self.description is None) == (self.incident_id is None):
            raise ValueError("Provide either a description or an incident_id")
        return self


class MessageRequest(BaseModel):
    text: str = ""


class FilePayload(BaseModel):
    name: str = Field(..., min_length=1)
    mime_type: str = Field(..., min_length=1)
    content_base64: str


class AttachmentUploadRequest(BaseModel):
    files: list[FilePayload] = Field(..., min_length=1)
    pasted: bool = False


class SpeechSegment(BaseModel):
    transcript: str
    is_final: bool = False


class SpeechFeedRequest(BaseModel):
    composer_text: str = ""
    results: list[SpeechSegment] = Field(default_factory=list)
    final: bool = False
    error: str | None = None


class AssigneeRequest(BaseModel):
    assignee_id: str | None = None


class StructuredRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    title: str
    steps_to_reproduce: str
    expected_behavior: str
    actual_behavior: str
    impact: str
    environment: str
    suggested_category: str
    priority: str
    reporter_name_hint: str


class SessionResponse(BaseModel):
    id: str
    state: ConversationState
    incident_id: UUID | None
    transcript: list[TurnResponse]
    record: StructuredRecordResponse | None
    summary_text: str | None
    pending_attachments: list[AttachmentResponse]
    assignee_id: str | None
    error: str | None


class AttachmentBatchResponse(BaseModel):
    accepted: list[AttachmentResponse]
    error: str | None
    rejected: list[str]


class SpeechResponse(BaseModel):
    composer_text: str
    listening: bool
    error: str | None


RegistryDep = Annotated[SessionRegistry, Depends(get_session_registry)]
ContextDep = Annotated[IntakeContext, Depends(get_intake_context)]
IncidentRepositoryDep = Annotated[IncidentRepository, Depends(get_incident_repository)]


def _to_response(session_id: str, controller: ConversationController) -> SessionResponse:
    draft = controller.draft
    incident = controller.saved_incident or draft.incident
    return SessionResponse.model_validate(
        {
            "id": session_id,
            "state": controller.state,
            "incident_id": incident.id if incident else None,
            "transcript": controller.visible_transcript,
            "record": controller.record,
            "summary_text": draft.summary_text,
            "pending_attachments": controller.attachments.pending,
            "assignee_id": draft.assignee_id,
            "error": controller.error,
        },
        from_attributes=True,
    )


def _get_controller(registry: SessionRegistry, session_id: str, uid: str) -> ConversationController:
    try:
        return registry.get(session_id, uid)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _decode_file(payload: FilePayload) -> IncomingFile:
    try:
        data = base64.b64decode(payload.content_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=422, detail=f"Invalid base64 content for {payload.name}") from exc
    return IncomingFile.from_bytes(payload.name, payload.mime_type, data)


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: SessionCreateRequest,
    registry: RegistryDep,
    context: ContextDep,
    repository: IncidentRepositoryDep,
    user: CurrentUser,
) -> SessionResponse:
    reporter = user.as_reporter()
    if payload.incident_id is not None:
        incident = await repository.get_incident(payload.incident_id)
        if incident is None:
            raise HTTPException(status_code=404, detail=f"Incident {payload.incident_id} not found")
        if not user.is_admin and incident.reported_by != user.uid:
            raise HTTPException(status_code=403, detail="Only an admin or the reporter can amend an incident")
        controller = ConversationController.for_incident(context, reporter, incident)
    else:
        controller = ConversationController.for_new_report(context, reporter, payload.description or "")

    session_id = await registry.add(controller)
    await controller.open()
    response = _to_response(session_id, controller)
    if controller.state is ConversationState.UNAVAILABLE:
        # The assistant never answered; the session cannot go anywhere but cancelled.
        await registry.discard(session_id)
    return response


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, registry: RegistryDep, user: CurrentUser) -> SessionResponse:
    return _to_response(session_id, _get_controller(registry, session_id, user.uid))


@router.post("/{session_id}/messages", response_model=SessionResponse)
async def send_message(
    session_id: str,
    payload: MessageRequest,
    registry: RegistryDep,
    user: CurrentUser,
) -> SessionResponse:
    controller = _get_controller(registry, session_id, user.uid)
    try:
        await controller.send(payload.text)
    except InvalidConversationStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_response(session_id, controller)


@router.post("/{session_id}/attachments", response_model=AttachmentBatchResponse)
async def add_attachments(
    session_id: str,
    payload: AttachmentUploadRequest,
    registry: RegistryDep,
    user: CurrentUser,
) -> AttachmentBatchResponse:
    controller = _get_controller(registry, session_id, user.uid)
    files = [_decode_file(item) for item in payload.files]
    manager = controller.attachments
    batch = manager.add_pasted(files) if payload.pasted else manager.add_files(files)
    return AttachmentBatchResponse.model_validate(
        {
            "accepted": batch.accepted,
            "error": str(batch.error) if batch.error else None,
            "rejected": [rejection.name for rejection in batch.error.rejections] if batch.error else [],
        },
        from_attributes=True,
    )


@router.delete("/{session_id}/attachments/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_attachment(session_id: str, attachment_id: str, registry: RegistryDep, user: CurrentUser) -> None:
    controller = _get_controller(registry, session_id, user.uid)
    if not controller.attachments.remove(attachment_id):
        raise HTTPException(status_code=404, detail=f"Attachment {attachment_id} is not pending")


@router.post("/{session_id}/speech", response_model=SpeechResponse)
async def feed_speech(
    session_id: str,
    payload: SpeechFeedRequest,
    registry: RegistryDep,
    user: CurrentUser,
) -> SpeechResponse:
    speech = _get_controller(registry, session_id, user.uid).speech
    if payload.error:
        speech.on_error(payload.error)
    else:
        results = [SpeechResult(segment.transcript, segment.is_final) for segment in payload.results]
        speech.feed(payload.composer_text, results)
        if payload.final:
            speech.on_end()
    return SpeechResponse(composer_text=speech.composer_text, listening=speech.listening, error=speech.error)


@router.post("/{session_id}/summary", response_model=SessionResponse)
async def request_summary(session_id: str, registry: RegistryDep, user: CurrentUser) -> SessionResponse:
    controller = _get_controller(registry, session_id, user.uid)
    try:
        await controller.request_summary()
    except InvalidConversationStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_response(session_id, controller)


@router.post("/{session_id}/revision", response_model=SessionResponse)
async def request_revision(session_id: str, registry: RegistryDep, user: CurrentUser) -> SessionResponse:
    controller = _get_controller(registry, session_id, user.uid)
    try:
        await controller.request_revision()
    except InvalidConversationStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_response(session_id, controller)


@router.put("/{session_id}/assignee", response_model=SessionResponse)
async def set_assignee(
    session_id: str,
    payload: AssigneeRequest,
    registry: RegistryDep,
    user: CurrentUser,
) -> SessionResponse:
    controller = _get_controller(registry, session_id, user.uid)
    try:
        controller.set_assignee(payload.assignee_id)
    except InvalidConversationStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_response(session_id, controller)


@router.post("/{session_id}/confirm", response_model=IncidentResponse)
async def confirm_session(session_id: str, registry: RegistryDep, user: CurrentUser) -> IncidentResponse:
    controller = _get_controller(registry, session_id, user.uid)
    try:
        incident = await controller.confirm()
    except (InvalidConversationStateError, SaveInProgressError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=502, detail=controller.error or str(exc)) from exc
    await registry.discard(session_id)
    return incident_to_response(incident)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_session(session_id: str, registry: RegistryDep, user: CurrentUser) -> None:
    controller = _get_controller(registry, session_id, user.uid)
    try:
        await controller.cancel()
    except InvalidConversationStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    await registry.discard(session_id)
