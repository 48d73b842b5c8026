from __future__ import annotations

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict

from incident_intake.dependencies.auth import CurrentUser
from incident_intake.dependencies.intake import get_incident_repository
from incident_intake.incidents.models import IncidentStatus, PersistedIncident, Priority
from incident_intake.incidents.repository import IncidentRepository
from incident_intake.intake.models import Sender
from incident_intake.intake.parser import render_record
from incident_intake.users.models import UserProfile

router = APIRouter(prefix="/incidents", tags=["incidents"])


class AttachmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    mime_type: str
    size: int
    preview: str | None = None


class TurnResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sender: Sender
    text: str
    timestamp: datetime
    attachments: list[AttachmentResponse]
    hidden: bool = False


class IncidentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    original_description: str
    transcript: list[TurnResponse]
    attachments: list[AttachmentResponse]
    reported_by: str
    assigned_to: str | None
    status: IncidentStatus
    priority: Priority | None
    llm_summary: str | None
    steps_to_reproduce: str | None
    expected_behavior: str | None
    actual_behavior: str | None
    impact: str | None
    environment: str | None
    suggested_category: str | None
    created_at: datetime
    updated_at: datetime
    summary: str


class IncidentStatusChangeRequest(BaseModel):
    status: IncidentStatus


IncidentRepositoryDep = Annotated[IncidentRepository, Depends(get_incident_repository)]


def incident_to_response(incident: PersistedIncident) -> IncidentResponse:
    return IncidentResponse.model_validate(
        {
            **{name: getattr(incident, name) for name in IncidentResponse.model_fields if name != "summary"},
            "summary": render_record(incident.structured_record()),
        },
        from_attributes=True,
    )


def _can_view(user: UserProfile, incident: PersistedIncident) -> bool:
    return user.is_admin or user.uid in (incident.reported_by, incident.assigned_to)


async def _load(repository: IncidentRepository, incident_id: UUID, user: UserProfile) -> PersistedIncident:
    incident = await repository.get_incident(incident_id)
    if incident is None or not _can_view(user, incident):
        raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
    return incident


@router.get("", response_model=list[IncidentResponse])
async def list_incidents(
    repository: IncidentRepositoryDep,
    user: CurrentUser,
    reported_by: str | None = Query(default=None),
    assigned_to: str | None = Query(default=None),
) -> list[IncidentResponse]:
    if not user.is_admin:
        if assigned_to is not None and assigned_to == user.uid:
            reported_by = None
        else:
            reported_by, assigned_to = user.uid, None
    incidents = await repository.list_incidents(reported_by=reported_by, assigned_to=assigned_to)
    return [incident_to_response(incident) for incident in incidents]


@router.get("/{incident_id}", response_model=IncidentResponse)
async def get_incident(incident_id: UUID, repository: IncidentRepositoryDep, user: CurrentUser) -> IncidentResponse:
    return incident_to_response(await _load(repository, incident_id, user))


@router.post("/{incident_id}/status", response_model=IncidentResponse)
async def change_incident_status(
    incident_id: UUID,
    payload: IncidentStatusChangeRequest,
    repository: IncidentRepositoryDep,
    user: CurrentUser,
) -> IncidentResponse:
    incident = await _load(repository, incident_id, user)
    if not user.is_admin and user.uid != incident.assigned_to:
        raise HTTPException(status_code=403, detail="Only an admin or the assignee can change the status")
    updated = await repository.change_status(incident_id, payload.status)
    if updated is None:
        raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
    return incident_to_response(updated)


@router.delete("/{incident_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_incident(incident_id: UUID, repository: IncidentRepositoryDep, user: CurrentUser) -> None:
    incident = await _load(repository, incident_id, user)
    if not user.is_admin and user.uid != incident.reported_by:
        raise HTTPException(status_code=403, detail="Only an admin or the reporter can delete an incident")
    if not await repository.delete_incident(incident_id):
        raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
