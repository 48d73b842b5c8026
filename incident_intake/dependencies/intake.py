from __future__ import annotations

from fastapi import HTTPException, Request

from incident_intake.incidents.repository import IncidentRepository
from incident_intake.intake.controller import IntakeContext
from incident_intake.intake.registry import SessionRegistry


async def get_session_registry(request: Request) -> SessionRegistry:
    registry = getattr(request.app.state, "session_registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Intake sessions are not configured")
    return registry


async def get_intake_context(request: Request) -> IntakeContext:
    context = getattr(request.app.state, "intake_context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Intake service is not configured")
    return context


async def get_incident_repository(request: Request) -> IncidentRepository:
    repository = getattr(request.app.state, "incident_repository", None)
    if repository is None:
        raise HTTPException(status_code=503, detail="Incident repository is not configured")
    return repository
