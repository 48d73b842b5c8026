from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from incident_intake.core.config import Settings, get_settings
from incident_intake.users.models import UserProfile
from incident_intake.users.repository import UserRepository

bearer_scheme = HTTPBearer(auto_error=False)


async def get_user_repository(request: Request) -> UserRepository:
    repository = getattr(request.app.state, "user_repository", None)
    if repository is None:
        raise HTTPException(status_code=503, detail="User repository is not configured")
    return repository


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
    users: Annotated[UserRepository, Depends(get_user_repository)],
) -> UserProfile:
    """Resolve the bearer token to the stored profile of the signed-in user."""

    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authentication credentials")

    uid = settings.api_tokens.get(credentials.credentials)
    if uid is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    profile = await users.get_user(uid)
    if profile is None:
        raise HTTPException(status_code=403, detail="User profile not found")
    return profile


CurrentUser = Annotated[UserProfile, Depends(get_current_user)]
