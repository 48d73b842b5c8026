from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from incident_intake.dependencies.auth import CurrentUser, get_user_repository
from incident_intake.users.models import Role
from incident_intake.users.repository import UserRepository

router = APIRouter(prefix="/users", tags=["users"])

UserRepositoryDep = Annotated[UserRepository, Depends(get_user_repository)]


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    uid: str
    email: str
    name: str
    role: Role


class UserUpsertRequest(BaseModel):
    email: str = Field(..., min_length=3)
    name: str = Field(..., min_length=1)
    role: Role = Role.USER


@router.get("", response_model=list[UserResponse])
async def list_users(users: UserRepositoryDep, user: CurrentUser) -> list[UserResponse]:
    """Profiles available as incident assignees."""

    return [UserResponse.model_validate(profile) for profile in await users.list_users()]


@router.put("/{uid}", response_model=UserResponse)
async def upsert_user(uid: str, payload: UserUpsertRequest, users: UserRepositoryDep, user: CurrentUser) -> UserResponse:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Only an admin can manage user profiles")
    profile = await users.upsert_user(uid=uid, email=payload.email, name=payload.name, role=payload.role)
    return UserResponse.model_validate(profile)
