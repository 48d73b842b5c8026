from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from incident_intake.intake.models import Reporter


class Role(str, Enum):
    """Supported roles."""

    ADMIN = "admin"
    USER = "user"


@dataclass(slots=True)
class UserProfile:
    """Stored profile of a signed-in employee."""

    uid: str
    email: str
    name: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.uid

    def as_reporter(self) -> Reporter:
        return Reporter(uid=self.uid, name=self.display_name)
