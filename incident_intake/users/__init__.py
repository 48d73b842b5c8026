"""User profiles read by the authentication layer."""

from .models import Role, UserProfile
from .repository import UserRepository

__all__ = ["Role", "UserProfile", "UserRepository"]
