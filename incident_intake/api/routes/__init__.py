"""Route modules exposed by the API package."""

from . import incidents, intake, ping, users

__all__ = ["incidents", "intake", "ping", "users"]
