"""Clients for the AI assistant driving the intake dialogue."""

from .base import (
    AssistantClient,
    AssistantCommunicationError,
    AssistantError,
    AssistantSession,
    AssistantUnavailableError,
    PriorTurn,
    build_parts,
    build_prior_turns,
)
from .gemini import GeminiAssistant, GeminiChatSession

__all__ = [
    "AssistantClient",
    "AssistantCommunicationError",
    "AssistantError",
    "AssistantSession",
    "AssistantUnavailableError",
    "GeminiAssistant",
    "GeminiChatSession",
    "PriorTurn",
    "build_parts",
    "build_prior_turns",
]
