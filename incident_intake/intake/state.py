from __future__ import annotations

from enum import Enum


class IntakeError(RuntimeError):
    """Base error for intake session issues."""


class InvalidConversationStateError(IntakeError):
    """Raised when an operation is not allowed in the session's current state."""


class SaveInProgressError(IntakeError):
    """Raised when a save is requested while another one is still running."""


class ConversationState(str, Enum):
    """States of one intake session."""

    INITIALIZING = "initializing"
    AWAITING_USER_INPUT = "awaiting_user_input"
    AI_RESPONDING = "ai_responding"
    SUMMARY_PRESENTED = "summary_presented"
    SAVING = "saving"
    SAVED = "saved"
    UNAVAILABLE = "unavailable"
    CANCELLED = "cancelled"


class ConversationStateMachine:
    """Validate intake session transitions."""

    _TRANSITIONS: dict[ConversationState, set[ConversationState]] = {
        ConversationState.INITIALIZING: {
            ConversationState.AI_RESPONDING,
            ConversationState.UNAVAILABLE,
            ConversationState.CANCELLED,
        },
        ConversationState.AWAITING_USER_INPUT: {
            ConversationState.AI_RESPONDING,
            ConversationState.CANCELLED,
        },
        ConversationState.AI_RESPONDING: {
            ConversationState.AWAITING_USER_INPUT,
            ConversationState.SUMMARY_PRESENTED,
        },
        ConversationState.SUMMARY_PRESENTED: {
            ConversationState.SAVING,
            ConversationState.AI_RESPONDING,
            ConversationState.CANCELLED,
        },
        ConversationState.SAVING: {
            ConversationState.SAVED,
            ConversationState.SUMMARY_PRESENTED,
        },
        ConversationState.SAVED: set(),
        ConversationState.UNAVAILABLE: {ConversationState.CANCELLED},
        ConversationState.CANCELLED: set(),
    }

    @classmethod
    def initial_state(cls) -> ConversationState:
        return ConversationState.INITIALIZING

    @classmethod
    def can_transition(cls, current: ConversationState, new: ConversationState) -> bool:
        return new in cls._TRANSITIONS.get(current, set())

    @classmethod
    def assert_transition(cls, current: ConversationState, new: ConversationState) -> None:
        if not cls.can_transition(current, new):
            raise InvalidConversationStateError(f"Invalid conversation transition: {current.value} -> {new.value}")

    @classmethod
    def is_terminal(cls, state: ConversationState) -> bool:
        return state in (ConversationState.SAVED, ConversationState.CANCELLED)
