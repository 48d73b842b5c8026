"""Intake dialogue domain: turns, attachments, speech input and summary parsing.

The conversation controller lives in :mod:`incident_intake.intake.controller`
and is imported from there, since it depends on the incidents package.
"""

from .attachments import AttachmentBatch, AttachmentManager, AttachmentValidationError, IncomingFile
from .models import Attachment, ChatTurn, Reporter, Sender, StructuredRecord, SummaryField
from .parser import extract_record, parse_summary, render_record
from .speech import SpeechInputAdapter, SpeechResult
from .state import (
    ConversationState,
    ConversationStateMachine,
    IntakeError,
    InvalidConversationStateError,
    SaveInProgressError,
)

__all__ = [
    "Attachment",
    "AttachmentBatch",
    "AttachmentManager",
    "AttachmentValidationError",
    "ChatTurn",
    "ConversationState",
    "ConversationStateMachine",
    "IncomingFile",
    "IntakeError",
    "InvalidConversationStateError",
    "Reporter",
    "SaveInProgressError",
    "Sender",
    "SpeechInputAdapter",
    "SpeechResult",
    "StructuredRecord",
    "SummaryField",
    "extract_record",
    "parse_summary",
    "render_record",
]
