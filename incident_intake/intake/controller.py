from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from opentelemetry import trace

from incident_intake.assistant.base import (
    AssistantClient,
    AssistantCommunicationError,
    AssistantSession,
    AssistantUnavailableError,
    build_prior_turns,
)
from incident_intake.incidents.models import PersistedIncident
from incident_intake.incidents.reconciler import IncidentReconciler, PersistenceError

from . import prompts
from .attachments import MAX_ATTACHMENT_BYTES, AttachmentManager
from .draft import ConversationDraft
from .models import Attachment, ChatTurn, Reporter, Sender, StructuredRecord
from .parser import extract_record, render_record
from .speech import SpeechInputAdapter
from .state import ConversationState, ConversationStateMachine, InvalidConversationStateError, SaveInProgressError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class IntakeContext:
    """Collaborators shared by every intake session, built once at start-up."""

    assistant: AssistantClient
    reconciler: IncidentReconciler
    turn_timeout: float | None = 60.0
    max_attachment_bytes: int = MAX_ATTACHMENT_BYTES

    def new_attachment_manager(self) -> AttachmentManager:
        return AttachmentManager(max_bytes=self.max_attachment_bytes)


class ConversationController:
    """Drive one intake session from the first description to the saved incident.

    Every state check and its transition happen before the first ``await`` of
    an operation, so a second operation started while one is running is
    rejected instead of interleaving with it.
    """

    def __init__(
        self,
        context: IntakeContext,
        reporter: Reporter,
        draft: ConversationDraft,
        *,
        speech: SpeechInputAdapter | None = None,
    ) -> None:
        self._context = context
        self._reporter = reporter
        self._draft = draft
        self._speech = speech or SpeechInputAdapter()
        self._state = ConversationStateMachine.initial_state()
        self._session: AssistantSession | None = None
        self._opening = False
        self._confirmation_sent = False
        self._saved: PersistedIncident | None = None
        self.error: str | None = None

    @classmethod
    def for_new_report(
        cls, context: IntakeContext, reporter: Reporter, description: str, **kwargs
    ) -> ConversationController:
        draft = ConversationDraft.for_new_report(description, attachments=context.new_attachment_manager())
        return cls(context, reporter, draft, **kwargs)

    @classmethod
    def for_incident(
        cls, context: IntakeContext, reporter: Reporter, incident: PersistedIncident, **kwargs
    ) -> ConversationController:
        draft = ConversationDraft.for_incident(incident, attachments=context.new_attachment_manager())
        return cls(context, reporter, draft, **kwargs)

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def reporter(self) -> Reporter:
        return self._reporter

    @property
    def draft(self) -> ConversationDraft:
        return self._draft

    @property
    def transcript(self) -> tuple[ChatTurn, ...]:
        return tuple(self._draft.transcript)

    @property
    def visible_transcript(self) -> tuple[ChatTurn, ...]:
        return tuple(turn for turn in self._draft.transcript if not turn.hidden)

    @property
    def record(self) -> StructuredRecord | None:
        return self._draft.record

    @property
    def attachments(self) -> AttachmentManager:
        return self._draft.attachments

    @property
    def speech(self) -> SpeechInputAdapter:
        return self._speech

    @property
    def saved_incident(self) -> PersistedIncident | None:
        return self._saved

    @property
    def editing(self) -> bool:
        return self._draft.editing

    async def open(self) -> ChatTurn | None:
        """Open the assistant session and produce the first assistant turn."""

        if self._state is not ConversationState.INITIALIZING or self._opening:
            raise InvalidConversationStateError(f"Session cannot be opened from {self._state.value}")
        self._opening = True
        try:
            return await self._open()
        finally:
            self._opening = False

    async def _open(self) -> ChatTurn | None:
        draft = self._draft
        incident = draft.incident
        if incident is not None:
            previous = incident.llm_summary or render_record(incident.structured_record())
            instruction = prompts.rechat_system_instruction(incident.title, self._reporter.name, previous)
            prior_turns = build_prior_turns(draft.transcript)
        else:
            instruction = prompts.initial_system_instruction(draft.original_description, self._reporter.name)
            prior_turns = []

        first_attachments: tuple[Attachment, ...] = ()
        if not draft.editing:
            first_attachments = await draft.attachments.drain()
            draft.append(ChatTurn.create(Sender.USER, draft.original_description, attachments=first_attachments))

        if not self._context.assistant.available:
            self._become_unavailable("assistant is not configured")
            return None
        try:
            self._session = await asyncio.wait_for(
                self._context.assistant.open_session(instruction, prior_turns),
                timeout=self._context.turn_timeout,
            )
        except AssistantUnavailableError as exc:
            self._become_unavailable(str(exc))
            return None
        except asyncio.TimeoutError:
            self._become_unavailable("timed out opening the session")
            return None
        except Exception as exc:
            logger.exception("Assistant session could not be opened")
            self._become_unavailable(str(exc))
            return None

        self._transition(ConversationState.AI_RESPONDING)
        if draft.editing:
            # The greeting trigger is sent but never recorded as a user turn.
            return await self._run_turn(prompts.REOPEN_GREETING_TRIGGER)
        return await self._run_turn(draft.original_description, first_attachments)

    async def send(self, text: str) -> ChatTurn | None:
        """Send a user turn with the pending attachments; empty turns are ignored."""

        text = (text or "").strip()
        if self._state not in (ConversationState.AWAITING_USER_INPUT, ConversationState.SUMMARY_PRESENTED):
            raise InvalidConversationStateError(f"Cannot send a message while {self._state.value}")
        if not text and not self._draft.attachments.pending:
            return None

        if self._state is ConversationState.SUMMARY_PRESENTED:
            self._discard_summary()
        self._transition(ConversationState.AI_RESPONDING)

        attachments = await self._draft.attachments.drain()
        turn_text = text or prompts.ATTACHMENT_ONLY_TEXT
        self._draft.append(ChatTurn.create(Sender.USER, turn_text, attachments=attachments))
        self._speech.reset()
        return await self._run_turn(turn_text, attachments)

    async def request_summary(self) -> StructuredRecord | None:
        """Ask for the structured summary; the request is recorded as a hidden turn."""

        if self._state not in (ConversationState.AWAITING_USER_INPUT, ConversationState.SUMMARY_PRESENTED):
            raise InvalidConversationStateError(f"Cannot request a summary while {self._state.value}")
        self._discard_summary()
        self._transition(ConversationState.AI_RESPONDING)

        request = prompts.summary_request(updating=self.editing)
        self._draft.append(ChatTurn.create(Sender.USER, request, hidden=True))
        await self._run_turn(request, force_summary=True)
        return self._draft.record

    async def request_revision(self) -> ChatTurn | None:
        if self._state is not ConversationState.SUMMARY_PRESENTED:
            raise InvalidConversationStateError(f"Cannot revise the summary while {self._state.value}")
        self._discard_summary()
        self._transition(ConversationState.AI_RESPONDING)

        self._draft.append(ChatTurn.create(Sender.USER, prompts.REVISION_REQUEST))
        return await self._run_turn(prompts.REVISION_REQUEST)

    async def confirm(self) -> PersistedIncident:
        """Confirm the presented summary and persist the incident.

        Raises :class:`PersistenceError` after returning to
        ``SUMMARY_PRESENTED`` when the save fails; the draft is kept for a
        retry.
        """

        if self._state is ConversationState.SAVING:
            raise SaveInProgressError("A save is already in progress for this session")
        if self._state is not ConversationState.SUMMARY_PRESENTED:
            raise InvalidConversationStateError(f"Cannot confirm while {self._state.value}")
        self._transition(ConversationState.SAVING)
        self.error = None

        if not self._confirmation_sent:
            self._confirmation_sent = True
            await self._acknowledge()

        with tracer.start_as_current_span("intake.save") as span:
            span.set_attribute("intake.editing", self.editing)
            try:
                saved = await self._context.reconciler.reconcile(self._draft.to_incident_draft(self._reporter))
            except PersistenceError:
                logger.warning("Saving the incident failed; the draft is kept for retry")
                self._system_note(prompts.SAVE_ERROR_MESSAGE)
                self._transition(ConversationState.SUMMARY_PRESENTED)
                raise

        self._saved = saved
        self._transition(ConversationState.SAVED)
        await self._release()
        return saved

    async def cancel(self) -> None:
        if self._state is ConversationState.CANCELLED:
            return
        self._transition(ConversationState.CANCELLED)
        await self._release()

    async def aclose(self) -> None:
        await self._release()

    def set_assignee(self, uid: str | None) -> None:
        if ConversationStateMachine.is_terminal(self._state):
            raise InvalidConversationStateError(f"Cannot change the assignee while {self._state.value}")
        self._draft.assignee_id = uid or None

    async def _acknowledge(self) -> None:
        self._draft.append(ChatTurn.create(Sender.USER, prompts.CONFIRMATION_TURN))
        try:
            reply = await asyncio.wait_for(
                self._collect(prompts.CONFIRMATION_TURN, ()), timeout=self._context.turn_timeout
            )
        except Exception:
            logger.warning("Assistant did not acknowledge the confirmation", exc_info=True)
            reply = prompts.ACKNOWLEDGEMENT
        self._draft.append(ChatTurn.create(Sender.ASSISTANT, reply))

    async def _run_turn(
        self,
        text: str,
        attachments: Sequence[Attachment] = (),
        *,
        force_summary: bool = False,
    ) -> ChatTurn | None:
        failure_message = prompts.SUMMARY_ERROR_MESSAGE if force_summary else prompts.ASSISTANT_ERROR_MESSAGE
        with tracer.start_as_current_span("intake.turn") as span:
            span.set_attribute("intake.transcript_length", len(self._draft.transcript))
            try:
                reply = await asyncio.wait_for(self._collect(text, attachments), timeout=self._context.turn_timeout)
            except asyncio.TimeoutError:
                logger.warning("Assistant turn timed out after %s seconds", self._context.turn_timeout)
                self._turn_failed(failure_message)
                return None
            except Exception:
                logger.exception("Assistant turn failed")
                self._turn_failed(failure_message)
                return None

        turn = self._draft.append(ChatTurn.create(Sender.ASSISTANT, reply))
        self.error = None
        if force_summary or prompts.contains_summary_marker(reply):
            self._present_summary(reply)
            self._transition(ConversationState.SUMMARY_PRESENTED)
        else:
            self._transition(ConversationState.AWAITING_USER_INPUT)
        return turn

    async def _collect(self, text: str, attachments: Sequence[Attachment]) -> str:
        if self._session is None:
            raise AssistantCommunicationError("No assistant session is open")
        fragments: list[str] = []
        async for fragment in self._session.send_turn(text, attachments):
            fragments.append(fragment)
        reply = "".join(fragments)
        if not reply.strip():
            raise AssistantCommunicationError("Assistant returned an empty reply")
        return reply

    def _present_summary(self, reply: str) -> None:
        draft = self._draft
        draft.record = extract_record(
            reply,
            reporter_name=self._reporter.name,
            existing_title=draft.incident.title if draft.incident else None,
            original_description=draft.original_description,
        )
        draft.summary_text = reply
        self._confirmation_sent = False

    def _discard_summary(self) -> None:
        self._draft.clear_summary()
        self._confirmation_sent = False

    def _turn_failed(self, message: str) -> None:
        self._system_note(message)
        self._transition(ConversationState.AWAITING_USER_INPUT)

    def _become_unavailable(self, reason: str) -> None:
        logger.warning("Assistant unavailable: %s", reason)
        self._system_note(prompts.ASSISTANT_UNAVAILABLE_MESSAGE)
        self._transition(ConversationState.UNAVAILABLE)

    def _system_note(self, message: str) -> None:
        self.error = message
        self._draft.append(ChatTurn.create(Sender.SYSTEM, message))

    def _transition(self, new_state: ConversationState) -> None:
        ConversationStateMachine.assert_transition(self._state, new_state)
        logger.debug("Intake session %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    async def _release(self) -> None:
        self._draft.attachments.discard()
        session, self._session = self._session, None
        if session is not None:
            await session.aclose()
