"""
Coaching Session Module

State machine for one advisory interaction.

State flow:
    IDLE -> PENDING    -> IDLE   (dismissed / resolved)
    IDLE -> CONVERSING -> IDLE   (dismissed / user resumed writing / max turns)

Any terminal transition clears the active rule and turn history. Each
session gets a generation number; a backend reply whose generation is
no longer current is dropped without touching state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
import asyncio
import logging

from .advisory import (
    AdvisoryBackend,
    AdvisoryRequest,
    BackendFailure,
    BackendFailureKind,
    Turn,
    build_opening_prompt,
    build_system_context,
)
from .metrics import EditDelta
from .rules import TriggerRule, WritingMode
from .scheduler import TriggerResult

logger = logging.getLogger(__name__)


class SessionStatus(Enum):
    IDLE = "idle"
    PENDING = "pending"          # single advisory shown, awaiting feedback
    CONVERSING = "conversing"    # multi-turn exchange


class SessionEndReason(Enum):
    DISMISSED = "dismissed"
    RESOLVED = "resolved"
    USER_RESUMED_WRITING = "user_resumed_writing"
    MAX_TURNS_REACHED = "max_turns_reached"
    BACKEND_FAILURE = "backend_failure"
    RESET = "reset"


class SessionEventKind(Enum):
    STARTED = "started"
    TURN_ADDED = "turn_added"
    ENDED = "ended"
    ERROR = "error"


class InvalidSessionState(RuntimeError):
    """A command that the session cannot accept in its current status."""


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of the session for the presentation layer."""
    status: SessionStatus
    rule_name: Optional[str] = None
    requires_conversation: bool = False
    message: Optional[str] = None
    turns: Tuple[Turn, ...] = ()
    last_error: Optional[BackendFailure] = None

    @property
    def exchange_count(self) -> int:
        return sum(1 for turn in self.turns if turn.role == "assistant")

    def to_dict(self) -> Dict:
        return {
            "status": self.status.value,
            "ruleName": self.rule_name,
            "requiresConversation": self.requires_conversation,
            "message": self.message,
            "turns": [turn.to_dict() for turn in self.turns],
            "exchangeCount": self.exchange_count,
            "lastError": self.last_error.to_dict() if self.last_error else None,
        }


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    snapshot: SessionSnapshot
    reason: Optional[SessionEndReason] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class SessionTransition:
    """Record of a status change."""
    from_status: SessionStatus
    to_status: SessionStatus
    timestamp: datetime
    rule_name: Optional[str]
    reason: Optional[SessionEndReason] = None

    def to_dict(self) -> Dict:
        return {
            "from": self.from_status.value,
            "to": self.to_status.value,
            "timestamp": self.timestamp.isoformat(),
            "ruleName": self.rule_name,
            "reason": self.reason.value if self.reason else None,
        }


SessionListener = Callable[[SessionEvent], None]


class CoachingSession:
    """
    Drives one advisory at a time against an async backend.

    At most one backend request is in flight; user turns queue behind
    the session lock and are answered in order.
    """

    MAX_TRANSITION_HISTORY = 100

    def __init__(
        self,
        backend: AdvisoryBackend,
        methodology: str = "",
        auto_close_on_writing: bool = True,
        max_conversation_length: int = 10,
        timeout_seconds: float = 30.0,
    ):
        self.backend = backend
        self.methodology = methodology
        self.auto_close_on_writing = auto_close_on_writing
        self.max_conversation_length = max_conversation_length
        self.timeout_seconds = timeout_seconds

        self.status = SessionStatus.IDLE
        self.active_rule: Optional[TriggerRule] = None
        self.active_rule_name: Optional[str] = None
        self.message: Optional[str] = None
        self.last_error: Optional[BackendFailure] = None
        self.transition_history: List[SessionTransition] = []

        self._turns: List[Turn] = []
        self._system_context = ""
        self._generation = 0
        self._lock: Optional[asyncio.Lock] = None
        self._listeners: List[SessionListener] = []

    # -- configuration -----------------------------------------------------

    def update_config(
        self,
        methodology: Optional[str] = None,
        auto_close_on_writing: Optional[bool] = None,
        max_conversation_length: Optional[int] = None,
    ):
        """Applies to the next session; a running one keeps its context."""
        if methodology is not None:
            self.methodology = methodology
        if auto_close_on_writing is not None:
            self.auto_close_on_writing = auto_close_on_writing
        if max_conversation_length is not None:
            self.max_conversation_length = max_conversation_length

    def add_listener(self, callback: SessionListener):
        self._listeners.append(callback)

    # -- queries -----------------------------------------------------------

    @property
    def turns(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def is_idle(self) -> bool:
        return self.status == SessionStatus.IDLE

    @property
    def exchange_count(self) -> int:
        return sum(1 for turn in self._turns if turn.role == "assistant")

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            status=self.status,
            rule_name=self.active_rule_name,
            requires_conversation=bool(self.active_rule and self.active_rule.requires_conversation),
            message=self.message,
            turns=tuple(self._turns),
            last_error=self.last_error,
        )

    # -- internals ---------------------------------------------------------

    def _emit(self, kind: SessionEventKind, reason: Optional[SessionEndReason] = None):
        event = SessionEvent(kind=kind, snapshot=self.snapshot(), reason=reason)
        for callback in self._listeners:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Session listener failed on {kind.value}")

    def _record_transition(
        self,
        from_status: SessionStatus,
        to_status: SessionStatus,
        rule_name: Optional[str],
        reason: Optional[SessionEndReason] = None,
    ):
        self.transition_history.append(SessionTransition(
            from_status=from_status,
            to_status=to_status,
            timestamp=datetime.now(),
            rule_name=rule_name,
            reason=reason,
        ))
        if len(self.transition_history) > self.MAX_TRANSITION_HISTORY:
            self.transition_history = self.transition_history[-self.MAX_TRANSITION_HISTORY:]

    def _begin(self, trigger: TriggerResult, mode: Optional[WritingMode]) -> int:
        self._generation += 1
        self._lock = asyncio.Lock()

        target = SessionStatus.CONVERSING if trigger.requires_conversation else SessionStatus.PENDING
        self._record_transition(self.status, target, trigger.rule_name)

        self.status = target
        self.active_rule = trigger.rule
        self.active_rule_name = trigger.rule_name
        self.message = None
        self.last_error = None
        self._turns = []
        self._system_context = build_system_context(
            self.methodology, trigger.rule, trigger.writing_mode, mode
        )

        logger.info(f"Session started for {trigger.rule_name} ({target.value})")
        self._emit(SessionEventKind.STARTED)
        return self._generation

    def _end(self, reason: SessionEndReason):
        if self.status == SessionStatus.IDLE:
            return

        self._record_transition(self.status, SessionStatus.IDLE, self.active_rule_name, reason)
        logger.info(f"Session for {self.active_rule_name} ended: {reason.value}")

        self._generation += 1
        self.status = SessionStatus.IDLE
        self.active_rule = None
        self.active_rule_name = None
        self.message = None
        self._turns = []
        self._system_context = ""

        self._emit(SessionEventKind.ENDED, reason)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def _call_backend(self, request: AdvisoryRequest) -> str:
        try:
            return await asyncio.wait_for(self.backend.generate(request), self.timeout_seconds)
        except BackendFailure:
            raise
        except asyncio.TimeoutError as e:
            raise BackendFailure(
                BackendFailureKind.TRANSIENT,
                f"No response within {self.timeout_seconds:g}s",
            ) from e
        except Exception as e:
            logger.error(f"Unexpected advisory backend error: {e}")
            raise BackendFailure(BackendFailureKind.UNKNOWN, str(e)) from e

    def _close_if_exhausted(self):
        if (self.status == SessionStatus.CONVERSING and
                self.exchange_count >= self.max_conversation_length):
            self._end(SessionEndReason.MAX_TURNS_REACHED)

    # -- commands ----------------------------------------------------------

    async def start(
        self,
        trigger: TriggerResult,
        document_text: str,
        mode: Optional[WritingMode] = None,
    ) -> Optional[str]:
        """
        Open a session for a fired trigger and fetch the first message.

        Returns the advisory text, or None when the session was closed
        before the reply arrived.

        Raises:
            InvalidSessionState: a session is already active
            BackendFailure: the backend failed; the session is back to IDLE
        """
        if self.status != SessionStatus.IDLE:
            raise InvalidSessionState(f"Cannot start a session while {self.status.value}")

        generation = self._begin(trigger, mode)
        lock = self._lock

        opening = Turn(role="user", text=build_opening_prompt(
            trigger.rule_name, trigger.metrics, document_text
        ))
        request = AdvisoryRequest(
            system_context=self._system_context,
            turns=(opening,),
            rule=trigger.rule,
        )

        async with lock:
            try:
                reply = await self._call_backend(request)
            except BackendFailure as e:
                if not self._is_current(generation):
                    logger.debug("Dropping failure of a closed session")
                    return None
                self._end(SessionEndReason.BACKEND_FAILURE)
                self.last_error = e
                self._emit(SessionEventKind.ERROR)
                raise

            if not self._is_current(generation):
                logger.info(f"Discarding stale advisory for {trigger.rule_name}")
                return None

            self._turns = [opening, Turn(role="assistant", text=reply)]
            self.message = reply
            self._emit(SessionEventKind.TURN_ADDED)
            self._close_if_exhausted()
            return reply

    async def send_user_turn(self, text: str) -> Optional[str]:
        """
        Add a user message to the conversation and fetch the reply.

        Returns None when the session closed while this turn was queued
        or in flight.

        Raises:
            InvalidSessionState: not in a conversation
            BackendFailure: the backend failed; history is unchanged
        """
        if self.status != SessionStatus.CONVERSING:
            raise InvalidSessionState(f"Cannot send a message while {self.status.value}")

        generation = self._generation
        lock = self._lock

        async with lock:
            if not self._is_current(generation):
                return None

            user_turn = Turn(role="user", text=text)
            request = AdvisoryRequest(
                system_context=self._system_context,
                turns=tuple(self._turns) + (user_turn,),
                rule=self.active_rule,
            )

            try:
                reply = await self._call_backend(request)
            except BackendFailure as e:
                if not self._is_current(generation):
                    return None
                self.last_error = e
                logger.error(f"Conversation turn failed: {e.kind.value}")
                self._emit(SessionEventKind.ERROR)
                raise

            if not self._is_current(generation):
                logger.info("Discarding stale conversation reply")
                return None

            self.last_error = None
            self._turns.extend([user_turn, Turn(role="assistant", text=reply)])
            self.message = reply
            self._emit(SessionEventKind.TURN_ADDED)
            self._close_if_exhausted()
            return reply

    def on_user_edit(self, delta: EditDelta) -> bool:
        """
        The writer changed the document.

        Closes a conversation when auto-close is on and the edit touches
        non-whitespace text. Returns True if the session was closed.
        """
        if (self.status == SessionStatus.CONVERSING and
                self.auto_close_on_writing and
                delta.is_substantive):
            self._end(SessionEndReason.USER_RESUMED_WRITING)
            return True
        return False

    def dismiss(self):
        if self.status == SessionStatus.IDLE:
            raise InvalidSessionState("No active session to dismiss")
        self._end(SessionEndReason.DISMISSED)

    def acknowledge(self):
        """Mark a single advisory as helpful."""
        if self.status != SessionStatus.PENDING:
            raise InvalidSessionState(f"Cannot acknowledge while {self.status.value}")
        self._end(SessionEndReason.RESOLVED)

    def reset(self):
        """Force back to IDLE, dropping any in-flight reply."""
        self._end(SessionEndReason.RESET)
        self.last_error = None
