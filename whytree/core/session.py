# whytree/core/session.py

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from whytree.core.errors import InsufficientDialogueError, InputValidationError, WhytreeError
from whytree.core.exchange import ChatReply
from whytree.core.models import ROLE_USER, Analysis, Message
from whytree.utils.logging import get_logger

logger = get_logger(__name__)

# A tree needs at least a problem and one answer to it
MIN_MESSAGES_FOR_TREE = 2

# The CLI only offers the tree once the dialogue has had a few turns
SUGGESTED_MESSAGES_FOR_TREE = 4

EMPTY_MESSAGE_ERROR = "Please enter a message."
INSUFFICIENT_DIALOGUE_ERROR = "Not enough dialogue yet. Talk with the counselor a little longer."
UNEXPECTED_ERROR = "An unexpected error occurred."


class ChatTransport(Protocol):
    def exchange(self, messages: Sequence[Message], wants_tree: bool) -> ChatReply:
        ...


class SessionPhase(str, Enum):
    """
    IDLE           : no analysis yet.
    ACTIVE         : dialogue in progress, no tree.
    PENDING        : a model call is outstanding.
    ARTIFACT_READY : the tree has been generated.
    """
    IDLE = "idle"
    ACTIVE = "active"
    PENDING = "pending"
    ARTIFACT_READY = "artifact_ready"


@dataclass
class SessionState:
    analysis: Optional[Analysis] = None
    phase: SessionPhase = SessionPhase.IDLE
    error: Optional[str] = None
    error_code: Optional[str] = None
    # token of the call whose result may still be applied
    pending_token: Optional[int] = None
    generation: int = 0
    transitions: List[str] = field(default_factory=list)


class AnalysisSession:
    """
    Owns the live Analysis and mediates every transition between
    IDLE, ACTIVE, PENDING and ARTIFACT_READY.

    Each model call carries a generation token. reset_session() and any newer
    call advance the generation, so a late result from an abandoned call is
    discarded instead of overwriting newer state.
    """

    def __init__(self, transport: ChatTransport) -> None:
        self.transport = transport
        self.state = SessionState()
        self._lock = threading.RLock()

    # ---------- read-only views ----------

    @property
    def phase(self) -> SessionPhase:
        return SessionPhase.PENDING if self.state.pending_token is not None else self.state.phase

    @property
    def analysis(self) -> Optional[Analysis]:
        return self.state.analysis

    @property
    def messages(self) -> List[Message]:
        return list(self.state.analysis.messages) if self.state.analysis else []

    @property
    def error(self) -> Optional[str]:
        return self.state.error

    @property
    def error_code(self) -> Optional[str]:
        return self.state.error_code

    @property
    def is_loading(self) -> bool:
        return self.state.pending_token is not None

    @property
    def can_request_tree(self) -> bool:
        analysis = self.state.analysis
        return (
            analysis is not None
            and not self.is_loading
            and analysis.tree_artifact is None
            and len(analysis.messages) >= SUGGESTED_MESSAGES_FOR_TREE
        )

    # ---------- internal helpers ----------

    def _set_phase(self, phase: SessionPhase) -> None:
        if phase != self.state.phase:
            self.state.transitions.append(f"{self.state.phase.value}->{phase.value}")
        self.state.phase = phase

    def _begin_call(self) -> int:
        self.state.generation += 1
        self.state.pending_token = self.state.generation
        self.state.error = None
        self.state.error_code = None
        return self.state.generation

    def _is_current(self, token: int) -> bool:
        return token == self.state.generation and self.state.analysis is not None

    def _fail(self, token: int, exc: Exception, action: str) -> None:
        with self._lock:
            if not self._is_current(token):
                logger.info("Discarding stale %s failure (token=%d, generation=%d): %s",
                            action, token, self.state.generation, exc)
                return
            self.state.pending_token = None
            self._set_error(exc)

    def _set_error(self, exc: Exception) -> None:
        if isinstance(exc, WhytreeError):
            self.state.error = str(exc)
            self.state.error_code = exc.code
        else:
            self.state.error = UNEXPECTED_ERROR
            self.state.error_code = None

    # ---------- operations ----------

    def send_message(self, text: str) -> Optional[Message]:
        """
        Append a user message, ask the model for the next question and
        append its reply.

        Returns the assistant message, or None if the input was rejected, the
        call failed (see `error`) or the result arrived after a reset.
        """
        cleaned = (text or "").strip()
        if not cleaned:
            with self._lock:
                self._set_error(InputValidationError(EMPTY_MESSAGE_ERROR))
            logger.info("Rejected empty message.")
            return None

        with self._lock:
            if self.state.analysis is None:
                self.state.analysis = Analysis.start(title=cleaned)
                self._set_phase(SessionPhase.ACTIVE)
                logger.info("Started analysis id=%s", self.state.analysis.id)

            self.state.analysis.append(Message.create(ROLE_USER, cleaned))
            history = list(self.state.analysis.messages)
            token = self._begin_call()

        try:
            reply = self.transport.exchange(history, wants_tree=False)
        except Exception as e:
            if isinstance(e, WhytreeError):
                logger.warning("send_message failed: [%s] %s", e.code, e)
            else:
                logger.exception("send_message failed unexpectedly")
            self._fail(token, e, "send_message")
            return None

        with self._lock:
            if not self._is_current(token):
                logger.info("Discarding stale reply (token=%d, generation=%d).",
                            token, self.state.generation)
                return None
            self.state.analysis.append(reply.message)
            self.state.pending_token = None
            return reply.message

    def request_tree(self) -> Optional[Analysis]:
        """
        Ask the model to turn the dialogue into a cause tree.

        On success the session moves to ARTIFACT_READY and a by-value copy of
        the finalized Analysis is returned so the caller can persist it.
        """
        with self._lock:
            analysis = self.state.analysis
            if analysis is None or len(analysis.messages) < MIN_MESSAGES_FOR_TREE:
                self._set_error(InsufficientDialogueError(INSUFFICIENT_DIALOGUE_ERROR))
                logger.info("Rejected tree request: %d message(s).",
                            len(analysis.messages) if analysis else 0)
                return None
            history = list(analysis.messages)
            token = self._begin_call()

        try:
            reply = self.transport.exchange(history, wants_tree=True)
        except Exception as e:
            if isinstance(e, WhytreeError):
                logger.warning("request_tree failed: [%s] %s", e.code, e)
            else:
                logger.exception("request_tree failed unexpectedly")
            self._fail(token, e, "request_tree")
            return None

        with self._lock:
            if not self._is_current(token):
                logger.info("Discarding stale tree (token=%d, generation=%d).",
                            token, self.state.generation)
                return None
            self.state.analysis.set_tree_artifact(reply.tree_artifact)
            self.state.pending_token = None
            self._set_phase(SessionPhase.ARTIFACT_READY)
            if reply.tree_artifact is None:
                logger.warning("Tree request for analysis id=%s produced no diagram.",
                               self.state.analysis.id)
            return self.state.analysis.copy()

    def clear_error(self) -> None:
        with self._lock:
            self.state.error = None
            self.state.error_code = None

    def reset_session(self) -> None:
        """Drop the in-memory analysis; saved copies are untouched."""
        with self._lock:
            dropped = self.state.analysis.id if self.state.analysis else None
            generation = self.state.generation + 1
            self.state = SessionState(generation=generation)
            logger.info("Session reset (dropped analysis id=%s).", dropped)

