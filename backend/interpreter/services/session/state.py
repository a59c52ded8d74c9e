"""
Session State

The data a live interpretation session owns, and the state machine that
governs it.

States:
    CONNECTING → NEGOTIATING → READY → LISTENING ⇄ PROCESSING → STOPPED
with RECONNECTING entered from any active state when the upstream
channel is lost, and left by renegotiating on the next inbound audio.
"""
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Set

from interpreter.models.conversation import SpeakerRole
from interpreter.schemas.websocket_events import LanguageConfig
from interpreter.services.exceptions import InvalidTransitionError
from interpreter.services.protocols import ClientChannel

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CONNECTING = "connecting"
    NEGOTIATING = "negotiating"
    READY = "ready"
    LISTENING = "listening"
    PROCESSING = "processing"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
    SessionState.CONNECTING: {SessionState.NEGOTIATING, SessionState.STOPPED},
    SessionState.NEGOTIATING: {SessionState.READY, SessionState.RECONNECTING, SessionState.STOPPED},
    SessionState.READY: {SessionState.LISTENING, SessionState.RECONNECTING, SessionState.STOPPED},
    SessionState.LISTENING: {SessionState.PROCESSING, SessionState.RECONNECTING, SessionState.STOPPED},
    SessionState.PROCESSING: {SessionState.LISTENING, SessionState.RECONNECTING, SessionState.STOPPED},
    SessionState.RECONNECTING: {SessionState.NEGOTIATING, SessionState.STOPPED},
    SessionState.STOPPED: set(),
}

# States in which client audio may be forwarded upstream
FORWARDING_STATES = frozenset({SessionState.LISTENING, SessionState.PROCESSING})


def can_transition(current: SessionState, target: SessionState) -> bool:
    return target == current or target in TRANSITIONS[current]


@dataclass
class PendingMessage:
    """A finalized transcript waiting for its translation."""
    original_text: str
    speaker: SpeakerRole
    item_id: Optional[str]
    captured_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Utterance:
    """One in-flight upstream utterance, keyed by its correlation id."""
    item_id: str
    speaker: Optional[SpeakerRole] = None
    original_text: str = ""
    target_language: Optional[str] = None
    response_id: Optional[str] = None
    translation_parts: List[str] = field(default_factory=list)
    relayed_chars: int = 0
    # text and audio are held back until the translation cannot be the invalid token
    released: bool = False
    audio_fragments: List[str] = field(default_factory=list)
    held_audio: List[str] = field(default_factory=list)
    translation_requested_at: Optional[float] = None
    translation_finished: bool = False
    audio_finished: bool = False
    suppressed: bool = False
    request_event_id: Optional[str] = None

    @property
    def translation_text(self) -> str:
        return "".join(self.translation_parts)


class CorrelationTable:
    """
    In-flight utterances keyed by the upstream-assigned item id.

    Translation responses carry their own response id. A response is bound
    to the utterance named in its `metadata.item_id`; when the provider
    omits it, to the oldest utterance whose translation was requested but
    not yet bound. Requests the provider rejects are dropped with
    `reject_request` so later responses are not bound one utterance behind.
    """

    def __init__(self):
        self._entries: Dict[str, Utterance] = {}
        self._awaiting_response: Deque[str] = deque()
        self._by_response: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._entries

    def open(self, item_id: str) -> Utterance:
        entry = self._entries.get(item_id)
        if entry is None:
            entry = Utterance(item_id=item_id)
            self._entries[item_id] = entry
        return entry

    def get(self, item_id: Optional[str]) -> Optional[Utterance]:
        if item_id is None:
            return None
        return self._entries.get(item_id)

    def queue_translation(self, item_id: str, request_event_id: Optional[str] = None):
        """Mark that a translation response was requested for `item_id`."""
        entry = self.open(item_id)
        entry.translation_requested_at = time.monotonic()
        entry.request_event_id = request_event_id
        self._awaiting_response.append(item_id)

    def _bind(self, item_id: str, response_id: str) -> Optional[Utterance]:
        entry = self._entries.get(item_id)
        if entry is not None:
            entry.response_id = response_id
            self._by_response[response_id] = item_id
        return entry

    def bind_response(self, response_id: Optional[str], item_id: Optional[str] = None) -> Optional[Utterance]:
        """Attach a freshly created upstream response to the utterance it answers."""
        if response_id is None:
            return None
        if item_id is not None and item_id in self._awaiting_response:
            self._awaiting_response.remove(item_id)
            return self._bind(item_id, response_id)
        while self._awaiting_response:
            entry = self._bind(self._awaiting_response.popleft(), response_id)
            if entry is not None:
                return entry
        return None

    def for_response(self, response_id: Optional[str]) -> Optional[Utterance]:
        """Find the utterance a translation/audio event belongs to."""
        if response_id is not None and response_id in self._by_response:
            return self._entries.get(self._by_response[response_id])
        if response_id is not None and self._awaiting_response:
            # response.created was not observed; bind lazily
            return self.bind_response(response_id)
        return None

    def awaiting_for_event(self, event_id: Optional[str]) -> Optional[str]:
        """Item id whose still-unanswered translation request was sent as `event_id`."""
        if event_id is None:
            return None
        for item_id in self._awaiting_response:
            entry = self._entries.get(item_id)
            if entry is not None and entry.request_event_id == event_id:
                return item_id
        return None

    def latest_awaiting(self) -> Optional[str]:
        return self._awaiting_response[-1] if self._awaiting_response else None

    def reject_request(self, item_id: str) -> Optional[Utterance]:
        """The provider refused to translate `item_id`: forget the utterance."""
        if item_id not in self._awaiting_response:
            return None
        return self.close(item_id)

    def close(self, item_id: Optional[str]) -> Optional[Utterance]:
        if item_id is None:
            return None
        entry = self._entries.pop(item_id, None)
        if entry is not None:
            if entry.response_id is not None:
                self._by_response.pop(entry.response_id, None)
            if item_id in self._awaiting_response:
                self._awaiting_response.remove(item_id)
        return entry

    def close_response(self, response_id: Optional[str]) -> Optional[Utterance]:
        if response_id is None or response_id not in self._by_response:
            return None
        return self.close(self._by_response[response_id])

    def has_inflight(self) -> bool:
        return any(
            entry.translation_requested_at is not None and not entry.translation_finished
            for entry in self._entries.values()
        )

    def clear(self):
        self._entries.clear()
        self._awaiting_response.clear()
        self._by_response.clear()


@dataclass
class Session:
    """
    One client connection and everything it owns.

    Owned by its SessionOrchestrator; only the registry holds another
    reference to it.
    """
    id: str
    client: ClientChannel
    state: SessionState = SessionState.CONNECTING
    upstream: Optional[Any] = None
    is_alive: bool = True
    audio_chunk_count: int = 0
    current_speaker: Optional[SpeakerRole] = None
    language_config: LanguageConfig = field(default_factory=LanguageConfig)
    pending_message: Optional[PendingMessage] = None
    conversation_id: Optional[str] = None
    last_activity: float = field(default_factory=time.monotonic)
    inactivity_timer: Optional[asyncio.TimerHandle] = None
    correlations: CorrelationTable = field(default_factory=CorrelationTable)
    last_audio_by_role: Dict[SpeakerRole, List[str]] = field(default_factory=dict)
    last_translated_role: Optional[SpeakerRole] = None
    tasks: Set[asyncio.Task] = field(default_factory=set)
    created_at: datetime = field(default_factory=datetime.utcnow)
    _released: bool = False

    @property
    def released(self) -> bool:
        return self._released

    def transition(self, target: SessionState):
        if not can_transition(self.state, target):
            raise InvalidTransitionError(self.state, target)
        if target != self.state:
            logger.debug(f"[Session] {self.id}: {self.state.value} -> {target.value}")
        self.state = target

    def touch(self):
        self.last_activity = time.monotonic()

    def spawn(self, coro) -> asyncio.Task:
        """Run `coro` as a task owned by this session."""
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    def cancel_inactivity_timer(self):
        if self.inactivity_timer is not None:
            self.inactivity_timer.cancel()
            self.inactivity_timer = None

    async def release(self):
        """
        Release timers, background tasks and both channels.

        Safe to call more than once; only the first call does anything.
        """
        if self._released:
            return
        self._released = True
        self.cancel_inactivity_timer()

        current = asyncio.current_task()
        for task in list(self.tasks):
            if task is not current and not task.done():
                task.cancel()

        if self.upstream is not None:
            await self.upstream.close()
            self.upstream = None
        await self.client.close()
        self.correlations.clear()
        logger.info(f"[Session] {self.id} released")
