"""
Protocol definitions for session collaborators.

This module defines interfaces (Python Protocols) that allow:
- Running the orchestrator over any transport (FastAPI WebSocket,
  websockets client, in-memory fakes)
- Testing without real API credentials or a database
- Clear contracts between the orchestrator and its collaborators

Usage:
    from interpreter.services.protocols import ClientChannel

    async def greet(channel: ClientChannel):
        await channel.send_json({"type": "event", "data": {"event": "session_ready"}})
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from interpreter.models.conversation import SpeakerRole
from interpreter.schemas.websocket_events import LanguageConfig


class ClientChannel(Protocol):
    """
    Duplex channel to the browser client.

    Binary frames carry aggregated PCM16 audio; text frames carry JSON.
    """

    async def send_json(self, message: Dict[str, Any]) -> bool:
        """
        Send a structured message.

        Returns:
            False if the client is gone, True otherwise
        """
        ...

    async def ping(self) -> bool:
        """Send a liveness ping. Answered by a client `pong`."""
        ...

    async def receive(self) -> Union[bytes, str]:
        """
        Wait for the next frame.

        Raises:
            ClientDisconnectedError: when the client closed the channel
        """
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...


class UpstreamChannel(Protocol):
    """
    Duplex channel to the realtime speech provider.

    Messages are JSON objects carrying a `type` field.
    """

    async def send(self, message: Dict[str, Any]) -> None:
        """
        Raises:
            UpstreamClosedError: when the channel is closed
        """
        ...

    async def receive(self) -> Dict[str, Any]:
        """
        Raises:
            UpstreamClosedError: when the channel is closed
        """
        ...

    async def close(self) -> None:
        ...


UpstreamConnector = Callable[[], Awaitable[UpstreamChannel]]


class LanguageDetector(Protocol):
    """
    Strategy that names the language of a transcript.

    Returns one of `candidates`, or None when the text is in neither.
    Raises CollaboratorError when the strategy itself cannot answer.
    """

    async def detect(self, text: str, candidates: tuple[str, str]) -> Optional[str]:
        ...


class ConversationStore(Protocol):
    """Persistence for conversations and their finalized messages."""

    async def create(self, session_id: str) -> str:
        ...

    async def resume(self, conversation_id: str, session_id: str) -> bool:
        ...

    async def add_message(
        self,
        conversation_id: str,
        speaker: str,
        original_text: str,
        translated_text: str,
        message_id: Optional[str] = None,
        intents: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        ...

    async def recent_messages(self, conversation_id: str, limit: int) -> List[Dict[str, Any]]:
        ...

    async def list_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        ...

    async def complete(self, conversation_id: str, summary: Optional[str]) -> Optional[Dict[str, Any]]:
        ...

    async def set_actions(self, conversation_id: str, actions: List[str]) -> None:
        ...

    async def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def list_recent(self, limit: int) -> List[Dict[str, Any]]:
        ...



class SpeakerClassifier(Protocol):
    """
    Names which role spoke a finished transcript.

    Raises UnsupportedLanguageError when the text is in neither configured language.
    """

    async def classify(self, text: str, config: LanguageConfig) -> SpeakerRole:
        ...


class IntentSource(Protocol):
    """Structured medical intents from one translated utterance."""

    async def extract(
        self,
        original_text: str,
        translated_text: str,
        speaker: SpeakerRole,
        context: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        ...


class Summarizer(Protocol):
    async def summarize(self, messages: List[Dict[str, Any]]) -> str:
        ...


class CompletionNotifier(Protocol):
    async def notify(self, conversation: Dict[str, Any]) -> Optional[List[str]]:
        """Returns action labels to store, or None."""
        ...


class PresenceTracker(Protocol):
    """Best-effort record of live sessions; failures are logged, never raised."""

    async def mark_active(self, session_id: str, conversation_id: Optional[str] = None) -> None:
        ...

    async def refresh(self, session_id: str) -> None:
        ...

    async def mark_inactive(self, session_id: str) -> None:
        ...

class UpstreamEventHandler(Protocol):
    """
    Receiver of demultiplexed upstream events.

    One coroutine per provider event family; the bridge calls them in
    arrival order and never concurrently for the same session.
    """

    async def on_item_created(self, item_id: Optional[str], role: Optional[str]) -> None: ...

    async def on_speech_started(self, item_id: Optional[str]) -> None: ...

    async def on_speech_stopped(self, item_id: Optional[str]) -> None: ...

    async def on_transcription_delta(self, item_id: Optional[str], delta: str) -> None: ...

    async def on_transcription_completed(self, item_id: Optional[str], transcript: str) -> None: ...

    async def on_transcription_failed(self, item_id: Optional[str], error: Dict[str, Any]) -> None: ...

    async def on_response_created(self, response_id: Optional[str], item_id: Optional[str] = None) -> None: ...

    async def on_translation_delta(self, response_id: Optional[str], item_id: Optional[str], delta: str) -> None: ...

    async def on_translation_done(self, response_id: Optional[str], item_id: Optional[str], transcript: str) -> None: ...

    async def on_audio_delta(self, response_id: Optional[str], item_id: Optional[str], audio_b64: str) -> None: ...

    async def on_audio_done(self, response_id: Optional[str], item_id: Optional[str]) -> None: ...

    async def on_response_done(self, response_id: Optional[str]) -> None: ...

    async def on_upstream_error(self, error: Dict[str, Any]) -> None: ...

    async def on_upstream_closed(self) -> None: ...
