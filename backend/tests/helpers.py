import asyncio
import json
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from interpreter.models.conversation import ConversationStatus
from interpreter.services.exceptions import (
    ClientDisconnectedError,
    UpstreamClosedError,
    UpstreamHandshakeError,
)
from interpreter.services.language import HeuristicLanguageDetector, SpeakerLanguageClassifier
from interpreter.services.session.dependencies import SessionDependencies


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0):
    """Poll `predicate` until it holds, yielding to the event loop in between."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


# =============================================================================
# Channels
# =============================================================================

class FakeClientChannel:
    """In-memory browser connection."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.pings = 0

    async def send_json(self, message: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        self.sent.append(message)
        return True

    async def ping(self) -> bool:
        self.pings += 1
        return await self.send_json({"type": "ping"})

    async def receive(self) -> Union[bytes, str]:
        frame = await self.incoming.get()
        if frame is None:
            raise ClientDisconnectedError("client closed")
        return frame

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.incoming.put_nowait(None)

    def feed(self, frame: Union[bytes, str]):
        self.incoming.put_nowait(frame)

    def feed_json(self, message: Dict[str, Any]):
        self.incoming.put_nowait(json.dumps(message))

    def disconnect(self):
        self.incoming.put_nowait(None)

    def messages(self, message_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return [m for m in self.sent if message_type is None or m["type"] == message_type]

    def data(self, message_type: str) -> List[Any]:
        return [m.get("data") for m in self.messages(message_type)]

    def events(self) -> List[str]:
        return [data["event"] for data in self.data("event")]


class FakeUpstreamChannel:
    """
    In-memory realtime provider.

    Answers the handshake on its own unless `auto_handshake` is False; tests
    push provider events with `push()` and read what was sent from `sent`.
    """

    def __init__(self, auto_handshake: bool = True):
        self.sent: List[Dict[str, Any]] = []
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.auto_handshake = auto_handshake
        if auto_handshake:
            self.push({"type": "session.created", "session": {"id": "sess_upstream"}})

    async def send(self, message: Dict[str, Any]) -> None:
        if self.closed:
            raise UpstreamClosedError("provider connection closed")
        self.sent.append(message)
        if message["type"] == "session.update" and self.auto_handshake:
            self.push({"type": "session.updated", "session": message["session"]})

    async def receive(self) -> Dict[str, Any]:
        event = await self.inbound.get()
        if event is None:
            raise UpstreamClosedError("provider connection closed")
        return event

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.inbound.put_nowait(None)

    def push(self, event: Dict[str, Any]):
        self.inbound.put_nowait(event)

    def drop(self):
        """Provider closes the connection unexpectedly."""
        self.closed = True
        self.inbound.put_nowait(None)

    def sent_types(self) -> List[str]:
        return [message["type"] for message in self.sent]

    def sent_of(self, message_type: str) -> List[Dict[str, Any]]:
        return [message for message in self.sent if message["type"] == message_type]

    # --- provider event shortcuts ---

    def utterance(self, item_id: str, transcript: str):
        self.push({"type": "input_audio_buffer.speech_started", "item_id": item_id})
        self.push({"type": "input_audio_buffer.speech_stopped", "item_id": item_id})
        self.push({"type": "conversation.item.created", "item": {"id": item_id, "role": "user"}})
        self.push({
            "type": "conversation.item.input_audio_transcription.completed",
            "item_id": item_id,
            "transcript": transcript,
        })

    def translation(
        self,
        response_id: str,
        deltas: List[str],
        final: Optional[str] = None,
        audio: Optional[List[str]] = None,
        item_id: Optional[str] = None,
    ):
        response: Dict[str, Any] = {"id": response_id}
        if item_id is not None:
            response["metadata"] = {"item_id": item_id}
        self.push({"type": "response.created", "response": response})
        for delta in deltas:
            self.push({
                "type": "response.audio_transcript.delta",
                "response_id": response_id,
                "item_id": f"out_{response_id}",
                "delta": delta,
            })
        for fragment in audio or []:
            self.push({
                "type": "response.audio.delta",
                "response_id": response_id,
                "item_id": f"out_{response_id}",
                "delta": fragment,
            })
        self.push({
            "type": "response.audio_transcript.done",
            "response_id": response_id,
            "item_id": f"out_{response_id}",
            "transcript": final if final is not None else "".join(deltas),
        })
        self.push({"type": "response.audio.done", "response_id": response_id, "item_id": f"out_{response_id}"})
        self.push({"type": "response.done", "response": {"id": response_id, "status": "completed"}})


class ScriptedConnector:
    """Hands out the given channels in order; an exception in the list is raised instead."""

    def __init__(self, *channels):
        self.channels = list(channels)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if not self.channels:
            raise UpstreamHandshakeError("no upstream available")
        channel = self.channels.pop(0)
        if isinstance(channel, Exception):
            raise channel
        return channel


# =============================================================================
# Collaborators
# =============================================================================

class InMemoryConversationStore:
    """ConversationStore backed by dicts, recording every completion."""

    def __init__(self):
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.complete_calls = 0

    async def create(self, session_id: str) -> str:
        conversation_id = str(uuid.uuid4())
        self.conversations[conversation_id] = {
            "id": conversation_id,
            "sessionId": session_id,
            "patientName": None,
            "doctorName": None,
            "status": ConversationStatus.ACTIVE.value,
            "summary": None,
            "actions": [],
            "startTime": datetime.utcnow().isoformat(),
            "endTime": None,
            "totalMessageCount": 0,
            "messages": [],
        }
        return conversation_id

    async def resume(self, conversation_id: str, session_id: str) -> bool:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return False
        conversation["sessionId"] = session_id
        conversation["status"] = ConversationStatus.ACTIVE.value
        conversation["endTime"] = None
        return True

    async def add_message(
        self,
        conversation_id: str,
        speaker: str,
        original_text: str,
        translated_text: str,
        message_id: Optional[str] = None,
        intents: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        conversation = self.conversations[conversation_id]
        message = {
            "id": str(uuid.uuid4()),
            "speaker": speaker,
            "originalText": original_text,
            "translatedText": translated_text,
            "messageId": message_id,
            "intents": list(intents or []),
            "timestamp": datetime.utcnow().isoformat(),
        }
        conversation["messages"].append(message)
        conversation["totalMessageCount"] = len(conversation["messages"])
        return message["id"]

    async def recent_messages(self, conversation_id: str, limit: int) -> List[Dict[str, Any]]:
        return list(self.conversations[conversation_id]["messages"][-limit:])

    async def list_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        return list(self.conversations[conversation_id]["messages"])

    async def complete(self, conversation_id: str, summary: Optional[str]) -> Optional[Dict[str, Any]]:
        self.complete_calls += 1
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return None
        conversation["status"] = ConversationStatus.COMPLETED.value
        conversation["endTime"] = datetime.utcnow().isoformat()
        if summary is not None:
            conversation["summary"] = summary
        return dict(conversation)

    async def set_actions(self, conversation_id: str, actions: List[str]) -> None:
        self.conversations[conversation_id]["actions"] = list(actions)

    async def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        return self.conversations.get(conversation_id)

    async def list_recent(self, limit: int) -> List[Dict[str, Any]]:
        ordered = sorted(self.conversations.values(), key=lambda c: c["startTime"], reverse=True)
        return ordered[:limit]

    def messages_of(self, conversation_id: str) -> List[Dict[str, Any]]:
        return self.conversations[conversation_id]["messages"]


class FakeIntentExtractor:
    def __init__(self, intents: Optional[List[Dict[str, Any]]] = None):
        self.intents = intents or []
        self.calls: List[tuple] = []

    async def extract(self, original_text, translated_text, speaker, context=None):
        self.calls.append((original_text, translated_text, speaker, list(context or [])))
        return list(self.intents)


class FakeSummarizer:
    def __init__(self, summary: str = "Patient reported a sore throat."):
        self.summary = summary
        self.calls = 0

    async def summarize(self, messages):
        self.calls += 1
        return self.summary


class FakeNotifier:
    def __init__(self, labels: Optional[List[str]] = None):
        self.labels = labels
        self.notified: List[Dict[str, Any]] = []

    async def notify(self, conversation):
        self.notified.append(conversation)
        return self.labels


class FakePresence:
    def __init__(self):
        self.active: Dict[str, Optional[str]] = {}
        self.refreshed = 0

    async def mark_active(self, session_id, conversation_id=None):
        self.active[session_id] = conversation_id

    async def refresh(self, session_id):
        self.refreshed += 1

    async def mark_inactive(self, session_id):
        self.active.pop(session_id, None)


def make_dependencies(**overrides) -> SessionDependencies:
    """SessionDependencies wired to fakes; the classifier is the heuristic strategy."""
    values = {
        "connector": ScriptedConnector(FakeUpstreamChannel()),
        "classifier": SpeakerLanguageClassifier(HeuristicLanguageDetector()),
        "store": InMemoryConversationStore(),
        "intents": FakeIntentExtractor(),
        "summarizer": FakeSummarizer(),
        "notifier": FakeNotifier(),
        "presence": FakePresence(),
        "inactivity_timeout": 60.0,
    }
    values.update(overrides)
    return SessionDependencies(**values)
