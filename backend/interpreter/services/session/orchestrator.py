"""
Session Orchestrator - the state machine of one interpretation session

Mediates between the client channel and the upstream channel:
- Negotiates the upstream session and announces `session_ready`
- Forwards client audio upstream while Listening/Processing
- Classifies each finalized transcript by language and requests its
  translation into the other role's language
- Relays transcript/translation/audio fragments keyed by correlation id
- Pairs each translation with its PendingMessage and hands it to
  persistence and intent extraction
- Handles repeat commands, unsupported languages, upstream loss,
  inactivity and explicit stop

Usage:
    orchestrator = registry.create(WebSocketClientChannel(websocket))
    await orchestrator.run()
"""
import asyncio
import json
import logging
import time
import uuid
from typing import Any, Dict, Optional, Set, Union

from pydantic import ValidationError

from interpreter.config.constants import DETECTING_ROLE, INTENT_CONTEXT_MESSAGES
from interpreter.models.conversation import SpeakerRole
from interpreter.schemas.websocket_events import (
    CLIENT_EVENT_TYPES,
    ConversationResumedData,
    ConversationStoppedData,
    ConversationTimeoutData,
    ErrorData,
    EventData,
    IntentsExtractedData,
    HeartbeatEvent,
    LanguageConfig,
    LanguageConfigEvent,
    PingEvent,
    PongEvent,
    SessionReadyData,
    StopEvent,
    TranscriptData,
    parse_client_event,
    server_message,
)
from interpreter.services import metrics
from interpreter.services.exceptions import (
    ClientDisconnectedError,
    CollaboratorError,
    UnsupportedLanguageError,
    UpstreamClosedError,
    UpstreamHandshakeError,
)
from interpreter.services.language.repeat import is_repeat_command
from interpreter.services.session.dependencies import SessionDependencies
from interpreter.services.session.state import (
    FORWARDING_STATES,
    PendingMessage,
    Session,
    SessionState,
    Utterance,
)
from interpreter.services.translation.relay import TranslationRelay, is_invalid_marker
from interpreter.services.upstream.bridge import UpstreamBridge
from interpreter.services.upstream.messages import build_session_config

logger = logging.getLogger(__name__)

START_FAILED_MESSAGE = "Failed to start session"
UPSTREAM_ERROR_MESSAGE = "Translation service error"

# Provider errors that mean the latest `response.create` was refused
RESPONSE_REJECTED_CODES = frozenset({"conversation_already_has_active_response"})


def _parse_control(data: Union[bytes, str]) -> Optional[Dict[str, Any]]:
    try:
        message = json.loads(data)
    except (ValueError, UnicodeDecodeError):
        return None
    return message if isinstance(message, dict) else None


class SessionOrchestrator:
    """
    Owns one Session and drives it through its states.

    Client frames are handled by the `run()` loop; upstream events arrive
    one at a time from the UpstreamBridge reader through the `on_*`
    handlers below.
    """

    def __init__(self, session: Session, deps: SessionDependencies, registry=None):
        self.session = session
        self.deps = deps
        self.registry = registry
        self.relay = TranslationRelay(session)
        self.dropped_audio_chunks = 0
        self._persist_lock = asyncio.Lock()
        self._persist_tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def bridge(self) -> Optional[UpstreamBridge]:
        return self.session.upstream

    async def send(self, message_type: str, data: Any = None) -> bool:
        return await self.session.client.send_json(server_message(message_type, data))

    # === Lifecycle ===

    async def run(self):
        """
        Main entry point: negotiate upstream, then process client frames
        until the client leaves or the session stops.
        """
        session = self.session
        session.transition(SessionState.NEGOTIATING)
        session.spawn(self._negotiate(initial=True))

        try:
            while session.state is not SessionState.STOPPED:
                frame = await session.client.receive()
                await self.handle_client_frame(frame)
        except ClientDisconnectedError:
            logger.info(f"[Orchestrator] Client disconnected from session {session.id}")
        except Exception as e:
            logger.error(f"[Orchestrator] Error during message loop of {session.id}: {e}", exc_info=True)
        finally:
            await self.stop("client_disconnect")

    async def _negotiate(self, initial: bool):
        session = self.session
        bridge = UpstreamBridge(self.deps.connector, handler=self, label=session.id)
        session.upstream = bridge

        negotiated_config = session.language_config
        try:
            await bridge.connect(build_session_config(negotiated_config))
        except UpstreamHandshakeError as e:
            if session.upstream is bridge:
                session.upstream = None
            if session.state is SessionState.STOPPED:
                return
            if initial:
                logger.error(f"[Orchestrator] Session {session.id} failed to start: {e}")
                await self.send("error", ErrorData(message=START_FAILED_MESSAGE))
                await self.stop("upstream_unavailable")
            else:
                logger.warning(f"[Orchestrator] Renegotiation failed for {session.id}: {e}")
                session.transition(SessionState.RECONNECTING)
                await self.send("event", EventData(event="reconnecting"))
            return

        if session.state is not SessionState.NEGOTIATING or session.upstream is not bridge:
            await bridge.close()
            return

        if session.language_config != negotiated_config:
            # configuration changed while the handshake was in flight
            try:
                await bridge.update_session(build_session_config(session.language_config))
            except UpstreamClosedError:
                await self._handle_upstream_lost()
                return

        if session.conversation_id is None:
            try:
                session.conversation_id = await self.deps.store.create(session.id)
            except CollaboratorError as e:
                logger.error(f"[Orchestrator] Could not create conversation for {session.id}: {e}")

        session.transition(SessionState.READY)
        await self.send(
            "session_ready",
            SessionReadyData(session_id=session.id, conversation_id=session.conversation_id),
        )
        if self.deps.presence is not None:
            await self.deps.presence.mark_active(session.id, session.conversation_id)
        self._arm_inactivity_timer()
        logger.info(f"[Orchestrator] Session {session.id} ready (conversation {session.conversation_id})")

    async def stop(self, reason: str = "client_stop") -> bool:
        """
        Stop the conversation and tear the session down.

        Returns:
            False if the session was already stopped
        """
        session = self.session
        if session.state is SessionState.STOPPED:
            return False
        session.transition(SessionState.STOPPED)
        logger.info(f"[Orchestrator] Stopping session {session.id} ({reason})")

        session.cancel_inactivity_timer()
        bridge, session.upstream = session.upstream, None
        if bridge is not None:
            await bridge.stop()

        if self._persist_tasks:
            await asyncio.gather(*list(self._persist_tasks), return_exceptions=True)

        conversation_id = session.conversation_id
        summary: Optional[str] = None
        record: Optional[Dict[str, Any]] = None
        if conversation_id is not None:
            try:
                messages = await self.deps.store.list_messages(conversation_id)
            except CollaboratorError as e:
                logger.error(f"[Orchestrator] Could not load messages of {conversation_id}: {e}")
                messages = []
            if messages:
                summary = await self.deps.summarizer.summarize(messages)
            try:
                record = await self.deps.store.complete(conversation_id, summary)
            except CollaboratorError as e:
                logger.error(f"[Orchestrator] Could not complete conversation {conversation_id}: {e}")

        await self.send(
            "conversation_stopped",
            ConversationStoppedData(conversation_id=conversation_id, summary=summary),
        )

        if record is not None and self.deps.notifier is not None:
            labels = await self.deps.notifier.notify(record)
            if labels:
                try:
                    await self.deps.store.set_actions(conversation_id, labels)
                except CollaboratorError as e:
                    logger.error(f"[Orchestrator] Could not store actions of {conversation_id}: {e}")

        if self.deps.presence is not None:
            await self.deps.presence.mark_inactive(session.id)

        if self.registry is not None:
            await self.registry.remove(session.id)
        else:
            await session.release()
        return True

    async def resume(self, conversation_id: Optional[str]) -> str:
        """
        Reattach this session to a prior conversation, or start a new one
        when `conversation_id` is unknown.
        """
        session = self.session
        resumed = False
        if conversation_id:
            try:
                resumed = await self.deps.store.resume(conversation_id, session.id)
            except CollaboratorError as e:
                logger.error(f"[Orchestrator] Could not resume {conversation_id}: {e}")
        if not resumed:
            logger.info(f"[Orchestrator] Conversation {conversation_id} not found, creating a new one")
            conversation_id = await self.deps.store.create(session.id)

        session.conversation_id = conversation_id
        await self.send("conversation_resumed", ConversationResumedData(conversation_id=conversation_id))
        return conversation_id

    # === Inactivity ===

    def _arm_inactivity_timer(self):
        session = self.session
        session.cancel_inactivity_timer()
        if session.state is SessionState.STOPPED:
            return
        loop = asyncio.get_running_loop()
        session.inactivity_timer = loop.call_later(self.deps.inactivity_timeout, self._on_inactivity_timer)

    def _on_inactivity_timer(self):
        self.session.inactivity_timer = None
        self.session.spawn(self._handle_inactivity())

    async def _handle_inactivity(self):
        if self.session.state is SessionState.STOPPED:
            return
        idle = time.monotonic() - self.session.last_activity
        logger.info(f"[Orchestrator] Session {self.session.id} idle for {idle:.0f}s, timing out")
        minutes = self.deps.inactivity_timeout / 60
        await self.send(
            "conversation_timeout",
            ConversationTimeoutData(message=f"Conversation ended due to {minutes:g} minutes of inactivity"),
        )
        await self.stop("inactivity_timeout")

    def _record_activity(self):
        self.session.is_alive = True
        self.session.touch()
        if self.session.inactivity_timer is not None:
            self._arm_inactivity_timer()

    # === Client → server ===

    async def handle_client_frame(self, frame: Union[bytes, str]):
        if isinstance(frame, str):
            message = _parse_control(frame)
            if message is None:
                await self.handle_audio(frame.encode("utf-8"))
            else:
                await self.handle_control(message)
            return

        if frame[:1] == b"{":
            message = _parse_control(frame)
            if message is not None:
                await self.handle_control(message)
                return
        await self.handle_audio(frame)

    async def handle_control(self, message: Dict[str, Any]):
        session = self.session
        msg_type = message.get("type")
        if not isinstance(msg_type, str) or msg_type not in CLIENT_EVENT_TYPES:
            logger.warning(f"[Orchestrator] Unknown message type: {msg_type}")
            return
        try:
            event = parse_client_event(message)
        except ValidationError as e:
            logger.warning(f"[Orchestrator] Ignoring invalid {msg_type} on {session.id}: {e.errors()}")
            return

        if isinstance(event, LanguageConfigEvent):
            await self.apply_language_config(event.data)

        elif isinstance(event, HeartbeatEvent):
            self._record_activity()
            if self.deps.presence is not None:
                await self.deps.presence.refresh(session.id)
            await self.send("heartbeat_ack")

        elif isinstance(event, PongEvent):
            session.is_alive = True
            if self.deps.presence is not None:
                await self.deps.presence.refresh(session.id)

        elif isinstance(event, PingEvent):
            session.is_alive = True
            await self.send("pong")

        elif isinstance(event, StopEvent):
            await self.stop("client_stop")

    async def apply_language_config(self, config: LanguageConfig):
        session = self.session
        session.language_config = config
        logger.info(
            f"[Orchestrator] Session {session.id} languages: "
            f"doctor={config.doctor_language} patient={config.patient_language}"
        )
        bridge = self.bridge
        if bridge is not None and bridge.is_open:
            try:
                await bridge.update_session(build_session_config(config))
            except UpstreamClosedError:
                await self._handle_upstream_lost()

    async def handle_audio(self, chunk: bytes):
        if not chunk:
            return
        session = self.session
        session.audio_chunk_count += 1
        self._record_activity()

        if session.state is SessionState.RECONNECTING:
            logger.info(f"[Orchestrator] Audio on reconnecting session {session.id}, renegotiating")
            session.transition(SessionState.NEGOTIATING)
            session.spawn(self._negotiate(initial=False))
            self.dropped_audio_chunks += 1
            return

        if session.state is SessionState.READY:
            session.transition(SessionState.LISTENING)

        bridge = self.bridge
        if session.state not in FORWARDING_STATES or bridge is None or not bridge.is_open:
            self.dropped_audio_chunks += 1
            logger.debug(f"[Orchestrator] Dropping audio chunk on {session.id} in state {session.state.value}")
            return

        try:
            await bridge.append_audio(chunk)
        except UpstreamClosedError:
            await self._handle_upstream_lost()

    # === Upstream → server ===

    async def on_item_created(self, item_id: Optional[str], role: Optional[str]):
        if item_id and role in (None, "user"):
            self.session.correlations.open(item_id)

    async def on_speech_started(self, item_id: Optional[str]):
        if item_id:
            self.session.correlations.open(item_id)
        await self.send("event", EventData(event="speech_started"))

    async def on_speech_stopped(self, item_id: Optional[str]):
        session = self.session
        if session.state is SessionState.LISTENING:
            session.transition(SessionState.PROCESSING)
        bridge = self.bridge
        if bridge is not None and bridge.is_open:
            try:
                await bridge.commit()
            except UpstreamClosedError:
                await self._handle_upstream_lost()
                return
        await self.send("event", EventData(event="speech_stopped"))

    async def on_transcription_delta(self, item_id: Optional[str], delta: str):
        if not delta:
            return
        await self.send(
            "transcript",
            TranscriptData(id=item_id, text=delta, finished=False, role=DETECTING_ROLE),
        )

    async def on_transcription_failed(self, item_id: Optional[str], error: Dict[str, Any]):
        logger.warning(f"[Orchestrator] Transcription failed for {item_id}: {error.get('message')}")
        self.session.correlations.close(item_id)
        metrics.utterances_total.labels(outcome="failed").inc()
        self._settle()

    async def on_transcription_completed(self, item_id: Optional[str], transcript: str):
        session = self.session
        item_id = item_id or f"local-{uuid.uuid4().hex[:12]}"
        text = transcript.strip()

        if not text:
            session.correlations.close(item_id)
            self._settle()
            return

        if is_invalid_marker(text):
            await self._reject_unsupported(item_id, text)
            return

        if is_repeat_command(text):
            logger.info(f"[Orchestrator] Repeat command on {session.id}: {text!r}")
            session.correlations.close(item_id)
            await self._replay_last_turn()
            self._settle()
            return

        try:
            role = await self.deps.classifier.classify(text, session.language_config)
        except UnsupportedLanguageError:
            await self._reject_unsupported(item_id, text)
            return
        if session.state is SessionState.STOPPED:
            return

        session.current_speaker = role
        entry = session.correlations.open(item_id)
        entry.speaker = role
        entry.original_text = text

        if session.pending_message is not None:
            logger.warning(
                f"[Orchestrator] Pending message {session.pending_message.item_id} on {session.id} "
                f"overwritten by {item_id} before its translation finalized"
            )
        session.pending_message = PendingMessage(original_text=text, speaker=role, item_id=item_id)

        await self.send(
            "transcript",
            TranscriptData(id=item_id, text=text, finished=True, role=role.value),
        )

        if session.state is SessionState.LISTENING:
            session.transition(SessionState.PROCESSING)

        bridge = self.bridge
        if bridge is None or not bridge.is_open:
            logger.warning(f"[Orchestrator] No upstream to translate {item_id} on {session.id}")
            return
        try:
            await self.relay.request(entry)
        except UpstreamClosedError:
            await self._handle_upstream_lost()

    async def on_response_created(self, response_id: Optional[str], item_id: Optional[str] = None):
        entry = self.session.correlations.bind_response(response_id, item_id)
        if entry is None:
            logger.debug(f"[Orchestrator] Response {response_id} has no waiting utterance")

    async def on_translation_delta(self, response_id: Optional[str], item_id: Optional[str], delta: str):
        entry = self.session.correlations.for_response(response_id)
        if entry is None:
            logger.debug(f"[Orchestrator] Uncorrelated translation delta for response {response_id}")
            return
        await self.relay.delta(entry, delta)

    async def on_translation_done(self, response_id: Optional[str], item_id: Optional[str], transcript: str):
        session = self.session
        entry = session.correlations.for_response(response_id)
        if entry is None:
            logger.debug(f"[Orchestrator] Uncorrelated translation for response {response_id}")
            return
        if entry.translation_finished:
            return

        text = (transcript or entry.translation_text).strip()

        if is_invalid_marker(text):
            await self.relay.retract(entry)
            await self._reject_unsupported(entry.item_id, entry.original_text, close=False)
            return

        if is_repeat_command(text):
            logger.info(f"[Orchestrator] Repeat command detected in translation on {session.id}")
            await self.relay.retract(entry)
            self._discard_pending(entry.item_id)
            await self._replay_last_turn()
            self._settle()
            return

        await self.relay.finish(entry, text)
        metrics.utterances_total.labels(outcome="translated").inc()
        if entry.translation_requested_at is not None:
            metrics.translation_latency.labels(target_language=entry.target_language or "unknown").observe(
                time.monotonic() - entry.translation_requested_at
            )

        pending = session.pending_message
        if pending is not None and pending.item_id == entry.item_id:
            session.pending_message = None
            self._spawn_persist(pending, text)
        else:
            logger.warning(
                f"[Orchestrator] Translation for {entry.item_id} on {session.id} relayed but not persisted: "
                "its pending message was overwritten"
            )

        self.relay.maybe_remember(entry)
        self._settle()

    async def on_audio_delta(self, response_id: Optional[str], item_id: Optional[str], audio_b64: str):
        entry = self.session.correlations.for_response(response_id)
        await self.relay.audio(entry, audio_b64)

    async def on_audio_done(self, response_id: Optional[str], item_id: Optional[str]):
        entry = self.session.correlations.for_response(response_id)
        if entry is None:
            return
        entry.audio_finished = True
        self.relay.maybe_remember(entry)

    async def on_response_done(self, response_id: Optional[str]):
        entry = self.session.correlations.close_response(response_id)
        if entry is not None and not entry.translation_finished:
            logger.warning(f"[Orchestrator] Response {response_id} ended without a final translation")
            await self.relay.retract(entry)
            self._discard_pending(entry.item_id)
        self._settle()

    async def on_upstream_error(self, error: Dict[str, Any]):
        logger.error(
            f"[Orchestrator] Upstream error on {self.session.id}: "
            f"{error.get('type')} {error.get('code')} {error.get('message')}"
        )
        correlations = self.session.correlations
        rejected = correlations.awaiting_for_event(error.get("event_id"))
        if rejected is None and error.get("code") in RESPONSE_REJECTED_CODES:
            rejected = correlations.latest_awaiting()
        if rejected is not None:
            await self._drop_rejected_request(rejected)
        await self.send("error", ErrorData(message=UPSTREAM_ERROR_MESSAGE))

    async def on_upstream_closed(self):
        await self._handle_upstream_lost()

    # === Helpers ===

    async def _handle_upstream_lost(self):
        session = self.session
        if session.state in (SessionState.STOPPED, SessionState.RECONNECTING):
            return
        bridge, session.upstream = session.upstream, None
        if bridge is not None:
            await bridge.close()

        if session.pending_message is not None:
            logger.warning(
                f"[Orchestrator] Pending message {session.pending_message.item_id} on {session.id} "
                "dropped with the upstream connection"
            )
            session.pending_message = None
        session.correlations.clear()

        session.transition(SessionState.RECONNECTING)
        metrics.upstream_disconnects_total.inc()
        logger.warning(f"[Orchestrator] Upstream lost for {session.id}, waiting for activity to reconnect")
        await self.send("event", EventData(event="reconnecting"))

    def unsupported_message(self) -> str:
        first, second = (language.capitalize() for language in self.session.language_config.languages)
        return f"Only {first} and {second} are supported"

    async def _reject_unsupported(self, item_id: str, text: str, close: bool = True):
        logger.warning(f"[Orchestrator] Unsupported language on {self.session.id}, discarding {item_id}: {text!r}")
        metrics.utterances_total.labels(outcome="unsupported").inc()
        if close:
            self.session.correlations.close(item_id)
        self._discard_pending(item_id)
        await self.send("error", ErrorData(message=self.unsupported_message()))
        self._settle()

    async def _drop_rejected_request(self, item_id: str):
        logger.warning(f"[Orchestrator] Translation request for {item_id} on {self.session.id} was rejected")
        entry = self.session.correlations.reject_request(item_id)
        if entry is not None:
            await self.relay.retract(entry)
        self._discard_pending(item_id)
        metrics.utterances_total.labels(outcome="failed").inc()
        self._settle()

    def _discard_pending(self, item_id: Optional[str]):
        pending = self.session.pending_message
        if pending is not None and pending.item_id == item_id:
            self.session.pending_message = None

    async def _replay_last_turn(self):
        """
        Replay the most recent translated turn to the role that listened to it.
        """
        metrics.utterances_total.labels(outcome="repeat").inc()
        speaker: Optional[SpeakerRole] = self.session.last_translated_role
        if speaker is None:
            logger.info(f"[Orchestrator] Nothing to repeat yet on {self.session.id}")
            return
        await self.relay.replay(speaker.counterpart)

    def _settle(self):
        session = self.session
        if (
            session.state is SessionState.PROCESSING
            and session.pending_message is None
            and not session.correlations.has_inflight()
        ):
            session.transition(SessionState.LISTENING)

    def _spawn_persist(self, pending: PendingMessage, translated_text: str):
        task = self.session.spawn(self._persist_pair(pending, translated_text))
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)

    async def _persist_pair(self, pending: PendingMessage, translated_text: str):
        async with self._persist_lock:
            conversation_id = self.session.conversation_id
            if conversation_id is None:
                logger.warning(f"[Orchestrator] No conversation on {self.session.id}, message not saved")
                return

            try:
                previous = await self.deps.store.recent_messages(conversation_id, INTENT_CONTEXT_MESSAGES)
            except CollaboratorError as e:
                logger.warning(f"[Orchestrator] Could not load context for intents: {e}")
                previous = []
            context = [f"{message['speaker']}: {message['originalText']}" for message in previous]
            context.append(f"{pending.speaker.value}: {pending.original_text}")

            intents = await self.deps.intents.extract(
                pending.original_text, translated_text, pending.speaker, context
            )

            try:
                await self.deps.store.add_message(
                    conversation_id,
                    pending.speaker.value,
                    pending.original_text,
                    translated_text,
                    message_id=pending.item_id,
                    intents=intents,
                )
            except CollaboratorError as e:
                logger.error(f"[Orchestrator] Could not save message {pending.item_id}: {e}")
                return
            logger.info(f"[Orchestrator] Saved {pending.speaker.value} message {pending.item_id}")

            if intents:
                await self.send(
                    "intents_extracted",
                    IntentsExtractedData(message_id=pending.item_id, intents=intents),
                )
