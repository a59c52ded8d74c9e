import asyncio

import pytest

from interpreter.services.session.registry import SessionRegistry
from interpreter.services.session.state import SessionState
from tests.helpers import (
    FakeClientChannel,
    FakeIntentExtractor,
    FakeNotifier,
    FakeUpstreamChannel,
    InMemoryConversationStore,
    ScriptedConnector,
    make_dependencies,
    wait_until,
)

AUDIO = b"\x01\x00" * 160


async def start_session(deps, client=None):
    client = client or FakeClientChannel()
    registry = SessionRegistry(lambda: deps)
    orchestrator = registry.create(client, session_id="sess-1")
    task = asyncio.create_task(orchestrator.run())
    await wait_until(lambda: orchestrator.state is SessionState.READY)
    return client, orchestrator, registry, task


async def doctor_turn(client, upstream, orchestrator, store, item_id="item_1", response_id="resp_1"):
    """English question from the doctor, translated to Spanish with two audio fragments."""
    client.feed(AUDIO)
    await wait_until(lambda: upstream.sent_of("input_audio_buffer.append"))
    requests = len(upstream.sent_of("response.create"))
    upstream.utterance(item_id, "Hello, how are you?")
    await wait_until(lambda: len(upstream.sent_of("response.create")) == requests + 1)
    upstream.translation(response_id, ["Hola, ", "¿cómo está?"], audio=["QUFB", "QkJC"])
    conversation_id = orchestrator.session.conversation_id
    await wait_until(lambda: any(m["messageId"] == item_id for m in store.messages_of(conversation_id)))


@pytest.mark.asyncio
async def test_session_ready_after_handshake(deps, upstream, store):
    client, orchestrator, registry, task = await start_session(deps)

    assert upstream.sent_types()[0] == "session.update"
    ready = client.data("session_ready")
    assert ready == [{"sessionId": "sess-1", "conversationId": orchestrator.session.conversation_id}]
    assert orchestrator.session.conversation_id in store.conversations
    assert deps.presence.active == {"sess-1": orchestrator.session.conversation_id}

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_english_utterance_translated_to_spanish(deps, upstream, store):
    client, orchestrator, registry, task = await start_session(deps)

    await doctor_turn(client, upstream, orchestrator, store)

    finals = [t for t in client.data("transcript") if t["finished"]]
    assert finals == [{
        "id": "item_1",
        "text": "Hello, how are you?",
        "is_user": True,
        "finished": True,
        "role": "doctor",
    }]

    instructions = upstream.sent_of("response.create")[0]["response"]["instructions"]
    assert "TRANSLATE THIS ENGLISH TEXT TO SPANISH" in instructions
    assert "Do NOT answer questions" in instructions

    translations = client.data("translation")
    assert translations == [
        {"id": "item_1", "text": "Hola, ", "finished": False},
        {"id": "item_1", "text": "¿cómo está?", "finished": False},
        {"id": "item_1", "text": "Hola, ¿cómo está?", "finished": True},
    ]
    assert client.data("audio") == ["QUFB", "QkJC"]

    [message] = store.messages_of(orchestrator.session.conversation_id)
    assert message["speaker"] == "doctor"
    assert message["originalText"] == "Hello, how are you?"
    assert message["translatedText"] == "Hola, ¿cómo está?"
    await wait_until(lambda: orchestrator.state is SessionState.LISTENING)
    assert orchestrator.session.pending_message is None

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_spanish_utterance_resolves_patient_role(deps, upstream, store):
    client, orchestrator, registry, task = await start_session(deps)
    client.feed(AUDIO)
    upstream.utterance("item_es", "¿Dónde le duele? Me duele la cabeza")
    await wait_until(lambda: upstream.sent_of("response.create"))

    final = [t for t in client.data("transcript") if t["finished"]][0]
    assert final["role"] == "patient"
    instructions = upstream.sent_of("response.create")[0]["response"]["instructions"]
    assert "TRANSLATE THIS SPANISH TEXT TO ENGLISH" in instructions

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_unsupported_language_reports_error_and_is_not_persisted(deps, upstream, store):
    client, orchestrator, registry, task = await start_session(deps)
    client.feed(AUDIO)

    upstream.utterance("item_jp", "これは日本語です")
    await wait_until(lambda: client.messages("error"))

    assert client.data("error") == [{"message": "Only English and Spanish are supported"}]
    assert not upstream.sent_of("response.create")
    assert not [t for t in client.data("transcript") if t["finished"]]
    assert orchestrator.session.pending_message is None
    assert store.messages_of(orchestrator.session.conversation_id) == []

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_invalid_token_in_transcription_is_rejected(deps, upstream):
    client, orchestrator, registry, task = await start_session(deps)
    client.feed(AUDIO)

    upstream.utterance("item_x", "INVALID_LANGUAGE")
    await wait_until(lambda: client.messages("error"))
    assert not upstream.sent_of("response.create")

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_invalid_token_in_translation_is_never_relayed(deps, upstream, store):
    client, orchestrator, registry, task = await start_session(deps)
    client.feed(AUDIO)
    upstream.utterance("item_1", "Hello, how are you?")
    await wait_until(lambda: upstream.sent_of("response.create"))

    upstream.translation("resp_1", ["INV", "ALID_LANGUAGE"], audio=["QUFB"])
    await wait_until(lambda: client.messages("error"))
    await wait_until(lambda: orchestrator.state is SessionState.LISTENING)

    assert client.messages("translation") == []
    assert client.messages("audio") == []
    assert orchestrator.session.pending_message is None
    assert store.messages_of(orchestrator.session.conversation_id) == []

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_repeat_command_replays_other_role_audio(deps, upstream, store):
    client, orchestrator, registry, task = await start_session(deps)
    await doctor_turn(client, upstream, orchestrator, store)
    await wait_until(lambda: orchestrator.session.last_translated_role is not None)

    upstream.utterance("item_2", "Repite eso, por favor")
    await wait_until(lambda: len(client.messages("audio")) == 4)

    assert client.data("audio")[2:] == ["QUFB", "QkJC"]
    # no new translation entry
    assert len(upstream.sent_of("response.create")) == 1
    assert [t["id"] for t in client.data("transcript") if t["finished"]] == ["item_1"]
    assert len(store.messages_of(orchestrator.session.conversation_id)) == 1

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_repeat_before_any_translation_sends_nothing(deps, upstream):
    client, orchestrator, registry, task = await start_session(deps)
    client.feed(AUDIO)

    upstream.utterance("item_1", "Say that again")
    await wait_until(lambda: "speech_stopped" in client.events())
    await asyncio.sleep(0.05)

    assert client.messages("audio") == []
    assert not upstream.sent_of("response.create")

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_latest_pending_message_wins(deps, upstream, store):
    client, orchestrator, registry, task = await start_session(deps)
    client.feed(AUDIO)

    upstream.utterance("item_a", "Hello, how are you?")
    upstream.utterance("item_b", "Thank you, see you next week")
    await wait_until(lambda: len(upstream.sent_of("response.create")) == 2)
    assert orchestrator.session.pending_message.item_id == "item_b"

    upstream.translation("resp_a", ["Hola, ¿cómo está?"])
    upstream.translation("resp_b", ["Gracias, hasta la próxima semana"])
    conversation_id = orchestrator.session.conversation_id
    await wait_until(lambda: len(store.messages_of(conversation_id)) == 1)
    await wait_until(lambda: orchestrator.state is SessionState.LISTENING)

    finals = [t for t in client.data("translation") if t["finished"]]
    assert [t["id"] for t in finals] == ["item_a", "item_b"]
    [message] = store.messages_of(conversation_id)
    assert message["messageId"] == "item_b"
    assert message["translatedText"] == "Gracias, hasta la próxima semana"

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_rejected_translation_request_does_not_shift_later_translations(deps, upstream, store):
    client, orchestrator, registry, task = await start_session(deps)
    client.feed(AUDIO)
    await wait_until(lambda: orchestrator.state is SessionState.LISTENING)

    upstream.utterance("item_a", "Hello, how are you?")
    upstream.utterance("item_b", "Thank you, see you next week")
    await wait_until(lambda: len(upstream.sent_of("response.create")) == 2)
    upstream.push({"type": "error", "error": {
        "type": "invalid_request_error",
        "code": "conversation_already_has_active_response",
        "message": "Conversation already has an active response",
    }})
    upstream.translation("resp_a", ["Hola, ¿cómo está?"])
    await wait_until(lambda: orchestrator.state is SessionState.LISTENING)
    assert "item_b" not in orchestrator.session.correlations
    assert orchestrator.session.pending_message is None

    upstream.utterance("item_c", "Me duele la cabeza")
    await wait_until(lambda: len(upstream.sent_of("response.create")) == 3)
    upstream.translation("resp_c", ["My head hurts"], item_id="item_c")
    conversation_id = orchestrator.session.conversation_id
    await wait_until(lambda: len(store.messages_of(conversation_id)) == 1)
    await wait_until(lambda: orchestrator.state is SessionState.LISTENING)

    finals = [(t["id"], t["text"]) for t in client.data("translation") if t["finished"]]
    assert finals == [("item_a", "Hola, ¿cómo está?"), ("item_c", "My head hurts")]
    [message] = store.messages_of(conversation_id)
    assert message["messageId"] == "item_c"
    assert message["originalText"] == "Me duele la cabeza"
    assert message["translatedText"] == "My head hurts"
    assert client.data("error") == [{"message": "Translation service error"}]

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_error_naming_a_translation_request_drops_it(deps, upstream):
    client, orchestrator, registry, task = await start_session(deps)
    client.feed(AUDIO)
    await wait_until(lambda: orchestrator.state is SessionState.LISTENING)

    upstream.utterance("item_a", "Hello, how are you?")
    await wait_until(lambda: upstream.sent_of("response.create"))
    [request] = upstream.sent_of("response.create")
    assert request["response"]["metadata"] == {"item_id": "item_a"}
    upstream.push({"type": "error", "error": {"code": "invalid_value", "event_id": request["event_id"]}})

    await wait_until(lambda: orchestrator.state is SessionState.LISTENING)
    assert "item_a" not in orchestrator.session.correlations
    assert orchestrator.session.pending_message is None

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_translation_deltas_precede_single_final(deps, upstream, store):
    client, orchestrator, registry, task = await start_session(deps)
    await doctor_turn(client, upstream, orchestrator, store)

    flags = [t["finished"] for t in client.data("translation") if t["id"] == "item_1"]
    assert flags[-1] is True
    assert flags.count(True) == 1

    # a duplicate done event for the same response does not produce a second final
    upstream.push({
        "type": "response.audio_transcript.done",
        "response_id": "resp_1",
        "transcript": "Hola, ¿cómo está?",
    })
    upstream.push({"type": "session.noop"})
    await asyncio.sleep(0.05)
    assert [t["finished"] for t in client.data("translation")].count(True) == 1

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_audio_before_ready_is_dropped(store):
    upstream = FakeUpstreamChannel(auto_handshake=False)
    deps = make_dependencies(connector=ScriptedConnector(upstream), store=store)
    client = FakeClientChannel()
    registry = SessionRegistry(lambda: deps)
    orchestrator = registry.create(client, session_id="sess-1")
    task = asyncio.create_task(orchestrator.run())

    client.feed(AUDIO)
    await wait_until(lambda: orchestrator.dropped_audio_chunks == 1)
    assert orchestrator.state is SessionState.NEGOTIATING

    upstream.push({"type": "session.created", "session": {"id": "sess_upstream"}})
    await wait_until(lambda: upstream.sent_of("session.update"))
    upstream.push({"type": "session.updated"})
    await wait_until(lambda: orchestrator.state is SessionState.READY)
    assert not upstream.sent_of("input_audio_buffer.append")

    client.feed(AUDIO)
    await wait_until(lambda: upstream.sent_of("input_audio_buffer.append"))
    assert len(upstream.sent_of("input_audio_buffer.append")) == 1
    assert orchestrator.state is SessionState.LISTENING

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_upstream_unavailable_fails_session_start(store):
    deps = make_dependencies(connector=ScriptedConnector(), store=store)
    client = FakeClientChannel()
    registry = SessionRegistry(lambda: deps)
    orchestrator = registry.create(client, session_id="sess-1")

    await asyncio.wait_for(orchestrator.run(), 2)

    assert client.data("error") == [{"message": "Failed to start session"}]
    assert client.messages("session_ready") == []
    assert orchestrator.state is SessionState.STOPPED
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_stop_is_idempotent(deps, upstream, store):
    client, orchestrator, registry, task = await start_session(deps)
    await doctor_turn(client, upstream, orchestrator, store)

    client.feed_json({"type": "stop"})
    await asyncio.wait_for(task, 2)

    assert client.data("conversation_stopped") == [{
        "conversationId": orchestrator.session.conversation_id,
        "summary": "Patient reported a sore throat.",
    }]
    assert store.complete_calls == 1
    assert deps.summarizer.calls == 1

    assert await orchestrator.stop() is False
    assert store.complete_calls == 1
    assert len(client.messages("conversation_stopped")) == 1

    assert orchestrator.session.released
    assert upstream.closed
    assert len(registry) == 0
    assert deps.presence.active == {}
    conversation = store.conversations[orchestrator.session.conversation_id]
    assert conversation["status"] == "completed"


@pytest.mark.asyncio
async def test_stop_notifies_webhook_and_stores_action_labels(upstream, store):
    notifier = FakeNotifier(labels=["medication: prescribe"])
    deps = make_dependencies(connector=ScriptedConnector(upstream), store=store, notifier=notifier)
    client, orchestrator, registry, task = await start_session(deps)
    await doctor_turn(client, upstream, orchestrator, store)

    await orchestrator.stop("client_stop")
    await asyncio.wait_for(task, 2)

    assert len(notifier.notified) == 1
    assert notifier.notified[0]["status"] == "completed"
    assert store.conversations[orchestrator.session.conversation_id]["actions"] == ["medication: prescribe"]


@pytest.mark.asyncio
async def test_inactivity_timeout_stops_conversation(upstream, store):
    deps = make_dependencies(connector=ScriptedConnector(upstream), store=store, inactivity_timeout=0.3)
    client, orchestrator, registry, task = await start_session(deps)
    await doctor_turn(client, upstream, orchestrator, store)

    await asyncio.wait_for(task, 3)

    types = [m["type"] for m in client.sent]
    assert "conversation_timeout" in types
    assert types.index("conversation_timeout") < types.index("conversation_stopped")
    assert client.data("conversation_timeout")[0]["message"].startswith("Conversation ended due to")
    assert client.data("conversation_stopped")[0]["summary"] == "Patient reported a sore throat."
    assert orchestrator.state is SessionState.STOPPED


@pytest.mark.asyncio
async def test_heartbeat_keeps_session_alive(upstream, store):
    deps = make_dependencies(connector=ScriptedConnector(upstream), store=store, inactivity_timeout=0.3)
    client, orchestrator, registry, task = await start_session(deps)

    for _ in range(5):
        client.feed_json({"type": "heartbeat"})
        await asyncio.sleep(0.1)

    assert orchestrator.state is SessionState.READY
    assert len(client.messages("heartbeat_ack")) == 5
    assert deps.presence.refreshed == 5

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_upstream_loss_reconnects_on_next_audio(store):
    first = FakeUpstreamChannel()
    second = FakeUpstreamChannel()
    deps = make_dependencies(connector=ScriptedConnector(first, second), store=store)
    client, orchestrator, registry, task = await start_session(deps)
    conversation_id = orchestrator.session.conversation_id

    client.feed(AUDIO)
    first.utterance("item_1", "Hello, how are you?")
    await wait_until(lambda: first.sent_of("response.create"))
    assert orchestrator.session.pending_message is not None

    first.drop()
    await wait_until(lambda: orchestrator.state is SessionState.RECONNECTING)
    assert "reconnecting" in client.events()
    assert orchestrator.session.pending_message is None

    client.feed(AUDIO)
    await wait_until(lambda: orchestrator.state is SessionState.READY)
    client.feed(AUDIO)
    await wait_until(lambda: second.sent_of("input_audio_buffer.append"))

    assert len(second.sent_of("input_audio_buffer.append")) == 1
    assert [r["conversationId"] for r in client.data("session_ready")] == [conversation_id, conversation_id]
    assert len(store.conversations) == 1

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_upstream_error_event_is_forwarded_generically(deps, upstream):
    client, orchestrator, registry, task = await start_session(deps)

    upstream.push({"type": "error", "error": {"type": "server_error", "code": "internal", "message": "boom"}})
    upstream.push({"type": "error", "error": {"code": "input_audio_buffer_commit_empty", "message": "empty"}})
    await wait_until(lambda: client.messages("error"))
    await asyncio.sleep(0.05)

    assert client.data("error") == [{"message": "Translation service error"}]
    assert orchestrator.state is SessionState.READY

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_malformed_control_text_is_treated_as_audio(deps, upstream):
    client, orchestrator, registry, task = await start_session(deps)

    client.feed("{not json")
    await wait_until(lambda: upstream.sent_of("input_audio_buffer.append"))
    assert orchestrator.state is SessionState.LISTENING

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_language_config_pushes_session_update(deps, upstream):
    client, orchestrator, registry, task = await start_session(deps)

    client.feed_json({"type": "language_config", "data": {"isDoctorSpanish": True}})
    await wait_until(lambda: len(upstream.sent_of("session.update")) == 2)

    config = orchestrator.session.language_config
    assert config.doctor_language == "spanish"
    assert config.patient_language == "english"

    client.feed_json({"type": "language_config", "data": {"doctorLanguage": "english", "patientLanguage": "English"}})
    client.feed_json({"type": "ping"})
    await wait_until(lambda: client.messages("pong"))
    assert orchestrator.session.language_config == config

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_unknown_and_invalid_control_messages_are_ignored(deps, upstream):
    client, orchestrator, registry, task = await start_session(deps)
    config = orchestrator.session.language_config

    client.feed_json({"type": "dance"})
    client.feed_json({"type": ["ping"]})
    client.feed_json({"type": "language_config"})
    client.feed_json({"type": "language_config", "data": {"doctorLanguage": "Spanish", "patientLanguage": "spanish"}})
    client.feed_json({"type": "ping"})
    await wait_until(lambda: client.messages("pong"))

    assert orchestrator.session.language_config == config
    assert upstream.sent_types() == ["session.update"]
    assert orchestrator.state is SessionState.READY
    assert not client.messages("error")

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_doctor_intents_are_extracted_and_sent(upstream):
    intent = {"type": "medication", "confidence": 0.9, "medication": {"name": "amoxicillin"}, "action": "prescribe"}
    store = InMemoryConversationStore()
    intents = FakeIntentExtractor([intent])
    deps = make_dependencies(connector=ScriptedConnector(upstream), store=store, intents=intents)
    client, orchestrator, registry, task = await start_session(deps)

    await doctor_turn(client, upstream, orchestrator, store)
    await wait_until(lambda: client.messages("intents_extracted"))

    assert client.data("intents_extracted") == [{"messageId": "item_1", "intents": [intent]}]
    assert store.messages_of(orchestrator.session.conversation_id)[0]["intents"] == [intent]

    await doctor_turn(client, upstream, orchestrator, store, item_id="item_2", response_id="resp_2")
    _, _, _, context = intents.calls[1]
    assert context == ["doctor: Hello, how are you?", "doctor: Hello, how are you?"]

    client.disconnect()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_resume_reattaches_prior_conversation(deps, upstream, store):
    prior = await store.create("old-session")
    await store.complete(prior, "Earlier visit")
    client, orchestrator, registry, task = await start_session(deps)

    assert await orchestrator.resume(prior) == prior
    assert orchestrator.session.conversation_id == prior
    assert store.conversations[prior]["status"] == "active"
    assert client.data("conversation_resumed") == [{"conversationId": prior}]

    fresh = await orchestrator.resume("does-not-exist")
    assert fresh != prior and fresh in store.conversations

    client.disconnect()
    await asyncio.wait_for(task, 2)
