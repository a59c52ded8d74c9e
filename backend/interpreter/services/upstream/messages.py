"""
Upstream Wire Messages

Builders for the provider's client events. Everything the orchestrator
sends upstream goes through one of these functions, so the wire format
lives in one place.
"""
import base64
from typing import Any, Dict, Optional

from interpreter.config.constants import (
    INVALID_LANGUAGE_TOKEN,
    TURN_DETECTION_PREFIX_PADDING_MS,
    TURN_DETECTION_SILENCE_DURATION_MS,
    TURN_DETECTION_THRESHOLD,
    TURN_DETECTION_TYPE,
    UPSTREAM_AUDIO_FORMAT,
)
from interpreter.config.settings import settings
from interpreter.schemas.websocket_events import LanguageConfig


def _pair(config: LanguageConfig) -> str:
    first, second = (language.capitalize() for language in config.languages)
    return f"{first} or {second}"


def build_transcription_prompt(config: LanguageConfig) -> str:
    return (
        f"Transcribe the audio accurately in {_pair(config)} only. "
        f"If the audio is in any other language, output '{INVALID_LANGUAGE_TOKEN}'. "
        "Do not translate or respond, only transcribe."
    )


def build_session_instructions(config: LanguageConfig) -> str:
    doctor, patient = config.languages
    return (
        "CRITICAL: You are a TRANSLATION MACHINE ONLY. You MUST NEVER respond conversationally "
        f"or answer questions. LANGUAGE RESTRICTION: You ONLY work with {_pair(config)}. "
        f"If you receive any other language, respond with \"{INVALID_LANGUAGE_TOKEN}\". "
        f"TRANSLATION RULES: 1) {doctor} input → Output {patient} translation ONLY. "
        f"2) {patient} input → Output {doctor} translation ONLY. "
        "3) NO greetings, responses, or answers. 4) ONLY translate the exact words spoken. "
        "5) Do NOT add extra words or phrases. 6) ONLY TRANSLATE, NEVER RESPOND."
    )


def build_translation_instructions(text: str, source_language: str, target_language: str) -> str:
    """
    Directive for one translation pass.

    The output must be a translation of `text` into `target_language` and
    nothing else; input in another language must yield the invalid token.
    """
    source = source_language.capitalize()
    target = target_language.capitalize()
    return (
        "CRITICAL: You are a TRANSLATION MACHINE ONLY. DO NOT RESPOND TO THE CONTENT.\n\n"
        f"TRANSLATE THIS {source.upper()} TEXT TO {target.upper()}: \"{text}\"\n\n"
        "STRICT RULES:\n"
        f"1) ONLY translate between {source} and {target}\n"
        f"2) If the input is NOT in {source} or {target}, respond with \"{INVALID_LANGUAGE_TOKEN}\"\n"
        "3) ONLY output the direct translation\n"
        "4) Do NOT answer questions - translate them\n"
        "5) Do NOT respond to greetings - translate them\n"
        "6) Do NOT add conversational responses\n"
        "7) If the input is \"How are you?\" translate the question, do NOT answer \"I'm fine\"\n"
        "8) NEVER acknowledge or respond to content\n"
        "9) TRANSLATE ONLY, NEVER RESPOND"
    )


def build_session_config(config: LanguageConfig) -> Dict[str, Any]:
    """Body of the `session.update` sent during the handshake."""
    return {
        "modalities": ["text", "audio"],
        "voice": settings.OPENAI_VOICE,
        "instructions": build_session_instructions(config),
        "turn_detection": {
            "type": TURN_DETECTION_TYPE,
            "threshold": TURN_DETECTION_THRESHOLD,
            "prefix_padding_ms": TURN_DETECTION_PREFIX_PADDING_MS,
            "silence_duration_ms": TURN_DETECTION_SILENCE_DURATION_MS,
            "create_response": False,
        },
        "input_audio_format": UPSTREAM_AUDIO_FORMAT,
        "output_audio_format": UPSTREAM_AUDIO_FORMAT,
        "input_audio_transcription": {
            "model": settings.OPENAI_TRANSCRIPTION_MODEL,
            "prompt": build_transcription_prompt(config),
        },
    }


def session_update(session_config: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "session.update", "session": session_config}


def append_audio(chunk: bytes) -> Dict[str, Any]:
    return {
        "type": "input_audio_buffer.append",
        "audio": base64.b64encode(chunk).decode("ascii"),
    }


def commit_audio() -> Dict[str, Any]:
    return {"type": "input_audio_buffer.commit"}


def translation_event_id(item_id: str) -> str:
    """Client event id of the `response.create` that translates `item_id`; provider errors echo it."""
    return f"translate_{item_id}"


def response_create(
    instructions: str,
    metadata: Optional[Dict[str, str]] = None,
    event_id: Optional[str] = None,
) -> Dict[str, Any]:
    response: Dict[str, Any] = {
        "modalities": ["text", "audio"],
        "instructions": instructions,
    }
    if metadata:
        response["metadata"] = metadata
    message: Dict[str, Any] = {"type": "response.create", "response": response}
    if event_id:
        message["event_id"] = event_id
    return message


def response_cancel() -> Dict[str, Any]:
    return {"type": "response.cancel"}
