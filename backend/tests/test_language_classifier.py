import json

import httpx
import pytest

from interpreter.models.conversation import SpeakerRole
from interpreter.schemas.websocket_events import LanguageConfig
from interpreter.services.exceptions import LLMError, UnsupportedLanguageError
from interpreter.services.language import (
    HeuristicLanguageDetector,
    LLMLanguageDetector,
    SpeakerLanguageClassifier,
    is_repeat_command,
    resolve_role,
)
from interpreter.services.llm import ChatCompletionClient


def chat_client(answer=None, status_code=200):
    """ChatCompletionClient answering every request with `answer`."""
    requests = []

    def handler(request: httpx.Request):
        requests.append(json.loads(request.content))
        if status_code != 200:
            return httpx.Response(status_code, json={"error": {"message": "unavailable"}})
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": answer}}]})

    client = ChatCompletionClient(api_key="test", base_url="https://llm.test/v1", transport=httpx.MockTransport(handler))
    return client, requests


# --- resolve_role ---

def test_resolve_role_default_config(language_config):
    assert resolve_role("english", language_config) is SpeakerRole.DOCTOR
    assert resolve_role("spanish", language_config) is SpeakerRole.PATIENT


def test_resolve_role_swapped_config():
    config = LanguageConfig(isDoctorSpanish=True)

    assert resolve_role("spanish", config) is SpeakerRole.DOCTOR
    assert resolve_role("english", config) is SpeakerRole.PATIENT


def test_resolve_role_rejects_other_languages(language_config):
    with pytest.raises(UnsupportedLanguageError):
        resolve_role("japanese", language_config)
    with pytest.raises(UnsupportedLanguageError):
        resolve_role(None, language_config)


def test_language_config_rejects_same_language_for_both_roles():
    with pytest.raises(ValueError):
        LanguageConfig(doctorLanguage="english", patientLanguage="English")


# --- heuristic ---

@pytest.mark.asyncio
@pytest.mark.parametrize("text,expected", [
    ("Hello, how are you feeling today?", "english"),
    ("I have a headache since yesterday", "english"),
    ("¿Dónde le duele?", "spanish"),
    ("Me duele la cabeza desde ayer", "spanish"),
    ("これは日本語です", None),
    ("12345", None),
])
async def test_heuristic_detector(text, expected):
    detector = HeuristicLanguageDetector()

    assert await detector.detect(text, ("english", "spanish")) == expected


# --- LLM detector ---

@pytest.mark.asyncio
async def test_llm_detector_answers(language_config):
    client, requests = chat_client("spanish")
    detector = LLMLanguageDetector(client)

    assert await detector.detect("Me duele la garganta", language_config.languages) == "spanish"
    assert requests[0]["max_tokens"] == 10
    assert 'Detect the language of this text: "Me duele la garganta"' in requests[0]["messages"][1]["content"]
    await client.aclose()


@pytest.mark.asyncio
async def test_llm_detector_invalid_answer(language_config):
    client, _ = chat_client("INVALID")
    detector = LLMLanguageDetector(client)

    assert await detector.detect("これは日本語です", language_config.languages) is None
    await client.aclose()


@pytest.mark.asyncio
async def test_llm_detector_unexpected_answer_raises(language_config):
    client, _ = chat_client("French, probably")
    detector = LLMLanguageDetector(client)

    with pytest.raises(LLMError):
        await detector.detect("Bonjour", language_config.languages)
    await client.aclose()


# --- classifier ---

@pytest.mark.asyncio
async def test_classifier_uses_primary(language_config):
    client, _ = chat_client("English.")
    classifier = SpeakerLanguageClassifier(LLMLanguageDetector(client))

    assert await classifier.classify("Hello", language_config) is SpeakerRole.DOCTOR
    await client.aclose()


@pytest.mark.asyncio
async def test_classifier_falls_back_when_model_fails(language_config):
    client, requests = chat_client(status_code=503)
    classifier = SpeakerLanguageClassifier(LLMLanguageDetector(client))

    assert await classifier.classify("¿Cómo está usted?", language_config) is SpeakerRole.PATIENT
    assert len(requests) == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_classifier_rejects_unsupported(language_config):
    classifier = SpeakerLanguageClassifier(HeuristicLanguageDetector())

    with pytest.raises(UnsupportedLanguageError):
        await classifier.classify("これは日本語です", language_config)


@pytest.mark.asyncio
async def test_role_follows_language_not_sender():
    config = LanguageConfig(isDoctorSpanish=True)
    classifier = SpeakerLanguageClassifier(HeuristicLanguageDetector())

    assert await classifier.classify("Me duele la cabeza", config) is SpeakerRole.DOCTOR
    assert await classifier.classify("Thank you, doctor", config) is SpeakerRole.PATIENT


# --- repeat commands ---

@pytest.mark.parametrize("text", [
    "Repeat that",
    "repeat that, please",
    "Say that again.",
    "Repite eso, por favor",
    "¿Repita?",
    "Por favor, repítalo",
    "Otra vez",
])
def test_repeat_commands(text):
    assert is_repeat_command(text)


@pytest.mark.parametrize("text", [
    "Repeat the prescription every eight hours",
    "I will repeat the blood test next week",
    "Hello",
    "",
])
def test_not_repeat_commands(text):
    assert not is_repeat_command(text)
