"""
Language Detectors

Two strategies for naming the language of a finalized transcript:

- LLMLanguageDetector: asks the chat model, restricted to the two
  configured languages. Primary strategy.
- HeuristicLanguageDetector: word lists, accent marks and script
  detection. Degraded-mode strategy used when the model is unavailable.

Both return one of the candidate languages or None for "neither".
"""
import logging
import re
import unicodedata
from typing import Dict, FrozenSet, Optional

from interpreter.config.constants import (
    LANGUAGE_DETECTION_MAX_TOKENS,
    LANGUAGE_DETECTION_TEMPERATURE,
)
from interpreter.services.exceptions import LLMError

logger = logging.getLogger(__name__)

INVALID_ANSWER = "invalid"


class LLMLanguageDetector:
    """Ask the chat model which of the two languages a text is in."""

    def __init__(self, client):
        self.client = client

    @staticmethod
    def build_messages(text: str, candidates: tuple[str, str]):
        first, second = candidates
        system = (
            f"You are a strict language detection system for {first.capitalize()}/{second.capitalize()} only. "
            f"Analyze the given text and determine if it's primarily {first}, {second}, or NEITHER.\n\n"
            "CRITICAL RULES:\n"
            f"- ONLY respond with \"{first}\", \"{second}\", or \"INVALID\"\n"
            f"- If the text is primarily {first.capitalize()}, respond with \"{first}\"\n"
            f"- If the text is primarily {second.capitalize()}, respond with \"{second}\"\n"
            "- If mixed, choose the dominant one\n"
            "- If the text is in any other language, respond with \"INVALID\""
        )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": f"Detect the language of this text: \"{text}\""},
        ]

    async def detect(self, text: str, candidates: tuple[str, str]) -> Optional[str]:
        message = await self.client.complete(
            self.build_messages(text, candidates),
            max_tokens=LANGUAGE_DETECTION_MAX_TOKENS,
            temperature=LANGUAGE_DETECTION_TEMPERATURE,
        )
        answer = (message.get("content") or "").strip().strip(".\"'").lower()
        if answer in candidates:
            return answer
        if answer == INVALID_ANSWER:
            return None
        raise LLMError(f"unexpected language detection answer: {answer!r}")


# Common function words and clinic vocabulary per language
_WORDS: Dict[str, FrozenSet[str]] = {
    "english": frozenset(
        """
        the a an and or but is are was were be been have has had do does did i you he she
        it we they my your his her our their this that these those what where when why how
        who which with without for from to of in on at by not no yes please thank thanks
        hello hi good morning afternoon evening doctor patient pain medicine treatment
        symptoms appointment prescription feel feeling take today week day days hurt hurts
        can could would should will tell me about let check recommend follow up again
        """.split()
    ),
    "spanish": frozenset(
        """
        el la los las un una unos unas y o pero es son está están estoy era fue ser estar
        tengo tiene tienes hay yo tú usted él ella nosotros ellos mi mis su sus este esta
        eso esto qué dónde cuándo por para porque cómo quién cual con sin de del al en no sí
        hola gracias favor buenos buenas días tardes noches doctor doctora médico paciente
        dolor medicina tratamiento síntomas cita receta siento duele me muy bien mal aquí
        hoy semana necesito ayuda puede puedo otra vez
        """.split()
    ),
}

# Characters that only occur in the second language's orthography
_MARKERS: Dict[str, str] = {
    "spanish": "ñáéíóúü¿¡",
}

_WORD_RE = re.compile(r"[^\W\d_]+", re.UNICODE)


def _is_latin(char: str) -> bool:
    try:
        return "LATIN" in unicodedata.name(char)
    except ValueError:
        return False


class HeuristicLanguageDetector:
    """
    Score a text against per-language word lists.

    Texts written mostly in a non-Latin script are never assigned a
    language; ties and texts with no known words are None.
    """

    def __init__(self, words: Optional[Dict[str, FrozenSet[str]]] = None, markers: Optional[Dict[str, str]] = None):
        self.words = words or _WORDS
        self.markers = markers if markers is not None else _MARKERS

    def score(self, text: str, language: str) -> int:
        lowered = text.lower()
        tokens = _WORD_RE.findall(lowered)
        vocabulary = self.words.get(language, frozenset())
        points = sum(1 for token in tokens if token in vocabulary)
        markers = self.markers.get(language, "")
        points += 2 * sum(1 for char in lowered if char in markers)
        return points

    async def detect(self, text: str, candidates: tuple[str, str]) -> Optional[str]:
        letters = [char for char in text if char.isalpha()]
        if not letters:
            return None
        latin = sum(1 for char in letters if _is_latin(char))
        if latin * 2 < len(letters):
            logger.info("[LanguageDetection] Non-Latin script, no candidate language")
            return None

        scores = {language: self.score(text, language) for language in candidates}
        best = max(scores.values())
        if best == 0:
            return None
        winners = [language for language, points in scores.items() if points == best]
        if len(winners) > 1:
            return None
        return winners[0]
