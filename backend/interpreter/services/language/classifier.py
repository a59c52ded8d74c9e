"""
Speaker Language Classifier

Maps a finalized transcript to the speaker role. The role is decided by the
language of the text, never by which client sent the audio, so one
microphone can carry both participants.

Usage:
    classifier = SpeakerLanguageClassifier(LLMLanguageDetector(client))
    role = await classifier.classify("Hello, how are you?", language_config)
"""
import logging
from typing import Optional

from interpreter.models.conversation import SpeakerRole
from interpreter.schemas.websocket_events import LanguageConfig
from interpreter.services.exceptions import CollaboratorError, UnsupportedLanguageError
from interpreter.services.protocols import LanguageDetector

from .detectors import HeuristicLanguageDetector

logger = logging.getLogger(__name__)


def resolve_role(language: Optional[str], config: LanguageConfig) -> SpeakerRole:
    """
    Role that speaks `language` under `config`.

    Raises:
        UnsupportedLanguageError: if `language` is neither configured language
    """
    role = config.role_for_language(language)
    if role is None:
        raise UnsupportedLanguageError(language)
    return role


class SpeakerLanguageClassifier:
    """classify(text) -> role, with a degraded-mode fallback strategy."""

    def __init__(self, primary: LanguageDetector, fallback: Optional[LanguageDetector] = None):
        self.primary = primary
        self.fallback = fallback or HeuristicLanguageDetector()

    async def detect_language(self, text: str, config: LanguageConfig) -> Optional[str]:
        try:
            return await self.primary.detect(text, config.languages)
        except CollaboratorError as e:
            logger.warning(f"[LanguageDetection] Primary detector failed ({e}), using fallback")
            return await self.fallback.detect(text, config.languages)

    async def classify(self, text: str, config: LanguageConfig) -> SpeakerRole:
        """
        Raises:
            UnsupportedLanguageError: text is in neither configured language
        """
        language = await self.detect_language(text, config)
        role = resolve_role(language, config)
        logger.info(f"[LanguageDetection] {language} detected -> {role.value} speaking")
        return role
