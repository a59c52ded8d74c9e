"""
Language module.

Speaker/language classification and repeat-command detection.
"""
from .classifier import SpeakerLanguageClassifier, resolve_role
from .detectors import HeuristicLanguageDetector, LLMLanguageDetector
from .repeat import is_repeat_command

__all__ = [
    "SpeakerLanguageClassifier",
    "resolve_role",
    "HeuristicLanguageDetector",
    "LLMLanguageDetector",
    "is_repeat_command",
]
