"""
Translation module.

Translation directives and ordered relaying of translation fragments.
"""
from .relay import TranslationRelay

__all__ = ["TranslationRelay"]
