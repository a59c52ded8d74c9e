"""
Repeat command detection.

"Repeat that" / "repite" style requests are answered by replaying the last
synthesized turn instead of being translated.
"""
import re
import unicodedata

REPEAT_PHRASES = frozenset({
    # english
    "repeat",
    "repeat that",
    "repeat that please",
    "say that again",
    "say it again",
    "can you repeat that",
    "could you repeat that",
    # spanish
    "repeta",
    "repite",
    "repite eso",
    "repitalo",
    "repita",
    "repita eso",
    "di eso otra vez",
    "dilo otra vez",
    "otra vez",
})

_FILLERS = ("please", "por favor")

_NON_WORD = re.compile(r"[^a-z ]+")
_SPACES = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Lowercase, strip accents and punctuation."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _SPACES.sub(" ", _NON_WORD.sub(" ", stripped)).strip()


def is_repeat_command(text: str) -> bool:
    """True when the whole utterance is a repeat request."""
    phrase = normalize(text)
    for filler in _FILLERS:
        if phrase.endswith(" " + filler):
            phrase = phrase[: -len(filler) - 1]
        if phrase.startswith(filler + " "):
            phrase = phrase[len(filler) + 1:]
    return phrase in REPEAT_PHRASES
