"""Heuristics that flag a suspicious translation.

A translated fragment is suspicious when the source contains natural
language and the answer is identical to it, when it still reads like the
source language (frequent function words of that language), when its
markup no longer parses strictly, or when its tag/attribute tree differs
from the source.

The function-word check is coarse and can misfire on short fragments, so it
only runs on fragments with at least ``MIN_WORDS_FOR_MARKERS`` words. It is
a trigger for one repair attempt, not a quality gate.
"""

import logging
import re
from dataclasses import dataclass

from .extractors import is_well_formed, markup_signature, normalize_fragment, plain_text

logger = logging.getLogger(__name__)

MIN_WORDS_FOR_MARKERS = 8
MARKER_RATIO_THRESHOLD = 0.25

# Frequent function words per language (lower case)
FUNCTION_WORDS = {
    "english": {"the", "and", "of", "to", "is", "was", "that", "with", "for", "he", "she", "it", "his", "her", "you", "not", "but", "had", "have"},
    "turkish": {"ve", "bir", "bu", "da", "de", "için", "ile", "gibi", "çok", "ama", "ne", "o", "daha", "kadar", "sonra"},
    "french": {"le", "la", "les", "et", "de", "des", "un", "une", "est", "que", "qui", "dans", "pour", "pas", "il", "elle"},
    "german": {"der", "die", "das", "und", "ist", "nicht", "ein", "eine", "zu", "mit", "sich", "auf", "ich", "er", "sie"},
    "spanish": {"el", "la", "los", "las", "y", "de", "que", "en", "un", "una", "es", "por", "con", "no", "se"},
    "italian": {"il", "lo", "la", "gli", "le", "e", "di", "che", "non", "un", "una", "è", "per", "con", "si"},
    "portuguese": {"o", "a", "os", "as", "e", "de", "que", "não", "um", "uma", "é", "com", "para", "se", "do", "da"},
    "dutch": {"de", "het", "een", "en", "van", "is", "niet", "dat", "op", "te", "zijn", "met", "hij", "zij"},
}

_LETTER_RE = re.compile(r"[^\W\d_]", re.UNICODE)
_WORD_RE = re.compile(r"[^\W\d_]+", re.UNICODE)


@dataclass
class ValidationResult:
    """Outcome of validating one translated fragment."""

    valid: bool
    reason: str = ""


def has_natural_language(text: str) -> bool:
    return bool(_LETTER_RE.search(text))


def source_marker_ratio(text: str, language: str) -> float:
    """Share of words in ``text`` that are function words of ``language``."""
    markers = FUNCTION_WORDS.get(language.strip().lower())
    if not markers:
        return 0.0
    words = [w.lower() for w in _WORD_RE.findall(text)]
    if not words:
        return 0.0
    return sum(1 for w in words if w in markers) / len(words)


class TranslationValidator:
    """Checks translated fragments before they are written back."""

    def __init__(self, source_language: str, target_language: str):
        self.source_language = source_language
        self.target_language = target_language

    def _marker_check_enabled(self) -> bool:
        source = self.source_language.strip().lower()
        target = self.target_language.strip().lower()
        return source in FUNCTION_WORDS and source != target

    def validate(
        self, source: str, translated: str, namespaces: dict[str, str] | None = None
    ) -> ValidationResult:
        """
        Validate a translated fragment against its source.

        Args:
            source: Source inner markup
            translated: Translated inner markup
            namespaces: Namespace declarations of the owning document

        Returns:
            ValidationResult with the rejection reason when invalid
        """
        if is_well_formed(source, namespaces) and not is_well_formed(translated, namespaces):
            return ValidationResult(False, "malformed markup")

        if markup_signature(source, namespaces) != markup_signature(translated, namespaces):
            return ValidationResult(False, "markup changed")

        source_text = plain_text(source, namespaces)
        if not has_natural_language(source_text):
            return ValidationResult(True)

        if normalize_fragment(source) == normalize_fragment(translated):
            return ValidationResult(False, "identical to source")

        if self._marker_check_enabled():
            translated_text = plain_text(translated, namespaces)
            if len(translated_text.split()) >= MIN_WORDS_FOR_MARKERS:
                ratio = source_marker_ratio(translated_text, self.source_language)
                if ratio >= MARKER_RATIO_THRESHOLD:
                    return ValidationResult(
                        False, f"source-language markers ({ratio:.0%} of words)"
                    )

        return ValidationResult(True)
