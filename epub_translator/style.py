"""Style Profile and the one-off stylistic analysis of a book.

The profile is computed once per run from the book metadata and then
passed, unchanged, to every translation request.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, fields
from typing import Any

import litellm

from .manifest import BookMetadata

logger = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class StyleProfile:
    """Genre, tone and authorial style guiding every translation call.

    Attributes:
        genre: Literary genre
        tone: Psychological tone of the narration
        author_style: Description of the author's stylistic signature
        strategy: Recommended translation strategy
        fidelity_note: Free-form note on literary fidelity
        variability: Recommended sampling temperature (0.0 - 1.0)
    """

    genre: str = "Literary Fiction"
    tone: str = "Narrative"
    author_style: str = "Classic"
    strategy: str = "Maintain flow"
    fidelity_note: str = "Default strategy applied."
    variability: float = 0.3

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StyleProfile":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "variability" in values:
            values["variability"] = clamp_variability(values["variability"])
        return cls(**values)


DEFAULT_STYLE_PROFILE = StyleProfile()


def clamp_variability(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_STYLE_PROFILE.variability
    return max(0.0, min(1.0, number))


class StyleAnalyzer:
    """Asks the model for the stylistic profile of a book."""

    def __init__(self, model: str, source_language: str, target_language: str):
        self.model = model
        self.source_language = source_language
        self.target_language = target_language
        self.usage_tokens = 0

    def _build_prompt(self, metadata: BookMetadata) -> str:
        return f"""Deeply analyze this book for a professional translation project from {self.source_language} to {self.target_language}.
Title: {metadata.title}
Author: {metadata.creator}
Description: {metadata.description}

Identify the literary genre, the psychological tone, and the author's stylistic signature.
Return strict JSON with the keys: genre, tone, author_style, strategy, fidelity_note,
variability (a number between 0 and 1 describing how much creative freedom the text needs)."""

    async def analyze(self, metadata: BookMetadata) -> StyleProfile:
        """
        Analyse the book metadata.

        Args:
            metadata: Title, author and description of the book

        Returns:
            StyleProfile; the default profile when the call or the JSON fails
        """
        logger.info(f"Analyzing style: '{metadata.title}' by {metadata.creator}")

        try:
            response = await litellm.acompletion(
                model=self.model,
                messages=[{"role": "user", "content": self._build_prompt(metadata)}],
                response_format={"type": "json_object"},
            )

            if getattr(response, "usage", None):
                self.usage_tokens += response.usage.total_tokens or 0

            content = response.choices[0].message.content or "{}"
            data = json.loads(_CODE_FENCE_RE.sub("", content.strip()))
            if not isinstance(data, dict):
                raise ValueError("Style analysis did not return a JSON object")

            profile = StyleProfile.from_dict(data)
            logger.info(
                f"Style profile: {profile.genre} / {profile.tone} "
                f"(variability {profile.variability:.2f})"
            )
            return profile

        except Exception as e:
            logger.warning(f"Style analysis failed, using default profile: {e}")
            return DEFAULT_STYLE_PROFILE
