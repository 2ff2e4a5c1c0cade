"""
Tests for the style.py module
"""

import json
from unittest.mock import AsyncMock, Mock, patch

import pytest

from epub_translator.manifest import BookMetadata
from epub_translator.style import DEFAULT_STYLE_PROFILE, StyleAnalyzer, StyleProfile, clamp_variability


def _response(content):
    response = Mock()
    response.choices = [Mock(message=Mock(content=content))]
    response.usage = Mock(total_tokens=120)
    return response


class TestStyleProfile:
    """Tests for the StyleProfile class."""

    def test_default_profile(self):
        assert DEFAULT_STYLE_PROFILE.genre == "Literary Fiction"
        assert DEFAULT_STYLE_PROFILE.tone == "Narrative"
        assert DEFAULT_STYLE_PROFILE.author_style == "Classic"
        assert DEFAULT_STYLE_PROFILE.strategy == "Maintain flow"
        assert DEFAULT_STYLE_PROFILE.variability == 0.3

    def test_from_dict_ignores_unknown_and_clamps(self):
        profile = StyleProfile.from_dict({"genre": "Horror", "variability": 3, "extra": "x"})

        assert profile.genre == "Horror"
        assert profile.variability == 1.0
        assert profile.tone == "Narrative"

    def test_clamp_variability(self):
        assert clamp_variability(-1) == 0.0
        assert clamp_variability("0.7") == 0.7
        assert clamp_variability("high") == 0.3


class TestStyleAnalyzer:
    """Tests for the StyleAnalyzer class."""

    def setup_method(self):
        self.analyzer = StyleAnalyzer("gemini/gemini-2.5-flash", "English", "Turkish")
        self.metadata = BookMetadata(title="Dracula", creator="Bram Stoker", description="A vampire novel.")

    @pytest.mark.asyncio
    async def test_analyze(self):
        content = json.dumps({
            "genre": "Gothic Horror",
            "tone": "Ominous",
            "author_style": "Epistolary",
            "strategy": "Keep the diary voice",
            "fidelity_note": "Archaic register",
            "variability": 0.6,
        })

        with patch(
            "epub_translator.style.litellm.acompletion", new=AsyncMock(return_value=_response(content))
        ) as mock_completion:
            profile = await self.analyzer.analyze(self.metadata)

        assert profile.genre == "Gothic Horror"
        assert profile.variability == 0.6
        assert self.analyzer.usage_tokens == 120

        params = mock_completion.call_args.kwargs
        assert params["response_format"] == {"type": "json_object"}
        assert "Dracula" in params["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_analyze_fenced_json(self):
        content = '```json\n{"genre": "Satire", "variability": 0.8}\n```'

        with patch("epub_translator.style.litellm.acompletion", new=AsyncMock(return_value=_response(content))):
            profile = await self.analyzer.analyze(self.metadata)

        assert profile.genre == "Satire"
        assert profile.variability == 0.8

    @pytest.mark.asyncio
    async def test_analyze_invalid_json_uses_default(self):
        with patch(
            "epub_translator.style.litellm.acompletion", new=AsyncMock(return_value=_response("not json"))
        ):
            assert await self.analyzer.analyze(self.metadata) == DEFAULT_STYLE_PROFILE

    @pytest.mark.asyncio
    async def test_analyze_service_error_uses_default(self):
        with patch(
            "epub_translator.style.litellm.acompletion", new=AsyncMock(side_effect=Exception("503"))
        ):
            assert await self.analyzer.analyze(self.metadata) == DEFAULT_STYLE_PROFILE
