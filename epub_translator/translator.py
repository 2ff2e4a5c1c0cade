"""Translation client using LiteLLM.

This module provides the translation settings and a client that translates
single XHTML fragments through any provider supported by LiteLLM.

The client supports:
    - Multiple providers (OpenAI, Anthropic, Google Gemini, etc.)
    - Automatic API key configuration
    - Retry with exponential backoff for connection errors and timeouts
    - Mapping of provider errors to rate-limit / service / fatal errors
    - Token usage accounting
    - A literary system prompt driven by the book's Style Profile

Classes:
    TranslationSettings: Settings of a translation run
    UsageStats: Accumulated token usage
    TranslationService: Interface consumed by the orchestrator
    TranslationClient: LiteLLM implementation of TranslationService

Example:
    Basic client usage:

    >>> settings = TranslationSettings(model="gemini/gemini-2.5-flash", target_language="Turkish")
    >>> client = TranslationClient(settings, api_key="your-key")
    >>>
    >>> success, message = await client.test_connection()
    >>> if success:
    ...     html = await client.translate("Hello <em>world</em>", "English", "Turkish",
    ...                                   DEFAULT_STYLE_PROFILE, 0.3)

Note:
    Rate limits are not retried here: the orchestrator pauses the whole run
    and re-dispatches the node itself.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields
from typing import Any

import litellm
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import RateLimitedError, TranslationFailedError, TranslationServiceError
from .style import StyleProfile

logger = logging.getLogger(__name__)
translation_logger = logging.getLogger("translation_requests")

AVAILABLE_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote", "div", "span", "em", "strong"]
DEFAULT_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote", "div"]

REPAIR_TEMPERATURE = 0.1

_CODE_FENCE_START_RE = re.compile(r"^```(?:html|xhtml|xml)?\n?", re.IGNORECASE)
_CODE_FENCE_END_RE = re.compile(r"\n?```$")


@dataclass
class TranslationSettings:
    """Settings of a translation run.

    Attributes:
        model: LiteLLM model name (e.g. "gemini/gemini-flash-lite-latest")
        source_language: Source language label, or "Automatic"
        target_language: Target language label
        temperature: Sampling temperature; replaced by the style profile's
            variability when the analysis recommends one
        target_tags: Element names whose content is translated
        max_concurrency: Maximum simultaneous translation requests
        cooldown_seconds: Pause applied to the whole run after a rate limit
        log_window: Number of log entries kept in progress snapshots

    Example:
        >>> settings = TranslationSettings(
        ...     model="anthropic/claude-3.5-sonnet",
        ...     source_language="English",
        ...     target_language="Turkish",
        ...     target_tags=["p", "h1", "h2"]
        ... )
    """

    model: str = "gemini/gemini-flash-lite-latest"
    source_language: str = "Automatic"
    target_language: str = "Turkish"
    temperature: float = 0.3
    target_tags: list[str] = field(default_factory=lambda: list(DEFAULT_TAGS))
    max_concurrency: int = 4
    cooldown_seconds: float = 65.0
    log_window: int = 50

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be >= 0")
        if not self.target_tags:
            raise ValueError("target_tags must not be empty")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TranslationSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class UsageStats:
    """Token usage accumulated over a run."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, usage: Any) -> None:
        if not usage:
            return
        self.prompt_tokens += getattr(usage, "prompt_tokens", 0) or 0
        self.completion_tokens += getattr(usage, "completion_tokens", 0) or 0
        self.total_tokens += getattr(usage, "total_tokens", 0) or 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class TranslationService(ABC):
    """Contract of the external translation service.

    ``translate`` returns the translated fragment and must keep every tag
    and attribute of the input in the same order. It raises
    ``RateLimitedError`` on quota exhaustion, ``TranslationFailedError``
    when the run cannot continue and ``TranslationServiceError`` otherwise.
    """

    usage: UsageStats

    @abstractmethod
    async def translate(
        self,
        fragment: str,
        source_language: str,
        target_language: str,
        style_profile: StyleProfile,
        temperature: float,
        strict: bool = False,
    ) -> str:
        pass


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences some models wrap around their answer."""
    text = _CODE_FENCE_START_RE.sub("", text.strip())
    return _CODE_FENCE_END_RE.sub("", text).strip()


class TranslationClient(TranslationService):
    """LiteLLM-backed translation service.

    Attributes:
        settings: Translation settings
        api_key: Provider API key (optional)
        usage: Token usage accumulated by this client
    """

    def __init__(self, settings: TranslationSettings, api_key: str | None = None):
        """
        Initialize the translation client.

        Args:
            settings: Translation settings
            api_key: API key (optional, environment variables are used otherwise)
        """
        self.settings = settings
        self.api_key = api_key
        self.usage = UsageStats()

        if api_key:
            self._set_api_key(api_key)

        litellm.drop_params = True  # Ignore parameters a model does not support
        if logging.getLogger().getEffectiveLevel() >= logging.WARNING:
            os.environ["LITELLM_LOG"] = "WARNING"

        logger.info(f"Translation client initialized for model: {settings.model}")

    def _set_api_key(self, api_key: str) -> None:
        """Export the API key under the variable expected by the provider."""
        model_lower = self.settings.model.lower()

        if "openai" in model_lower or "gpt" in model_lower:
            os.environ["OPENAI_API_KEY"] = api_key
        elif "anthropic" in model_lower or "claude" in model_lower:
            os.environ["ANTHROPIC_API_KEY"] = api_key
        elif "gemini" in model_lower or "google" in model_lower:
            os.environ["GEMINI_API_KEY"] = api_key
            os.environ["GOOGLE_API_KEY"] = api_key
        elif "cohere" in model_lower:
            os.environ["COHERE_API_KEY"] = api_key
        else:
            os.environ["API_KEY"] = api_key
            os.environ["LITELLM_API_KEY"] = api_key

    async def test_connection(self) -> tuple[bool, str]:
        """
        Verify the API key with a minimal request.

        Returns:
            Tuple (success, message)
        """
        logger.info(f"Testing connection with {self.settings.model}")

        try:
            response = await litellm.acompletion(
                model=self.settings.model,
                messages=[{"role": "user", "content": "ping"}],
            )
            if response and response.choices and response.choices[0].message:
                logger.info(f"Connection with {self.settings.model} established")
                return True, "Connection established"

            logger.error("Empty response during connection test")
            return False, "Empty response from model"

        except Exception as e:
            logger.error(f"Connection test failed: {e}")
            return False, f"Connection test failed: {e}"

    def _build_system_prompt(
        self,
        source_language: str,
        target_language: str,
        style_profile: StyleProfile,
        strict: bool = False,
    ) -> str:
        """Build the system prompt for one fragment.

        The prompt carries the literary context of the style profile and the
        output rules (markup preservation, raw output only). The strict
        variant is used for the single repair attempt after a suspicious
        translation.
        """
        prompt = f"""ACT AS: A world-class literary translator specialized in {source_language} to {target_language} translation.

LITERARY CONTEXT:
- Genre: {style_profile.genre}
- Tone: {style_profile.tone}
- Author Style: {style_profile.author_style}
- Strategy: {style_profile.strategy}

STRICT RULES FOR OUTPUT:
1. HTML PRESERVATION: You will receive an XHTML snippet. Keep every tag and attribute EXACTLY as it appears, in the same order. Translate only the text between tags.
2. LITERARY FIDELITY: Do not translate word-for-word. Render the author's voice with equivalent literary weight in {target_language}.
3. RAW CONTENT ONLY: No explanations, introductions or notes. Return only the translated snippet.
4. NO MARKDOWN: Never wrap the answer in code blocks.
5. UNFILTERED: Preserve intensity, vulgarity and stylistic complexity. Do not simplify.
6. NON-EMPTY: Always translate unless the text is purely numerical or an untranslatable name.
"""
        if strict:
            prompt += f"""
REPAIR MODE: A previous answer was rejected because it was left untranslated, kept words of the source language, or altered the markup.
Every word of running text MUST be in {target_language}. The markup MUST be identical to the input.
"""
        return prompt

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type((litellm.APIConnectionError, litellm.Timeout)),
        reraise=True,
    )
    async def _complete(self, params: dict[str, Any]):
        return await litellm.acompletion(**params)

    async def translate(
        self,
        fragment: str,
        source_language: str,
        target_language: str,
        style_profile: StyleProfile,
        temperature: float,
        strict: bool = False,
    ) -> str:
        """
        Translate one XHTML fragment.

        Args:
            fragment: Inner markup of a node
            source_language: Source language label
            target_language: Target language label
            style_profile: Style profile of the book
            temperature: Sampling temperature
            strict: Use the stricter repair prompt

        Returns:
            Translated fragment (the input itself when the model answers empty)

        Raises:
            RateLimitedError: On quota exhaustion
            TranslationFailedError: When the provider rejects the credentials
            TranslationServiceError: On any other failure
        """
        trimmed = fragment.strip()
        if not trimmed:
            return fragment

        system_prompt = self._build_system_prompt(
            source_language, target_language, style_profile, strict
        )
        params = {
            "model": self.settings.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": trimmed},
            ],
            "temperature": temperature,
        }

        translation_logger.info("=" * 80)
        translation_logger.info(f"TRANSLATION REQUEST ({'strict' if strict else 'normal'})")
        translation_logger.info(f"Model: {self.settings.model} | Temperature: {temperature:.2f}")
        translation_logger.info(f"{source_language} -> {target_language} | {len(trimmed)} chars")
        translation_logger.info("-" * 40)
        translation_logger.info(trimmed)

        try:
            response = await self._complete(params)
        except litellm.RateLimitError as e:
            translation_logger.warning(f"RATE LIMITED: {e}")
            raise RateLimitedError(str(e)) from e
        except litellm.AuthenticationError as e:
            translation_logger.error(f"AUTHENTICATION FAILED: {e}")
            raise TranslationFailedError(f"Authentication failed: {e}") from e
        except Exception as e:
            translation_logger.error(f"REQUEST FAILED: {type(e).__name__}: {e}")
            if "429" in str(e) or "quota" in str(e).lower():
                raise RateLimitedError(str(e)) from e
            raise TranslationServiceError(f"{type(e).__name__}: {e}") from e

        self.usage.add(getattr(response, "usage", None))

        if not (response and response.choices and response.choices[0].message):
            translation_logger.error("Empty response from model")
            raise TranslationServiceError("Empty response from model")

        translated = strip_code_fences(response.choices[0].message.content or "")

        translation_logger.info("-" * 40)
        translation_logger.info(translated)
        if getattr(response, "usage", None):
            translation_logger.info(f"Tokens used: {response.usage.total_tokens}")
        translation_logger.info("=" * 80)

        return translated or trimmed

    def get_model_info(self) -> dict[str, Any]:
        """Return information about the configured model."""
        return {
            "model": self.settings.model,
            "source_language": self.settings.source_language,
            "target_language": self.settings.target_language,
        }

    @staticmethod
    def list_available_models() -> list[str]:
        """Commonly available LiteLLM models (availability depends on your keys)."""
        return [
            "gemini/gemini-flash-lite-latest",
            "gemini/gemini-2.5-flash",
            "gemini/gemini-2.5-pro",
            "openai/gpt-4o-mini",
            "openai/gpt-4o",
            "openai/gpt-4-turbo",
            "anthropic/claude-3-haiku",
            "anthropic/claude-3.5-sonnet",
            "cohere/command-r",
            "cohere/command-r-plus",
        ]
