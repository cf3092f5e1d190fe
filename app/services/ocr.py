# =============================================================================
# Vision OCR — Multi-Provider Fallback Chain
# =============================================================================
#
# Turns a rendered page image into text using vision-capable chat models.
#
# ARCHITECTURE:
#   VisionProvider (Protocol)
#   ├── OpenAICompatibleVisionProvider — OpenRouter, OpenAI, any
#   │                                    OpenAI-compatible gateway
#   ├── AnthropicVisionProvider        — Claude via native Anthropic SDK
#   ├── create_provider_from_id()      — "type/model[@base_url]" → provider
#   └── OCRFallbackChain               — ordered providers, free tier first
#
# DESIGN DECISION: Fallback on rate limits only. Free vision tiers run out
# of quota long before a knowledge folder is done. When the current tier
# answers 429 the chain moves to the next model instead of sleeping, so one
# provider's quota never stalls the whole pipeline. Any other error (bad
# image, auth failure, 5xx) is not something a different model fixes, so
# it propagates and the page is retried on a later run.
#
# DESIGN DECISION: Provider SDK exceptions are translated into OCRError /
# OCRRateLimitError at the provider boundary. The chain and the extractor
# never import openai or anthropic exception types.
#
# DESIGN DECISION: Synchronous clients. The pipeline runs in Celery workers
# and processes pages strictly in order; there is nothing to overlap.
# =============================================================================

from __future__ import annotations

import base64
import logging
from collections.abc import Sequence
from typing import Protocol

from app.config import Settings, settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class OCRError(Exception):
    """A vision model failed to return text for a page."""


class OCRRateLimitError(OCRError):
    """The model refused the request because a rate limit or quota was hit."""


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class VisionProvider(Protocol):
    """Anything that can read the text off a page image."""

    @property
    def name(self) -> str:
        ...

    def extract_text(self, image_bytes: bytes) -> str:
        """
        Return the text visible in a PNG image.

        Raises:
            OCRRateLimitError: The provider is rate limited / out of quota.
            OCRError: Any other provider failure.
        """
        ...


def _data_url(image_bytes: bytes, media_type: str = "image/png") -> str:
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


# ---------------------------------------------------------------------------
# Implementation 1: OpenAI-Compatible (OpenRouter, OpenAI, ...)
# ---------------------------------------------------------------------------


class OpenAICompatibleVisionProvider:
    """
    Vision OCR through any OpenAI-compatible chat completions API.

    OpenRouter exposes free and paid vision models from several vendors
    behind one key, which is what makes a cross-vendor fallback chain cheap
    to configure: every tier is just a different model name.
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str | None = None,
        prompt: str = settings.ocr_prompt,
        max_tokens: int = settings.ocr_max_tokens,
    ) -> None:
        from openai import OpenAI

        if not api_key:
            raise ValueError(
                "No API key configured for OCR. Set OCR_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": api_key}
        if base_url:
            client_kwargs["base_url"] = base_url

        self._client = OpenAI(**client_kwargs)
        self._model = model
        self._prompt = prompt
        self._max_tokens = max_tokens

    @property
    def name(self) -> str:
        return self._model

    def extract_text(self, image_bytes: bytes) -> str:
        import openai

        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[{
                    "role": "user",
                    "content": [
                        {
                            "type": "image_url",
                            "image_url": {"url": _data_url(image_bytes)},
                        },
                        {"type": "text", "text": self._prompt},
                    ],
                }],
                max_tokens=self._max_tokens,
            )
        except openai.RateLimitError as exc:
            raise OCRRateLimitError(f"{self._model}: {exc}") from exc
        except openai.APIStatusError as exc:
            if exc.status_code == 429:
                raise OCRRateLimitError(f"{self._model}: {exc}") from exc
            raise OCRError(f"{self._model}: {exc}") from exc
        except openai.OpenAIError as exc:
            raise OCRError(f"{self._model}: {exc}") from exc

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


# ---------------------------------------------------------------------------
# Implementation 2: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicVisionProvider:
    """
    Vision OCR through the native Anthropic SDK.

    KEY API DIFFERENCE: images are sent as a base64 `image` content block
    with an explicit media_type, not as a data URL.
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        prompt: str = settings.ocr_prompt,
        max_tokens: int = settings.ocr_max_tokens,
    ) -> None:
        from anthropic import Anthropic

        if not api_key:
            raise ValueError(
                "No Anthropic API key configured. Set ANTHROPIC_API_KEY in .env"
            )

        self._client = Anthropic(api_key=api_key)
        self._model = model
        self._prompt = prompt
        self._max_tokens = max_tokens

    @property
    def name(self) -> str:
        return self._model

    def extract_text(self, image_bytes: bytes) -> str:
        import anthropic

        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                messages=[{
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": "image/png",
                                "data": base64.b64encode(image_bytes).decode("ascii"),
                            },
                        },
                        {"type": "text", "text": self._prompt},
                    ],
                }],
            )
        except anthropic.RateLimitError as exc:
            raise OCRRateLimitError(f"{self._model}: {exc}") from exc
        except anthropic.AnthropicError as exc:
            raise OCRError(f"{self._model}: {exc}") from exc

        return "".join(
            block.text for block in response.content if block.type == "text"
        )


# ---------------------------------------------------------------------------
# Provider IDs
# ---------------------------------------------------------------------------

_KNOWN_PROVIDER_TYPES = {"anthropic", "openai_compatible"}


def _parse_provider_id(
    provider_id: str,
) -> tuple[str, str, str | None]:
    """
    Parse a provider_id string into (provider_type, model, base_url).

    Formats supported:
        "anthropic/claude-sonnet-4-6"
            → ("anthropic", "claude-sonnet-4-6", None)
        "openai_compatible/google/gemini-flash-1.5"
            → ("openai_compatible", "google/gemini-flash-1.5", None)
        "openai_compatible/gpt-4o-mini@https://api.openai.com/v1"
            → ("openai_compatible", "gpt-4o-mini", "https://api.openai.com/v1")

    Only the first "/" separates the type, so OpenRouter model names that
    contain their own vendor prefix survive intact.

    Raises:
        ValueError: If the format is unrecognisable or provider type unknown.
    """
    if "/" not in provider_id:
        raise ValueError(
            f"Invalid provider_id '{provider_id}'. "
            "Expected format: 'provider_type/model' or "
            "'provider_type/model@base_url'"
        )

    provider_type, rest = provider_id.split("/", 1)

    base_url: str | None = None
    if "@" in rest:
        model, base_url = rest.split("@", 1)
    else:
        model = rest

    if provider_type not in _KNOWN_PROVIDER_TYPES:
        raise ValueError(
            f"Unknown provider type '{provider_type}'. "
            f"Supported types: {sorted(_KNOWN_PROVIDER_TYPES)}"
        )
    if not model:
        raise ValueError(f"Invalid provider_id '{provider_id}': empty model name")

    return provider_type, model, base_url


def create_provider_from_id(
    provider_id: str,
    config: Settings = settings,
) -> OpenAICompatibleVisionProvider | AnthropicVisionProvider:
    """
    Create a vision provider from a provider ID string.

    Raises:
        ValueError: If provider_id is invalid or its API key is missing.
    """
    provider_type, model, base_url = _parse_provider_id(provider_id)

    if provider_type == "anthropic":
        return AnthropicVisionProvider(
            model=model,
            api_key=config.anthropic_api_key,
            prompt=config.ocr_prompt,
            max_tokens=config.ocr_max_tokens,
        )

    return OpenAICompatibleVisionProvider(
        model=model,
        api_key=config.ocr_api_key,
        base_url=base_url or config.ocr_base_url,
        prompt=config.ocr_prompt,
        max_tokens=config.ocr_max_tokens,
    )


# ---------------------------------------------------------------------------
# Fallback Chain
# ---------------------------------------------------------------------------


class OCRFallbackChain:
    """
    Ordered vision providers; rate limits move the page to the next one.

    Example:
        chain = build_ocr_chain()
        text = chain.ocr(png_bytes)   # tries tier 0, then 1, ... on 429
    """

    def __init__(self, providers: Sequence[VisionProvider]) -> None:
        if not providers:
            raise ValueError("OCR fallback chain needs at least one provider")
        self._providers = list(providers)

    @property
    def models(self) -> list[str]:
        return [p.name for p in self._providers]

    def __len__(self) -> int:
        return len(self._providers)

    def ocr(self, image_bytes: bytes, level: int = 0) -> str:
        """
        Extract text from a page image, starting at tier `level`.

        Raises:
            OCRRateLimitError: Every tier from `level` on was rate limited.
            OCRError: A tier failed for a reason other than a rate limit.
        """
        if not 0 <= level < len(self._providers):
            raise ValueError(
                f"OCR level {level} out of range (chain has "
                f"{len(self._providers)} tiers)"
            )

        last = len(self._providers) - 1
        while True:
            provider = self._providers[level]
            try:
                text = provider.extract_text(image_bytes)
            except OCRRateLimitError:
                if level >= last:
                    logger.warning(
                        "Rate limit hit on %s and no fallback tiers remain",
                        provider.name,
                    )
                    raise
                level += 1
                logger.warning(
                    "Rate limit hit on %s, falling back to %s",
                    provider.name, self._providers[level].name,
                )
                continue

            if level > 0:
                logger.info("OCR succeeded on fallback tier %d (%s)", level, provider.name)
            return text


def build_ocr_chain(config: Settings = settings) -> OCRFallbackChain:
    """Build the fallback chain from `config.ocr_models`, in order."""
    providers = [create_provider_from_id(pid, config=config) for pid in config.ocr_models]
    logger.info("OCR fallback chain: %s", " → ".join(p.name for p in providers))
    return OCRFallbackChain(providers)
