"""Async Google Gemini / Imagen client built on the google-genai SDK.

Text calls (prompt enhancement, suggestions, chat) go to the Gemini text
model; image calls go to Imagen. Every SDK or transport failure surfaces as
``GeminiError`` so callers have one exception type to handle.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from assetcraft.config import settings


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GeneratedImage:
    """Raw image returned by Imagen."""

    image_bytes: bytes
    mime_type: str


@dataclass(frozen=True)
class TextOptions:
    """Sampling options for a single text generation call."""

    temperature: float = 0.7
    top_k: int = 40
    top_p: float = 0.95
    max_output_tokens: int = 1024


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------

class GeminiError(Exception):
    """Raised when a Gemini or Imagen call fails or returns nothing usable."""


# ---------------------------------------------------------------------------
# GeminiClient
# ---------------------------------------------------------------------------

class GeminiClient:
    """Thin async wrapper over ``genai.Client``."""

    def __init__(
        self,
        api_key: str | None = None,
        text_model: str | None = None,
        image_model: str | None = None,
    ) -> None:
        self._client = genai.Client(api_key=api_key or settings.GEMINI_API_KEY)
        self.text_model = text_model or settings.GEMINI_TEXT_MODEL
        self.image_model = image_model or settings.IMAGEN_MODEL

    async def generate_text(self, prompt: str, options: TextOptions | None = None) -> str:
        """Return the model's stripped text reply to *prompt*.

        Raises:
            GeminiError: on API or transport errors, or an empty reply.
        """
        options = options or TextOptions()
        config = types.GenerateContentConfig(
            temperature=options.temperature,
            top_k=options.top_k,
            top_p=options.top_p,
            max_output_tokens=options.max_output_tokens,
        )
        try:
            response = await self._client.aio.models.generate_content(
                model=self.text_model,
                contents=prompt,
                config=config,
            )
        except genai_errors.APIError as exc:
            raise GeminiError(f"Gemini request failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GeminiError(f"Cannot reach Gemini: {exc}") from exc

        text = (response.text or "").strip()
        if not text:
            raise GeminiError("Gemini returned an empty response")
        return text

    async def generate_image(self, prompt: str, aspect_ratio: str = "1:1") -> GeneratedImage:
        """Generate one image for *prompt* with Imagen.

        Raises:
            GeminiError: on API or transport errors, or when the image was
            filtered out and nothing came back.
        """
        config = types.GenerateImagesConfig(
            number_of_images=1,
            aspect_ratio=aspect_ratio,
            safety_filter_level="BLOCK_MEDIUM_AND_ABOVE",
            person_generation="DONT_ALLOW",
        )
        try:
            response = await self._client.aio.models.generate_images(
                model=self.image_model,
                prompt=prompt,
                config=config,
            )
        except genai_errors.APIError as exc:
            raise GeminiError(f"Imagen request failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GeminiError(f"Cannot reach Imagen: {exc}") from exc

        if not response.generated_images:
            raise GeminiError("No image generated")
        image = response.generated_images[0].image
        if image is None or not image.image_bytes:
            raise GeminiError("No image generated")
        return GeneratedImage(
            image_bytes=image.image_bytes,
            mime_type=image.mime_type or "image/png",
        )


_gemini_client: GeminiClient | None = None


def get_gemini_client() -> GeminiClient:
    global _gemini_client
    if _gemini_client is None:
        _gemini_client = GeminiClient()
    return _gemini_client
