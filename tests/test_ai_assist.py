"""Tests for Gemini prompt assistance and the Gemini client wrapper."""

from __future__ import annotations

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient

from assetcraft.integrations.gemini_client import GeminiClient, GeminiError
from assetcraft.models import UserProfile
from assetcraft.services.ai_assist_service import (
    DEFAULT_SUGGESTIONS,
    FALLBACK_SUGGESTIONS,
    ChatRequest,
    SuggestionsRequest,
    chat,
    enhance_prompt,
    fallback_suggestions,
    parse_suggestions,
    suggest_prompts,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _mock_gemini(reply: str | None = None, error: Exception | None = None):
    gemini = AsyncMock()
    if error is not None:
        gemini.generate_text.side_effect = error
    else:
        gemini.generate_text.return_value = reply
    return gemini


def _make_client(sdk: MagicMock) -> GeminiClient:
    with patch("assetcraft.integrations.gemini_client.genai.Client", return_value=sdk):
        return GeminiClient(api_key="test-key", text_model="text-model", image_model="image-model")


# ---------------------------------------------------------------------------
# parse_suggestions
# ---------------------------------------------------------------------------

class TestParseSuggestions:
    def test_json_array_inside_prose(self):
        raw = 'Here you go:\n["a red dragon", "a blue castle", "a green forest"]\nEnjoy!'
        assert parse_suggestions(raw, 5) == ["a red dragon", "a blue castle", "a green forest"]

    def test_json_array_truncated_to_count(self):
        raw = '["one idea", "two idea", "three idea"]'
        assert parse_suggestions(raw, 2) == ["one idea", "two idea"]

    def test_numbered_lines(self):
        raw = "1. a knight in shining armor\n2. a dwarf blacksmith\n3. ok"
        assert parse_suggestions(raw, 5) == ["a knight in shining armor", "a dwarf blacksmith"]

    def test_quoted_and_bulleted_lines(self):
        raw = '"an ancient oak tree"\n* a crumbling tower'
        assert parse_suggestions(raw, 5) == ["an ancient oak tree", "a crumbling tower"]

    def test_garbage_yields_nothing(self):
        assert parse_suggestions("...\n\n", 5) == []


def test_fallback_suggestions_known_and_unknown_types():
    assert fallback_suggestions("Character", 2) == FALLBACK_SUGGESTIONS["character"][:2]
    assert fallback_suggestions("vehicle") == DEFAULT_SUGGESTIONS
    assert fallback_suggestions(None, 3) == DEFAULT_SUGGESTIONS[:3]


# ---------------------------------------------------------------------------
# enhance_prompt
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_enhance_prompt_success_strips_quotes():
    gemini = _mock_gemini('"A towering stone castle at golden hour, volumetric light"')

    response = await enhance_prompt(gemini, "castle")

    assert response.enhanced is True
    assert response.original_prompt == "castle"
    assert response.enhanced_prompt == "A towering stone castle at golden hour, volumetric light"
    assert 'Original prompt: "castle"' in gemini.generate_text.call_args.args[0]


@pytest.mark.asyncio
async def test_enhance_prompt_falls_back_to_original():
    gemini = _mock_gemini(error=GeminiError("quota exceeded"))

    response = await enhance_prompt(gemini, "castle")

    assert response.enhanced is False
    assert response.enhanced_prompt == "castle"


# ---------------------------------------------------------------------------
# suggest_prompts
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_suggestions_without_asset_type_skip_model():
    gemini = _mock_gemini("unused")

    response = await suggest_prompts(gemini, SuggestionsRequest(count=3))

    assert response.source == "fallback"
    assert response.suggestions == DEFAULT_SUGGESTIONS[:3]
    gemini.generate_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_suggestions_from_model():
    gemini = _mock_gemini('["a glowing sword", "a cursed amulet"]')

    response = await suggest_prompts(
        gemini, SuggestionsRequest(asset_type="object", style="fantasy", count=2)
    )

    assert response.source == "model"
    assert response.suggestions == ["a glowing sword", "a cursed amulet"]
    prompt = gemini.generate_text.call_args.args[0]
    assert "Style preference: fantasy" in prompt
    assert "Theme/color: any theme" in prompt


@pytest.mark.asyncio
async def test_suggestions_model_failure_uses_type_fallback():
    gemini = _mock_gemini(error=GeminiError("timeout"))

    response = await suggest_prompts(gemini, SuggestionsRequest(asset_type="texture", count=4))

    assert response.source == "fallback"
    assert response.suggestions == FALLBACK_SUGGESTIONS["texture"][:4]


# ---------------------------------------------------------------------------
# chat
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_chat_uses_context_template():
    gemini = _mock_gemini("Try adding lighting details.")

    response = await chat(gemini, ChatRequest(message="help me", context="asset_generation"))

    assert response.response == "Try adding lighting details."
    assert "AssetCraft AI Assistant" in gemini.generate_text.call_args.args[0]


@pytest.mark.asyncio
async def test_chat_failure_raises_502():
    gemini = _mock_gemini(error=GeminiError("down"))

    with pytest.raises(HTTPException) as exc_info:
        await chat(gemini, ChatRequest(message="hello"))

    assert exc_info.value.status_code == 502


# ---------------------------------------------------------------------------
# GeminiClient
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_client_generate_text_returns_stripped_reply():
    sdk = MagicMock()
    sdk.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text="  hi there \n"))
    client = _make_client(sdk)

    assert await client.generate_text("hello") == "hi there"
    kwargs = sdk.aio.models.generate_content.call_args.kwargs
    assert kwargs["model"] == "text-model"
    assert kwargs["config"].temperature == 0.7


@pytest.mark.asyncio
async def test_client_generate_text_empty_reply_raises():
    sdk = MagicMock()
    sdk.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=None))
    client = _make_client(sdk)

    with pytest.raises(GeminiError):
        await client.generate_text("hello")


@pytest.mark.asyncio
async def test_client_transport_error_wrapped():
    sdk = MagicMock()
    sdk.aio.models.generate_content = AsyncMock(side_effect=httpx.ConnectError("refused"))
    client = _make_client(sdk)

    with pytest.raises(GeminiError, match="Cannot reach Gemini"):
        await client.generate_text("hello")


@pytest.mark.asyncio
async def test_client_generate_image_returns_bytes():
    image = SimpleNamespace(image_bytes=b"\x89PNG...", mime_type="image/png")
    sdk = MagicMock()
    sdk.aio.models.generate_images = AsyncMock(
        return_value=SimpleNamespace(generated_images=[SimpleNamespace(image=image)])
    )
    client = _make_client(sdk)

    result = await client.generate_image("castle", aspect_ratio="16:9")

    assert result.image_bytes == b"\x89PNG..."
    config = sdk.aio.models.generate_images.call_args.kwargs["config"]
    assert config.aspect_ratio == "16:9"
    assert config.number_of_images == 1


@pytest.mark.asyncio
async def test_client_generate_image_filtered_raises():
    sdk = MagicMock()
    sdk.aio.models.generate_images = AsyncMock(
        return_value=SimpleNamespace(generated_images=[])
    )
    client = _make_client(sdk)

    with pytest.raises(GeminiError, match="No image generated"):
        await client.generate_image("castle")


# ---------------------------------------------------------------------------
# API endpoint
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_enhance_prompt_endpoint():
    from assetcraft.api.dependencies import get_current_user
    from assetcraft.integrations.gemini_client import get_gemini_client
    from assetcraft.main import app

    gemini = _mock_gemini("A detailed castle")
    app.dependency_overrides[get_current_user] = lambda: UserProfile(id=uuid.uuid4())
    app.dependency_overrides[get_gemini_client] = lambda: gemini

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post("/api/v1/ai/enhance-prompt", json={"prompt": "castle"})

        assert resp.status_code == 200, resp.text
        assert resp.json() == {
            "original_prompt": "castle",
            "enhanced_prompt": "A detailed castle",
            "enhanced": True,
        }
    finally:
        app.dependency_overrides.clear()
