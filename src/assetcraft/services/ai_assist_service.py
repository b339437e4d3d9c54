"""Prompt assistance backed by Gemini -- enhancement, suggestions, and chat.

Enhancement and suggestions degrade gracefully: when the model is
unavailable the caller gets the original prompt or a static list instead of
an error. Chat has no sensible fallback and reports 502.
"""

from __future__ import annotations

import json
import re

import structlog
from fastapi import HTTPException
from pydantic import BaseModel, Field

from assetcraft.config import settings
from assetcraft.integrations.gemini_client import GeminiClient, GeminiError, TextOptions

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

ENHANCE_TEMPLATE = """You are an expert prompt engineer for AI image generation. Your task is to enhance the given prompt to create more detailed, specific, and visually compelling descriptions while maintaining the original intent.

Guidelines:
- Add specific visual details (colors, lighting, textures, composition)
- Include artistic style references when appropriate
- Enhance with descriptive adjectives that improve image quality
- Keep the enhanced prompt under 200 words
- Maintain the original concept and intent
- Make it suitable for AI image generation models

Original prompt: "{prompt}"

Enhanced prompt:"""

SUGGESTIONS_TEMPLATE = """You are an AI assistant helping users generate creative prompts for AI image generation.

Generate {count} creative and detailed prompt suggestions for creating {asset_type} assets.

Additional context:
- Asset type: {asset_type}
- Style preference: {style}
- Theme/color: {theme}

Requirements:
- Each suggestion should be a complete, detailed prompt suitable for AI image generation
- Include visual details like colors, lighting, composition, and artistic style
- Make each suggestion unique and creative
- Keep each suggestion between 10-30 words
- Focus on {asset_type} assets specifically

Please return exactly {count} suggestions as a JSON array of strings.

Example format:
["suggestion 1", "suggestion 2", "suggestion 3"]

Suggestions:"""

CHAT_TEMPLATES = {
    "asset_generation": """You are AssetCraft AI Assistant, a helpful AI companion for the AssetCraft AI app. This app helps users generate digital assets and artwork using AI.

Your role:
- Help users with the AssetCraft AI app
- Provide guidance on creating better prompts for image generation
- Assist with app features and functionality
- Be friendly, helpful, and concise
- Keep responses under 150 words

User message: "{message}"

Response:""",
}

DEFAULT_CHAT_TEMPLATE = (
    "You are a helpful AI assistant. Please respond to this message in a "
    "friendly and helpful way: {message}"
)

FALLBACK_SUGGESTIONS: dict[str, list[str]] = {
    "character": [
        "a brave warrior with ancient armor",
        "a mystical mage casting spells",
        "a cyberpunk ninja in neon city",
        "a friendly village merchant",
        "an alien creature from distant planet",
    ],
    "environment": [
        "a serene mountain landscape at sunset",
        "a bustling medieval marketplace",
        "a futuristic cityscape with flying cars",
        "an enchanted forest with glowing mushrooms",
        "an underwater coral reef civilization",
    ],
    "object": [
        "an ancient magical sword with runes",
        "a steampunk mechanical clockwork device",
        "a glowing crystal with mystical powers",
        "a futuristic weapon with energy core",
        "an ornate treasure chest filled with gems",
    ],
    "texture": [
        "weathered stone wall with moss",
        "polished metal with scratches",
        "fabric with intricate patterns",
        "wood grain with natural imperfections",
        "alien surface with bio-luminescent patterns",
    ],
}

DEFAULT_SUGGESTIONS = [
    "a beautiful digital artwork",
    "concept art with professional quality",
    "detailed illustration with vibrant colors",
    "artistic design with modern style",
    "creative visual with unique composition",
]

_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)
_LIST_MARKER = re.compile(r'^["\-\*\d\.]+\s*')
_TRAILING_QUOTES = re.compile(r'"+$')


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class EnhancePromptRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=settings.MAX_PROMPT_LENGTH)


class EnhancePromptResponse(BaseModel):
    original_prompt: str
    enhanced_prompt: str
    enhanced: bool


class SuggestionsRequest(BaseModel):
    asset_type: str | None = Field(None, max_length=50)
    style: str | None = Field(None, max_length=100)
    theme: str | None = Field(None, max_length=100)
    count: int = Field(5, ge=1, le=10)


class SuggestionsResponse(BaseModel):
    suggestions: list[str]
    source: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)
    context: str | None = Field(None, max_length=50)


class ChatResponse(BaseModel):
    response: str
    context: str | None = None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_suggestions(raw: str, count: int) -> list[str]:
    """Extract suggestion strings from a model reply.

    A JSON array anywhere in the reply wins. Otherwise each line is treated
    as a candidate with list markers and quotes stripped.
    """
    match = _JSON_ARRAY.search(raw)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()][:count]

    suggestions: list[str] = []
    for line in raw.splitlines():
        line = line.strip()
        if not line or line.startswith("[") or line.startswith("]"):
            continue
        line = _TRAILING_QUOTES.sub("", _LIST_MARKER.sub("", line))
        if len(line) > 5:
            suggestions.append(line)
    return suggestions[:count]


def fallback_suggestions(asset_type: str | None, count: int = 5) -> list[str]:
    return FALLBACK_SUGGESTIONS.get((asset_type or "").lower(), DEFAULT_SUGGESTIONS)[:count]


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def enhance_prompt(gemini: GeminiClient, prompt: str) -> EnhancePromptResponse:
    """Rewrite *prompt* for image generation, or hand it back unchanged."""
    try:
        enhanced = await gemini.generate_text(ENHANCE_TEMPLATE.format(prompt=prompt))
    except GeminiError as exc:
        log.warning("prompt_enhance_failed", error=str(exc))
        return EnhancePromptResponse(original_prompt=prompt, enhanced_prompt=prompt, enhanced=False)

    enhanced = enhanced.strip().strip('"')
    return EnhancePromptResponse(original_prompt=prompt, enhanced_prompt=enhanced, enhanced=True)


async def suggest_prompts(gemini: GeminiClient, request: SuggestionsRequest) -> SuggestionsResponse:
    if not request.asset_type:
        return SuggestionsResponse(
            suggestions=fallback_suggestions(None, request.count), source="fallback",
        )

    prompt = SUGGESTIONS_TEMPLATE.format(
        count=request.count,
        asset_type=request.asset_type,
        style=request.style or "any style",
        theme=request.theme or "any theme",
    )
    try:
        raw = await gemini.generate_text(
            prompt, TextOptions(temperature=0.8, max_output_tokens=512),
        )
    except GeminiError as exc:
        log.warning("prompt_suggestions_failed", error=str(exc), asset_type=request.asset_type)
        raw = ""

    suggestions = parse_suggestions(raw, request.count) if raw else []
    if not suggestions:
        return SuggestionsResponse(
            suggestions=fallback_suggestions(request.asset_type, request.count),
            source="fallback",
        )
    return SuggestionsResponse(suggestions=suggestions, source="model")


async def chat(gemini: GeminiClient, request: ChatRequest) -> ChatResponse:
    template = CHAT_TEMPLATES.get(request.context or "", DEFAULT_CHAT_TEMPLATE)
    try:
        reply = await gemini.generate_text(
            template.format(message=request.message),
            TextOptions(temperature=0.7, max_output_tokens=512),
        )
    except GeminiError as exc:
        log.warning("chat_failed", error=str(exc))
        raise HTTPException(status_code=502, detail="Assistant is unavailable right now")
    return ChatResponse(response=reply, context=request.context)
