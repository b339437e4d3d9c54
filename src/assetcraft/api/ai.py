"""Prompt assistance endpoints backed by Gemini."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from assetcraft.api.dependencies import get_current_user
from assetcraft.integrations.gemini_client import GeminiClient, get_gemini_client
from assetcraft.models import UserProfile
from assetcraft.services.ai_assist_service import (
    ChatRequest,
    ChatResponse,
    EnhancePromptRequest,
    EnhancePromptResponse,
    SuggestionsRequest,
    SuggestionsResponse,
    chat as chat_service,
    enhance_prompt as enhance_prompt_service,
    suggest_prompts,
)

router = APIRouter(prefix="/api/v1/ai", tags=["ai"])


@router.post("/enhance-prompt", response_model=EnhancePromptResponse)
async def enhance_prompt(
    body: EnhancePromptRequest,
    current_user: UserProfile = Depends(get_current_user),
    gemini: GeminiClient = Depends(get_gemini_client),
):
    return await enhance_prompt_service(gemini, body.prompt)


@router.post("/suggestions", response_model=SuggestionsResponse)
async def suggestions(
    body: SuggestionsRequest,
    current_user: UserProfile = Depends(get_current_user),
    gemini: GeminiClient = Depends(get_gemini_client),
):
    return await suggest_prompts(gemini, body)


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    current_user: UserProfile = Depends(get_current_user),
    gemini: GeminiClient = Depends(get_gemini_client),
):
    return await chat_service(gemini, body)
