"""Image generation endpoints.

Generation is synchronous: the response carries the image as base64. The
image is only persisted once the user saves it through /api/v1/assets.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from assetcraft.api.dependencies import get_current_user, get_redis
from assetcraft.database import get_db
from assetcraft.integrations.gemini_client import GeminiClient, get_gemini_client
from assetcraft.models import UserProfile
from assetcraft.services.generation_service import (
    GenerationHistoryItem,
    GenerationRequest,
    GenerationResponse,
    GenerationService,
    list_history,
)

router = APIRouter(prefix="/api/v1/generations", tags=["generations"])


def get_generation_service(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    gemini: GeminiClient = Depends(get_gemini_client),
) -> GenerationService:
    return GenerationService(db=db, redis=redis, model=gemini)


# ---------------------------------------------------------------------------
# POST /api/v1/generations
# ---------------------------------------------------------------------------

@router.post("", response_model=GenerationResponse)
async def create_generation(
    body: GenerationRequest,
    current_user: UserProfile = Depends(get_current_user),
    service: GenerationService = Depends(get_generation_service),
):
    """Generate one image, charging gemstones unless the user is pro."""
    return await service.generate(current_user, body)


# ---------------------------------------------------------------------------
# GET /api/v1/generations/history
# ---------------------------------------------------------------------------

@router.get("/history", response_model=list[GenerationHistoryItem])
async def read_history(
    limit: int = Query(50, ge=1, le=50),
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_history(db, current_user.id, limit)


# ---------------------------------------------------------------------------
# POST /api/v1/generations/{history_id}/regenerate
# ---------------------------------------------------------------------------

@router.post("/{history_id}/regenerate", response_model=GenerationResponse)
async def regenerate(
    history_id: uuid.UUID,
    current_user: UserProfile = Depends(get_current_user),
    service: GenerationService = Depends(get_generation_service),
):
    """Run a previous generation again with the same prompt and options."""
    return await service.regenerate(current_user, history_id)
