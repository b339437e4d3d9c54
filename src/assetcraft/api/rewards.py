"""Rewarded-ad endpoints: the AdMob SSV callback and the caller's cooldown status."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from assetcraft.api.dependencies import get_current_user
from assetcraft.database import get_db
from assetcraft.integrations.admob_ssv import AdMobVerifier, get_admob_verifier
from assetcraft.models import UserProfile
from assetcraft.services.ad_reward_service import (
    RewardCallbackResponse,
    RewardStatusResponse,
    get_reward_status,
    process_ssv_callback,
)

router = APIRouter(prefix="/api/v1/rewards", tags=["rewards"])


@router.get("/admob/ssv", response_model=RewardCallbackResponse)
async def admob_ssv(
    request: Request,
    db: AsyncSession = Depends(get_db),
    verifier: AdMobVerifier = Depends(get_admob_verifier),
):
    """AdMob server-side verification callback.

    The signature covers the raw query string, so it is passed through
    untouched rather than re-encoded from parsed parameters.
    """
    return await process_ssv_callback(
        db, verifier, request.url.query, dict(request.query_params),
    )


@router.get("/status", response_model=RewardStatusResponse)
async def reward_status(current_user: UserProfile = Depends(get_current_user)):
    return get_reward_status(current_user)
