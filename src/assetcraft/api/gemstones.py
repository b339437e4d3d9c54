"""Gemstone balance, daily grant, and ledger endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from assetcraft.api.dependencies import get_current_user
from assetcraft.database import get_db
from assetcraft.models import UserProfile
from assetcraft.services.gemstone_service import (
    DailyGrantResponse,
    GemstoneBalanceResponse,
    GemstoneTransactionResponse,
    claim_daily_grant,
    get_balance,
    list_transactions,
)

router = APIRouter(prefix="/api/v1/gemstones", tags=["gemstones"])


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("", response_model=GemstoneBalanceResponse)
async def read_balance(
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Return the authenticated user's current gemstone balance."""
    balance = await get_balance(db, current_user.id)
    return GemstoneBalanceResponse(
        user_id=current_user.id, gemstone_count=balance, is_pro=current_user.is_pro,
    )


@router.post("/daily-grant", response_model=DailyGrantResponse)
async def daily_grant(
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Claim today's free gemstones. Repeat claims on the same day grant nothing."""
    return await claim_daily_grant(db, current_user.id)


@router.get("/transactions", response_model=list[GemstoneTransactionResponse])
async def read_transactions(
    limit: int = Query(50, ge=1, le=100),
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_transactions(db, current_user.id, limit)
