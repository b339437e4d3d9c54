"""Store endpoints -- package catalogue, purchase reports, and restores."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from assetcraft.api.dependencies import get_current_user
from assetcraft.database import get_db
from assetcraft.integrations.revenuecat_client import RevenueCatClient, get_revenuecat_client
from assetcraft.models import UserProfile
from assetcraft.services.store_service import (
    PackageResponse,
    PurchaseRequest,
    PurchaseResponse,
    RestoreResponse,
    get_packages,
    record_purchase,
    restore_purchases,
)

router = APIRouter(prefix="/api/v1/store", tags=["store"])


@router.get("/packages", response_model=list[PackageResponse])
async def list_packages(db: AsyncSession = Depends(get_db)):
    """Return all active packages available for purchase."""
    return await get_packages(db)


@router.post("/purchases", response_model=PurchaseResponse)
async def report_purchase(
    body: PurchaseRequest,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    revenuecat: RevenueCatClient = Depends(get_revenuecat_client),
):
    """Verify a completed in-app purchase and deliver it."""
    return await record_purchase(db, revenuecat, current_user, body)


@router.post("/restore", response_model=RestoreResponse)
async def restore(
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    revenuecat: RevenueCatClient = Depends(get_revenuecat_client),
):
    return await restore_purchases(db, revenuecat, current_user)
