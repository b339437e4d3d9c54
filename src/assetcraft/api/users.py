"""Profile endpoints -- /api/v1/users/me."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from supabase import Client

from assetcraft.api.dependencies import get_asset_storage, get_current_user, get_supabase_admin
from assetcraft.database import get_db
from assetcraft.integrations.supabase_client import AssetStorage
from assetcraft.models import UserProfile
from assetcraft.services.account_service import AccountExport, delete_account, export_account
from assetcraft.services.auth_service import (
    ProfileResponse,
    ProfileUpdateRequest,
    build_profile_response,
    update_profile,
)

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("/me", response_model=ProfileResponse)
async def read_me(current_user: UserProfile = Depends(get_current_user)):
    return build_profile_response(current_user)


@router.patch("/me", response_model=ProfileResponse)
async def update_me(
    body: ProfileUpdateRequest,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update the caller's display name and/or avatar."""
    profile = await update_profile(db, current_user, body)
    return build_profile_response(profile)


@router.get("/me/export", response_model=AccountExport)
async def export_me(
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Download the caller's profile, assets, history, and ledger as JSON."""
    return await export_account(db, current_user)


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
async def delete_me(
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    admin: Client = Depends(get_supabase_admin),
    storage: AssetStorage = Depends(get_asset_storage),
):
    """Permanently delete the caller's account and everything it owns."""
    await delete_account(db, admin, storage, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
