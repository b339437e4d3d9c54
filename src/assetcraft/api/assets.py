"""Gallery endpoints -- the caller's library and the public community feed."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from assetcraft.api.dependencies import get_asset_storage, get_current_user
from assetcraft.database import get_db
from assetcraft.integrations.supabase_client import AssetStorage
from assetcraft.models import UserProfile
from assetcraft.services.gallery_service import (
    AssetResponse,
    GalleryFilter,
    GalleryQuery,
    GallerySort,
    SaveAssetRequest,
    delete_asset,
    list_community_assets,
    list_user_assets,
    save_asset,
    toggle_favorite,
    toggle_public,
)

router = APIRouter(prefix="/api/v1/assets", tags=["assets"])


def gallery_query(
    search: str | None = Query(None, max_length=200),
    filter: GalleryFilter = Query("all"),
    sort: GallerySort = Query("recent"),
    limit: int = Query(100, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> GalleryQuery:
    return GalleryQuery(search=search, filter=filter, sort=sort, limit=limit, offset=offset)


@router.post("", response_model=AssetResponse, status_code=status.HTTP_201_CREATED)
async def create_asset(
    body: SaveAssetRequest,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: AssetStorage = Depends(get_asset_storage),
):
    """Save a generated image to the caller's library."""
    return await save_asset(db, storage, current_user.id, body)


@router.get("", response_model=list[AssetResponse])
async def list_assets(
    query: GalleryQuery = Depends(gallery_query),
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_user_assets(db, current_user.id, query)


@router.get("/community", response_model=list[AssetResponse])
async def list_community(
    query: GalleryQuery = Depends(gallery_query),
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Public assets shared by all users."""
    return await list_community_assets(db, query)


@router.post("/{asset_id}/favorite", response_model=AssetResponse)
async def favorite(
    asset_id: uuid.UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await toggle_favorite(db, current_user.id, asset_id)


@router.post("/{asset_id}/public", response_model=AssetResponse)
async def publish(
    asset_id: uuid.UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await toggle_public(db, current_user.id, asset_id)


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_asset(
    asset_id: uuid.UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: AssetStorage = Depends(get_asset_storage),
):
    await delete_asset(db, storage, current_user.id, asset_id)
