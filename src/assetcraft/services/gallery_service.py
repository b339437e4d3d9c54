"""Gallery service -- saving generated images and browsing personal/community assets."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal

import structlog
from fastapi import HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from assetcraft.config import settings
from assetcraft.integrations.supabase_client import AssetStorage, StorageError
from assetcraft.services.generation_service import ASPECT_RATIOS
from assetcraft.services.image_processing import (
    ImageValidationError,
    create_thumbnail,
    decode_base64_image,
    to_png_bytes,
)

log = structlog.get_logger()

GalleryFilter = Literal["all", "favorites", "public", "private"]
GallerySort = Literal["recent", "oldest", "favorites"]

_FILTER_CLAUSES: dict[str, str] = {
    "all": "",
    "favorites": " AND is_favorite",
    "public": " AND is_public",
    "private": " AND NOT is_public",
}

_SORT_CLAUSES: dict[str, str] = {
    "recent": "created_at DESC",
    "oldest": "created_at ASC",
    "favorites": "is_favorite DESC, created_at DESC",
}

_ASSET_COLUMNS = (
    "id, user_id, prompt, image_url, thumbnail_url, aspect_ratio, asset_type, "
    "style, is_favorite, is_public, created_at"
)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class SaveAssetRequest(BaseModel):
    image_base64: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1, max_length=2000)
    asset_type: str | None = Field(None, max_length=50)
    style: str | None = Field(None, max_length=100)
    aspect_ratio: str = "1:1"
    is_public: bool = False


class AssetResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    prompt: str
    image_url: str
    thumbnail_url: str | None = None
    aspect_ratio: str
    asset_type: str | None = None
    style: str | None = None
    is_favorite: bool
    is_public: bool
    created_at: datetime


class GalleryQuery(BaseModel):
    search: str | None = Field(None, max_length=200)
    filter: GalleryFilter = "all"
    sort: GallerySort = "recent"
    limit: int = Field(100, ge=1, le=200)
    offset: int = Field(0, ge=0)


def _to_asset(row) -> AssetResponse:
    return AssetResponse(
        id=row[0],
        user_id=row[1],
        prompt=row[2],
        image_url=row[3],
        thumbnail_url=row[4],
        aspect_ratio=row[5],
        asset_type=row[6],
        style=row[7],
        is_favorite=row[8],
        is_public=row[9],
        created_at=row[10],
    )


# ---------------------------------------------------------------------------
# Query building
# ---------------------------------------------------------------------------

def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_gallery_query(base_where: str, query: GalleryQuery) -> tuple[str, dict]:
    """Turn search/filter/sort selections into a SELECT over user_assets.

    Search is a case-insensitive substring match on the prompt.
    """
    params: dict = {"limit": query.limit, "offset": query.offset}
    where = base_where + _FILTER_CLAUSES[query.filter]
    if query.search and query.search.strip():
        where += " AND prompt ILIKE :search"
        params["search"] = f"%{_escape_like(query.search.strip())}%"

    sql = (
        f"SELECT {_ASSET_COLUMNS} FROM user_assets WHERE {where} "
        f"ORDER BY {_SORT_CLAUSES[query.sort]} LIMIT :limit OFFSET :offset"
    )
    return sql, params


def storage_paths(user_id: uuid.UUID, asset_id: uuid.UUID) -> tuple[str, str]:
    return f"{user_id}/{asset_id}.png", f"{user_id}/{asset_id}_thumb.png"


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def list_user_assets(
    db: AsyncSession, user_id: uuid.UUID, query: GalleryQuery,
) -> list[AssetResponse]:
    sql, params = build_gallery_query("user_id = :user_id", query)
    params["user_id"] = user_id
    result = await db.execute(text(sql), params)
    return [_to_asset(row) for row in result.fetchall()]


async def list_community_assets(db: AsyncSession, query: GalleryQuery) -> list[AssetResponse]:
    """Public assets from every user, under the same view rules."""
    sql, params = build_gallery_query("is_public", query)
    result = await db.execute(text(sql), params)
    return [_to_asset(row) for row in result.fetchall()]


async def all_user_assets(db: AsyncSession, user_id: uuid.UUID) -> list[AssetResponse]:
    """Every asset the user owns, newest first, without paging."""
    result = await db.execute(
        text(
            f"SELECT {_ASSET_COLUMNS} FROM user_assets WHERE user_id = :user_id "
            "ORDER BY created_at DESC"
        ),
        {"user_id": user_id},
    )
    return [_to_asset(row) for row in result.fetchall()]


async def save_asset(
    db: AsyncSession,
    storage: AssetStorage,
    user_id: uuid.UUID,
    request: SaveAssetRequest,
) -> AssetResponse:
    """Validate, upload, and record an image in the user's library.

    Raises HTTPException(400) for bad image data or aspect ratio, 409 when
    the library is full, and 502 when storage rejects the upload.
    """
    if request.aspect_ratio not in ASPECT_RATIOS:
        raise HTTPException(status_code=400, detail="Unsupported aspect ratio")

    count_result = await db.execute(
        text("SELECT count(*) FROM user_assets WHERE user_id = :user_id"),
        {"user_id": user_id},
    )
    if count_result.scalar_one() >= settings.MAX_ASSETS_PER_USER:
        raise HTTPException(
            status_code=409,
            detail=f"Asset limit of {settings.MAX_ASSETS_PER_USER} reached",
        )

    try:
        raw = decode_base64_image(request.image_base64, settings.MAX_UPLOAD_MB * 1024 * 1024)
        png = to_png_bytes(raw)
        thumb = create_thumbnail(raw)
    except ImageValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    asset_id = uuid.uuid4()
    image_path, thumb_path = storage_paths(user_id, asset_id)
    try:
        image_url = await storage.upload_png(image_path, png)
        thumbnail_url = await storage.upload_png(thumb_path, thumb)
    except StorageError as exc:
        log.error("asset_upload_failed", user_id=str(user_id), error=str(exc))
        raise HTTPException(status_code=502, detail="Could not store the image")

    now = datetime.now(timezone.utc)
    result = await db.execute(
        text(
            "INSERT INTO user_assets "
            "(id, user_id, prompt, image_url, thumbnail_url, storage_path, aspect_ratio, "
            "asset_type, style, is_favorite, is_public, created_at, updated_at) "
            "VALUES (:id, :user_id, :prompt, :image_url, :thumbnail_url, :storage_path, "
            ":aspect_ratio, :asset_type, :style, false, :is_public, :now, :now) "
            f"RETURNING {_ASSET_COLUMNS}"
        ),
        {
            "id": asset_id,
            "user_id": user_id,
            "prompt": request.prompt,
            "image_url": image_url,
            "thumbnail_url": thumbnail_url,
            "storage_path": image_path,
            "aspect_ratio": request.aspect_ratio,
            "asset_type": request.asset_type,
            "style": request.style,
            "is_public": request.is_public,
            "now": now,
        },
    )
    log.info("asset_saved", user_id=str(user_id), asset_id=str(asset_id))
    return _to_asset(result.fetchone())


async def _toggle(db: AsyncSession, user_id: uuid.UUID, asset_id: uuid.UUID, column: str) -> AssetResponse:
    result = await db.execute(
        text(
            f"UPDATE user_assets SET {column} = NOT {column}, updated_at = now() "
            "WHERE id = :asset_id AND user_id = :user_id "
            f"RETURNING {_ASSET_COLUMNS}"
        ),
        {"asset_id": asset_id, "user_id": user_id},
    )
    row = result.fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail="Asset not found")
    return _to_asset(row)


async def toggle_favorite(db: AsyncSession, user_id: uuid.UUID, asset_id: uuid.UUID) -> AssetResponse:
    return await _toggle(db, user_id, asset_id, "is_favorite")


async def toggle_public(db: AsyncSession, user_id: uuid.UUID, asset_id: uuid.UUID) -> AssetResponse:
    return await _toggle(db, user_id, asset_id, "is_public")


async def delete_asset(
    db: AsyncSession,
    storage: AssetStorage,
    user_id: uuid.UUID,
    asset_id: uuid.UUID,
) -> None:
    """Delete the row, then its stored objects.

    A storage failure after the row is gone is logged; the objects are
    orphaned rather than resurrecting the asset.
    """
    result = await db.execute(
        text(
            "DELETE FROM user_assets WHERE id = :asset_id AND user_id = :user_id "
            "RETURNING id"
        ),
        {"asset_id": asset_id, "user_id": user_id},
    )
    if result.fetchone() is None:
        raise HTTPException(status_code=404, detail="Asset not found")

    try:
        await storage.remove(list(storage_paths(user_id, asset_id)))
    except StorageError as exc:
        log.warning("asset_storage_cleanup_failed", asset_id=str(asset_id), error=str(exc))
