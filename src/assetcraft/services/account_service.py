"""Account data export and account deletion."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from supabase import Client

from assetcraft.integrations.supabase_client import AssetStorage, StorageError
from assetcraft.models import UserProfile
from assetcraft.services.audit_logger import audit
from assetcraft.services.auth_service import ProfileResponse, build_profile_response
from assetcraft.services.gallery_service import AssetResponse, all_user_assets, storage_paths
from assetcraft.services.gemstone_service import GemstoneTransactionResponse, list_transactions
from assetcraft.services.generation_service import GenerationHistoryItem, list_history

log = structlog.get_logger()


class AccountExport(BaseModel):
    exported_at: datetime
    profile: ProfileResponse
    assets: list[AssetResponse]
    generations: list[GenerationHistoryItem]
    transactions: list[GemstoneTransactionResponse]


async def export_account(db: AsyncSession, user: UserProfile) -> AccountExport:
    """Everything stored about the user: profile, library, history, ledger."""
    return AccountExport(
        exported_at=datetime.now(timezone.utc),
        profile=build_profile_response(user),
        assets=await all_user_assets(db, user.id),
        generations=await list_history(db, user.id),
        transactions=await list_transactions(db, user.id, limit=None),
    )


async def delete_account(
    db: AsyncSession,
    admin: Client,
    storage: AssetStorage,
    user: UserProfile,
) -> None:
    """Remove the auth user, every row it owns, and its stored images.

    The auth user goes first; if Supabase refuses, nothing is deleted and
    the caller gets a 502. Rows cascade from ``user_profiles``. Storage
    cleanup runs last and only logs on failure.
    """
    assets = await all_user_assets(db, user.id)

    try:
        await run_in_threadpool(admin.auth.admin.delete_user, str(user.id))
    except Exception as exc:
        log.error("account_auth_delete_failed", user_id=str(user.id), error=str(exc))
        raise HTTPException(status_code=502, detail="Could not delete the account")

    await db.execute(
        text("DELETE FROM user_profiles WHERE id = :user_id"),
        {"user_id": user.id},
    )
    await db.commit()
    audit.log_account_deleted(user.id, user.gemstone_count, len(assets))

    paths = [path for asset in assets for path in storage_paths(user.id, asset.id)]
    if not paths:
        return
    try:
        await storage.remove(paths)
    except StorageError as exc:
        log.warning(
            "account_storage_cleanup_failed",
            user_id=str(user.id),
            objects=len(paths),
            error=str(exc),
        )
