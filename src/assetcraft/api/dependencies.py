"""Shared FastAPI dependencies for authenticated routes and shared clients."""

from __future__ import annotations

from uuid import UUID

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from supabase import Client

from assetcraft.database import get_db
from assetcraft.integrations.supabase_client import (
    AssetStorage,
    SupabaseClient,
    SupabaseConfigError,
)
from assetcraft.models import UserProfile
from assetcraft.services.auth_service import ensure_profile, verify_access_token

log = structlog.get_logger()

# auto_error=False so a missing header is reported as 401, not 403
_bearer_scheme = HTTPBearer(auto_error=False)


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    token: str = Depends(get_bearer_token),
) -> UserProfile:
    """Validate the Supabase access token and return the caller's profile.

    The profile (with its signup bonus) is created on the first
    authenticated request. Raises HTTPException(401) if the token is
    missing, invalid, or expired.
    """
    payload = verify_access_token(token)

    user_id = UUID(payload["sub"])
    request.state.user_id = str(user_id)

    metadata = payload.get("user_metadata") or {}
    return await ensure_profile(
        db,
        user_id,
        email=payload.get("email"),
        display_name=metadata.get("display_name"),
    )


def get_redis(request: Request):
    """Return the Redis connection opened in the app lifespan."""
    return request.app.state.redis


def get_supabase_admin() -> Client:
    """Service-role Supabase client. 503 when the key is not configured."""
    try:
        return SupabaseClient.get_service_client()
    except SupabaseConfigError as exc:
        log.error("supabase_service_client_unavailable", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase service access is not configured",
        ) from exc


def get_asset_storage(client: Client = Depends(get_supabase_admin)) -> AssetStorage:
    return AssetStorage(client)
