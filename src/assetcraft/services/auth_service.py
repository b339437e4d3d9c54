"""Authentication service: Supabase sign-up/sign-in, token verification, profiles."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone

import structlog
from fastapi import HTTPException, status
from fastapi.concurrency import run_in_threadpool
from jose import JWTError, jwt
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession
from supabase import Client

from assetcraft.config import settings
from assetcraft.models import UserProfile
from assetcraft.services.audit_logger import audit
from assetcraft.services.gemstone_service import (
    can_claim_daily_grant,
    local_today,
    record_transaction,
)

log = structlog.get_logger()

_SUPABASE_AUDIENCE = "authenticated"


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


_EMAIL_PATTERN = r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$"


def _normalise_email(v: str) -> str:
    if not re.match(_EMAIL_PATTERN, v.strip()):
        raise ValueError("Invalid email address")
    return v.lower().strip()


class SignupRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=6)
    display_name: str | None = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalise_email(v)


class SignupResponse(BaseModel):
    user_id: uuid.UUID
    email: str


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class PasswordResetRequest(BaseModel):
    email: str = Field(..., max_length=320)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalise_email(v)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int | None = None
    user_id: uuid.UUID


class ProfileResponse(BaseModel):
    id: uuid.UUID
    email: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    gemstone_count: int
    subscription_status: str
    subscription_end_date: datetime | None = None
    is_pro: bool
    total_generations: int
    can_claim_daily_grant: bool
    created_at: datetime


class ProfileUpdateRequest(BaseModel):
    display_name: str | None = Field(None, min_length=1, max_length=100)
    avatar_url: str | None = Field(None, max_length=2048)


# ---------------------------------------------------------------------------
# Supabase Auth
# ---------------------------------------------------------------------------


async def signup(supabase: Client, request: SignupRequest) -> SignupResponse:
    """Register a new account with Supabase Auth. Raises 409 if already registered."""
    options = {"data": {"display_name": request.display_name}} if request.display_name else {}
    try:
        response = await run_in_threadpool(
            supabase.auth.sign_up,
            {"email": request.email, "password": request.password, "options": options},
        )
    except Exception as exc:
        message = str(exc).lower()
        if "already registered" in message or "already exists" in message:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Email already registered",
            ) from exc
        log.warning("signup_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Sign-up failed",
        ) from exc

    if response.user is None:
        raise HTTPException(status_code=400, detail="Sign-up failed")

    log.info("user_signed_up", user_id=str(response.user.id))
    return SignupResponse(user_id=response.user.id, email=response.user.email or request.email)


def _session_to_tokens(response) -> TokenResponse:
    session = response.session
    return TokenResponse(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_in=session.expires_in,
        user_id=response.user.id,
    )


async def login(supabase: Client, request: LoginRequest) -> TokenResponse:
    """Exchange email and password for a Supabase session."""
    try:
        response = await run_in_threadpool(
            supabase.auth.sign_in_with_password,
            {"email": request.email.lower().strip(), "password": request.password},
        )
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        ) from exc

    if response.user is None or response.session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    return _session_to_tokens(response)


async def refresh_session(supabase: Client, refresh_token: str) -> TokenResponse:
    """Trade a refresh token for a new session."""
    try:
        response = await run_in_threadpool(supabase.auth.refresh_session, refresh_token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        ) from exc

    if response.user is None or response.session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )
    return _session_to_tokens(response)


async def logout(supabase: Client, access_token: str) -> None:
    """Revoke every session of the token's user. Failures are only logged."""
    try:
        await run_in_threadpool(supabase.auth.admin.sign_out, access_token)
    except Exception as exc:
        log.warning("logout_failed", error=str(exc))


async def request_password_reset(supabase: Client, email: str) -> None:
    """Ask Supabase to email a password-reset link.

    The outcome is never reported back, so the endpoint cannot be used to
    discover which emails are registered.
    """
    options = {}
    if settings.PASSWORD_RESET_REDIRECT_URL:
        options["redirect_to"] = settings.PASSWORD_RESET_REDIRECT_URL
    try:
        await run_in_threadpool(supabase.auth.reset_password_for_email, email, options)
    except Exception as exc:
        log.warning("password_reset_failed", error=str(exc))
        return
    log.info("password_reset_requested")


# ---------------------------------------------------------------------------
# Token verification
# ---------------------------------------------------------------------------


def verify_access_token(token: str) -> dict:
    """Decode and validate a Supabase access token.

    Supabase signs access tokens with the project's JWT secret (HS256) and
    sets ``aud`` to ``authenticated``; ``sub`` is the auth user id.

    Raises:
        HTTPException(401) if the token is invalid, expired, or has no subject.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=_SUPABASE_AUDIENCE,
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    subject = payload.get("sub")
    try:
        uuid.UUID(str(subject))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
        )
    return payload


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


async def _load_profile(db: AsyncSession, user_id: uuid.UUID) -> UserProfile | None:
    result = await db.execute(select(UserProfile).where(UserProfile.id == user_id))
    return result.scalar_one_or_none()


async def ensure_profile(
    db: AsyncSession,
    user_id: uuid.UUID,
    email: str | None = None,
    display_name: str | None = None,
) -> UserProfile:
    """Return the user's profile, creating it with the signup bonus if missing.

    The insert is ``ON CONFLICT DO NOTHING``, so a profile is created and
    credited exactly once even when first requests race each other.
    """
    profile = await _load_profile(db, user_id)
    if profile is not None:
        return profile

    bonus = settings.SIGNUP_GEMSTONES
    result = await db.execute(
        text(
            "INSERT INTO user_profiles (id, email, display_name, gemstone_count) "
            "VALUES (:user_id, :email, :display_name, :bonus) "
            "ON CONFLICT (id) DO NOTHING "
            "RETURNING id"
        ),
        {
            "user_id": user_id,
            "email": email,
            "display_name": display_name or (email.split("@")[0] if email else None),
            "bonus": bonus,
        },
    )
    if result.fetchone() is not None:
        await record_transaction(db, user_id, bonus, "signup_bonus", None)
        audit.log_gemstone_event(user_id, bonus, "signup_bonus", bonus)
        log.info("profile_created", user_id=str(user_id), gemstones=bonus)

    profile = await _load_profile(db, user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


def build_profile_response(profile: UserProfile) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        email=profile.email,
        display_name=profile.display_name,
        avatar_url=profile.avatar_url,
        gemstone_count=profile.gemstone_count,
        subscription_status=profile.subscription_status,
        subscription_end_date=profile.subscription_end_date,
        is_pro=profile.is_pro,
        total_generations=profile.total_generations,
        can_claim_daily_grant=can_claim_daily_grant(
            profile.last_daily_grant_date, local_today()
        ),
        created_at=profile.created_at,
    )


async def update_profile(
    db: AsyncSession,
    profile: UserProfile,
    request: ProfileUpdateRequest,
) -> UserProfile:
    """Apply the editable profile fields that were provided."""
    if request.display_name is not None:
        profile.display_name = request.display_name.strip()
    if request.avatar_url is not None:
        profile.avatar_url = request.avatar_url
    profile.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return profile
