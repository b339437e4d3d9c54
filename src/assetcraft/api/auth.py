"""Authentication API router -- /api/v1/auth/*."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from supabase import Client

from assetcraft.api.dependencies import get_bearer_token, get_current_user
from assetcraft.integrations.supabase_client import get_supabase
from assetcraft.models import UserProfile
from assetcraft.services.auth_service import (
    LoginRequest,
    PasswordResetRequest,
    RefreshRequest,
    SignupRequest,
    SignupResponse,
    TokenResponse,
    login as login_service,
    logout as logout_service,
    refresh_session,
    request_password_reset,
    signup as signup_service,
)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
)
async def signup(
    request: SignupRequest,
    supabase: Client = Depends(get_supabase),
) -> SignupResponse:
    """Register a new account."""
    return await signup_service(supabase, request)


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    supabase: Client = Depends(get_supabase),
) -> TokenResponse:
    """Authenticate and return a Supabase session."""
    return await login_service(supabase, request)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    request: RefreshRequest,
    supabase: Client = Depends(get_supabase),
) -> TokenResponse:
    return await refresh_session(supabase, request.refresh_token)


@router.post("/logout", status_code=status.HTTP_200_OK)
async def logout(
    token: str = Depends(get_bearer_token),
    current_user: UserProfile = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    """Log out by revoking the user's Supabase sessions."""
    await logout_service(supabase, token)
    return {"detail": "Successfully logged out"}


@router.post("/password-reset", status_code=status.HTTP_202_ACCEPTED)
async def password_reset(
    request: PasswordResetRequest,
    supabase: Client = Depends(get_supabase),
) -> dict:
    """Send a reset link; the reply is the same whether or not the email exists."""
    await request_password_reset(supabase, request.email)
    return {"detail": "If the email is registered, a reset link has been sent"}
