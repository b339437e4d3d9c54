"""Tests for password reset, account export, and account deletion.

Run with:
    pytest tests/test_account.py -v
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient

from assetcraft.api.dependencies import get_asset_storage, get_current_user, get_supabase_admin
from assetcraft.config import settings
from assetcraft.database import get_db
from assetcraft.integrations.supabase_client import AssetStorage, StorageError, get_supabase
from assetcraft.main import app
from assetcraft.models import UserProfile
from assetcraft.services.account_service import delete_account, export_account
from assetcraft.services.auth_service import PasswordResetRequest, request_password_reset


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
ASSET_ID = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
CREATED = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _make_profile(**overrides) -> UserProfile:
    values = dict(
        id=USER_ID,
        email="player@example.com",
        display_name="player",
        avatar_url=None,
        gemstone_count=12,
        subscription_status="free",
        subscription_end_date=None,
        total_generations=4,
        last_daily_grant_date=None,
        created_at=CREATED,
        updated_at=CREATED,
    )
    values.update(overrides)
    return UserProfile(**values)


def _asset_row(asset_id=ASSET_ID):
    return (
        asset_id, USER_ID, "a brass key", "https://cdn.example/key.png",
        "https://cdn.example/key_thumb.png", "1:1", "object", None, False, False, CREATED,
    )


def _history_row():
    return (
        uuid.uuid4(), "a brass key", "object", None, None, "1:1", "succeeded",
        None, 1, 840, CREATED,
    )


def _result(rows=None):
    proxy = MagicMock()
    proxy.fetchall.return_value = rows or []
    proxy.fetchone.return_value = None
    return proxy


def _mock_admin():
    admin = MagicMock()
    admin.auth.admin.delete_user.return_value = None
    return admin


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

def test_password_reset_request_normalises_email():
    assert PasswordResetRequest(email=" Player@Example.COM").email == "player@example.com"


@pytest.mark.asyncio
async def test_password_reset_sends_redirect_url():
    supabase = MagicMock()

    with patch.object(settings, "PASSWORD_RESET_REDIRECT_URL", "assetcraft://reset"):
        await request_password_reset(supabase, "player@example.com")

    supabase.auth.reset_password_for_email.assert_called_once_with(
        "player@example.com", {"redirect_to": "assetcraft://reset"}
    )


@pytest.mark.asyncio
async def test_password_reset_failure_is_not_reported():
    supabase = MagicMock()
    supabase.auth.reset_password_for_email.side_effect = RuntimeError("User not found")

    await request_password_reset(supabase, "nobody@example.com")


@pytest.mark.asyncio
async def test_password_reset_endpoint_replies_the_same_either_way():
    supabase = MagicMock()
    supabase.auth.reset_password_for_email.side_effect = RuntimeError("User not found")
    app.dependency_overrides[get_supabase] = lambda: supabase

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post(
                "/api/v1/auth/password-reset", json={"email": "nobody@example.com"}
            )

        assert response.status_code == 202
        assert "reset link" in response.json()["detail"]
    finally:
        app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_export_collects_profile_assets_history_and_ledger():
    db = AsyncMock()
    db.execute.side_effect = [
        _result([_asset_row()]),
        _result([_history_row()]),
        _result([(7, 10, "signup_bonus", None, CREATED), (8, -1, "spend", "gen-1", CREATED)]),
    ]

    export = await export_account(db, _make_profile())

    assert export.profile.gemstone_count == 12
    assert [a.id for a in export.assets] == [ASSET_ID]
    assert export.generations[0].status == "succeeded"
    assert [t.txn_type for t in export.transactions] == ["signup_bonus", "spend"]
    ledger_params = db.execute.call_args_list[2].args[1]
    assert ledger_params["limit"] is None


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_account_removes_auth_user_rows_and_objects():
    db = AsyncMock()
    db.execute.side_effect = [_result([_asset_row()]), _result()]
    admin = _mock_admin()
    storage = AsyncMock(spec=AssetStorage)

    await delete_account(db, admin, storage, _make_profile())

    admin.auth.admin.delete_user.assert_called_once_with(str(USER_ID))
    delete_sql = str(db.execute.call_args_list[1].args[0])
    assert "DELETE FROM user_profiles" in delete_sql
    db.commit.assert_awaited_once()
    storage.remove.assert_awaited_once_with(
        [f"{USER_ID}/{ASSET_ID}.png", f"{USER_ID}/{ASSET_ID}_thumb.png"]
    )


@pytest.mark.asyncio
async def test_delete_account_keeps_everything_when_auth_delete_fails():
    db = AsyncMock()
    db.execute.side_effect = [_result([_asset_row()])]
    admin = _mock_admin()
    admin.auth.admin.delete_user.side_effect = RuntimeError("service unavailable")
    storage = AsyncMock(spec=AssetStorage)

    with pytest.raises(HTTPException) as exc_info:
        await delete_account(db, admin, storage, _make_profile())

    assert exc_info.value.status_code == 502
    assert db.execute.await_count == 1
    db.commit.assert_not_awaited()
    storage.remove.assert_not_awaited()


@pytest.mark.asyncio
async def test_delete_account_storage_failure_is_logged_only():
    db = AsyncMock()
    db.execute.side_effect = [_result([_asset_row()]), _result()]
    storage = AsyncMock(spec=AssetStorage)
    storage.remove.side_effect = StorageError("bucket offline")

    await delete_account(db, _mock_admin(), storage, _make_profile())

    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_delete_account_without_assets_skips_storage():
    db = AsyncMock()
    db.execute.side_effect = [_result([]), _result()]
    storage = AsyncMock(spec=AssetStorage)

    await delete_account(db, _mock_admin(), storage, _make_profile())

    storage.remove.assert_not_awaited()


@pytest.mark.asyncio
async def test_delete_me_endpoint_returns_204():
    db = AsyncMock()
    db.execute.side_effect = [_result([]), _result()]
    admin = _mock_admin()

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: _make_profile()
    app.dependency_overrides[get_supabase_admin] = lambda: admin
    app.dependency_overrides[get_asset_storage] = lambda: AsyncMock(spec=AssetStorage)

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.delete("/api/v1/users/me")

        assert response.status_code == 204
        admin.auth.admin.delete_user.assert_called_once_with(str(USER_ID))
    finally:
        app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_export_endpoint_returns_json():
    db = AsyncMock()
    db.execute.side_effect = [_result([_asset_row()]), _result([]), _result([])]

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: _make_profile()

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/v1/users/me/export")

        assert response.status_code == 200
        body = response.json()
        assert body["profile"]["id"] == str(USER_ID)
        assert body["assets"][0]["id"] == str(ASSET_ID)
        assert body["transactions"] == []
    finally:
        app.dependency_overrides.clear()
