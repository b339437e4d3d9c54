"""Tests for the gemstone ledger service and the gemstones API endpoints."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient

from assetcraft.config import settings
from assetcraft.models import UserProfile
from assetcraft.services.gemstone_service import (
    add_gemstones,
    can_claim_daily_grant,
    claim_daily_grant,
    get_balance,
    list_transactions,
    local_today,
    next_grant_at,
    refund_gemstones,
    spend_gemstones,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FAKE_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


def _make_mock_db():
    """Return an AsyncMock that behaves like an AsyncSession."""
    return AsyncMock()


def _row(*values):
    """Create a lightweight tuple-like object returned by fetchone/fetchall."""
    return values


def _result(row=None, rows=None):
    proxy = MagicMock()
    proxy.fetchone.return_value = row
    proxy.fetchall.return_value = rows or []
    return proxy


def _make_profile(**overrides) -> UserProfile:
    values = dict(
        id=FAKE_USER_ID,
        email="player@example.com",
        display_name="player",
        avatar_url=None,
        gemstone_count=12,
        subscription_status="free",
        subscription_end_date=None,
        total_generations=0,
        last_daily_grant_date=None,
        last_ad_reward_at=None,
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        updated_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return UserProfile(**values)


# ---------------------------------------------------------------------------
# spend_gemstones
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_spend_success_appends_ledger_row():
    """A spend updates the balance, then writes a negative ledger row."""
    mock_db = _make_mock_db()
    mock_db.execute.side_effect = [_result(_row(9)), _result()]

    new_balance = await spend_gemstones(mock_db, FAKE_USER_ID, 1, reference_id="gen-1")

    assert new_balance == 9
    assert mock_db.execute.call_count == 2
    insert_params = mock_db.execute.call_args_list[1].args[1]
    assert insert_params["amount"] == -1
    assert insert_params["txn_type"] == "spend"
    assert insert_params["reference_id"] == "gen-1"


@pytest.mark.asyncio
async def test_spend_insufficient_raises_402():
    """No row back from the conditional UPDATE means the balance was too low."""
    mock_db = _make_mock_db()
    mock_db.execute.return_value = _result(None)

    with pytest.raises(HTTPException) as exc_info:
        await spend_gemstones(mock_db, FAKE_USER_ID, 50)

    assert exc_info.value.status_code == 402
    assert "Insufficient gemstones" in exc_info.value.detail
    # Only the UPDATE ran; no ledger row was written.
    assert mock_db.execute.call_count == 1


@pytest.mark.asyncio
async def test_spend_rejects_non_positive_amount():
    mock_db = _make_mock_db()

    with pytest.raises(HTTPException) as exc_info:
        await spend_gemstones(mock_db, FAKE_USER_ID, 0)

    assert exc_info.value.status_code == 400
    mock_db.execute.assert_not_called()


@pytest.mark.asyncio
async def test_spend_low_balance_sends_notification():
    mock_db = _make_mock_db()
    mock_db.execute.side_effect = [_result(_row(2)), _result()]

    with patch(
        "assetcraft.services.gemstone_service.notifier.send_low_balance",
        new_callable=AsyncMock,
    ) as mock_notify:
        await spend_gemstones(mock_db, FAKE_USER_ID, 1)

    mock_notify.assert_awaited_once_with(FAKE_USER_ID, 2)


@pytest.mark.asyncio
async def test_spend_healthy_balance_sends_nothing():
    mock_db = _make_mock_db()
    mock_db.execute.side_effect = [_result(_row(40)), _result()]

    with patch(
        "assetcraft.services.gemstone_service.notifier.send_low_balance",
        new_callable=AsyncMock,
    ) as mock_notify:
        await spend_gemstones(mock_db, FAKE_USER_ID, 1)

    mock_notify.assert_not_awaited()


# ---------------------------------------------------------------------------
# add / refund
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_add_gemstones_returns_new_balance():
    mock_db = _make_mock_db()
    mock_db.execute.side_effect = [_result(_row(160)), _result()]

    new_balance = await add_gemstones(mock_db, FAKE_USER_ID, 150, "purchase", "txn-1")

    assert new_balance == 160
    insert_params = mock_db.execute.call_args_list[1].args[1]
    assert insert_params["amount"] == 150
    assert insert_params["txn_type"] == "purchase"


@pytest.mark.asyncio
async def test_add_gemstones_unknown_user_raises_404():
    mock_db = _make_mock_db()
    mock_db.execute.return_value = _result(None)

    with pytest.raises(HTTPException) as exc_info:
        await add_gemstones(mock_db, FAKE_USER_ID, 5, "admin_adjustment")

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_refund_records_refund_txn_type():
    mock_db = _make_mock_db()
    mock_db.execute.side_effect = [_result(_row(10)), _result()]

    new_balance = await refund_gemstones(mock_db, FAKE_USER_ID, 1, "gen-9")

    assert new_balance == 10
    insert_params = mock_db.execute.call_args_list[1].args[1]
    assert insert_params["txn_type"] == "refund"
    assert insert_params["reference_id"] == "gen-9"


@pytest.mark.asyncio
async def test_get_balance_missing_profile_raises_404():
    mock_db = _make_mock_db()
    mock_db.execute.return_value = _result(None)

    with pytest.raises(HTTPException) as exc_info:
        await get_balance(mock_db, FAKE_USER_ID)

    assert exc_info.value.status_code == 404


# ---------------------------------------------------------------------------
# Daily grant
# ---------------------------------------------------------------------------

def test_can_claim_daily_grant():
    today = date(2025, 3, 10)
    assert can_claim_daily_grant(None, today) is True
    assert can_claim_daily_grant(date(2025, 3, 9), today) is True
    assert can_claim_daily_grant(today, today) is False


def test_next_grant_at_is_start_of_next_day():
    result = next_grant_at(date(2025, 12, 31))
    assert result.date() == date(2026, 1, 1)
    assert (result.hour, result.minute) == (0, 0)
    assert result.tzinfo is not None


@pytest.mark.parametrize(
    ("zone", "expected"),
    [
        ("UTC", date(2025, 3, 11)),
        ("America/Los_Angeles", date(2025, 3, 10)),
        ("Asia/Tokyo", date(2025, 3, 11)),
    ],
)
def test_local_today_follows_grant_timezone(zone, expected):
    # 02:30 UTC on the 11th is still the evening of the 10th in Los Angeles.
    now = datetime(2025, 3, 11, 2, 30, tzinfo=timezone.utc)
    with patch.object(settings, "DAILY_GRANT_TIMEZONE", zone):
        assert local_today(now) == expected


def test_next_grant_at_uses_grant_timezone():
    with patch.object(settings, "DAILY_GRANT_TIMEZONE", "Asia/Tokyo"):
        result = next_grant_at(date(2025, 3, 10))
    assert result.utcoffset().total_seconds() == 9 * 3600
    assert result.astimezone(timezone.utc) == datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_claim_daily_grant_first_claim():
    mock_db = _make_mock_db()
    mock_db.execute.side_effect = [_result(_row(17)), _result()]

    with patch(
        "assetcraft.services.gemstone_service.notifier.send_daily_grant",
        new_callable=AsyncMock,
    ) as mock_notify:
        response = await claim_daily_grant(mock_db, FAKE_USER_ID, date(2025, 3, 10))

    assert response.granted is True
    assert response.amount == 5
    assert response.balance == 17
    assert response.next_grant_at.date() == date(2025, 3, 11)
    insert_params = mock_db.execute.call_args_list[1].args[1]
    assert insert_params["txn_type"] == "daily_grant"
    assert insert_params["reference_id"] == "2025-03-10"
    mock_notify.assert_awaited_once_with(FAKE_USER_ID, 5, 17)


@pytest.mark.asyncio
async def test_claim_daily_grant_second_claim_same_day():
    """The conditional UPDATE matches nothing; the balance is reported unchanged."""
    mock_db = _make_mock_db()
    mock_db.execute.side_effect = [_result(None), _result(_row(17))]

    response = await claim_daily_grant(mock_db, FAKE_USER_ID, date(2025, 3, 10))

    assert response.granted is False
    assert response.amount == 0
    assert response.balance == 17
    assert mock_db.execute.call_count == 2


@pytest.mark.asyncio
async def test_list_transactions_maps_rows():
    created = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)
    mock_db = _make_mock_db()
    mock_db.execute.return_value = _result(
        rows=[
            _row(7, -1, "spend", "gen-1", created),
            _row(6, 10, "signup_bonus", None, created),
        ]
    )

    txns = await list_transactions(mock_db, FAKE_USER_ID, limit=10)

    assert [t.txn_id for t in txns] == [7, 6]
    assert txns[0].amount == -1
    assert txns[1].reference_id is None
    assert mock_db.execute.call_args.args[1]["limit"] == 10


# ---------------------------------------------------------------------------
# API endpoints
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_balance_endpoint():
    from assetcraft.api.dependencies import get_current_user
    from assetcraft.database import get_db
    from assetcraft.main import app

    mock_db = _make_mock_db()
    mock_db.execute.return_value = _result(_row(12))

    async def _override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_current_user] = lambda: _make_profile()

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/api/v1/gemstones")

        assert resp.status_code == 200
        data = resp.json()
        assert data["gemstone_count"] == 12
        assert data["is_pro"] is False
        assert data["user_id"] == str(FAKE_USER_ID)
    finally:
        app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_balance_endpoint_requires_auth(client):
    resp = await client.get("/api/v1/gemstones")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_transactions_endpoint_limit_validation():
    from assetcraft.api.dependencies import get_current_user
    from assetcraft.database import get_db
    from assetcraft.main import app

    async def _override_get_db():
        yield _make_mock_db()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_current_user] = lambda: _make_profile()

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/api/v1/gemstones/transactions?limit=500")

        assert resp.status_code == 422
    finally:
        app.dependency_overrides.clear()
