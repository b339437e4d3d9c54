"""Tests for AdMob SSV verification and rewarded-ad crediting.

Callbacks are signed with a locally generated P-256 key, so the real
ECDSA verification path runs without contacting Google.
"""

from __future__ import annotations

import base64
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import urlencode

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient

from assetcraft.integrations.admob_ssv import (
    AdMobVerificationError,
    AdMobVerifier,
    split_signed_content,
)
from assetcraft.services.ad_reward_service import process_ssv_callback, reward_status


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
KEY_ID = 3335741209

_PRIVATE_KEY = ec.generate_private_key(ec.SECP256R1())


def _signed_callback(key=_PRIVATE_KEY, key_id: int = KEY_ID, **overrides) -> tuple[str, dict]:
    """Build a callback query string signed the way AdMob signs it."""
    fields = {
        "ad_network": "5450213213286189855",
        "ad_unit": "1234567890",
        "reward_amount": "3",
        "reward_item": "gemstones",
        "timestamp": "1710000000000",
        "transaction_id": "123456789",
        "user_id": str(USER_ID),
    }
    fields.update(overrides)
    fields = {k: v for k, v in fields.items() if v is not None}
    content = urlencode(fields)
    signature = key.sign(content.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
    encoded = base64.urlsafe_b64encode(signature).decode("ascii").rstrip("=")
    query = f"{content}&signature={encoded}&key_id={key_id}"
    params = dict(fields, signature=encoded, key_id=str(key_id))
    return query, params


def _verifier() -> AdMobVerifier:
    return AdMobVerifier(keys={KEY_ID: _PRIVATE_KEY.public_key()})


def _result(row=None):
    proxy = MagicMock()
    proxy.fetchone.return_value = row
    return proxy


# ---------------------------------------------------------------------------
# AdMobVerifier
# ---------------------------------------------------------------------------

class TestAdMobVerifier:
    @pytest.mark.asyncio
    async def test_valid_signature(self):
        query, params = _signed_callback()
        await _verifier().verify(query, params["signature"], params["key_id"])

    @pytest.mark.asyncio
    async def test_tampered_content_rejected(self):
        query, params = _signed_callback()
        tampered = query.replace("reward_amount=3", "reward_amount=300")

        with pytest.raises(AdMobVerificationError, match="verification failed"):
            await _verifier().verify(tampered, params["signature"], params["key_id"])

    @pytest.mark.asyncio
    async def test_signed_by_other_key_rejected(self):
        query, params = _signed_callback(key=ec.generate_private_key(ec.SECP256R1()))

        with pytest.raises(AdMobVerificationError):
            await _verifier().verify(query, params["signature"], params["key_id"])

    @pytest.mark.asyncio
    async def test_non_numeric_key_id_rejected(self):
        query, params = _signed_callback()

        with pytest.raises(AdMobVerificationError, match="numeric"):
            await _verifier().verify(query, params["signature"], "abc")

    def test_unsigned_query_rejected(self):
        with pytest.raises(AdMobVerificationError):
            split_signed_content("transaction_id=1&user_id=2")

    @pytest.mark.asyncio
    async def test_unknown_key_triggers_refresh(self):
        pem = _PRIVATE_KEY.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")
        body = {"keys": [{"keyId": KEY_ID, "pem": pem, "base64": ""}]}
        verifier = AdMobVerifier(keys_url="http://fake/keys.json")
        query, params = _signed_callback()

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = httpx.Response(
                status_code=200,
                json=body,
                request=httpx.Request("GET", "http://fake/keys.json"),
            )
            await verifier.verify(query, params["signature"], params["key_id"])
            await verifier.verify(query, params["signature"], params["key_id"])

        # Second verification is served from the key cache.
        mock_get.assert_awaited_once_with("http://fake/keys.json")

    @pytest.mark.asyncio
    async def test_key_fetch_failure(self):
        verifier = AdMobVerifier(keys_url="http://fake/keys.json")
        query, params = _signed_callback()

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = httpx.ConnectError("refused")
            with pytest.raises(AdMobVerificationError, match="Cannot fetch"):
                await verifier.verify(query, params["signature"], params["key_id"])

    @pytest.mark.asyncio
    async def test_unknown_key_refetch_is_throttled(self):
        verifier = _verifier()
        query, params = _signed_callback(key_id=999)
        body = {"keys": []}

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = httpx.Response(
                status_code=200,
                json=body,
                request=httpx.Request("GET", "http://fake/keys.json"),
            )
            for _ in range(3):
                with pytest.raises(AdMobVerificationError, match="Unknown verifier key"):
                    await verifier.verify(query, params["signature"], params["key_id"])

        mock_get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_key_refetched_after_interval(self):
        verifier = _verifier()
        query, params = _signed_callback(key_id=999)

        verifier._fetched_at -= 61

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = httpx.Response(
                status_code=200,
                json={"keys": []},
                request=httpx.Request("GET", "http://fake/keys.json"),
            )
            with pytest.raises(AdMobVerificationError):
                await verifier.verify(query, params["signature"], params["key_id"])
            with pytest.raises(AdMobVerificationError):
                await verifier.verify(query, params["signature"], params["key_id"])

        mock_get.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_malformed_key_file_is_verification_error(self):
        verifier = AdMobVerifier(keys_url="http://fake/keys.json")
        query, params = _signed_callback()

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = httpx.Response(
                status_code=200,
                json={"keys": [{"keyId": KEY_ID, "pem": "not a pem"}]},
                request=httpx.Request("GET", "http://fake/keys.json"),
            )
            with pytest.raises(AdMobVerificationError, match="Malformed"):
                await verifier.verify(query, params["signature"], params["key_id"])

    @pytest.mark.asyncio
    async def test_non_json_key_file_is_verification_error(self):
        verifier = AdMobVerifier(keys_url="http://fake/keys.json")
        query, params = _signed_callback()

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = httpx.Response(
                status_code=200,
                text="<html>maintenance</html>",
                request=httpx.Request("GET", "http://fake/keys.json"),
            )
            with pytest.raises(AdMobVerificationError, match="Malformed"):
                await verifier.verify(query, params["signature"], params["key_id"])


# ---------------------------------------------------------------------------
# reward_status
# ---------------------------------------------------------------------------

def test_reward_status_never_watched():
    status = reward_status(None)
    assert status.can_watch_ad is True
    assert status.seconds_remaining == 0
    assert status.reward_amount == 3


def test_reward_status_inside_cooldown():
    now = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
    status = reward_status(now - timedelta(seconds=120), now=now)

    assert status.can_watch_ad is False
    assert status.seconds_remaining == 180
    assert status.next_available_at == now + timedelta(seconds=180)


def test_reward_status_after_cooldown():
    now = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
    assert reward_status(now - timedelta(minutes=6), now=now).can_watch_ad is True


# ---------------------------------------------------------------------------
# process_ssv_callback
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_callback_credits_reward():
    db = AsyncMock()
    db.execute.side_effect = [
        _result((1,)),             # profile exists
        _result(("123456789",)),   # ad_rewards row claimed
        _result((13,)),            # cooldown-guarded balance UPDATE
        _result(),                 # mark credited
        _result(),                 # ledger INSERT
    ]
    query, params = _signed_callback()

    response = await process_ssv_callback(db, _verifier(), query, params)

    assert response.status == "ok"
    assert response.credited is True
    assert response.gemstone_balance == 13
    ledger_params = db.execute.call_args_list[4].args[1]
    assert ledger_params["txn_type"] == "ad_reward"
    assert ledger_params["reference_id"] == "123456789"


@pytest.mark.asyncio
async def test_callback_replay_is_duplicate():
    db = AsyncMock()
    db.execute.side_effect = [_result((1,)), _result(None)]
    query, params = _signed_callback()

    response = await process_ssv_callback(db, _verifier(), query, params)

    assert response.status == "duplicate"
    assert response.credited is False
    assert db.execute.call_count == 2


@pytest.mark.asyncio
async def test_callback_inside_cooldown_not_credited():
    db = AsyncMock()
    db.execute.side_effect = [_result((1,)), _result(("123456789",)), _result(None)]
    query, params = _signed_callback()

    response = await process_ssv_callback(db, _verifier(), query, params)

    assert response.status == "cooldown"
    assert response.credited is False
    assert db.execute.call_count == 3


@pytest.mark.asyncio
async def test_callback_bad_signature_400():
    db = AsyncMock()
    query, params = _signed_callback()
    content = split_signed_content(query)
    params["signature"] = "AAAA"

    with pytest.raises(HTTPException) as exc_info:
        await process_ssv_callback(
            db, _verifier(), f"{content}&signature=AAAA&key_id={KEY_ID}", params,
        )

    assert exc_info.value.status_code == 400
    db.execute.assert_not_called()


@pytest.mark.asyncio
async def test_callback_without_user_is_ignored():
    db = AsyncMock()
    query, params = _signed_callback(user_id=None)

    response = await process_ssv_callback(db, _verifier(), query, params)

    assert response.status == "ignored"
    db.execute.assert_not_called()


@pytest.mark.asyncio
async def test_callback_unknown_user_404():
    db = AsyncMock()
    db.execute.return_value = _result(None)
    query, params = _signed_callback()

    with pytest.raises(HTTPException) as exc_info:
        await process_ssv_callback(db, _verifier(), query, params)

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_callback_invalid_user_id_400():
    query, params = _signed_callback(user_id="not-a-uuid")

    with pytest.raises(HTTPException) as exc_info:
        await process_ssv_callback(AsyncMock(), _verifier(), query, params)

    assert exc_info.value.detail == "Invalid user_id"


# ---------------------------------------------------------------------------
# API endpoint
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ssv_endpoint_verifies_raw_query():
    from assetcraft.database import get_db
    from assetcraft.integrations.admob_ssv import get_admob_verifier
    from assetcraft.main import app

    db = AsyncMock()
    db.execute.side_effect = [
        _result((1,)), _result(("123456789",)), _result((13,)), _result(), _result(),
    ]

    async def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_admob_verifier] = _verifier
    query, _ = _signed_callback()

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get(f"/api/v1/rewards/admob/ssv?{query}")

        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "ok"
    finally:
        app.dependency_overrides.clear()
