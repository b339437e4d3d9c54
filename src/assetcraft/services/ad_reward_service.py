"""Rewarded-ad service -- verified AdMob callbacks credit gemstones.

A reward is credited at most once per AdMob transaction id and at most once
per cooldown window per user. Both rules are enforced in SQL, not by reading
state first.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone

import structlog
from fastapi import HTTPException
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from assetcraft.config import settings
from assetcraft.integrations.admob_ssv import AdMobVerificationError, AdMobVerifier
from assetcraft.models import UserProfile
from assetcraft.services.audit_logger import audit
from assetcraft.services.gemstone_service import record_transaction

log = structlog.get_logger()


class RewardStatusResponse(BaseModel):
    can_watch_ad: bool
    next_available_at: datetime | None = None
    seconds_remaining: int
    reward_amount: int


class RewardCallbackResponse(BaseModel):
    status: str
    credited: bool = False
    gemstone_balance: int | None = None


def reward_status(last_reward_at: datetime | None, now: datetime | None = None) -> RewardStatusResponse:
    now = now or datetime.now(timezone.utc)
    if last_reward_at is None:
        return RewardStatusResponse(
            can_watch_ad=True, seconds_remaining=0, reward_amount=settings.AD_REWARD_GEMSTONES,
        )
    next_at = last_reward_at + timedelta(seconds=settings.AD_REWARD_COOLDOWN_SECONDS)
    remaining = max(0, int((next_at - now).total_seconds()))
    return RewardStatusResponse(
        can_watch_ad=remaining == 0,
        next_available_at=next_at,
        seconds_remaining=remaining,
        reward_amount=settings.AD_REWARD_GEMSTONES,
    )


def get_reward_status(profile: UserProfile) -> RewardStatusResponse:
    return reward_status(profile.last_ad_reward_at)


async def process_ssv_callback(
    db: AsyncSession,
    verifier: AdMobVerifier,
    query_string: str,
    params: Mapping[str, str],
) -> RewardCallbackResponse:
    """Verify an AdMob SSV callback and credit the reward it reports.

    Raises HTTPException(400) when the signature or identifiers are invalid
    and 404 when the user id does not match a profile.
    """
    try:
        await verifier.verify(query_string, params.get("signature", ""), params.get("key_id", ""))
    except AdMobVerificationError as exc:
        log.warning("admob_ssv_rejected", error=str(exc))
        raise HTTPException(status_code=400, detail="Invalid reward callback")

    transaction_id = params.get("transaction_id")
    raw_user_id = params.get("user_id")
    if not transaction_id:
        raise HTTPException(status_code=400, detail="Missing transaction_id")
    if not raw_user_id:
        # AdMob's console test callback carries no user id.
        log.info("admob_ssv_without_user", transaction_id=transaction_id)
        return RewardCallbackResponse(status="ignored")
    try:
        user_id = uuid.UUID(raw_user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid user_id")

    exists = await db.execute(
        text("SELECT 1 FROM user_profiles WHERE id = :user_id"),
        {"user_id": user_id},
    )
    if exists.fetchone() is None:
        raise HTTPException(status_code=404, detail="User not found")

    amount = settings.AD_REWARD_GEMSTONES
    now = datetime.now(timezone.utc)

    claimed = await db.execute(
        text(
            "INSERT INTO ad_rewards (transaction_id, user_id, ad_unit, reward_amount, credited, created_at) "
            "VALUES (:tid, :user_id, :ad_unit, :amount, false, :now) "
            "ON CONFLICT (transaction_id) DO NOTHING "
            "RETURNING transaction_id"
        ),
        {
            "tid": transaction_id,
            "user_id": user_id,
            "ad_unit": params.get("ad_unit"),
            "amount": amount,
            "now": now,
        },
    )
    if claimed.fetchone() is None:
        log.info("admob_ssv_duplicate", transaction_id=transaction_id)
        return RewardCallbackResponse(status="duplicate")

    cutoff = now - timedelta(seconds=settings.AD_REWARD_COOLDOWN_SECONDS)
    result = await db.execute(
        text(
            "UPDATE user_profiles "
            "SET gemstone_count = gemstone_count + :amount, last_ad_reward_at = :now, "
            "updated_at = now() "
            "WHERE id = :user_id "
            "AND (last_ad_reward_at IS NULL OR last_ad_reward_at <= :cutoff) "
            "RETURNING gemstone_count"
        ),
        {"user_id": user_id, "amount": amount, "now": now, "cutoff": cutoff},
    )
    row = result.fetchone()
    if row is None:
        audit.log_ad_reward(user_id, transaction_id, amount, credited=False)
        return RewardCallbackResponse(status="cooldown")

    balance = row[0]
    await db.execute(
        text("UPDATE ad_rewards SET credited = true WHERE transaction_id = :tid"),
        {"tid": transaction_id},
    )
    await record_transaction(db, user_id, amount, "ad_reward", transaction_id)
    audit.log_ad_reward(user_id, transaction_id, amount, credited=True)
    audit.log_gemstone_event(user_id, amount, "ad_reward", balance, transaction_id)
    return RewardCallbackResponse(status="ok", credited=True, gemstone_balance=balance)
