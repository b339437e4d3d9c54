"""Gemstone ledger service -- balances, atomic spends, grants, and refunds.

Every balance change is a single conditional ``UPDATE ... RETURNING`` on
``user_profiles`` followed by an append to ``gemstone_transactions``, so the
profile balance always equals the ledger sum and can never go negative.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import structlog
from fastapi import HTTPException
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from assetcraft.config import settings
from assetcraft.services.audit_logger import audit
from assetcraft.services.notification_service import notifier

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class GemstoneBalanceResponse(BaseModel):
    user_id: uuid.UUID
    gemstone_count: int
    is_pro: bool


class DailyGrantResponse(BaseModel):
    granted: bool
    amount: int
    balance: int
    next_grant_at: datetime


class GemstoneTransactionResponse(BaseModel):
    txn_id: int
    amount: int
    txn_type: str
    reference_id: str | None = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------

def grant_timezone() -> ZoneInfo:
    return ZoneInfo(settings.DAILY_GRANT_TIMEZONE)


def local_today(now: datetime | None = None) -> date:
    """Today's date in the timezone that defines a grant day."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(grant_timezone()).date()


def next_grant_at(today: date) -> datetime:
    """Start of the day after *today*, as an aware datetime."""
    return datetime.combine(today + timedelta(days=1), time.min, tzinfo=grant_timezone())


def can_claim_daily_grant(last_grant_date: date | None, today: date) -> bool:
    return last_grant_date is None or last_grant_date < today


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def record_transaction(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    txn_type: str,
    reference_id: str | None = None,
) -> None:
    """Append a signed movement to the gemstone ledger."""
    await db.execute(
        text(
            "INSERT INTO gemstone_transactions (user_id, amount, txn_type, reference_id, created_at) "
            "VALUES (:user_id, :amount, :txn_type, :reference_id, :created_at)"
        ),
        {
            "user_id": user_id,
            "amount": amount,
            "txn_type": txn_type,
            "reference_id": reference_id,
            "created_at": datetime.now(timezone.utc),
        },
    )


async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Return the current gemstone balance for a user."""
    result = await db.execute(
        text("SELECT gemstone_count FROM user_profiles WHERE id = :user_id"),
        {"user_id": user_id},
    )
    row = result.fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail="User not found")
    return row[0]


async def spend_gemstones(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    reference_id: str | None = None,
) -> int:
    """Atomically spend gemstones using UPDATE ... WHERE balance >= amount.

    Returns the new balance on success.
    Raises HTTPException(400) for a non-positive amount and
    HTTPException(402) if the balance is insufficient; the balance is left
    untouched in both cases.
    """
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be positive")

    result = await db.execute(
        text(
            "UPDATE user_profiles "
            "SET gemstone_count = gemstone_count - :amount, updated_at = now() "
            "WHERE id = :user_id AND gemstone_count >= :amount "
            "RETURNING gemstone_count"
        ),
        {"user_id": user_id, "amount": amount},
    )
    row = result.fetchone()
    if row is None:
        log.info("gemstones_insufficient", user_id=str(user_id), amount=amount)
        raise HTTPException(status_code=402, detail="Insufficient gemstones")

    new_balance: int = row[0]
    await record_transaction(db, user_id, -amount, "spend", reference_id)
    audit.log_gemstone_event(user_id, -amount, "spend", new_balance, reference_id)

    if new_balance <= settings.LOW_BALANCE_THRESHOLD:
        await notifier.send_low_balance(user_id, new_balance)

    return new_balance


async def add_gemstones(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    txn_type: str,
    reference_id: str | None = None,
) -> int:
    """Add gemstones to a user's balance and record the transaction.

    Returns the new balance.
    """
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be positive")

    result = await db.execute(
        text(
            "UPDATE user_profiles "
            "SET gemstone_count = gemstone_count + :amount, updated_at = now() "
            "WHERE id = :user_id "
            "RETURNING gemstone_count"
        ),
        {"user_id": user_id, "amount": amount},
    )
    row = result.fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail="User not found")

    new_balance: int = row[0]
    await record_transaction(db, user_id, amount, txn_type, reference_id)
    audit.log_gemstone_event(user_id, amount, txn_type, new_balance, reference_id)
    return new_balance


async def refund_gemstones(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    reference_id: str | None = None,
) -> int:
    """Refund gemstones to a user. Delegates to add_gemstones with txn_type='refund'."""
    return await add_gemstones(
        db=db,
        user_id=user_id,
        amount=amount,
        txn_type="refund",
        reference_id=reference_id,
    )


async def claim_daily_grant(
    db: AsyncSession,
    user_id: uuid.UUID,
    today: date | None = None,
) -> DailyGrantResponse:
    """Grant the daily gemstones at most once per calendar day.

    The date check and the credit happen in one conditional UPDATE, so two
    concurrent claims for the same day cannot both succeed.
    """
    today = today or local_today()
    amount = settings.DAILY_GRANT_GEMSTONES

    result = await db.execute(
        text(
            "UPDATE user_profiles "
            "SET gemstone_count = gemstone_count + :amount, "
            "last_daily_grant_date = :today, updated_at = now() "
            "WHERE id = :user_id "
            "AND (last_daily_grant_date IS NULL OR last_daily_grant_date < :today) "
            "RETURNING gemstone_count"
        ),
        {"user_id": user_id, "amount": amount, "today": today},
    )
    row = result.fetchone()

    if row is None:
        balance = await get_balance(db, user_id)
        return DailyGrantResponse(
            granted=False, amount=0, balance=balance, next_grant_at=next_grant_at(today),
        )

    balance = row[0]
    await record_transaction(db, user_id, amount, "daily_grant", today.isoformat())
    audit.log_gemstone_event(user_id, amount, "daily_grant", balance, today.isoformat())
    await notifier.send_daily_grant(user_id, amount, balance)

    return DailyGrantResponse(
        granted=True, amount=amount, balance=balance, next_grant_at=next_grant_at(today),
    )


async def list_transactions(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int | None = 50,
) -> list[GemstoneTransactionResponse]:
    """Return the newest ledger rows for a user; ``limit=None`` returns all of them."""
    result = await db.execute(
        text(
            "SELECT txn_id, amount, txn_type, reference_id, created_at "
            "FROM gemstone_transactions "
            "WHERE user_id = :user_id "
            "ORDER BY txn_id DESC "
            "LIMIT :limit"
        ),
        {"user_id": user_id, "limit": limit},
    )
    return [
        GemstoneTransactionResponse(
            txn_id=row[0],
            amount=row[1],
            txn_type=row[2],
            reference_id=row[3],
            created_at=row[4],
        )
        for row in result.fetchall()
    ]
