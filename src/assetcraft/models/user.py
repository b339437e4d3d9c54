"""User profile, gemstone ledger, and ad reward models."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assetcraft.models.base import Base

if TYPE_CHECKING:
    from assetcraft.models.asset import GenerationRecord, UserAsset


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserProfile(Base):
    """One row per Supabase auth user; ``id`` is the auth user id."""

    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    gemstone_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    subscription_status: Mapped[str] = mapped_column(
        String(20), default="free", nullable=False
    )
    subscription_end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    total_generations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_daily_grant_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_ad_reward_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("gemstone_count >= 0", name="ck_profile_gemstones_non_negative"),
        CheckConstraint(
            "subscription_status IN ('free', 'pro')",
            name="ck_profile_subscription_status",
        ),
    )

    gemstone_transactions: Mapped[list[GemstoneTransaction]] = relationship(
        back_populates="user", lazy="raise"
    )
    assets: Mapped[list[UserAsset]] = relationship(back_populates="user", lazy="raise")
    generations: Mapped[list[GenerationRecord]] = relationship(
        back_populates="user", lazy="raise"
    )

    @property
    def is_pro(self) -> bool:
        """Active pro subscription: status ``pro`` and not past its end date."""
        if self.subscription_status != "pro":
            return False
        if self.subscription_end_date is None:
            return True
        return self.subscription_end_date > _utcnow()


class GemstoneTransaction(Base):
    """Append-only ledger; the sum of ``amount`` equals the profile balance."""

    __tablename__ = "gemstone_transactions"

    txn_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("user_profiles.id"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    txn_type: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "txn_type IN ('signup_bonus', 'daily_grant', 'purchase', 'ad_reward', "
            "'spend', 'refund', 'admin_adjustment')",
            name="ck_gemstone_txn_type",
        ),
    )

    user: Mapped[UserProfile] = relationship(back_populates="gemstone_transactions")


class AdReward(Base):
    __tablename__ = "ad_rewards"

    transaction_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("user_profiles.id"), nullable=False
    )
    ad_unit: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reward_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    credited: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
