"""Store package, purchase record, and webhook bookkeeping models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from assetcraft.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GemstonePackage(Base):
    """A store SKU. ``gemstone_amount`` is parsed from the product id when null."""

    __tablename__ = "gemstone_packages"

    product_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    gemstone_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_subscription: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    subscription_period: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "subscription_period IS NULL OR subscription_period IN ('monthly', 'yearly')",
            name="ck_package_subscription_period",
        ),
    )


class PurchaseRecord(Base):
    __tablename__ = "purchase_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("user_profiles.id"), nullable=False
    )
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    store_transaction_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False
    )
    gemstones_credited: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_subscription: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("source IN ('client', 'webhook')", name="ck_purchase_source"),
    )


class ProcessedWebhook(Base):
    __tablename__ = "processed_webhooks"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
