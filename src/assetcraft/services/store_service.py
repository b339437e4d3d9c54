"""Store service -- packages, purchase verification, restores, and RevenueCat webhooks.

Purchases are verified against RevenueCat's subscriber record before anything
is credited, and every credit is keyed on the store transaction id so the
client report and the webhook for the same purchase credit it only once.
"""

from __future__ import annotations

import hmac
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from assetcraft.config import settings
from assetcraft.integrations.revenuecat_client import RevenueCatClient, RevenueCatError
from assetcraft.models import UserProfile
from assetcraft.services.audit_logger import audit
from assetcraft.services.gemstone_service import add_gemstones, get_balance
from assetcraft.services.notification_service import notifier

log = structlog.get_logger()

_PRODUCT_ID_PATTERN = re.compile(r"gems?_?(\d+)")
_TITLE_PATTERN = re.compile(r"(\d+)\s*gems?")

# (max price, gemstones) tiers used when neither id nor title carry an amount
_PRICE_TIERS = (
    (0.99, 10),
    (4.99, 50),
    (9.99, 100),
    (19.99, 250),
    (49.99, 500),
)

SUBSCRIPTION_EVENTS = {"INITIAL_PURCHASE", "RENEWAL", "PRODUCT_CHANGE", "UNCANCELLATION"}


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class PackageResponse(BaseModel):
    product_id: str
    title: str
    description: str | None = None
    price_cents: int
    gemstone_amount: int
    is_subscription: bool
    subscription_period: str | None = None


class PurchaseRequest(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=100)
    transaction_id: str = Field(..., min_length=1, max_length=255)


class PurchaseResponse(BaseModel):
    result: str
    gemstones_received: int
    gemstone_balance: int
    is_pro: bool


class RestoreResponse(BaseModel):
    is_pro: bool
    subscription_status: str
    subscription_end_date: datetime | None = None


@dataclass(frozen=True)
class Package:
    product_id: str
    title: str
    description: str | None
    price_cents: int
    gemstone_amount: int | None
    is_subscription: bool
    subscription_period: str | None

    @property
    def resolved_gemstones(self) -> int:
        if self.is_subscription:
            return 0
        if self.gemstone_amount is not None:
            return self.gemstone_amount
        return extract_gemstones(self.product_id, self.title, self.price_cents / 100)


# ---------------------------------------------------------------------------
# Gemstone amount heuristics
# ---------------------------------------------------------------------------

def extract_gemstones(product_id: str, title: str = "", price: float | None = None) -> int:
    """Work out how many gemstones a store product grants.

    Tries the product id (``gems_50``), then the title (``"150 Gems"``),
    then falls back to price tiers.
    """
    match = _PRODUCT_ID_PATTERN.search(product_id.lower())
    if match:
        return int(match.group(1))

    match = _TITLE_PATTERN.search((title or "").lower())
    if match:
        return int(match.group(1))

    if price is None:
        return 0
    for max_price, gemstones in _PRICE_TIERS:
        if price <= max_price:
            return gemstones
    return 0


def _parse_rc_date(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _ms_to_datetime(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def find_consumable_purchase(subscriber: dict[str, Any], product_id: str, transaction_id: str) -> bool:
    """True if RevenueCat lists *transaction_id* as a one-off purchase of *product_id*."""
    for purchase in subscriber.get("non_subscriptions", {}).get(product_id, []):
        if transaction_id in (purchase.get("store_transaction_id"), purchase.get("id")):
            return True
    return False


def active_subscription_expiry(
    subscriber: dict[str, Any], product_id: str, now: datetime | None = None,
) -> tuple[bool, datetime | None]:
    """Return (active, expires_at) for a subscription product."""
    now = now or datetime.now(timezone.utc)
    entry = subscriber.get("subscriptions", {}).get(product_id)
    if entry is None:
        return False, None
    expires = _parse_rc_date(entry.get("expires_date"))
    return expires is None or expires > now, expires


def active_entitlement_expiry(
    subscriber: dict[str, Any], now: datetime | None = None,
) -> tuple[bool, datetime | None]:
    now = now or datetime.now(timezone.utc)
    entitlement = subscriber.get("entitlements", {}).get(settings.REVENUECAT_PRO_ENTITLEMENT)
    if entitlement is None:
        return False, None
    expires = _parse_rc_date(entitlement.get("expires_date"))
    return expires is None or expires > now, expires


# ---------------------------------------------------------------------------
# DB helpers
# ---------------------------------------------------------------------------

def _to_package(row) -> Package:
    return Package(
        product_id=row[0],
        title=row[1],
        description=row[2],
        price_cents=row[3],
        gemstone_amount=row[4],
        is_subscription=row[5],
        subscription_period=row[6],
    )


_PACKAGE_COLUMNS = (
    "product_id, title, description, price_cents, gemstone_amount, "
    "is_subscription, subscription_period"
)


async def get_packages(db: AsyncSession) -> list[PackageResponse]:
    """Return all active packages in display order."""
    result = await db.execute(
        text(
            f"SELECT {_PACKAGE_COLUMNS} FROM gemstone_packages "
            "WHERE is_active = true ORDER BY sort_order"
        )
    )
    packages = [_to_package(row) for row in result.fetchall()]
    return [
        PackageResponse(
            product_id=p.product_id,
            title=p.title,
            description=p.description,
            price_cents=p.price_cents,
            gemstone_amount=p.resolved_gemstones,
            is_subscription=p.is_subscription,
            subscription_period=p.subscription_period,
        )
        for p in packages
    ]


async def _load_package(db: AsyncSession, product_id: str, active_only: bool = True) -> Package | None:
    sql = f"SELECT {_PACKAGE_COLUMNS} FROM gemstone_packages WHERE product_id = :product_id"
    if active_only:
        sql += " AND is_active = true"
    result = await db.execute(text(sql), {"product_id": product_id})
    row = result.fetchone()
    return _to_package(row) if row is not None else None


async def _find_purchase_owner(db: AsyncSession, transaction_id: str) -> uuid.UUID | None:
    result = await db.execute(
        text("SELECT user_id FROM purchase_records WHERE store_transaction_id = :tid"),
        {"tid": transaction_id},
    )
    row = result.fetchone()
    return row[0] if row is not None else None


async def _insert_purchase_record(
    db: AsyncSession,
    user_id: uuid.UUID,
    package: Package,
    transaction_id: str,
    source: str,
) -> bool:
    """Claim *transaction_id*. Returns False if it was already recorded."""
    result = await db.execute(
        text(
            "INSERT INTO purchase_records "
            "(id, user_id, product_id, store_transaction_id, gemstones_credited, "
            "is_subscription, source, created_at) "
            "VALUES (:id, :user_id, :product_id, :tid, :gemstones, :is_sub, :source, :now) "
            "ON CONFLICT (store_transaction_id) DO NOTHING "
            "RETURNING id"
        ),
        {
            "id": uuid.uuid4(),
            "user_id": user_id,
            "product_id": package.product_id,
            "tid": transaction_id,
            "gemstones": package.resolved_gemstones,
            "is_sub": package.is_subscription,
            "source": source,
            "now": datetime.now(timezone.utc),
        },
    )
    return result.fetchone() is not None


async def set_subscription(
    db: AsyncSession,
    user_id: uuid.UUID,
    status: str,
    end_date: datetime | None,
    reason: str = "",
) -> None:
    await db.execute(
        text(
            "UPDATE user_profiles "
            "SET subscription_status = :status, subscription_end_date = :end_date, "
            "updated_at = now() "
            "WHERE id = :user_id"
        ),
        {"user_id": user_id, "status": status, "end_date": end_date},
    )
    audit.log_subscription_change(user_id, status, end_date, reason)


async def _is_already_processed(db: AsyncSession, event_id: str) -> bool:
    """Return True if this webhook event has already been handled."""
    existing = await db.execute(
        text("SELECT 1 FROM processed_webhooks WHERE event_id = :event_id"),
        {"event_id": event_id},
    )
    return existing.fetchone() is not None


async def _mark_event_processed(db: AsyncSession, event_id: str) -> None:
    """Record a webhook event ID so it is not replayed."""
    await db.execute(
        text(
            "INSERT INTO processed_webhooks (event_id, processed_at) "
            "VALUES (:event_id, :processed_at)"
        ),
        {"event_id": event_id, "processed_at": datetime.now(timezone.utc)},
    )


async def _profile_exists(db: AsyncSession, user_id: uuid.UUID) -> bool:
    result = await db.execute(
        text("SELECT 1 FROM user_profiles WHERE id = :user_id"),
        {"user_id": user_id},
    )
    return result.fetchone() is not None


# ---------------------------------------------------------------------------
# Client-reported purchases
# ---------------------------------------------------------------------------

async def record_purchase(
    db: AsyncSession,
    revenuecat: RevenueCatClient,
    user: UserProfile,
    request: PurchaseRequest,
) -> PurchaseResponse:
    """Verify a completed store purchase and deliver what it bought.

    Idempotent per transaction id: a repeat report returns ``already_owned``
    and credits nothing.
    """
    package = await _load_package(db, request.product_id)
    if package is None:
        raise HTTPException(status_code=404, detail="Product not found")

    owner = await _find_purchase_owner(db, request.transaction_id)
    if owner is not None:
        if owner != user.id:
            raise HTTPException(status_code=409, detail="Transaction belongs to another account")
        return await _already_owned(db, user)

    try:
        subscriber = await revenuecat.get_subscriber(str(user.id))
    except RevenueCatError as exc:
        log.error("purchase_verification_unavailable", user_id=str(user.id), error=str(exc))
        raise HTTPException(status_code=502, detail="Purchase verification is unavailable")

    if package.is_subscription:
        active, expires = active_subscription_expiry(subscriber, package.product_id)
        verified = active
    else:
        expires = None
        verified = find_consumable_purchase(subscriber, package.product_id, request.transaction_id)

    if not verified:
        log.warning(
            "purchase_not_verified",
            user_id=str(user.id),
            product_id=package.product_id,
            transaction_id=request.transaction_id,
        )
        raise HTTPException(status_code=400, detail="Purchase could not be verified")

    if not await _insert_purchase_record(db, user.id, package, request.transaction_id, "client"):
        return await _already_owned(db, user)

    gemstones = package.resolved_gemstones
    if package.is_subscription:
        await set_subscription(db, user.id, "pro", expires, reason="purchase")
        balance = await get_balance(db, user.id)
        is_pro = True
    elif gemstones <= 0:
        # Paid and verified, but the package maps to no gemstones.
        log.warning(
            "purchase_without_gemstones",
            user_id=str(user.id),
            product_id=package.product_id,
            transaction_id=request.transaction_id,
        )
        balance = await get_balance(db, user.id)
        is_pro = user.is_pro
    else:
        balance = await add_gemstones(db, user.id, gemstones, "purchase", request.transaction_id)
        is_pro = user.is_pro

    audit.log_purchase(user.id, package.product_id, request.transaction_id, gemstones, "client")
    if gemstones > 0 or package.is_subscription:
        await notifier.send_purchase_success(user.id, gemstones, balance)

    return PurchaseResponse(
        result="success",
        gemstones_received=gemstones,
        gemstone_balance=balance,
        is_pro=is_pro,
    )


async def _already_owned(db: AsyncSession, user: UserProfile) -> PurchaseResponse:
    return PurchaseResponse(
        result="already_owned",
        gemstones_received=0,
        gemstone_balance=await get_balance(db, user.id),
        is_pro=user.is_pro,
    )


async def restore_purchases(
    db: AsyncSession,
    revenuecat: RevenueCatClient,
    user: UserProfile,
) -> RestoreResponse:
    """Sync the pro subscription from RevenueCat. Grants no gemstones."""
    try:
        subscriber = await revenuecat.get_subscriber(str(user.id))
    except RevenueCatError as exc:
        log.error("restore_unavailable", user_id=str(user.id), error=str(exc))
        raise HTTPException(status_code=502, detail="Purchase verification is unavailable")

    active, expires = active_entitlement_expiry(subscriber)
    status = "pro" if active else "free"
    await set_subscription(db, user.id, status, expires, reason="restore")
    return RestoreResponse(is_pro=active, subscription_status=status, subscription_end_date=expires)


# ---------------------------------------------------------------------------
# Webhook entry-point
# ---------------------------------------------------------------------------

def verify_webhook_authorization(authorization: str | None) -> None:
    expected = settings.REVENUECAT_WEBHOOK_AUTH
    if not expected or not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Invalid webhook authorization")


async def handle_revenuecat_webhook(
    db: AsyncSession,
    authorization: str | None,
    payload: dict[str, Any],
) -> dict:
    """Verify and apply one RevenueCat webhook event.

    Idempotent -- events that have already been processed are skipped.
    """
    verify_webhook_authorization(authorization)

    event = payload.get("event")
    if not isinstance(event, dict) or not event.get("id"):
        raise HTTPException(status_code=400, detail="Invalid payload")
    event_id = str(event["id"])
    event_type = event.get("type", "")

    if await _is_already_processed(db, event_id):
        return {"status": "duplicate"}

    try:
        user_id = uuid.UUID(str(event.get("app_user_id")))
    except ValueError:
        user_id = None

    if user_id is None or not await _profile_exists(db, user_id):
        log.warning("webhook_unknown_user", event_id=event_id, app_user_id=event.get("app_user_id"))
        await _mark_event_processed(db, event_id)
        return {"status": "ignored"}

    if event_type == "NON_RENEWING_PURCHASE":
        await _apply_consumable_event(db, user_id, event)
    elif event_type in SUBSCRIPTION_EVENTS:
        expires = _ms_to_datetime(event.get("expiration_at_ms"))
        await set_subscription(db, user_id, "pro", expires, reason=event_type.lower())
    elif event_type == "EXPIRATION":
        expires = _ms_to_datetime(event.get("expiration_at_ms")) or datetime.now(timezone.utc)
        await set_subscription(db, user_id, "free", expires, reason="expiration")
    else:
        log.info("webhook_event_ignored", event_id=event_id, event_type=event_type)

    await _mark_event_processed(db, event_id)
    return {"status": "ok"}


async def _apply_consumable_event(db: AsyncSession, user_id: uuid.UUID, event: dict[str, Any]) -> None:
    product_id = event.get("product_id", "")
    transaction_id = event.get("transaction_id") or event.get("original_transaction_id")
    if not product_id or not transaction_id:
        raise HTTPException(status_code=400, detail="Purchase event is missing product or transaction")

    package = await _load_package(db, product_id, active_only=False)
    if package is None:
        # Unknown SKU: fall back to parsing the id and price the store reported.
        package = Package(
            product_id=product_id,
            title="",
            description=None,
            price_cents=int(round(float(event.get("price") or 0) * 100)),
            gemstone_amount=None,
            is_subscription=False,
            subscription_period=None,
        )

    if not await _insert_purchase_record(db, user_id, package, transaction_id, "webhook"):
        log.info("webhook_purchase_already_credited", transaction_id=transaction_id)
        return

    gemstones = package.resolved_gemstones
    if gemstones <= 0:
        return
    balance = await add_gemstones(db, user_id, gemstones, "purchase", transaction_id)
    audit.log_purchase(user_id, product_id, transaction_id, gemstones, "webhook")
    await notifier.send_purchase_success(user_id, gemstones, balance)
