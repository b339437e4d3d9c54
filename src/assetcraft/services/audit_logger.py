"""Structured JSON audit logger for gemstone, purchase, and generation events.

Emits structured log entries via structlog. Every entry carries an
``audit: true`` flag so production log pipelines can filter on it easily.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog


log = structlog.get_logger()


class AuditLogger:
    """Structured audit logger for economy events.

    All methods are synchronous -- they only emit log lines and perform
    no I/O beyond writing to the configured structlog sink.
    """

    # ------------------------------------------------------------------
    # Gemstone ledger
    # ------------------------------------------------------------------

    def log_gemstone_event(
        self,
        user_id,
        amount,
        txn_type: str,
        balance_after: int | None = None,
        reference_id=None,
    ) -> None:
        """Log a ledger movement (grant, purchase, spend, refund, etc.)."""
        log.info(
            "audit_event",
            event_type="gemstone_event",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            amount=amount,
            txn_type=txn_type,
            balance_after=balance_after,
            reference_id=str(reference_id) if reference_id else None,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    def log_purchase(
        self,
        user_id,
        product_id: str,
        transaction_id: str,
        gemstones: int,
        source: str,
    ) -> None:
        """Record a verified store purchase, from the client or a webhook."""
        log.info(
            "audit_event",
            event_type="purchase",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            product_id=product_id,
            transaction_id=transaction_id,
            gemstones=gemstones,
            source=source,
            audit=True,
        )

    def log_subscription_change(self, user_id, status: str, expires_at=None, reason: str = "") -> None:
        log.info(
            "audit_event",
            event_type="subscription_change",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            status=status,
            expires_at=expires_at.isoformat() if expires_at else None,
            reason=reason,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Ad reward
    # ------------------------------------------------------------------

    def log_ad_reward(
        self,
        user_id,
        transaction_id: str,
        amount: int,
        credited: bool,
    ) -> None:
        """Log a verified rewarded-ad callback and whether it paid out."""
        log.info(
            "audit_event",
            event_type="ad_reward",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            transaction_id=transaction_id,
            amount=amount,
            credited=credited,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def log_generation(
        self,
        user_id,
        history_id,
        status: str,
        cost: int,
        duration_ms: int | None = None,
    ) -> None:
        log.info(
            "audit_event",
            event_type="generation",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            history_id=str(history_id),
            status=status,
            cost=cost,
            duration_ms=duration_ms,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def log_account_deleted(self, user_id, gemstone_balance: int, asset_count: int) -> None:
        """Record an account removal with the balance that was forfeited."""
        log.info(
            "audit_event",
            event_type="account_deleted",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            gemstone_balance=gemstone_balance,
            asset_count=asset_count,
            audit=True,
        )


audit = AuditLogger()
