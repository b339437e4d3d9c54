"""Push notifications for economy events, delivered through OneSignal.

Delivery is best effort: a failed push is logged and never propagates to the
operation that triggered it.
"""

from __future__ import annotations

import structlog

from assetcraft.integrations.onesignal_client import OneSignalClient, OneSignalError

log = structlog.get_logger()


class NotificationService:
    def __init__(self, client: OneSignalClient | None = None) -> None:
        self._client = client or OneSignalClient()

    async def _send(self, user_id, title: str, message: str, action: str) -> bool:
        if not self._client.enabled:
            log.debug("notification_skipped", action=action, reason="not_configured")
            return False
        try:
            notification_id = await self._client.send_to_user(
                external_id=str(user_id),
                title=title,
                message=message,
                data={"action": action},
            )
        except OneSignalError as exc:
            log.warning(
                "notification_failed",
                action=action,
                user_id=str(user_id),
                error=str(exc),
            )
            return False
        log.info(
            "notification_sent",
            action=action,
            user_id=str(user_id),
            notification_id=notification_id,
        )
        return True

    async def send_daily_grant(self, user_id, amount: int, balance: int) -> bool:
        return await self._send(
            user_id,
            "Daily Gemstones",
            f"You've received {amount} Gemstones! Total: {balance}",
            "daily_credits",
        )

    async def send_low_balance(self, user_id, balance: int) -> bool:
        return await self._send(
            user_id,
            "Running low on Gemstones",
            f"Only {balance} Gemstones left. Watch an ad or visit the store to top up.",
            "low_credits",
        )

    async def send_purchase_success(self, user_id, gemstones: int, balance: int) -> bool:
        if gemstones > 0:
            message = (
                f"Purchase successful! You received {gemstones} Gemstones! "
                f"Total: {balance}"
            )
        else:
            message = "Purchase successful! AssetCraft Pro is now active."
        return await self._send(user_id, "Purchase complete", message, "purchase_success")


notifier = NotificationService()
