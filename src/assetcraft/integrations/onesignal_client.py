"""OneSignal REST client for server-sent push notifications."""

from __future__ import annotations

from typing import Any

import httpx

from assetcraft.config import settings

ONESIGNAL_API_URL = "https://api.onesignal.com"


class OneSignalError(Exception):
    """Raised when a notification cannot be delivered to OneSignal."""


class OneSignalClient:
    """Sends pushes addressed to users by their ``external_id`` alias."""

    def __init__(
        self,
        app_id: str | None = None,
        api_key: str | None = None,
        base_url: str = ONESIGNAL_API_URL,
        timeout: float = 10.0,
    ) -> None:
        self.app_id = app_id if app_id is not None else settings.ONESIGNAL_APP_ID
        self.api_key = api_key if api_key is not None else settings.ONESIGNAL_API_KEY
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.app_id and self.api_key)

    async def send_to_user(
        self,
        external_id: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> str | None:
        """Push a notification to one user. Returns the OneSignal notification id.

        Raises:
            OneSignalError: on timeout, connection failure or a non-2xx reply.
        """
        payload = {
            "app_id": self.app_id,
            "target_channel": "push",
            "include_aliases": {"external_id": [external_id]},
            "headings": {"en": title},
            "contents": {"en": message},
            "data": data or {},
        }
        headers = {"Authorization": f"Key {self.api_key}"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
            ) as client:
                response = await client.post("/notifications", json=payload, headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise OneSignalError("OneSignal request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise OneSignalError(
                f"OneSignal returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise OneSignalError(f"Cannot connect to OneSignal: {exc}") from exc

        return response.json().get("id")
