"""RevenueCat REST client used to verify in-app purchases server side."""

from __future__ import annotations

from typing import Any

import httpx

from assetcraft.config import settings

REVENUECAT_API_URL = "https://api.revenuecat.com/v1"


class RevenueCatError(Exception):
    """Raised when RevenueCat cannot be reached or answers with an error."""


class RevenueCatClient:
    """Async client for the ``GET /subscribers/{app_user_id}`` endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = REVENUECAT_API_URL,
        timeout: float = 15.0,
    ) -> None:
        self.api_key = api_key or settings.REVENUECAT_API_KEY
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def get_subscriber(self, app_user_id: str) -> dict[str, Any]:
        """Return the ``subscriber`` object for *app_user_id*.

        Raises:
            RevenueCatError: on timeout, connection failure or a non-2xx reply.
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
            ) as client:
                response = await client.get(f"/subscribers/{app_user_id}", headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise RevenueCatError(
                f"RevenueCat request timed out after {self.timeout}s"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise RevenueCatError(
                f"RevenueCat returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RevenueCatError(f"Cannot connect to RevenueCat: {exc}") from exc

        return response.json().get("subscriber", {})


def get_revenuecat_client() -> RevenueCatClient:
    return RevenueCatClient()
