"""Supabase SDK access: client factories plus the Storage helper for assets.

The Python SDK is synchronous, so every call made from a request handler is
pushed onto the threadpool.
"""

from __future__ import annotations

import structlog
from fastapi.concurrency import run_in_threadpool
from supabase import Client, ClientOptions, create_client

from assetcraft.config import settings

log = structlog.get_logger()


class StorageError(Exception):
    """Raised when an upload or removal against Supabase Storage fails."""


class SupabaseConfigError(Exception):
    """Raised when an operation needs the service_role key and none is set."""


def _options() -> ClientOptions:
    return ClientOptions(persist_session=False, auto_refresh_token=False)


class SupabaseClient:
    _service_client: Client | None = None

    @staticmethod
    def new_auth_client() -> Client:
        """A fresh anon-key client for a single auth call.

        Signing in rewrites a client's Authorization header to the user's
        token, so user sessions never live on a shared instance.
        """
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY, options=_options())

    @classmethod
    def get_service_client(cls) -> Client:
        """Shared client with the service_role key; bypasses RLS.

        Raises:
            SupabaseConfigError: when SUPABASE_SERVICE_ROLE_KEY is empty.
        """
        if not settings.SUPABASE_SERVICE_ROLE_KEY:
            raise SupabaseConfigError("SUPABASE_SERVICE_ROLE_KEY is not configured")
        if cls._service_client is None:
            cls._service_client = create_client(
                settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, options=_options()
            )
        return cls._service_client

    @classmethod
    def reset_client(cls) -> None:
        cls._service_client = None


def get_supabase() -> Client:
    return SupabaseClient.new_auth_client()


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class AssetStorage:
    """Uploads and removes asset images in the configured Storage bucket."""

    def __init__(self, client: Client, bucket: str | None = None) -> None:
        self._client = client
        self.bucket = bucket or settings.SUPABASE_STORAGE_BUCKET

    async def upload_png(self, path: str, data: bytes) -> str:
        """Upload PNG bytes to *path* and return the object's public URL.

        Raises:
            StorageError: when the upload is rejected or the service is unreachable.
        """
        bucket = self._client.storage.from_(self.bucket)
        try:
            await run_in_threadpool(
                bucket.upload,
                path,
                data,
                {"content-type": "image/png", "upsert": "true"},
            )
            url = await run_in_threadpool(bucket.get_public_url, path)
        except Exception as exc:
            raise StorageError(f"Upload of {path} failed: {exc}") from exc
        return url

    async def remove(self, paths: list[str]) -> None:
        """Delete the given objects from the bucket."""
        bucket = self._client.storage.from_(self.bucket)
        try:
            await run_in_threadpool(bucket.remove, paths)
        except Exception as exc:
            raise StorageError(f"Removal of {paths} failed: {exc}") from exc
