"""AdMob rewarded-ad server-side verification (SSV).

Google signs each reward callback with ECDSA (P-256, SHA-256). The signed
content is the raw query string up to, but not including, ``&signature=``.
Verifier public keys are published as JSON and cached here between calls.
"""

from __future__ import annotations

import base64
import time

import httpx
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from assetcraft.config import settings

KEY_CACHE_TTL_SECONDS = 24 * 60 * 60
# An unknown key_id refetches at most this often.
KEY_REFRESH_MIN_INTERVAL_SECONDS = 60
_SIGNATURE_MARKER = "&signature="


class AdMobVerificationError(Exception):
    """Raised when a callback is malformed, unsigned, or fails verification."""


def _decode_signature(signature: str) -> bytes:
    """Decode a web-safe base64 signature, restoring stripped padding."""
    padded = signature + "=" * (-len(signature) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (ValueError, TypeError) as exc:
        raise AdMobVerificationError("Signature is not valid base64") from exc


def split_signed_content(query_string: str) -> str:
    """Return the part of *query_string* covered by the signature."""
    idx = query_string.find(_SIGNATURE_MARKER)
    if idx <= 0:
        raise AdMobVerificationError("Callback is missing a signature")
    return query_string[:idx]


class AdMobVerifier:
    """Verifies SSV callbacks against Google's published verifier keys."""

    def __init__(
        self,
        keys_url: str | None = None,
        keys: dict[int, ec.EllipticCurvePublicKey] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.keys_url = keys_url or settings.ADMOB_VERIFIER_KEYS_URL
        self.timeout = timeout
        self._keys: dict[int, ec.EllipticCurvePublicKey] = dict(keys or {})
        self._fetched_at: float | None = time.monotonic() if keys else None

    async def _refresh_keys(self) -> None:
        # A failed fetch still starts the refresh interval.
        self._fetched_at = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                response = await client.get(self.keys_url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AdMobVerificationError(f"Cannot fetch verifier keys: {exc}") from exc

        keys: dict[int, ec.EllipticCurvePublicKey] = {}
        try:
            for entry in response.json().get("keys", []):
                public_key = serialization.load_pem_public_key(entry["pem"].encode("utf-8"))
                if isinstance(public_key, ec.EllipticCurvePublicKey):
                    keys[int(entry["keyId"])] = public_key
        except (ValueError, KeyError, TypeError, AttributeError, UnsupportedAlgorithm) as exc:
            raise AdMobVerificationError(f"Malformed verifier key file: {exc}") from exc
        self._keys = keys

    async def _get_key(self, key_id: int) -> ec.EllipticCurvePublicKey:
        if self._fetched_at is None:
            await self._refresh_keys()
        else:
            age = time.monotonic() - self._fetched_at
            missing = key_id not in self._keys
            if age > KEY_CACHE_TTL_SECONDS or (missing and age >= KEY_REFRESH_MIN_INTERVAL_SECONDS):
                await self._refresh_keys()
        key = self._keys.get(key_id)
        if key is None:
            raise AdMobVerificationError(f"Unknown verifier key {key_id}")
        return key

    async def verify(self, query_string: str, signature: str, key_id: str) -> None:
        """Verify one callback.

        Raises:
            AdMobVerificationError: if anything about the callback does not check out.
        """
        content = split_signed_content(query_string)
        if not signature or not key_id:
            raise AdMobVerificationError("Callback is missing signature or key_id")
        try:
            numeric_key_id = int(key_id)
        except ValueError as exc:
            raise AdMobVerificationError("key_id must be numeric") from exc

        public_key = await self._get_key(numeric_key_id)
        try:
            public_key.verify(
                _decode_signature(signature),
                content.encode("utf-8"),
                ec.ECDSA(hashes.SHA256()),
            )
        except InvalidSignature as exc:
            raise AdMobVerificationError("Signature verification failed") from exc


_verifier: AdMobVerifier | None = None


def get_admob_verifier() -> AdMobVerifier:
    global _verifier
    if _verifier is None:
        _verifier = AdMobVerifier()
    return _verifier
