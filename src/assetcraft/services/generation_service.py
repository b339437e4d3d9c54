"""Generation service -- prompt building, safety limits, charging, and Imagen calls.

Flow for one request:
1. Build and validate the final prompt
2. Refuse while the user is in a failure cooldown or over the cost guard
3. Charge gemstones (pro users are free) and commit the charge
4. Call Imagen and validate the returned bytes with Pillow
5. Record the attempt in generation_history
6. On any model failure -> refund, record the failure, bump the cooldown counter
"""

from __future__ import annotations

import base64
import logging
import math
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from fastapi import HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from assetcraft.config import settings
from assetcraft.integrations.gemini_client import GeminiError, GeneratedImage
from assetcraft.models import UserProfile
from assetcraft.services.audit_logger import audit
from assetcraft.services.gemstone_service import get_balance, refund_gemstones, spend_gemstones
from assetcraft.services.image_processing import ImageValidationError, inspect_image

logger = logging.getLogger(__name__)
log = structlog.get_logger()

ASPECT_RATIOS = ("1:1", "3:4", "4:3", "9:16", "16:9")
MIN_PROMPT_LENGTH = 3
QUALITY_SUFFIX = "high quality, detailed, professional digital art"

ASSET_TYPE_LEADS = {
    "character": "A detailed character design",
    "environment": "A beautiful environment scene",
    "object": "A well-designed object",
    "texture": "A high-quality texture pattern",
}
DEFAULT_ASSET_LEAD = "A digital asset"


# ---------------------------------------------------------------------------
# Protocol for the image model client
# ---------------------------------------------------------------------------

class ImageModelProtocol(Protocol):
    """Structural interface for the Imagen integration client."""

    async def generate_image(self, prompt: str, aspect_ratio: str = "1:1") -> GeneratedImage: ...


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------

class GenerationRequest(BaseModel):
    prompt: str = ""
    custom_prompt: str | None = Field(None, max_length=2000)
    asset_type: str | None = Field(None, max_length=50)
    style: str | None = Field(None, max_length=100)
    color: str | None = Field(None, max_length=100)
    aspect_ratio: str = "1:1"


class GenerationResponse(BaseModel):
    history_id: uuid.UUID
    prompt: str
    image_base64: str
    mime_type: str
    aspect_ratio: str
    gemstones_charged: int
    gemstone_balance: int


class GenerationHistoryItem(BaseModel):
    id: uuid.UUID
    prompt: str
    asset_type: str | None = None
    style: str | None = None
    color: str | None = None
    aspect_ratio: str
    status: str
    error_message: str | None = None
    cost_in_gemstones: int
    generation_time_ms: int | None = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Prompt building
# ---------------------------------------------------------------------------

def build_prompt(
    prompt: str,
    asset_type: str | None = None,
    style: str | None = None,
    color: str | None = None,
) -> str:
    """Compose the final Imagen prompt from the user's selections."""
    parts: list[str] = []
    if asset_type:
        parts.append(ASSET_TYPE_LEADS.get(asset_type.lower(), DEFAULT_ASSET_LEAD))
    if style:
        parts.append(f"in {style} style")
    if color:
        parts.append(f"with {color} color scheme")
    if prompt.strip():
        parts.append(prompt.strip())
    parts.append(QUALITY_SUFFIX)
    return ", ".join(parts)


def resolve_prompt(request: GenerationRequest) -> str:
    """Validate the request and return the prompt sent to the model.

    Raises HTTPException(400) for an overlong user prompt, an unknown aspect
    ratio, or a final prompt that is effectively empty.
    """
    if len(request.prompt) > settings.MAX_PROMPT_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Prompt must be at most {settings.MAX_PROMPT_LENGTH} characters",
        )
    if request.aspect_ratio not in ASPECT_RATIOS:
        raise HTTPException(
            status_code=400,
            detail=f"aspect_ratio must be one of {', '.join(ASPECT_RATIOS)}",
        )

    if request.custom_prompt is not None:
        final = request.custom_prompt.strip()
    else:
        final = build_prompt(request.prompt, request.asset_type, request.style, request.color)

    if len(final.strip()) < MIN_PROMPT_LENGTH:
        raise HTTPException(status_code=400, detail="Prompt is too short")
    return final


# ---------------------------------------------------------------------------
# Redis-backed safety limits
# ---------------------------------------------------------------------------

class FailureCooldown:
    """Blocks a user for a while after several consecutive failed generations.

    State lives in a Redis hash per user. Redis errors are logged and the
    check is skipped.
    """

    def __init__(self, redis: Any) -> None:
        self._redis = redis
        self.max_failures = settings.GENERATION_MAX_CONSECUTIVE_FAILURES
        self.cooldown_seconds = settings.GENERATION_FAILURE_COOLDOWN_MINUTES * 60

    @staticmethod
    def _key(user_id: uuid.UUID) -> str:
        return f"generation:failures:{user_id}"

    async def check(self, user_id: uuid.UUID, now: float | None = None) -> None:
        now = now if now is not None else time.time()
        key = self._key(user_id)
        try:
            state = await self._redis.hgetall(key)
        except Exception as exc:
            log.warning("failure_cooldown_redis_error", error=str(exc))
            return

        count = int(state.get("count", 0)) if state else 0
        if count < self.max_failures:
            return

        elapsed = now - float(state.get("last_failure_at", 0))
        if elapsed >= self.cooldown_seconds:
            await self.record_success(user_id)
            return

        minutes_left = max(1, math.ceil((self.cooldown_seconds - elapsed) / 60))
        raise HTTPException(
            status_code=429,
            detail=(
                f"Too many consecutive failures. Please wait {minutes_left} more "
                "minutes before trying again."
            ),
        )

    async def record_failure(self, user_id: uuid.UUID, now: float | None = None) -> None:
        now = now if now is not None else time.time()
        key = self._key(user_id)
        try:
            pipe = self._redis.pipeline()
            pipe.hincrby(key, "count", 1)
            pipe.hset(key, "last_failure_at", now)
            pipe.expire(key, self.cooldown_seconds * 12)
            await pipe.execute()
        except Exception as exc:
            log.warning("failure_cooldown_redis_error", error=str(exc))

    async def record_success(self, user_id: uuid.UUID) -> None:
        try:
            await self._redis.delete(self._key(user_id))
        except Exception as exc:
            log.warning("failure_cooldown_redis_error", error=str(exc))


class CostGuard:
    """Caps estimated model spend per day (service wide) and requests per user per hour."""

    WARNING_RATIO = 0.8

    def __init__(self, redis: Any) -> None:
        self._redis = redis
        self.estimated_cost = settings.GENERATION_ESTIMATED_COST
        self.daily_limit = settings.GENERATION_DAILY_COST_LIMIT
        self.hourly_limit = settings.GENERATION_MAX_REQUESTS_PER_HOUR

    @staticmethod
    def _daily_key(now: datetime) -> str:
        return f"generation:cost:{now:%Y-%m-%d}"

    @staticmethod
    def _hourly_key(user_id: uuid.UUID, now: datetime) -> str:
        return f"generation:requests:{user_id}:{now:%Y%m%d%H}"

    async def check(self, user_id: uuid.UUID, now: datetime | None = None) -> None:
        now = now or datetime.now(timezone.utc)
        try:
            daily_raw, hourly_raw = await self._redis.mget(
                self._daily_key(now), self._hourly_key(user_id, now),
            )
        except Exception as exc:
            log.warning("cost_guard_redis_error", error=str(exc))
            return

        daily_cost = float(daily_raw or 0)
        hourly_count = int(hourly_raw or 0)

        if daily_cost + self.estimated_cost > self.daily_limit:
            log.error("generation_daily_budget_exhausted", daily_cost=daily_cost)
            raise HTTPException(
                status_code=429,
                detail="Daily generation budget reached. Please try again tomorrow.",
            )
        if hourly_count >= self.hourly_limit:
            raise HTTPException(
                status_code=429,
                detail="Hourly generation limit reached. Please try again later.",
            )

    async def track(self, user_id: uuid.UUID, now: datetime | None = None) -> None:
        """Count one model call against the daily budget and the user's hour."""
        now = now or datetime.now(timezone.utc)
        daily_key = self._daily_key(now)
        hourly_key = self._hourly_key(user_id, now)
        try:
            pipe = self._redis.pipeline()
            pipe.incrbyfloat(daily_key, self.estimated_cost)
            pipe.expire(daily_key, 2 * 24 * 3600)
            pipe.incr(hourly_key)
            pipe.expire(hourly_key, 3600)
            results = await pipe.execute()
        except Exception as exc:
            log.warning("cost_guard_redis_error", error=str(exc))
            return

        new_cost = float(results[0])
        previous = new_cost - self.estimated_cost
        if previous < self.daily_limit <= new_cost:
            log.error("generation_daily_cost_limit_reached", daily_cost=round(new_cost, 2))
        elif previous < self.daily_limit * self.WARNING_RATIO <= new_cost:
            log.warning(
                "generation_daily_cost_warning",
                daily_cost=round(new_cost, 2),
                limit=self.daily_limit,
            )


# ---------------------------------------------------------------------------
# History helpers
# ---------------------------------------------------------------------------

async def record_history(
    db: AsyncSession,
    history_id: uuid.UUID,
    user_id: uuid.UUID,
    prompt: str,
    request: GenerationRequest,
    status: str,
    cost: int,
    duration_ms: int | None,
    error_message: str | None = None,
) -> None:
    await db.execute(
        text(
            "INSERT INTO generation_history "
            "(id, user_id, prompt, asset_type, style, color, aspect_ratio, status, "
            "error_message, cost_in_gemstones, generation_time_ms, created_at) "
            "VALUES (:id, :user_id, :prompt, :asset_type, :style, :color, :aspect_ratio, "
            ":status, :error_message, :cost, :duration_ms, :now)"
        ),
        {
            "id": history_id,
            "user_id": user_id,
            "prompt": prompt,
            "asset_type": request.asset_type,
            "style": request.style,
            "color": request.color,
            "aspect_ratio": request.aspect_ratio,
            "status": status,
            "error_message": error_message,
            "cost": cost,
            "duration_ms": duration_ms,
            "now": datetime.now(timezone.utc),
        },
    )


async def list_history(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int | None = None,
) -> list[GenerationHistoryItem]:
    """Return the newest generation records, capped at HISTORY_LIMIT."""
    limit = min(limit or settings.HISTORY_LIMIT, settings.HISTORY_LIMIT)
    result = await db.execute(
        text(
            "SELECT id, prompt, asset_type, style, color, aspect_ratio, status, "
            "error_message, cost_in_gemstones, generation_time_ms, created_at "
            "FROM generation_history WHERE user_id = :user_id "
            "ORDER BY created_at DESC LIMIT :limit"
        ),
        {"user_id": user_id, "limit": limit},
    )
    return [
        GenerationHistoryItem(
            id=row[0],
            prompt=row[1],
            asset_type=row[2],
            style=row[3],
            color=row[4],
            aspect_ratio=row[5],
            status=row[6],
            error_message=row[7],
            cost_in_gemstones=row[8],
            generation_time_ms=row[9],
            created_at=row[10],
        )
        for row in result.fetchall()
    ]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class GenerationService:
    """Runs one image generation end to end for an authenticated user."""

    def __init__(self, db: AsyncSession, redis: Any, model: ImageModelProtocol) -> None:
        self._db = db
        self._model = model
        self.cooldown = FailureCooldown(redis)
        self.cost_guard = CostGuard(redis)

    async def generate(self, user: UserProfile, request: GenerationRequest) -> GenerationResponse:
        final_prompt = resolve_prompt(request)

        await self.cooldown.check(user.id)
        await self.cost_guard.check(user.id)

        history_id = uuid.uuid4()
        cost = 0 if user.is_pro else settings.GENERATION_COST_GEMSTONES
        if cost:
            balance = await spend_gemstones(self._db, user.id, cost, reference_id=str(history_id))
        else:
            balance = await get_balance(self._db, user.id)
        await self._db.commit()

        await self.cost_guard.track(user.id)

        started = time.monotonic()
        try:
            image = await self._model.generate_image(final_prompt, request.aspect_ratio)
            info = inspect_image(image.image_bytes)
        except Exception as exc:
            # The charge is already committed; every failure here must refund it.
            duration_ms = int((time.monotonic() - started) * 1000)
            if isinstance(exc, (GeminiError, ImageValidationError)):
                logger.warning("Generation %s failed for user %s: %s", history_id, user.id, exc)
            else:
                logger.exception("Unexpected error in generation %s for user %s", history_id, user.id)
            await self._handle_failure(user, history_id, final_prompt, request, cost, duration_ms, str(exc))
            raise HTTPException(
                status_code=502,
                detail="Image generation failed. Any gemstones charged have been refunded.",
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        await record_history(
            self._db, history_id, user.id, final_prompt, request,
            "succeeded", cost, duration_ms,
        )
        await self._db.execute(
            text(
                "UPDATE user_profiles SET total_generations = total_generations + 1 "
                "WHERE id = :user_id"
            ),
            {"user_id": user.id},
        )
        await self.cooldown.record_success(user.id)
        audit.log_generation(user.id, history_id, "succeeded", cost, duration_ms)

        return GenerationResponse(
            history_id=history_id,
            prompt=final_prompt,
            image_base64=base64.b64encode(image.image_bytes).decode("ascii"),
            mime_type=info.mime_type,
            aspect_ratio=request.aspect_ratio,
            gemstones_charged=cost,
            gemstone_balance=balance,
        )

    async def regenerate(self, user: UserProfile, history_id: uuid.UUID) -> GenerationResponse:
        """Repeat a previous generation with the same final prompt and options."""
        result = await self._db.execute(
            text(
                "SELECT prompt, asset_type, style, color, aspect_ratio "
                "FROM generation_history WHERE id = :id AND user_id = :user_id"
            ),
            {"id": history_id, "user_id": user.id},
        )
        row = result.fetchone()
        if row is None:
            raise HTTPException(status_code=404, detail="Generation not found")

        request = GenerationRequest(
            custom_prompt=row[0],
            asset_type=row[1],
            style=row[2],
            color=row[3],
            aspect_ratio=row[4],
        )
        return await self.generate(user, request)

    async def _handle_failure(
        self,
        user: UserProfile,
        history_id: uuid.UUID,
        prompt: str,
        request: GenerationRequest,
        cost: int,
        duration_ms: int,
        error: str,
    ) -> None:
        """Refund, record the failed attempt, and count it toward the cooldown."""
        if cost:
            await refund_gemstones(self._db, user.id, cost, reference_id=str(history_id))
        await record_history(
            self._db, history_id, user.id, prompt, request,
            "failed", 0, duration_ms, error_message=error[:500],
        )
        await self._db.commit()
        await self.cooldown.record_failure(user.id)
        audit.log_generation(user.id, history_id, "failed", 0, duration_ms)
