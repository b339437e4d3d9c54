"""Redis sliding-window rate limiting for abuse-prone endpoints.

Each rule owns a sorted set per caller (``ratelimit:{path}:{identifier}``)
holding one member per request inside the window. If Redis is unreachable
the request is let through.
"""

import time
from dataclasses import dataclass
from typing import Literal

import structlog
from fastapi import Request
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

log = structlog.get_logger()


@dataclass(frozen=True)
class RateLimitRule:
    path: str
    limit: int
    window: int
    key: Literal["ip", "user"]
    method: str | None = None

    def matches(self, path: str, method: str) -> bool:
        if not path.startswith(self.path):
            return False
        return self.method is None or self.method.upper() == method.upper()


# Matched top-to-bottom; the first matching rule wins.
RATE_LIMIT_RULES: list[RateLimitRule] = [
    RateLimitRule("/api/v1/auth/signup", limit=3, window=3600, key="ip"),
    RateLimitRule("/api/v1/auth/login", limit=5, window=900, key="ip"),
    RateLimitRule("/api/v1/auth/password-reset", limit=3, window=3600, key="ip"),
    RateLimitRule("/api/v1/generations", limit=20, window=3600, key="user", method="POST"),
    RateLimitRule("/api/v1/ai", limit=30, window=600, key="user"),
    RateLimitRule("/api/v1/store/purchases", limit=10, window=3600, key="user"),
]

SKIP_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}


@dataclass
class RateLimitResult:
    current_count: int
    limit: int
    window: int
    reset_at: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)

    @property
    def exceeded(self) -> bool:
        return self.current_count > self.limit

    def apply_headers(self, response: Response) -> None:
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(self.remaining)
        response.headers["X-RateLimit-Reset"] = str(self.reset_at)


def match_rule(path: str, method: str) -> RateLimitRule | None:
    return next((rule for rule in RATE_LIMIT_RULES if rule.matches(path, method)), None)


def client_ip(request: Request) -> str:
    """Caller address; the first X-Forwarded-For hop wins behind a proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def token_subject(request: Request) -> str | None:
    """Read ``sub`` from the bearer token without verifying it.

    Only used as a bucket key; the route itself still verifies the token.
    """
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    try:
        return jwt.get_unverified_claims(token).get("sub")
    except JWTError:
        return None


def bucket_key(request: Request, rule: RateLimitRule) -> str:
    if rule.key == "user":
        identifier = (
            getattr(request.state, "user_id", None)
            or token_subject(request)
            or client_ip(request)
        )
    else:
        identifier = client_ip(request)
    return f"ratelimit:{rule.path}:{identifier}"


async def record_hit(redis, key: str, rule: RateLimitRule, member: str) -> RateLimitResult:
    """Add this request to the window and count what is inside it."""
    now = int(time.time())

    pipe = redis.pipeline()
    pipe.zremrangebyscore(key, 0, now - rule.window)
    pipe.zadd(key, {f"{now}:{member}": now})
    pipe.zcard(key)
    pipe.expire(key, rule.window)
    _, _, count, _ = await pipe.execute()

    return RateLimitResult(
        current_count=count,
        limit=rule.limit,
        window=rule.window,
        reset_at=now + rule.window,
    )


def too_many_requests(result: RateLimitResult) -> JSONResponse:
    response = JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please try again later."},
    )
    result.apply_headers(response)
    response.headers["Retry-After"] = str(result.window)
    return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        rule = None if path in SKIP_PATHS else match_rule(path, request.method)
        if rule is None:
            return await call_next(request)

        key = bucket_key(request, rule)
        try:
            result = await record_hit(request.app.state.redis, key, rule, str(id(request)))
        except Exception as exc:
            log.warning("rate_limit_redis_error", error=str(exc), path=path)
            return await call_next(request)

        if result.exceeded:
            log.warning(
                "rate_limit_exceeded",
                path=path,
                key=key,
                limit=result.limit,
                count=result.current_count,
            )
            return too_many_requests(result)

        response = await call_next(request)
        result.apply_headers(response)
        return response
