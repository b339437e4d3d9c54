from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# Headers applied to every response. The API serves JSON only, so nothing
# may be framed or execute scripts.
_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cross-Origin-Resource-Policy": "same-site",
}

_HSTS_VALUE = "max-age=31536000; includeSubDomains"

# Swagger UI needs scripts and styles from its CDN
_DOCS_PATHS = {"/docs", "/redoc"}


def _apply_security_headers(response: Response, is_https: bool, is_docs: bool) -> None:
    """Set standard security headers on a response."""
    for name, value in _SECURITY_HEADERS.items():
        if is_docs and name == "Content-Security-Policy":
            continue
        response.headers[name] = value
    if is_https:
        response.headers["Strict-Transport-Security"] = _HSTS_VALUE


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every HTTP response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        _apply_security_headers(
            response,
            is_https=request.url.scheme == "https",
            is_docs=request.url.path in _DOCS_PATHS,
        )
        return response
