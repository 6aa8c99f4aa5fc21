import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Cache-Control": "no-store",
}

# routes that take credentials or codes get the strict auth rule
CREDENTIAL_PATHS = ("/api/auth/login", "/api/auth/register", "/api/auth/verify-2fa")
AUTH_SCOPE = "/api/auth"
USER_SCOPE = "/api/user"
DEFAULT_SCOPE = "default"


def client_ip(request: Request) -> str:
    """Peer address, or the nearest untrusted X-Forwarded-For hop when the
    peer is one of settings.TRUSTED_PROXIES."""
    peer = request.client.host if request.client and request.client.host else "unknown"
    trusted = set(settings.TRUSTED_PROXIES)
    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded or peer not in trusted:
        return peer

    hops = [h.strip() for h in forwarded.split(",") if h.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return peer


def rate_limit_scope(path: str) -> str | None:
    if path in CREDENTIAL_PATHS:
        return AUTH_SCOPE
    if path.startswith(USER_SCOPE):
        return USER_SCOPE
    if path.startswith(AUTH_SCOPE):
        return DEFAULT_SCOPE
    return None


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for key, value in SECURITY_HEADERS.items():
            response.headers.setdefault(key, value)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP, per-route limits on the API, using app.state.rate_limiter."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        scope = rate_limit_scope(path)
        if scope is None:
            return await call_next(request)

        ip = client_ip(request)
        result = await request.app.state.rate_limiter.hit(f"{ip}:{path}", scope)
        if not result.allowed:
            logger.warning("Rejected %s %s from %s: rate limit", request.method, path, ip)
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "message": "Rate limit exceeded. Please try again later.",
                    "retry_after": result.retry_after,
                },
                headers={"Retry-After": str(result.retry_after or 60)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return response
