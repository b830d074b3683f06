"""Rate limiting configuration using slowapi.

Security: Promo code redemption is the one user-triggered endpoint whose
inputs can be guessed, so it is throttled to stop code enumeration.

When auth is enabled, rate limiting keys on the JWT subject (per-user) so
users behind a shared IP do not throttle each other. Unauthenticated
requests fall back to IP-based keying.

Usage in routers:
    from app.core.rate_limiting import limiter

    @router.post("/promo-codes/redeem")
    @limiter.limit(settings.rate_limit_promo_redeem)
    async def redeem_promo_code(request: Request, ...):
        ...
"""

import jwt
from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from app.core.config import settings

# Every configured limit uses a per-minute window
_DEFAULT_RETRY_AFTER_SECONDS = "60"


def _rate_limit_key_func(request: Request) -> str:
    """Get rate limit key from request.

    Key format:
    - Auth disabled: "{ip}" (local dev mode)
    - Auth enabled + valid JWT: "user:{sub}"
    - Auth enabled + no/invalid JWT: "unauth:{ip}"

    Args:
        request: The incoming request.

    Returns:
        Rate limit key string.
    """
    if not settings.auth_enabled:
        return get_remote_address(request)

    fallback = f"unauth:{get_remote_address(request)}"
    token = request.cookies.get(settings.auth_cookie_name)
    if not token:
        return fallback

    # Only the sub claim is needed for keying; full validation is in deps.py.
    try:
        payload = jwt.decode(
            token,
            settings.auth_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
        )
        sub = payload["sub"]
    except (jwt.InvalidTokenError, KeyError):
        return fallback

    # UUID subjects are 36 chars; anything longer is not a user id
    return f"user:{sub}" if len(sub) <= 36 else fallback


# In-memory storage (single instance). For multiple instances configure
# Redis via RATELIMIT_STORAGE_URL.
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Return 429 Too Many Requests with the standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and Retry-After header.
    """
    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": _DEFAULT_RETRY_AFTER_SECONDS},
    )
