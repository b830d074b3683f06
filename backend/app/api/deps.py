"""Shared dependencies for API endpoints.

Authentication, admin gating, and the credit checks that sit in front of
metered generation endpoints. Local-first mode uses DEFAULT_USER_ID; hosted
mode validates the JWT from the session cookie.
"""

import uuid
from collections.abc import Awaitable, Callable
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.credit_actions import MeteredAction
from app.core.database import get_db
from app.core.errors import AdminRequiredError, InsufficientCreditsError
from app.models import User
from app.services.credit_ledger import AuthorizationResult, CreditLedgerService

# Generic 401 detail, kept vague so failures leak nothing.
# Security: Never include specifics about WHY auth failed (expired, bad sig, etc.).
_UNAUTHORIZED_DETAIL = {
    "code": "UNAUTHORIZED",
    "message": "Authentication required",
}


async def get_current_user_id(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> uuid.UUID:
    """Get current user ID from auth context.

    Validation steps (hosted mode):
    1. Read JWT from cookie
    2. Decode + verify signature (HS256)
    3. Verify exp, aud, iss claims
    4. Extract sub as UUID
    5. Check token_invalidated_before (revocation)

    Falls back to DEFAULT_USER_ID when auth is disabled.

    Args:
        request: HTTP request (injected by FastAPI).
        db: Database session for revocation check (injected).

    Returns:
        UUID of the current authenticated user.

    Raises:
        HTTPException: 401 for any auth failure.
    """
    if not settings.auth_enabled:
        # Local-first mode: use DEFAULT_USER_ID from environment
        if settings.default_user_id is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=_UNAUTHORIZED_DETAIL,
            )
        return settings.default_user_id

    # Hosted mode: validate JWT from cookie
    token = request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_UNAUTHORIZED_DETAIL,
        )

    try:
        payload = jwt.decode(
            token,
            settings.auth_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
        )
        user_id = uuid.UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_UNAUTHORIZED_DETAIL,
        ) from exc

    # Security: iat is required for revocation check. A JWT without iat
    # would bypass token_invalidated_before entirely.
    iat = payload.get("iat")
    if iat is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_UNAUTHORIZED_DETAIL,
        )

    # Revocation check: reject JWTs issued before token_invalidated_before
    result = await db.execute(
        select(User.token_invalidated_before).where(User.id == user_id)
    )
    invalidated_before = result.scalar_one_or_none()
    if invalidated_before is not None and iat < invalidated_before.timestamp():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_UNAUTHORIZED_DETAIL,
        )

    return user_id


async def require_admin(
    user_id: Annotated[uuid.UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> uuid.UUID:
    """Gate admin endpoints on users.is_admin or the ADMIN_EMAILS list.

    The flag is read from the database on every request rather than
    trusted from the JWT, so demotion takes effect immediately. Emails
    listed in ADMIN_EMAILS pass even without the flag.

    Args:
        user_id: Current user ID (injected by get_current_user_id).
        db: Database session (injected).

    Returns:
        UUID of the admin user.

    Raises:
        AdminRequiredError: 403 if the user is not an admin or not found.
    """
    result = await db.execute(
        select(User.is_admin, User.email).where(User.id == user_id)
    )
    row = result.one_or_none()
    if row is None:
        raise AdminRequiredError()
    is_admin, email = row
    if not is_admin and email.lower() not in settings.protected_admin_emails:
        raise AdminRequiredError()
    return user_id


def get_credit_ledger(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> CreditLedgerService:
    """Build a CreditLedgerService bound to the request session."""
    return CreditLedgerService(db)


# Reusable type aliases for dependency injection
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
AdminUser = Annotated[uuid.UUID, Depends(require_admin)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Ledger = Annotated[CreditLedgerService, Depends(get_credit_ledger)]


def require_credits(
    action: MeteredAction,
) -> Callable[..., Awaitable[AuthorizationResult | None]]:
    """Build a dependency that returns 402 when the user cannot afford action.

    Usage:
        @router.post("/cv", dependencies=[Depends(require_credits(MeteredAction.CV_GENERATION))])

    This is a **soft gate** (read-only check). The hard enforcement is the
    atomic debit in CreditLedgerService.debit(), which re-validates the
    balance. Concurrent requests may pass this gate simultaneously, but the
    debit ensures the balance never goes negative.

    Args:
        action: Metered action the endpoint performs.

    Returns:
        Async dependency yielding the AuthorizationResult, or None when
        metering is disabled.
    """

    async def _require_credits(
        user_id: CurrentUserId,
        ledger: Ledger,
    ) -> AuthorizationResult | None:
        if not settings.metering_enabled:
            return None

        result = await ledger.authorize(user_id, action)
        if not result.allowed:
            raise InsufficientCreditsError(
                balance=result.cost - result.shortfall,
                required=result.cost,
            )
        return result

    return _require_credits
