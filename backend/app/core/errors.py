"""API error classes.

HTTP status codes and machine-readable error codes for the credits API.
Ledger errors (insufficient credits, promo code failures, idempotency
conflicts, storage outages) live alongside the generic REST errors so the
single APIError handler in main.py renders all of them.

WHY CUSTOM ERROR CLASSES:
- Consistent error response format across all endpoints
- Easy to map to HTTP status codes in exception handlers
- Type-safe error handling in services/repositories
"""

from decimal import Decimal

_CREDITS_FMT = "{:.2f}"


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
        retryable: Whether the caller may retry the whole operation.
    """

    retryable = False

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for request body validation errors, query param errors, etc.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class ForbiddenError(APIError):
    """Not allowed to access resource (403).

    Use when auth is valid but user lacks permission.
    """

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class AdminRequiredError(ForbiddenError):
    """Admin access required (403).

    Raised by the require_admin dependency when user lacks the admin flag.
    """

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="ADMIN_REQUIRED",
            message="Admin access required",
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404).

    Use when requested resource doesn't exist OR doesn't belong to user.

    WHY NOT SEPARATE "FORBIDDEN" FOR WRONG OWNERSHIP:
    - Revealing "exists but not yours" leaks information
    - From user perspective, resource simply doesn't exist
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class InsufficientCreditsError(APIError):
    """Balance below the cost of a metered action at commit time (402).

    Expected and recoverable: the client should offer a credit purchase.
    Details include the balance, the cost and the shortfall.

    Args:
        balance: Balance observed when the debit was rejected.
        required: Cost of the requested action.
    """

    def __init__(self, balance: Decimal, required: Decimal) -> None:
        self.balance = balance
        self.required = required
        self.shortfall = required - balance
        super().__init__(
            code="INSUFFICIENT_CREDITS",
            message=(
                f"You have {_CREDITS_FMT.format(balance)} credits but this action "
                f"needs {_CREDITS_FMT.format(required)}. Buy more credits to continue."
            ),
            status_code=402,
            details=[
                {
                    "balance": _CREDITS_FMT.format(balance),
                    "required": _CREDITS_FMT.format(required),
                    "shortfall": _CREDITS_FMT.format(self.shortfall),
                }
            ],
        )


class PromoCodeInvalidError(APIError):
    """Promo code unknown, deactivated, or past its expiry (400).

    The reason is kept on the instance for logging but the client message
    stays the same for unknown and inactive codes so codes cannot be probed.

    Args:
        reason: One of "not_found", "inactive", "expired".
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        message = (
            "This promo code has expired"
            if reason == "expired"
            else "Invalid promo code"
        )
        super().__init__(
            code="PROMO_CODE_INVALID",
            message=message,
            status_code=400,
        )


class PromoCodeExhaustedError(APIError):
    """Promo code reached its max_uses cap (409). Permanent."""

    def __init__(self) -> None:
        super().__init__(
            code="PROMO_CODE_EXHAUSTED",
            message="This promo code has reached its usage limit",
            status_code=409,
        )


class PromoCodeAlreadyRedeemedError(APIError):
    """The user already redeemed this promo code (409)."""

    def __init__(self) -> None:
        super().__init__(
            code="PROMO_CODE_ALREADY_REDEEMED",
            message="You have already used this promo code",
            status_code=409,
        )


class DuplicateIdempotencyKeyConflict(ConflictError):
    """Idempotency key reused for a different credit (409).

    Raised when a key already belongs to an entry with another user,
    action or amount. Never resolved silently and never retryable:
    it indicates a caller bug or tampering.

    Args:
        idempotency_key: The key that collided.
    """

    def __init__(self, idempotency_key: str) -> None:
        self.idempotency_key = idempotency_key
        super().__init__(
            code="IDEMPOTENCY_KEY_CONFLICT",
            message="Idempotency key was already used for a different credit",
        )


class StorageUnavailableError(APIError):
    """Ledger storage unreachable or timed out (503).

    Mutations are atomic, so the caller may retry the whole operation with
    backoff. The exception chain keeps the driver error for logs.
    """

    retryable = True

    def __init__(self, message: str = "Credit ledger is temporarily unavailable") -> None:
        super().__init__(
            code="STORAGE_UNAVAILABLE",
            message=message,
            status_code=503,
        )
