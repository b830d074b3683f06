"""Admin API request/response schemas.

Pydantic models for the admin back-office: users and their credit accounts,
grants, purchase reconciliation, promo codes, credit packs and ledger
reports.

All credit quantities are serialized as strings to preserve decimal precision.
All schemas use ConfigDict(extra="forbid") to reject unexpected fields.
"""

import re
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, field_validator

# Max string length for decimal input fields. Prevents pathological-precision
# Decimal parsing (e.g. "0." + "0" * 100_000) from consuming CPU/memory.
_MAX_DECIMAL_STR_LEN = 20

# Upper bound for any single credit quantity entered by an admin
_MAX_CREDITS = Decimal("1000000")

_PROMO_CODE_RE = re.compile(r"^[A-Za-z0-9_-]{3,20}$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

# Shared validation messages
_MSG_NAME_MAX_50 = "name must be at most 50 characters"
_MSG_DESC_MAX_255 = "description must be at most 255 characters"
_MSG_CURRENCY = "currency must be a 3-letter ISO 4217 code"


def _validate_credits(value: str, field_name: str, *, allow_zero: bool) -> str:
    """Validate a string parses as a finite credit quantity.

    At most 2 decimal places, non-negative (or positive when allow_zero is
    False), and at most 1,000,000.
    """
    if len(value) > _MAX_DECIMAL_STR_LEN:
        msg = f"{field_name} string representation too long"
        raise ValueError(msg)
    try:
        d = Decimal(value)
    except InvalidOperation:
        msg = f"{field_name} must be a valid decimal number"
        raise ValueError(msg) from None
    if not d.is_finite():
        msg = f"{field_name} must be a finite number"
        raise ValueError(msg)
    if d < 0 or (d == 0 and not allow_zero):
        msg = f"{field_name} must be {'>= 0' if allow_zero else '> 0'}"
        raise ValueError(msg)
    if d > _MAX_CREDITS:
        msg = f"{field_name} must be <= {_MAX_CREDITS}"
        raise ValueError(msg)
    exponent = d.as_tuple().exponent
    if isinstance(exponent, int) and exponent < -2:
        msg = f"{field_name} must have at most 2 decimal places"
        raise ValueError(msg)
    return value


def _validate_currency(value: str) -> str:
    if not _CURRENCY_RE.match(value):
        raise ValueError(_MSG_CURRENCY)
    return value


# =============================================================================
# Users and credit accounts
# =============================================================================


class AdminUserResponse(BaseModel):
    """Response schema for admin user items.

    Attributes:
        id: UUID as string.
        email: User email.
        name: User display name or None.
        is_admin: Whether the user is an admin.
        is_env_protected: Whether the user is protected by ADMIN_EMAILS env var.
        has_credit_account: Whether a credit account was opened.
        balance: Balance as string with 2 decimal places, None without account.
        created_at: User creation timestamp.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    email: str
    name: str | None = None
    is_admin: bool
    is_env_protected: bool
    has_credit_account: bool
    balance: str | None = None
    created_at: datetime


class CreditAccountResponse(BaseModel):
    """Response schema for a user's credit account.

    Attributes:
        user_id: Account owner.
        balance: Spendable credits.
        total_purchased: Lifetime purchased and promo credits.
        total_granted: Lifetime granted credits.
        total_used: Lifetime credits spent.
        created_at: When the account was opened.
        updated_at: Last balance change.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str
    balance: str
    total_purchased: str
    total_granted: str
    total_used: str
    created_at: datetime
    updated_at: datetime


class GrantCreate(BaseModel):
    """Request schema for POST /admin/users/:id/grants.

    Attributes:
        credits: Credits to grant (> 0, 2 decimal places).
        reason: Why the grant was made; recorded on the ledger entry.
    """

    model_config = ConfigDict(extra="forbid")

    credits: str
    reason: str

    @field_validator("credits")
    @classmethod
    def check_credits(cls, v: str) -> str:
        return _validate_credits(v, "credits", allow_zero=False)

    @field_validator("reason")
    @classmethod
    def check_reason(cls, v: str) -> str:
        v = v.strip()
        if not v or len(v) > 200:
            msg = "reason must be between 1 and 200 characters"
            raise ValueError(msg)
        return v


class PurchaseCreate(BaseModel):
    """Request schema for POST /admin/users/:id/purchases.

    Records a completed payment. The idempotency key is the payment
    provider's event id, so duplicate webhook deliveries credit once.

    Attributes:
        credit_pack_id: Pack that was paid for.
        idempotency_key: Payment event id.
    """

    model_config = ConfigDict(extra="forbid")

    credit_pack_id: uuid.UUID
    idempotency_key: str

    @field_validator("idempotency_key")
    @classmethod
    def check_idempotency_key(cls, v: str) -> str:
        v = v.strip()
        if not v or len(v) > 255:
            msg = "idempotency_key must be between 1 and 255 characters"
            raise ValueError(msg)
        return v


# =============================================================================
# Promo Codes
# =============================================================================


class PromoCodeCreate(BaseModel):
    """Request schema for POST /admin/promo-codes.

    Attributes:
        code: 3-20 letters, digits, '-' or '_'. Stored upper-case.
        credits: Credits granted on redemption (>= 0).
        discount_percent: Optional checkout discount, 0-100.
        max_uses: Optional global redemption cap (>= 1).
        expires_at: Optional expiry timestamp.
        is_active: Initial active status. Defaults to True.
    """

    model_config = ConfigDict(extra="forbid")

    code: str
    credits: str
    discount_percent: int | None = None
    max_uses: int | None = None
    expires_at: datetime | None = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def check_code(cls, v: str) -> str:
        v = v.strip()
        if not _PROMO_CODE_RE.match(v):
            msg = "code must be 3-20 letters, digits, '-' or '_'"
            raise ValueError(msg)
        return v.upper()

    @field_validator("credits")
    @classmethod
    def check_credits(cls, v: str) -> str:
        return _validate_credits(v, "credits", allow_zero=True)

    @field_validator("discount_percent")
    @classmethod
    def check_discount(cls, v: int | None) -> int | None:
        if v is not None and (v < 0 or v > 100):
            msg = "discount_percent must be between 0 and 100"
            raise ValueError(msg)
        return v

    @field_validator("max_uses")
    @classmethod
    def check_max_uses(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            msg = "max_uses must be >= 1"
            raise ValueError(msg)
        return v


class PromoCodeUpdate(BaseModel):
    """Request schema for PATCH /admin/promo-codes/:id.

    Only provided fields are updated. Sending null for max_uses or
    expires_at removes the limit.

    Attributes:
        is_active: Toggle active status.
        max_uses: New redemption cap.
        expires_at: New expiry.
    """

    model_config = ConfigDict(extra="forbid")

    is_active: bool | None = None
    max_uses: int | None = None
    expires_at: datetime | None = None

    @field_validator("max_uses")
    @classmethod
    def check_max_uses(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            msg = "max_uses must be >= 1"
            raise ValueError(msg)
        return v


class PromoCodeResponse(BaseModel):
    """Response schema for promo code items.

    Attributes:
        id: UUID as string.
        code: Upper-case code.
        credits: Credits granted on redemption.
        discount_percent: Checkout discount or None.
        max_uses: Redemption cap or None.
        used_count: Redemptions so far.
        expires_at: Expiry or None.
        is_active: Whether the code is active.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    code: str
    credits: str
    discount_percent: int | None = None
    max_uses: int | None = None
    used_count: int
    expires_at: datetime | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


# =============================================================================
# Credit Packs
# =============================================================================


class CreditPackCreate(BaseModel):
    """Request schema for POST /admin/credit-packs.

    Attributes:
        name: Pack name, max 50 chars.
        credits: Credits granted (> 0).
        price_cents: Price in minor units (> 0).
        currency: ISO 4217 code. Defaults to USD.
        display_order: Sort order in UI. Defaults to 0.
        is_popular: Highlight badge. Defaults to False.
        description: Short description, max 255 chars.
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    credits: str
    price_cents: int
    currency: str = "USD"
    display_order: int = 0
    is_popular: bool = False
    description: str | None = None

    @field_validator("name")
    @classmethod
    def check_name_length(cls, v: str) -> str:
        if not v.strip() or len(v) > 50:
            raise ValueError(_MSG_NAME_MAX_50)
        return v

    @field_validator("credits")
    @classmethod
    def check_credits(cls, v: str) -> str:
        return _validate_credits(v, "credits", allow_zero=False)

    @field_validator("price_cents")
    @classmethod
    def check_price_positive(cls, v: int) -> int:
        if v <= 0:
            msg = "price_cents must be > 0"
            raise ValueError(msg)
        if v > 10_000_000:
            msg = "price_cents must be <= 10000000"
            raise ValueError(msg)
        return v

    @field_validator("currency")
    @classmethod
    def check_currency(cls, v: str) -> str:
        return _validate_currency(v)

    @field_validator("display_order")
    @classmethod
    def check_display_order_range(cls, v: int) -> int:
        if v < 0 or v > 1000:
            msg = "display_order must be between 0 and 1000"
            raise ValueError(msg)
        return v

    @field_validator("description")
    @classmethod
    def check_description_length(cls, v: str | None) -> str | None:
        if v is not None and len(v) > 255:
            raise ValueError(_MSG_DESC_MAX_255)
        return v


class CreditPackUpdate(BaseModel):
    """Request schema for PATCH /admin/credit-packs/:id.

    All fields optional — only provided fields are updated.

    Attributes:
        name: New pack name.
        credits: New credit amount.
        price_cents: New price.
        currency: New currency.
        display_order: New sort order.
        is_active: Toggle active status.
        is_popular: Toggle highlight badge.
        description: New description (null clears).
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    credits: str | None = None
    price_cents: int | None = None
    currency: str | None = None
    display_order: int | None = None
    is_active: bool | None = None
    is_popular: bool | None = None
    description: str | None = None

    @field_validator("name")
    @classmethod
    def check_name_length(cls, v: str | None) -> str | None:
        if v is not None and (not v.strip() or len(v) > 50):
            raise ValueError(_MSG_NAME_MAX_50)
        return v

    @field_validator("credits")
    @classmethod
    def check_credits(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_credits(v, "credits", allow_zero=False)

    @field_validator("price_cents")
    @classmethod
    def check_price_positive(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            msg = "price_cents must be > 0"
            raise ValueError(msg)
        if v is not None and v > 10_000_000:
            msg = "price_cents must be <= 10000000"
            raise ValueError(msg)
        return v

    @field_validator("currency")
    @classmethod
    def check_currency(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_currency(v)

    @field_validator("display_order")
    @classmethod
    def check_display_order_range(cls, v: int | None) -> int | None:
        if v is not None and (v < 0 or v > 1000):
            msg = "display_order must be between 0 and 1000"
            raise ValueError(msg)
        return v

    @field_validator("description")
    @classmethod
    def check_description_length(cls, v: str | None) -> str | None:
        if v is not None and len(v) > 255:
            raise ValueError(_MSG_DESC_MAX_255)
        return v


class CreditPackResponse(BaseModel):
    """Response schema for credit pack items.

    Attributes:
        id: UUID as string.
        name: Pack name.
        credits: Credits granted.
        price_cents: Price in minor units.
        price_display: Formatted price (e.g. '$4.99').
        currency: ISO 4217 code.
        display_order: Sort order.
        is_active: Whether the pack is active.
        is_popular: Highlight badge.
        description: Short description or None.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    credits: str
    price_cents: int
    price_display: str
    currency: str
    display_order: int
    is_active: bool
    is_popular: bool
    description: str | None = None
    created_at: datetime
    updated_at: datetime


# =============================================================================
# Ledger reports
# =============================================================================


class ReconciliationMismatch(BaseModel):
    """One account whose balance disagrees with its ledger or counters.

    Attributes:
        user_id: Account owner.
        balance: Cached balance.
        ledger_sum: Sum of the account's ledger deltas.
        total_purchased: Lifetime purchased counter.
        total_granted: Lifetime granted counter.
        total_used: Lifetime used counter.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str
    balance: str
    ledger_sum: str
    total_purchased: str
    total_granted: str
    total_used: str


class ReconciliationResponse(BaseModel):
    """Response schema for GET /admin/credits/reconciliation.

    Attributes:
        consistent: True when no account is mismatched.
        checked_at: When the check ran.
        mismatches: Mismatched accounts (expected empty).
    """

    model_config = ConfigDict(extra="forbid")

    consistent: bool
    checked_at: datetime
    mismatches: list[ReconciliationMismatch]


class UsageTodayResponse(BaseModel):
    """Response schema for GET /admin/credits/usage-today.

    Attributes:
        credits_used: Credits consumed by usage actions since 00:00 UTC.
        since: Start of the window.
    """

    model_config = ConfigDict(extra="forbid")

    credits_used: str
    since: datetime
