"""Credit ledger request/response schemas.

Models for the end-user /credits endpoints. All credit quantities are
strings with 2 decimal places so clients never see float rounding.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator

from app.core.credit_actions import CreditAction, MeteredAction

# Promo codes are 3-20 characters; leave room for surrounding whitespace
_MAX_PROMO_INPUT_LEN = 40

# =============================================================================
# Balance and costs
# =============================================================================


class BalanceResponse(BaseModel):
    """Response for GET /api/v1/credits/balance.

    Attributes:
        balance: Spendable credits.
        total_purchased: Lifetime purchased and promo credits.
        total_granted: Lifetime granted credits (free tier, admin).
        total_used: Lifetime credits spent.
        as_of: Timestamp when the balance was read.
    """

    model_config = ConfigDict(extra="forbid")

    balance: str
    total_purchased: str
    total_granted: str
    total_used: str
    as_of: datetime


class ActionCostResponse(BaseModel):
    """Response item for GET /api/v1/credits/costs.

    Attributes:
        action: Metered action.
        cost: Credit cost.
    """

    model_config = ConfigDict(extra="forbid")

    action: MeteredAction
    cost: str


class AuthorizationResponse(BaseModel):
    """Response for GET /api/v1/credits/authorize.

    Attributes:
        action: Metered action that was priced.
        allowed: Whether the current balance covers the cost.
        cost: Credit cost.
        shortfall: Missing credits (0.00 when allowed).
    """

    model_config = ConfigDict(extra="forbid")

    action: MeteredAction
    allowed: bool
    cost: str
    shortfall: str


# =============================================================================
# Ledger
# =============================================================================


class LedgerEntryResponse(BaseModel):
    """Response item for ledger history.

    Attributes:
        id: Entry UUID.
        delta: Signed credit change.
        action: Ledger action.
        balance_after: Balance right after this entry.
        related_document_id: Generated document, usage entries only.
        description: Human-readable description.
        created_at: When the entry was appended.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    delta: str
    action: CreditAction
    balance_after: str
    related_document_id: str | None = None
    description: str | None = None
    created_at: datetime


# =============================================================================
# Credit packs
# =============================================================================


class CreditPackPublicResponse(BaseModel):
    """Response item for GET /api/v1/credits/packs.

    Attributes:
        id: Pack UUID.
        name: Pack name.
        credits: Credits granted on purchase.
        price_cents: Price in minor units.
        price_display: Formatted price (e.g. '$4.99').
        currency: ISO 4217 code.
        is_popular: Highlight badge.
        description: Short description.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    credits: str
    price_cents: int
    price_display: str
    currency: str
    is_popular: bool
    description: str | None = None


# =============================================================================
# Promo codes
# =============================================================================


class PromoRedeemRequest(BaseModel):
    """Request for POST /api/v1/credits/promo-codes/redeem.

    Attributes:
        code: Promo code as typed; matched case-insensitively.
    """

    model_config = ConfigDict(extra="forbid")

    code: str

    @field_validator("code")
    @classmethod
    def check_code(cls, v: str) -> str:
        if len(v) > _MAX_PROMO_INPUT_LEN or not v.strip():
            msg = "code must be a non-empty promo code"
            raise ValueError(msg)
        return v.strip()


class PromoRedeemResponse(BaseModel):
    """Response for a successful promo redemption.

    Attributes:
        entry: The PROMO_CODE ledger entry.
        credits_added: Credits granted by the code.
        balance: Balance after redemption.
    """

    model_config = ConfigDict(extra="forbid")

    entry: LedgerEntryResponse
    credits_added: str
    balance: str
