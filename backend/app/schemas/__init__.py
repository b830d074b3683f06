"""Pydantic request/response schemas for API endpoints."""

from app.schemas.credits import (
    ActionCostResponse,
    AuthorizationResponse,
    BalanceResponse,
    CreditPackPublicResponse,
    LedgerEntryResponse,
    PromoRedeemRequest,
    PromoRedeemResponse,
)

__all__ = [
    # Credits
    "ActionCostResponse",
    "AuthorizationResponse",
    "BalanceResponse",
    "CreditPackPublicResponse",
    "LedgerEntryResponse",
    "PromoRedeemRequest",
    "PromoRedeemResponse",
]
