"""Credits API router.

End-user endpoints for the credit ledger: balance, cost table,
affordability checks, ledger history, the credit-pack catalog, and promo
code redemption. All endpoints require authentication. Credit quantities
are strings with 2 decimals.
"""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import CurrentUserId, DbSession, Ledger
from app.core.config import settings
from app.core.credit_actions import CreditAction, MeteredAction, cost_table
from app.core.pagination import PaginationParams, pagination_params
from app.core.rate_limiting import limiter
from app.core.responses import DataResponse, ListResponse, PaginationMeta
from app.models.billing import CreditPack
from app.models.credit import CreditAccount, LedgerEntry
from app.schemas.credits import (
    ActionCostResponse,
    AuthorizationResponse,
    BalanceResponse,
    CreditPackPublicResponse,
    LedgerEntryResponse,
    PromoRedeemRequest,
    PromoRedeemResponse,
)
from app.services.admin_management_service import AdminManagementService

router = APIRouter()

# =============================================================================
# Shared types and helpers
# =============================================================================

_CREDITS_FMT = "{:.2f}"
Pagination = Annotated[PaginationParams, Depends(pagination_params)]

ActionFilter = Annotated[
    CreditAction | None,
    Query(description="Filter by ledger action"),
]
MeteredActionParam = Annotated[
    MeteredAction,
    Query(description="Metered action to price"),
]


def balance_response(account: CreditAccount) -> BalanceResponse:
    """Build BalanceResponse from an account snapshot."""
    return BalanceResponse(
        balance=_CREDITS_FMT.format(account.balance),
        total_purchased=_CREDITS_FMT.format(account.total_purchased),
        total_granted=_CREDITS_FMT.format(account.total_granted),
        total_used=_CREDITS_FMT.format(account.total_used),
        as_of=datetime.now(UTC),
    )


def entry_response(entry: LedgerEntry) -> LedgerEntryResponse:
    """Build LedgerEntryResponse from ORM row."""
    return LedgerEntryResponse(
        id=str(entry.id),
        delta=_CREDITS_FMT.format(entry.delta),
        action=CreditAction(entry.action),
        balance_after=_CREDITS_FMT.format(entry.balance_after),
        related_document_id=(
            str(entry.related_document_id) if entry.related_document_id else None
        ),
        description=entry.description,
        created_at=entry.created_at,
    )


def _public_pack_response(row: CreditPack) -> CreditPackPublicResponse:
    return CreditPackPublicResponse(
        id=str(row.id),
        name=row.name,
        credits=_CREDITS_FMT.format(row.credits),
        price_cents=row.price_cents,
        price_display=f"${row.price_cents / 100:.2f}",
        currency=row.currency,
        is_popular=row.is_popular,
        description=row.description,
    )


# =============================================================================
# Balance and account
# =============================================================================


@router.get("/balance")
async def get_balance(
    user_id: CurrentUserId,
    ledger: Ledger,
) -> DataResponse[BalanceResponse]:
    """Return the user's balance and lifetime counters."""
    account = await ledger.get_balance(user_id)
    return DataResponse(data=balance_response(account))


@router.post("/account")
async def open_account(
    user_id: CurrentUserId,
    db: DbSession,
    ledger: Ledger,
) -> DataResponse[BalanceResponse]:
    """Open the user's credit account, seeding the free-tier credits.

    Idempotent: calling again returns the existing account unchanged.
    """
    account = await ledger.open_account(user_id)
    await db.commit()
    return DataResponse(data=balance_response(account))


# =============================================================================
# Costs and authorization
# =============================================================================


@router.get("/costs")
async def get_costs(
    _user_id: CurrentUserId,
) -> DataResponse[list[ActionCostResponse]]:
    """Return the credit cost of every metered action."""
    return DataResponse(
        data=[
            ActionCostResponse(action=action, cost=_CREDITS_FMT.format(cost))
            for action, cost in cost_table().items()
        ]
    )


@router.get("/authorize")
async def authorize(
    user_id: CurrentUserId,
    ledger: Ledger,
    action: MeteredActionParam,
) -> DataResponse[AuthorizationResponse]:
    """Check whether the user can currently afford an action.

    Advisory only: the debit re-validates the balance.
    """
    result = await ledger.authorize(user_id, action)
    return DataResponse(
        data=AuthorizationResponse(
            action=action,
            allowed=result.allowed,
            cost=_CREDITS_FMT.format(result.cost),
            shortfall=_CREDITS_FMT.format(result.shortfall),
        )
    )


# =============================================================================
# GET /history
# =============================================================================


@router.get("/history")
async def get_history(
    user_id: CurrentUserId,
    ledger: Ledger,
    pagination: Pagination,
    action: ActionFilter = None,
) -> ListResponse[LedgerEntryResponse]:
    """Return the user's ledger entries, newest first."""
    entries, total = await ledger.list_history(
        user_id,
        offset=pagination.offset,
        limit=pagination.limit,
        action=action,
    )
    return ListResponse(
        data=[entry_response(entry) for entry in entries],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )


# =============================================================================
# GET /packs
# =============================================================================


@router.get("/packs")
async def list_packs(
    _user_id: CurrentUserId,
    db: DbSession,
) -> DataResponse[list[CreditPackPublicResponse]]:
    """Return the active credit packs in display order."""
    rows = await AdminManagementService(db).list_packs(active_only=True)
    return DataResponse(data=[_public_pack_response(row) for row in rows])


# =============================================================================
# POST /promo-codes/redeem
# =============================================================================


@router.post("/promo-codes/redeem")
@limiter.limit(settings.rate_limit_promo_redeem)
async def redeem_promo_code(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: PromoRedeemRequest,
    user_id: CurrentUserId,
    db: DbSession,
    ledger: Ledger,
) -> DataResponse[PromoRedeemResponse]:
    """Redeem a promo code for credits.

    Security: Rate limited to stop promo code enumeration.
    """
    entry = await ledger.redeem_promo_code(user_id, body.code)
    await db.commit()
    return DataResponse(
        data=PromoRedeemResponse(
            entry=entry_response(entry),
            credits_added=_CREDITS_FMT.format(entry.delta),
            balance=_CREDITS_FMT.format(entry.balance_after),
        )
    )
