"""Admin API router.

Back-office endpoints: users and their credit accounts, grants, purchase
reconciliation, promo codes, credit packs, and ledger reports.

All endpoints require the AdminUser dependency. Balance changes go through
CreditLedgerService so every one of them lands in the ledger.
"""

import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import AdminUser, DbSession, Ledger
from app.api.v1.credits import entry_response
from app.core.config import settings
from app.core.credit_actions import CreditAction
from app.core.errors import NotFoundError
from app.core.pagination import PaginationParams, pagination_params
from app.core.responses import DataResponse, ListResponse, PaginationMeta
from app.models.billing import CreditPack, PromoCode
from app.models.credit import CreditAccount
from app.models.user import User
from app.schemas.admin import (
    AdminUserResponse,
    CreditAccountResponse,
    CreditPackCreate,
    CreditPackResponse,
    CreditPackUpdate,
    GrantCreate,
    PromoCodeCreate,
    PromoCodeResponse,
    PromoCodeUpdate,
    PurchaseCreate,
    ReconciliationMismatch,
    ReconciliationResponse,
    UsageTodayResponse,
)
from app.schemas.credits import LedgerEntryResponse
from app.services.admin_management_service import AdminManagementService

router = APIRouter()
logger = logging.getLogger(__name__)

# =============================================================================
# Shared types and helpers
# =============================================================================

_CREDITS_FMT = "{:.2f}"
Pagination = Annotated[PaginationParams, Depends(pagination_params)]

IsActiveFilter = Annotated[
    bool | None,
    Query(description="Filter by active status"),
]
IsAdminFilter = Annotated[
    bool | None,
    Query(description="Filter by admin status"),
]
ActionFilter = Annotated[
    CreditAction | None,
    Query(description="Filter by ledger action"),
]


def _account_response(account: CreditAccount) -> CreditAccountResponse:
    """Build CreditAccountResponse from ORM row."""
    return CreditAccountResponse(
        user_id=str(account.user_id),
        balance=_CREDITS_FMT.format(account.balance),
        total_purchased=_CREDITS_FMT.format(account.total_purchased),
        total_granted=_CREDITS_FMT.format(account.total_granted),
        total_used=_CREDITS_FMT.format(account.total_used),
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


def _user_response(
    user: User,
    account: CreditAccount | None,
    *,
    protected_emails: set[str],
) -> AdminUserResponse:
    """Build AdminUserResponse with computed is_env_protected and balance."""
    return AdminUserResponse(
        id=str(user.id),
        email=user.email,
        name=user.name,
        is_admin=user.is_admin,
        is_env_protected=user.email.lower() in protected_emails,
        has_credit_account=account is not None,
        balance=_CREDITS_FMT.format(account.balance) if account else None,
        created_at=user.created_at,
    )


def _promo_response(row: PromoCode) -> PromoCodeResponse:
    """Build PromoCodeResponse from ORM row."""
    return PromoCodeResponse(
        id=str(row.id),
        code=row.code,
        credits=_CREDITS_FMT.format(row.credits),
        discount_percent=row.discount_percent,
        max_uses=row.max_uses,
        used_count=row.used_count,
        expires_at=row.expires_at,
        is_active=row.is_active,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _pack_response(row: CreditPack) -> CreditPackResponse:
    """Build CreditPackResponse from ORM row with computed price_display."""
    return CreditPackResponse(
        id=str(row.id),
        name=row.name,
        credits=_CREDITS_FMT.format(row.credits),
        price_cents=row.price_cents,
        price_display=f"${row.price_cents / 100:.2f}",
        currency=row.currency,
        display_order=row.display_order,
        is_active=row.is_active,
        is_popular=row.is_popular,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# =============================================================================
# Users and credit accounts
# =============================================================================


@router.get("/users")
async def list_users(
    _admin: AdminUser,
    db: DbSession,
    pagination: Pagination,
    is_admin: IsAdminFilter = None,
) -> ListResponse[AdminUserResponse]:
    """List users with their credit balances."""
    svc = AdminManagementService(db)
    rows, total = await svc.list_users(
        page=pagination.page, per_page=pagination.per_page, is_admin=is_admin
    )
    protected = settings.protected_admin_emails
    return ListResponse(
        data=[
            _user_response(user, account, protected_emails=protected)
            for user, account in rows
        ],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )


@router.get("/users/{user_id}/credits")
async def get_user_credits(
    _admin: AdminUser,
    ledger: Ledger,
    user_id: uuid.UUID,
) -> DataResponse[CreditAccountResponse]:
    """Return a user's credit account."""
    account = await ledger.get_balance(user_id)
    return DataResponse(data=_account_response(account))


@router.get("/users/{user_id}/ledger")
async def get_user_ledger(
    _admin: AdminUser,
    ledger: Ledger,
    user_id: uuid.UUID,
    pagination: Pagination,
    action: ActionFilter = None,
) -> ListResponse[LedgerEntryResponse]:
    """Return a user's ledger entries, newest first."""
    await ledger.get_balance(user_id)
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


@router.post("/users/{user_id}/credit-account")
async def open_user_account(
    _admin: AdminUser,
    db: DbSession,
    ledger: Ledger,
    user_id: uuid.UUID,
) -> DataResponse[CreditAccountResponse]:
    """Open a credit account for a user (registration hook).

    Idempotent: an existing account is returned unchanged.
    """
    account = await ledger.open_account(user_id)
    await db.commit()
    return DataResponse(data=_account_response(account))


@router.post("/users/{user_id}/grants", status_code=status.HTTP_201_CREATED)
async def grant_credits(
    admin_id: AdminUser,
    db: DbSession,
    ledger: Ledger,
    user_id: uuid.UUID,
    body: GrantCreate,
) -> DataResponse[LedgerEntryResponse]:
    """Grant credits to a user. Each call is a distinct grant."""
    entry = await ledger.credit(
        user_id,
        Decimal(body.credits),
        CreditAction.ADMIN_GRANT,
        description=f"Admin grant: {body.reason}"[:255],
    )
    await db.commit()
    logger.info(
        "Admin %s granted %s credits to user %s", admin_id, body.credits, user_id
    )
    return DataResponse(data=entry_response(entry))


@router.post("/users/{user_id}/purchases")
async def record_purchase(
    _admin: AdminUser,
    db: DbSession,
    ledger: Ledger,
    user_id: uuid.UUID,
    body: PurchaseCreate,
) -> DataResponse[LedgerEntryResponse]:
    """Record a completed credit-pack payment.

    Keyed by the payment event id, so redelivered events credit once and
    return the original entry. Retired (inactive) packs cannot be sold.
    """
    pack = await db.get(CreditPack, body.credit_pack_id)
    if pack is None or not pack.is_active:
        raise NotFoundError("Credit pack", str(body.credit_pack_id))
    entry = await ledger.credit(
        user_id,
        pack.credits,
        CreditAction.PURCHASE,
        body.idempotency_key,
        description=f"Purchased {pack.name} pack",
    )
    await db.commit()
    return DataResponse(data=entry_response(entry))


# =============================================================================
# Promo Codes
# =============================================================================


@router.get("/promo-codes")
async def list_promo_codes(
    _admin: AdminUser,
    db: DbSession,
    pagination: Pagination,
    is_active: IsActiveFilter = None,
) -> ListResponse[PromoCodeResponse]:
    """List promo codes, newest first."""
    svc = AdminManagementService(db)
    rows, total = await svc.list_promo_codes(
        offset=pagination.offset, limit=pagination.limit, is_active=is_active
    )
    return ListResponse(
        data=[_promo_response(row) for row in rows],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )


@router.post("/promo-codes", status_code=status.HTTP_201_CREATED)
async def create_promo_code(
    _admin: AdminUser,
    db: DbSession,
    body: PromoCodeCreate,
) -> DataResponse[PromoCodeResponse]:
    """Create a promo code."""
    svc = AdminManagementService(db)
    row = await svc.create_promo_code(
        code=body.code,
        credits=Decimal(body.credits),
        discount_percent=body.discount_percent,
        max_uses=body.max_uses,
        expires_at=body.expires_at,
        is_active=body.is_active,
    )
    await db.commit()
    return DataResponse(data=_promo_response(row))


@router.patch("/promo-codes/{promo_id}")
async def update_promo_code(
    _admin: AdminUser,
    db: DbSession,
    promo_id: uuid.UUID,
    body: PromoCodeUpdate,
) -> DataResponse[PromoCodeResponse]:
    """Update a promo code (active flag, cap, expiry)."""
    svc = AdminManagementService(db)
    kwargs = {field: getattr(body, field) for field in body.model_fields_set}
    row = await svc.update_promo_code(promo_id, **kwargs)
    await db.commit()
    return DataResponse(data=_promo_response(row))


# =============================================================================
# Credit Packs
# =============================================================================


@router.get("/credit-packs")
async def list_packs(
    _admin: AdminUser,
    db: DbSession,
) -> DataResponse[list[CreditPackResponse]]:
    """List all credit packs, active or not."""
    svc = AdminManagementService(db)
    rows = await svc.list_packs()
    return DataResponse(data=[_pack_response(row) for row in rows])


@router.post("/credit-packs", status_code=status.HTTP_201_CREATED)
async def create_pack(
    _admin: AdminUser,
    db: DbSession,
    body: CreditPackCreate,
) -> DataResponse[CreditPackResponse]:
    """Create a credit pack."""
    svc = AdminManagementService(db)
    row = await svc.create_pack(
        name=body.name,
        credits=Decimal(body.credits),
        price_cents=body.price_cents,
        currency=body.currency,
        display_order=body.display_order,
        is_popular=body.is_popular,
        description=body.description,
    )
    await db.commit()
    return DataResponse(data=_pack_response(row))


@router.patch("/credit-packs/{pack_id}")
async def update_pack(
    _admin: AdminUser,
    db: DbSession,
    pack_id: uuid.UUID,
    body: CreditPackUpdate,
) -> DataResponse[CreditPackResponse]:
    """Update a credit pack. Only provided fields change."""
    svc = AdminManagementService(db)
    kwargs = {field: getattr(body, field) for field in body.model_fields_set}
    if kwargs.get("credits") is not None:
        kwargs["credits"] = Decimal(kwargs["credits"])
    row = await svc.update_pack(pack_id, **kwargs)
    await db.commit()
    return DataResponse(data=_pack_response(row))


@router.delete("/credit-packs/{pack_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_pack(
    _admin: AdminUser,
    db: DbSession,
    pack_id: uuid.UUID,
) -> Response:
    """Delete a credit pack."""
    svc = AdminManagementService(db)
    await svc.delete_pack(pack_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Ledger reports
# =============================================================================


@router.get("/credits/reconciliation")
async def reconcile_ledger(
    _admin: AdminUser,
    ledger: Ledger,
) -> DataResponse[ReconciliationResponse]:
    """Report accounts whose balance disagrees with their ledger."""
    mismatches = await ledger.reconcile()
    return DataResponse(
        data=ReconciliationResponse(
            consistent=not mismatches,
            checked_at=datetime.now(UTC),
            mismatches=[
                ReconciliationMismatch(
                    user_id=str(row["user_id"]),
                    balance=_CREDITS_FMT.format(row["balance"]),
                    ledger_sum=_CREDITS_FMT.format(row["ledger_sum"]),
                    total_purchased=_CREDITS_FMT.format(row["total_purchased"]),
                    total_granted=_CREDITS_FMT.format(row["total_granted"]),
                    total_used=_CREDITS_FMT.format(row["total_used"]),
                )
                for row in mismatches
            ],
        )
    )


@router.get("/credits/usage-today")
async def usage_today(
    _admin: AdminUser,
    ledger: Ledger,
) -> DataResponse[UsageTodayResponse]:
    """Credits consumed by metered actions since 00:00 UTC."""
    since, used = await ledger.usage_today()
    return DataResponse(
        data=UsageTodayResponse(credits_used=_CREDITS_FMT.format(used), since=since)
    )
