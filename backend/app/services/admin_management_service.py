"""Admin management service — CRUD operations.

Business logic for the admin back-office: credit-pack catalog, promo codes,
and the user list with credit balances. Balance changes never happen here;
grants and purchases go through CreditLedgerService so they are recorded in
the ledger.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.billing import CreditPack, PromoCode
from app.models.credit import CreditAccount
from app.models.user import User
from app.repositories.promo_code_repository import PromoCodeRepository

logger = logging.getLogger(__name__)


class AdminManagementService:
    """CRUD operations for admin-managed billing configuration.

    Args:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    # -----------------------------------------------------------------------
    # Credit Packs
    # -----------------------------------------------------------------------

    async def list_packs(self, *, active_only: bool = False) -> list[CreditPack]:
        """List credit packs ordered by display_order.

        Args:
            active_only: Only return packs visible to end users.

        Returns:
            List of CreditPack rows.
        """
        stmt = select(CreditPack)
        if active_only:
            stmt = stmt.where(CreditPack.is_active.is_(True))
        stmt = stmt.order_by(CreditPack.display_order, CreditPack.name)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def get_pack(self, pack_id: uuid.UUID) -> CreditPack:
        """Get a credit pack by id.

        Raises:
            NotFoundError: If pack not found.
        """
        row = await self._db.get(CreditPack, pack_id)
        if row is None:
            raise NotFoundError("Credit pack", str(pack_id))
        return row

    async def create_pack(
        self,
        *,
        name: str,
        credits: Decimal,
        price_cents: int,
        currency: str = "USD",
        display_order: int = 0,
        is_popular: bool = False,
        description: str | None = None,
    ) -> CreditPack:
        """Create a credit pack.

        Args:
            name: Pack display name.
            credits: Credits granted on purchase.
            price_cents: Price in minor units.
            currency: ISO 4217 currency code.
            display_order: Sort order.
            is_popular: Show the highlight badge.
            description: Short description.

        Returns:
            Created CreditPack row.
        """
        row = CreditPack(
            name=name,
            credits=credits,
            price_cents=price_cents,
            currency=currency,
            display_order=display_order,
            is_popular=is_popular,
            description=description,
        )
        self._db.add(row)
        await self._db.flush()
        await self._db.refresh(row)
        return row

    async def update_pack(
        self,
        pack_id: uuid.UUID,
        *,
        name: str | None = None,
        credits: Decimal | None = None,
        price_cents: int | None = None,
        currency: str | None = None,
        display_order: int | None = None,
        is_active: bool | None = None,
        is_popular: bool | None = None,
        description: str | None = ...,  # type: ignore[assignment]
    ) -> CreditPack:
        """Update a credit pack.

        Args:
            pack_id: UUID of pack.
            name: New name.
            credits: New credit amount.
            price_cents: New price.
            currency: New currency.
            display_order: New sort order.
            is_active: New active status.
            is_popular: New highlight flag.
            description: New description (None clears).

        Returns:
            Updated CreditPack row.

        Raises:
            NotFoundError: If pack not found.
        """
        row = await self.get_pack(pack_id)

        if name is not None:
            row.name = name
        if credits is not None:
            row.credits = credits
        if price_cents is not None:
            row.price_cents = price_cents
        if currency is not None:
            row.currency = currency
        if display_order is not None:
            row.display_order = display_order
        if is_active is not None:
            row.is_active = is_active
        if is_popular is not None:
            row.is_popular = is_popular
        # Sentinel ... means "not provided"; None means "clear the field"
        if description is not ...:
            row.description = description

        await self._db.flush()
        await self._db.refresh(row)
        return row

    async def delete_pack(self, pack_id: uuid.UUID) -> None:
        """Delete a credit pack.

        Ledger entries never reference packs, so history is unaffected.

        Args:
            pack_id: UUID of pack.

        Raises:
            NotFoundError: If pack not found.
        """
        row = await self.get_pack(pack_id)
        await self._db.delete(row)
        await self._db.flush()

    # -----------------------------------------------------------------------
    # Promo Codes
    # -----------------------------------------------------------------------

    async def list_promo_codes(
        self,
        *,
        offset: int = 0,
        limit: int = 50,
        is_active: bool | None = None,
    ) -> tuple[list[PromoCode], int]:
        """List promo codes, newest first.

        Returns:
            Tuple of (promo code list, total count).
        """
        return await PromoCodeRepository.list_all(
            self._db, offset=offset, limit=limit, is_active=is_active
        )

    async def create_promo_code(
        self,
        *,
        code: str,
        credits: Decimal,
        discount_percent: int | None = None,
        max_uses: int | None = None,
        expires_at: datetime | None = None,
        is_active: bool = True,
    ) -> PromoCode:
        """Create a promo code. The code is stored upper-case.

        Args:
            code: Code as entered by the admin.
            credits: Credits granted on redemption.
            discount_percent: Optional checkout discount.
            max_uses: Optional global redemption cap.
            expires_at: Optional expiry.
            is_active: Initial active status.

        Returns:
            Created PromoCode row.

        Raises:
            ConflictError: DUPLICATE_PROMO_CODE if the code exists.
        """
        normalized = code.strip().upper()
        if await PromoCodeRepository.get_by_code(self._db, normalized) is not None:
            raise ConflictError(
                code="DUPLICATE_PROMO_CODE",
                message=f"Promo code '{normalized}' already exists",
            )

        row = PromoCode(
            code=normalized,
            credits=credits,
            discount_percent=discount_percent,
            max_uses=max_uses,
            expires_at=expires_at,
            is_active=is_active,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(row)
                await self._db.flush()
        except IntegrityError as exc:
            # Race condition: created by another admin after our check
            raise ConflictError(
                code="DUPLICATE_PROMO_CODE",
                message=f"Promo code '{normalized}' already exists",
            ) from exc
        await self._db.refresh(row)
        logger.info("Created promo code %s (%s credits)", normalized, credits)
        return row

    async def update_promo_code(
        self,
        promo_id: uuid.UUID,
        *,
        is_active: bool | None = None,
        max_uses: int | None = ...,  # type: ignore[assignment]
        expires_at: datetime | None = ...,  # type: ignore[assignment]
    ) -> PromoCode:
        """Update a promo code.

        Codes and credit amounts are immutable once created, since past
        redemptions reference them.

        Args:
            promo_id: UUID of promo code.
            is_active: New active status.
            max_uses: New cap (None removes the cap).
            expires_at: New expiry (None removes it).

        Returns:
            Updated PromoCode row.

        Raises:
            NotFoundError: If promo code not found.
            ValidationError: If max_uses would drop below used_count.
        """
        row = await self._db.get(PromoCode, promo_id)
        if row is None:
            raise NotFoundError("Promo code", str(promo_id))

        if max_uses is not ... and max_uses is not None and max_uses < row.used_count:
            raise ValidationError(
                f"max_uses cannot be below the current used_count ({row.used_count})"
            )

        if is_active is not None:
            row.is_active = is_active
        if max_uses is not ...:
            row.max_uses = max_uses
        if expires_at is not ...:
            row.expires_at = expires_at

        await self._db.flush()
        await self._db.refresh(row)
        return row

    # -----------------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------------

    async def list_users(
        self,
        *,
        page: int = 1,
        per_page: int = 50,
        is_admin: bool | None = None,
    ) -> tuple[list[tuple[User, CreditAccount | None]], int]:
        """List users with their credit accounts.

        Args:
            page: Page number (1-based).
            per_page: Items per page (max 100).
            is_admin: Filter by admin status.

        Returns:
            Tuple of ((user, account or None) list, total count).
        """
        per_page = min(per_page, 100)
        stmt = select(User, CreditAccount).outerjoin(
            CreditAccount, CreditAccount.user_id == User.id
        )
        count_stmt = select(func.count()).select_from(User)

        if is_admin is not None:
            stmt = stmt.where(User.is_admin == is_admin)
            count_stmt = count_stmt.where(User.is_admin == is_admin)

        total_result = await self._db.execute(count_stmt)
        total = total_result.scalar() or 0

        offset = (page - 1) * per_page
        stmt = (
            stmt.order_by(User.created_at.desc(), User.id)
            .offset(offset)
            .limit(per_page)
        )
        result = await self._db.execute(stmt)
        rows = [(user, account) for user, account in result.all()]

        return rows, total
