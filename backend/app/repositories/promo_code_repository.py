"""Repository for promo codes."""

import uuid
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing import PromoCode


class PromoCodeRepository:
    """Stateless repository for PromoCode operations.

    All methods are static — no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_code(db: AsyncSession, code: str) -> PromoCode | None:
        """Look up a promo code, case-insensitively.

        Args:
            db: Async database session.
            code: Code as typed by the user.

        Returns:
            PromoCode if found, None otherwise.
        """
        stmt = (
            select(PromoCode)
            .where(PromoCode.code == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def claim_use(
        db: AsyncSession,
        *,
        promo_id: uuid.UUID,
        now: datetime,
    ) -> int | None:
        """Atomically claim one use of a promo code.

        The usability checks and the increment are one statement, so
        concurrent redemptions cannot push used_count past max_uses.

        Args:
            db: Async database session.
            promo_id: Promo code to claim.
            now: Current time, compared against expires_at.

        Returns:
            New used_count if claimed, None if the code became inactive,
            expired or exhausted.
        """
        stmt = (
            update(PromoCode)
            .where(
                PromoCode.id == promo_id,
                PromoCode.is_active.is_(True),
                or_(PromoCode.expires_at.is_(None), PromoCode.expires_at > now),
                or_(
                    PromoCode.max_uses.is_(None),
                    PromoCode.used_count < PromoCode.max_uses,
                ),
            )
            .values(used_count=PromoCode.used_count + 1, updated_at=func.now())
            .returning(PromoCode.used_count)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        used_count: int | None = result.scalar_one_or_none()
        return used_count

    @staticmethod
    async def list_all(
        db: AsyncSession,
        *,
        offset: int = 0,
        limit: int = 50,
        is_active: bool | None = None,
    ) -> tuple[list[PromoCode], int]:
        """List promo codes, newest first.

        Args:
            db: Async database session.
            offset: Number of records to skip.
            limit: Maximum records to return.
            is_active: Optional active-status filter.

        Returns:
            Tuple of (promo code list, total count).
        """
        conditions = []
        if is_active is not None:
            conditions.append(PromoCode.is_active.is_(is_active))

        count_stmt = select(func.count()).select_from(PromoCode).where(*conditions)
        total_result = await db.execute(count_stmt)
        total = total_result.scalar_one()

        data_stmt = (
            select(PromoCode)
            .where(*conditions)
            .order_by(PromoCode.created_at.desc(), PromoCode.code)
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        return list(result.scalars().all()), total
