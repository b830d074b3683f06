"""Repository for credit accounts and ledger entries.

Provides database access for the credit_accounts and ledger_entries tables,
including the atomic balance statements the ledger service builds on.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.credit_actions import USAGE_ACTIONS, CreditAction
from app.models.credit import CreditAccount, LedgerEntry

# Counters a funding entry may increase
_FUNDING_COUNTERS = frozenset({"total_purchased", "total_granted"})


class CreditRepository:
    """Stateless repository for CreditAccount and LedgerEntry operations.

    All methods are static — no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    # =========================================================================
    # Accounts
    # =========================================================================

    @staticmethod
    async def get_account(
        db: AsyncSession, user_id: uuid.UUID
    ) -> CreditAccount | None:
        """Read a credit account without locking.

        Always refreshes from the database, since atomic statements below
        bypass the identity map.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            CreditAccount if it exists, None otherwise.
        """
        stmt = (
            select(CreditAccount)
            .where(CreditAccount.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def lock_account(
        db: AsyncSession, user_id: uuid.UUID
    ) -> CreditAccount | None:
        """Read a credit account with SELECT ... FOR UPDATE.

        The row lock is held until the enclosing transaction ends, which
        serializes credits and promo redemptions for this account.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            Locked CreditAccount if it exists, None otherwise.
        """
        stmt = (
            select(CreditAccount)
            .where(CreditAccount.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create_account(db: AsyncSession, user_id: uuid.UUID) -> bool:
        """Insert an empty account row if none exists.

        Uses ON CONFLICT DO NOTHING so two concurrent registrations for the
        same user cannot both seed the free tier.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            True if this call created the row, False if it already existed.
        """
        stmt = (
            insert(CreditAccount)
            .values(user_id=user_id)
            .on_conflict_do_nothing(index_elements=[CreditAccount.user_id])
            .returning(CreditAccount.user_id)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def atomic_debit(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        amount: Decimal,
    ) -> Decimal | None:
        """Atomically debit an account.

        The sufficiency check and the deduction are one statement
        (WHERE balance >= amount), so concurrent debits can never overdraw.

        Args:
            db: Async database session.
            user_id: Account to debit.
            amount: Amount to debit (positive value).

        Returns:
            New balance if the debit applied, None if the balance was
            insufficient or the account does not exist.

        Raises:
            ValueError: If amount is not positive.
        """
        if amount <= Decimal("0"):
            raise ValueError("atomic_debit amount must be positive")
        result = await db.execute(
            text(
                "UPDATE credit_accounts "
                "SET balance = balance - :amount, "
                "total_used = total_used + :amount, "
                "updated_at = now() "
                "WHERE user_id = :user_id AND balance >= :amount "
                "RETURNING balance"
            ),
            {"amount": amount, "user_id": user_id},
        )
        new_balance: Decimal | None = result.scalar_one_or_none()
        return new_balance

    @staticmethod
    async def apply_credit(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        amount: Decimal,
        counter: str,
    ) -> Decimal:
        """Add credits to an account and to one lifetime counter.

        Args:
            db: Async database session.
            user_id: Account to credit.
            amount: Amount to add (zero or positive).
            counter: "total_purchased" or "total_granted".

        Returns:
            New balance after crediting.

        Raises:
            ValueError: If amount is negative or counter is unknown.
        """
        if amount < Decimal("0"):
            raise ValueError("apply_credit amount must not be negative")
        if counter not in _FUNDING_COUNTERS:
            raise ValueError(f"Unknown funding counter: {counter}")
        column = getattr(CreditAccount, counter)
        stmt = (
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id)
            .values(
                {
                    CreditAccount.balance: CreditAccount.balance + amount,
                    column: column + amount,
                    CreditAccount.updated_at: func.now(),
                }
            )
            .returning(CreditAccount.balance)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        new_balance: Decimal = result.scalar_one()
        return new_balance

    # =========================================================================
    # Ledger entries
    # =========================================================================

    @staticmethod
    async def create_entry(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        delta: Decimal,
        action: CreditAction,
        balance_after: Decimal,
        related_document_id: uuid.UUID | None = None,
        idempotency_key: str | None = None,
        description: str | None = None,
    ) -> LedgerEntry:
        """Append a ledger entry.

        Args:
            db: Async database session.
            user_id: Account owner.
            delta: Signed amount (+funding, -usage).
            action: Ledger action.
            balance_after: Balance right after the change.
            related_document_id: Generated document, usage only.
            idempotency_key: Caller-supplied dedup token.
            description: Human-readable description.

        Returns:
            Created LedgerEntry with database-generated fields.
        """
        entry = LedgerEntry(
            user_id=user_id,
            delta=delta,
            action=action.value,
            balance_after=balance_after,
            related_document_id=related_document_id,
            idempotency_key=idempotency_key,
            description=description,
        )
        db.add(entry)
        await db.flush()
        await db.refresh(entry)
        return entry

    @staticmethod
    async def get_entry_by_idempotency_key(
        db: AsyncSession, idempotency_key: str
    ) -> LedgerEntry | None:
        """Find the entry that owns an idempotency key.

        Args:
            db: Async database session.
            idempotency_key: Key to look up.

        Returns:
            LedgerEntry if the key was used, None otherwise.
        """
        stmt = select(LedgerEntry).where(
            LedgerEntry.idempotency_key == idempotency_key
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_by_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
        action: CreditAction | None = None,
    ) -> tuple[list[LedgerEntry], int]:
        """List ledger entries for a user, newest first.

        Args:
            db: Async database session.
            user_id: User to query entries for.
            offset: Number of records to skip.
            limit: Maximum records to return.
            action: Optional action filter.

        Returns:
            Tuple of (entries list, total count).
        """
        conditions = [LedgerEntry.user_id == user_id]
        if action is not None:
            conditions.append(LedgerEntry.action == action.value)

        count_stmt = select(func.count()).select_from(LedgerEntry).where(*conditions)
        total_result = await db.execute(count_stmt)
        total = total_result.scalar_one()

        data_stmt = (
            select(LedgerEntry)
            .where(*conditions)
            .order_by(LedgerEntry.seq.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        entries = list(result.scalars().all())

        return entries, total

    @staticmethod
    async def sum_deltas(db: AsyncSession, user_id: uuid.UUID) -> Decimal:
        """Sum every ledger delta for a user.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            Ledger sum (0 when the user has no entries).
        """
        stmt = select(func.coalesce(func.sum(LedgerEntry.delta), 0)).where(
            LedgerEntry.user_id == user_id
        )
        result = await db.execute(stmt)
        return Decimal(result.scalar_one())

    # =========================================================================
    # Reporting
    # =========================================================================

    @staticmethod
    async def find_discrepancies(db: AsyncSession) -> list[dict[str, Any]]:
        """Find accounts whose balance disagrees with the ledger or counters.

        Args:
            db: Async database session.

        Returns:
            One dict per mismatched account with user_id, balance,
            ledger_sum, total_purchased, total_granted and total_used.
            Empty when the ledger is consistent.
        """
        ledger_sum = (
            select(
                LedgerEntry.user_id.label("user_id"),
                func.sum(LedgerEntry.delta).label("ledger_sum"),
            )
            .group_by(LedgerEntry.user_id)
            .subquery()
        )
        summed = func.coalesce(ledger_sum.c.ledger_sum, 0)
        stmt = (
            select(
                CreditAccount.user_id,
                CreditAccount.balance,
                summed.label("ledger_sum"),
                CreditAccount.total_purchased,
                CreditAccount.total_granted,
                CreditAccount.total_used,
            )
            .outerjoin(ledger_sum, ledger_sum.c.user_id == CreditAccount.user_id)
            .where(
                (CreditAccount.balance != summed)
                | (
                    CreditAccount.balance
                    != CreditAccount.total_purchased
                    + CreditAccount.total_granted
                    - CreditAccount.total_used
                )
            )
            .order_by(CreditAccount.user_id)
        )
        result = await db.execute(stmt)
        return [dict(row._mapping) for row in result.all()]

    @staticmethod
    async def usage_since(db: AsyncSession, since: datetime) -> Decimal:
        """Total credits consumed by usage actions since a point in time.

        Args:
            db: Async database session.
            since: Inclusive lower bound on created_at.

        Returns:
            Credits consumed, as a positive quantity.
        """
        stmt = select(func.coalesce(func.sum(-LedgerEntry.delta), 0)).where(
            LedgerEntry.action.in_([a.value for a in USAGE_ACTIONS]),
            LedgerEntry.created_at >= since,
        )
        result = await db.execute(stmt)
        return Decimal(result.scalar_one())
