"""Credit ledger ORM models.

CreditAccount holds the cached counters for one user. LedgerEntry is the
append-only audit trail of every balance change; rows are never updated or
deleted. The CHECK constraints are the last line of defence for the
ledger invariants: a non-negative balance and the conservation law
balance = total_purchased + total_granted - total_used.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Identity,
    Index,
    Numeric,
    String,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.credit_actions import USAGE_ACTIONS, CreditAction, sql_in_list
from app.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.user import User

_DEFAULT_UUID = text("gen_random_uuid()")
_ZERO = text("0.00")

# Credit quantities: up to 10 integer digits, 2 fractional (0.5-credit costs)
CREDITS_NUMERIC = Numeric(12, 2)


class CreditAccount(Base, TimestampMixin):
    """Credit balance and lifetime counters for one user.

    Attributes:
        user_id: FK to users table, also the primary key.
        balance: Spendable credits.
        total_purchased: Lifetime credits from purchases and promo codes.
        total_granted: Lifetime credits from admin and free-tier grants.
        total_used: Lifetime credits spent on metered actions.
        created_at: When the account was opened.
        updated_at: Last balance change.
    """

    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_nonneg"),
        CheckConstraint(
            "total_purchased >= 0 AND total_granted >= 0 AND total_used >= 0",
            name="ck_credit_accounts_totals_nonneg",
        ),
        CheckConstraint(
            "balance = total_purchased + total_granted - total_used",
            name="ck_credit_accounts_conservation",
        ),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        primary_key=True,
    )
    balance: Mapped[Decimal] = mapped_column(
        CREDITS_NUMERIC,
        nullable=False,
        server_default=_ZERO,
        default=Decimal("0"),
    )
    total_purchased: Mapped[Decimal] = mapped_column(
        CREDITS_NUMERIC,
        nullable=False,
        server_default=_ZERO,
        default=Decimal("0"),
    )
    total_granted: Mapped[Decimal] = mapped_column(
        CREDITS_NUMERIC,
        nullable=False,
        server_default=_ZERO,
        default=Decimal("0"),
    )
    total_used: Mapped[Decimal] = mapped_column(
        CREDITS_NUMERIC,
        nullable=False,
        server_default=_ZERO,
        default=Decimal("0"),
    )

    user: Mapped["User"] = relationship(
        "User",
        back_populates="credit_account",
        lazy="raise",
    )


class LedgerEntry(Base):
    """Immutable record of one balance change.

    Positive delta = funding (purchase, promo code, admin grant).
    Negative delta = usage (CV, cover letter, ATS optimization).

    Attributes:
        id: UUID primary key.
        seq: Monotonic insertion order, used for newest-first listing.
        user_id: FK to users table.
        delta: Signed credit quantity.
        action: CreditAction value.
        related_document_id: Generated document, usage entries only.
        idempotency_key: Caller token; unique across the ledger.
        balance_after: Account balance right after this entry applied.
        description: Human-readable description.
        created_at: When the entry was appended.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        CheckConstraint(
            f"action IN ({sql_in_list(CreditAction)})",
            name="ck_ledger_entries_action_valid",
        ),
        CheckConstraint(
            f"(action IN ({sql_in_list(USAGE_ACTIONS)})) = (delta < 0)",
            name="ck_ledger_entries_delta_sign",
        ),
        CheckConstraint(
            "related_document_id IS NULL "
            f"OR action IN ({sql_in_list(USAGE_ACTIONS)})",
            name="ck_ledger_entries_document_usage_only",
        ),
        CheckConstraint("balance_after >= 0", name="ck_ledger_entries_balance_nonneg"),
        Index("ix_ledger_entries_user_seq", "user_id", text("seq DESC")),
        Index("ix_ledger_entries_action_created", "action", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    seq: Mapped[int] = mapped_column(
        BigInteger,
        Identity(always=True),
        unique=True,
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("credit_accounts.user_id", ondelete="RESTRICT"),
        nullable=False,
    )
    delta: Mapped[Decimal] = mapped_column(
        CREDITS_NUMERIC,
        nullable=False,
    )
    action: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    related_document_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
    )
    balance_after: Mapped[Decimal] = mapped_column(
        CREDITS_NUMERIC,
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
