"""Create credit ledger tables.

Revision ID: 001_credit_ledger
Revises:
Create Date: 2026-10-19

Creates users, credit_accounts, ledger_entries, promo_codes and
credit_packs, and seeds the credit pack catalog.

Note: credit_accounts and ledger_entries use ON DELETE RESTRICT. Accounts
are frozen on user deletion, never erased, so the ledger stays auditable.
"""

from collections.abc import Sequence
from datetime import UTC, datetime

import sqlalchemy as sa
from alembic import op

revision: str = "001_credit_ledger"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# ---------------------------------------------------------------------------
# Shared column types
# ---------------------------------------------------------------------------
_PG_UUID = sa.dialects.postgresql.UUID(as_uuid=True)
_UUID_DEFAULT = sa.text("gen_random_uuid()")
_CREDITS = sa.Numeric(precision=12, scale=2)
_ZERO = sa.text("0.00")
_NOW = sa.func.now()
_TIMESTAMPTZ = sa.DateTime(timezone=True)
_TRUE = sa.text("true")
_FALSE = sa.text("false")
_INT_ZERO = sa.text("0")
_USD = sa.text("'USD'")

_ALL_ACTIONS = (
    "'ADMIN_GRANT', 'ATS_OPTIMIZATION', 'COVER_LETTER_GENERATION', "
    "'CV_GENERATION', 'PROMO_CODE', 'PURCHASE'"
)
_USAGE_ACTIONS = "'ATS_OPTIMIZATION', 'COVER_LETTER_GENERATION', 'CV_GENERATION'"

# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

_SEED_CREDIT_PACKS = [
    # (name, credits, price_cents, display_order, is_popular, description)
    ("Starter", 25, 999, 1, False, "25 AI generations"),
    ("Pro", 100, 2999, 2, True, "100 AI generations"),
    ("Business", 300, 7999, 3, False, "300 AI generations"),
]


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", _TIMESTAMPTZ, server_default=_NOW, nullable=False),
        sa.Column("updated_at", _TIMESTAMPTZ, server_default=_NOW, nullable=False),
    ]


def upgrade() -> None:
    """Create ledger tables and seed the pack catalog."""
    now = datetime.now(UTC)

    # pgcrypto provides gen_random_uuid() for UUID primary keys
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # 1. users (owned by registration; only the columns this service reads)
    op.create_table(
        "users",
        sa.Column("id", _PG_UUID, server_default=_UUID_DEFAULT, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("token_invalidated_before", _TIMESTAMPTZ, nullable=True),
        sa.Column("is_admin", sa.Boolean, server_default=_FALSE, nullable=False),
        *_timestamps(),
    )

    # 2. credit_accounts
    op.create_table(
        "credit_accounts",
        sa.Column(
            "user_id",
            _PG_UUID,
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            primary_key=True,
        ),
        sa.Column("balance", _CREDITS, server_default=_ZERO, nullable=False),
        sa.Column("total_purchased", _CREDITS, server_default=_ZERO, nullable=False),
        sa.Column("total_granted", _CREDITS, server_default=_ZERO, nullable=False),
        sa.Column("total_used", _CREDITS, server_default=_ZERO, nullable=False),
        *_timestamps(),
        sa.CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_nonneg"),
        sa.CheckConstraint(
            "total_purchased >= 0 AND total_granted >= 0 AND total_used >= 0",
            name="ck_credit_accounts_totals_nonneg",
        ),
        sa.CheckConstraint(
            "balance = total_purchased + total_granted - total_used",
            name="ck_credit_accounts_conservation",
        ),
    )

    # 3. ledger_entries (append-only)
    op.create_table(
        "ledger_entries",
        sa.Column("id", _PG_UUID, server_default=_UUID_DEFAULT, primary_key=True),
        sa.Column(
            "seq",
            sa.BigInteger,
            sa.Identity(always=True),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "user_id",
            _PG_UUID,
            sa.ForeignKey("credit_accounts.user_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("delta", _CREDITS, nullable=False),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("related_document_id", _PG_UUID, nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True, unique=True),
        sa.Column("balance_after", _CREDITS, nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=_NOW,
            nullable=False,
        ),
        sa.CheckConstraint(
            f"action IN ({_ALL_ACTIONS})",
            name="ck_ledger_entries_action_valid",
        ),
        sa.CheckConstraint(
            f"(action IN ({_USAGE_ACTIONS})) = (delta < 0)",
            name="ck_ledger_entries_delta_sign",
        ),
        sa.CheckConstraint(
            f"related_document_id IS NULL OR action IN ({_USAGE_ACTIONS})",
            name="ck_ledger_entries_document_usage_only",
        ),
        sa.CheckConstraint(
            "balance_after >= 0", name="ck_ledger_entries_balance_nonneg"
        ),
    )

    # 4. promo_codes
    op.create_table(
        "promo_codes",
        sa.Column("id", _PG_UUID, server_default=_UUID_DEFAULT, primary_key=True),
        sa.Column("code", sa.String(20), nullable=False, unique=True),
        sa.Column("credits", _CREDITS, nullable=False),
        sa.Column("discount_percent", sa.Integer, nullable=True),
        sa.Column("max_uses", sa.Integer, nullable=True),
        sa.Column("used_count", sa.Integer, server_default=_INT_ZERO, nullable=False),
        sa.Column("expires_at", _TIMESTAMPTZ, nullable=True),
        sa.Column("is_active", sa.Boolean, server_default=_TRUE, nullable=False),
        *_timestamps(),
        sa.CheckConstraint("code = upper(code)", name="ck_promo_codes_code_upper"),
        sa.CheckConstraint("credits >= 0", name="ck_promo_codes_credits_nonneg"),
        sa.CheckConstraint(
            "discount_percent IS NULL "
            "OR (discount_percent >= 0 AND discount_percent <= 100)",
            name="ck_promo_codes_discount_range",
        ),
        sa.CheckConstraint(
            "max_uses IS NULL OR max_uses >= 1",
            name="ck_promo_codes_max_uses_positive",
        ),
        sa.CheckConstraint(
            "used_count >= 0 AND (max_uses IS NULL OR used_count <= max_uses)",
            name="ck_promo_codes_used_within_max",
        ),
    )

    # 5. credit_packs
    credit_packs = op.create_table(
        "credit_packs",
        sa.Column("id", _PG_UUID, server_default=_UUID_DEFAULT, primary_key=True),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("credits", _CREDITS, nullable=False),
        sa.Column("price_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), server_default=_USD, nullable=False),
        sa.Column(
            "display_order", sa.Integer, server_default=_INT_ZERO, nullable=False
        ),
        sa.Column("is_active", sa.Boolean, server_default=_TRUE, nullable=False),
        sa.Column("is_popular", sa.Boolean, server_default=_FALSE, nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("credits > 0", name="ck_credit_packs_credits_positive"),
        sa.CheckConstraint("price_cents > 0", name="ck_credit_packs_price_positive"),
    )

    # 6. Indexes
    op.create_index(
        "ix_ledger_entries_user_seq",
        "ledger_entries",
        ["user_id", sa.text("seq DESC")],
    )
    op.create_index(
        "ix_ledger_entries_action_created",
        "ledger_entries",
        ["action", "created_at"],
    )

    # 7. Seed credit_packs
    op.bulk_insert(
        credit_packs,
        [
            {
                "name": name,
                "credits": credits,
                "price_cents": price_cents,
                "currency": "USD",
                "display_order": display_order,
                "is_active": True,
                "is_popular": is_popular,
                "description": description,
                "created_at": now,
                "updated_at": now,
            }
            for (
                name,
                credits,
                price_cents,
                display_order,
                is_popular,
                description,
            ) in _SEED_CREDIT_PACKS
        ],
    )


def downgrade() -> None:
    """Drop ledger tables."""
    op.drop_index("ix_ledger_entries_action_created", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_user_seq", table_name="ledger_entries")

    # Reverse order of creation
    op.drop_table("credit_packs")
    op.drop_table("promo_codes")
    op.drop_table("ledger_entries")
    op.drop_table("credit_accounts")
    op.drop_table("users")
