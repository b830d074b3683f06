"""Billing catalog ORM models.

Two admin-managed tables that feed the ledger: PromoCode (redeemable for
credits) and CreditPack (purchasable bundles). The ledger reads both but
never edits a pack; it only claims promo uses.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin
from app.models.credit import CREDITS_NUMERIC

_DEFAULT_UUID = text("gen_random_uuid()")


class PromoCode(Base, TimestampMixin):
    """Redeemable promo code.

    Codes are stored upper-case so lookups can normalize the input and use
    the unique index directly.

    Attributes:
        id: UUID primary key.
        code: Upper-case code (3-20 characters).
        credits: Credits granted on redemption (may be 0 for discount-only).
        discount_percent: Optional checkout discount, 0-100.
        max_uses: Total redemptions allowed across all users. None = unlimited.
        used_count: Redemptions so far.
        expires_at: Optional expiry; checked at redemption time.
        is_active: Soft-disable without deleting.
    """

    __tablename__ = "promo_codes"
    __table_args__ = (
        CheckConstraint("code = upper(code)", name="ck_promo_codes_code_upper"),
        CheckConstraint("credits >= 0", name="ck_promo_codes_credits_nonneg"),
        CheckConstraint(
            "discount_percent IS NULL "
            "OR (discount_percent >= 0 AND discount_percent <= 100)",
            name="ck_promo_codes_discount_range",
        ),
        CheckConstraint(
            "max_uses IS NULL OR max_uses >= 1",
            name="ck_promo_codes_max_uses_positive",
        ),
        CheckConstraint(
            "used_count >= 0 AND (max_uses IS NULL OR used_count <= max_uses)",
            name="ck_promo_codes_used_within_max",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    code: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
    )
    credits: Mapped[Decimal] = mapped_column(
        CREDITS_NUMERIC,
        nullable=False,
    )
    discount_percent: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    max_uses: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    used_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )


class CreditPack(Base, TimestampMixin):
    """Purchasable credit bundle.

    Attributes:
        id: UUID primary key.
        name: Pack display name (e.g. Starter, Pro).
        credits: Credits granted on purchase.
        price_cents: Price in minor units (499 = $4.99).
        currency: ISO 4217 code.
        display_order: Sort order in the purchase UI.
        is_active: Soft-disable without deleting.
        is_popular: Highlight badge in the purchase UI.
        description: Short description for UI.
    """

    __tablename__ = "credit_packs"
    __table_args__ = (
        CheckConstraint("credits > 0", name="ck_credit_packs_credits_positive"),
        CheckConstraint("price_cents > 0", name="ck_credit_packs_price_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    credits: Mapped[Decimal] = mapped_column(
        CREDITS_NUMERIC,
        nullable=False,
    )
    price_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
        server_default=text("'USD'"),
    )
    display_order: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    is_popular: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    description: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
