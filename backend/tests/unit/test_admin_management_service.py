"""Tests for AdminManagementService — CRUD operations.

Credit-pack catalog, promo codes and the user list with credit balances,
including validation rules and conflict codes.

Integration tests using real DB (db_session fixture).
"""

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.billing import CreditPack, PromoCode
from app.models.user import User
from app.services.admin_management_service import AdminManagementService
from app.services.credit_ledger import CreditLedgerService

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_pack(
    name: str = "Starter",
    credits: str = "25",
    price_cents: int = 999,
    display_order: int = 0,
    is_active: bool = True,
) -> CreditPack:
    """Create a CreditPack row for testing."""
    return CreditPack(
        name=name,
        credits=Decimal(credits),
        price_cents=price_cents,
        display_order=display_order,
        is_active=is_active,
    )


@pytest.fixture
def svc(db_session: AsyncSession) -> AdminManagementService:
    return AdminManagementService(db_session)


# ---------------------------------------------------------------------------
# Credit Packs
# ---------------------------------------------------------------------------


class TestCreditPacks:
    """Credit pack CRUD."""

    async def test_create_pack(self, svc: AdminManagementService) -> None:
        row = await svc.create_pack(
            name="Pro", credits=Decimal("100"), price_cents=2999, is_popular=True
        )

        assert row.id is not None
        assert row.credits == Decimal("100.00")
        assert row.currency == "USD"
        assert row.is_active is True
        assert row.is_popular is True

    async def test_list_ordered_by_display_order(
        self, svc: AdminManagementService, db_session: AsyncSession
    ) -> None:
        db_session.add_all(
            [
                _make_pack("Business", display_order=3),
                _make_pack("Starter", display_order=1),
                _make_pack("Hidden", display_order=2, is_active=False),
            ]
        )
        await db_session.flush()

        all_packs = await svc.list_packs()
        active = await svc.list_packs(active_only=True)

        assert [p.name for p in all_packs] == ["Starter", "Hidden", "Business"]
        assert [p.name for p in active] == ["Starter", "Business"]

    async def test_update_pack_partial(
        self, svc: AdminManagementService, db_session: AsyncSession
    ) -> None:
        row = _make_pack()
        db_session.add(row)
        await db_session.flush()

        updated = await svc.update_pack(row.id, price_cents=1299, is_active=False)

        assert updated.price_cents == 1299
        assert updated.is_active is False
        assert updated.name == "Starter"

    async def test_update_description_sentinel(
        self, svc: AdminManagementService, db_session: AsyncSession
    ) -> None:
        """Omitted description is kept; explicit None clears it."""
        row = _make_pack()
        row.description = "Great value"
        db_session.add(row)
        await db_session.flush()

        kept = await svc.update_pack(row.id, name="Starter+")
        assert kept.description == "Great value"

        cleared = await svc.update_pack(row.id, description=None)
        assert cleared.description is None

    async def test_update_missing_pack(self, svc: AdminManagementService) -> None:
        with pytest.raises(NotFoundError):
            await svc.update_pack(uuid.uuid4(), name="X")

    async def test_delete_pack(
        self, svc: AdminManagementService, db_session: AsyncSession
    ) -> None:
        row = _make_pack()
        db_session.add(row)
        await db_session.flush()

        await svc.delete_pack(row.id)

        assert await svc.list_packs() == []

    async def test_delete_missing_pack(self, svc: AdminManagementService) -> None:
        with pytest.raises(NotFoundError):
            await svc.delete_pack(uuid.uuid4())


# ---------------------------------------------------------------------------
# Promo Codes
# ---------------------------------------------------------------------------


class TestPromoCodes:
    """Promo code CRUD."""

    async def test_create_normalizes_code(self, svc: AdminManagementService) -> None:
        row = await svc.create_promo_code(
            code=" spring ", credits=Decimal("5"), max_uses=10
        )

        assert row.code == "SPRING"
        assert row.used_count == 0
        assert row.max_uses == 10

    async def test_duplicate_code_case_insensitive(
        self, svc: AdminManagementService
    ) -> None:
        await svc.create_promo_code(code="SPRING", credits=Decimal("5"))

        with pytest.raises(ConflictError) as exc_info:
            await svc.create_promo_code(code="spring", credits=Decimal("10"))
        assert exc_info.value.code == "DUPLICATE_PROMO_CODE"

    async def test_list_newest_first_with_filter(
        self, svc: AdminManagementService
    ) -> None:
        await svc.create_promo_code(code="FIRST", credits=Decimal("5"))
        await svc.create_promo_code(code="SECOND", credits=Decimal("5"), is_active=False)

        rows, total = await svc.list_promo_codes()
        active, active_total = await svc.list_promo_codes(is_active=True)

        assert total == 2
        assert {r.code for r in rows} == {"FIRST", "SECOND"}
        assert (active_total, [r.code for r in active]) == (1, ["FIRST"])

    async def test_update_flags(self, svc: AdminManagementService) -> None:
        row = await svc.create_promo_code(code="SPRING", credits=Decimal("5"))
        expiry = datetime.now(UTC) + timedelta(days=30)

        updated = await svc.update_promo_code(
            row.id, is_active=False, max_uses=50, expires_at=expiry
        )

        assert updated.is_active is False
        assert updated.max_uses == 50
        assert updated.expires_at == expiry

    async def test_omitted_fields_unchanged(self, svc: AdminManagementService) -> None:
        row = await svc.create_promo_code(
            code="SPRING", credits=Decimal("5"), max_uses=10
        )

        updated = await svc.update_promo_code(row.id, is_active=False)

        assert updated.max_uses == 10

    async def test_none_removes_cap(self, svc: AdminManagementService) -> None:
        row = await svc.create_promo_code(
            code="SPRING", credits=Decimal("5"), max_uses=10
        )

        updated = await svc.update_promo_code(row.id, max_uses=None)

        assert updated.max_uses is None

    async def test_cap_below_used_count_rejected(
        self, svc: AdminManagementService, db_session: AsyncSession
    ) -> None:
        row = PromoCode(code="POPULAR", credits=Decimal("5"), used_count=3)
        db_session.add(row)
        await db_session.flush()

        with pytest.raises(ValidationError):
            await svc.update_promo_code(row.id, max_uses=2)

    async def test_update_missing_code(self, svc: AdminManagementService) -> None:
        with pytest.raises(NotFoundError):
            await svc.update_promo_code(uuid.uuid4(), is_active=False)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestUsers:
    """User list with credit accounts."""

    async def test_list_users_pairs_accounts(
        self, svc: AdminManagementService, db_session: AsyncSession
    ) -> None:
        with_account = User(email="funded@test.com")
        without_account = User(email="new@test.com")
        db_session.add_all([with_account, without_account])
        await db_session.flush()
        await CreditLedgerService(db_session).open_account(with_account.id)

        rows, total = await svc.list_users()

        assert total == 2
        accounts = {user.email: account for user, account in rows}
        assert accounts["funded@test.com"].balance == Decimal("3.00")
        assert accounts["new@test.com"] is None

    async def test_filter_and_paginate(
        self, svc: AdminManagementService, db_session: AsyncSession
    ) -> None:
        db_session.add_all(
            [User(email=f"user{i}@test.com") for i in range(3)]
            + [User(email="boss@test.com", is_admin=True)]
        )
        await db_session.flush()

        admins, admin_total = await svc.list_users(is_admin=True)
        page, total = await svc.list_users(page=2, per_page=3)

        assert admin_total == 1
        assert admins[0][0].email == "boss@test.com"
        assert total == 4
        assert len(page) == 1
