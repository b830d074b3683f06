"""Shared fixtures for unit tests that need users and credit accounts.

Names chosen to avoid shadowing top-level conftest fixtures
(test_user, user_b, etc.).
"""

from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing import CreditPack, PromoCode
from app.models.credit import CreditAccount
from app.models.user import User


@pytest.fixture
async def user_a(db_session: AsyncSession) -> User:
    """Create User A for repository tests."""
    user = User(email="usera@test.com")
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    """Create a second user for cross-account tests.

    Named 'other_user' to avoid shadowing top-level conftest 'user_b'
    which uses a fixed UUID (USER_B_ID) for API-level tests.
    """
    user = User(email="other@test.com")
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def account_a(db_session: AsyncSession, user_a: User) -> CreditAccount:
    """Create an empty credit account for User A."""
    account = CreditAccount(user_id=user_a.id)
    db_session.add(account)
    await db_session.flush()
    await db_session.refresh(account)
    return account


@pytest.fixture
async def other_account(db_session: AsyncSession, other_user: User) -> CreditAccount:
    """Create an empty credit account for the other user."""
    account = CreditAccount(user_id=other_user.id)
    db_session.add(account)
    await db_session.flush()
    await db_session.refresh(account)
    return account


@pytest.fixture
async def welcome_code(db_session: AsyncSession) -> PromoCode:
    """Create an active, uncapped promo code worth 10 credits."""
    promo = PromoCode(code="WELCOME10", credits=Decimal("10"))
    db_session.add(promo)
    await db_session.flush()
    await db_session.refresh(promo)
    return promo


@pytest.fixture
async def starter_pack(db_session: AsyncSession) -> CreditPack:
    """Create the Starter credit pack (25 credits for $9.99)."""
    pack = CreditPack(
        name="Starter",
        credits=Decimal("25"),
        price_cents=999,
        display_order=1,
    )
    db_session.add(pack)
    await db_session.flush()
    await db_session.refresh(pack)
    return pack
