"""Tests for MeteredGeneration — charging credits around generation work."""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.credit_actions import MeteredAction
from app.core.errors import InsufficientCreditsError
from app.services.credit_ledger import AuthorizationResult
from app.services.metered_generation import ChargePolicy, MeteredGeneration

_USER_ID = uuid.uuid4()
_DOC_ID = uuid.uuid4()
_CV = MeteredAction.CV_GENERATION


class _GenerationFailed(Exception):
    """Stand-in for an LLM provider failure."""


@pytest.fixture
def savepoint() -> AsyncMock:
    """Savepoint transaction returned by begin_nested()."""
    return AsyncMock()


@pytest.fixture
def mock_db(savepoint: AsyncMock) -> AsyncMock:
    """Mocked AsyncSession."""
    db = AsyncMock()
    db.begin_nested.return_value = savepoint
    return db


@pytest.fixture
def ledger():
    """Patched CreditLedgerService instance used by MeteredGeneration."""
    instance = MagicMock()
    instance.authorize = AsyncMock(
        return_value=AuthorizationResult(allowed=True, cost=Decimal("1.00"))
    )
    instance.debit = AsyncMock(return_value=MagicMock(name="entry"))
    with patch(
        "app.services.metered_generation.CreditLedgerService",
        return_value=instance,
    ):
        yield instance


@pytest.fixture(autouse=True)
def metering_on():
    """Metering enabled unless a test turns it off."""
    with patch("app.services.metered_generation.settings") as mock_settings:
        mock_settings.metering_enabled = True
        yield mock_settings


class TestChargeOnSuccess:
    """Default policy: authorize first, debit after the work succeeds."""

    async def test_debits_after_successful_block(self, mock_db, ledger) -> None:
        """The debit happens once, after the block, with the document id."""
        async with MeteredGeneration(mock_db, _USER_ID, _CV) as charge:
            ledger.debit.assert_not_called()
            charge.related_document_id = _DOC_ID

        ledger.authorize.assert_awaited_once_with(_USER_ID, _CV)
        ledger.debit.assert_awaited_once_with(_USER_ID, _CV, _DOC_ID)
        assert charge.entry is ledger.debit.return_value

    async def test_failed_block_is_not_charged(self, mock_db, ledger) -> None:
        """A generation failure never costs credits."""
        with pytest.raises(_GenerationFailed):
            async with MeteredGeneration(mock_db, _USER_ID, _CV):
                raise _GenerationFailed()

        ledger.debit.assert_not_called()

    async def test_unaffordable_action_never_starts(self, mock_db, ledger) -> None:
        """402 before the expensive work runs."""
        ledger.authorize.return_value = AuthorizationResult(
            allowed=False, cost=Decimal("1.00"), shortfall=Decimal("0.50")
        )
        body_ran = False

        with pytest.raises(InsufficientCreditsError) as exc_info:
            async with MeteredGeneration(mock_db, _USER_ID, _CV):
                body_ran = True

        assert body_ran is False
        assert exc_info.value.balance == Decimal("0.50")
        assert exc_info.value.required == Decimal("1.00")

    async def test_concurrent_spend_rejects_at_exit(self, mock_db, ledger) -> None:
        """The exit debit re-validates and can still raise 402."""
        ledger.debit.side_effect = InsufficientCreditsError(
            balance=Decimal("0"), required=Decimal("1")
        )
        with pytest.raises(InsufficientCreditsError):
            async with MeteredGeneration(mock_db, _USER_ID, _CV):
                pass


class TestChargeUpFront:
    """UP_FRONT policy: debit in a savepoint before the block."""

    async def test_debit_before_block_and_commit_savepoint(
        self, mock_db, ledger, savepoint
    ) -> None:
        """Success keeps the charge."""
        async with MeteredGeneration(
            mock_db,
            _USER_ID,
            _CV,
            policy=ChargePolicy.UP_FRONT,
            related_document_id=_DOC_ID,
        ) as charge:
            ledger.debit.assert_awaited_once_with(_USER_ID, _CV, _DOC_ID)
            assert charge.entry is ledger.debit.return_value

        savepoint.commit.assert_awaited_once()
        savepoint.rollback.assert_not_called()

    async def test_failed_block_rolls_back_charge(
        self, mock_db, ledger, savepoint
    ) -> None:
        """A failure after the debit rolls the savepoint back."""
        with pytest.raises(_GenerationFailed):
            async with MeteredGeneration(
                mock_db, _USER_ID, _CV, policy=ChargePolicy.UP_FRONT
            ):
                raise _GenerationFailed()

        savepoint.rollback.assert_awaited_once()
        savepoint.commit.assert_not_called()

    async def test_failed_debit_rolls_back_and_skips_block(
        self, mock_db, ledger, savepoint
    ) -> None:
        """Insufficient credits abort before the work starts."""
        ledger.debit.side_effect = InsufficientCreditsError(
            balance=Decimal("0"), required=Decimal("1")
        )
        body_ran = False

        with pytest.raises(InsufficientCreditsError):
            async with MeteredGeneration(
                mock_db, _USER_ID, _CV, policy=ChargePolicy.UP_FRONT
            ):
                body_ran = True

        assert body_ran is False
        savepoint.rollback.assert_awaited_once()


class TestMeteringDisabled:
    """METERING_ENABLED=false bypasses all charging."""

    @pytest.mark.parametrize("policy", list(ChargePolicy))
    async def test_no_ledger_calls(self, mock_db, ledger, metering_on, policy) -> None:
        """Neither authorize nor debit runs."""
        metering_on.metering_enabled = False

        async with MeteredGeneration(mock_db, _USER_ID, _CV, policy=policy) as charge:
            pass

        ledger.authorize.assert_not_called()
        ledger.debit.assert_not_called()
        mock_db.begin_nested.assert_not_called()
        assert charge.entry is None
