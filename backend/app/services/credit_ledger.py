"""Credit ledger service — balances, debits, credits, promo redemption.

The single write path for credit accounts. Every mutation appends exactly
one ledger entry together with the balance change, inside a savepoint, so a
balance change without its entry is never observable.

Concurrency model (PostgreSQL, READ COMMITTED):
- debit: one conditional UPDATE (WHERE balance >= cost). The row lock it
  takes serializes concurrent debits; a loser re-evaluates the predicate
  against the committed balance and fails cleanly.
- credit / redeem_promo_code: SELECT ... FOR UPDATE on the account before
  reading idempotency state, so same-account retries see each other.
- Promo use counts are claimed with a conditional UPDATE on the promo row.
  Lock order is always account, then promo code.
- Idempotency keys are globally unique in the database. A cross-account
  collision surfaces as IntegrityError and is resolved by re-reading.

The service never commits; the caller owns the transaction.
"""

import functools
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.credit_actions import (
    CREDIT_QUANTUM,
    FUNDING_ACTIONS,
    IDEMPOTENT_ACTIONS,
    CreditAction,
    MeteredAction,
    cost_for,
    ledger_action,
)
from app.core.errors import (
    DuplicateIdempotencyKeyConflict,
    InsufficientCreditsError,
    NotFoundError,
    PromoCodeAlreadyRedeemedError,
    PromoCodeExhaustedError,
    PromoCodeInvalidError,
    StorageUnavailableError,
    ValidationError,
)
from app.models.billing import PromoCode
from app.models.credit import CreditAccount, LedgerEntry
from app.models.user import User
from app.repositories.credit_repository import CreditRepository
from app.repositories.promo_code_repository import PromoCodeRepository

logger = logging.getLogger(__name__)

_P = ParamSpec("_P")
_R = TypeVar("_R")

_ZERO = Decimal("0")

_DESCRIPTIONS: dict[CreditAction, str] = {
    CreditAction.CV_GENERATION: "CV generation",
    CreditAction.COVER_LETTER_GENERATION: "Cover letter generation",
    CreditAction.ATS_OPTIMIZATION: "ATS optimization",
    CreditAction.PURCHASE: "Credit purchase",
    CreditAction.PROMO_CODE: "Promo code",
    CreditAction.ADMIN_GRANT: "Admin grant",
}
_FREE_TIER_DESCRIPTION = "Free tier welcome credits"


# =============================================================================
# Data Models
# =============================================================================


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of a pre-flight affordability check.

    Attributes:
        allowed: Whether the balance covers the cost right now.
        cost: Credit cost of the action.
        shortfall: Credits missing when not allowed, else 0.
    """

    allowed: bool
    cost: Decimal
    shortfall: Decimal = _ZERO


# =============================================================================
# Helpers
# =============================================================================


def _quantize(amount: Decimal) -> Decimal:
    """Round a credit quantity to the ledger's two decimal places."""
    return Decimal(amount).quantize(CREDIT_QUANTUM)


def promo_idempotency_key(user_id: uuid.UUID, code: str) -> str:
    """Build the one-redemption-per-user key for a promo code."""
    return f"{user_id}:{code.strip().upper()}"


def _is_storage_failure(exc: Exception) -> bool:
    if isinstance(exc, (TimeoutError, PoolTimeoutError)):
        return True
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    # Other DBAPI errors (constraint violations included) are not outages
    # unless the driver dropped the connection underneath them.
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def translate_storage_errors(
    func: Callable[_P, Awaitable[_R]],
) -> Callable[_P, Awaitable[_R]]:
    """Re-raise connection and timeout failures as StorageUnavailableError.

    Applied to every public ledger operation. Domain errors and
    constraint violations pass through untouched.
    """

    @functools.wraps(func)
    async def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _R:
        try:
            return await func(*args, **kwargs)
        except (DBAPIError, TimeoutError, PoolTimeoutError) as exc:
            if not _is_storage_failure(exc):
                raise
            logger.error(
                "Credit ledger storage unavailable during %s: %s",
                func.__name__,
                type(exc).__name__,
            )
            raise StorageUnavailableError() from exc

    return wrapper


# =============================================================================
# Service
# =============================================================================


class CreditLedgerService:
    """Per-account credit balances backed by an append-only ledger.

    Args:
        db: Async database session. The caller commits.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @translate_storage_errors
    async def get_balance(self, user_id: uuid.UUID) -> CreditAccount:
        """Return the account snapshot (balance and lifetime counters).

        Args:
            user_id: Account owner.

        Returns:
            CreditAccount row.

        Raises:
            NotFoundError: If the account does not exist.
        """
        account = await CreditRepository.get_account(self._db, user_id)
        if account is None:
            raise NotFoundError("Credit account", str(user_id))
        return account

    @translate_storage_errors
    async def authorize(
        self, user_id: uuid.UUID, action: MeteredAction
    ) -> AuthorizationResult:
        """Check whether the user can currently afford an action.

        Pure read. The answer may be stale by the time the caller acts on
        it, which is why debit re-validates.

        Args:
            user_id: Account owner.
            action: Metered action to price.

        Returns:
            AuthorizationResult with the cost and any shortfall.

        Raises:
            NotFoundError: If the account does not exist.
        """
        account = await self.get_balance(user_id)
        cost = _quantize(cost_for(action))
        if account.balance >= cost:
            return AuthorizationResult(allowed=True, cost=cost)
        return AuthorizationResult(
            allowed=False,
            cost=cost,
            shortfall=cost - account.balance,
        )

    @translate_storage_errors
    async def list_history(
        self,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
        action: CreditAction | None = None,
    ) -> tuple[list[LedgerEntry], int]:
        """List ledger entries newest-first.

        Args:
            user_id: Account owner.
            offset: Entries to skip.
            limit: Maximum entries to return.
            action: Optional action filter.

        Returns:
            Tuple of (entries, total matching count).
        """
        return await CreditRepository.list_by_user(
            self._db, user_id, offset=offset, limit=limit, action=action
        )

    # -------------------------------------------------------------------------
    # Account lifecycle
    # -------------------------------------------------------------------------

    @translate_storage_errors
    async def open_account(self, user_id: uuid.UUID) -> CreditAccount:
        """Open a credit account and seed the free-tier grant.

        Safe to call more than once: an existing account is returned
        unchanged and the free tier is never granted twice.

        Args:
            user_id: Registered user.

        Returns:
            The (new or existing) CreditAccount.

        Raises:
            NotFoundError: If the user does not exist.
        """
        if await self._db.get(User, user_id) is None:
            raise NotFoundError("User", str(user_id))

        grant = _quantize(settings.free_tier_initial_credits)
        async with self._db.begin_nested():
            created = await CreditRepository.create_account(self._db, user_id)
            if created and grant > _ZERO:
                balance = await CreditRepository.apply_credit(
                    self._db,
                    user_id=user_id,
                    amount=grant,
                    counter="total_granted",
                )
                await CreditRepository.create_entry(
                    self._db,
                    user_id=user_id,
                    delta=grant,
                    action=CreditAction.ADMIN_GRANT,
                    balance_after=balance,
                    description=_FREE_TIER_DESCRIPTION,
                )

        if created:
            logger.info(
                "Opened credit account for user %s (free tier: %s)", user_id, grant
            )
        return await self.get_balance(user_id)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    @translate_storage_errors
    async def debit(
        self,
        user_id: uuid.UUID,
        action: MeteredAction,
        related_document_id: uuid.UUID | None = None,
    ) -> LedgerEntry | None:
        """Charge the user for one metered action.

        Not idempotent: each call is a fresh usage event.

        Args:
            user_id: Account owner.
            action: Metered action performed.
            related_document_id: Generated document to link to the entry.

        Returns:
            The usage LedgerEntry, or None for zero-cost actions (no entry
            is written).

        Raises:
            NotFoundError: If the account does not exist.
            InsufficientCreditsError: If the committed balance is below the
                cost. State is left unchanged.
        """
        cost = _quantize(cost_for(action))
        entry_action = ledger_action(action)
        if cost == _ZERO or entry_action is None:
            await self.get_balance(user_id)
            return None

        async with self._db.begin_nested():
            new_balance = await CreditRepository.atomic_debit(
                self._db, user_id=user_id, amount=cost
            )
            if new_balance is None:
                account = await CreditRepository.get_account(self._db, user_id)
                if account is None:
                    raise NotFoundError("Credit account", str(user_id))
                logger.info(
                    "Insufficient credits for user %s: %s needs %s, balance %s",
                    user_id,
                    action.value,
                    cost,
                    account.balance,
                )
                raise InsufficientCreditsError(balance=account.balance, required=cost)

            entry = await CreditRepository.create_entry(
                self._db,
                user_id=user_id,
                delta=-cost,
                action=entry_action,
                balance_after=new_balance,
                related_document_id=related_document_id,
                description=_DESCRIPTIONS[entry_action],
            )

        logger.info(
            "Debited %s credits from user %s for %s (balance %s)",
            cost,
            user_id,
            action.value,
            new_balance,
        )
        if new_balance <= settings.low_credit_threshold:
            logger.warning(
                "Low credit balance for user %s: %s remaining", user_id, new_balance
            )
        return entry

    @translate_storage_errors
    async def credit(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        action: CreditAction,
        idempotency_key: str | None = None,
        *,
        description: str | None = None,
    ) -> LedgerEntry:
        """Add credits to an account.

        For PURCHASE and PROMO_CODE the idempotency key is mandatory. A
        retry with the same key, user, action and amount returns the
        original entry without changing the balance.

        Args:
            user_id: Account owner.
            amount: Credits to add. Must be > 0 (PROMO_CODE may be 0).
            action: PURCHASE, PROMO_CODE or ADMIN_GRANT.
            idempotency_key: Caller dedup token (e.g. payment event id).
            description: Optional entry description.

        Returns:
            The new (or replayed) LedgerEntry.

        Raises:
            ValidationError: Bad action, amount or missing key.
            NotFoundError: If the account does not exist.
            DuplicateIdempotencyKeyConflict: Key already used for a
                different user, action or amount.
        """
        if action not in FUNDING_ACTIONS:
            raise ValidationError(f"{action.value} is not a funding action")
        amount = _quantize(amount)
        if amount < _ZERO or (amount == _ZERO and action != CreditAction.PROMO_CODE):
            raise ValidationError("Credit amount must be positive")
        if action in IDEMPOTENT_ACTIONS and not idempotency_key:
            raise ValidationError(f"{action.value} credits require an idempotency key")

        try:
            async with self._db.begin_nested():
                account = await CreditRepository.lock_account(self._db, user_id)
                if account is None:
                    raise NotFoundError("Credit account", str(user_id))
                if idempotency_key is not None:
                    existing = await CreditRepository.get_entry_by_idempotency_key(
                        self._db, idempotency_key
                    )
                    if existing is not None:
                        return self._replay(existing, user_id, action, amount)
                entry = await self._append_credit(
                    user_id,
                    amount,
                    action,
                    idempotency_key=idempotency_key,
                    description=description,
                )
        except IntegrityError:
            # Another account committed the same key first; savepoint was
            # rolled back and the session is still usable.
            if idempotency_key is None:
                raise
            existing = await CreditRepository.get_entry_by_idempotency_key(
                self._db, idempotency_key
            )
            if existing is None:
                raise
            return self._replay(existing, user_id, action, amount)

        return entry

    @translate_storage_errors
    async def redeem_promo_code(self, user_id: uuid.UUID, code: str) -> LedgerEntry:
        """Redeem a promo code for its credits.

        One redemption per user per code, enforced by the idempotency key
        "{user_id}:{CODE}".

        Args:
            user_id: Redeeming user.
            code: Code as typed (case-insensitive).

        Returns:
            The PROMO_CODE LedgerEntry.

        Raises:
            NotFoundError: If the account does not exist.
            PromoCodeInvalidError: Unknown, inactive or expired code.
            PromoCodeAlreadyRedeemedError: The user already redeemed it.
            PromoCodeExhaustedError: max_uses reached.
        """
        normalized = code.strip().upper()
        key = promo_idempotency_key(user_id, normalized)
        promo = await PromoCodeRepository.get_by_code(self._db, normalized)
        if promo is None:
            logger.info("Promo code redemption failed for user %s: not found", user_id)
            raise PromoCodeInvalidError("not_found")

        try:
            async with self._db.begin_nested():
                account = await CreditRepository.lock_account(self._db, user_id)
                if account is None:
                    raise NotFoundError("Credit account", str(user_id))

                now = datetime.now(UTC)
                self._check_usable(promo, now)
                if await CreditRepository.get_entry_by_idempotency_key(self._db, key):
                    raise PromoCodeAlreadyRedeemedError()

                used_count = await PromoCodeRepository.claim_use(
                    self._db, promo_id=promo.id, now=now
                )
                if used_count is None:
                    # Lost a race: re-read to report why the claim failed
                    current = await PromoCodeRepository.get_by_code(
                        self._db, normalized
                    )
                    if current is None:
                        raise PromoCodeInvalidError("not_found")
                    self._check_usable(current, now)
                    raise PromoCodeExhaustedError()

                entry = await self._append_credit(
                    user_id,
                    _quantize(promo.credits),
                    CreditAction.PROMO_CODE,
                    idempotency_key=key,
                    description=f"Promo code {normalized}",
                )
        except IntegrityError:
            if await CreditRepository.get_entry_by_idempotency_key(self._db, key):
                raise PromoCodeAlreadyRedeemedError() from None
            raise

        logger.info(
            "User %s redeemed promo code %s (%s/%s uses)",
            user_id,
            normalized,
            used_count,
            promo.max_uses if promo.max_uses is not None else "unlimited",
        )
        return entry

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    @translate_storage_errors
    async def reconcile(self) -> list[dict]:
        """Find accounts whose balance disagrees with the ledger.

        Returns:
            Mismatched accounts (empty when consistent). Each mismatch is
            logged at ERROR for operators.
        """
        mismatches = await CreditRepository.find_discrepancies(self._db)
        for row in mismatches:
            logger.error(
                "Ledger mismatch for user %s: balance %s, ledger sum %s",
                row["user_id"],
                row["balance"],
                row["ledger_sum"],
            )
        return mismatches

    @translate_storage_errors
    async def usage_today(self) -> tuple[datetime, Decimal]:
        """Credits consumed by usage actions since 00:00 UTC.

        Returns:
            Tuple of (start of the UTC day, credits consumed).
        """
        midnight = datetime.now(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight, await CreditRepository.usage_since(self._db, midnight)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _append_credit(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        action: CreditAction,
        *,
        idempotency_key: str | None,
        description: str | None,
    ) -> LedgerEntry:
        """Apply a funding change and append its entry (account already locked)."""
        counter = (
            "total_purchased" if action in IDEMPOTENT_ACTIONS else "total_granted"
        )
        balance = await CreditRepository.apply_credit(
            self._db, user_id=user_id, amount=amount, counter=counter
        )
        entry = await CreditRepository.create_entry(
            self._db,
            user_id=user_id,
            delta=amount,
            action=action,
            balance_after=balance,
            idempotency_key=idempotency_key,
            description=description or _DESCRIPTIONS[action],
        )
        logger.info(
            "Credited %s to user %s for %s (balance %s)",
            amount,
            user_id,
            action.value,
            balance,
        )
        return entry

    @staticmethod
    def _replay(
        existing: LedgerEntry,
        user_id: uuid.UUID,
        action: CreditAction,
        amount: Decimal,
    ) -> LedgerEntry:
        """Return the original entry for a retry, or raise on a key clash."""
        if (
            existing.user_id == user_id
            and existing.action == action.value
            and existing.delta == amount
        ):
            logger.info(
                "Idempotent replay of %s for user %s (entry %s)",
                action.value,
                user_id,
                existing.id,
            )
            return existing

        logger.error(
            "Idempotency key conflict: key %r owned by entry %s "
            "(user %s, %s, %s); rejected request (user %s, %s, %s)",
            existing.idempotency_key,
            existing.id,
            existing.user_id,
            existing.action,
            existing.delta,
            user_id,
            action.value,
            amount,
        )
        raise DuplicateIdempotencyKeyConflict(existing.idempotency_key or "")

    @staticmethod
    def _check_usable(promo: PromoCode, now: datetime) -> None:
        """Raise PromoCodeInvalidError if the code is inactive or expired."""
        if not promo.is_active:
            logger.info("Promo code %s rejected: inactive", promo.code)
            raise PromoCodeInvalidError("inactive")
        if promo.expires_at is not None and promo.expires_at <= now:
            logger.info("Promo code %s rejected: expired", promo.code)
            raise PromoCodeInvalidError("expired")
