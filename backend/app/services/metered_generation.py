"""Metered generation — charge credits around an AI generation call.

Wraps the document-generation workflow so the credit check and the debit
sit next to the work they pay for:

    async with MeteredGeneration(db, user_id, MeteredAction.CV_GENERATION) as charge:
        document = await generate_cv(...)
        charge.related_document_id = document.id

Two policies:
- ON_SUCCESS (default): authorize before the block, debit after it
  completes. A failing block is never charged. The debit re-validates the
  balance, so a concurrent spend can still reject the charge at exit.
- UP_FRONT: debit before the block inside a savepoint, roll the savepoint
  back if the block raises. Use when the work must not start unpaid.
  Rolling back also discards any writes the block made on the same session.
"""

import logging
import uuid
from enum import Enum
from types import TracebackType

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from app.core.config import settings
from app.core.credit_actions import MeteredAction
from app.core.errors import InsufficientCreditsError
from app.models.credit import LedgerEntry
from app.services.credit_ledger import CreditLedgerService

logger = logging.getLogger(__name__)


class ChargePolicy(str, Enum):
    """When a metered generation is charged."""

    ON_SUCCESS = "on_success"
    UP_FRONT = "up_front"


class MeteredGeneration:
    """Async context manager that charges one metered action.

    Args:
        db: Async database session shared with the generation work.
        user_id: User being charged.
        action: Metered action performed inside the block.
        policy: When to charge.
        related_document_id: Document to link to the usage entry. May also
            be set on the instance inside the block.

    Attributes:
        entry: The usage LedgerEntry once charged (None for zero-cost
            actions, when metering is disabled, or before charging).
    """

    def __init__(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        action: MeteredAction,
        *,
        policy: ChargePolicy = ChargePolicy.ON_SUCCESS,
        related_document_id: uuid.UUID | None = None,
    ) -> None:
        self._db = db
        self._ledger = CreditLedgerService(db)
        self._user_id = user_id
        self._action = action
        self._policy = policy
        self._savepoint: AsyncSessionTransaction | None = None
        self._metered = False
        self.related_document_id = related_document_id
        self.entry: LedgerEntry | None = None

    async def __aenter__(self) -> "MeteredGeneration":
        self._metered = settings.metering_enabled
        if not self._metered:
            return self

        if self._policy is ChargePolicy.ON_SUCCESS:
            result = await self._ledger.authorize(self._user_id, self._action)
            if not result.allowed:
                raise InsufficientCreditsError(
                    balance=result.cost - result.shortfall,
                    required=result.cost,
                )
            return self

        self._savepoint = await self._db.begin_nested()
        try:
            self.entry = await self._ledger.debit(
                self._user_id, self._action, self.related_document_id
            )
        except Exception:
            await self._savepoint.rollback()
            self._savepoint = None
            raise
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if not self._metered:
            return

        if self._policy is ChargePolicy.ON_SUCCESS:
            if exc_type is None:
                self.entry = await self._ledger.debit(
                    self._user_id, self._action, self.related_document_id
                )
            return

        if self._savepoint is None:
            return
        savepoint, self._savepoint = self._savepoint, None
        if exc_type is None:
            await savepoint.commit()
            return
        await savepoint.rollback()
        logger.info(
            "Rolled back up-front %s charge for user %s after failed generation",
            self._action.value,
            self._user_id,
        )
