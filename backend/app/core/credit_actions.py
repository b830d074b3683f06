"""Credit actions and the static cost table.

Two closed enums instead of free-form strings:

- MeteredAction: what a user can be charged for. PDF_DOWNLOAD is metered
  (it goes through authorize/debit) but costs 0 and never reaches the ledger.
- CreditAction: what a ledger entry can record. Usage actions carry a
  negative delta, funding actions a positive one.

Costs come from Settings so they are fixed per deployment.
"""

from decimal import Decimal
from enum import Enum

from app.core.config import settings

# Ledger quantities are NUMERIC(12, 2)
CREDIT_QUANTUM = Decimal("0.01")


class MeteredAction(str, Enum):
    """Billable user actions with a fixed credit cost."""

    CV_GENERATION = "CV_GENERATION"
    COVER_LETTER_GENERATION = "COVER_LETTER_GENERATION"
    ATS_OPTIMIZATION = "ATS_OPTIMIZATION"
    PDF_DOWNLOAD = "PDF_DOWNLOAD"


class CreditAction(str, Enum):
    """Kinds of balance-affecting events recorded in the ledger."""

    CV_GENERATION = "CV_GENERATION"
    COVER_LETTER_GENERATION = "COVER_LETTER_GENERATION"
    ATS_OPTIMIZATION = "ATS_OPTIMIZATION"
    PURCHASE = "PURCHASE"
    PROMO_CODE = "PROMO_CODE"
    ADMIN_GRANT = "ADMIN_GRANT"


USAGE_ACTIONS = frozenset(
    {
        CreditAction.CV_GENERATION,
        CreditAction.COVER_LETTER_GENERATION,
        CreditAction.ATS_OPTIMIZATION,
    }
)
FUNDING_ACTIONS = frozenset(
    {CreditAction.PURCHASE, CreditAction.PROMO_CODE, CreditAction.ADMIN_GRANT}
)
# Funding that must carry an idempotency key and counts as purchased credit
IDEMPOTENT_ACTIONS = frozenset({CreditAction.PURCHASE, CreditAction.PROMO_CODE})


def cost_for(action: MeteredAction) -> Decimal:
    """Return the credit cost of a metered action.

    Args:
        action: The metered action.

    Returns:
        Cost in credits (may be 0).
    """
    costs = {
        MeteredAction.CV_GENERATION: settings.credit_cost_cv_generation,
        MeteredAction.COVER_LETTER_GENERATION: settings.credit_cost_cover_letter_generation,
        MeteredAction.ATS_OPTIMIZATION: settings.credit_cost_ats_optimization,
        MeteredAction.PDF_DOWNLOAD: settings.credit_cost_pdf_download,
    }
    return costs[action]


def cost_table() -> dict[MeteredAction, Decimal]:
    """Return the full cost table, in enum order."""
    return {action: cost_for(action) for action in MeteredAction}


def ledger_action(action: MeteredAction) -> CreditAction | None:
    """Map a metered action to the ledger action it records, if any.

    PDF_DOWNLOAD has no ledger counterpart.
    """
    try:
        return CreditAction(action.value)
    except ValueError:
        return None


def sql_in_list(actions: type[Enum] | frozenset) -> str:
    """Render enum values as a SQL IN list for CHECK constraints."""
    return ", ".join(sorted(f"'{a.value}'" for a in actions))
