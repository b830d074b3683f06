"""SQLAlchemy ORM models for the credit ledger.

All models are exported from this module for convenient imports:
    from app.models import User, CreditAccount, LedgerEntry, ...

Models are organized by domain:
- user.py: User (owned by the registration flow, read here)
- credit.py: CreditAccount, LedgerEntry
- billing.py: PromoCode, CreditPack
"""

from app.models.base import Base, TimestampMixin
from app.models.billing import CreditPack, PromoCode
from app.models.credit import CreditAccount, LedgerEntry
from app.models.user import User

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Users
    "User",
    # Ledger
    "CreditAccount",
    "LedgerEntry",
    # Billing catalog
    "PromoCode",
    "CreditPack",
]
