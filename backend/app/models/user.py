"""User model.

Users are created by the external registration flow. This service only
reads them for authentication and admin checks, and hangs the credit
account off the user id.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.credit import CreditAccount

_DEFAULT_UUID = text("gen_random_uuid()")


class User(Base, TimestampMixin):
    """User account.

    Attributes:
        id: UUID primary key.
        email: Unique email address.
        name: Display name.
        token_invalidated_before: JWTs issued before this are rejected.
        is_admin: Whether the user has admin privileges. Defaults to False.
        credit_account: The user's credit account, if opened.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    token_invalidated_before: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    is_admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )

    # Accounts are frozen, never erased, so no delete cascade from here
    credit_account: Mapped["CreditAccount | None"] = relationship(
        "CreditAccount",
        back_populates="user",
        uselist=False,
        lazy="raise",
    )
