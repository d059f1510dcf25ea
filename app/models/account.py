"""
Account model — one participant of the payment network.

Each account has:
  - A unique user id chosen at registration (the login identifier)
  - A unique UPI-style payment address derived from the user id
  - An Argon2 password hash
  - A balance in integer paise (1 INR = 100 paise)

Payment address:
  The address is always `derive_upi_id(user_id)`. It is assigned in the
  constructor and there is no code path that sets it independently, so
  the mapping user id -> address is a pure function.

Balance management:
  `balance_paise` is changed only by the transfer service. A CHECK
  constraint keeps it non-negative at the database level, and `version`
  is SQLAlchemy's optimistic-concurrency counter: every UPDATE carries
  `WHERE version = <value read>`, so two transfers that read the same
  balance cannot both commit. The loser gets StaleDataError and retries.

Owned ledger entries:
  LedgerEntry.account_id points back here; the owned list is read with
  an ORDER BY on the entry timestamp (see account_service).
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


UPI_HANDLE = "finzen"


def derive_upi_id(user_id: str) -> str:
    """Map a user id to its payment address, e.g. "alice" -> "alice@finzen"."""
    return f"{user_id}@{UPI_HANDLE}"


class Account(Base):
    __tablename__ = "accounts"

    __table_args__ = (
        CheckConstraint(
            "balance_paise >= 0",
            name="ck_accounts_non_negative_balance",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    upi_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
    )

    # Argon2id hash of the password (never store plaintext!)
    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    balance_paise: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    def __init__(self, *, user_id: str, **kwargs):
        if "upi_id" in kwargs:
            raise TypeError("upi_id is derived from user_id and cannot be set")
        super().__init__(user_id=user_id, upi_id=derive_upi_id(user_id), **kwargs)
