"""
LedgerEntry model — one side of a transfer, owned by one account.

A transfer never exists as its own row. It is two LedgerEntry rows:

  - a DEBIT owned by the sender
  - a CREDIT owned by the receiver

linked by a shared `correlation_id`. Both carry the same amount, category,
note and timestamp, plus both payment addresses so either side can be
read on its own.

Key fields:
  - direction: "debit" or "credit"
  - amount_paise: Always positive (the direction says which way it moved)
  - origin: "local" for entries created by a transfer here, "external"
    for entries imported from Finzen
  - synced_with_finzen: The only mutable column; set by the sync job

Uniqueness:
  (account_id, correlation_id) is unique. A transfer touches each
  account at most once, and the Finzen import relies on the constraint
  to skip records an account already holds.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Direction(str, enum.Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class Origin(str, enum.Enum):
    LOCAL = "local"
    EXTERNAL = "external"


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    __table_args__ = (
        CheckConstraint("amount_paise > 0", name="ck_ledger_entries_positive_amount"),
        UniqueConstraint(
            "account_id",
            "correlation_id",
            name="uq_ledger_entries_account_correlation",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
    )

    direction: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )

    amount_paise: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    category: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    note: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    sender_upi_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    receiver_upi_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Shared by the debit and credit of one transfer
    correlation_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    origin: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=Origin.LOCAL.value,
    )

    synced_with_finzen: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    # Indexed for the newest-first listing
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    @property
    def counterpart_upi_id(self) -> str:
        """The other party's address, seen from the owning account."""
        if self.direction == Direction.DEBIT.value:
            return self.receiver_upi_id
        return self.sender_upi_id
