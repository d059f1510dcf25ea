"""
IdempotencyRecord model — a short-lived claim on a transfer request id.

The request id is the primary key, so the database refuses a second
row for the same id; that uniqueness is the whole locking mechanism.
A record blocks its request id for IDEMPOTENCY_TTL_SECONDS after
`created_at` and is then treated as gone (see idempotency_service).
"""

from datetime import datetime, timezone

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    request_id: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
