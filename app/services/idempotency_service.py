"""
Idempotency guard — stops a retried transfer from executing twice.

A transfer request carries a caller-generated request id. Before anything
else happens, `acquire()` inserts an IdempotencyRecord keyed by that id and
commits it straight away:

  - If a live record already exists, the request is a duplicate and is
    rejected with DuplicateRequestError. Nothing is written.
  - If two requests race past the existence check, the primary key makes
    the second INSERT fail; that IntegrityError is also a duplicate.

Window semantics:
  A record blocks its request id for IDEMPOTENCY_TTL_SECONDS, whatever
  the outcome of the transfer. There is no release. A record past its
  window is ignored by acquire() (and deleted on the spot if it is in the
  way), and the background reaper started by the application lifespan
  clears the rest.

Datetime comparisons are done in SQL so that they behave the same on
SQLite (which stores naive timestamps) and on PostgreSQL.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.exceptions import DuplicateRequestError, MissingRequestIdError
from app.models.idempotency_record import IdempotencyRecord

logger = structlog.get_logger(__name__)


def _expiry_cutoff() -> datetime:
    """Records created before this instant no longer block their request id."""
    return datetime.now(timezone.utc) - timedelta(seconds=settings.IDEMPOTENCY_TTL_SECONDS)


async def acquire(db: AsyncSession, request_id: str | None) -> IdempotencyRecord:
    """
    Claim a request id for one transfer attempt.

    The record is committed before this returns, so it survives whatever
    happens to the rest of the request.

    Raises:
        MissingRequestIdError: If request_id is absent or blank.
        DuplicateRequestError: If a live record for request_id exists.
    """
    if request_id is None or not request_id.strip():
        raise MissingRequestIdError()

    await db.execute(
        delete(IdempotencyRecord)
        .where(IdempotencyRecord.request_id == request_id)
        .where(IdempotencyRecord.created_at < _expiry_cutoff())
        .execution_options(synchronize_session=False)
    )

    result = await db.execute(
        select(IdempotencyRecord).where(IdempotencyRecord.request_id == request_id)
    )
    if result.scalar_one_or_none() is not None:
        await db.rollback()
        logger.info("duplicate_request_blocked", request_id=request_id)
        raise DuplicateRequestError(request_id)

    record = IdempotencyRecord(request_id=request_id)
    db.add(record)
    try:
        await db.commit()
    except IntegrityError:
        # Lost the race to a concurrent request carrying the same id
        await db.rollback()
        logger.info("duplicate_request_blocked", request_id=request_id, race=True)
        raise DuplicateRequestError(request_id)

    return record


async def purge_expired(db: AsyncSession) -> int:
    """Delete every record past its window. Returns the number deleted."""
    result = await db.execute(
        delete(IdempotencyRecord)
        .where(IdempotencyRecord.created_at < _expiry_cutoff())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def run_reaper(session_factory: async_sessionmaker, interval_seconds: float) -> None:
    """
    Background loop that purges expired records every `interval_seconds`.

    Runs until cancelled. A failed purge is logged and retried on the next
    tick.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        async with session_factory() as session:
            try:
                purged = await purge_expired(session)
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                logger.exception("idempotency_purge_failed")
                continue
        if purged:
            logger.info("idempotency_records_purged", count=purged)
