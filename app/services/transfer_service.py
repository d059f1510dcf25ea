"""
Transfer service — moves money from one payment address to another.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. A call to send_money():

  1. Claims the request id with the idempotency guard (duplicates stop here)
  2. Validates the request (required fields, positive amount, no self-transfer)
  3. Loads and locks both accounts
  4. Checks the sender's balance
  5. Debits the sender and credits the receiver
  6. Creates the two ledger entries sharing a fresh correlation id
  7. Commits steps 5-6 as one database transaction
  8. Notifies both participants and schedules the Finzen forward
  9. Returns (debit_entry, credit_entry)

Atomicity:
  Both balance changes and both ledger entries are flushed and committed
  together. If anything in that unit fails the session is rolled back, so
  a reader never sees a debit without its credit, or balances without
  their entries.

Concurrent transfers on the same account:
  Accounts are locked in sorted-address order with SELECT ... FOR UPDATE
  (PostgreSQL), which also keeps two opposite-direction transfers from
  deadlocking. SQLite ignores FOR UPDATE, so Account.version backs it up:
  the balance UPDATE only matches the version that was read, and a
  transfer that lost the race gets StaleDataError, rolls back, and starts
  over from step 3 with fresh balances, up to TRANSFER_MAX_ATTEMPTS times.
  The idempotency guard plays no part here; it only catches retries of the
  same request id.

Failure semantics:
  Validation failures change nothing except the committed idempotency
  record, which is left to expire. Store failures after validation are
  logged in full and surfaced as TransferFailedError.
"""

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.exceptions import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidRequestError,
    SelfTransferError,
    TransferFailedError,
)
from app.models.account import Account
from app.models.ledger_entry import Direction, LedgerEntry, Origin
from app.notifications import Notifier, transfer_event
from app.services import idempotency_service
from app.services.finzen_sync import FinzenClient, transaction_payload

logger = structlog.get_logger(__name__)


def validate_transfer(
    sender_upi_id: str,
    receiver_upi_id: str | None,
    amount_paise: int | None,
    category: str | None,
) -> None:
    """
    Pure request validation; touches no state.

    Raises:
        InvalidRequestError: If receiver, amount or category is missing.
        InvalidAmountError: If the amount is zero or negative.
        SelfTransferError: If sender and receiver are the same address.
    """
    missing = [
        name
        for name, value in (
            ("receiver_upi_id", receiver_upi_id),
            ("amount_paise", amount_paise),
            ("category", category),
        )
        if value is None or (isinstance(value, str) and not value.strip())
    ]
    if missing:
        raise InvalidRequestError(missing)

    if amount_paise <= 0:
        raise InvalidAmountError(amount_paise)

    if sender_upi_id == receiver_upi_id:
        raise SelfTransferError()


async def _lock_account(db: AsyncSession, upi_id: str) -> Account:
    result = await db.execute(
        select(Account)
        .where(Account.upi_id == upi_id)
        .with_for_update()  # No-op on SQLite, locks row on PostgreSQL
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFoundError(upi_id)
    return account


async def _apply_transfer(
    db: AsyncSession,
    sender_upi_id: str,
    receiver_upi_id: str,
    amount_paise: int,
    category: str,
    note: str | None,
) -> tuple[Account, Account, LedgerEntry, LedgerEntry]:
    """Steps 3-6. Flushes but does not commit."""
    # Lock in a consistent order to prevent deadlocks
    locked = {}
    for upi_id in sorted([sender_upi_id, receiver_upi_id]):
        locked[upi_id] = await _lock_account(db, upi_id)
    sender = locked[sender_upi_id]
    receiver = locked[receiver_upi_id]

    if sender.balance_paise < amount_paise:
        raise InsufficientBalanceError(
            upi_id=sender_upi_id,
            requested_paise=amount_paise,
            available_paise=sender.balance_paise,
        )

    sender.balance_paise -= amount_paise
    receiver.balance_paise += amount_paise

    correlation_id = str(uuid.uuid4())
    created_at = datetime.now(timezone.utc)
    shared = dict(
        amount_paise=amount_paise,
        category=category,
        note=note,
        sender_upi_id=sender_upi_id,
        receiver_upi_id=receiver_upi_id,
        correlation_id=correlation_id,
        origin=Origin.LOCAL.value,
        synced_with_finzen=False,
        created_at=created_at,
    )
    debit_entry = LedgerEntry(
        id=uuid.uuid4(),
        account_id=sender.id,
        direction=Direction.DEBIT.value,
        **shared,
    )
    credit_entry = LedgerEntry(
        id=uuid.uuid4(),
        account_id=receiver.id,
        direction=Direction.CREDIT.value,
        **shared,
    )
    db.add_all([debit_entry, credit_entry])
    await db.flush()

    return sender, receiver, debit_entry, credit_entry


async def _notify(notifier: Notifier, entries: list[LedgerEntry], log) -> None:
    for entry in entries:
        owner = entry.sender_upi_id if entry.direction == Direction.DEBIT.value else entry.receiver_upi_id
        try:
            await notifier.publish(owner, transfer_event(entry))
        except Exception:
            # The transfer is committed; a notification problem must not undo it
            log.exception("transfer_notification_failed", upi_id=owner)


async def send_money(
    db: AsyncSession,
    sender_upi_id: str,
    receiver_upi_id: str | None,
    amount_paise: int | None,
    category: str | None,
    note: str | None,
    request_id: str | None,
    notifier: Notifier,
    finzen: FinzenClient,
) -> tuple[LedgerEntry, LedgerEntry]:
    """
    Execute one transfer and return its (debit_entry, credit_entry).

    Args:
        db: Database session.
        sender_upi_id: The authenticated caller's address.
        receiver_upi_id: Destination address.
        amount_paise: Positive integer amount in paise.
        category: Spending category label (e.g. "food").
        note: Optional free-text note.
        request_id: Caller-generated idempotency key.
        notifier: Receives one event per participant after commit.
        finzen: Receives one record per participant after commit.

    Raises:
        MissingRequestIdError, DuplicateRequestError: From the idempotency guard.
        InvalidRequestError, InvalidAmountError, SelfTransferError: Bad request.
        AccountNotFoundError: Either address has no account.
        InsufficientBalanceError: Sender balance below amount.
        TransferFailedError: The store rejected the transfer.
    """
    log = logger.bind(request_id=request_id, sender_upi_id=sender_upi_id)

    await idempotency_service.acquire(db, request_id)
    validate_transfer(sender_upi_id, receiver_upi_id, amount_paise, category)
    log = log.bind(receiver_upi_id=receiver_upi_id, amount_paise=amount_paise)

    for attempt in range(1, settings.TRANSFER_MAX_ATTEMPTS + 1):
        try:
            sender, receiver, debit_entry, credit_entry = await _apply_transfer(
                db, sender_upi_id, receiver_upi_id, amount_paise, category, note,
            )
            await db.commit()
            break
        except StaleDataError:
            await db.rollback()
            log.warning("transfer_conflict", attempt=attempt)
        except SQLAlchemyError:
            await db.rollback()
            log.exception("transfer_persistence_failed", attempt=attempt)
            raise TransferFailedError()
        except Exception:
            # Domain errors (not found, insufficient balance) and anything else
            await db.rollback()
            raise
    else:
        log.error("transfer_conflict_retries_exhausted", attempts=settings.TRANSFER_MAX_ATTEMPTS)
        raise TransferFailedError()

    log.info("transfer_committed", correlation_id=debit_entry.correlation_id, attempt=attempt)

    await _notify(notifier, [debit_entry, credit_entry], log)
    finzen.forward_in_background([
        transaction_payload(sender, debit_entry),
        transaction_payload(receiver, credit_entry),
    ])

    return debit_entry, credit_entry
