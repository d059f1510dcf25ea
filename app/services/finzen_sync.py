"""
Finzen sync — best-effort exchange of transactions with the Finzen tracker.

Two directions:

  Outbound (push): after a transfer commits, one record per participant is
  POSTed to `{FINZEN_API_URL}/transactions`. The posts run on a background
  task owned by FinzenClient; the payment response never waits for them and
  a failure is only logged.

  Inbound (pull): `sync_account()` fetches the account's Finzen
  transactions, imports the ones it does not hold yet as `origin="external"`
  entries, and marks its local entries as synced. It runs on demand from
  GET /upi/transactions/{upi_id}/finzen and, when
  FINZEN_SYNC_INTERVAL_SECONDS > 0, periodically for every account.

Retries:
  Every HTTP call is retried with tenacity up to FINZEN_MAX_ATTEMPTS times
  with a linear backoff (FINZEN_BACKOFF_SECONDS, then twice that, ...).
  Each attempt is bounded by FINZEN_TIMEOUT_SECONDS.

When FINZEN_API_URL is unset the client is disabled: pushes are skipped
and pulls raise ExternalSyncError.
"""

import asyncio
import uuid
from datetime import datetime, timezone

import httpx
import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from app.config import settings
from app.exceptions import ExternalSyncError
from app.models.account import Account
from app.models.ledger_entry import Direction, LedgerEntry, Origin

logger = structlog.get_logger(__name__)


# Finzen has used both naming schemes for the direction of a transaction
_DIRECTIONS = {
    "debit": Direction.DEBIT,
    "expense": Direction.DEBIT,
    "credit": Direction.CREDIT,
    "income": Direction.CREDIT,
}


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "finzen_request_retry",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()),
    )


class FinzenClient:
    """
    Async HTTP client for the Finzen API.

    Args:
        base_url: Finzen API root; None disables the client.
        api_key: Sent as a bearer token.
        timeout: Per-attempt timeout in seconds.
        max_attempts: Attempts per call, including the first.
        backoff_seconds: Wait before the second attempt; grows linearly.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str | None,
        api_key: str,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._tasks: set[asyncio.Task] = set()
        self._client = httpx.AsyncClient(
            base_url=base_url or "",
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> "FinzenClient":
        return cls(
            base_url=settings.FINZEN_API_URL,
            api_key=settings.FINZEN_API_KEY,
            timeout=settings.FINZEN_TIMEOUT_SECONDS,
            max_attempts=settings.FINZEN_MAX_ATTEMPTS,
            backoff_seconds=settings.FINZEN_BACKOFF_SECONDS,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
            retry=retry_if_exception_type(httpx.HTTPError),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def post_transaction(self, payload: dict) -> None:
        """POST one participant record. Raises httpx.HTTPError after the last attempt."""
        async for attempt in self._retrying():
            with attempt:
                response = await self._client.post("/transactions", json=payload)
                response.raise_for_status()

    async def fetch_transactions(self, user_id: str, upi_id: str) -> list[dict]:
        """
        Fetch the Finzen transactions of one user.

        Raises:
            ExternalSyncError: If Finzen is not configured, unreachable after
                all attempts, or answers with something other than a list.
        """
        if not self.enabled:
            raise ExternalSyncError("Finzen sync is not configured")

        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.get(
                        "/transactions",
                        headers={"User-ID": user_id, "UPI-ID": upi_id},
                    )
                    response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("finzen_fetch_failed", user_id=user_id, error=str(exc))
            raise ExternalSyncError() from exc

        try:
            records = response.json()
        except ValueError as exc:
            raise ExternalSyncError("Finzen returned an invalid response") from exc
        if not isinstance(records, list):
            raise ExternalSyncError("Finzen returned an invalid response")
        return records

    def forward_in_background(self, payloads: list[dict]) -> None:
        """Schedule the POSTs and return immediately."""
        if not self.enabled:
            logger.debug("finzen_forward_skipped", reason="not_configured")
            return
        task = asyncio.create_task(self._forward(payloads))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _forward(self, payloads: list[dict]) -> None:
        # Nothing may escape: the task is discarded as soon as it finishes
        for payload in payloads:
            transaction = payload.get("transaction") or {}
            log = logger.bind(
                correlation_id=transaction.get("correlation_id"),
                user_id=(payload.get("user") or {}).get("user_id"),
            )
            try:
                await self.post_transaction(payload)
            except httpx.HTTPError as exc:
                log.warning("finzen_forward_failed", error=str(exc))
            except Exception:
                log.exception("finzen_forward_crashed")
            else:
                log.info("finzen_forwarded")

    async def drain(self) -> None:
        """Wait for every scheduled forward to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

def transaction_payload(account: Account, entry: LedgerEntry) -> dict:
    """The record Finzen receives for one participant of a transfer."""
    return {
        "user": {
            "user_id": account.user_id,
            "upi_id": account.upi_id,
            "name": account.name,
        },
        "transaction": {
            "type": entry.direction,
            "amount_paise": entry.amount_paise,
            "category": entry.category,
            "note": entry.note,
            "date": entry.created_at.isoformat(),
            "correlation_id": entry.correlation_id,
            "sender_upi_id": entry.sender_upi_id,
            "receiver_upi_id": entry.receiver_upi_id,
        },
    }


def _entry_from_record(account: Account, record: dict) -> LedgerEntry:
    """Raises KeyError, TypeError or ValueError on a malformed record."""
    direction = _DIRECTIONS[record["type"]]
    amount_paise = int(record["amount_paise"])
    if amount_paise <= 0:
        raise ValueError(f"non-positive amount {amount_paise}")

    created_at = datetime.fromisoformat(record["date"])
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)

    return LedgerEntry(
        id=uuid.uuid4(),
        account_id=account.id,
        direction=direction.value,
        amount_paise=amount_paise,
        category=str(record["category"]),
        note=record.get("note"),
        sender_upi_id=str(record["sender_upi_id"]),
        receiver_upi_id=str(record["receiver_upi_id"]),
        correlation_id=str(record["correlation_id"]),
        origin=Origin.EXTERNAL.value,
        synced_with_finzen=True,
        created_at=created_at,
    )


# ---------------------------------------------------------------------------
# Inbound sync
# ---------------------------------------------------------------------------

async def import_external_entries(
    db: AsyncSession,
    account: Account,
    records: list[dict],
) -> int:
    """
    Import Finzen records the account does not already hold.

    A record is matched on its correlation id. Malformed records are
    logged and skipped. Returns the number of entries created.
    """
    result = await db.execute(
        select(LedgerEntry.correlation_id).where(LedgerEntry.account_id == account.id)
    )
    known = set(result.scalars().all())

    imported = 0
    for record in records:
        try:
            entry = _entry_from_record(account, record)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("finzen_record_skipped", user_id=account.user_id, error=repr(exc))
            continue
        if entry.correlation_id in known:
            continue
        db.add(entry)
        known.add(entry.correlation_id)
        imported += 1

    await db.flush()
    return imported


async def mark_local_entries_synced(db: AsyncSession, account: Account) -> int:
    """Flag the account's local entries as synced. Returns the number updated."""
    result = await db.execute(
        update(LedgerEntry)
        .where(LedgerEntry.account_id == account.id)
        .where(LedgerEntry.origin == Origin.LOCAL.value)
        .where(LedgerEntry.synced_with_finzen.is_(False))
        .values(synced_with_finzen=True)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount


async def sync_account(db: AsyncSession, finzen: FinzenClient, account: Account) -> None:
    """Pull one account's Finzen history, then mark its local entries synced."""
    records = await finzen.fetch_transactions(account.user_id, account.upi_id)
    imported = await import_external_entries(db, account, records)
    marked = await mark_local_entries_synced(db, account)
    logger.info(
        "finzen_account_synced",
        user_id=account.user_id,
        fetched=len(records),
        imported=imported,
        marked=marked,
    )


async def sync_all_accounts(session_factory: async_sessionmaker, finzen: FinzenClient) -> None:
    """
    Sync every account, each in its own session.

    One account failing does not stop the others. A failure listing the
    accounts propagates to the caller.
    """
    async with session_factory() as session:
        result = await session.execute(select(Account.id))
        account_ids = list(result.scalars().all())

    logger.info("finzen_sync_started", accounts=len(account_ids))
    for account_id in account_ids:
        async with session_factory() as session:
            try:
                account = await session.get(Account, account_id)
                if account is None:
                    continue
                await sync_account(session, finzen, account)
                await session.commit()
            except (ExternalSyncError, SQLAlchemyError) as exc:
                await session.rollback()
                logger.error("finzen_account_sync_failed", account_id=str(account_id), error=str(exc))
    logger.info("finzen_sync_completed", accounts=len(account_ids))


async def run_periodic_sync(
    session_factory: async_sessionmaker,
    finzen: FinzenClient,
    interval_seconds: float,
) -> None:
    """
    Background loop calling sync_all_accounts() until cancelled.

    A database failure is logged and the loop waits for the next tick.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await sync_all_accounts(session_factory, finzen)
        except SQLAlchemyError:
            logger.exception("finzen_sync_failed")
