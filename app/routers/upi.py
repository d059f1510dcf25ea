"""
UPI router — profile, balance, history and payments.

All endpoints require a JWT. Read endpoints take the address in the path
and refuse any address other than the caller's own with 403.

Endpoints:
  GET  /upi/me                              — Own profile
  GET  /upi/balance/{upi_id}                — Own balance
  GET  /upi/transactions/{upi_id}           — Own ledger entries, newest first
  GET  /upi/transactions/{upi_id}/finzen    — Pull from Finzen, then list
  POST /upi/send                            — Send money to another address
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_account, get_finzen_client, get_notifier
from app.models.account import Account
from app.notifications import Notifier
from app.schemas.account import BalanceResponse, ProfileResponse
from app.schemas.ledger import LedgerEntryResponse, TransferRequest, TransferResponse
from app.services import account_service, finzen_sync, transfer_service
from app.services.finzen_sync import FinzenClient

router = APIRouter()


@router.get(
    "/me",
    response_model=ProfileResponse,
    summary="Get your profile",
)
async def get_me(account: Account = Depends(get_current_account)):
    return account


@router.get(
    "/balance/{upi_id}",
    response_model=BalanceResponse,
    summary="Get your balance",
)
async def get_balance(
    upi_id: str,
    account: Account = Depends(get_current_account),
):
    return account_service.get_owned_account(account, upi_id)


@router.get(
    "/transactions/{upi_id}",
    response_model=list[LedgerEntryResponse],
    summary="List your transactions",
)
async def list_transactions(
    upi_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Ledger entries owned by the caller, newest first, paginated."""
    owned = account_service.get_owned_account(account, upi_id)
    return await account_service.list_ledger_entries(db, owned, limit=limit, offset=offset)


@router.get(
    "/transactions/{upi_id}/finzen",
    response_model=list[LedgerEntryResponse],
    summary="Sync with Finzen and list your transactions",
)
async def sync_finzen_transactions(
    upi_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    finzen: FinzenClient = Depends(get_finzen_client),
):
    """
    Import the caller's Finzen transactions, mark local ones as synced,
    and return the merged history.

    Returns 502 if Finzen is not configured or cannot be reached.
    """
    owned = account_service.get_owned_account(account, upi_id)
    await finzen_sync.sync_account(db, finzen, owned)
    return await account_service.list_ledger_entries(db, owned, limit=limit, offset=offset)


@router.post(
    "/send",
    response_model=TransferResponse,
    summary="Send money",
)
async def send_money(
    request: TransferRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    finzen: FinzenClient = Depends(get_finzen_client),
):
    """
    Send money from your address to another one.

    Either both sides of the payment are recorded or neither is. Retrying
    with the same **request_id** within 30 seconds is rejected with 409,
    so a client can safely resubmit after a timeout.

    - **receiver_upi_id**: Destination address, not your own
    - **amount_paise**: Positive integer (e.g., ₹40.00 = 4000)
    - **category**: Required label, e.g. "food"
    - **request_id**: Fresh per payment, reused only for retries
    """
    debit_entry, credit_entry = await transfer_service.send_money(
        db=db,
        sender_upi_id=account.upi_id,
        receiver_upi_id=request.receiver_upi_id,
        amount_paise=request.amount_paise,
        category=request.category,
        note=request.note,
        request_id=request.request_id,
        notifier=notifier,
        finzen=finzen,
    )

    return TransferResponse(
        correlation_id=debit_entry.correlation_id,
        debit_entry=LedgerEntryResponse.model_validate(debit_entry),
        credit_entry=LedgerEntryResponse.model_validate(credit_entry),
    )
