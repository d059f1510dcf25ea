"""
Account service — read access to balances and ledger history.

Ownership enforcement:
  Every read takes the authenticated principal (the Account resolved from
  the JWT by the dependency layer) and the address the caller asked for.
  If they differ the read is refused with ForbiddenError. There is no
  way to read another user's data through this module.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ForbiddenError
from app.models.account import Account
from app.models.ledger_entry import LedgerEntry


def get_owned_account(principal: Account, upi_id: str) -> Account:
    """
    Return the principal's account if `upi_id` is the principal's address.

    Raises:
        ForbiddenError: If `upi_id` belongs to (or names) anyone else.
    """
    if principal.upi_id != upi_id:
        raise ForbiddenError()
    return principal


async def list_ledger_entries(
    db: AsyncSession,
    account: Account,
    limit: int = 50,
    offset: int = 0,
) -> list[LedgerEntry]:
    """
    List an account's ledger entries, newest first.

    Args:
        db: Database session.
        account: An account already cleared by get_owned_account().
        limit: Max number of results (default 50).
        offset: Number of results to skip (for pagination).
    """
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.account_id == account.id)
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())
