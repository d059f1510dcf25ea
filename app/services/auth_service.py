"""
Authentication service — registration and login business logic.

Registration flow:
  1. Reject a user id that is already taken
  2. Hash the password with Argon2id
  3. Create the Account (its payment address is derived from the user id)
  4. Return a JWT so the user is immediately logged in

Login flow:
  1. Look up the account by user id (or by payment address for /upi/auth)
  2. Verify the password against the stored hash
  3. Return a JWT

Unknown user and wrong password produce the same InvalidCredentialsError
so that valid user ids cannot be enumerated.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DuplicateUserError, InvalidCredentialsError
from app.models.account import Account
from app.security import hash_password, verify_password, create_access_token

logger = structlog.get_logger(__name__)


def issue_token(account: Account) -> str:
    return create_access_token(account.user_id, account.upi_id)


async def register(
    db: AsyncSession,
    user_id: str,
    name: str,
    password: str,
    initial_balance_paise: int = 0,
) -> tuple[Account, str]:
    """
    Register a new account.

    Returns:
        Tuple of (Account instance, JWT token string).

    Raises:
        DuplicateUserError: If the user id is already registered.
    """
    result = await db.execute(select(Account).where(Account.user_id == user_id))
    if result.scalar_one_or_none() is not None:
        raise DuplicateUserError(user_id)

    account = Account(
        user_id=user_id,
        name=name,
        hashed_password=hash_password(password),
        balance_paise=initial_balance_paise,
    )
    db.add(account)
    await db.flush()

    logger.info("account_registered", user_id=user_id, upi_id=account.upi_id)
    return account, issue_token(account)


def _check_password(account: Account | None, password: str) -> Account:
    if account is None:
        raise InvalidCredentialsError()
    if not verify_password(password, account.hashed_password):
        raise InvalidCredentialsError()
    return account


async def login(db: AsyncSession, user_id: str, password: str) -> tuple[Account, str]:
    """
    Authenticate by user id.

    Raises:
        InvalidCredentialsError: If the user id doesn't exist or password is wrong.
    """
    result = await db.execute(select(Account).where(Account.user_id == user_id))
    account = _check_password(result.scalar_one_or_none(), password)
    return account, issue_token(account)


async def authenticate_with_upi_id(
    db: AsyncSession,
    upi_id: str,
    password: str,
) -> tuple[Account, str]:
    """Same as login(), keyed by payment address."""
    result = await db.execute(select(Account).where(Account.upi_id == upi_id))
    account = _check_password(result.scalar_one_or_none(), password)
    return account, issue_token(account)
