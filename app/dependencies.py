"""
FastAPI dependencies for authentication and collaborator injection.

  get_current_account   (JWT -> Account)   every protected endpoint
  get_notifier          (app.state)        transfer endpoint
  get_finzen_client     (app.state)        transfer and sync endpoints

The collaborators live on app.state and are reached only through these
dependencies, so tests swap them with app.dependency_overrides.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.account import Account
from app.notifications import Notifier
from app.security import decode_access_token
from app.services.finzen_sync import FinzenClient


# "Authorization: Bearer <token>"; tokenUrl feeds Swagger UI's Authorize button
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/upi/login")


async def get_current_account(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Account:
    """
    Extract and validate the JWT token, then return the caller's Account.

    Raises:
        HTTPException 401: If the token is invalid or names no account.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        user_id, upi_id = decode_access_token(token)
    except JWTError:
        raise credentials_exception

    result = await db.execute(select(Account).where(Account.user_id == user_id))
    account = result.scalar_one_or_none()

    if account is None or account.upi_id != upi_id:
        raise credentials_exception

    return account


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_finzen_client(request: Request) -> FinzenClient:
    return request.app.state.finzen
