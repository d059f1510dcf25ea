"""
Authentication router — registration and login endpoints.

These are the only public (unauthenticated) HTTP endpoints in the API.

Endpoints:
  POST /upi/register  — Create an account and get a token
  POST /upi/login     — Authenticate with user id + password
  POST /upi/auth      — Authenticate with payment address + password

Plaintext passwords exist only in memory during request processing; they
are hashed before any database operation and never logged.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.auth import AuthResponse, LoginRequest, RegisterRequest, UpiAuthRequest
from app.services import auth_service

router = APIRouter()


def _auth_response(account, token: str) -> AuthResponse:
    return AuthResponse(
        token=token,
        user_id=account.user_id,
        upi_id=account.upi_id,
        name=account.name,
        balance_paise=account.balance_paise,
    )


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new account.

    The payment address is derived from the user id
    (`alice` -> `alice@finzen`). Returns a JWT so the user is immediately
    logged in.

    - **user_id**: Letters, digits, `.`, `_`, `-`; must not be taken
    - **initial_balance_paise**: Optional starting balance, default 0
    """
    account, token = await auth_service.register(
        db=db,
        user_id=request.user_id,
        name=request.name,
        password=request.password,
        initial_balance_paise=request.initial_balance_paise,
    )
    return _auth_response(account, token)


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Authenticate with user id",
)
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate with user id and password.

    Include the returned token on subsequent requests:

        Authorization: Bearer <token>
    """
    account, token = await auth_service.login(
        db=db,
        user_id=request.user_id,
        password=request.password,
    )
    return _auth_response(account, token)


@router.post(
    "/auth",
    response_model=AuthResponse,
    summary="Authenticate with payment address",
)
async def auth_with_upi_id(
    request: UpiAuthRequest,
    db: AsyncSession = Depends(get_db),
):
    account, token = await auth_service.authenticate_with_upi_id(
        db=db,
        upi_id=request.upi_id,
        password=request.password,
    )
    return _auth_response(account, token)
