"""
Credentials: Argon2 password hashes and the JWT that identifies a caller.

Passwords
  Hashed with Argon2id through passlib's CryptContext. Only the hash is
  stored; "deprecated='auto'" lets the scheme be changed later without
  invalidating hashes already in the database.

Tokens
  A token names a caller twice: "sub" is the user id and "upi_id" is the
  payment address derived from it. Both claims must be present for a token
  to be accepted, and the dependency layer checks that they still match a
  stored account. Tokens are HS256-signed with SECRET_KEY and expire after
  ACCESS_TOKEN_EXPIRE_MINUTES (7 days by default).
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.config import settings


pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Constant-time check of a plaintext password against a stored hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    user_id: str,
    upi_id: str,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Sign a token for one account.

    Args:
        user_id: Stored as the "sub" claim.
        upi_id: The account's payment address.
        expires_delta: Lifetime override; defaults to ACCESS_TOKEN_EXPIRE_MINUTES.
    """
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": user_id,
        "upi_id": upi_id,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> tuple[str, str]:
    """
    Verify a token and return its (user_id, upi_id).

    Raises:
        JWTError: If the token is expired, tampered with, or lacks either claim.
    """
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    user_id = payload.get("sub")
    upi_id = payload.get("upi_id")
    if not user_id or not upi_id:
        raise JWTError("Invalid token structure")
    return user_id, upi_id
