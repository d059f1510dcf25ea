"""
Pydantic schemas for registration and login.

Pydantic validates incoming data automatically — if a required field is
missing or the wrong type, FastAPI returns a 422 error before our code
even runs.
"""

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    """Request body for POST /upi/register."""
    # The address is derived from this, so keep it to address-safe characters
    user_id: str = Field(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9._-]+$")
    name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1)
    initial_balance_paise: int = Field(default=0, ge=0)


class LoginRequest(BaseModel):
    """Request body for POST /upi/login."""
    user_id: str
    password: str


class UpiAuthRequest(BaseModel):
    """Request body for POST /upi/auth (log in with the payment address)."""
    upi_id: str
    password: str


class AuthResponse(BaseModel):
    """Token plus the profile fields the client shows right after login."""
    token: str
    token_type: str = "bearer"
    user_id: str
    upi_id: str
    name: str
    balance_paise: int
