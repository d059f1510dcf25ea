"""
Pydantic schemas for the account read endpoints.

The password hash is never part of any response schema.
All monetary amounts are in integer paise.
"""

from pydantic import BaseModel


class ProfileResponse(BaseModel):
    """Response body for GET /upi/me."""
    user_id: str
    name: str
    upi_id: str
    balance_paise: int

    model_config = {"from_attributes": True}


class BalanceResponse(BaseModel):
    upi_id: str
    balance_paise: int

    model_config = {"from_attributes": True}
