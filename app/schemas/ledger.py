"""
Pydantic schemas for ledger entries and transfers.

All monetary amounts are in integer paise (e.g., ₹10.50 = 1050).
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class LedgerEntryResponse(BaseModel):
    """Public representation of one side of a transfer."""
    id: uuid.UUID
    direction: str
    amount_paise: int
    category: str
    note: str | None
    sender_upi_id: str
    receiver_upi_id: str
    counterpart_upi_id: str
    correlation_id: str
    origin: str
    synced_with_finzen: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class TransferRequest(BaseModel):
    """
    Request body for POST /upi/send.

    Everything is optional at the schema level on purpose: the request id
    is claimed before the other fields are checked, and the missing-field,
    amount and self-transfer checks are domain errors raised by the
    transfer service, not 422s.
    """
    receiver_upi_id: str | None = None
    amount_paise: int | None = Field(None, description="Amount in paise")
    category: str | None = Field(None, max_length=50)
    note: str | None = Field(None, max_length=255)
    request_id: str | None = Field(
        None,
        max_length=128,
        description="Caller-generated id; reuse it only when retrying the same payment",
    )


class TransferResponse(BaseModel):
    """Response body for a successful transfer."""
    message: str = "Payment successful"
    correlation_id: str
    debit_entry: LedgerEntryResponse
    credit_entry: LedgerEntryResponse
