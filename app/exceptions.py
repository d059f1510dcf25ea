"""
Custom exception classes and FastAPI exception handlers.

The service layer raises domain-specific errors (like InsufficientBalanceError)
without importing HTTP concepts. The handler registered here translates every
one of them into the same JSON shape:

    {"detail": "<short message>", "error_type": "<machine-readable kind>"}

Each exception class carries its own HTTP status and error_type, so adding
a new error kind is a single class definition.

Exception hierarchy:
    UPIError (base)
    ├── MissingRequestIdError      — transfer submitted without a request id
    ├── DuplicateRequestError      — request id already seen inside the TTL window
    ├── InvalidRequestError        — required transfer field missing
    ├── InvalidAmountError         — amount is zero or negative
    ├── SelfTransferError          — sender and receiver are the same address
    ├── AccountNotFoundError       — no account with the given address
    ├── InsufficientBalanceError   — sender balance below the amount
    ├── TransferFailedError        — persistence failure after validation passed
    ├── ForbiddenError             — caller reading another principal's data
    ├── DuplicateUserError         — registering an existing user id
    ├── InvalidCredentialsError    — bad user id/address or password
    └── ExternalSyncError          — Finzen unreachable on an explicit sync request
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class UPIError(Exception):
    """Base exception for all Mock UPI domain errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_type: str = "upi_error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)

    def to_content(self) -> dict:
        return {"detail": self.detail, "error_type": self.error_type}


# ---------------------------------------------------------------------------
# Transfer errors
# ---------------------------------------------------------------------------

class MissingRequestIdError(UPIError):
    """Raised when a transfer arrives without a request id."""

    error_type = "missing_request_id"

    def __init__(self):
        super().__init__("request_id is required")


class DuplicateRequestError(UPIError):
    """Raised when the request id is already held by another attempt."""

    status_code = status.HTTP_409_CONFLICT
    error_type = "duplicate_request"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__("Duplicate payment blocked")


class InvalidRequestError(UPIError):
    """Raised when one or more required transfer fields are missing."""

    error_type = "invalid_request"

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required fields: {', '.join(missing)}")


class InvalidAmountError(UPIError):
    error_type = "invalid_amount"

    def __init__(self, amount_paise: int):
        self.amount_paise = amount_paise
        super().__init__("Amount must be positive")


class SelfTransferError(UPIError):
    error_type = "self_transfer"

    def __init__(self):
        super().__init__("Cannot send money to yourself")


class AccountNotFoundError(UPIError):
    """Raised when no account exists for a payment address."""

    status_code = status.HTTP_404_NOT_FOUND
    error_type = "account_not_found"

    def __init__(self, upi_id: str):
        self.upi_id = upi_id
        super().__init__(f"Account {upi_id} not found")


class InsufficientBalanceError(UPIError):
    """
    Raised when a transfer would drive the sender's balance negative.

    Attributes:
        upi_id: The sender's address.
        requested_paise: The amount the sender tried to move.
        available_paise: The sender's balance at the time of the check.
    """

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_type = "insufficient_balance"

    def __init__(self, upi_id: str, requested_paise: int, available_paise: int):
        self.upi_id = upi_id
        self.requested_paise = requested_paise
        self.available_paise = available_paise
        super().__init__(
            f"Insufficient balance: requested {requested_paise} paise, "
            f"available {available_paise} paise"
        )

    def to_content(self) -> dict:
        content = super().to_content()
        content["requested_paise"] = self.requested_paise
        content["available_paise"] = self.available_paise
        return content


class TransferFailedError(UPIError):
    """
    Raised when the store rejects the transfer after validation passed.

    The message stays generic; the underlying database error is logged by
    the transfer service and never returned to the caller.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type = "transfer_failed"

    def __init__(self):
        super().__init__("Payment failed")


# ---------------------------------------------------------------------------
# Access and identity errors
# ---------------------------------------------------------------------------

class ForbiddenError(UPIError):
    status_code = status.HTTP_403_FORBIDDEN
    error_type = "forbidden"

    def __init__(self, detail: str = "Forbidden: Cannot access other user data"):
        super().__init__(detail)


class DuplicateUserError(UPIError):
    status_code = status.HTTP_409_CONFLICT
    error_type = "duplicate_user"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} already exists")


class InvalidCredentialsError(UPIError):
    """Same error for unknown user and wrong password (no enumeration)."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid credentials")


class ExternalSyncError(UPIError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "external_sync_failed"

    def __init__(self, detail: str = "Finzen sync unavailable"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the domain exception handler with the FastAPI application.

    Every UPIError subclass is rendered with its own status code and
    error_type. This is called once during app setup in main.py.
    """

    @app.exception_handler(UPIError)
    async def upi_error_handler(request: Request, exc: UPIError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_content())
