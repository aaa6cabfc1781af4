"""
Advance ledger errors.

Every failure the ledger can report. Validation and business-rule errors are
raised before anything is written; only ContentionError and StorageError are
worth retrying.
"""

from decimal import Decimal
from typing import Any, Dict, Optional
from fastapi import status

from brickbook.app.core.exceptions import AppException


class LedgerError(AppException):
    """Base class for advance ledger failures."""

    retryable = False

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int,
        details: Dict[str, Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details,
            headers=headers,
        )


class InvalidAmountError(LedgerError):
    """Amount is zero, negative or not a finite number."""

    def __init__(self, amount: Any):
        super().__init__(
            message="Amount must be a positive number",
            error_code="ERR_LEDGER_INVALID_AMOUNT",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"amount": str(amount)},
        )


class InsufficientBalanceError(LedgerError):
    """The operation would drive the advance balance below zero."""

    def __init__(self, customer_id: str, available: Decimal, required: Decimal):
        self.available = available
        self.required = required
        super().__init__(
            message="Insufficient advance balance",
            error_code="ERR_LEDGER_INSUFFICIENT_BALANCE",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={
                "customerId": customer_id,
                "availableBalance": float(available),
                "requiredAmount": float(required),
            },
        )


class MissingSaleReferenceError(LedgerError):
    def __init__(self, kind: str):
        super().__init__(
            message=f"A sale ID is required for {kind} entries",
            error_code="ERR_LEDGER_SALE_REQUIRED",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"type": kind},
        )


class EntryNotFoundError(LedgerError):
    def __init__(self, entry_id: Any):
        super().__init__(
            message=f"Ledger entry with ID {entry_id} not found",
            error_code="ERR_LEDGER_ENTRY_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"entryId": entry_id},
        )


class AlreadyReversedError(LedgerError):
    def __init__(self, entry_id: Any, reversal_id: Any = None):
        super().__init__(
            message=f"Ledger entry {entry_id} has already been reversed",
            error_code="ERR_LEDGER_ALREADY_REVERSED",
            status_code=status.HTTP_409_CONFLICT,
            details={"entryId": entry_id, "reversalId": reversal_id},
        )


class NotReversibleError(LedgerError):
    """
    Reversal entries are final; a mistaken reversal is fixed with a new top-up.
    Advance that settled a recorded sale payment stays spent.
    """

    def __init__(self, entry_id: Any, reason: str = "is a reversal"):
        super().__init__(
            message=f"Ledger entry {entry_id} {reason} and cannot be reversed",
            error_code="ERR_LEDGER_NOT_REVERSIBLE",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"entryId": entry_id},
        )


class CustomerNotFoundError(LedgerError):
    def __init__(self, customer_id: Any):
        super().__init__(
            message="Customer not found",
            error_code="ERR_NOT_FOUND_CUSTOMER",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"customerId": customer_id},
        )


class SaleNotFoundError(LedgerError):
    def __init__(self, sale_id: Any):
        super().__init__(
            message="Sale not found",
            error_code="ERR_NOT_FOUND_SALE",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"saleId": sale_id},
        )


class ContentionError(LedgerError):
    """The per-customer update could not be acquired in time."""

    retryable = True

    def __init__(self, customer_id: str, timeout: float):
        retry_after = max(1, int(round(timeout)))
        super().__init__(
            message="Customer ledger is busy, please retry",
            error_code="ERR_LEDGER_CONTENTION",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"customerId": customer_id, "timeoutSeconds": timeout},
            headers={"Retry-After": str(retry_after)},
        )


class StorageError(LedgerError):
    """Underlying persistence failure, surfaced as-is."""

    retryable = True

    def __init__(self, reason: str):
        super().__init__(
            message="Ledger storage failure",
            error_code="ERR_LEDGER_STORAGE",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"reason": reason},
        )


class ImmutableEntryError(LedgerError):
    """Raised by the ORM guard when code tries to modify or delete an appended entry."""

    def __init__(self, entry_id: Any, operation: str, fields: Optional[list] = None):
        super().__init__(
            message=f"Ledger entry {entry_id} is immutable ({operation} rejected)",
            error_code="ERR_LEDGER_IMMUTABLE",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"entryId": entry_id, "operation": operation, "fields": fields or []},
        )
