"""
Sale flow errors.
"""

from decimal import Decimal
from fastapi import status

from brickbook.app.core.exceptions import AppException
from brickbook.app.domain.ledger.errors import SaleNotFoundError  # noqa: F401  re-exported for sale flows


class ExcessPaymentError(AppException):
    """Advance deduction larger than what is still due on the sale."""

    def __init__(self, due_amount: Decimal, payment_amount: Decimal):
        super().__init__(
            message="Payment amount exceeds due amount",
            error_code="ERR_SALE_EXCESS_PAYMENT",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"dueAmount": float(due_amount), "paymentAmount": float(payment_amount)},
        )


class InvalidSaleError(AppException):
    def __init__(self, message: str, details: dict = None):
        super().__init__(
            message=message,
            error_code="ERR_SALE_INVALID",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class DuplicateInvoiceError(AppException):
    """Invoice numbers are unique across all sales."""

    def __init__(self, invoice_no: str):
        super().__init__(
            message=f"Invoice {invoice_no} already exists",
            error_code="ERR_SALE_DUPLICATE_INVOICE",
            status_code=status.HTTP_409_CONFLICT,
            details={"invoiceNo": invoice_no},
        )
