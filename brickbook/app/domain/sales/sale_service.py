"""
Sale Service (Domain Logic).

Sale settlement flows that move advance balance. Each flow runs inside one
LedgerService.customer_transaction, so the sale rows, the payment record and
the ledger entry commit together or not at all.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from brickbook.app.models.sale import Sale, Payment
from brickbook.app.models.ledger_entry import LedgerEntry
from brickbook.app.models.ledger_enums import SaleStatus, PaymentMethod
from brickbook.app.domain.ledger.errors import InsufficientBalanceError
from brickbook.app.domain.ledger.ledger_service import (
    LedgerService,
    advance_payment_reference,
    coerce_amount,
    ledger_service,
)
from brickbook.app.domain.sales.errors import (
    DuplicateInvoiceError,
    ExcessPaymentError,
    InvalidSaleError,
    SaleNotFoundError,
)

ZERO = Decimal("0.00")


def coerce_optional_amount(value: Any) -> Decimal:
    """Like coerce_amount, but an absent or zero value means nothing was paid."""
    if value is None or value == "":
        return ZERO
    try:
        if Decimal(str(value).strip()) == 0:
            return ZERO
    except (InvalidOperation, ValueError):
        pass
    return coerce_amount(value)


def new_invoice_no() -> str:
    return f"INV-{int(time.time() * 1000)}-{uuid.uuid4().hex[:4].upper()}"


def sale_status(due: Decimal, received: Decimal) -> SaleStatus:
    if due == 0:
        return SaleStatus.PAID
    if received > 0:
        return SaleStatus.PARTIAL
    return SaleStatus.PENDING


@dataclass(frozen=True)
class SaleResult:
    sale: Sale
    new_balance: Decimal
    advance_change: Decimal
    advance_used: Decimal
    advance_payment: Decimal


@dataclass(frozen=True)
class DeductionResult:
    entry: LedgerEntry
    sale: Sale
    payment: Payment
    new_balance: Decimal


class SaleService:

    def __init__(self, ledger: Optional[LedgerService] = None):
        self.ledger = ledger or ledger_service

    async def create_sale(
        self,
        db: AsyncSession,
        owner_id: str,
        customer_id: str,
        total_amount: Any,
        paid_amount: Any = 0,
        advance_used: Any = 0,
        advance_payment: Any = 0,
        invoice_no: Optional[str] = None,
        sale_date: Optional[datetime] = None,
    ) -> SaleResult:
        """
        Record a sale and settle it from cash and/or advance.

        Flow:
        1. Validate amounts (due = total - paid - advance_used, never negative)
        2. Create the Sale
        3. Consume ``advance_used`` (ConsumedBySale)
        4. Keep ``advance_payment`` as advance (ExtraPayment)
        5. Record the cash and advance payments and raise the customer's dues

        Raises:
            DuplicateInvoiceError: ``invoice_no`` is already taken
            InsufficientBalanceError: advance balance below ``advance_used``
        """
        total = coerce_amount(total_amount)
        paid = coerce_optional_amount(paid_amount)
        used = coerce_optional_amount(advance_used)
        extra = coerce_optional_amount(advance_payment)

        due = total - paid - used
        if due < 0:
            raise InvalidSaleError(
                "Payments exceed sale total",
                details={"totalAmount": float(total), "paidAmount": float(paid), "advanceUsed": float(used)},
            )

        now = datetime.now(timezone.utc)
        invoice_no = (invoice_no or "").strip() or new_invoice_no()

        async with self.ledger.customer_transaction(db, customer_id, owner_id) as customer:
            taken = await db.execute(select(Sale.id).where(Sale.invoice_no == invoice_no))
            if taken.first() is not None:
                raise DuplicateInvoiceError(invoice_no)

            sale = Sale(
                owner_id=owner_id,
                customer_id=customer.id,
                invoice_no=invoice_no,
                total_amount=total,
                paid_amount=paid + used,
                due_amount=due,
                status=sale_status(due, paid + used),
                sale_date=sale_date or now,
            )
            db.add(sale)
            try:
                await db.flush()
            except IntegrityError as exc:
                # Same invoice number committed by another customer's sale meanwhile
                raise DuplicateInvoiceError(invoice_no) from exc

            if used > 0:
                consumed = await self.ledger.consume_for_sale_locked(
                    db, customer, used, sale.id, entry_date=sale.sale_date
                )
                db.add(Payment(
                    owner_id=owner_id,
                    sale_id=sale.id,
                    customer_id=customer.id,
                    amount=used,
                    method=PaymentMethod.ADVANCE_DEDUCTION,
                    reference_number=advance_payment_reference(consumed.entry.id),
                    notes=f"Advance used at sale - Invoice: {sale.invoice_no}",
                ))
            if extra > 0:
                await self.ledger.record_extra_payment_locked(db, customer, extra, sale.id, entry_date=sale.sale_date)

            if paid > 0:
                db.add(Payment(
                    owner_id=owner_id,
                    sale_id=sale.id,
                    customer_id=customer.id,
                    amount=paid,
                    method=PaymentMethod.CASH,
                    notes=f"Payment at sale - Invoice: {sale.invoice_no}",
                ))

            customer.due_amount = Decimal(customer.due_amount or 0) + due
            customer.last_purchase_date = now
            new_balance = Decimal(customer.advance_balance)

        return SaleResult(
            sale=sale,
            new_balance=new_balance,
            advance_change=extra - used,
            advance_used=used,
            advance_payment=extra,
        )

    async def apply_advance_to_due(
        self,
        db: AsyncSession,
        owner_id: str,
        sale_id: str,
        customer_id: str,
        amount: Any,
        description: Optional[str] = None,
        entry_date: Optional[datetime] = None,
    ) -> DeductionResult:
        """
        Pay part or all of a sale's due amount from the customer's advance.

        Raises:
            SaleNotFoundError: sale missing or not this customer's
            InsufficientBalanceError: advance balance below ``amount``
            ExcessPaymentError: ``amount`` above the sale's due amount
        """
        value = coerce_amount(amount)

        async with self.ledger.customer_transaction(db, customer_id, owner_id) as customer:
            result = await db.execute(
                select(Sale).where(
                    Sale.id == sale_id,
                    Sale.owner_id == owner_id,
                    Sale.customer_id == customer.id,
                ).with_for_update()
            )
            sale = result.scalar_one_or_none()
            if sale is None:
                raise SaleNotFoundError(sale_id)

            balance = Decimal(customer.advance_balance or 0)
            if balance < value:
                raise InsufficientBalanceError(customer.id, available=balance, required=value)
            if Decimal(sale.due_amount) < value:
                raise ExcessPaymentError(Decimal(sale.due_amount), value)

            ledger_result = await self.ledger.consume_for_sale_locked(
                db,
                customer,
                value,
                sale.id,
                description=description,
                entry_date=entry_date,
                notes=f"Advance deduction of ₹{value} for due payment",
            )

            sale.paid_amount = Decimal(sale.paid_amount) + value
            sale.due_amount = Decimal(sale.due_amount) - value
            sale.status = SaleStatus.PAID if sale.due_amount == 0 else SaleStatus.PARTIAL
            customer.due_amount = max(ZERO, Decimal(customer.due_amount or 0) - value)

            payment = Payment(
                owner_id=owner_id,
                sale_id=sale.id,
                customer_id=customer.id,
                amount=value,
                method=PaymentMethod.ADVANCE_DEDUCTION,
                reference_number=advance_payment_reference(ledger_result.entry.id),
                notes=f"Paid from advance balance - {description or 'Due payment'}",
            )
            db.add(payment)
            await db.flush()

        return DeductionResult(
            entry=ledger_result.entry,
            sale=sale,
            payment=payment,
            new_balance=ledger_result.new_balance,
        )


sale_service = SaleService()
