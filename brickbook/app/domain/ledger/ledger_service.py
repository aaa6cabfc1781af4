"""
Ledger Service (Domain Logic).

The only code allowed to change a customer's advance balance. Every mutation:

1. Validates the amount (positive, finite, two decimals)
2. Takes the per-customer lock (bounded wait) and the customer row lock
3. Checks that the balance stays non-negative
4. Appends one immutable LedgerEntry
5. Updates the cached Customer.advance_balance
6. Commits, or rolls everything back

Reads (history, summary, reconciliation) never write.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brickbook.app.core.config import settings
from brickbook.app.models.customer import Customer
from brickbook.app.models.sale import Payment, Sale
from brickbook.app.models.ledger_entry import LedgerEntry
from brickbook.app.models.ledger_enums import LedgerEntryKind
from brickbook.app.domain.ledger.errors import (
    AlreadyReversedError,
    ContentionError,
    CustomerNotFoundError,
    EntryNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    MissingSaleReferenceError,
    NotReversibleError,
    SaleNotFoundError,
    StorageError,
)
from brickbook.app.domain.ledger.locking import CustomerLockRegistry, customer_locks
from brickbook.app.domain.ledger.projector import BalanceProjector, Reconciliation
from brickbook.app.domain.ledger.store import KindFilter, LedgerStore, LedgerTotals

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("1000000000000")  # Numeric(14, 2) upper bound

# Postgres SQLSTATE for lock_not_available (lock_timeout / NOWAIT)
LOCK_NOT_AVAILABLE = "55P03"


def coerce_amount(value: Any) -> Decimal:
    """
    Parse a caller-supplied amount into a positive Decimal with two places.

    Raises:
        InvalidAmountError: zero, negative, non-numeric, NaN/infinite or too large
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError(value)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(value) from None
    if not amount.is_finite():
        raise InvalidAmountError(value)
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount <= 0 or amount >= MAX_AMOUNT:
        raise InvalidAmountError(value)
    return amount


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a successful mutation."""
    entry: LedgerEntry
    new_balance: Decimal


@dataclass(frozen=True)
class LedgerSummary:
    """
    Totals for display. ``total_used`` is a positive magnitude and
    ``net_advance`` the signed sum; added and extra payments stay separate.
    ``total_reversed`` counts reversals whose target is outside the entries.
    """
    total_added: Decimal
    total_used: Decimal
    total_payments: Decimal
    net_advance: Decimal
    total_reversed: Decimal

    @classmethod
    def from_totals(cls, totals: LedgerTotals) -> "LedgerSummary":
        return cls(
            total_added=totals.added,
            total_used=totals.used,
            total_payments=totals.extra_payments,
            net_advance=totals.net,
            total_reversed=totals.reversed,
        )


def advance_payment_reference(entry_id: int) -> str:
    """Payment.reference_number of a sale payment settled by ledger entry ``entry_id``."""
    return f"ADV_{entry_id}"


def _is_lock_timeout(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == LOCK_NOT_AVAILABLE:
        return True
    message = str(orig or exc).lower()
    return "lock timeout" in message or "database is locked" in message


class LedgerService:
    """
    Mutation API for the customer advance ledger.

    Public operations own their transaction. Collaborating flows that must write
    their own rows atomically with a ledger entry (sale creation, advance
    deduction) open ``customer_transaction`` themselves and call the
    ``*_locked`` helpers inside it.
    """

    def __init__(self, locks: Optional[CustomerLockRegistry] = None, lock_timeout: Optional[float] = None):
        self.locks = locks or customer_locks
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.ledger_lock_timeout_seconds

    # ------------------------------------------------------------------
    # Atomic unit
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def customer_transaction(
        self,
        db: AsyncSession,
        customer_id: str,
        owner_id: Optional[str] = None,
    ):
        """
        Serialize work on one customer and make it all-or-nothing.

        Yields the customer row, freshly read under the row lock. Commits when
        the block exits cleanly; rolls back on any exception.

        The rollback expires every object loaded in ``db``. Callers that keep
        using the session after a rejected operation must re-read their rows
        (or hold on to plain ids) instead of touching expired attributes.

        Raises:
            ContentionError: lock not acquired within ``lock_timeout`` seconds
            CustomerNotFoundError: no such customer (for this owner)
            StorageError: database failure while locking or committing
        """
        async with self.locks.hold(customer_id, self.lock_timeout):
            try:
                customer = await self._lock_customer_row(db, customer_id, owner_id)
                yield customer
                await db.commit()
            except DBAPIError as exc:
                await db.rollback()
                if _is_lock_timeout(exc):
                    raise ContentionError(customer_id, self.lock_timeout) from exc
                raise StorageError(str(exc.orig)) from exc
            except SQLAlchemyError as exc:
                await db.rollback()
                raise StorageError(str(exc)) from exc
            except BaseException:
                await db.rollback()
                raise

    async def _lock_customer_row(
        self,
        db: AsyncSession,
        customer_id: str,
        owner_id: Optional[str],
    ) -> Customer:
        if db.get_bind().dialect.name == "postgresql":
            timeout_ms = max(1, int(self.lock_timeout * 1000))
            await db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))

        query = (
            select(Customer)
            .where(Customer.id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if owner_id is not None:
            query = query.where(Customer.owner_id == owner_id)

        result = await db.execute(query)
        customer = result.scalar_one_or_none()
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    # ------------------------------------------------------------------
    # Locked helpers (call only inside customer_transaction)
    # ------------------------------------------------------------------

    async def append_locked(
        self,
        db: AsyncSession,
        customer: Customer,
        kind: LedgerEntryKind,
        amount: Decimal,
        description: str,
        reference: Optional[str] = None,
        sale_id: Optional[str] = None,
        reverses_entry_id: Optional[int] = None,
        entry_date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> LedgerResult:
        """Append a signed entry and move the cached balance with it."""
        amount = Decimal(amount).quantize(CENT)
        if amount == 0:
            raise InvalidAmountError(amount)

        balance = Decimal(customer.advance_balance or 0)
        new_balance = BalanceProjector.apply(balance, amount)
        if new_balance < 0:
            raise InsufficientBalanceError(customer.id, available=balance, required=-amount)

        entry = LedgerEntry(
            owner_id=customer.owner_id,
            customer_id=customer.id,
            kind=kind,
            amount=amount,
            description=description,
            reference=reference,
            notes=notes,
            sale_id=sale_id,
            reverses_entry_id=reverses_entry_id,
            entry_date=entry_date,
        )
        await LedgerStore.append(db, entry)
        customer.advance_balance = new_balance

        return LedgerResult(entry=entry, new_balance=new_balance)

    async def add_funds_locked(
        self,
        db: AsyncSession,
        customer: Customer,
        amount: Decimal,
        description: Optional[str] = None,
        reference: Optional[str] = None,
        entry_date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> LedgerResult:
        return await self.append_locked(
            db,
            customer,
            LedgerEntryKind.FUNDS_ADDED,
            amount,
            description=description or settings.default_advance_description,
            reference=reference,
            entry_date=entry_date,
            notes=notes,
        )

    async def record_extra_payment_locked(
        self,
        db: AsyncSession,
        customer: Customer,
        amount: Decimal,
        sale_id: str,
        description: Optional[str] = None,
        reference: Optional[str] = None,
        entry_date: Optional[datetime] = None,
    ) -> LedgerResult:
        sale = await self._require_sale(db, customer, sale_id, LedgerEntryKind.EXTRA_PAYMENT)
        return await self.append_locked(
            db,
            customer,
            LedgerEntryKind.EXTRA_PAYMENT,
            amount,
            description=description or f"Extra payment on invoice {sale.invoice_no}",
            reference=reference,
            sale_id=sale.id,
            entry_date=entry_date,
        )

    async def consume_for_sale_locked(
        self,
        db: AsyncSession,
        customer: Customer,
        amount: Decimal,
        sale_id: str,
        description: Optional[str] = None,
        reference: Optional[str] = None,
        entry_date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> LedgerResult:
        sale = await self._require_sale(db, customer, sale_id, LedgerEntryKind.CONSUMED_BY_SALE)
        return await self.append_locked(
            db,
            customer,
            LedgerEntryKind.CONSUMED_BY_SALE,
            -amount,
            description=description or f"Advance used for payment - Invoice: {sale.invoice_no}",
            reference=reference or f"SALE_{sale.id}",
            sale_id=sale.id,
            entry_date=entry_date,
            notes=notes,
        )

    @staticmethod
    async def _require_sale(
        db: AsyncSession,
        customer: Customer,
        sale_id: Optional[str],
        kind: LedgerEntryKind,
    ) -> Sale:
        if not sale_id:
            raise MissingSaleReferenceError(kind.value)
        result = await db.execute(
            select(Sale).where(Sale.id == sale_id, Sale.customer_id == customer.id)
        )
        sale = result.scalar_one_or_none()
        if sale is None:
            raise SaleNotFoundError(sale_id)
        return sale

    # ------------------------------------------------------------------
    # Public mutations
    # ------------------------------------------------------------------

    async def add_funds(
        self,
        db: AsyncSession,
        customer_id: str,
        amount: Any,
        description: Optional[str] = None,
        reference: Optional[str] = None,
        *,
        owner_id: Optional[str] = None,
        entry_date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> LedgerResult:
        """Manual top-up. Appends a FundsAdded entry."""
        value = coerce_amount(amount)
        async with self.customer_transaction(db, customer_id, owner_id) as customer:
            result = await self.add_funds_locked(
                db, customer, value, description, reference, entry_date=entry_date, notes=notes
            )
        return result

    async def record_extra_payment(
        self,
        db: AsyncSession,
        customer_id: str,
        amount: Any,
        sale_id: Optional[str],
        description: Optional[str] = None,
        reference: Optional[str] = None,
        *,
        owner_id: Optional[str] = None,
        entry_date: Optional[datetime] = None,
    ) -> LedgerResult:
        """Keep a sale overpayment as advance. Appends an ExtraPayment entry."""
        value = coerce_amount(amount)
        if not sale_id:
            raise MissingSaleReferenceError(LedgerEntryKind.EXTRA_PAYMENT.value)
        async with self.customer_transaction(db, customer_id, owner_id) as customer:
            result = await self.record_extra_payment_locked(
                db, customer, value, sale_id, description, reference, entry_date=entry_date
            )
        return result

    async def consume_for_sale(
        self,
        db: AsyncSession,
        customer_id: str,
        amount: Any,
        sale_id: Optional[str],
        description: Optional[str] = None,
        reference: Optional[str] = None,
        *,
        owner_id: Optional[str] = None,
        entry_date: Optional[datetime] = None,
    ) -> LedgerResult:
        """
        Apply advance against a sale. Appends a ConsumedBySale entry of ``-amount``.

        The balance check and the append happen under the customer lock, so
        concurrent consumptions cannot overdraw the balance together.
        """
        value = coerce_amount(amount)
        if not sale_id:
            raise MissingSaleReferenceError(LedgerEntryKind.CONSUMED_BY_SALE.value)
        async with self.customer_transaction(db, customer_id, owner_id) as customer:
            result = await self.consume_for_sale_locked(
                db, customer, value, sale_id, description, reference, entry_date=entry_date
            )
        return result

    async def reverse(
        self,
        db: AsyncSession,
        entry_id: int,
        reason: Optional[str] = None,
        *,
        owner_id: Optional[str] = None,
        entry_date: Optional[datetime] = None,
    ) -> LedgerResult:
        """
        Correct an entry by appending a Reversed entry with the negated amount.

        Raises:
            EntryNotFoundError: no such entry (for this owner)
            NotReversibleError: the target is itself a reversal, or a consumption
                that settled a recorded sale payment
            AlreadyReversedError: a reversal already targets the entry
            InsufficientBalanceError: reversing a credit that has since been spent
        """
        reason = (reason or "").strip() or "Correction"
        target = await LedgerStore.get(db, entry_id, owner_id)
        if target is None:
            raise EntryNotFoundError(entry_id)
        if target.kind == LedgerEntryKind.REVERSED:
            raise NotReversibleError(entry_id)

        async with self.customer_transaction(db, target.customer_id, owner_id) as customer:
            existing = await LedgerStore.find_reversal(db, target.id)
            if existing is not None:
                raise AlreadyReversedError(target.id, existing.id)
            if target.kind == LedgerEntryKind.CONSUMED_BY_SALE and await self._settles_payment(db, target):
                raise NotReversibleError(target.id, "settled a sale payment")
            result = await self.append_locked(
                db,
                customer,
                LedgerEntryKind.REVERSED,
                -Decimal(target.amount),
                description=f"Reversal of entry #{target.id}: {reason}",
                reference=target.reference,
                sale_id=target.sale_id,
                reverses_entry_id=target.id,
                entry_date=entry_date,
                notes=reason,
            )
        return result

    async def rebuild_balance(
        self,
        db: AsyncSession,
        customer_id: str,
        owner_id: Optional[str] = None,
    ) -> Reconciliation:
        """
        Reset the cached balance to the entry sum. Entries are never touched.

        Returns the state found before the rebuild.
        """
        async with self.customer_transaction(db, customer_id, owner_id) as customer:
            computed = await BalanceProjector.recompute_balance(db, customer.id)
            before = Reconciliation(
                customer_id=customer.id,
                stored=Decimal(customer.advance_balance or 0).quantize(CENT),
                computed=computed,
            )
            if not before.consistent:
                customer.advance_balance = computed
        return before

    @staticmethod
    async def _settles_payment(db: AsyncSession, entry: LedgerEntry) -> bool:
        result = await db.execute(
            select(Payment.id).where(
                Payment.sale_id == entry.sale_id,
                Payment.reference_number == advance_payment_reference(entry.id),
            )
        )
        return result.first() is not None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def _require_customer(db: AsyncSession, customer_id: str, owner_id: Optional[str]) -> Customer:
        query = select(Customer).where(Customer.id == customer_id)
        if owner_id is not None:
            query = query.where(Customer.owner_id == owner_id)
        result = await db.execute(query)
        customer = result.scalar_one_or_none()
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    async def current_balance(self, db: AsyncSession, customer_id: str, owner_id: Optional[str] = None) -> Decimal:
        await self._require_customer(db, customer_id, owner_id)
        return await BalanceProjector.current_balance(db, customer_id)

    async def get_history(
        self,
        db: AsyncSession,
        customer_id: str,
        kind: KindFilter = None,
        owner_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        """Customer's entries, newest first, optionally narrowed to one kind."""
        await self._require_customer(db, customer_id, owner_id)
        return await LedgerStore.list_by_customer(db, customer_id, kind=kind, owner_id=owner_id)

    async def get_summary(
        self,
        db: AsyncSession,
        customer_id: str,
        owner_id: Optional[str] = None,
    ) -> LedgerSummary:
        entries = await self.get_history(db, customer_id, owner_id=owner_id)
        return LedgerSummary.from_totals(LedgerStore.sum_by_kind(entries))


ledger_service = LedgerService()
