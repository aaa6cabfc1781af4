"""
Balance Projector.

Customer.advance_balance is a cache of the sum of that customer's ledger
entries, updated in the same transaction as every append. The recompute path
sums the entries directly and is the reference the cache is audited against.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from brickbook.app.models.customer import Customer
from brickbook.app.models.ledger_entry import LedgerEntry
from brickbook.app.domain.ledger.errors import CustomerNotFoundError

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class Reconciliation:
    customer_id: str
    stored: Decimal
    computed: Decimal

    @property
    def drift(self) -> Decimal:
        return self.stored - self.computed

    @property
    def consistent(self) -> bool:
        return self.drift == ZERO


class BalanceProjector:

    @staticmethod
    async def current_balance(db: AsyncSession, customer_id: str) -> Decimal:
        """Fast read of the cached balance."""
        result = await db.execute(
            select(Customer.advance_balance).where(Customer.id == customer_id)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise CustomerNotFoundError(customer_id)
        return Decimal(balance)

    @staticmethod
    async def recompute_balance(db: AsyncSession, customer_id: str) -> Decimal:
        """Sum every entry for the customer. O(entries), always authoritative."""
        result = await db.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                LedgerEntry.customer_id == customer_id
            )
        )
        return Decimal(result.scalar_one()).quantize(Decimal("0.01"))

    @staticmethod
    def apply(balance: Decimal, amount: Decimal) -> Decimal:
        """Balance after appending an entry of ``amount``."""
        return (Decimal(balance) + Decimal(amount)).quantize(Decimal("0.01"))

    @classmethod
    async def reconcile(cls, db: AsyncSession, customer_id: str) -> Reconciliation:
        stored = await cls.current_balance(db, customer_id)
        computed = await cls.recompute_balance(db, customer_id)
        return Reconciliation(customer_id=customer_id, stored=stored, computed=computed)

    @staticmethod
    async def reconcile_all(db: AsyncSession, owner_id: Optional[str] = None) -> list[Reconciliation]:
        """Compare cache and entry sum for every customer (of one owner, if given)."""
        sums = (
            select(
                LedgerEntry.customer_id.label("customer_id"),
                func.sum(LedgerEntry.amount).label("total"),
            )
            .group_by(LedgerEntry.customer_id)
            .subquery()
        )
        query = (
            select(Customer.id, Customer.advance_balance, sums.c.total)
            .outerjoin(sums, sums.c.customer_id == Customer.id)
            .order_by(Customer.created_at, Customer.id)
        )
        if owner_id is not None:
            query = query.where(Customer.owner_id == owner_id)

        result = await db.execute(query)
        rows = []
        for customer_id, stored, total in result.all():
            rows.append(
                Reconciliation(
                    customer_id=customer_id,
                    stored=Decimal(stored or 0).quantize(Decimal("0.01")),
                    computed=Decimal(total or 0).quantize(Decimal("0.01")),
                )
            )
        return rows

