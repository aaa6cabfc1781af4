"""
Ledger Entry Store.

Append-only persistence for advance ledger entries plus the read queries
history views need. Writes happen only through LedgerService, inside its
per-customer transaction.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union

from sqlalchemy import select, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brickbook.app.models.ledger_entry import LedgerEntry, utcnow
from brickbook.app.models.ledger_enums import LedgerEntryKind
from brickbook.app.domain.ledger.errors import AlreadyReversedError, StorageError

ZERO = Decimal("0.00")

KindFilter = Optional[Union[str, LedgerEntryKind]]


@dataclass(frozen=True)
class LedgerTotals:
    """Per-kind totals over a list of entries. ``used`` is a magnitude."""
    added: Decimal = ZERO
    used: Decimal = ZERO
    extra_payments: Decimal = ZERO
    reversed: Decimal = ZERO
    net: Decimal = ZERO


def normalize_kind_filter(kind: KindFilter) -> Optional[LedgerEntryKind]:
    """``None``/``"all"`` mean no filter; anything else must name a kind."""
    if kind is None:
        return None
    if isinstance(kind, LedgerEntryKind):
        return kind
    if not str(kind).strip() or str(kind).strip().lower() == "all":
        return None
    return LedgerEntryKind.parse(kind)


class LedgerStore:

    @staticmethod
    async def append(db: AsyncSession, entry: LedgerEntry) -> LedgerEntry:
        """
        Persist a new entry and assign its id.

        Flushes only; the caller's transaction decides whether it commits.

        Raises:
            AlreadyReversedError: another reversal already targets the same entry
            StorageError: any other database failure
        """
        if entry.id is not None:
            raise StorageError(f"entry {entry.id} has already been appended")
        now = utcnow()
        if entry.created_at is None:
            entry.created_at = now
        if entry.entry_date is None:
            entry.entry_date = now

        db.add(entry)
        try:
            await db.flush()
        except IntegrityError as exc:
            if entry.reverses_entry_id is not None and "reverses_entry_id" in str(exc.orig):
                raise AlreadyReversedError(entry.reverses_entry_id) from exc
            raise StorageError(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return entry

    @staticmethod
    async def get(
        db: AsyncSession,
        entry_id: int,
        owner_id: Optional[str] = None,
    ) -> Optional[LedgerEntry]:
        query = select(LedgerEntry).where(LedgerEntry.id == entry_id)
        if owner_id is not None:
            query = query.where(LedgerEntry.owner_id == owner_id)
        result = await db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    @staticmethod
    async def find_reversal(db: AsyncSession, entry_id: int) -> Optional[LedgerEntry]:
        """Return the Reversed entry that targets ``entry_id``, if any."""
        result = await db.execute(
            select(LedgerEntry).where(LedgerEntry.reverses_entry_id == entry_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_by_customer(
        db: AsyncSession,
        customer_id: str,
        kind: KindFilter = None,
        owner_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        """
        Entries for one customer, newest first.

        Ties on ``created_at`` are broken by insertion order (id).
        """
        query = select(LedgerEntry).where(LedgerEntry.customer_id == customer_id)
        if owner_id is not None:
            query = query.where(LedgerEntry.owner_id == owner_id)
        kind = normalize_kind_filter(kind)
        if kind is not None:
            query = query.where(LedgerEntry.kind == kind)
        query = query.order_by(desc(LedgerEntry.created_at), desc(LedgerEntry.id))

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def list_by_owner(
        db: AsyncSession,
        owner_id: str,
        customer_id: Optional[str] = None,
        kind: KindFilter = None,
    ) -> list[LedgerEntry]:
        """Whole-ledger feed for a business owner, newest first."""
        query = select(LedgerEntry).where(LedgerEntry.owner_id == owner_id)
        if customer_id:
            query = query.where(LedgerEntry.customer_id == customer_id)
        kind = normalize_kind_filter(kind)
        if kind is not None:
            query = query.where(LedgerEntry.kind == kind)
        query = query.order_by(desc(LedgerEntry.created_at), desc(LedgerEntry.id))

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    def sum_by_kind(entries: Iterable[LedgerEntry]) -> LedgerTotals:
        """
        Aggregate signed amounts per kind.

        A Reversed entry is netted against the bucket of the entry it corrects
        when that entry is part of ``entries``; otherwise its magnitude is
        reported under ``reversed``. ``net`` is always the plain signed sum.
        """
        entries: Sequence[LedgerEntry] = list(entries)
        by_id = {entry.id: entry for entry in entries}

        added = used = extra = reversed_total = net = ZERO
        for entry in entries:
            amount = Decimal(entry.amount)
            net += amount
            kind = entry.kind
            if kind == LedgerEntryKind.REVERSED:
                target = by_id.get(entry.reverses_entry_id)
                if target is None:
                    reversed_total += abs(amount)
                    continue
                kind = target.kind

            if kind == LedgerEntryKind.FUNDS_ADDED:
                added += amount
            elif kind == LedgerEntryKind.EXTRA_PAYMENT:
                extra += amount
            elif kind == LedgerEntryKind.CONSUMED_BY_SALE:
                used -= amount

        return LedgerTotals(
            added=added,
            used=used,
            extra_payments=extra,
            reversed=reversed_total,
            net=net,
        )
