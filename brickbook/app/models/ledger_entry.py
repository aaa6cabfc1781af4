"""
Advance Ledger Entry database model.

Immutable, append-only records of every change to a customer's advance balance.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, Text, event, inspect
from sqlalchemy.orm import relationship
from brickbook.app.db.session import Base
from brickbook.app.models.ledger_enums import LedgerEntryKind
from brickbook.app.domain.ledger.errors import ImmutableEntryError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Sign convention: FundsAdded and ExtraPayment are positive, ConsumedBySale is
    negative and a Reversed entry carries the negated amount of the entry named
    by ``reverses_entry_id``. The UNIQUE constraint on that column allows at
    most one reversal per entry.
    NO updates or deletions allowed.
    """
    __tablename__ = "advance_ledger_entries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership
    owner_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey('customers.id'), nullable=False, index=True)

    # Entry details
    kind = Column(Enum(LedgerEntryKind), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(String(255), nullable=False)
    reference = Column(String(128), nullable=True)
    notes = Column(Text, nullable=True)

    # Linkage
    sale_id = Column(String(36), ForeignKey('sales.id'), nullable=True, index=True)
    reverses_entry_id = Column(Integer, ForeignKey('advance_ledger_entries.id'), nullable=True, unique=True)

    # Business date chosen by the caller; created_at is the insertion time
    entry_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    customer = relationship("Customer", lazy="selectin")
    sale = relationship("Sale", lazy="selectin")

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, kind='{self.kind.value}', amount={self.amount})>"


@event.listens_for(LedgerEntry, "before_update")
def _reject_update(mapper, connection, target):
    state = inspect(target)
    changed = [
        attr.key for attr in mapper.column_attrs
        if state.attrs[attr.key].history.has_changes()
    ]
    if changed:
        raise ImmutableEntryError(target.id, "update", changed)


@event.listens_for(LedgerEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ImmutableEntryError(target.id, "delete")
