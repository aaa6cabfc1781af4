"""
Customer database model.

Only the fields the advance ledger and sale flows need.
"""

import uuid
from decimal import Decimal
from sqlalchemy import Column, String, Numeric, DateTime
from sqlalchemy.sql import func
from brickbook.app.db.session import Base


class Customer(Base):
    """
    Customer model.

    ``advance_balance`` is a cache of the sum of the customer's ledger entries.
    It is written only by the ledger service, in the same transaction as the
    entry it reflects.
    """
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Business owner (the authenticated user)
    owner_id = Column(String(64), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True)

    # Financials
    advance_balance = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    due_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    last_purchase_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Customer(id={self.id}, name='{self.name}', advance={self.advance_balance})>"
