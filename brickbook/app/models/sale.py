"""
Sale and Payment database models.

Minimal records the advance ledger links to (invoice number, dues).
"""

import uuid
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from brickbook.app.db.session import Base
from brickbook.app.models.ledger_enums import SaleStatus, PaymentMethod


class Sale(Base):
    """
    Sale model.

    ``paid_amount`` counts cash and advance applied; ``due_amount`` is what remains.
    """
    __tablename__ = "sales"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey('customers.id'), nullable=False, index=True)

    invoice_no = Column(String(64), nullable=False, unique=True)

    # Financials
    total_amount = Column(Numeric(14, 2), nullable=False)
    paid_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    due_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    status = Column(Enum(SaleStatus), default=SaleStatus.PENDING, nullable=False, index=True)

    sale_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    customer = relationship("Customer", lazy="raise")

    def __repr__(self):
        return f"<Sale(id={self.id}, invoice='{self.invoice_no}', due={self.due_amount})>"


class Payment(Base):
    """Payment received against a sale."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)
    sale_id = Column(String(36), ForeignKey('sales.id'), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey('customers.id'), nullable=False, index=True)

    amount = Column(Numeric(14, 2), nullable=False)
    method = Column(Enum(PaymentMethod), nullable=False)
    reference_number = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Payment(id={self.id}, method='{self.method.value}', amount={self.amount})>"
