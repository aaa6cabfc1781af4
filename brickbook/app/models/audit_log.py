"""
Audit Log Database Model.

Tracks advance-balance mutations and customer/sale creation for bookkeeping review.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from brickbook.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking business events.

    Events logged:
    - ADVANCE_ADDED / ADVANCE_EXTRA_PAYMENT / ADVANCE_CONSUMED
    - ADVANCE_ENTRY_REVERSED
    - CUSTOMER_CREATED / SALE_CREATED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action
    actor_id = Column(String(64), index=True, nullable=True)
    actor_username = Column(String(255), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Customer the action concerned
    customer_id = Column(String(36), index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, customer={self.customer_id})>"
