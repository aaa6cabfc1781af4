"""
Audit logging service for tracking balance mutations.

Provides centralized logging for bookkeeping review.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from brickbook.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    CUSTOMER_CREATED = "CUSTOMER_CREATED"
    SALE_CREATED = "SALE_CREATED"

    # Advance ledger
    ADVANCE_ADDED = "ADVANCE_ADDED"
    ADVANCE_EXTRA_PAYMENT = "ADVANCE_EXTRA_PAYMENT"
    ADVANCE_CONSUMED = "ADVANCE_CONSUMED"
    ADVANCE_ENTRY_REVERSED = "ADVANCE_ENTRY_REVERSED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[str] = None,
    actor_username: Optional[str] = None,
    customer_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Log a business event to the audit log.

    Runs in its own commit, after the mutation it describes has been committed.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action
        actor_username: Username of actor
        customer_id: Customer the action concerned (if applicable)
        metadata: Additional context as JSON
        ip_address: IP address of the request

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        customer_id=customer_id,
        meta_data=metadata,
        ip_address=ip_address
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    customer_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Args:
        db: Database session
        customer_id: Filter by customer ID
        action: Filter by action type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if customer_id:
        query = query.where(AuditLog.customer_id == customer_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
