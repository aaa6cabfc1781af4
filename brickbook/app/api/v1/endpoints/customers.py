"""
Customer API Endpoints.

Just enough customer management for the advance ledger: create and fetch.
"""

import logging
from fastapi import APIRouter, Depends, Path, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from brickbook.app.db.session import get_db
from brickbook.app.core.dependencies import get_current_user
from brickbook.app.models.customer import Customer
from brickbook.app.domain.ledger.errors import CustomerNotFoundError
from brickbook.app.schemas.customer import CustomerCreate, CustomerResponse
from brickbook.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/customers", tags=["Customers"])

logger = logging.getLogger("brickbook.api.customers")


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_data: CustomerCreate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a customer owned by the authenticated user.

    New customers start with a zero advance balance and no ledger entries.
    """
    customer = Customer(
        owner_id=current_user["user_id"],
        name=customer_data.name.strip(),
        phone=customer_data.phone,
        email=customer_data.email,
    )
    db.add(customer)
    await db.commit()
    await db.refresh(customer)

    await log_event(
        db=db,
        action=AuditAction.CUSTOMER_CREATED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        customer_id=customer.id,
        metadata={"name": customer.name},
        ip_address=request.client.host if request.client else None,
    )
    logger.info("Customer %s created", customer.id)

    return CustomerResponse.from_customer(customer)


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: str = Path(..., description="Customer ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(Customer).where(
            Customer.id == customer_id,
            Customer.owner_id == current_user["user_id"],
        )
    )
    customer = result.scalar_one_or_none()
    if customer is None:
        raise CustomerNotFoundError(customer_id)
    return CustomerResponse.from_customer(customer)
