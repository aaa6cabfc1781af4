"""
Customer Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

from brickbook.app.models.customer import Customer


class CustomerCreate(BaseModel):
    """Schema for creating a customer. New customers start with no advance."""
    name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=32)
    email: Optional[str] = Field(None, max_length=255)


class CustomerResponse(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    advanceBalance: float
    dueAmount: float
    lastPurchaseDate: Optional[datetime] = None
    createdAt: Optional[datetime] = None

    @classmethod
    def from_customer(cls, customer: Customer) -> "CustomerResponse":
        return cls(
            id=customer.id,
            name=customer.name,
            phone=customer.phone,
            email=customer.email,
            advanceBalance=float(customer.advance_balance or 0),
            dueAmount=float(customer.due_amount or 0),
            lastPurchaseDate=customer.last_purchase_date,
            createdAt=customer.created_at,
        )
