"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from brickbook.app.api.v1.endpoints import advance, customers, dues, sales

router = APIRouter()

# Customers and sales the ledger links to
router.include_router(customers.router)
router.include_router(sales.router)

# Advance ledger
router.include_router(advance.router)
router.include_router(dues.router)
