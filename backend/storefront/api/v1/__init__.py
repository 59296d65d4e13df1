"""
Version 1 API routers.
"""

from fastapi import APIRouter

from storefront.api.v1.notifications import router as notifications_router
from storefront.api.v1.orders import router as orders_router
from storefront.api.v1.refunds import router as refunds_router
from storefront.api.v1.vouchers import router as vouchers_router

api_router = APIRouter()
api_router.include_router(orders_router)
api_router.include_router(refunds_router)
api_router.include_router(vouchers_router)
api_router.include_router(notifications_router)

__all__ = ["api_router"]
