"""Store service routers package."""

from services.store_service.routers.orders import router as orders_router

__all__ = [
    "orders_router",
]
