"""Store Service models package."""

from services.store_service.models.catalog import Product, ProductVariation
from services.store_service.models.enums import (
    ConfigKind,
    DeliveryStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from services.store_service.models.orders import Delivery, Order, OrderItem
from services.store_service.models.settings import (
    DeliverySettings,
    PointsSettings,
    ReferralSettings,
)

__all__ = [
    "ConfigKind",
    "Delivery",
    "DeliverySettings",
    "DeliveryStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "PointsSettings",
    "Product",
    "ProductVariation",
    "ReferralSettings",
]
