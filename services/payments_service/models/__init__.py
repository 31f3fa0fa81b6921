"""Payments Service models package."""

from services.payments_service.models.checkout import PendingCheckout
from services.payments_service.models.enums import (
    CheckoutStatus,
    GatewayOutcome,
    ReconcileStatus,
)

__all__ = [
    "CheckoutStatus",
    "GatewayOutcome",
    "PendingCheckout",
    "ReconcileStatus",
]
