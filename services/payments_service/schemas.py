"""Pydantic schemas for the payments service."""

import uuid
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from services.payments_service.models import ReconcileStatus
from services.store_service.schemas import OrderCreateRequest


class InitializePaymentRequest(BaseModel):
    """Either a cart (gateway-first checkout) or an existing order id."""

    order: Optional[OrderCreateRequest] = None
    order_id: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def exactly_one_target(self) -> "InitializePaymentRequest":
        if (self.order is None) == (self.order_id is None):
            raise ValueError("Provide either 'order' or 'order_id'")
        return self


class InitializePaymentResponse(BaseModel):
    reference: str
    authorization_url: str
    access_code: str
    amount: float
    order_id: Optional[uuid.UUID] = None


class VerifyPaymentRequest(BaseModel):
    reference: str = Field(..., min_length=1, max_length=100)


class ReconcileResponse(BaseModel):
    reference: str
    status: ReconcileStatus
    kind: Optional[str] = None
    order_id: Optional[uuid.UUID] = None
    amount: Optional[float] = None
    gateway_status: Optional[str] = None
    already_settled: bool = False
    message: Optional[str] = None
