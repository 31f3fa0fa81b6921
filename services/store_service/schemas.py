"""Pydantic schemas for store service."""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.store_service.models import (
    DeliveryStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)

# ============================================================================
# ORDER REQUEST SCHEMAS
# ============================================================================


class OrderItemIn(BaseModel):
    """One cart line as the client sees it. Prices here are informational."""

    product_id: uuid.UUID
    variation_id: Optional[uuid.UUID] = None
    name: Optional[str] = None
    unit: Optional[str] = None
    quantity: float = Field(..., gt=0)
    unit_price: Optional[float] = None
    total_price: Optional[float] = None


class DeliveryAddressIn(BaseModel):
    address: str = Field(..., min_length=1, max_length=500)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    phone: str = Field(..., min_length=1, max_length=50)


class OrderCreateRequest(BaseModel):
    items: list[OrderItemIn] = Field(default_factory=list)
    delivery_address: DeliveryAddressIn
    delivery_date: date
    delivery_time: str = Field(..., min_length=1, max_length=50)
    delivery_notes: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.PAYSTACK
    use_wallet: bool = False
    subtotal: Optional[float] = None  # declared by the client, only compared
    delivery_fee: float = Field(0.0, ge=0)
    wallet_deduction: float = Field(0.0, ge=0)
    final_total: Optional[float] = None
    slot_at_capacity: bool = False


# ============================================================================
# ORDER RESPONSE SCHEMAS
# ============================================================================


class OrderCreatedResponse(BaseModel):
    order_id: uuid.UUID
    status: OrderStatus
    payment_status: PaymentStatus
    final_amount: float


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    variation_id: Optional[uuid.UUID] = None
    name: str
    unit: str
    quantity: int
    unit_price: float
    total_price: float


class DeliveryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    address: str
    city: str
    state: str
    postal_code: Optional[str] = None
    phone: str
    scheduled_date: date
    scheduled_time: str
    notes: Optional[str] = None
    tracking_number: str
    status: DeliveryStatus


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    total_amount: float
    delivery_fee: float
    tax_amount: float
    discount_amount: float
    final_amount: float
    transaction_id: Optional[str] = None
    created_at: datetime
    items: list[OrderItemResponse] = []
    delivery: Optional[DeliveryResponse] = None
