"""Store orders router: order placement and order lookup."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from libs.auth.dependencies import require_member
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.store_service.models import Order
from services.store_service.schemas import (
    OrderCreatedResponse,
    OrderCreateRequest,
    OrderResponse,
)
from services.store_service.services.order_settlement import create_order
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store"])


@router.post(
    "/orders",
    response_model=OrderCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def place_order(
    payload: OrderCreateRequest,
    current_user: AuthUser = Depends(require_member),
    db: AsyncSession = Depends(get_async_db),
):
    """Place an order.

    Orders fully covered by the wallet are confirmed immediately; the rest
    stay pending until their Paystack payment is reconciled.
    """
    order_id = await create_order(db, current_user.member_id, payload)
    order = await db.get(Order, order_id)
    return OrderCreatedResponse(
        order_id=order.id,
        status=order.status,
        payment_status=order.payment_status,
        final_amount=order.final_amount,
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_member),
    db: AsyncSession = Depends(get_async_db),
):
    """Get one of the current member's orders."""
    order = await db.get(Order, order_id)
    if order is None or (
        order.user_id != current_user.member_id and not current_user.is_admin
    ):
        raise HTTPException(status_code=404, detail="Order not found")
    return order
