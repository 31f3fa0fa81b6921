"""Starting a Paystack payment for an order.

Gateway-first flow: the cart is repriced, stored as a PendingCheckout and only
turned into an Order once ``reconcile`` sees the payment succeed. Abandoned
payments therefore never leave unpaid orders behind.

Legacy flow: an order that was already created PENDING gets a fresh gateway
reference attached. A reference it already carries is checked with Paystack
first and only replaced once the gateway reports it failed or never saw it.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

from libs.common.config import get_settings
from libs.common.currency import naira_to_kobo
from libs.common.errors import GatewayUnavailable, NotFound, ValidationError
from libs.common.logging import get_logger
from services.payments_service.models import (
    GatewayOutcome,
    PendingCheckout,
    ReconcileStatus,
)
from services.payments_service.paystack_client import (
    GatewayVerification,
    InitializedTransaction,
    PaystackError,
    generate_reference,
    get_paystack_client,
)
from services.payments_service.services.reconciliation import reconcile
from services.store_service.models import ConfigKind, Order, PaymentStatus
from services.store_service.schemas import OrderCreateRequest
from services.store_service.services.order_settlement import prepare_order
from services.store_service.services.settings_loader import load_active_config
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class CheckoutGateway(Protocol):
    async def initialize_transaction(
        self,
        *,
        amount_kobo: int,
        email: str,
        reference: str,
        callback_url: str,
        metadata: Optional[dict] = None,
    ) -> InitializedTransaction: ...

    async def verify_transaction(self, reference: str) -> GatewayVerification: ...


@dataclass
class PaymentInitialization:
    reference: str
    authorization_url: str
    access_code: str
    amount: float
    order_id: Optional[uuid.UUID] = None


def checkout_callback_url(reference: str) -> str:
    return f"{get_settings().APP_BASE_URL}/checkout?reference={reference}"


async def initialize_checkout_payment(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    email: str,
    payload: OrderCreateRequest,
    gateway: Optional[CheckoutGateway] = None,
) -> PaymentInitialization:
    """Reprice the cart, park it as a PendingCheckout, open a Paystack session.

    The PendingCheckout is deleted again if Paystack cannot be initialized.
    """
    delivery_config = await load_active_config(db, ConfigKind.DELIVERY)
    prepared = await prepare_order(db, user_id, payload, delivery_config=delivery_config)
    if prepared.final_amount <= 0:
        raise ValidationError(
            "Nothing left to pay by card; place the order with your wallet instead"
        )

    reference = generate_reference()
    checkout = PendingCheckout(
        reference=reference,
        user_id=user_id,
        payload=prepared.to_snapshot(),
        amount=prepared.final_amount,
    )
    db.add(checkout)
    await db.commit()

    gateway = gateway or get_paystack_client()
    try:
        init = await gateway.initialize_transaction(
            amount_kobo=naira_to_kobo(prepared.final_amount),
            email=email,
            reference=reference,
            callback_url=checkout_callback_url(reference),
            metadata={"type": "checkout", "user_id": str(user_id)},
        )
    except (GatewayUnavailable, PaystackError) as exc:
        logger.error("Paystack initialize failed for checkout %s: %s", reference, exc)
        await db.execute(
            delete(PendingCheckout).where(PendingCheckout.reference == reference)
        )
        await db.commit()
        raise GatewayUnavailable("Could not start the payment. Please try again.")

    logger.info(
        "Checkout %s initialized for %s (₦%.2f)",
        reference,
        user_id,
        prepared.final_amount,
    )
    return PaymentInitialization(
        reference=reference,
        authorization_url=init.authorization_url,
        access_code=init.access_code,
        amount=prepared.final_amount,
    )


async def _ensure_previous_reference_replaceable(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    user_id: uuid.UUID,
    reference: str,
    gateway: CheckoutGateway,
) -> None:
    """Refuse to drop a reference the gateway may still pay out on.

    A paid reference is settled on the spot, so the order completes instead of
    being charged twice. Paystack rejecting the lookup means the session was
    never opened there and the reference can go.
    """
    timeout = get_settings().PAYSTACK_TIMEOUT_SECONDS
    try:
        verification = await asyncio.wait_for(
            gateway.verify_transaction(reference), timeout=timeout
        )
    except PaystackError as exc:
        logger.info(
            "Previous reference %s of order %s unknown to Paystack: %s",
            reference,
            order_id,
            exc.message,
        )
        return
    except (asyncio.TimeoutError, GatewayUnavailable) as exc:
        logger.warning(
            "Could not check previous reference %s of order %s: %s",
            reference,
            order_id,
            exc,
        )
        raise GatewayUnavailable(
            "Could not confirm the previous payment for this order. Please try again."
        ) from exc

    outcome = verification.outcome
    if outcome == GatewayOutcome.FAILED:
        return
    if outcome == GatewayOutcome.PENDING:
        raise ValidationError(
            "A payment for this order is still processing; try again shortly"
        )

    logger.warning(
        "Order %s re-initialized while %s is paid at Paystack; settling it",
        order_id,
        reference,
    )
    result = await reconcile(
        db, reference, gateway=gateway, user_id=user_id, source="initialize"
    )
    if result.status == ReconcileStatus.COMPLETED:
        raise ValidationError("This order has already been paid")
    raise ValidationError(
        result.message or "A payment for this order is still being confirmed"
    )


async def initialize_order_payment(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    email: str,
    order_id: uuid.UUID,
    gateway: Optional[CheckoutGateway] = None,
) -> PaymentInitialization:
    """Attach a new gateway reference to an existing PENDING order.

    Refuses orders that are already paid or failed, and orders whose current
    reference is paid or still in flight at the gateway. The reference is
    swapped with a conditional update so a concurrent settlement or a
    concurrent re-initialization cannot be undone.
    """
    order = await db.get(Order, order_id)
    if order is None or order.user_id != user_id:
        raise NotFound("Order not found")
    if order.payment_status == PaymentStatus.COMPLETED:
        raise ValidationError("This order has already been paid")
    if order.payment_status == PaymentStatus.FAILED:
        raise ValidationError("This order was cancelled; please place a new order")
    if order.final_amount <= 0:
        raise ValidationError("This order has nothing left to pay")

    amount = order.final_amount
    previous = order.transaction_id
    gateway = gateway or get_paystack_client()
    if previous:
        await _ensure_previous_reference_replaceable(
            db,
            order_id=order_id,
            user_id=user_id,
            reference=previous,
            gateway=gateway,
        )

    same_reference = (
        Order.transaction_id == previous
        if previous
        else Order.transaction_id.is_(None)
    )
    reference = generate_reference()
    result = await db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.payment_status == PaymentStatus.PENDING,
            same_reference,
        )
        .values(transaction_id=reference)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ValidationError("This order is no longer awaiting payment")
    await db.commit()

    try:
        init = await gateway.initialize_transaction(
            amount_kobo=naira_to_kobo(amount),
            email=email,
            reference=reference,
            callback_url=checkout_callback_url(reference),
            metadata={"type": "order", "order_id": str(order_id)},
        )
    except (GatewayUnavailable, PaystackError) as exc:
        logger.error("Paystack initialize failed for order %s: %s", order_id, exc)
        await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.transaction_id == reference)
            .values(transaction_id=None)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        raise GatewayUnavailable("Could not start the payment. Please try again.")

    return PaymentInitialization(
        reference=reference,
        authorization_url=init.authorization_url,
        access_code=init.access_code,
        amount=amount,
        order_id=order_id,
    )
