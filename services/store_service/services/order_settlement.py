"""Order settlement: turn a cart into a durable, server-priced order.

Two phases:

- ``prepare_order`` validates the request and reprices every line from the
  catalog. It performs no writes and raises ``ValidationError``,
  ``StockError`` or ``InsufficientFunds``.
- ``settle_prepared_order`` writes the order aggregate, the optional wallet
  debit and the loyalty points through a settlement strategy, then
  dispatches notifications and emails once that unit has committed.

A ``PreparedOrder`` round-trips through ``to_snapshot`` / ``from_snapshot`` so
the gateway-first checkout can store it on a PendingCheckout and settle it
later without repricing.
"""

import random
import string
import time
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from libs.common.config import get_settings
from libs.common.currency import format_naira, round_currency
from libs.common.emails.orders import (
    OrderEmailData,
    send_admin_order_notification,
    send_order_confirmation_email,
)
from libs.common.errors import NotFound, StockError, ValidationError
from libs.common.logging import get_logger
from libs.common.side_effects import PostCommitQueue
from libs.db.settlement import (
    SettlementStep,
    SettlementStrategy,
    get_settlement_strategy,
)
from services.communications_service.models import NotificationType
from services.communications_service.services.notifications import notify
from services.members_service.models import Member
from services.store_service.models import (
    ConfigKind,
    Delivery,
    DeliveryStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    ProductVariation,
)
from services.store_service.schemas import OrderCreateRequest
from services.store_service.services.points import points_from_amount
from services.store_service.services.settings_loader import (
    DeliveryConfig,
    PointsConfig,
    ReferralConfig,
    load_active_config,
)
from services.wallet_service.models import RewardType, TransactionMethod
from services.wallet_service.services.referral_bonus import (
    award_first_purchase_bonus,
)
from services.wallet_service.services.referrals import (
    award_referrer_purchase_points,
)
from services.wallet_service.services.rewards_service import award_points
from services.wallet_service.services.wallet_ops import (
    credit_wallet,
    debit_wallet,
    ensure_sufficient_balance,
    order_wallet_reference,
)
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


# ============================================================================
# PREPARED ORDER
# ============================================================================


@dataclass
class PreparedLine:
    product_id: uuid.UUID
    variation_id: Optional[uuid.UUID]
    name: str
    unit: str
    quantity: int
    unit_price: float
    total_price: float


@dataclass
class PreparedOrder:
    """Server-priced order, ready to be written."""

    user_id: uuid.UUID
    lines: list[PreparedLine]
    address: dict[str, Optional[str]]
    delivery_date: date
    delivery_time: str
    delivery_notes: Optional[str]
    payment_method: PaymentMethod
    use_wallet: bool
    subtotal: float
    delivery_fee: float
    wallet_deduction: float
    final_amount: float
    slot_at_capacity: bool = False

    @property
    def total_amount(self) -> float:
        """Pre-discount total: subtotal + delivery fee."""
        return round_currency(self.subtotal + self.delivery_fee)

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-safe form stored on a PendingCheckout."""
        return {
            "items": [
                {
                    "product_id": str(line.product_id),
                    "variation_id": str(line.variation_id)
                    if line.variation_id
                    else None,
                    "name": line.name,
                    "unit": line.unit,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                    "total_price": line.total_price,
                }
                for line in self.lines
            ],
            "delivery_address": dict(self.address),
            "delivery_date": self.delivery_date.isoformat(),
            "delivery_time": self.delivery_time,
            "delivery_notes": self.delivery_notes,
            "payment_method": self.payment_method.value,
            "use_wallet": self.use_wallet,
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "wallet_deduction": self.wallet_deduction,
            "final_amount": self.final_amount,
            "slot_at_capacity": self.slot_at_capacity,
        }

    @classmethod
    def from_snapshot(cls, user_id: uuid.UUID, snapshot: dict[str, Any]) -> "PreparedOrder":
        return cls(
            user_id=user_id,
            lines=[
                PreparedLine(
                    product_id=uuid.UUID(item["product_id"]),
                    variation_id=uuid.UUID(item["variation_id"])
                    if item.get("variation_id")
                    else None,
                    name=item["name"],
                    unit=item.get("unit") or "item",
                    quantity=int(item["quantity"]),
                    unit_price=round_currency(item["unit_price"]),
                    total_price=round_currency(item["total_price"]),
                )
                for item in snapshot["items"]
            ],
            address=dict(snapshot["delivery_address"]),
            delivery_date=date.fromisoformat(snapshot["delivery_date"]),
            delivery_time=snapshot["delivery_time"],
            delivery_notes=snapshot.get("delivery_notes"),
            payment_method=PaymentMethod(snapshot.get("payment_method", "paystack")),
            use_wallet=bool(snapshot.get("use_wallet")),
            subtotal=round_currency(snapshot["subtotal"]),
            delivery_fee=round_currency(snapshot["delivery_fee"]),
            wallet_deduction=round_currency(snapshot.get("wallet_deduction") or 0),
            final_amount=round_currency(snapshot["final_amount"]),
            slot_at_capacity=bool(snapshot.get("slot_at_capacity")),
        )


@dataclass
class OrderSettlement:
    order_id: uuid.UUID
    final_amount: float
    points_earned: int
    payment_status: PaymentStatus


# ============================================================================
# VALIDATION + REPRICING
# ============================================================================


def _validate_address(payload: OrderCreateRequest) -> dict[str, Optional[str]]:
    address = payload.delivery_address
    if address is None or not address.address.strip() or not address.city.strip():
        raise ValidationError("A delivery address is required")
    if not address.phone.strip():
        raise ValidationError("A delivery phone number is required")
    delivery_state = get_settings().DELIVERY_STATE
    if address.state.strip().lower() != delivery_state.lower():
        raise ValidationError(
            f"Delivery is only available in {delivery_state}. "
            f"Please use a {delivery_state} address."
        )
    return {
        "address": address.address.strip(),
        "city": address.city.strip(),
        "state": delivery_state,
        "postal_code": address.postal_code,
        "phone": address.phone.strip(),
    }


async def prepare_order(
    db: AsyncSession,
    user_id: uuid.UUID,
    payload: OrderCreateRequest,
    *,
    delivery_config: Optional[DeliveryConfig] = None,
) -> PreparedOrder:
    """Validate a cart and reprice it from the catalog. Performs no writes.

    Client prices and stock are never trusted. The declared subtotal is only
    compared with the server subtotal and logged when they drift apart.
    """
    if not payload.items:
        raise ValidationError("Your cart is empty")
    address = _validate_address(payload)

    product_ids = {item.product_id for item in payload.items}
    variation_ids = {item.variation_id for item in payload.items if item.variation_id}

    products = {
        p.id: p
        for p in (
            await db.execute(select(Product).where(Product.id.in_(product_ids)))
        ).scalars()
    }
    variations = {}
    if variation_ids:
        variations = {
            v.id: v
            for v in (
                await db.execute(
                    select(ProductVariation).where(
                        ProductVariation.id.in_(variation_ids)
                    )
                )
            ).scalars()
        }

    lines: list[PreparedLine] = []
    for item in payload.items:
        product = products.get(item.product_id)
        if product is None:
            raise ValidationError(f"Product {item.product_id} no longer exists")

        variation = None
        if item.variation_id:
            variation = variations.get(item.variation_id)
            if variation is None or variation.product_id != product.id:
                raise ValidationError(
                    f"Selected option for {product.name} no longer exists"
                )

        name = product.name if variation is None else f"{product.name} ({variation.name})"
        price = variation.price if variation is not None else product.price
        stock = variation.stock if variation is not None else product.stock
        available = product.is_available and (
            variation is None or variation.is_available
        )
        quantity = max(1, int(item.quantity))

        if not available:
            raise StockError(f"{name} is currently unavailable")
        if stock < quantity:
            raise StockError(
                f"Insufficient stock for {name}. Only {stock} left, "
                f"you requested {quantity}."
            )

        unit_price = round_currency(price)
        lines.append(
            PreparedLine(
                product_id=product.id,
                variation_id=variation.id if variation is not None else None,
                name=name,
                unit=(variation.unit if variation is not None and variation.unit else product.unit),
                quantity=quantity,
                unit_price=unit_price,
                total_price=round_currency(unit_price * quantity),
            )
        )

    subtotal = round_currency(sum(line.total_price for line in lines))
    settings = get_settings()
    if (
        payload.subtotal is not None
        and abs(subtotal - round_currency(payload.subtotal))
        > settings.SUBTOTAL_DRIFT_TOLERANCE
    ):
        logger.warning(
            "Subtotal drift for user %s: declared=%.2f server=%.2f",
            user_id,
            payload.subtotal,
            subtotal,
        )

    delivery_config = delivery_config or DeliveryConfig()
    total_quantity = sum(line.quantity for line in lines)
    if total_quantity < delivery_config.minimum_order_quantity:
        raise ValidationError(
            f"Minimum order quantity is {delivery_config.minimum_order_quantity} items"
        )
    if subtotal < delivery_config.minimum_order_amount:
        raise ValidationError(
            f"Minimum order amount is {format_naira(delivery_config.minimum_order_amount)}"
        )

    delivery_fee = round_currency(payload.delivery_fee)
    total_amount = round_currency(subtotal + delivery_fee)

    wallet_deduction = 0.0
    if payload.use_wallet and payload.wallet_deduction > 0:
        wallet_deduction = min(round_currency(payload.wallet_deduction), total_amount)
        await ensure_sufficient_balance(db, user_id, wallet_deduction)

    final_amount = max(0.0, round_currency(total_amount - wallet_deduction))
    payment_method = payload.payment_method
    if final_amount == 0 and wallet_deduction > 0:
        payment_method = PaymentMethod.WALLET

    return PreparedOrder(
        user_id=user_id,
        lines=lines,
        address=address,
        delivery_date=payload.delivery_date,
        delivery_time=payload.delivery_time,
        delivery_notes=payload.delivery_notes,
        payment_method=payment_method,
        use_wallet=wallet_deduction > 0,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        wallet_deduction=wallet_deduction,
        final_amount=final_amount,
        slot_at_capacity=payload.slot_at_capacity,
    )


# ============================================================================
# SETTLEMENT
# ============================================================================


def _tracking_number() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"DEL{int(time.time() * 1000)}{suffix}"


def _build_order(
    prepared: PreparedOrder,
    *,
    order_id: uuid.UUID,
    set_confirmed: bool,
    transaction_id: Optional[str],
) -> Order:
    order = Order(
        id=order_id,
        user_id=prepared.user_id,
        status=OrderStatus.CONFIRMED if set_confirmed else OrderStatus.PENDING,
        payment_status=PaymentStatus.COMPLETED
        if set_confirmed
        else PaymentStatus.PENDING,
        payment_method=prepared.payment_method,
        total_amount=prepared.total_amount,
        delivery_fee=prepared.delivery_fee,
        tax_amount=0.0,
        discount_amount=prepared.wallet_deduction,
        final_amount=prepared.final_amount,
        transaction_id=transaction_id,
    )
    order.items = [
        OrderItem(
            product_id=line.product_id,
            variation_id=line.variation_id,
            name=line.name,
            unit=line.unit,
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=line.total_price,
        )
        for line in prepared.lines
    ]
    order.delivery = Delivery(
        user_id=prepared.user_id,
        address=prepared.address["address"],
        city=prepared.address["city"],
        state=prepared.address["state"],
        postal_code=prepared.address.get("postal_code"),
        phone=prepared.address["phone"],
        scheduled_date=prepared.delivery_date,
        scheduled_time=prepared.delivery_time,
        notes=prepared.delivery_notes,
        tracking_number=_tracking_number(),
        status=DeliveryStatus.SCHEDULED,
    )
    return order


async def delete_order_aggregate(db: AsyncSession, order_id: uuid.UUID) -> None:
    """Remove an order with its items and delivery (fallback compensation)."""
    await db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
    await db.execute(delete(Delivery).where(Delivery.order_id == order_id))
    await db.execute(delete(Order).where(Order.id == order_id))


def build_order_steps(
    prepared: PreparedOrder,
    *,
    order_id: uuid.UUID,
    set_confirmed: bool,
    transaction_id: Optional[str],
    points_config: Optional[PointsConfig],
    referral_config: Optional[ReferralConfig],
    referred_by_id: Optional[uuid.UUID],
) -> tuple[list[SettlementStep], int]:
    """Settlement steps for one order, in write order.

    Returns the steps and the points the buyer will earn.
    """
    points_earned = points_from_amount(prepared.total_amount, points_config)
    wallet_reference = order_wallet_reference(order_id)

    async def _write_order(session: AsyncSession) -> Order:
        order = _build_order(
            prepared,
            order_id=order_id,
            set_confirmed=set_confirmed,
            transaction_id=transaction_id,
        )
        session.add(order)
        await session.flush()
        return order

    async def _remove_order(session: AsyncSession) -> None:
        await delete_order_aggregate(session, order_id)

    steps = [SettlementStep("write_order", _write_order, compensate=_remove_order)]

    if prepared.use_wallet and prepared.wallet_deduction > 0:

        async def _debit(session: AsyncSession):
            return await debit_wallet(
                session,
                user_id=prepared.user_id,
                amount=prepared.wallet_deduction,
                reference=wallet_reference,
                method=TransactionMethod.WALLET.value,
                description=f"Payment for order #{order_id}",
                order_id=order_id,
            )

        async def _refund(session: AsyncSession) -> None:
            await credit_wallet(
                session,
                user_id=prepared.user_id,
                amount=prepared.wallet_deduction,
                reference=f"{wallet_reference}-reversal",
                method=TransactionMethod.WALLET.value,
                description=f"Reversal of wallet payment for order #{order_id}",
                order_id=order_id,
            )

        steps.append(SettlementStep("wallet_debit", _debit, compensate=_refund))

    if points_earned > 0:

        async def _points(session: AsyncSession):
            return await award_points(
                session,
                user_id=prepared.user_id,
                points=points_earned,
                description=f"Points earned from order #{order_id}",
                reward_type=RewardType.PURCHASE,
                order_id=order_id,
            )

        steps.append(SettlementStep("award_points", _points))

    if set_confirmed and referred_by_id is not None:

        async def _referrer_points(session: AsyncSession):
            return await award_referrer_purchase_points(
                session,
                referrer_id=referred_by_id,
                order_id=order_id,
                config=referral_config,
            )

        steps.append(SettlementStep("referrer_purchase_points", _referrer_points))

    return steps, points_earned


def queue_order_side_effects(
    side_effects: PostCommitQueue,
    db: AsyncSession,
    prepared: PreparedOrder,
    *,
    order_id: uuid.UUID,
    member: Member,
    paid: bool,
    skip_emails: bool,
) -> None:
    """Notifications and emails for a newly written order."""
    delivery_day = prepared.delivery_date.strftime("%d %b %Y")
    side_effects.add(
        "order_placed_notification",
        notify,
        db,
        prepared.user_id,
        "Order Placed Successfully",
        f"Your order #{order_id} has been placed and will be delivered on "
        f"{delivery_day} between {prepared.delivery_time}",
        NotificationType.ORDER_UPDATE,
        order_id,
    )
    if prepared.slot_at_capacity:
        side_effects.add(
            "slot_at_capacity_notification",
            notify,
            db,
            prepared.user_id,
            "Delivery moved to next day",
            "The number of deliveries for your chosen day was exceeded. Your "
            "order has been received and will be delivered the next available "
            "day. We'll notify you when it's scheduled.",
            NotificationType.DELIVERY,
            order_id,
        )
    if not skip_emails:
        email_data = OrderEmailData(
            order_id=str(order_id),
            customer_name=member.name or "Valued Customer",
            customer_email=member.email or "",
            items=[
                {
                    "name": line.name,
                    "quantity": line.quantity,
                    "price": line.unit_price,
                    "unit": line.unit,
                }
                for line in prepared.lines
            ],
            total=prepared.final_amount,
            delivery_address=", ".join(
                [
                    prepared.address["address"],
                    prepared.address["city"],
                    prepared.address["state"],
                ]
            ),
            delivery_date=delivery_day,
            delivery_time=prepared.delivery_time,
            slot_at_capacity=prepared.slot_at_capacity,
        )
        side_effects.add("order_confirmation_email", send_order_confirmation_email, email_data)
        side_effects.add("admin_order_email", send_admin_order_notification, email_data)
    if paid:
        side_effects.add(
            "first_purchase_bonus", award_first_purchase_bonus, db, order_id
        )


async def settle_prepared_order(
    db: AsyncSession,
    prepared: PreparedOrder,
    *,
    set_confirmed: bool = False,
    transaction_id: Optional[str] = None,
    skip_emails: bool = False,
    strategy: Optional[SettlementStrategy] = None,
    side_effects: Optional[PostCommitQueue] = None,
    extra_steps: Optional[list[SettlementStep]] = None,
) -> OrderSettlement:
    """Write a prepared order through the settlement strategy.

    ``extra_steps`` run after the order steps inside the same unit (the
    gateway-first checkout uses this to delete its PendingCheckout). When
    ``side_effects`` is given the caller dispatches it; otherwise it is
    dispatched here after commit.
    """
    member = await db.get(Member, prepared.user_id)
    if member is None:
        raise NotFound("Member not found")

    points_config = await load_active_config(db, ConfigKind.POINTS)
    referral_config = None
    if set_confirmed and member.referred_by_id is not None:
        referral_config = await load_active_config(db, ConfigKind.REFERRAL)

    order_id = uuid.uuid4()
    steps, points_earned = build_order_steps(
        prepared,
        order_id=order_id,
        set_confirmed=set_confirmed,
        transaction_id=transaction_id,
        points_config=points_config,
        referral_config=referral_config,
        referred_by_id=member.referred_by_id,
    )
    steps.extend(extra_steps or [])

    strategy = strategy or get_settlement_strategy()
    await strategy.run(db, steps)
    logger.info(
        "Order %s written for %s (final=₦%.2f, wallet=₦%.2f, points=%d, paid=%s)",
        order_id,
        prepared.user_id,
        prepared.final_amount,
        prepared.wallet_deduction,
        points_earned,
        set_confirmed,
    )

    queue = side_effects if side_effects is not None else PostCommitQueue()
    queue_order_side_effects(
        queue,
        db,
        prepared,
        order_id=order_id,
        member=member,
        paid=set_confirmed,
        skip_emails=skip_emails,
    )
    if side_effects is None:
        await queue.dispatch()

    return OrderSettlement(
        order_id=order_id,
        final_amount=prepared.final_amount,
        points_earned=points_earned,
        payment_status=PaymentStatus.COMPLETED
        if set_confirmed
        else PaymentStatus.PENDING,
    )


async def create_order(
    db: AsyncSession,
    user_id: uuid.UUID,
    payload: OrderCreateRequest,
    *,
    set_confirmed: bool = False,
    transaction_id: Optional[str] = None,
    skip_emails: bool = False,
    strategy: Optional[SettlementStrategy] = None,
) -> uuid.UUID:
    """Validate, reprice and settle an order. Returns the new order id.

    Orders fully covered by the wallet are settled immediately
    (CONFIRMED / COMPLETED); every other order stays PENDING until the
    gateway confirms it.
    """
    delivery_config = await load_active_config(db, ConfigKind.DELIVERY)
    prepared = await prepare_order(
        db, user_id, payload, delivery_config=delivery_config
    )
    if prepared.final_amount == 0 and prepared.wallet_deduction > 0:
        set_confirmed = True

    settlement = await settle_prepared_order(
        db,
        prepared,
        set_confirmed=set_confirmed,
        transaction_id=transaction_id,
        skip_emails=skip_emails,
        strategy=strategy,
    )
    return settlement.order_id
