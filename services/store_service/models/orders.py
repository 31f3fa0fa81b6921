"""Order aggregate: Order, its immutable item snapshots and its Delivery."""

import uuid
from datetime import date, datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.store_service.models.enums import (
    DeliveryStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    enum_values,
)
from sqlalchemy import CheckConstraint, Date, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# ORDER
# ============================================================================


class Order(Base):
    """Customer order.

    ``transaction_id`` is the gateway reference. Its unique constraint is what
    makes creating an order from a paid checkout a one-winner claim.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("members.id"), nullable=False, index=True
    )

    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="order_status_enum",
            validate_strings=True,
        ),
        default=OrderStatus.PENDING,
        nullable=False,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            values_callable=enum_values,
            name="order_payment_status_enum",
            validate_strings=True,
        ),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(
            PaymentMethod,
            values_callable=enum_values,
            name="order_payment_method_enum",
            validate_strings=True,
        ),
        default=PaymentMethod.PAYSTACK,
        nullable=False,
    )

    # Pricing (NGN). total_amount is subtotal + delivery fee before wallet use.
    total_amount: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), nullable=False
    )
    delivery_fee: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), default=0.0, nullable=False
    )
    tax_amount: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), default=0.0, nullable=False
    )
    discount_amount: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), default=0.0, nullable=False
    )
    final_amount: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), nullable=False
    )

    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )
    flagged_for_review: Mapped[bool] = mapped_column(default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("final_amount >= 0", name="ck_order_final_amount"),
        Index("ix_orders_user_payment_status", "user_id", "payment_status"),
    )

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    delivery = relationship(
        "Delivery",
        back_populates="order",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Order {self.id} {self.status.value}/{self.payment_status.value}>"


class OrderItem(Base):
    """Price snapshot of one cart line at order time. Never updated."""

    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    variation_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(50), default="item", nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), nullable=False
    )
    total_price: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), nullable=False
    )

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_item_quantity"),)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.name} x{self.quantity}>"


# ============================================================================
# DELIVERY
# ============================================================================


class Delivery(Base):
    """Delivery schedule and address snapshot for one order."""

    __tablename__ = "deliveries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    address: Mapped[str] = mapped_column(String(500), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)

    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[str] = mapped_column(String(50), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tracking_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)

    status: Mapped[DeliveryStatus] = mapped_column(
        SAEnum(
            DeliveryStatus,
            values_callable=enum_values,
            name="delivery_status_enum",
            validate_strings=True,
        ),
        default=DeliveryStatus.SCHEDULED,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    order = relationship("Order", back_populates="delivery")
