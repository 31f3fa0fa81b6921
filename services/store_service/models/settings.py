"""Admin-tunable configuration rows. The most recent row of each kind wins."""

import uuid
from datetime import datetime

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import Boolean, DateTime, Integer, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class PointsSettings(Base):
    __tablename__ = "points_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    amount_threshold: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), default=50000.0, nullable=False
    )
    points_per_threshold: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    naira_per_point: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), default=10.0, nullable=False
    )
    minimum_points_to_convert: Mapped[int] = mapped_column(
        Integer, default=100, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class ReferralSettings(Base):
    __tablename__ = "referral_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    referrer_points_on_signup: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    referrer_points_per_purchase: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class DeliverySettings(Base):
    __tablename__ = "delivery_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    base_fee: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), default=500.0, nullable=False
    )
    minimum_order_quantity: Mapped[int] = mapped_column(
        Integer, default=1, nullable=False
    )
    minimum_order_amount: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), default=0.0, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
