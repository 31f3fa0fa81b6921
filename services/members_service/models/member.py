"""Member identity plus the denormalized wallet and points running totals."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class Member(Base):
    """Customer account.

    ``wallet_balance`` and ``points`` are running totals of the wallet and
    rewards ledgers. They are only ever changed by atomic SQL increments in
    ``services.wallet_service.services``; never assign them from Python.
    """

    __tablename__ = "members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(
        String, nullable=False, default="customer", server_default="customer"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Ledger running totals
    wallet_balance: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), nullable=False, default=0.0
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Referrals
    referral_code: Mapped[Optional[str]] = mapped_column(
        String, unique=True, index=True, nullable=True
    )
    referred_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        return f"<Member {self.email} balance={self.wallet_balance}>"
