"""Referral model."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String
from sqlalchemy import UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class Referral(Base):
    """A referrer inviting one email address.

    ``first_purchase_bonus_paid_at`` is the idempotency guard for the
    first-purchase bonus: it is only ever set by a conditional update
    ``WHERE first_purchase_bonus_paid_at IS NULL``.
    """

    __tablename__ = "referrals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    referrer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("members.id", ondelete="CASCADE"), index=True, nullable=False
    )
    referred_email: Mapped[str] = mapped_column(String, index=True, nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reward_amount: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), default=0.0, nullable=False
    )
    first_purchase_bonus_paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Set once both bonus credit rows exist; claimed rows without it get repaired
    bonus_credited_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("referrer_id", "referred_email", name="uq_referral_pair"),
    )

    def __repr__(self) -> str:
        return f"<Referral {self.code} -> {self.referred_email}>"
