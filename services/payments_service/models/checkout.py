"""PendingCheckout: a server-priced cart waiting for gateway confirmation."""

import uuid
from datetime import datetime

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.payments_service.models.enums import CheckoutStatus, enum_values
from sqlalchemy import JSON, Boolean, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class PendingCheckout(Base):
    """Created before redirecting to Paystack.

    Deleted when the payment is confirmed (the Order takes its place) or when
    gateway initialization fails; marked FAILED on a terminal gateway
    failure. ``payload`` is the repriced order snapshot, never the raw cart
    the client sent.
    """

    __tablename__ = "pending_checkouts"

    reference: Mapped[str] = mapped_column(String(100), primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    amount: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), nullable=False
    )
    status: Mapped[CheckoutStatus] = mapped_column(
        SAEnum(
            CheckoutStatus,
            name="checkout_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=CheckoutStatus.PENDING,
        nullable=False,
    )
    flagged_for_review: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_pending_checkouts_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<PendingCheckout {self.reference} {self.status.value}>"
