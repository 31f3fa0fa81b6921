"""WalletTransaction model: the wallet ledger."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.wallet_service.models.enums import (
    TransactionDirection,
    TransactionStatus,
    enum_values,
)
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class WalletTransaction(Base):
    """One wallet movement.

    Every change of ``Member.wallet_balance`` has exactly one COMPLETED row
    here. ``reference`` is the idempotency key; ``status`` moves
    PENDING -> COMPLETED or PENDING -> FAILED at most once, always through a
    conditional update. Card fundings pass through PROCESSING while their
    balance credit is applied.

    ``user_id`` carries no foreign key: ledger rows outlive deleted accounts
    and are then reported as orphaned instead of cascading away.
    """

    __tablename__ = "wallet_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    reference: Mapped[str] = mapped_column(
        String(120), unique=True, index=True, nullable=False
    )
    type: Mapped[TransactionDirection] = mapped_column(
        SAEnum(
            TransactionDirection,
            name="transaction_direction_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    amount: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), nullable=False
    )
    method: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(
            TransactionStatus,
            name="transaction_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=TransactionStatus.PENDING,
        nullable=False,
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    flagged_for_review: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        Index("ix_wallet_transactions_user_created", "user_id", "created_at"),
        Index("ix_wallet_transactions_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<WalletTransaction {self.reference} {self.type.value} {self.amount}>"
