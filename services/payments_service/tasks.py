"""Background reconciliation tasks for payments service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import ReferenceNotFound
from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from services.payments_service.models import (
    CheckoutStatus,
    PendingCheckout,
    ReconcileStatus,
)
from services.payments_service.services.reconciliation import (
    PaymentGateway,
    reconcile,
)
from services.store_service.models import Order, PaymentStatus
from services.wallet_service.models import (
    TransactionDirection,
    TransactionMethod,
    TransactionStatus,
    WalletTransaction,
)
from services.wallet_service.services.referral_bonus import (
    BonusRepairReport,
    repair_referral_bonuses,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


@dataclass
class SweepReport:
    checked: int = 0
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


async def collect_stale_references(
    db: AsyncSession, *, cutoff: datetime, limit: int
) -> list[str]:
    """PENDING references older than ``cutoff``, oldest first per kind.

    Fundings stuck PROCESSING since before ``cutoff`` are included so their
    settlement gets finished. Rows flagged for manual review are left to
    operators.
    """
    funding = await db.execute(
        select(WalletTransaction.reference)
        .where(
            WalletTransaction.status == TransactionStatus.PENDING,
            WalletTransaction.type == TransactionDirection.CREDIT,
            WalletTransaction.method == TransactionMethod.PAYSTACK.value,
            WalletTransaction.flagged_for_review.is_(False),
            WalletTransaction.created_at <= cutoff,
        )
        .order_by(WalletTransaction.created_at.asc())
        .limit(limit)
    )
    processing = await db.execute(
        select(WalletTransaction.reference)
        .where(
            WalletTransaction.status == TransactionStatus.PROCESSING,
            WalletTransaction.type == TransactionDirection.CREDIT,
            WalletTransaction.method == TransactionMethod.PAYSTACK.value,
            WalletTransaction.flagged_for_review.is_(False),
            WalletTransaction.updated_at <= cutoff,
        )
        .order_by(WalletTransaction.updated_at.asc())
        .limit(limit)
    )
    orders = await db.execute(
        select(Order.transaction_id)
        .where(
            Order.payment_status == PaymentStatus.PENDING,
            Order.transaction_id.is_not(None),
            Order.created_at <= cutoff,
        )
        .order_by(Order.created_at.asc())
        .limit(limit)
    )
    checkouts = await db.execute(
        select(PendingCheckout.reference)
        .where(
            PendingCheckout.status == CheckoutStatus.PENDING,
            PendingCheckout.flagged_for_review.is_(False),
            PendingCheckout.created_at <= cutoff,
        )
        .order_by(PendingCheckout.created_at.asc())
        .limit(limit)
    )
    return (
        list(funding.scalars().all())
        + list(processing.scalars().all())
        + list(orders.scalars().all())
        + list(checkouts.scalars().all())
    )


async def reconcile_stale_references(
    *,
    session_factory: async_sessionmaker = AsyncSessionLocal,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> SweepReport:
    """Verify stale pending references with Paystack and settle them.

    Each reference gets its own session so one failure cannot affect the
    rest of the batch.
    """
    settings = get_settings()
    cutoff = (now or utc_now()) - timedelta(
        minutes=settings.RECONCILE_STALE_AFTER_MINUTES
    )
    async with session_factory() as db:
        references = await collect_stale_references(
            db, cutoff=cutoff, limit=settings.RECONCILE_BATCH_SIZE
        )

    report = SweepReport()
    for reference in references:
        report.checked += 1
        async with session_factory() as db:
            try:
                result = await reconcile(
                    db, reference, gateway=gateway, source="sweep"
                )
            except ReferenceNotFound:
                # Consumed by a concurrent caller between collection and now.
                continue
            except Exception as exc:
                report.errors.append(reference)
                logger.error("Sweep failed to reconcile %s: %s", reference, exc)
                continue

        if result.status == ReconcileStatus.COMPLETED:
            report.completed.append(reference)
        elif result.status == ReconcileStatus.FAILED:
            report.failed.append(reference)
        else:
            report.pending.append(reference)

    if report.checked:
        logger.info(
            "Reconciled %d stale references: %d completed, %d failed, %d pending, %d errors",
            report.checked,
            len(report.completed),
            len(report.failed),
            len(report.pending),
            len(report.errors),
        )
    return report


async def run_referral_bonus_repair(
    *, session_factory: async_sessionmaker = AsyncSessionLocal
) -> BonusRepairReport:
    """Pay referral bonuses that post-commit calls or crashes left unpaid."""
    async with session_factory() as db:
        report = await repair_referral_bonuses(
            db, limit=get_settings().RECONCILE_BATCH_SIZE
        )
    if report.awarded or report.repaired or report.failed:
        logger.info(
            "Referral bonus repair: %d awarded, %d repaired, %d failed",
            len(report.awarded),
            len(report.repaired),
            len(report.failed),
        )
    return report
