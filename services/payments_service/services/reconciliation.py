"""Payment reconciliation: settle a gateway reference exactly once.

``reconcile`` is called for the same reference by the customer's verify call,
the Paystack webhook, the periodic sweep and operators, often at the same
time. The protocol:

1. Locate the local record: an Order by ``transaction_id``, else a funding
   WalletTransaction by ``reference``, else a PendingCheckout.
2. Idempotency gate: a terminal local state is returned as is, with no
   writes and no gateway call. A funding stuck PROCESSING is resumed from
   local state instead.
3. Ask Paystack (bounded by a timeout). An unreachable gateway means PENDING
   with nothing changed.
4. Apply the outcome. Every terminal transition is itself the claim: a
   conditional ``UPDATE ... WHERE status = 'pending'`` (or the unique
   ``Order.transaction_id`` insert for checkouts) that only one caller can
   win. Losers re-read the state the winner wrote and return it.

Notifications, emails and the referral bonus run after the settlement
commits and cannot fail it.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Protocol, Union

from libs.common.config import get_settings
from libs.common.currency import format_naira, kobo_to_naira, naira_to_kobo
from libs.common.datetime_utils import utc_now
from libs.common.emails.orders import (
    send_admin_payment_notification,
    send_admin_wallet_deposit_notification,
)
from libs.common.errors import (
    AlreadySettled,
    GatewayUnavailable,
    InsufficientFunds,
    OrphanedReference,
    ReferenceNotFound,
)
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
from services.payments_service.models import (
    CheckoutStatus,
    GatewayOutcome,
    PendingCheckout,
    ReconcileStatus,
)
from services.payments_service.paystack_client import (
    GatewayVerification,
    PaystackError,
    get_paystack_client,
)
from services.store_service.models import (
    ConfigKind,
    Order,
    OrderStatus,
    PaymentStatus,
)
from services.store_service.services.order_settlement import (
    PreparedOrder,
    settle_prepared_order,
)
from services.store_service.services.settings_loader import load_active_config
from services.wallet_service.models import (
    TransactionDirection,
    TransactionMethod,
    TransactionStatus,
    WalletTransaction,
)
from services.wallet_service.services.referral_bonus import (
    award_first_purchase_bonus,
)
from services.wallet_service.services.referrals import (
    award_referrer_purchase_points,
)
from services.wallet_service.services.wallet_ops import (
    AUDIT_TOLERANCE,
    audit_wallet_ledger,
    credit_wallet,
    decrement_balance,
    get_transaction,
    increment_balance,
    order_wallet_reference,
    transition_transaction,
)
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

KIND_ORDER = "order"
KIND_CHECKOUT = "checkout"
KIND_WALLET_FUNDING = "wallet_funding"

LocalRecord = Union[Order, WalletTransaction, PendingCheckout]


class PaymentGateway(Protocol):
    async def verify_transaction(self, reference: str) -> GatewayVerification: ...


@dataclass
class ReconcileResult:
    """What every caller gets back: COMPLETED, FAILED or PENDING."""

    reference: str
    status: ReconcileStatus
    kind: Optional[str] = None
    order_id: Optional[uuid.UUID] = None
    amount: Optional[float] = None
    gateway_status: Optional[str] = None
    already_settled: bool = False
    message: Optional[str] = None


# ============================================================================
# LOOKUP + STATE
# ============================================================================


async def _locate(db: AsyncSession, reference: str) -> tuple[str, LocalRecord]:
    """Find the local record for a reference. Always reads fresh rows."""
    order = (
        await db.execute(
            select(Order)
            .where(Order.transaction_id == reference)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if order is not None:
        return KIND_ORDER, order

    txn = (
        await db.execute(
            select(WalletTransaction)
            .where(
                WalletTransaction.reference == reference,
                WalletTransaction.type == TransactionDirection.CREDIT,
                WalletTransaction.method == TransactionMethod.PAYSTACK.value,
            )
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if txn is not None:
        return KIND_WALLET_FUNDING, txn

    checkout = (
        await db.execute(
            select(PendingCheckout)
            .where(PendingCheckout.reference == reference)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if checkout is not None:
        return KIND_CHECKOUT, checkout

    raise ReferenceNotFound(reference)


def _terminal_status(kind: str, record: LocalRecord) -> Optional[ReconcileStatus]:
    if kind == KIND_ORDER:
        if record.payment_status == PaymentStatus.COMPLETED:
            return ReconcileStatus.COMPLETED
        if record.payment_status == PaymentStatus.FAILED:
            return ReconcileStatus.FAILED
    elif kind == KIND_WALLET_FUNDING:
        if record.status == TransactionStatus.COMPLETED:
            return ReconcileStatus.COMPLETED
        if record.status == TransactionStatus.FAILED:
            return ReconcileStatus.FAILED
    elif record.status == CheckoutStatus.FAILED:
        return ReconcileStatus.FAILED
    return None


def _expected_amount(kind: str, record: LocalRecord) -> float:
    if kind == KIND_ORDER:
        return record.final_amount
    return record.amount


def _result_for(
    reference: str,
    kind: str,
    record: LocalRecord,
    status: ReconcileStatus,
    *,
    already_settled: bool = False,
    gateway_status: Optional[str] = None,
    message: Optional[str] = None,
) -> ReconcileResult:
    return ReconcileResult(
        reference=reference,
        status=status,
        kind=kind,
        order_id=record.id if kind == KIND_ORDER else None,
        amount=_expected_amount(kind, record),
        gateway_status=gateway_status,
        already_settled=already_settled,
        message=message,
    )


async def _current_result(
    db: AsyncSession, reference: str, *, gateway_status: Optional[str] = None
) -> ReconcileResult:
    """Re-read the state another caller just wrote."""
    kind, record = await _locate(db, reference)
    status = _terminal_status(kind, record) or ReconcileStatus.PENDING
    return _result_for(
        reference,
        kind,
        record,
        status,
        already_settled=status != ReconcileStatus.PENDING,
        gateway_status=gateway_status,
    )


async def _flag_for_review(db: AsyncSession, kind: str, reference: str) -> None:
    model = PendingCheckout if kind == KIND_CHECKOUT else WalletTransaction
    try:
        await db.execute(
            update(model)
            .where(model.reference == reference)
            .values(flagged_for_review=True)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise


# ============================================================================
# SUCCESS PATHS
# ============================================================================


async def _settle_checkout(
    db: AsyncSession,
    checkout: PendingCheckout,
    verification: GatewayVerification,
    strategy: SettlementStrategy,
) -> ReconcileResult:
    """Create the paid Order from the stored snapshot and drop the checkout.

    The unique ``Order.transaction_id`` insert is the claim; a second caller
    fails on it and reports the winner's order instead.
    """
    reference = checkout.reference
    user_id = checkout.user_id
    prepared = PreparedOrder.from_snapshot(user_id, checkout.payload)

    async def _delete_checkout(session: AsyncSession) -> None:
        result = await session.execute(
            delete(PendingCheckout).where(PendingCheckout.reference == reference)
        )
        if result.rowcount != 1:
            raise AlreadySettled(reference, "consumed")

    side_effects = PostCommitQueue()
    try:
        settlement = await settle_prepared_order(
            db,
            prepared,
            set_confirmed=True,
            transaction_id=reference,
            strategy=strategy,
            side_effects=side_effects,
            extra_steps=[SettlementStep("delete_checkout", _delete_checkout)],
        )
    except (IntegrityError, AlreadySettled):
        logger.info("Checkout %s was settled by a concurrent caller", reference)
        return await _current_result(db, reference, gateway_status=verification.status)
    except InsufficientFunds as exc:
        logger.error(
            "Paid checkout %s cannot be settled: %s. Flagged for review.",
            reference,
            exc.message,
        )
        await _flag_for_review(db, KIND_CHECKOUT, reference)
        return ReconcileResult(
            reference=reference,
            status=ReconcileStatus.PENDING,
            kind=KIND_CHECKOUT,
            amount=prepared.final_amount,
            gateway_status=verification.status,
            message="Payment received; order is under manual review",
        )

    member = await db.get(Member, user_id)
    _queue_payment_confirmed(
        side_effects,
        db,
        member=member,
        user_id=user_id,
        order_id=settlement.order_id,
        amount_kobo=verification.amount_kobo,
        reference=reference,
    )
    await side_effects.dispatch()

    return ReconcileResult(
        reference=reference,
        status=ReconcileStatus.COMPLETED,
        kind=KIND_CHECKOUT,
        order_id=settlement.order_id,
        amount=prepared.final_amount,
        gateway_status=verification.status,
    )


async def _settle_order_payment(
    db: AsyncSession,
    order: Order,
    verification: GatewayVerification,
    strategy: SettlementStrategy,
) -> ReconcileResult:
    """Mark a pre-created order paid: PENDING -> COMPLETED, CONFIRMED."""
    reference = verification.reference
    order_id = order.id
    user_id = order.user_id
    final_amount = order.final_amount
    member = await db.get(Member, user_id)
    referrer_id = member.referred_by_id if member is not None else None
    referral_config = None
    if referrer_id is not None:
        referral_config = await load_active_config(db, ConfigKind.REFERRAL)

    async def _claim(session: AsyncSession) -> None:
        result = await session.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status == PaymentStatus.PENDING)
            .values(payment_status=PaymentStatus.COMPLETED, status=OrderStatus.CONFIRMED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadySettled(reference, "settled")

    steps = [SettlementStep("claim_order_payment", _claim)]
    if referrer_id is not None:

        async def _referrer_points(session: AsyncSession):
            return await award_referrer_purchase_points(
                session,
                referrer_id=referrer_id,
                order_id=order_id,
                config=referral_config,
            )

        steps.append(SettlementStep("referrer_purchase_points", _referrer_points))

    try:
        await strategy.run(db, steps)
    except AlreadySettled:
        return await _current_result(db, reference, gateway_status=verification.status)

    side_effects = PostCommitQueue()
    _queue_payment_confirmed(
        side_effects,
        db,
        member=member,
        user_id=user_id,
        order_id=order_id,
        amount_kobo=verification.amount_kobo,
        reference=reference,
    )
    side_effects.add("first_purchase_bonus", award_first_purchase_bonus, db, order_id)
    await side_effects.dispatch()

    return ReconcileResult(
        reference=reference,
        status=ReconcileStatus.COMPLETED,
        kind=KIND_ORDER,
        order_id=order_id,
        amount=final_amount,
        gateway_status=verification.status,
    )


def _funding_steps(
    reference: str, user_id: uuid.UUID, amount: float, *, credit: bool = True
) -> list[SettlementStep]:
    async def _increment(session: AsyncSession) -> None:
        await increment_balance(session, user_id, amount, reference=reference)

    async def _undo_increment(session: AsyncSession) -> None:
        if not await decrement_balance(session, user_id, amount):
            logger.error(
                "Could not take back ₦%.2f credited for %s; the ledger audit "
                "will report it",
                amount,
                reference,
            )

    async def _finalize(session: AsyncSession) -> None:
        if not await transition_transaction(
            session,
            reference,
            TransactionStatus.COMPLETED,
            from_status=TransactionStatus.PROCESSING,
        ):
            logger.warning("Funding %s was finalized by another caller", reference)

    steps = []
    if credit:
        steps.append(
            SettlementStep("increment_balance", _increment, compensate=_undo_increment)
        )
    steps.append(SettlementStep("finalize_funding", _finalize))
    return steps


async def _funding_completed(
    db: AsyncSession,
    reference: str,
    user_id: uuid.UUID,
    amount: float,
    *,
    gateway_status: Optional[str] = None,
) -> ReconcileResult:
    member = await db.get(Member, user_id)
    side_effects = PostCommitQueue()
    side_effects.add(
        "wallet_funded_notification",
        notify,
        db,
        user_id,
        "Wallet Funded Successfully",
        f"Your wallet has been credited with {format_naira(amount)}.",
        NotificationType.WALLET,
    )
    if member is not None:
        side_effects.add(
            "admin_wallet_deposit_email",
            send_admin_wallet_deposit_notification,
            user_name=member.name,
            user_email=member.email,
            amount=amount,
            transaction_id=reference,
        )
    await side_effects.dispatch()

    logger.info("Wallet funding %s completed: ₦%.2f to %s", reference, amount, user_id)
    return ReconcileResult(
        reference=reference,
        status=ReconcileStatus.COMPLETED,
        kind=KIND_WALLET_FUNDING,
        amount=amount,
        gateway_status=gateway_status,
    )


async def _funding_under_review(
    db: AsyncSession,
    reference: str,
    amount: float,
    *,
    gateway_status: Optional[str] = None,
) -> ReconcileResult:
    await _flag_for_review(db, KIND_WALLET_FUNDING, reference)
    return ReconcileResult(
        reference=reference,
        status=ReconcileStatus.PENDING,
        kind=KIND_WALLET_FUNDING,
        amount=amount,
        gateway_status=gateway_status,
        message="Payment received; wallet credit is under manual review",
    )


async def _settle_funding(
    db: AsyncSession,
    txn: WalletTransaction,
    verification: GatewayVerification,
    strategy: SettlementStrategy,
) -> ReconcileResult:
    """Complete a wallet funding: claim, balance increment, finalize.

    The claim moves the row PENDING -> PROCESSING so a retry can never apply
    the increment a second time. When a fallback run dies before finalizing,
    the row stays PROCESSING and ``_resume_funding`` finishes it once stale.
    """
    reference = txn.reference
    user_id = txn.user_id
    amount = txn.amount

    async def _claim(session: AsyncSession) -> None:
        if not await transition_transaction(
            session, reference, TransactionStatus.PROCESSING
        ):
            raise AlreadySettled(reference, "settled")

    async def _release_claim(session: AsyncSession) -> None:
        await session.execute(
            update(WalletTransaction)
            .where(
                WalletTransaction.reference == reference,
                WalletTransaction.status == TransactionStatus.PROCESSING,
            )
            .values(status=TransactionStatus.PENDING, flagged_for_review=True)
            .execution_options(synchronize_session=False)
        )

    try:
        await strategy.run(
            db,
            [SettlementStep("claim_funding", _claim, compensate=_release_claim)]
            + _funding_steps(reference, user_id, amount),
        )
    except AlreadySettled:
        return await _current_result(db, reference, gateway_status=verification.status)
    except OrphanedReference as exc:
        logger.error("%s", exc.message)
        return await _funding_under_review(
            db, reference, amount, gateway_status=verification.status
        )

    return await _funding_completed(
        db, reference, user_id, amount, gateway_status=verification.status
    )


async def _resume_funding(
    db: AsyncSession,
    txn: WalletTransaction,
    *,
    source: str,
    strategy: SettlementStrategy,
) -> ReconcileResult:
    """Finish a funding left PROCESSING by a run that died mid-settlement.

    The gateway already confirmed it, so Paystack is not asked again. Only
    rows untouched for ``RECONCILE_STALE_AFTER_MINUTES`` are taken over, and
    the take-over bumps ``updated_at`` so a single caller resumes. The
    member's ledger drift tells whether the increment already landed:
    none means credit then finalize, exactly this amount means finalize
    only, anything else goes to manual review.
    """
    reference = txn.reference
    user_id = txn.user_id
    amount = txn.amount
    cutoff = utc_now() - timedelta(
        minutes=get_settings().RECONCILE_STALE_AFTER_MINUTES
    )

    taken = await db.execute(
        update(WalletTransaction)
        .where(
            WalletTransaction.reference == reference,
            WalletTransaction.status == TransactionStatus.PROCESSING,
            WalletTransaction.updated_at <= cutoff,
        )
        .values(updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if taken.rowcount != 1:
        await db.rollback()
        return await _current_result(db, reference)
    await db.commit()

    drifted = await audit_wallet_ledger(db, user_id=user_id)
    drift = drifted[0].drift if drifted else 0.0
    if abs(drift) <= AUDIT_TOLERANCE:
        credit = True
    elif abs(drift - amount) <= AUDIT_TOLERANCE:
        credit = False
    else:
        logger.error(
            "[%s] Cannot resume funding %s: ledger drift ₦%.2f for %s is not ₦%.2f",
            source,
            reference,
            drift,
            user_id,
            amount,
        )
        return await _funding_under_review(db, reference, amount)

    logger.warning(
        "[%s] Resuming funding %s (%s)",
        source,
        reference,
        "credit and finalize" if credit else "finalize only",
    )
    try:
        await strategy.run(
            db, _funding_steps(reference, user_id, amount, credit=credit)
        )
    except OrphanedReference as exc:
        logger.error("%s", exc.message)
        return await _funding_under_review(db, reference, amount)

    return await _funding_completed(db, reference, user_id, amount)


def _queue_payment_confirmed(
    side_effects: PostCommitQueue,
    db: AsyncSession,
    *,
    member: Optional[Member],
    user_id: uuid.UUID,
    order_id: uuid.UUID,
    amount_kobo: int,
    reference: str,
) -> None:
    amount = kobo_to_naira(amount_kobo)
    side_effects.add(
        "payment_confirmed_notification",
        notify,
        db,
        user_id,
        "Order Confirmed",
        f"Your payment of {format_naira(amount)} has been confirmed. Order "
        f"#{order_id} is now being processed and will be delivered soon!",
        NotificationType.PAYMENT,
        order_id,
    )
    if member is not None:
        side_effects.add(
            "admin_payment_email",
            send_admin_payment_notification,
            order_id=str(order_id),
            customer_name=member.name,
            customer_email=member.email,
            amount=amount,
            transaction_id=reference,
        )


# ============================================================================
# FAILURE PATH
# ============================================================================


async def _mark_failed(
    db: AsyncSession,
    kind: str,
    record: LocalRecord,
    verification: GatewayVerification,
    strategy: SettlementStrategy,
) -> ReconcileResult:
    """Terminal gateway failure: PENDING -> FAILED, once.

    A failed order is also cancelled and any wallet amount it had already
    taken is returned.
    """
    reference = verification.reference
    user_id = record.user_id
    steps: list[SettlementStep] = []

    if kind == KIND_ORDER:
        order_id = record.id
        wallet_debit = await get_transaction(db, order_wallet_reference(order_id))

        async def _claim(session: AsyncSession) -> None:
            result = await session.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.payment_status == PaymentStatus.PENDING,
                )
                .values(
                    payment_status=PaymentStatus.FAILED,
                    status=OrderStatus.CANCELLED,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise AlreadySettled(reference, "settled")

        steps.append(SettlementStep("fail_order", _claim))
        if wallet_debit is not None and wallet_debit.status == TransactionStatus.COMPLETED:
            refund_amount = wallet_debit.amount

            async def _refund(session: AsyncSession):
                return await credit_wallet(
                    session,
                    user_id=user_id,
                    amount=refund_amount,
                    reference=f"{order_wallet_reference(order_id)}-refund",
                    method=TransactionMethod.WALLET.value,
                    description=f"Refund for cancelled order #{order_id}",
                    order_id=order_id,
                )

            steps.append(SettlementStep("refund_wallet_portion", _refund))

    elif kind == KIND_WALLET_FUNDING:

        async def _claim(session: AsyncSession) -> None:
            if not await transition_transaction(
                session, reference, TransactionStatus.FAILED
            ):
                raise AlreadySettled(reference, "settled")

        steps.append(SettlementStep("fail_funding", _claim))

    else:

        async def _claim(session: AsyncSession) -> None:
            result = await session.execute(
                update(PendingCheckout)
                .where(
                    PendingCheckout.reference == reference,
                    PendingCheckout.status == CheckoutStatus.PENDING,
                )
                .values(status=CheckoutStatus.FAILED)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise AlreadySettled(reference, "settled")

        steps.append(SettlementStep("fail_checkout", _claim))

    try:
        await strategy.run(db, steps)
    except AlreadySettled:
        return await _current_result(db, reference, gateway_status=verification.status)

    logger.info(
        "Reference %s (%s) marked FAILED: gateway status %s",
        reference,
        kind,
        verification.status,
    )
    result = _result_for(
        reference,
        kind,
        record,
        ReconcileStatus.FAILED,
        gateway_status=verification.status,
    )
    side_effects = PostCommitQueue()
    side_effects.add(
        "payment_failed_notification",
        notify,
        db,
        user_id,
        "Payment Failed",
        f"Your payment with reference {reference} was not successful. "
        "No money has been taken for it.",
        NotificationType.PAYMENT,
        result.order_id,
    )
    await side_effects.dispatch()
    return result


# ============================================================================
# ENTRY POINT
# ============================================================================


async def _verify_with_gateway(
    gateway: PaymentGateway, reference: str
) -> Optional[GatewayVerification]:
    """Bounded gateway call. ``None`` means inconclusive."""
    timeout = get_settings().PAYSTACK_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(
            gateway.verify_transaction(reference), timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.warning("Gateway verify for %s timed out after %ss", reference, timeout)
    except GatewayUnavailable as exc:
        logger.warning("Gateway unavailable for %s: %s", reference, exc.message)
    except PaystackError as exc:
        logger.warning("Gateway rejected verify for %s: %s", reference, exc.message)
    return None


async def reconcile(
    db: AsyncSession,
    reference: str,
    *,
    gateway: Optional[PaymentGateway] = None,
    user_id: Optional[uuid.UUID] = None,
    source: str = "verify",
    include_flagged: bool = False,
    strategy: Optional[SettlementStrategy] = None,
) -> ReconcileResult:
    """Bring the local record for ``reference`` in line with the gateway.

    Args:
        reference: Gateway reference
        gateway: Anything with ``verify_transaction``; defaults to Paystack
        user_id: When set, the reference must belong to this user
        source: Caller label for logs (verify, webhook, sweep, admin)
        include_flagged: Process rows flagged for manual review (operators only)
        strategy: Settlement strategy; defaults to the configured one

    Returns:
        ReconcileResult with status COMPLETED, FAILED or PENDING

    Raises:
        ReferenceNotFound: no local record for this reference (or not the
            caller's)
    """
    kind, record = await _locate(db, reference)
    if user_id is not None and record.user_id != user_id:
        raise ReferenceNotFound(reference)

    terminal = _terminal_status(kind, record)
    if terminal is not None:
        logger.debug("[%s] %s already %s", source, reference, terminal.value)
        return _result_for(reference, kind, record, terminal, already_settled=True)

    if kind != KIND_ORDER and getattr(record, "flagged_for_review", False):
        if not include_flagged:
            return _result_for(
                reference,
                kind,
                record,
                ReconcileStatus.PENDING,
                message="Under manual review",
            )

    if kind != KIND_ORDER and await db.get(Member, record.user_id) is None:
        orphan = OrphanedReference(reference, "user")
        logger.error("[%s] %s", source, orphan.message)
        await _flag_for_review(db, kind, reference)
        return _result_for(
            reference,
            kind,
            record,
            ReconcileStatus.PENDING,
            message="Under manual review",
        )

    if (
        kind == KIND_WALLET_FUNDING
        and record.status == TransactionStatus.PROCESSING
    ):
        return await _resume_funding(
            db,
            record,
            source=source,
            strategy=strategy or get_settlement_strategy(),
        )

    gateway = gateway or get_paystack_client()
    verification = await _verify_with_gateway(gateway, reference)
    if verification is None:
        return _result_for(
            reference,
            kind,
            record,
            ReconcileStatus.PENDING,
            message="Payment gateway unavailable; try again shortly",
        )

    expected_kobo = naira_to_kobo(_expected_amount(kind, record))
    if (
        verification.amount_kobo
        and abs(verification.amount_kobo - expected_kobo)
        > get_settings().AMOUNT_MISMATCH_TOLERANCE_KOBO
    ):
        logger.warning(
            "[%s] Amount mismatch for %s: gateway=%d kobo expected=%d kobo",
            source,
            reference,
            verification.amount_kobo,
            expected_kobo,
        )

    outcome = verification.outcome
    strategy = strategy or get_settlement_strategy()
    logger.info(
        "[%s] Reconciling %s (%s): gateway status %s",
        source,
        reference,
        kind,
        verification.status,
    )

    if outcome == GatewayOutcome.SUCCESS:
        if kind == KIND_CHECKOUT:
            return await _settle_checkout(db, record, verification, strategy)
        if kind == KIND_ORDER:
            return await _settle_order_payment(db, record, verification, strategy)
        return await _settle_funding(db, record, verification, strategy)

    if outcome == GatewayOutcome.FAILED:
        return await _mark_failed(db, kind, record, verification, strategy)

    return _result_for(
        reference,
        kind,
        record,
        ReconcileStatus.PENDING,
        gateway_status=verification.status,
        message="Payment is still processing",
    )
