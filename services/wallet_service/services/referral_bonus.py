"""First-purchase referral bonus.

Both the referrer and the referee receive ``REFERRAL_BONUS_AMOUNT`` once the
referee's first order is paid. Called from reconciliation, from wallet-only
checkouts and from the repair sweep, often concurrently for the same order.

The claim is a conditional update on ``Referral.first_purchase_bonus_paid_at``
and runs in the same settlement unit as both credits: with transactions a
failed credit also releases the claim, so a later call can retry. In fallback
mode the claim commits first; ``bonus_credited_at`` is only set once both
credit rows exist, and ``repair_referral_bonuses`` tops up claims without it.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional

from libs.common.config import get_settings
from libs.common.currency import format_naira, round_currency
from libs.common.datetime_utils import utc_now
from libs.common.errors import AlreadySettled
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
from services.store_service.models import Order, PaymentStatus
from services.wallet_service.models import Referral, TransactionMethod
from services.wallet_service.services.wallet_ops import (
    credit_wallet,
    get_transaction,
    referral_bonus_reference,
)
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

logger = get_logger(__name__)

REFERRER = "referrer"
REFEREE = "referee"


async def _find_referral(
    db: AsyncSession, referrer_id: uuid.UUID, referee_email: str
) -> Optional[Referral]:
    result = await db.execute(
        select(Referral)
        .where(
            Referral.referrer_id == referrer_id,
            func.lower(Referral.referred_email) == referee_email.lower(),
        )
        .order_by(Referral.created_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _completed_order_count(db: AsyncSession, user_id: uuid.UUID) -> int:
    count = await db.scalar(
        select(func.count())
        .select_from(Order)
        .where(
            Order.user_id == user_id,
            Order.payment_status == PaymentStatus.COMPLETED,
        )
    )
    return int(count or 0)


def _bonus_credit_step(
    *, referral_id: uuid.UUID, user_id: uuid.UUID, role: str, amount: float
) -> SettlementStep:
    description = (
        "Referral bonus – referred customer made first purchase"
        if role == REFERRER
        else "Referral bonus – first purchase as referred customer"
    )

    async def _credit(session: AsyncSession):
        return await credit_wallet(
            session,
            user_id=user_id,
            amount=amount,
            reference=referral_bonus_reference(referral_id, role),
            method=TransactionMethod.REFERRAL_BONUS.value,
            description=description,
        )

    return SettlementStep(f"credit_{role}", _credit)


def _mark_credited_step(referral_id: uuid.UUID) -> SettlementStep:
    async def _mark(session: AsyncSession) -> None:
        await session.execute(
            update(Referral)
            .where(Referral.id == referral_id, Referral.bonus_credited_at.is_(None))
            .values(bonus_credited_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    return SettlementStep("mark_bonus_credited", _mark)


def _queue_bonus_notifications(
    side_effects: PostCommitQueue,
    db: AsyncSession,
    *,
    referrer_id: uuid.UUID,
    referee_id: uuid.UUID,
    amount: float,
) -> None:
    side_effects.add(
        "referral_bonus_referrer_notification",
        notify,
        db,
        referrer_id,
        "Referral bonus credited",
        f"You received {format_naira(amount)} because someone you referred "
        "completed their first purchase.",
        NotificationType.REFERRAL,
    )
    side_effects.add(
        "referral_bonus_referee_notification",
        notify,
        db,
        referee_id,
        "Referral bonus credited",
        f"You received {format_naira(amount)} bonus for your first purchase "
        "as a referred customer.",
        NotificationType.REFERRAL,
    )


async def award_first_purchase_bonus(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    strategy: Optional[SettlementStrategy] = None,
) -> bool:
    """Pay the referral bonus pair if ``order_id`` is the buyer's first paid order.

    Preconditions, each a short-circuit returning ``False``:
    1. the buyer has a referrer
    2. a Referral for (referrer, buyer email) exists
    3. its bonus has not been claimed yet
    4. the buyer has exactly one COMPLETED order

    ``Referral.is_used`` is not consulted: it is set when the referee signs
    up, long before their first purchase.

    Returns True only for the caller whose claim succeeded.
    """
    order = await db.get(Order, order_id)
    if order is None:
        logger.warning("Referral bonus skipped: order %s not found", order_id)
        return False

    buyer = await db.get(Member, order.user_id)
    if buyer is None or buyer.referred_by_id is None:
        return False
    referrer_id = buyer.referred_by_id
    buyer_id = buyer.id

    referral = await _find_referral(db, referrer_id, buyer.email)
    if referral is None or referral.first_purchase_bonus_paid_at is not None:
        return False

    if await _completed_order_count(db, buyer_id) != 1:
        return False

    amount = round_currency(get_settings().REFERRAL_BONUS_AMOUNT)
    referral_id = referral.id

    async def _claim(session: AsyncSession) -> None:
        result = await session.execute(
            update(Referral)
            .where(
                Referral.id == referral_id,
                Referral.first_purchase_bonus_paid_at.is_(None),
            )
            .values(first_purchase_bonus_paid_at=utc_now(), reward_amount=amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadySettled(f"referral-{referral_id}", "claimed")

    steps = [
        SettlementStep("claim_referral_bonus", _claim),
        _bonus_credit_step(
            referral_id=referral_id, user_id=referrer_id, role=REFERRER, amount=amount
        ),
        _bonus_credit_step(
            referral_id=referral_id, user_id=buyer_id, role=REFEREE, amount=amount
        ),
        _mark_credited_step(referral_id),
    ]

    strategy = strategy or get_settlement_strategy()
    try:
        await strategy.run(db, steps)
    except AlreadySettled:
        logger.info("Referral bonus for %s already claimed by another caller", referral_id)
        return False

    logger.info(
        "Referral bonus ₦%.2f paid to %s and %s (referral=%s, order=%s)",
        amount,
        referrer_id,
        buyer_id,
        referral_id,
        order_id,
    )
    side_effects = PostCommitQueue()
    _queue_bonus_notifications(
        side_effects, db, referrer_id=referrer_id, referee_id=buyer_id, amount=amount
    )
    await side_effects.dispatch()
    return True


# ---------------------------------------------------------------------------
# Repair sweep
# ---------------------------------------------------------------------------


@dataclass
class BonusRepairReport:
    awarded: list[uuid.UUID] = field(default_factory=list)
    repaired: list[uuid.UUID] = field(default_factory=list)
    failed: list[uuid.UUID] = field(default_factory=list)


async def _referee_id(
    db: AsyncSession, referrer_id: uuid.UUID, referred_email: str
) -> Optional[uuid.UUID]:
    return await db.scalar(
        select(Member.id).where(
            Member.referred_by_id == referrer_id,
            func.lower(Member.email) == referred_email.lower(),
        )
    )


def _claimed_needing_credit(limit: int):
    return (
        select(
            Referral.id,
            Referral.referrer_id,
            Referral.referred_email,
            Referral.reward_amount,
        )
        .where(
            Referral.first_purchase_bonus_paid_at.is_not(None),
            Referral.bonus_credited_at.is_(None),
        )
        .order_by(Referral.first_purchase_bonus_paid_at, Referral.id)
        .limit(limit)
    )


def _unclaimed_with_first_purchase(limit: int):
    """Unclaimed referrals whose referee has exactly one paid order."""
    referee = aliased(Member)
    paid_orders = (
        select(func.count(Order.id))
        .where(
            Order.user_id == referee.id,
            Order.payment_status == PaymentStatus.COMPLETED,
        )
        .correlate(referee)
        .scalar_subquery()
    )
    eligible_referee = (
        select(referee.id)
        .where(
            referee.referred_by_id == Referral.referrer_id,
            func.lower(referee.email) == func.lower(Referral.referred_email),
            paid_orders == 1,
        )
        .correlate(Referral)
        .exists()
    )
    return (
        select(Referral.id, Referral.referrer_id, Referral.referred_email)
        .where(Referral.first_purchase_bonus_paid_at.is_(None), eligible_referee)
        .order_by(Referral.created_at, Referral.id)
        .limit(limit)
    )


async def repair_referral_bonuses(
    db: AsyncSession,
    *,
    limit: int = 200,
    strategy: Optional[SettlementStrategy] = None,
) -> BonusRepairReport:
    """Catch bonuses that a post-commit call or a crash left unpaid.

    - Claimed referrals not yet marked credited get their missing credit
      rows (credits are keyed by deterministic references, so this cannot
      double-pay) and are then marked.
    - Unclaimed referrals whose referee has their one paid order are handed
      to ``award_first_purchase_bonus``.

    Both scans select only rows that still need work, so settled or
    ineligible referrals never crowd newer ones out of the batch.
    """
    report = BonusRepairReport()
    strategy = strategy or get_settlement_strategy()
    default_amount = get_settings().REFERRAL_BONUS_AMOUNT

    # Plain tuples: a failed repair rolls the session back and expires ORM rows.
    claimed = (await db.execute(_claimed_needing_credit(limit))).all()
    for referral_id, referrer_id, referred_email, reward_amount in claimed:
        sides = [(REFERRER, referrer_id)]
        referee_id = await _referee_id(db, referrer_id, referred_email)
        if referee_id is not None:
            sides.append((REFEREE, referee_id))
        missing = [
            (role, user_id)
            for role, user_id in sides
            if await get_transaction(db, referral_bonus_reference(referral_id, role))
            is None
        ]
        amount = round_currency(reward_amount or default_amount)
        steps = [
            _bonus_credit_step(
                referral_id=referral_id, user_id=user_id, role=role, amount=amount
            )
            for role, user_id in missing
        ]
        steps.append(_mark_credited_step(referral_id))
        try:
            await strategy.run(db, steps)
        except Exception as exc:
            report.failed.append(referral_id)
            logger.error("Referral bonus repair failed for %s: %s", referral_id, exc)
            continue
        if not missing:
            continue
        report.repaired.append(referral_id)
        logger.warning(
            "Repaired referral bonus %s: credited %s",
            referral_id,
            ", ".join(role for role, _ in missing),
        )

    unclaimed = (await db.execute(_unclaimed_with_first_purchase(limit))).all()
    for referral_id, referrer_id, referred_email in unclaimed:
        referee_id = await _referee_id(db, referrer_id, referred_email)
        if referee_id is None:
            continue
        first_paid = await db.scalar(
            select(Order.id)
            .where(
                Order.user_id == referee_id,
                Order.payment_status == PaymentStatus.COMPLETED,
            )
            .order_by(Order.created_at)
            .limit(1)
        )
        if first_paid is None:
            continue
        try:
            if await award_first_purchase_bonus(db, first_paid, strategy=strategy):
                report.awarded.append(referral_id)
        except Exception as exc:
            report.failed.append(referral_id)
            logger.error("Referral bonus award failed for %s: %s", referral_id, exc)

    return report
