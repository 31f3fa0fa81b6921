"""Loyalty points ledger: awarding points and converting them to wallet credit."""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.currency import format_naira, round_currency
from libs.common.errors import NotFound, ValidationError
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
from services.store_service.services.settings_loader import PointsConfig
from services.wallet_service.models import Reward, RewardType, TransactionMethod
from services.wallet_service.services.wallet_ops import credit_wallet, get_wallet_balance
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Points ledger primitives
# ---------------------------------------------------------------------------


async def award_points(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    points: int,
    description: str,
    reward_type: RewardType,
    order_id: Optional[uuid.UUID] = None,
) -> Optional[Reward]:
    """Append a positive Reward row and increment ``Member.points`` in SQL.

    Does not commit. Zero or negative points are a no-op.
    """
    if points <= 0:
        return None

    result = await db.execute(
        update(Member)
        .where(Member.id == user_id)
        .values(points=Member.points + points)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound("Member not found")

    reward = Reward(
        user_id=user_id,
        points=points,
        description=description,
        type=reward_type,
        order_id=order_id,
    )
    db.add(reward)
    await db.flush()
    return reward


async def spend_points(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    points: int,
    description: str,
) -> Reward:
    """Guarded decrement (``WHERE points >= n``) plus a negative Reward row."""
    result = await db.execute(
        update(Member)
        .where(Member.id == user_id, Member.points >= points)
        .values(points=Member.points - points)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ValidationError("Insufficient points")

    reward = Reward(
        user_id=user_id,
        points=-points,
        description=description,
        type=RewardType.CONVERSION,
    )
    db.add(reward)
    await db.flush()
    return reward


async def get_points(db: AsyncSession, user_id: uuid.UUID) -> int:
    points = await db.scalar(select(Member.points).where(Member.id == user_id))
    if points is None:
        raise NotFound("Member not found")
    return int(points)


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


@dataclass
class ConversionResult:
    points_converted: int
    amount_credited: float
    reference: str
    wallet_balance: float
    points_remaining: int


async def convert_points_to_wallet(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    points: int,
    config: Optional[PointsConfig],
    strategy: Optional[SettlementStrategy] = None,
) -> ConversionResult:
    """Convert loyalty points into wallet naira.

    ``amount = round(points * naira_per_point)``. The points decrement and the
    wallet credit run as one settlement; in fallback mode a failed credit
    gives the points back.
    """
    config = config or PointsConfig()
    if not config.is_active:
        raise ValidationError("Points conversion is currently disabled")
    if points < config.minimum_points_to_convert:
        raise ValidationError(
            f"Minimum {config.minimum_points_to_convert} points required to convert"
        )

    available = await get_points(db, user_id)
    if available < points:
        raise ValidationError(
            f"Insufficient points. You have {available} points available."
        )

    amount = round_currency(points * config.naira_per_point)
    if amount <= 0:
        raise ValidationError("Conversion rate is not configured")
    reference = f"points-{uuid.uuid4().hex}"
    description = f"Converted {points} points to {format_naira(amount)}"

    async def _spend(session: AsyncSession):
        return await spend_points(
            session, user_id=user_id, points=points, description=description
        )

    async def _refund(session: AsyncSession) -> None:
        await award_points(
            session,
            user_id=user_id,
            points=points,
            description=f"Reversal: {description}",
            reward_type=RewardType.CONVERSION,
        )

    async def _credit(session: AsyncSession):
        return await credit_wallet(
            session,
            user_id=user_id,
            amount=amount,
            reference=reference,
            method=TransactionMethod.POINTS_CONVERSION.value,
            description=description,
        )

    strategy = strategy or get_settlement_strategy()
    await strategy.run(
        db,
        [
            SettlementStep("spend_points", _spend, compensate=_refund),
            SettlementStep("credit_wallet", _credit),
        ],
    )

    side_effects = PostCommitQueue()
    side_effects.add(
        "points_conversion_notification",
        notify,
        db,
        user_id,
        "Points Converted",
        f"{points} points were converted to {format_naira(amount)} in your wallet.",
        NotificationType.REWARD,
    )
    await side_effects.dispatch()

    logger.info("Converted %d points to ₦%.2f for %s", points, amount, user_id)
    return ConversionResult(
        points_converted=points,
        amount_credited=amount,
        reference=reference,
        wallet_balance=await get_wallet_balance(db, user_id),
        points_remaining=await get_points(db, user_id),
    )
