"""Referral signup and referrer purchase points."""

import uuid
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.errors import NotFound, ValidationError
from libs.common.logging import get_logger
from libs.common.side_effects import PostCommitQueue
from services.communications_service.models import NotificationType
from services.communications_service.services.notifications import notify
from services.members_service.models import Member
from services.store_service.services.settings_loader import ReferralConfig
from services.wallet_service.models import Referral, Reward, RewardType
from services.wallet_service.services.rewards_service import award_points
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def record_referral_signup(
    db: AsyncSession,
    *,
    referee_id: uuid.UUID,
    referral_code: str,
    config: Optional[ReferralConfig] = None,
) -> Referral:
    """Link a newly registered member to the owner of ``referral_code``.

    Creates the Referral row (marked used, the code has been redeemed),
    sets ``referee.referred_by_id`` and awards the referrer's signup points.
    Calling it again for the same pair returns the existing row.
    """
    code = referral_code.strip()
    if not code:
        raise ValidationError("Referral code is required")

    referrer = (
        await db.execute(select(Member).where(Member.referral_code == code))
    ).scalar_one_or_none()
    if referrer is None:
        raise ValidationError("Invalid referral code")

    referee = await db.get(Member, referee_id)
    if referee is None:
        raise NotFound("Member not found")
    if referee.id == referrer.id:
        raise ValidationError("You cannot use your own referral code")

    existing = (
        await db.execute(
            select(Referral).where(
                Referral.referrer_id == referrer.id,
                func.lower(Referral.referred_email) == referee.email.lower(),
            )
        )
    ).scalar_one_or_none()
    if existing is not None:
        return existing
    if referee.referred_by_id is not None and referee.referred_by_id != referrer.id:
        raise ValidationError("This account was already referred by someone else")

    referral = Referral(
        referrer_id=referrer.id,
        referred_email=referee.email.lower(),
        code=code,
        is_used=True,
        used_at=utc_now(),
    )
    db.add(referral)
    referee.referred_by_id = referrer.id

    signup_points = 0
    if config is not None and config.is_active:
        signup_points = max(0, config.referrer_points_on_signup)
    try:
        await award_points(
            db,
            user_id=referrer.id,
            points=signup_points,
            description=f"Referral signup: {referee.email}",
            reward_type=RewardType.REFERRAL,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    referrer_id = referrer.id
    logger.info("Recorded referral %s -> %s", referrer_id, referee_id)
    if signup_points > 0:
        side_effects = PostCommitQueue()
        side_effects.add(
            "referral_signup_notification",
            notify,
            db,
            referrer_id,
            "Referral signup points",
            f"You earned {signup_points} points because someone signed up "
            "with your referral code.",
            NotificationType.REFERRAL,
        )
        await side_effects.dispatch()
    await db.refresh(referral)
    return referral


async def award_referrer_purchase_points(
    db: AsyncSession,
    *,
    referrer_id: uuid.UUID,
    order_id: uuid.UUID,
    config: Optional[ReferralConfig],
) -> Optional[Reward]:
    """Points for the referrer when a referred customer pays for an order.

    Runs inside the order's settlement unit. A referrer account that no
    longer exists is logged and skipped; it never blocks the order.
    """
    if config is None or not config.is_active:
        return None
    points = config.referrer_points_per_purchase
    if points <= 0:
        return None
    try:
        return await award_points(
            db,
            user_id=referrer_id,
            points=points,
            description=f"Referred customer purchase – Order #{order_id}",
            reward_type=RewardType.REFERRAL,
            order_id=order_id,
        )
    except NotFound:
        logger.warning(
            "Referrer %s missing; purchase points for order %s skipped",
            referrer_id,
            order_id,
        )
        return None
