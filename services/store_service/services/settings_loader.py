"""Single accessor for the admin-tunable settings rows.

The most recent row of a kind wins. Callers load a config once and pass it
into the pure calculators, so those never query the database themselves.
"""

from dataclasses import dataclass
from typing import Optional, Union

from libs.common.logging import get_logger
from services.store_service.models import (
    ConfigKind,
    DeliverySettings,
    PointsSettings,
    ReferralSettings,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class PointsConfig:
    amount_threshold: float = 50000.0
    points_per_threshold: int = 1
    naira_per_point: float = 10.0
    minimum_points_to_convert: int = 100
    is_active: bool = True


@dataclass(frozen=True)
class ReferralConfig:
    referrer_points_on_signup: int = 0
    referrer_points_per_purchase: int = 0
    is_active: bool = True


@dataclass(frozen=True)
class DeliveryConfig:
    base_fee: float = 500.0
    minimum_order_quantity: int = 1
    minimum_order_amount: float = 0.0
    is_active: bool = True


ActiveConfig = Union[PointsConfig, ReferralConfig, DeliveryConfig]

_MODELS = {
    ConfigKind.POINTS: PointsSettings,
    ConfigKind.REFERRAL: ReferralSettings,
    ConfigKind.DELIVERY: DeliverySettings,
}


def _to_config(kind: ConfigKind, row) -> ActiveConfig:
    if kind == ConfigKind.POINTS:
        return PointsConfig(
            amount_threshold=float(row.amount_threshold),
            points_per_threshold=int(row.points_per_threshold),
            naira_per_point=float(row.naira_per_point),
            minimum_points_to_convert=int(row.minimum_points_to_convert),
            is_active=bool(row.is_active),
        )
    if kind == ConfigKind.REFERRAL:
        return ReferralConfig(
            referrer_points_on_signup=int(row.referrer_points_on_signup),
            referrer_points_per_purchase=int(row.referrer_points_per_purchase),
            is_active=bool(row.is_active),
        )
    return DeliveryConfig(
        base_fee=float(row.base_fee),
        minimum_order_quantity=int(row.minimum_order_quantity),
        minimum_order_amount=float(row.minimum_order_amount),
        is_active=bool(row.is_active),
    )


async def load_active_config(
    db: AsyncSession, kind: ConfigKind
) -> Optional[ActiveConfig]:
    """Return the newest settings row of ``kind`` as an immutable config.

    ``None`` means no row exists; callers decide what that implies (points:
    nothing earned, referral: nothing awarded, delivery: defaults).
    """
    model = _MODELS[ConfigKind(kind)]
    result = await db.execute(
        select(model).order_by(model.created_at.desc()).limit(1)
    )
    row = result.scalar_one_or_none()
    if row is None:
        logger.debug("No %s settings row; using caller defaults", kind)
        return None
    return _to_config(ConfigKind(kind), row)
