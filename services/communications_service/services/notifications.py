"""In-app notification sink."""

import uuid
from typing import Optional

from libs.common.logging import get_logger
from services.communications_service.models import Notification, NotificationType
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def notify(
    db: AsyncSession,
    user_id: uuid.UUID,
    title: str,
    message: str,
    type: NotificationType = NotificationType.SYSTEM,
    order_id: Optional[uuid.UUID] = None,
) -> None:
    """Persist one notification and commit it on its own.

    Only called from a post-commit queue: the settlement that triggered it is
    already durable, so a failure here rolls back nothing but this row.
    """
    try:
        db.add(
            Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=type,
                order_id=order_id,
            )
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.debug("Notified user %s: %s", user_id, title)
