"""Wallet Service models package.

Re-exports all models and enums so that SQLAlchemy's mapper registry sees
every model class on import.

IMPORTANT: Every model class AND enum must be listed here.
"""

from services.wallet_service.models.enums import (  # noqa: F401
    RewardType,
    TransactionDirection,
    TransactionMethod,
    TransactionStatus,
)
from services.wallet_service.models.referral import Referral  # noqa: F401
from services.wallet_service.models.rewards import Reward  # noqa: F401
from services.wallet_service.models.transaction import WalletTransaction  # noqa: F401

__all__ = [
    # Enums
    "RewardType",
    "TransactionDirection",
    "TransactionMethod",
    "TransactionStatus",
    # Ledgers
    "WalletTransaction",
    "Reward",
    "Referral",
]
