"""Loyalty points arithmetic.

Every full ``amount_threshold`` naira earns ``points_per_threshold`` points:
with a threshold of ₦50,000 and 10 points per threshold, ₦100,000 earns 20.
"""

import math
from typing import Optional

from services.store_service.services.settings_loader import PointsConfig

DEFAULT_AMOUNT_THRESHOLD = 50000.0
DEFAULT_POINTS_PER_THRESHOLD = 1


def points_from_amount(amount: float, settings: Optional[PointsConfig]) -> int:
    """Points earned for a purchase amount in naira. Never negative, never raises."""
    if settings is None or not settings.is_active or amount is None or amount <= 0:
        return 0
    threshold = (
        settings.amount_threshold
        if settings.amount_threshold and settings.amount_threshold > 0
        else DEFAULT_AMOUNT_THRESHOLD
    )
    per_threshold = (
        settings.points_per_threshold
        if settings.points_per_threshold and settings.points_per_threshold > 0
        else DEFAULT_POINTS_PER_THRESHOLD
    )
    return int(math.floor(amount / threshold)) * int(per_threshold)
