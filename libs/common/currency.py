"""Currency helpers for Marketdotcom.

Internal storage unit: Naira with two decimal places (float, e.g. 1500.5).
Gateway unit: kobo (smallest NGN unit, 100 kobo = ₦1).

Every computed monetary value goes through ``round_currency`` before it is
persisted or compared, so repeated float arithmetic cannot drift.
"""

from __future__ import annotations

import math
import sys

# ─── constants ───────────────────────────────────────────────────────────────

KOBO_PER_NAIRA: int = 100
_EPSILON: float = sys.float_info.epsilon


# ─── rounding ────────────────────────────────────────────────────────────────


def round_currency(value: float) -> float:
    """Round to 2 decimal places, half-up, with an epsilon nudge.

    ``1.005`` is stored as ``1.00499999...`` in binary; adding epsilon first
    moves it back over the half so it rounds to ``1.01``.
    """
    return math.floor((float(value) + _EPSILON) * 100 + 0.5) / 100


def amounts_match(a: float, b: float, tolerance: float = 0.0) -> bool:
    """Compare two monetary values after rounding both."""
    return abs(round_currency(a) - round_currency(b)) <= tolerance


# ─── conversion helpers ───────────────────────────────────────────────────────


def naira_to_kobo(naira: float) -> int:
    """Convert Naira to kobo (round half-up). ₦1 = 100 kobo."""
    return int(math.floor(round_currency(naira) * KOBO_PER_NAIRA + 0.5))


def kobo_to_naira(kobo: int) -> float:
    """Convert kobo to Naira. 100 kobo = ₦1."""
    return round_currency(int(kobo) / KOBO_PER_NAIRA)


def format_naira(amount: float) -> str:
    """Human readable amount for notifications, e.g. ₦5,500 or ₦1,234.50."""
    rounded = round_currency(amount)
    if rounded == int(rounded):
        return f"₦{int(rounded):,}"
    return f"₦{rounded:,.2f}"
