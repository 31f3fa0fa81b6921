"""Enums for the Wallet Service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class TransactionDirection(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    # Gateway confirmed, balance credit not yet finalized
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionMethod(str, enum.Enum):
    PAYSTACK = "paystack"
    WALLET = "wallet"
    REFERRAL_BONUS = "referral_bonus"
    POINTS_CONVERSION = "points_conversion"


class RewardType(str, enum.Enum):
    PURCHASE = "purchase"
    REFERRAL = "referral"
    CONVERSION = "conversion"
    FUNDING = "funding"
