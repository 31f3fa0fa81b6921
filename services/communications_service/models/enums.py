"""Enum definitions for communications service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class NotificationType(str, enum.Enum):
    ORDER_UPDATE = "order_update"
    DELIVERY = "delivery"
    PAYMENT = "payment"
    WALLET = "wallet"
    REFERRAL = "referral"
    REWARD = "reward"
    SYSTEM = "system"
