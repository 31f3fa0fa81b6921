"""Enum definitions for payments service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class CheckoutStatus(str, enum.Enum):
    PENDING = "pending"
    FAILED = "failed"


class ReconcileStatus(str, enum.Enum):
    """Outcome reported to every reconciliation caller."""

    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"


class GatewayOutcome(str, enum.Enum):
    """Gateway transaction statuses normalized into three buckets."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
