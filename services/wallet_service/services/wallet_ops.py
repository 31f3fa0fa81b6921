"""Core wallet operations: ledger rows paired with atomic balance updates.

None of these functions commit. They are building blocks for settlement steps
and run inside whatever unit of work the settlement strategy opened, so a
balance change and its ledger row always land (or roll back) together.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.currency import round_currency
from libs.common.errors import InsufficientFunds, NotFound, OrphanedReference
from libs.common.errors import ValidationError
from libs.common.logging import get_logger
from services.members_service.models import Member
from services.wallet_service.models import (
    TransactionDirection,
    TransactionStatus,
    WalletTransaction,
)
from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

AUDIT_TOLERANCE = 0.01


# ---------------------------------------------------------------------------
# Deterministic references
# ---------------------------------------------------------------------------


def order_wallet_reference(order_id: uuid.UUID) -> str:
    """Ledger reference of the wallet debit that part-pays an order."""
    return f"order-{order_id}-wallet"


def referral_bonus_reference(referral_id: uuid.UUID, role: str) -> str:
    """Ledger reference of one side of a referral bonus (referrer / referee)."""
    return f"ref-bonus-{referral_id}-{role}"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_wallet_balance(db: AsyncSession, user_id: uuid.UUID) -> float:
    """Current balance from the denormalized field. Never recomputed here."""
    result = await db.execute(
        select(Member.wallet_balance).where(Member.id == user_id)
    )
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFound("Member not found")
    return round_currency(balance)


async def ensure_sufficient_balance(
    db: AsyncSession, user_id: uuid.UUID, amount: float
) -> float:
    """Raise ``InsufficientFunds`` when the balance cannot cover ``amount``.

    A pre-check for friendly errors only; the debit itself is still guarded by
    its conditional update.
    """
    balance = await get_wallet_balance(db, user_id)
    if balance < round_currency(amount):
        raise InsufficientFunds(required=round_currency(amount), available=balance)
    return balance


async def get_transaction(
    db: AsyncSession, reference: str
) -> Optional[WalletTransaction]:
    result = await db.execute(
        select(WalletTransaction).where(WalletTransaction.reference == reference)
    )
    return result.scalar_one_or_none()


async def list_transactions(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[WalletTransaction], int]:
    total = await db.scalar(
        select(func.count())
        .select_from(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
    )
    result = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
        .order_by(WalletTransaction.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), int(total or 0)


# ---------------------------------------------------------------------------
# Atomic balance primitives
# ---------------------------------------------------------------------------


async def increment_balance(
    db: AsyncSession, user_id: uuid.UUID, amount: float, *, reference: str
) -> None:
    """``wallet_balance = wallet_balance + amount`` in SQL.

    Raises ``OrphanedReference`` when the member row is gone.
    """
    result = await db.execute(
        update(Member)
        .where(Member.id == user_id)
        .values(wallet_balance=Member.wallet_balance + round_currency(amount))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise OrphanedReference(reference, "user")


async def decrement_balance(
    db: AsyncSession, user_id: uuid.UUID, amount: float
) -> bool:
    """Guarded decrement: only applies ``WHERE wallet_balance >= amount``.

    Returns False when the guard did not match (insufficient funds or a
    concurrent debit got there first).
    """
    amount = round_currency(amount)
    result = await db.execute(
        update(Member)
        .where(Member.id == user_id, Member.wallet_balance >= amount)
        .values(wallet_balance=Member.wallet_balance - amount)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def transition_transaction(
    db: AsyncSession,
    reference: str,
    to_status: TransactionStatus,
    *,
    from_status: TransactionStatus = TransactionStatus.PENDING,
) -> bool:
    """Move a ledger row from ``from_status`` to ``to_status``.

    This conditional update is the claim: for a given reference exactly one
    caller sees ``True``.
    """
    result = await db.execute(
        update(WalletTransaction)
        .where(
            WalletTransaction.reference == reference,
            WalletTransaction.status == from_status,
        )
        .values(status=to_status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ---------------------------------------------------------------------------
# Credit / Debit
# ---------------------------------------------------------------------------


async def credit_wallet(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    amount: float,
    reference: str,
    method: str,
    description: str,
    order_id: Optional[uuid.UUID] = None,
) -> WalletTransaction:
    """Append a COMPLETED CREDIT row and increment the balance.

    1. Idempotency check: a COMPLETED row with this reference is returned as is
    2. Insert ledger row (unique reference)
    3. Atomic SQL increment
    """
    amount = round_currency(amount)
    if amount <= 0:
        raise ValidationError("Credit amount must be positive")

    existing = await get_transaction(db, reference)
    if existing is not None:
        logger.info("Idempotent replay for credit reference=%s", reference)
        return existing

    txn = WalletTransaction(
        user_id=user_id,
        reference=reference,
        type=TransactionDirection.CREDIT,
        amount=amount,
        method=method,
        description=description,
        status=TransactionStatus.COMPLETED,
        order_id=order_id,
    )
    db.add(txn)
    await db.flush()

    await increment_balance(db, user_id, amount, reference=reference)
    logger.info("Credited ₦%.2f to %s (ref=%s)", amount, user_id, reference)
    return txn


async def debit_wallet(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    amount: float,
    reference: str,
    method: str,
    description: str,
    order_id: Optional[uuid.UUID] = None,
) -> WalletTransaction:
    """Guarded decrement plus one COMPLETED DEBIT row.

    Raises ``InsufficientFunds`` when the guard does not match; nothing is
    written in that case.
    """
    amount = round_currency(amount)
    if amount <= 0:
        raise ValidationError("Debit amount must be positive")

    existing = await get_transaction(db, reference)
    if existing is not None:
        logger.info("Idempotent replay for debit reference=%s", reference)
        return existing

    if not await decrement_balance(db, user_id, amount):
        available = await db.scalar(
            select(Member.wallet_balance).where(Member.id == user_id)
        )
        if available is None:
            raise NotFound("Member not found")
        raise InsufficientFunds(required=amount, available=round_currency(available))

    txn = WalletTransaction(
        user_id=user_id,
        reference=reference,
        type=TransactionDirection.DEBIT,
        amount=amount,
        method=method,
        description=description,
        status=TransactionStatus.COMPLETED,
        order_id=order_id,
    )
    db.add(txn)
    await db.flush()
    logger.info("Debited ₦%.2f from %s (ref=%s)", amount, user_id, reference)
    return txn


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass
class LedgerDrift:
    user_id: uuid.UUID
    stored_balance: float
    ledger_balance: float

    @property
    def drift(self) -> float:
        return round_currency(self.stored_balance - self.ledger_balance)


async def audit_wallet_ledger(
    db: AsyncSession,
    *,
    user_id: Optional[uuid.UUID] = None,
    tolerance: float = AUDIT_TOLERANCE,
) -> list[LedgerDrift]:
    """Recompute each balance from COMPLETED ledger rows and report drift.

    Read-only. Users whose stored balance differs from
    ``sum(credits) - sum(debits)`` by more than ``tolerance`` are returned.
    """
    signed_amount = case(
        (
            WalletTransaction.type == TransactionDirection.CREDIT,
            WalletTransaction.amount,
        ),
        else_=-WalletTransaction.amount,
    )
    ledger = (
        select(
            WalletTransaction.user_id.label("user_id"),
            func.sum(signed_amount).label("ledger_balance"),
        )
        .where(WalletTransaction.status == TransactionStatus.COMPLETED)
        .group_by(WalletTransaction.user_id)
        .subquery()
    )
    query = select(Member.id, Member.wallet_balance, ledger.c.ledger_balance).outerjoin(
        ledger, ledger.c.user_id == Member.id
    )
    if user_id is not None:
        query = query.where(Member.id == user_id)

    drifted: list[LedgerDrift] = []
    for member_id, stored, ledger_sum in (await db.execute(query)).all():
        entry = LedgerDrift(
            user_id=member_id,
            stored_balance=round_currency(stored or 0),
            ledger_balance=round_currency(ledger_sum or 0),
        )
        if abs(entry.drift) > tolerance:
            logger.warning(
                "Wallet ledger drift for %s: stored=%.2f ledger=%.2f",
                member_id,
                entry.stored_balance,
                entry.ledger_balance,
            )
            drifted.append(entry)
    return drifted
