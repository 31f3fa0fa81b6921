"""Settlement strategies: how a multi-row financial change gets committed.

A settlement is an ordered list of ``SettlementStep``s that all take the same
``AsyncSession``. Two strategies run them:

- ``AtomicTransaction``: every step inside one transaction, one commit. Any
  exception rolls the whole unit back.
- ``CompensatingSequence``: for stores without multi-statement transactions.
  Each step commits on its own, in list order. When a step fails, the
  ``compensate`` hooks of the already-committed steps run in reverse order.
  Callers order their steps so that the first write is the atomic claim
  (a conditional update or unique insert); a crash after the claim is then
  visible to the idempotency gate instead of being re-applied.

Pick one with ``get_settlement_strategy()``; call sites never branch on the
capability flag themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from libs.common.config import get_settings
from libs.common.logging import get_logger
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

StepFn = Callable[[AsyncSession], Awaitable[Any]]
CompensateFn = Callable[[AsyncSession], Awaitable[None]]


@dataclass
class SettlementStep:
    name: str
    apply: StepFn
    compensate: Optional[CompensateFn] = None


class SettlementStrategy:
    """Runs settlement steps; returns each step's result in order."""

    atomic: bool = True

    async def run(
        self, db: AsyncSession, steps: Sequence[SettlementStep]
    ) -> list[Any]:
        raise NotImplementedError


class AtomicTransaction(SettlementStrategy):
    atomic = True

    async def run(
        self, db: AsyncSession, steps: Sequence[SettlementStep]
    ) -> list[Any]:
        results: list[Any] = []
        try:
            for step in steps:
                results.append(await step.apply(db))
                await db.flush()
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return results


class CompensatingSequence(SettlementStrategy):
    atomic = False

    async def run(
        self, db: AsyncSession, steps: Sequence[SettlementStep]
    ) -> list[Any]:
        results: list[Any] = []
        committed: list[SettlementStep] = []
        for step in steps:
            try:
                results.append(await step.apply(db))
                await db.commit()
            except Exception as exc:
                await db.rollback()
                if committed:
                    logger.warning(
                        "Settlement step '%s' failed after %d committed step(s): %s",
                        step.name,
                        len(committed),
                        exc,
                    )
                    await self._compensate(db, committed)
                raise
            committed.append(step)
        return results

    async def _compensate(
        self, db: AsyncSession, committed: list[SettlementStep]
    ) -> None:
        for step in reversed(committed):
            if step.compensate is None:
                continue
            try:
                await step.compensate(db)
                await db.commit()
            except Exception:
                await db.rollback()
                logger.exception(
                    "Compensation for step '%s' failed; manual review required",
                    step.name,
                )


def get_settlement_strategy(
    supports_transactions: Optional[bool] = None,
) -> SettlementStrategy:
    """Select the strategy from the storage capability flag."""
    if supports_transactions is None:
        supports_transactions = get_settings().DB_SUPPORTS_TRANSACTIONS
    if supports_transactions:
        return AtomicTransaction()
    return CompensatingSequence()
