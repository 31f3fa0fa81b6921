"""Post-commit side effects.

Notifications and emails are collected while a settlement runs and are only
dispatched after it commits. A failing side effect is logged and skipped; it
can never roll back the financial change that triggered it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from libs.common.logging import get_logger

logger = get_logger(__name__)


@dataclass
class _Effect:
    label: str
    func: Callable[..., Awaitable[Any]]
    args: tuple
    kwargs: dict


class PostCommitQueue:
    """Ordered queue of awaitables to run once the unit of work is durable."""

    def __init__(self) -> None:
        self._effects: list[_Effect] = []

    def __len__(self) -> int:
        return len(self._effects)

    def add(self, label: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> None:
        self._effects.append(_Effect(label, func, args, kwargs))

    def clear(self) -> None:
        self._effects.clear()

    async def dispatch(self) -> int:
        """Run queued effects in order. Returns the number that failed."""
        effects, self._effects = self._effects, []
        failures = 0
        for effect in effects:
            try:
                await effect.func(*effect.args, **effect.kwargs)
            except Exception as exc:
                failures += 1
                logger.error("Side effect '%s' failed: %s", effect.label, exc)
        return failures
