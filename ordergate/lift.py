"""
Lift — Helpers for lifting values and blocking calls into LazyCoroResult.

Re-exports from combinators.lift with ordergate-specific additions.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Awaitable

from kungfu import LazyCoroResult, Result

# Re-export the parts of combinators.lift the services use
from combinators.lift import (
    pure,
    fail,
    catching_async,
)


# ═══════════════════════════════════════════════════════════════════════════════
# ordergate-specific helpers
# ═══════════════════════════════════════════════════════════════════════════════

def from_result[T, E](result: Result[T, E]) -> LazyCoroResult[T, E]:
    """Lift a Result into LazyCoroResult."""
    async def _run() -> Result[T, E]:
        return result
    return LazyCoroResult(_run)


def from_awaitable[T, E](
    awaitable_fn: Callable[[], Awaitable[Result[T, E]]],
) -> LazyCoroResult[T, E]:
    """
    Defer an async function that already returns a Result.

    Repository methods return Result directly; this makes them
    usable as saga actions without re-wrapping errors.
    """
    async def _run() -> Result[T, E]:
        return await awaitable_fn()
    return LazyCoroResult(_run)


def in_thread[T, E](
    fn: Callable[[], T],
    on_error: Callable[[Exception], E],
) -> LazyCoroResult[T, E]:
    """
    Run a blocking callable in the default executor.

    Exceptions raised by fn become Error(on_error(exc)).

    Example:
        L.in_thread(
            lambda: session.post(url, json=body, timeout=15),
            on_error=lambda e: ProviderFailure(str(e)),
        )
    """
    return catching_async(lambda: asyncio.to_thread(fn), on_error=on_error)


__all__ = (
    # From combinators.lift
    "pure",
    "fail",
    "catching_async",
    # ordergate additions
    "from_result",
    "from_awaitable",
    "in_thread",
)
