"""
Saga types — core data structures.
"""

from __future__ import annotations

from dataclasses import dataclass
from collections.abc import Callable, Awaitable
from typing import Any

from kungfu import LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Compensator — Undo Action
# ═══════════════════════════════════════════════════════════════════════════════

type Compensator[T] = Callable[[T], Awaitable[None]]
"""Compensation function that receives the action result and undoes it."""

# ═══════════════════════════════════════════════════════════════════════════════
# SagaStep — Single Step with Compensation
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SagaStep[T, E]:
    """
    A single saga step: action + compensator.

    When action succeeds, compensator is recorded.
    If a later step fails, recorded compensators run in reverse.
    """

    action: LazyCoroResult[T, E]
    compensate: Compensator[T] | None
    name: str = "step"

    def then[U](self, f: Callable[[T], SagaStep[U, E]]) -> Then[T, U, E]:
        """Chain another saga step after this one."""
        return Then(self, f)


# ═══════════════════════════════════════════════════════════════════════════════
# Then — Sequential Composition
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Then[T, U, E]:
    """
    Sequential composition (monadic bind).

    inner may itself be a Then, so chains nest to the left:
        step(a).then(f).then(g) == Then(Then(a, f), g)
    """

    inner: SagaStep[T, E] | Then[Any, T, E]
    f: Callable[[T], SagaStep[U, E]]

    def then[V](self, g: Callable[[U], SagaStep[V, E]]) -> Then[U, V, E]:
        """Chain another saga step after this chain."""
        return Then(self, g)


type Saga[T, E] = SagaStep[T, E] | Then[Any, T, E]
"""Anything run() accepts."""

# ═══════════════════════════════════════════════════════════════════════════════
# Result Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SagaResult[T]:
    """Successful saga result with metadata."""

    value: T
    steps_executed: int
    compensators_recorded: int


@dataclass(frozen=True, slots=True)
class SagaError[E]:
    """Saga error with rollback status."""

    error: E
    step_failed: int
    step_name: str
    compensators_run: int
    compensators_failed: int

    @property
    def rollback_complete(self) -> bool:
        return self.compensators_failed == 0


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Compensator",
    "SagaStep",
    "Then",
    "Saga",
    "SagaResult",
    "SagaError",
)
