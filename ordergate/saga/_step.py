"""
Saga step creation.
"""

from __future__ import annotations

from kungfu import LazyCoroResult

from ordergate.saga._types import SagaStep, Compensator

# ═══════════════════════════════════════════════════════════════════════════════
# step() — Primary Constructor
# ═══════════════════════════════════════════════════════════════════════════════


def step[T, E](
    action: LazyCoroResult[T, E],
    compensate: Compensator[T] | None = None,
    *,
    name: str = "step",
) -> SagaStep[T, E]:
    """
    Create a compensated saga step.

    Args:
        action: The operation to perform (LazyCoroResult)
        compensate: The compensation action if rollback needed
        name: Label used in logs and SagaError.step_name

    Returns:
        SagaStep that can be chained with .then()

    Example:
        from ordergate import saga as S
        from ordergate import lift as L

        create = (
            S.step(
                L.from_awaitable(lambda: repo.insert_order(draft)),
                compensate=lambda order: repo.delete_order(order.id),
                name="insert_order",
            )
            .then(lambda order: S.step(
                L.from_awaitable(lambda: repo.insert_items(order, lines)),
                name="insert_items",
            ))
        )
    """
    return SagaStep(action=action, compensate=compensate, name=name)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = ("step",)
