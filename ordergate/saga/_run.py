"""
Saga execution with automatic rollback.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog
from kungfu import Result, Ok, Error

from ordergate.saga._types import (
    Saga,
    SagaStep,
    SagaResult,
    SagaError,
    Then,
    Compensator,
)

logger = structlog.get_logger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# Execution State
# ═══════════════════════════════════════════════════════════════════════════════

type RecordedCompensator = tuple[str, Any, Compensator[Any]]


@dataclass(slots=True)
class _Run:
    """Mutable bookkeeping for a single saga execution."""

    compensators: list[RecordedCompensator] = field(default_factory=list)
    steps: int = 0
    failed_step: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# run_step() — Execute single step
# ═══════════════════════════════════════════════════════════════════════════════

async def run_step[T, E](step: SagaStep[T, E], state: _Run) -> Result[T, E]:
    """Execute single step, recording compensator on success."""
    state.steps += 1
    result = await step.action
    match result:
        case Ok(value):
            if step.compensate is not None:
                state.compensators.append((step.name, value, step.compensate))
            return Ok(value)
        case Error(e):
            state.failed_step = step.name
            return Error(e)


async def _execute[T, E](saga: Saga[T, E], state: _Run) -> Result[T, E]:
    match saga:
        case SagaStep():
            return await run_step(saga, state)
        case Then(inner, f):
            inner_result = await _execute(inner, state)
            match inner_result:
                case Ok(value):
                    return await _execute(f(value), state)
                case Error(e):
                    return Error(e)
    raise TypeError(f"Not a saga: {saga!r}")


# ═══════════════════════════════════════════════════════════════════════════════
# run_compensators() — Rollback
# ═══════════════════════════════════════════════════════════════════════════════

async def run_compensators(
    compensators: list[RecordedCompensator],
) -> tuple[int, int]:
    """
    Run compensators in reverse. Returns (run, failed).

    A failing compensator does not stop the rest; the failure is logged
    so orphaned rows stay diagnosable.
    """
    comp_run = 0
    comp_failed = 0

    for name, value, comp in reversed(compensators):
        try:
            await comp(value)
            comp_run += 1
        except Exception as exc:
            comp_failed += 1
            logger.error("saga.compensator_failed", step=name, error=str(exc))

    return comp_run, comp_failed


# ═══════════════════════════════════════════════════════════════════════════════
# run() — Execute Saga
# ═══════════════════════════════════════════════════════════════════════════════

async def run[T, E](saga: Saga[T, E]) -> Result[SagaResult[T], SagaError[E]]:
    """
    Execute a saga step or chain with automatic rollback on failure.

    On success: returns SagaResult with value and metadata.
    On failure: runs recorded compensators in reverse, returns SagaError.

    Example:
        from ordergate import saga as S

        result = await S.run(
            S.step(insert_order, delete_order)
            .then(lambda o: S.step(insert_items(o)))
            .then(lambda o: S.step(reserve_inventory(o)))
        )

        match result:
            case Ok(r):
                print(f"Created: {r.value}")
            case Error(e):
                print(f"Failed at {e.step_name}, rollback ok: {e.rollback_complete}")
    """
    state = _Run()
    result = await _execute(saga, state)

    match result:
        case Ok(value):
            return Ok(SagaResult(
                value=value,
                steps_executed=state.steps,
                compensators_recorded=len(state.compensators),
            ))

        case Error(error):
            comp_run, comp_failed = await run_compensators(state.compensators)
            if comp_failed:
                logger.warning(
                    "saga.rollback_incomplete",
                    step=state.failed_step,
                    compensators_run=comp_run,
                    compensators_failed=comp_failed,
                )

            return Error(SagaError(
                error=error,
                step_failed=state.steps,
                step_name=state.failed_step,
                compensators_run=comp_run,
                compensators_failed=comp_failed,
            ))


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = ("run", "run_step", "run_compensators")
