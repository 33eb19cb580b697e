"""
Saga — multi-step writes with compensation.

    from ordergate import saga as S

    saga = S.step(action, compensate).then(lambda v: S.step(action2, compensate2))
    result = await S.run(saga)

Compensation is best-effort: a crash between steps can leave the
already-committed steps in place.
"""

from __future__ import annotations

from ordergate.saga._types import (
    Compensator,
    SagaStep,
    Then,
    Saga,
    SagaResult,
    SagaError,
)
from ordergate.saga._step import step
from ordergate.saga._run import run, run_step, run_compensators

__all__ = (
    "Compensator",
    "SagaStep",
    "Then",
    "Saga",
    "SagaResult",
    "SagaError",
    "step",
    "run",
    "run_step",
    "run_compensators",
)
