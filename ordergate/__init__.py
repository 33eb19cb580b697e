"""
ordergate — order deduplication and payment reconciliation.

    from ordergate import orders as O     # Order intake, idempotency, duplicate scan
    from ordergate import payments as P   # Confirm, webhooks, refunds
    from ordergate import saga as S       # Compensating multi-step writes
"""

from ordergate import saga
from ordergate import lift
from ordergate import orders
from ordergate import payments
from ordergate._types import Clock
from ordergate.errors import AppError, AppErrors, ErrorKind

__version__ = "0.1.0"

__all__ = (
    "saga",
    "lift",
    "orders",
    "payments",
    "Clock",
    "AppError",
    "AppErrors",
    "ErrorKind",
)
