"""
Core types for ordergate.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

# ═══════════════════════════════════════════════════════════════════════════════
# Clock
# ═══════════════════════════════════════════════════════════════════════════════

type Clock = Callable[[], datetime]
"""Source of "now". Injected so windows and timestamps are testable."""


def utcnow() -> datetime:
    """
    Naive UTC timestamp.

    Note: SQLite drops tzinfo on the way back, so every stored
    datetime is naive UTC and compared as such.
    """
    return datetime.now(UTC).replace(tzinfo=None)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Clock",
    "utcnow",
)
