"""
Order signature — canonical hash of a cart's (product_id, qty) pairs.

Two carts with the same lines in any order hash identically; anything
else about the request (prices, customer, options) is ignored.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from typing import Any


def canonical_lines(lines: Iterable[tuple[str, int]]) -> str:
    """Sorted "id:qty|id:qty" form used as hash input."""
    ordered = sorted((str(product_id), int(qty)) for product_id, qty in lines)
    return "|".join(f"{product_id}:{qty}" for product_id, qty in ordered)


def signature_of(lines: Iterable[tuple[str, int]]) -> str:
    """
    SHA-256 hex digest of the canonical cart.

    Example:
        signature_of([("p2", 1), ("p1", 2)]) == signature_of([("p1", 2), ("p2", 1)])
    """
    return hashlib.sha256(canonical_lines(lines).encode("utf-8")).hexdigest()


def signature_from_items(items: Iterable[Any]) -> str:
    """Signature of stored order items (anything with product_id and qty)."""
    return signature_of((item.product_id, item.qty) for item in items)


EMPTY_SIGNATURE = signature_of(())
"""Signature of an order whose items are missing."""


__all__ = ("canonical_lines", "signature_of", "signature_from_items", "EMPTY_SIGNATURE")
