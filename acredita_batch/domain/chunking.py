"""
Pure chunk planning for bulk approval.

Shared by real runs and dry runs so both report the same chunk sizes.
ZERO I/O.
"""

from __future__ import annotations

from typing import Sequence, TypeVar

T = TypeVar("T")


def plan_chunks(total: int, batch_size: int) -> tuple[int, ...]:
    """Sizes of consecutive chunks covering ``total`` items.

    >>> plan_chunks(250, 100)
    (100, 100, 50)
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be greater than zero")
    if total <= 0:
        return ()
    full, rest = divmod(total, batch_size)
    return (batch_size,) * full + ((rest,) if rest else ())


def split(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split ``items`` following ``plan_chunks``."""
    chunks: list[list[T]] = []
    start = 0
    for size in plan_chunks(len(items), batch_size):
        chunks.append(list(items[start:start + size]))
        start += size
    return chunks
