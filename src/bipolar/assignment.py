# Copyright (c) Syntropy Systems
"""Deterministic shard assignment.

Each treatment gets its own permutation of the shard space, derived only
from ``(seed, treatment name, shard_count)``. A treatment with split ``p``
owns the first ``round(n * p / 100)`` shards of its permutation.
Incremental builds depend on this: raising a split only extends the prefix,
so the shards treated by the previous build are never revisited.

The generator is SHA-256 in counter mode rather than :mod:`random`, so an
ordering is identical on every platform and Python version.
"""
from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING

from typing_extensions import assert_never

from bipolar.models.config import ProxyStrategy, RandomStrategy

if TYPE_CHECKING:
    from bipolar.models.config import Assignment, Strategy

logger = logging.getLogger(__name__)

_WORD_BITS = 64
_WORD_SPACE = 1 << _WORD_BITS


class HashStream:
    """Stream of 64-bit words from SHA-256 over ``key || counter``."""

    def __init__(self, key: bytes) -> None:
        self._key = key
        self._counter = 0
        self._words: list[int] = []

    def next_word(self) -> int:
        """Next unsigned 64-bit word."""
        if not self._words:
            block = hashlib.sha256(
                self._key + self._counter.to_bytes(8, "big")
            ).digest()
            self._counter += 1
            # Reversed so pop() yields the words in block order.
            self._words = [
                int.from_bytes(block[i : i + 8], "big") for i in (24, 16, 8, 0)
            ]
        return self._words.pop()

    def below(self, bound: int) -> int:
        """Uniform integer in ``[0, bound)`` by rejection sampling."""
        if bound <= 0:
            msg = f"bound must be positive, got {bound}"
            raise ValueError(msg)
        limit = _WORD_SPACE - (_WORD_SPACE % bound)
        while True:
            value = self.next_word()
            if value < limit:
                return value % bound


def seed_material(seed: int, treatment_name: str) -> bytes:
    """256-bit generator key for a (seed, treatment) pair."""
    return hashlib.sha256(f"{seed}:{treatment_name}".encode()).digest()


def deterministic_order(seed: int, treatment_name: str, shard_count: int) -> list[int]:
    """Reproducible permutation of ``range(shard_count)``.

    A full Fisher-Yates shuffle driven by :class:`HashStream`.
    """
    order = list(range(shard_count))
    stream = HashStream(seed_material(seed, treatment_name))
    for i in range(shard_count - 1, 0, -1):
        j = stream.below(i + 1)
        order[i], order[j] = order[j], order[i]
    return order


def proxy_order(minmax: tuple[int, int]) -> list[int]:
    """Identity order of the local shard range."""
    return list(range(*minmax))


def shard_order(
    strategy: Strategy,
    treatment_name: str,
    shard_count: int,
    minmax: tuple[int, int],
) -> list[int]:
    """Ordering of shard ids for one treatment under ``strategy``.

    Random orders span the whole ``[0, shard_count)`` space so they stay
    stable when this instance only owns a slice of the fleet.
    """
    if isinstance(strategy, RandomStrategy):
        return deterministic_order(strategy.seed, treatment_name, shard_count)
    if isinstance(strategy, ProxyStrategy):
        return proxy_order(minmax)
    assert_never(strategy)


def resolve_count(ordered_ids: list[int], split_percent: int) -> int:
    """Number of shards a split covers, rounding halves up."""
    if not 0 <= split_percent <= 100:
        msg = f"split must be between 0 and 100, got {split_percent}"
        raise ValueError(msg)
    return (len(ordered_ids) * split_percent + 50) // 100


def treatment_plan(
    assignment: Assignment,
    treatment_name: str,
    shard_count: int,
    minmax: tuple[int, int],
) -> list[int] | None:
    """Ordered shard ids assigned to a treatment.

    Returns None when the treatment has no configured split.
    """
    split = assignment.split.get(treatment_name)
    if split is None:
        return None
    order = shard_order(assignment.strategy, treatment_name, shard_count, minmax)
    return order[: resolve_count(order, split)]
