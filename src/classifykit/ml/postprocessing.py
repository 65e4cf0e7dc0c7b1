"""Output dequantization and top-K ranking."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

MAX_RESULTS: int = 3


def dequantize(raw: NDArray[np.generic], mean: float, std: float) -> NDArray[np.float32]:
    """Apply ``(raw - mean) / std`` per class and flatten to one score per class."""
    scores = (np.asarray(raw, dtype=np.float32).reshape(-1) - np.float32(mean)) / np.float32(std)
    return scores


def top_k(labels: Sequence[str], scores: Sequence[float], k: int = MAX_RESULTS) -> list[tuple[int, str, float]]:
    """Select the ``k`` best (index, label, score) triples.

    Uses a bounded min-heap of size ``k``. Ordering is by descending score;
    equal scores are ordered by label, then by class index, so the result is
    deterministic regardless of input order.
    """
    if len(labels) != len(scores):
        raise ValueError(f"{len(labels)} labels for {len(scores)} scores")
    if k <= 0:
        return []

    # Heap keys invert the label/index so the heap root is the entry to evict.
    heap: list[tuple[float, _Reversed, int]] = []
    for index, (label, score) in enumerate(zip(labels, scores, strict=True)):
        entry = (float(score), _Reversed((label, index)), index)
        if len(heap) < k:
            heapq.heappush(heap, entry)
        elif entry > heap[0]:
            heapq.heapreplace(heap, entry)

    ranked = sorted(heap, reverse=True)
    return [(index, labels[index], score) for score, _, index in ranked]


class _Reversed:
    """Wraps a value so that comparisons are inverted."""

    __slots__ = ("value",)

    def __init__(self, value: tuple[str, int]) -> None:
        self.value = value

    def __lt__(self, other: _Reversed) -> bool:
        return self.value > other.value

    def __gt__(self, other: _Reversed) -> bool:
        return self.value < other.value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _Reversed) and self.value == other.value

    def __hash__(self) -> int:
        return hash(self.value)
