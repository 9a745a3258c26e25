"""
Batch progress reporting.
"""

from enum import Enum


class Direction(Enum):
    SEND = "send"
    RECEIVE = "receive"


def compute_percentage(done: int, total: int) -> int:
    """
    Whole-number percentage of ``done`` out of ``total``, rounding halves up.

    An empty batch is complete by definition.

    Example:
        >>> compute_percentage(1, 8)
        13
        >>> compute_percentage(0, 0)
        100

    """
    if total <= 0:
        return 100
    # Integer arithmetic; float rounding would turn 12.5 into 12
    return min(100, (200 * done + total) // (2 * total))


class ProgressTracker:
    """
    Tracks bytes moved in one batch and yields a non-decreasing percentage.
    """

    def __init__(self, total: int) -> None:
        if total < 0:
            raise ValueError(f"total must be non-negative, got {total}")
        self.total = total
        self.done = 0
        self._last = 0

    @property
    def percentage(self) -> int:
        return self._last

    def advance(self, nbytes: int) -> int:
        self.done += nbytes
        self._last = max(self._last, compute_percentage(self.done, self.total))
        return self._last

    def complete(self) -> int:
        self.done = max(self.done, self.total)
        self._last = 100
        return self._last
