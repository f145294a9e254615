"""Measure the average time a callable takes to run.

Useful for debugging and performance work. Compare serial and concurrent
versions of the same code, and look for inflection points as concurrency
changes: compute-bound code scales, memory-bound code barely changes, and
code bound by critical sections gets slower.
"""

from __future__ import annotations

import time
from typing import Callable

from taskdispatch.once import Once

_CALIBRATION_COUNT = 10_000_000


def _dummy() -> None:
    pass


class _Calibration:
    """Cost of the timing loop itself, measured once per process."""

    def __init__(self) -> None:
        self.once = Once()
        self.cost_ns = 0

    def measure(self) -> None:
        func = _dummy
        start = time.perf_counter_ns()
        for _ in range(_CALIBRATION_COUNT):
            func()
        delta = time.perf_counter_ns() - start
        self.cost_ns = delta // _CALIBRATION_COUNT


_calibration = _Calibration()


def loop_cost() -> int:
    """Nanoseconds the timing loop spends per iteration on an empty call."""
    _calibration.once.run(_calibration.measure)
    return _calibration.cost_ns


def benchmark(count: int, func: Callable[[], object]) -> int:
    """Call ``func`` ``count`` times serially and return the average nanoseconds.

    The overhead of the loop is subtracted; the result never goes below zero.
    A count of zero returns 0 without calling ``func``.
    """
    if count < 0:
        raise ValueError("count must not be negative")
    cost = loop_cost()
    if count == 0:
        return 0
    start = time.perf_counter_ns()
    for _ in range(count):
        func()
    delta = time.perf_counter_ns() - start
    return max(0, delta // count - cost)