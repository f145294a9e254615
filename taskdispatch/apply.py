"""Run a function over a range of indices on several threads at once."""

from __future__ import annotations

import os
import threading
from typing import Callable

MAX_WORKERS = 256


def max_workers() -> int:
    """The default number of threads used by :func:`apply`."""
    return min(os.cpu_count() or 1, MAX_WORKERS)


class _ApplyState:
    """Work shared by the threads of one :func:`apply` call."""

    def __init__(self, iterations: int, func: Callable[[int], object]) -> None:
        self.iterations = iterations
        self.func = func
        self.error: BaseException | None = None
        self._next = 0
        self._lock = threading.Lock()

    def _claim(self) -> int | None:
        with self._lock:
            if self.error is not None or self._next >= self.iterations:
                return None
            index = self._next
            self._next += 1
            return index

    def work(self) -> None:
        while (index := self._claim()) is not None:
            try:
                self.func(index)
            except BaseException as exc:  # re-raised by the caller
                with self._lock:
                    if self.error is None:
                        self.error = exc
                return


def apply(iterations: int, func: Callable[[int], object], workers: int | None = None) -> None:
    """Call ``func(i)`` for every ``i`` in ``range(iterations)`` and wait for all.

    Indices are handed out to up to ``workers`` threads (the calling thread
    among them), never more than ``MAX_WORKERS`` nor more than there are
    iterations. With a single worker the calls run in order on the calling
    thread. The first exception raised by ``func`` stops further indices from
    being handed out and is raised once every thread has finished.
    """
    if iterations < 0:
        raise ValueError("iterations must not be negative")
    if workers is None:
        workers = max_workers()
    elif workers < 1:
        raise ValueError("workers must be at least 1")
    if iterations == 0:
        return
    count = min(workers, MAX_WORKERS, iterations)
    if count <= 1:
        for index in range(iterations):
            func(index)
        return

    state = _ApplyState(iterations, func)
    threads = [
        threading.Thread(target=state.work, name=f"apply-{n}", daemon=True)
        for n in range(1, count)
    ]
    for thread in threads:
        thread.start()
    state.work()
    for thread in threads:
        thread.join()
    if state.error is not None:
        raise state.error