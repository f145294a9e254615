"""Run an initialisation function exactly once across threads."""

from __future__ import annotations

import threading
from typing import Any, Callable


class Once:
    """A predicate that lets a function run once and only once.

    The first caller of :meth:`run` executes the function while later callers
    block until it has finished. If the function raises, the predicate stays
    unset and the next caller tries again.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._done = False
        self._owner: int | None = None

    def run(self, func: Callable[..., Any], *args: Any) -> bool:
        """Call ``func(*args)`` unless it has already completed.

        Returns True if this call ran the function, False otherwise.
        """
        if self._done:
            return False
        me = threading.get_ident()
        if self._owner == me:
            raise RuntimeError("Once.run called recursively from its own function")
        with self._lock:
            if self._done:
                return False
            self._owner = me
            try:
                func(*args)
            finally:
                self._owner = None
            self._done = True
        return True

    def done(self) -> bool:
        """Whether the function has completed."""
        return self._done