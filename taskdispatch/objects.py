"""Reference-counted objects with suspension, context and finalizers."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

_log = logging.getLogger(__name__)


class ClientCrash(RuntimeError):
    """The caller misused an object (over-release, over-resume and the like)."""


class InternalCrash(RuntimeError):
    """An object's internal bookkeeping was violated."""


class DispatchObject:
    """Base object with external and internal reference counts.

    External references belong to clients (:meth:`retain`, :meth:`release`);
    internal references belong to the machinery (:meth:`internal_retain`,
    :meth:`internal_release`). When the last external reference goes, the
    internal one held on its behalf is dropped; when that reaches zero the
    object is disposed, its finalizer is called with its context on the
    target, and the target is released. Global objects ignore all of this.
    """

    def __init__(self, target: DispatchObject | None = None, is_global: bool = False) -> None:
        self._lock = threading.Lock()
        self._is_global = is_global
        self._xref_count = 1
        self._ref_count = 1
        self._suspend_count = 0
        self._context: Any = None
        self._finalizer: Callable[[Any], Any] | None = None
        self._disposed = False
        self._running = threading.Event()
        self._running.set()
        self.target = target
        if target is not None:
            target.internal_retain()

    @property
    def is_global(self) -> bool:
        return self._is_global

    @property
    def xref_count(self) -> int:
        return self._xref_count

    @property
    def ref_count(self) -> int:
        return self._ref_count

    @property
    def suspend_count(self) -> int:
        return self._suspend_count

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def context(self) -> Any:
        """Application-defined context; assignments to global objects are ignored."""
        return self._context

    @context.setter
    def context(self, value: Any) -> None:
        if not self._is_global:
            self._context = value

    @property
    def finalizer(self) -> Callable[[Any], Any] | None:
        return self._finalizer

    def set_finalizer(self, finalizer: Callable[[Any], Any] | None) -> None:
        """Set the function called with the context once the object is disposed."""
        self._finalizer = finalizer

    def retain(self) -> None:
        """Take an external reference."""
        if self._is_global:
            return
        with self._lock:
            if self._xref_count == 0:
                raise ClientCrash("Resurrection of an object")
            self._xref_count += 1

    def internal_retain(self) -> None:
        """Take an internal reference."""
        if self._is_global:
            return
        with self._lock:
            if self._ref_count == 0:
                raise ClientCrash("Resurrection of an object")
            self._ref_count += 1

    def release(self) -> None:
        """Drop an external reference."""
        if self._is_global:
            return
        with self._lock:
            old = self._xref_count
            if old > 1:
                self._xref_count -= 1
                return
            if old < 1:
                raise ClientCrash("Over-release of an object")
            if self._suspend_count > 0:
                raise ClientCrash("Release of a suspended object")
            self._xref_count = 0
        self.internal_release()

    def internal_release(self) -> None:
        """Drop an internal reference, disposing the object at zero."""
        if self._is_global:
            return
        with self._lock:
            old = self._ref_count
            if old > 1:
                self._ref_count -= 1
                return
            if old < 1:
                raise InternalCrash("over-release")
            if self._xref_count:
                raise InternalCrash("release while external references exist")
            self._ref_count = 0
        self._dispose()

    def _dispose(self) -> None:
        target = self.target
        func = self._finalizer
        context = self._context
        self._disposed = True
        self._finalizer = None
        if func is not None and context is not None:
            if target is not None:
                target._submit(func, context)
            else:
                func(context)
        if target is not None:
            target.internal_release()

    def _submit(self, func: Callable[[Any], Any], argument: Any) -> None:
        """Run ``func(argument)`` on behalf of this object; runs it immediately."""
        func(argument)

    def _wakeup(self) -> None:
        """Mark the object runnable again, releasing anything waiting on it."""
        self._running.set()

    def _wait_running(self, timeout: float | None = None) -> bool:
        """Block until the object is not suspended; False on timeout."""
        return self._running.wait(timeout)

    def suspend(self) -> None:
        """Suspend the object; each call must be balanced by :meth:`resume`."""
        if self._is_global:
            return
        with self._lock:
            self._suspend_count += 1
            self._running.clear()

    def resume(self) -> None:
        """Undo one :meth:`suspend`, waking the object when none remain."""
        if self._is_global:
            return
        with self._lock:
            if self._suspend_count == 0:
                raise ClientCrash("Over-resume of an object")
            self._suspend_count -= 1
            woken = self._suspend_count == 0
        if woken:
            self._wakeup()

    def is_suspended(self) -> bool:
        return self._suspend_count > 0

    def debug_attr(self) -> str:
        """Describe the reference and suspension counts."""
        return f"refcnt = {self._ref_count:#x}, suspend_cnt = {self._suspend_count:#x}, "

    def debug(self, message: str) -> str:
        """Log and return a description of the object followed by ``message``."""
        attrs = self.debug_attr().rstrip(", ")
        text = f"{type(self).__name__}[{id(self):#x}] = {{ {attrs} }}: {message}"
        _log.debug("%s", text)
        return text