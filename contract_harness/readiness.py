"""Readiness gate between deploy cycles and contract-dependent test steps."""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Optional


class ReadinessGate:
    """Single-slot gate: a flag plus at most one pending future.

    The flag is checked under the lock before a waiter is handed the pending
    future, so a step arriving after :meth:`open` never blocks. Each
    :meth:`close`/:meth:`open` pair resolves exactly one future, after which a
    new one is created by the next :meth:`close`.
    """

    def __init__(self, ready: bool = True) -> None:
        self._lock = threading.Lock()
        self._ready = ready
        self._pending: Optional[Future] = None if ready else Future()

    @property
    def ready(self) -> bool:
        with self._lock:
            return self._ready

    def close(self) -> None:
        with self._lock:
            self._ready = False
            if self._pending is None:
                self._pending = Future()

    def open(self) -> None:
        with self._lock:
            self._ready = True
            pending, self._pending = self._pending, None
        if pending is not None:
            pending.set_result(None)

    def wait(self, timeout: float | None = None) -> None:
        """Block until the gate opens.

        Raises:
            TimeoutError: when ``timeout`` elapses first.
        """

        with self._lock:
            if self._ready:
                return
            pending = self._pending
        pending.result(timeout)


__all__ = ["ReadinessGate"]
