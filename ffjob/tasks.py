"""
Small structured-concurrency helper.

TaskGroup runs callables on their own threads, records the first exception
raised by any of them, and cancels the group when that happens so the other
tasks can wind down. wait() joins every thread and re-raises the first error.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

POLL_INTERVAL_SEC = 0.05


class TaskGroup:
    """
    Group of threads joined with first-error-wins semantics.

    Args:
        parent: Optional cancellation event owned by the caller. Setting it
            cancels the group.
        name: Prefix for thread names
    """

    def __init__(self, parent: Optional[threading.Event] = None, name: str = "ffjob") -> None:
        self._parent = parent
        self._name = name
        self._cancelled = threading.Event()
        self._threads: List[threading.Thread] = []
        self._error: Optional[BaseException] = None
        self._error_lock = threading.Lock()

    @property
    def error(self) -> Optional[BaseException]:
        with self._error_lock:
            return self._error

    def cancel(self) -> None:
        self._cancelled.set()

    def cancelled(self) -> bool:
        """True once the caller's event is set or any task has failed."""
        if self._parent is not None and self._parent.is_set():
            self._cancelled.set()
        return self._cancelled.is_set()

    def wait_any(self, event: threading.Event, timeout: Optional[float] = None) -> bool:
        """
        Block until event is set or the group is cancelled.

        Returns:
            True if event was set, False on cancellation or timeout
        """
        remaining = timeout
        while True:
            if event.is_set():
                return True
            if self.cancelled():
                return False
            step = POLL_INTERVAL_SEC if remaining is None else min(POLL_INTERVAL_SEC, remaining)
            if event.wait(step):
                return True
            if remaining is not None:
                remaining -= step
                if remaining <= 0:
                    return False

    def go(self, fn: Callable[[], None], name: str) -> None:
        """Run fn on a new thread."""
        def runner() -> None:
            try:
                fn()
            except BaseException as e:
                with self._error_lock:
                    if self._error is None:
                        self._error = e
                logger.debug(f"Task {name} failed: {e!r}")
                self._cancelled.set()

        thread = threading.Thread(target=runner, name=f"{self._name}-{name}", daemon=True)
        self._threads.append(thread)
        thread.start()

    def wait(self) -> None:
        """
        Join all tasks.

        Raises:
            The first exception raised by any task
        """
        for thread in self._threads:
            thread.join()
        error = self.error
        if error is not None:
            raise error
