import threading
import time
import weakref
from typing import Optional

from relayer_exporter.errors import CancellationError


class Context:
    """Cancellation token with an optional deadline.

    The root context lives as long as the process and is cancelled on
    shutdown. Every scrape works on a child with its own deadline; cancelling
    a parent cancels all of its children.
    """

    def __init__(self, timeout: Optional[float] = None, parent: Optional["Context"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children = weakref.WeakSet()
        self.deadline = None
        if timeout is not None:
            self.deadline = time.monotonic() + timeout
        if parent is not None and parent.deadline is not None:
            if self.deadline is None or parent.deadline < self.deadline:
                self.deadline = parent.deadline

    def child(self, timeout: Optional[float] = None) -> "Context":
        ctx = Context(timeout=timeout, parent=self)
        with self._lock:
            self._children.add(ctx)
        if self.cancelled():
            ctx.cancel()
        return ctx

    def cancel(self):
        self._event.set()
        with self._lock:
            children = list(self._children)
        for child in children:
            child.cancel()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if cancelled meanwhile."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._event.wait(max(0.0, seconds))
        return self.cancelled()

    def check(self, what: str = "operation"):
        if self.cancelled():
            raise CancellationError(f"{what} cancelled")
