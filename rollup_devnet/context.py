"""
Cancellable deadline contexts shared by the waiters, the vault and the runner.

A context carries an optional absolute deadline (``time.monotonic`` based) and
a cancellation event. Children inherit the earliest deadline of their chain
and are cancelled together with their parent.
"""
from __future__ import annotations

import threading
import time
from typing import List, Optional

from .errors import Cancelled, ContextError, DeadlineExceeded


class Context:
    def __init__(self, parent: Optional["Context"] = None, deadline: Optional[float] = None) -> None:
        self._parent = parent
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List[Context] = []
        self._err: Optional[ContextError] = None
        if parent is not None:
            parent._attach(self)

    @classmethod
    def background(cls) -> "Context":
        return cls()

    def with_timeout(self, seconds: float) -> "Context":
        return Context(self, time.monotonic() + seconds)

    def with_cancel(self) -> "Context":
        return Context(self)

    def _attach(self, child: "Context") -> None:
        with self._lock:
            cancelled = self._event.is_set()
            if not cancelled:
                self._children.append(child)
        if cancelled:
            child._cancel(self._err or Cancelled())

    def _detach(self, child: "Context") -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def _cancel(self, err: ContextError) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._err = err
            self._event.set()
            children, self._children = self._children, []
        for child in children:
            child._cancel(err)
        if self._parent is not None:
            self._parent._detach(self)

    def cancel(self) -> None:
        self._cancel(Cancelled())

    def done(self) -> bool:
        if self._event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self._cancel(DeadlineExceeded())
            return True
        return False

    def err(self) -> Optional[ContextError]:
        if not self.done():
            return None
        return self._err

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def sleep(self, seconds: float) -> bool:
        """
        Sleep for ``seconds`` or until the context is done.

        Returns ``True`` when the full interval elapsed.
        """
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
            self.done()
            return False
        return not self._event.wait(seconds)

    def raise_if_done(self) -> None:
        err = self.err()
        if err is not None:
            raise err

    def __enter__(self) -> "Context":
        return self

    def __exit__(self, *exc) -> None:
        self.cancel()
