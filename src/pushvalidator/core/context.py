# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Cancellable deadline context shared by HTTP calls, retries and background loops.

A Context is cancelled explicitly (`cancel()`), by its deadline, or by its
parent. Blocking helpers never sleep past cancellation: `sleep()` wakes as
soon as the context is done and raises the matching error.
"""

from __future__ import annotations

import threading, time
from typing import Optional

_SLICE = 0.05


class ContextError(Exception):
    pass


class CancelledError(ContextError):
    def __init__(self, message: str = "context canceled"):
        super().__init__(message)


class DeadlineExceeded(ContextError):
    def __init__(self, message: str = "context deadline exceeded"):
        super().__init__(message)


class Context:
    def __init__(self, timeout: Optional[float] = None, parent: Optional["Context"] = None):
        self._event = threading.Event()
        self._parent = parent
        deadline = None
        if timeout is not None:
            deadline = time.monotonic() + max(0.0, float(timeout))
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

    def cancel(self) -> None:
        self._event.set()

    def child(self, timeout: Optional[float] = None) -> "Context":
        return Context(timeout=timeout, parent=self)

    def err(self) -> Optional[ContextError]:
        if self._event.is_set():
            return CancelledError()
        if self._parent is not None:
            perr = self._parent.err()
            if perr is not None:
                return perr
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return DeadlineExceeded()
        return None

    def done(self) -> bool:
        return self.err() is not None

    def check(self) -> None:
        err = self.err()
        if err is not None:
            raise err

    def remaining(self, default: Optional[float] = None) -> Optional[float]:
        """Seconds left before the deadline, capped by `default` when given."""
        if self.deadline is None:
            return default
        left = max(0.0, self.deadline - time.monotonic())
        if default is None:
            return left
        return min(left, default)

    def sleep(self, seconds: float) -> None:
        end = time.monotonic() + max(0.0, float(seconds))
        while True:
            self.check()
            now = time.monotonic()
            if now >= end:
                return
            wait = end - now
            if self._parent is not None:
                wait = min(wait, _SLICE)
            if self.deadline is not None:
                wait = min(wait, max(0.0, self.deadline - now) + 0.001)
            self._event.wait(wait)


def background() -> Context:
    return Context()


def with_timeout(timeout: Optional[float], parent: Optional[Context] = None) -> Context:
    return Context(timeout=timeout, parent=parent)


__all__ = ["Context", "ContextError", "CancelledError", "DeadlineExceeded", "background", "with_timeout"]
