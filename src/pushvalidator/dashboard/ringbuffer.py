# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Fixed-size line buffer and the background tailer that fills it from the node
log. The tailer is the only writer; the log viewer only reads snapshots.
"""

from __future__ import annotations

import os, threading
from collections import deque
from typing import Optional

# ---------------- Local Project ----------------
from ..core.context import Context, ContextError
from ..utils import config as CFG
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.dashboard(ringbuffer)")


class RingBuffer:
    def __init__(self, size: int = CFG.LOG_RING_SIZE):
        if size <= 0:
            raise ValueError("ring buffer size must be positive")
        self.size = size
        self._buf: list[Optional[str]] = [None] * size
        self._head = 0
        self._count = 0
        # writes and snapshots are short; the lock is never held across I/O
        self._lock = threading.Lock()

    def add(self, line: str) -> None:
        with self._lock:
            self._buf[self._head] = line
            self._head = (self._head + 1) % self.size
            if self._count < self.size:
                self._count += 1

    def get_all(self) -> list[str]:
        """Live window, oldest first."""
        with self._lock:
            start = (self._head - self._count) % self.size
            return [self._buf[(start + i) % self.size] for i in range(self._count)]

    def __len__(self) -> int:
        with self._lock:
            return self._count

    def clear(self) -> None:
        with self._lock:
            self._buf = [None] * self.size
            self._head = 0
            self._count = 0


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", "replace").rstrip("\r\n")


def read_backlog(path: str, lines: int = CFG.LOG_BACKLOG_LINES, max_line: int = CFG.LOG_MAX_LINE_BYTES) -> list[str]:
    tail: deque[str] = deque(maxlen=lines)
    with open(path, "rb") as handle:
        while True:
            raw = handle.readline(max_line)
            if not raw:
                break
            tail.append(_decode(raw))
    return list(tail)


class LogTailer:
    """
    Follows a log file into a RingBuffer on a daemon thread.

    Waits for the file to exist, loads the last lines as backlog, then reads
    appended lines from the end. Read errors restart the follow loop after a
    short backoff; `stop()` ends the thread.
    """

    def __init__(
        self,
        path: str,
        buffer: RingBuffer,
        backlog: int = CFG.LOG_BACKLOG_LINES,
        wait_interval: float = CFG.LOG_WAIT_INTERVAL,
        eof_sleep: float = CFG.LOG_EOF_SLEEP,
        error_backoff: float = CFG.LOG_ERROR_BACKOFF,
        max_line: int = CFG.LOG_MAX_LINE_BYTES,
    ):
        self.path = path
        self.buffer = buffer
        self.backlog = backlog
        self.wait_interval = wait_interval
        self.eof_sleep = eof_sleep
        self.error_backoff = error_backoff
        self.max_line = max_line
        self._ctx: Optional[Context] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._ctx = Context()
        self._thread = threading.Thread(target=self._run, args=(self._ctx,), name="log-tailer", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        if self._ctx is not None:
            self._ctx.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None

    def _run(self, ctx: Context) -> None:
        try:
            while not os.path.exists(self.path):
                ctx.sleep(self.wait_interval)
            try:
                for line in read_backlog(self.path, self.backlog, self.max_line):
                    self.buffer.add(line)
            except OSError as exc:
                log.debug("[logs] backlog read failed: %s", exc)
            while not ctx.done():
                try:
                    self._follow(ctx)
                except OSError as exc:
                    log.debug("[logs] follow %s failed: %s", self.path, exc)
                    ctx.sleep(self.error_backoff)
        except ContextError:
            return

    def _follow(self, ctx: Context) -> None:
        with open(self.path, "rb") as handle:
            handle.seek(0, os.SEEK_END)
            partial = b""
            while True:
                ctx.check()
                raw = handle.readline(self.max_line)
                if not raw:
                    ctx.sleep(self.eof_sleep)
                    continue
                if not raw.endswith(b"\n") and len(partial) + len(raw) < self.max_line:
                    # writer is mid-line
                    partial += raw
                    continue
                self.buffer.add(_decode(partial + raw))
                partial = b""


__all__ = ["RingBuffer", "LogTailer", "read_backlog"]
