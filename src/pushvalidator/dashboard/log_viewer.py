# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

from typing import Optional

# ---------------- Local Project ----------------
from .component import Component
from .messages import Key
from .ringbuffer import LogTailer, RingBuffer
from ..utils import config as CFG


class LogViewer(Component):
    """
    Node log panel. Follow mode pins the view to the newest line; scrolling
    pauses it. `/` starts a case-insensitive filter typed into the panel.
    """

    id = "log_viewer"
    min_width = 40
    min_height = 13
    # the tailer appends lines between updates
    volatile = True

    def __init__(self, log_path: str, no_emoji: bool = False, buffer: Optional[RingBuffer] = None, tailer: Optional[LogTailer] = None):
        super().__init__(no_emoji)
        self.log_path = log_path
        self.buffer = buffer or RingBuffer(CFG.LOG_RING_SIZE)
        self.tailer = tailer if tailer is not None else LogTailer(log_path, self.buffer)
        self.scroll = 0
        self.follow = True
        self.searching = False
        self.search_term = ""

    def init(self):
        self.tailer.start()
        return None

    def close(self) -> None:
        self.tailer.stop()

    @property
    def title(self) -> str:
        label = "Logs" if self.no_emoji else "📜 Logs"
        if self.searching:
            return f"{label} [Search: {self.search_term}]"
        if not self.follow:
            return f"{label} [Paused - {len(self.buffer)} lines]"
        return label

    # ---------- keys ----------

    def update(self, msg, data):
        if isinstance(msg, Key):
            self.handle_key(msg.key)
        return None

    def handle_key(self, key: str) -> None:
        if self.searching:
            if key == "esc":
                self.searching = False
                self.search_term = ""
            elif key == "enter":
                self.searching = False
            elif key == "backspace":
                self.search_term = self.search_term[:-1]
            elif len(key) == 1:
                self.search_term += key
            return

        count = len(self.buffer)
        if key == "/":
            self.searching = True
            self.search_term = ""
        elif key == "f":
            self.follow = not self.follow
            if self.follow:
                self.scroll = 0
        elif key == "up":
            self.follow = False
            self.scroll = min(self.scroll + 1, count)
        elif key == "down":
            self.scroll -= 1
            if self.scroll <= 0:
                self.scroll = 0
                self.follow = True
        elif key == "t":
            self.follow = False
            self.scroll = count
        elif key == "l":
            self.follow = True
            self.scroll = 0

    # ---------- render ----------

    def visible_lines(self) -> list[str]:
        lines = self.buffer.get_all()
        if self.search_term:
            needle = self.search_term.lower()
            lines = [l for l in lines if needle in l.lower()]
        if not lines:
            return ["(no logs yet)"]
        end = min(max(len(lines) - self.scroll, 0), len(lines))
        start = min(max(end - CFG.LOG_VISIBLE_LINES, 0), end)
        return lines[start:end]

    def footer(self) -> str:
        if self.searching:
            return "Enter to apply | Esc to cancel"
        if self.follow:
            return "↑/↓: scroll | f: pause | /: search | t: oldest"
        return "↑/↓: scroll | f: live | /: search | l: latest | t: oldest"

    def content(self, width: int, height: int) -> list[str]:
        return [self.title_line(width), *self.visible_lines(), self.footer()]


__all__ = ["LogViewer"]
