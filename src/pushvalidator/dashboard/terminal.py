# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
curses runtime for the dashboard model.

Commands run on daemon threads and hand their messages back through a queue;
the loop thread is the only one that calls `model.update()` and draws.
"""

from __future__ import annotations

import curses, queue, threading
from typing import Iterable, Optional

# ---------------- Local Project ----------------
from .messages import Cmd, Key, Seq, WindowSize
from ..utils import config as CFG
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.dashboard(terminal)")

_SPECIAL_KEYS = {
    curses.KEY_UP: "up",
    curses.KEY_DOWN: "down",
    curses.KEY_LEFT: "left",
    curses.KEY_RIGHT: "right",
    curses.KEY_ENTER: "enter",
    curses.KEY_BACKSPACE: "backspace",
    27: "esc",
    10: "enter",
    13: "enter",
    127: "backspace",
    8: "backspace",
    3: "ctrl+c",
}


def translate_key(code: int) -> Optional[str]:
    if code in _SPECIAL_KEYS:
        return _SPECIAL_KEYS[code]
    if 32 <= code < 127:
        return chr(code)
    return None


class Program:
    def __init__(self, model, poll: float = CFG.DASH_INPUT_POLL):
        self.model = model
        self.poll = poll
        self.messages: "queue.Queue" = queue.Queue()

    # ---------- commands ----------

    def dispatch(self, cmds: Iterable[Optional[Cmd]]) -> None:
        for cmd in cmds:
            if cmd is None:
                continue
            threading.Thread(target=self._run_cmd, args=(cmd,), name="dash-cmd", daemon=True).start()

    def _run_cmd(self, cmd: Cmd) -> None:
        if isinstance(cmd, Seq):
            # in order, on this worker
            for sub in cmd.cmds:
                self._run_cmd(sub)
            return
        try:
            msg = cmd()
        except Exception:
            log.exception("[dashboard] command %r failed", cmd)
            return
        if msg is not None:
            self.messages.put(msg)

    def send(self, msg) -> None:
        self.dispatch(self.model.update(msg))

    def drain(self) -> bool:
        handled = False
        while True:
            try:
                msg = self.messages.get_nowait()
            except queue.Empty:
                return handled
            self.send(msg)
            handled = True

    # ---------- drawing ----------

    def draw(self, stdscr) -> None:
        max_y, max_x = stdscr.getmaxyx()
        stdscr.erase()
        for y, line in enumerate(self.model.view()[:max_y]):
            try:
                # the bottom-right cell cannot be written without an error
                stdscr.addnstr(y, 0, line, max(max_x - 1, 0))
            except curses.error:
                continue
        stdscr.refresh()

    # ---------- loop ----------

    def loop(self, stdscr) -> None:
        try:
            curses.curs_set(0)
        except curses.error:
            log.debug("[dashboard] terminal cannot hide the cursor")
        stdscr.nodelay(True)
        stdscr.timeout(int(self.poll * 1000))

        max_y, max_x = stdscr.getmaxyx()
        self.send(WindowSize(max_x, max_y))
        self.dispatch(self.model.init())
        try:
            while not self.model.quitting:
                self.drain()
                self.draw(stdscr)
                code = stdscr.getch()
                if code == -1:
                    continue
                if code == curses.KEY_RESIZE:
                    max_y, max_x = stdscr.getmaxyx()
                    stdscr.clear()
                    self.send(WindowSize(max_x, max_y))
                    continue
                key = translate_key(code)
                if key is not None:
                    self.send(Key(key))
        except KeyboardInterrupt:
            self.send(Key("ctrl+c"))
        finally:
            self.model.close()


def run(model) -> None:
    curses.wrapper(Program(model).loop)


__all__ = ["Program", "run", "translate_key"]
