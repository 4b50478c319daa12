# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Messages routed through the dashboard loop and the commands that produce them.

A command is a small callable run off the UI thread; whatever message it
returns is queued back to the loop. Commands never touch UI state.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

# -----------------------------
# Messages
# -----------------------------


@dataclass(frozen=True)
class Tick:
    t: float


@dataclass(frozen=True)
class WindowSize:
    width: int
    height: int


@dataclass(frozen=True)
class Key:
    key: str


@dataclass(frozen=True)
class FetchStarted:
    cancel: Callable[[], None]
    fetch_id: int = 0


@dataclass(frozen=True)
class Data:
    data: Any
    fetch_id: int = 0


@dataclass(frozen=True)
class DataErr:
    err: BaseException
    fetch_id: int = 0


@dataclass(frozen=True)
class ForceRefresh:
    pass


@dataclass(frozen=True)
class ToggleHelp:
    pass


@dataclass(frozen=True)
class RewardsFetched:
    rewards: dict = field(default_factory=dict)


@dataclass(frozen=True)
class SpinnerTick:
    t: float


# -----------------------------
# Commands
# -----------------------------


class Cmd:
    def __call__(self):
        raise NotImplementedError


@dataclass(frozen=True)
class Emit(Cmd):
    msg: Any

    def __call__(self):
        return self.msg


@dataclass(frozen=True)
class TickAfter(Cmd):
    """Sleep `interval` then report a Tick. The loop keeps exactly one alive."""
    interval: float

    def __call__(self):
        time.sleep(self.interval)
        return Tick(time.time())


@dataclass(frozen=True)
class SpinAfter(Cmd):
    interval: float

    def __call__(self):
        time.sleep(self.interval)
        return SpinnerTick(time.time())


@dataclass(frozen=True)
class Task(Cmd):
    fn: Callable[[], Any]
    name: str = "task"

    def __call__(self):
        return self.fn()


@dataclass(frozen=True)
class Seq(Cmd):
    """Commands run one after another on the same worker; each message is queued in order."""
    cmds: tuple

    def __call__(self):
        raise TypeError("Seq is expanded by the runtime")


def batch(*cmds: Optional[Cmd]) -> list:
    return [c for c in cmds if c is not None]


__all__ = [
    "Tick", "WindowSize", "Key", "FetchStarted", "Data", "DataErr", "ForceRefresh", "ToggleHelp",
    "RewardsFetched", "SpinnerTick", "Cmd", "Emit", "TickAfter", "SpinAfter", "Task", "Seq", "batch",
]
