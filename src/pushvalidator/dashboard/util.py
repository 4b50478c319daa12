# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Text helpers shared by the dashboard panels: number and duration formatting,
display-width aware padding, progress bars and box drawing.
"""

from __future__ import annotations

import time, unicodedata
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

# ---------------- Local Project ----------------
from ..utils.helpers import parse_rfc3339

NONE_MARK = "—"

_ROUNDED_BOX = ("╭", "─", "╮", "│", "╰", "╯")
_ASCII_BOX = ("+", "-", "+", "|", "+", "+")


# -----------------------------
# Numbers & durations
# -----------------------------

def _group(digits: str) -> str:
    head = len(digits) % 3 or 3
    parts = [digits[:head]] + [digits[i:i + 3] for i in range(head, len(digits), 3)]
    return ",".join(parts)


def human_int(n: int) -> str:
    """1234567 -> 1,234,567"""
    n = int(n)
    sign = "-" if n < 0 else ""
    return sign + _group(str(abs(n)))


def format_float(text: str) -> str:
    """Thousands separators on a decimal string: 902030185089.93 -> 902,030,185,089.93"""
    if text in ("", NONE_MARK, "-"):
        return text
    int_part, dot, frac = text.partition(".")
    if not int_part.isdigit():
        return text
    return _group(int_part) + (dot + frac if dot else "")


def percent(fraction: float) -> str:
    """Fraction in [0, 1] as a percentage, up to 5 decimals with trailing zeros trimmed."""
    if fraction < 0:
        return "0.0%"
    if fraction > 1:
        return "100.0%"
    txt = f"{fraction * 100:.5f}".rstrip("0").rstrip(".")
    return f"{txt}%"


def duration_short(seconds: float) -> str:
    secs = int(max(seconds, 0))
    if secs < 60:
        return f"{secs}s"
    if secs < 3600:
        return f"{secs // 60}m"
    if secs < 86400:
        h, m = divmod(secs // 60, 60)
        return f"{h}h{m}m" if m else f"{h}h"
    d, h = divmod(secs // 3600, 24)
    return f"{d}d{h}h" if h else f"{d}d"


def format_timestamp(rfc_time: str) -> str:
    """Local time as `Jan 02, 03:04 PM TZ`; empty when unparseable."""
    if not rfc_time:
        return ""
    try:
        ts = parse_rfc3339(rfc_time)
    except ValueError:
        return ""
    return ts.astimezone().strftime("%b %d, %I:%M %p %Z").strip()


def time_until(rfc_time: str, now: Optional[datetime] = None) -> str:
    if not rfc_time:
        return ""
    try:
        ts = parse_rfc3339(rfc_time)
    except ValueError:
        return ""
    left = (ts - (now or datetime.now(timezone.utc))).total_seconds()
    if left <= 0:
        return "0s"
    return duration_short(left)


# -----------------------------
# Display width
# -----------------------------

def char_width(ch: str) -> int:
    if unicodedata.combining(ch):
        return 0
    if unicodedata.east_asian_width(ch) in ("W", "F"):
        return 2
    # pictographs outside the BMP render double width in most terminals
    return 2 if ord(ch) >= 0x1F000 else 1


def display_width(text: str) -> int:
    return sum(char_width(ch) for ch in text)


def truncate(text: str, width: int) -> str:
    if width <= 0:
        return ""
    out, used = [], 0
    for ch in text:
        w = char_width(ch)
        if used + w > width:
            break
        out.append(ch)
        used += w
    return "".join(out)


def truncate_with_ellipsis(text: str, width: int) -> str:
    if width <= 0:
        return ""
    if display_width(text) <= width:
        return text
    if width == 1:
        return "…"
    return truncate(text, width - 1) + "…"


def pad_right(text: str, width: int) -> str:
    text = truncate(text, width)
    return text + " " * (width - display_width(text))


def center(text: str, width: int) -> str:
    text = truncate(text, width)
    gap = width - display_width(text)
    left = gap // 2
    return " " * left + text + " " * (gap - left)


def format_title(title: str, width: int) -> str:
    return center(title.upper(), width)


def inner_width_for_box(total: int, has_border: bool = True, pad: int = 1) -> int:
    """Usable text width after border and horizontal padding; never below 1."""
    return max(total - (2 if has_border else 0) - 2 * pad, 1)


# -----------------------------
# Bars & boxes
# -----------------------------

def progress_bar(fraction: float, width: int, no_emoji: bool = False) -> str:
    fraction = min(max(fraction, 0.0), 1.0)
    if width < 3:
        return f"{fraction * 100:.0f}%"
    bar_width = width - 2 if no_emoji else width
    filled = min(int(bar_width * fraction), bar_width)
    if no_emoji:
        return "[" + "=" * filled + " " * (bar_width - filled) + "]"
    return "█" * filled + "░" * (bar_width - filled)


def render_box(lines: Sequence[str], width: int, height: int, no_emoji: bool = False, align_center: bool = False) -> list[str]:
    """Bordered box of exactly `width` x `height` cells; overflowing lines are cut."""
    if width <= 0 or height <= 0:
        return []
    tl, hz, tr, vt, bl, br = _ASCII_BOX if no_emoji else _ROUNDED_BOX
    if width < 4 or height < 2:
        return [pad_right(vt * width, width)] * height
    inner = width - 4
    fit = center if align_center else pad_right
    out = [tl + hz * (width - 2) + tr]
    for i in range(height - 2):
        text = lines[i] if i < len(lines) else ""
        out.append(vt + " " + fit(text, inner) + " " + vt)
    out.append(bl + hz * (width - 2) + br)
    return out


def join_horizontal(blocks: Sequence[Sequence[str]], widths: Sequence[int], height: int) -> list[str]:
    rows = []
    for i in range(height):
        parts = []
        for block, w in zip(blocks, widths):
            parts.append(pad_right(block[i] if i < len(block) else "", w))
        rows.append("".join(parts))
    return rows


# -----------------------------
# Icons
# -----------------------------

@dataclass(frozen=True)
class Icons:
    ok: str
    warn: str
    err: str
    peer: str
    block: str
    unknown: str

    @classmethod
    def for_mode(cls, no_emoji: bool) -> "Icons":
        if no_emoji:
            return cls(ok="[OK]", warn="[!]", err="[X]", peer="#", block="#", unknown="[?]")
        return cls(ok="✓", warn="⚠", err="✗", peer="🔗", block="📦", unknown="◯")


# -----------------------------
# ETA
# -----------------------------

class ETACalculator:
    """Sync ETA from a moving window of blocks-behind samples."""

    def __init__(self, max_samples: int = 10, stall_after: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self._samples: deque = deque(maxlen=max_samples)
        self.stall_after = stall_after
        self._clock = clock
        self._last_progress: Optional[float] = None

    def add_sample(self, blocks_behind: int) -> None:
        now = self._clock()
        if self._samples and blocks_behind < self._samples[-1][1]:
            self._last_progress = now
        self._samples.append((now, blocks_behind))

    def calculate(self) -> str:
        if len(self._samples) < 2:
            return "calculating..."
        (t0, b0), (t1, b1) = self._samples[0], self._samples[-1]
        elapsed = t1 - t0
        if elapsed < 0.1:
            return "calculating..."
        delta = b0 - b1
        if delta <= 0:
            if self._last_progress is not None and self._clock() - self._last_progress > self.stall_after:
                return "stalled"
            return "calculating..."
        if b1 <= 0:
            return "0s"
        seconds = b1 / (delta / elapsed)
        if seconds > 365 * 24 * 3600:
            return ">1y"
        return duration_short(seconds)


__all__ = [
    "NONE_MARK", "human_int", "format_float", "percent", "duration_short", "format_timestamp", "time_until",
    "char_width", "display_width", "truncate", "truncate_with_ellipsis", "pad_right", "center", "format_title",
    "inner_width_for_box", "progress_bar", "render_box", "join_horizontal", "Icons", "ETACalculator",
]
