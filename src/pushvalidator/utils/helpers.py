# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import os, sys, shutil, tempfile
from datetime import datetime, timezone
from typing import Optional
import colorama

# ---------- Simple color + timestamp utilities ----------

RESET  = "\033[0m"
BLUE   = "\033[34m"
YELLOW = "\033[33m"
GREEN  = "\033[32m"
RED    = "\033[31m"
CYAN   = "\033[36m"
DIM    = "\033[2m"
BOLD   = "\033[1m"

_COLOR_ENABLED = True
_INITIALIZED = False


def init_console(no_color: bool = False) -> None:
    global _COLOR_ENABLED, _INITIALIZED
    _COLOR_ENABLED = not no_color and os.environ.get("NO_COLOR") is None
    if not _INITIALIZED:
        colorama.init()
        _INITIALIZED = True


def paint(text: str, color: str) -> str:
    if not _COLOR_ENABLED or not color:
        return text
    return f"{color}{text}{RESET}"


def _stamp() -> str:
    now = datetime.now()
    d = f"{now.year:04d}.{now.month:02d}.{now.day:02d}"
    t = f"{now.hour:02d}.{now.minute:02d}.{now.second:02d}"
    return f"[{paint(d, BLUE)}] - [{paint(t, YELLOW)}]"


def clog(message: str, color: str = GREEN, stream=None) -> None:
    out = stream or sys.stdout
    print(f"{_stamp()} : {paint(message, color)}", file=out)


def say(message: str = "", color: str = "", stream=None) -> None:
    """Plain line without the timestamp prefix (tables, JSON-free summaries)."""
    out = stream or sys.stdout
    print(paint(message, color) if color else message, file=out)


# ---------- Sizes ----------

def format_bytes_human(n: int) -> str:
    """One-decimal GB/MB/KB rendering used in disk-space messages."""
    n = int(n)
    gb = 1024 ** 3
    mb = 1024 ** 2
    kb = 1024
    if n >= gb:
        return f"{n / gb:.1f} GB"
    if n >= mb:
        return f"{n / mb:.1f} MB"
    if n >= kb:
        return f"{n / kb:.1f} KB"
    return f"{n} B"


def human_bytes(n) -> str:
    try:
        n = float(n)
    except (TypeError, ValueError):
        return "?"
    for unit in ("B", "KB", "MB", "GB", "TB", "PB"):
        if n < 1024.0:
            return f"{n:.1f} {unit}"
        n /= 1024.0
    return f"{n:.1f} EB"


def free_bytes(path: str) -> int:
    """Free bytes on the filesystem holding `path`, walking up to an existing ancestor."""
    probe = os.path.abspath(path)
    while not os.path.exists(probe):
        parent = os.path.dirname(probe)
        if parent == probe:
            break
        probe = parent
    return int(shutil.disk_usage(probe).free)


def ensure_dir(path: str, mode: int = 0o755) -> None:
    os.makedirs(path, mode=mode, exist_ok=True)


def read_text(path: str) -> Optional[str]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()
    except FileNotFoundError:
        return None


def write_atomic(path: str, data: bytes, mode: Optional[int] = None) -> None:
    """Write via a unique temp file in the same directory, then rename over `path`."""
    fd, tmp_path = tempfile.mkstemp(prefix=os.path.basename(path) + ".", suffix=".tmp", dir=os.path.dirname(path) or ".")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.chmod(tmp_path, 0o644 if mode is None else mode)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


# ---------- Time ----------

def parse_rfc3339(value: str) -> datetime:
    """RFC 3339 timestamp, tolerating `Z` and nanosecond fractions. Raises ValueError."""
    text = (value or "").strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat takes at most microseconds
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        while rest and rest[0].isdigit():
            digits, rest = digits + rest[0], rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    ts = datetime.fromisoformat(text)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


__all__ = [
    "RESET", "BLUE", "YELLOW", "GREEN", "RED", "CYAN", "DIM", "BOLD",
    "init_console", "paint", "clog", "say", "format_bytes_human", "human_bytes",
    "free_bytes", "ensure_dir", "read_text", "write_atomic", "parse_rfc3339",
]
