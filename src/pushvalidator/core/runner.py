# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import subprocess
from typing import Optional, Sequence

# ---------------- Local Project ----------------
from .context import Context
from .errors import process_error
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.core(runner)")


class Runner:
    """Runs a subprocess to completion with stdio discarded."""

    def run(self, ctx: Optional[Context], name: str, *args: str) -> None:
        argv = [name, *args]
        timeout = ctx.remaining() if ctx is not None else None
        log.debug("[runner] exec %s", " ".join(argv))
        try:
            proc = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise process_error(f"{name} not found", exc) from exc
        except subprocess.TimeoutExpired as exc:
            raise process_error(f"{name} timed out", exc) from exc
        if proc.returncode != 0:
            raise process_error(f"{name} {' '.join(args[:2])} exited with status {proc.returncode}")


class RecordingRunner(Runner):
    """No-op runner that records invocations; used by dry runs and tests."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []

    def run(self, ctx: Optional[Context], name: str, *args: str) -> None:
        self.calls.append((name, *args))


def run_capture(
    argv: Sequence[str],
    timeout: Optional[float] = None,
    stdin_text: Optional[str] = None,
    merge_stderr: bool = True,
) -> subprocess.CompletedProcess:
    """Run a command and capture its text output (query and tx calls)."""
    return subprocess.run(
        list(argv),
        input=stdin_text,
        stdout=subprocess.PIPE,
        stderr=(subprocess.STDOUT if merge_stderr else subprocess.PIPE),
        text=True,
        timeout=timeout,
        check=False,
    )


__all__ = ["Runner", "RecordingRunner", "run_capture"]
