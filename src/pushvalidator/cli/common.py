# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import sys, json, argparse
from dataclasses import dataclass
from typing import Any

# ---------------- Local Project ----------------
from ..core.errors import precondition_error
from ..utils.helpers import GREEN, RED, YELLOW, CYAN, clog, say
from ..utils.settings import NodeSettings, load_settings
from ..validator.fetcher import resolve_node_binary


@dataclass
class Env:
    """Per-invocation state shared by every command handler."""
    args: argparse.Namespace
    settings: NodeSettings

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Env":
        settings = load_settings(
            home=args.home,
            bin_path=args.bin,
            rpc=args.rpc,
            genesis_domain=args.genesis_domain,
        )
        return cls(args=args, settings=settings)

    # ---------- flags ----------

    @property
    def json_output(self) -> bool:
        return (self.args.output or "text") == "json"

    @property
    def quiet(self) -> bool:
        return bool(self.args.quiet)

    @property
    def no_emoji(self) -> bool:
        return bool(self.args.no_emoji)

    def mark(self, ok: bool) -> str:
        if self.no_emoji:
            return "[OK]" if ok else "[FAIL]"
        return "✓" if ok else "✗"

    # ---------- output ----------

    def info(self, message: str, color: str = GREEN) -> None:
        if not self.quiet and not self.json_output:
            clog(message, color)

    def note(self, message: str) -> None:
        self.info(message, CYAN)

    def warn(self, message: str) -> None:
        if not self.json_output:
            clog(message, YELLOW, stream=sys.stderr)

    def error(self, message: str) -> None:
        clog(message, RED, stream=sys.stderr)

    def line(self, message: str = "") -> None:
        if not self.json_output:
            say(message)

    def emit_json(self, payload: Any) -> None:
        print(json.dumps(payload, indent=2, sort_keys=True, default=str))

    # ---------- prompts ----------

    def confirm(self, prompt: str) -> bool:
        if self.args.yes:
            return True
        if not sys.stdin.isatty():
            raise precondition_error(f"{prompt} - refusing without a terminal, pass --yes")
        answer = input(f"{prompt} [y/N]: ").strip().lower()
        return answer in ("y", "yes")

    # ---------- node binary ----------

    def node_binary(self) -> str:
        return resolve_node_binary(self.settings)


__all__ = ["Env"]
