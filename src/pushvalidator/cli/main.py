# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
push-validator - operator CLI for a Push Chain validator node

Role
- Bootstraps a fresh node home (genesis, peers, state sync trust parameters).
- Downloads, verifies and extracts chain snapshots.
- Starts / stops the node and reports its health (status, sync, doctor, dashboard).
- Submits validator transactions through the node binary.
- Updates itself from published releases.

Exit codes
0 success, 1 general, 2 invalid args, 3 precondition failed, 4 network,
5 process, 6 validation, 42 sync stuck.
"""

from __future__ import annotations

import sys, logging, argparse
from typing import Optional, Sequence

# ---------------- Local Project ----------------
from . import cmd_dashboard, cmd_doctor, cmd_network, cmd_node, cmd_snapshot, cmd_update, cmd_validator
from .common import Env
from .. import __version__
from ..core.context import ContextError
from ..core.errors import GENERAL_ERROR, CodedError, code_for_error
from ..utils import config as CFG
from ..utils.helpers import clog, init_console, RED
from ..utils.pv_logging import get_ctx_logger, setup_logging

log = get_ctx_logger("pushvalidator.cli(main)")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog=CFG.TOOL_NAME,
        description=f"Push Chain validator manager (v{__version__})",
    )
    ap.add_argument("--home", default=None, help=f"Node home directory (default: {CFG.DEFAULT_HOME_DIR}, env HOME_DIR)")
    ap.add_argument("--bin", default=None, help=f"Node binary (default: {CFG.DEFAULT_NODE_BIN} from PATH, env PCHAIND)")
    ap.add_argument("--rpc", default=None, help=f"Local RPC endpoint (default: {CFG.DEFAULT_RPC_LOCAL})")
    ap.add_argument("--genesis-domain", default=None, help=f"Genesis / remote RPC domain (default: {CFG.DEFAULT_GENESIS_DOMAIN})")
    ap.add_argument("-o", "--output", choices=("text", "json"), default="text", help="Output format")
    ap.add_argument("--verbose", action="store_true", help="Verbose logging")
    ap.add_argument("--quiet", action="store_true", help="Only print errors")
    ap.add_argument("--debug", action="store_true", help="Debug logging mirrored to stderr")
    ap.add_argument("--no-color", action="store_true", help="Disable ANSI colours")
    ap.add_argument("--no-emoji", action="store_true", help="ASCII-only symbols")
    ap.add_argument("--yes", "-y", action="store_true", help="Assume yes for confirmation prompts")

    sub = ap.add_subparsers(dest="command", metavar="<command>")
    cmd_node.register(sub)
    cmd_snapshot.register(sub)
    cmd_dashboard.register(sub)
    cmd_network.register(sub)
    cmd_validator.register(sub)
    cmd_doctor.register(sub)
    cmd_update.register(sub)
    return ap


def _configure_logging(args: argparse.Namespace) -> None:
    level = None
    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = "TRACE" if CFG.IS_DEV else logging.DEBUG
    setup_logging(level=level, to_console=True if args.debug else None)


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    if not getattr(args, "func", None):
        ap.print_help()
        return 0

    init_console(no_color=args.no_color)
    _configure_logging(args)
    log.debug("[cli] command=%s", args.command)

    try:
        env = Env.from_args(args)
        return int(args.func(env) or 0)
    except CodedError as exc:
        log.error("[cli] %s failed: %s", args.command, exc)
        clog(f"Error: {exc}", RED, stream=sys.stderr)
        return code_for_error(exc)
    except ContextError as exc:
        log.error("[cli] %s interrupted: %s", args.command, exc)
        clog(f"Error: {exc}", RED, stream=sys.stderr)
        return GENERAL_ERROR
    except KeyboardInterrupt:
        clog("Interrupted", RED, stream=sys.stderr)
        return GENERAL_ERROR
    except OSError as exc:
        log.exception("[cli] %s failed", args.command)
        clog(f"Error: {exc}", RED, stream=sys.stderr)
        return GENERAL_ERROR


if __name__ == "__main__":
    sys.exit(main())
