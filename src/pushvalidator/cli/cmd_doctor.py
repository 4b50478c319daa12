# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import os
from dataclasses import dataclass, asdict

# ---------------- Local Project ----------------
from .cmd_node import rpc_hostport
from .common import Env
from ..core.context import Context
from ..core.errors import precondition_error
from ..network.rpc_client import RPCClient, RPCError
from ..node.supervisor import Supervisor, is_rpc_listening
from ..utils import config as CFG
from ..utils.helpers import RED, free_bytes, human_bytes
from ..utils.settings import NodeSettings, remote_rpc_url

MIN_FREE_DISK = 20 * 1024 ** 3


@dataclass(frozen=True)
class Check:
    name: str
    ok: bool
    detail: str


def run_checks(settings: NodeSettings, min_free: int = MIN_FREE_DISK) -> list[Check]:
    checks: list[Check] = []
    home = settings.home_dir

    pid = Supervisor(home).pid()
    checks.append(Check("process", pid is not None, f"running (pid {pid})" if pid else "node process not running"))

    listening = is_rpc_listening(rpc_hostport(settings.rpc_local))
    checks.append(Check("rpc", listening, settings.rpc_local if listening else f"nothing listening at {settings.rpc_local}"))

    missing = [p for p in (settings.config_path, settings.genesis_path) if not os.path.isfile(p)]
    checks.append(Check("config", not missing, "config.toml and genesis.json present" if not missing else "missing " + ", ".join(missing)))

    local = RPCClient(settings.rpc_local, timeout=CFG.RPC_STATUS_TIMEOUT)
    if listening:
        try:
            peers = local.peers(ctx=Context(timeout=CFG.RPC_STATUS_TIMEOUT))
            checks.append(Check("peers", len(peers) > 0, f"{len(peers)} connected"))
        except RPCError as exc:
            checks.append(Check("peers", False, str(exc)))
    else:
        checks.append(Check("peers", False, "rpc unavailable"))

    remote = remote_rpc_url(settings)
    try:
        st, ms = local.measure_latency(remote, ctx=Context(timeout=CFG.RPC_TIMEOUT))
        checks.append(Check("remote", True, f"{remote} height {st.height} ({int(ms)}ms)"))
    except RPCError as exc:
        checks.append(Check("remote", False, f"{remote}: {exc}"))

    free = free_bytes(home)
    checks.append(Check("disk", free >= min_free, f"{human_bytes(free)} free"))

    probe = home if os.path.isdir(home) else os.path.dirname(home)
    writable = os.access(probe, os.W_OK)
    checks.append(Check("permissions", writable, f"{probe} writable" if writable else f"{probe} not writable"))

    if listening:
        try:
            st = local.status(ctx=Context(timeout=CFG.RPC_STATUS_TIMEOUT))
            detail = f"height {st.height}" + (" (catching up)" if st.catching_up else " (in sync)")
            checks.append(Check("sync", not st.catching_up, detail))
        except RPCError as exc:
            checks.append(Check("sync", False, str(exc)))
    else:
        checks.append(Check("sync", False, "rpc unavailable"))
    return checks


def cmd_doctor(env: Env) -> int:
    checks = run_checks(env.settings)
    failed = [c for c in checks if not c.ok]
    if env.json_output:
        env.emit_json({"checks": [asdict(c) for c in checks], "failed": len(failed)})
    else:
        for c in checks:
            env.info(f"{env.mark(c.ok)} {c.name:<12} {c.detail}", None if c.ok else RED)
    if failed:
        raise precondition_error(f"{len(failed)} of {len(checks)} checks failed: {', '.join(c.name for c in failed)}")
    env.info("All checks passed")
    return 0


def register(sub) -> None:
    sub.add_parser("doctor", help="Run diagnostic checks").set_defaults(func=cmd_doctor)


__all__ = ["register", "run_checks", "Check"]
