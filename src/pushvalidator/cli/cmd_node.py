# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Node lifecycle commands: init, start, stop, restart, status, sync, reset,
backup and logs.
"""

from __future__ import annotations

import os, time
from typing import Callable, Optional
from urllib.parse import urlparse

# ---------------- Local Project ----------------
from .common import Env
from ..core.context import Context, background
from ..core.errors import CodedError, precondition_error, sync_stuck_error
from ..dashboard.ringbuffer import read_backlog
from ..dashboard.util import duration_short, human_int
from ..metrics.collector import Collector
from ..network.rpc_client import RPCClient, RPCError, Status
from ..node import admin
from ..node.bootstrap import Bootstrapper, BootstrapOptions
from ..node.supervisor import Supervisor, is_rpc_listening
from ..utils import config as CFG
from ..utils.helpers import RED, YELLOW, human_bytes
from ..utils.pv_logging import export_log_bundle, get_ctx_logger
from ..utils.settings import remote_rpc_url

log = get_ctx_logger("pushvalidator.cli(node)")

SYNC_POLL_INTERVAL = 2.0
SYNC_TOLERANCE = 2  # blocks behind that still count as caught up


def rpc_hostport(rpc_url: str) -> str:
    parsed = urlparse(rpc_url if "://" in rpc_url else "http://" + rpc_url)
    return f"{parsed.hostname or '127.0.0.1'}:{parsed.port or 26657}"


# ---------- init ----------

def cmd_init(env: Env) -> int:
    s = env.settings
    try:
        bin_path = env.node_binary()
    except CodedError:
        bin_path = s.node_bin
    opts = BootstrapOptions(
        home=s.home_dir,
        chain_id=env.args.chain_id or s.chain_id,
        genesis_domain=s.genesis_domain,
        moniker=env.args.moniker,
        denom=s.denom,
        bin_path=bin_path,
        snapshot_rpc_primary=env.args.snapshot_rpc or CFG.BOOTSTRAP_SNAPSHOT_RPC,
        progress=env.note,
    )
    result = Bootstrapper().init(opts)
    if env.json_output:
        env.emit_json({
            "genesis_path": result.genesis_path,
            "peers": result.peers,
            "rpc_servers": result.rpc_servers,
            "trust_height": result.trust.height if result.trust else 0,
            "trust_hash": result.trust.hash if result.trust else "",
            "duration_s": round(result.duration_s, 2),
        })
        return 0
    env.info(f"Initialized {s.home_dir} in {result.duration_s:.1f}s")
    env.info(f"Next: {CFG.TOOL_NAME} start")
    return 0


# ---------- process control ----------

def cmd_start(env: Env) -> int:
    sup = Supervisor(env.settings.home_dir)
    pid = sup.pid()
    if pid is not None:
        env.info(f"Node already running (pid {pid})", YELLOW)
        return 0
    pid = sup.start(env.node_binary())
    env.info(f"Node started (pid {pid}), logs: {sup.log_path}")
    return 0


def cmd_stop(env: Env) -> int:
    sup = Supervisor(env.settings.home_dir)
    if not sup.is_running():
        env.info("Node is not running", YELLOW)
        return 0
    sup.stop()
    env.info("Node stopped")
    return 0


def cmd_restart(env: Env) -> int:
    pid = Supervisor(env.settings.home_dir).restart(env.node_binary())
    env.info(f"Node restarted (pid {pid})")
    return 0


# ---------- status ----------

def cmd_status(env: Env) -> int:
    s = env.settings
    sup = Supervisor(s.home_dir)
    pid = sup.pid()
    uptime = sup.uptime() if pid is not None else None
    listening = is_rpc_listening(rpc_hostport(s.rpc_local))
    ctx = Context(timeout=CFG.RPC_TIMEOUT * 2)
    metrics = Collector().collect(s.rpc_local, s.genesis_domain, ctx)

    if env.json_output:
        env.emit_json({
            "node": {"running": pid is not None, "pid": pid or 0, "uptime_seconds": int(uptime or 0)},
            "rpc": {"url": s.rpc_local, "listening": listening},
            "home": s.home_dir,
            "metrics": metrics.to_dict(),
        })
        return 0

    chain = metrics.chain
    if pid is not None:
        extra = f", up {duration_short(uptime)}" if uptime else ""
        env.info(f"Node   : {env.mark(True)} running (pid {pid}{extra})")
    else:
        env.info(f"Node   : {env.mark(False)} stopped", RED)
    env.info(f"RPC    : {env.mark(listening)} {s.rpc_local}", None if listening else RED)
    if metrics.node.rpc_listening:
        height = human_int(chain.local_height)
        if chain.remote_height > 0:
            height += f" / {human_int(chain.remote_height)}"
        state = "catching up" if chain.catching_up else "in sync"
        env.info(f"Height : {height} ({state})")
        env.info(f"Peers  : {metrics.network.peers}")
        env.info(f"Chain  : {metrics.node.chain_id}")
    env.info(f"Home   : {s.home_dir}")
    return 0


# ---------- sync ----------

def monitor_sync(
    local_fn: Callable[[], Status],
    remote_fn: Callable[[], int],
    stuck_timeout: float = 120.0,
    interval: float = SYNC_POLL_INTERVAL,
    on_progress: Optional[Callable[[int, int, bool], None]] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    tolerance: int = SYNC_TOLERANCE,
) -> int:
    """
    Poll until the local node reports it is caught up; returns the final height.
    Raises a SyncStuck error when the local height has not moved for
    `stuck_timeout` seconds.
    """
    best = -1
    last_progress = clock()
    while True:
        try:
            local: Optional[Status] = local_fn()
        except RPCError as exc:
            log.debug("[sync] local status failed: %s", exc)
            local = None
        try:
            remote = remote_fn()
        except RPCError as exc:
            log.debug("[sync] remote status failed: %s", exc)
            remote = 0

        if local is not None:
            if local.height > best:
                best = local.height
                last_progress = clock()
            if on_progress is not None:
                on_progress(local.height, remote, local.catching_up)
            if not local.catching_up and (remote <= 0 or remote - local.height <= tolerance):
                return local.height

        if clock() - last_progress >= stuck_timeout:
            raise sync_stuck_error(f"no block progress for {int(stuck_timeout)}s (height {max(best, 0)})")
        sleep(interval)


def cmd_sync(env: Env) -> int:
    s = env.settings
    local = RPCClient(s.rpc_local)
    remote_base = remote_rpc_url(s)

    def _progress(height: int, remote: int, catching_up: bool) -> None:
        if remote > 0:
            pct = min(height / remote * 100.0, 100.0)
            env.info(f"Syncing: {human_int(height)}/{human_int(remote)} ({pct:.2f}%)")
        else:
            env.info(f"Syncing: {human_int(height)} (remote height unknown)")

    height = monitor_sync(
        local_fn=lambda: local.status(),
        remote_fn=lambda: local.remote_status(remote_base).height,
        stuck_timeout=env.args.stuck_timeout,
        interval=env.args.interval,
        on_progress=_progress,
    )
    if env.json_output:
        env.emit_json({"synced": True, "height": height})
    else:
        env.info(f"Node is in sync at height {human_int(height)}")
    return 0


# ---------- maintenance ----------

def cmd_reset(env: Env) -> int:
    home = env.settings.home_dir
    if Supervisor(home).is_running():
        raise precondition_error(f"node is running, stop it first: {CFG.TOOL_NAME} stop")
    if not env.confirm(f"Delete chain data under {home}?"):
        env.info("Reset cancelled", YELLOW)
        return 0
    admin.reset(home, keep_addr_book=not env.args.all)
    env.info("Chain data reset")
    return 0


def cmd_backup(env: Env) -> int:
    path = admin.backup(env.settings.home_dir, env.args.out)
    if env.json_output:
        env.emit_json({"backup_path": path, "size": os.path.getsize(path)})
    else:
        env.info(f"Backup written: {path} ({human_bytes(os.path.getsize(path))})")
    return 0


def follow_file(path: str, emit: Callable[[str], None], ctx: Optional[Context] = None, eof_sleep: float = CFG.LOG_EOF_SLEEP) -> None:
    ctx = ctx or background()
    with open(path, "rb") as handle:
        handle.seek(0, os.SEEK_END)
        while True:
            raw = handle.readline(CFG.LOG_MAX_LINE_BYTES)
            if not raw:
                ctx.sleep(eof_sleep)
                continue
            emit(raw.decode("utf-8", "replace").rstrip("\r\n"))


def cmd_logs(env: Env) -> int:
    s = env.settings
    if env.args.bundle:
        refresh_log = os.path.join(s.logs_dir, CFG.PEER_REFRESH_LOG)
        out = export_log_bundle(env.args.bundle, extra_files=[s.node_log_path, refresh_log])
        env.info(f"Log bundle written: {out}")
        return 0
    if not os.path.isfile(s.node_log_path):
        raise precondition_error(f"no node log at {s.node_log_path}")
    for line in read_backlog(s.node_log_path, env.args.lines):
        print(line)
    if env.args.follow:
        try:
            follow_file(s.node_log_path, print)
        except KeyboardInterrupt:
            return 0
    return 0


def register(sub) -> None:
    p = sub.add_parser("init", help="Initialize the node home: genesis, peers and state sync")
    p.add_argument("--moniker", default=CFG.DEFAULT_MONIKER, help="Node moniker")
    p.add_argument("--chain-id", default=None, help=f"Chain id (default: {CFG.DEFAULT_CHAIN_ID})")
    p.add_argument("--snapshot-rpc", default=None, help="RPC used for state sync trust parameters")
    p.set_defaults(func=cmd_init)

    sub.add_parser("start", help="Start the node process").set_defaults(func=cmd_start)
    sub.add_parser("stop", help="Stop the node process").set_defaults(func=cmd_stop)
    sub.add_parser("restart", help="Restart the node process").set_defaults(func=cmd_restart)
    sub.add_parser("status", help="Show node, RPC and sync status").set_defaults(func=cmd_status)

    p = sub.add_parser("sync", help="Follow sync progress until the node is caught up")
    p.add_argument("--stuck-timeout", type=float, default=120.0, help="Fail when the height does not move for this long (seconds)")
    p.add_argument("--interval", type=float, default=SYNC_POLL_INTERVAL, help="Poll interval (seconds)")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("reset", help="Delete chain data (keeps keys, config and address book)")
    p.add_argument("--all", action="store_true", help="Also delete the address book")
    p.set_defaults(func=cmd_reset)

    p = sub.add_parser("backup", help="Back up config and signing state")
    p.add_argument("--out", default=None, help="Output directory (default: <home>/backups)")
    p.set_defaults(func=cmd_backup)

    p = sub.add_parser("logs", help="Show the node log")
    p.add_argument("-n", "--lines", type=int, default=50, help="Lines of backlog to print")
    p.add_argument("-f", "--follow", action="store_true", help="Keep printing new lines")
    p.add_argument("--bundle", nargs="?", const="push_validator_logs.zip", default=None, help="Write a zip of all logs instead")
    p.set_defaults(func=cmd_logs)


__all__ = ["register", "monitor_sync", "rpc_hostport", "follow_file"]
