# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

# ---------------- Local Project ----------------
from .common import Env
from ..core.context import Context, background
from ..core.errors import network_error
from ..network.peer_refresh import PeerRefreshService
from ..network.rpc_client import RPCClient, RPCError
from ..utils import config as CFG
from ..utils.helpers import YELLOW
from ..utils.settings import remote_rpc_url


def cmd_peers(env: Env) -> int:
    try:
        peers = RPCClient(env.settings.rpc_local).peers(ctx=Context(timeout=CFG.RPC_TIMEOUT))
    except RPCError as exc:
        raise network_error(f"query peers from {env.settings.rpc_local}", exc) from exc
    if env.json_output:
        env.emit_json([{"id": p.id, "addr": p.addr} for p in peers])
        return 0
    if not peers:
        env.info("No connected peers", YELLOW)
        return 0
    env.info(f"Connected peers: {len(peers)}")
    for p in peers:
        env.line(f"  {p.id}  {p.addr}")
    return 0


def cmd_refresh_peers(env: Env) -> int:
    """Hidden: rewrites persistent_peers from the remote node, once or in a loop."""
    svc = PeerRefreshService(remote_rpc_url(env.settings), env.settings.home_dir, interval=env.args.interval)
    if env.args.once:
        changed = svc.refresh_once()
        env.info("persistent_peers updated" if changed else "persistent_peers unchanged")
        return 0
    ctx = background()
    svc.start(ctx)
    try:
        while svc.is_running():
            ctx.sleep(1.0)
    except KeyboardInterrupt:
        env.info("Stopping peer refresh", YELLOW)
    finally:
        svc.stop()
    return 0


def register(sub) -> None:
    sub.add_parser("peers", help="List peers connected to the local node").set_defaults(func=cmd_peers)

    # no help= so argparse keeps it out of the command list
    p = sub.add_parser("_internal-refresh-peers")
    p.add_argument("--once", action="store_true")
    p.add_argument("--interval", type=float, default=CFG.PEER_REFRESH_INTERVAL)
    p.set_defaults(func=cmd_refresh_peers)


__all__ = ["register"]
