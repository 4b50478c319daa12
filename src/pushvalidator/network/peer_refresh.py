# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import os, threading, time
from typing import Optional

# ---------------- Local Project ----------------
from .rpc_client import RPCClient, RPCError
from ..core.context import Context, ContextError, background
from ..core.errors import network_error, precondition_error
from ..storage.configstore import ConfigStore
from ..utils import config as CFG
from ..utils.pv_logging import add_file_logger, get_ctx_logger

log = get_ctx_logger("pushvalidator.network(peer_refresh)")


def fetch_remote_peers(remote_rpc: str, max_peers: int = CFG.PEER_REFRESH_MAX, ctx: Optional[Context] = None) -> list[str]:
    """Peers of the remote node as `id@ip:26656`, capped at `max_peers`."""
    out: list[str] = []
    for peer in RPCClient(remote_rpc).peers(ctx=ctx):
        out.append(str(peer))
        if len(out) >= max_peers:
            break
    return out


class PeerRefreshService:
    """Periodically rewrites `persistent_peers` from the remote node's `/net_info`."""

    def __init__(
        self,
        remote_rpc: str,
        home: str,
        interval: float = CFG.PEER_REFRESH_INTERVAL,
        min_peers: int = CFG.PEER_REFRESH_MIN,
        max_peers: int = CFG.PEER_REFRESH_MAX,
        log_path: Optional[str] = None,
    ):
        self.remote_rpc = remote_rpc
        self.home = home
        self.interval = float(interval)
        self.min_peers = int(min_peers)
        self.max_peers = int(max_peers)
        self.log_path = log_path or os.path.join(home, CFG.LOGS_DIRNAME, CFG.PEER_REFRESH_LOG)

        self._lock = threading.RLock()
        self._ctx: Optional[Context] = None
        self._thread: Optional[threading.Thread] = None
        self.last_run: float = 0.0
        self.last_error: Optional[BaseException] = None

    def start(self, ctx: Optional[Context] = None) -> bool:
        """Start the loop; returns False when it is already running."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            add_file_logger("pushvalidator.network", self.log_path)
            self._ctx = (ctx or background()).child()
            self._thread = threading.Thread(target=self._loop, args=(self._ctx,), name="peer-refresh", daemon=True)
            self._thread.start()
            return True

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            ctx, thread = self._ctx, self._thread
            self._ctx = None
            self._thread = None
        if ctx is not None:
            ctx.cancel()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def _loop(self, ctx: Context) -> None:
        while not ctx.done():
            try:
                self.refresh_once(ctx)
            except ContextError:
                break
            except Exception as exc:
                log.warning("[peer-refresh] refresh failed: %s", exc)
            try:
                ctx.sleep(self.interval)
            except ContextError:
                break
        log.info("[peer-refresh] stopping peer refresh loop")

    def refresh_once(self, ctx: Optional[Context] = None) -> bool:
        """One refresh; returns True when config.toml was rewritten."""
        ctx = ctx or background()
        log.info("[peer-refresh] fetching peers from %s", self.remote_rpc)
        try:
            peers = fetch_remote_peers(self.remote_rpc, self.max_peers, ctx=ctx)
        except RPCError as exc:
            with self._lock:
                self.last_error = exc
            raise network_error("fetch peers", exc) from exc

        if len(peers) < self.min_peers:
            err = precondition_error(f"only found {len(peers)} peers (minimum: {self.min_peers})")
            with self._lock:
                self.last_error = err
            raise err

        store = ConfigStore(self.home)
        if sorted(store.get_persistent_peers()) == sorted(peers):
            log.info("[peer-refresh] peer set unchanged (%d peers)", len(peers))
            changed = False
        else:
            store.try_backup()
            store.set_persistent_peers(peers)
            log.info("[peer-refresh] successfully updated %d peers in config.toml", len(peers))
            changed = True

        with self._lock:
            self.last_run = time.time()
            self.last_error = None
        return changed


__all__ = ["PeerRefreshService", "fetch_remote_peers"]
