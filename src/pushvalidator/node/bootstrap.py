# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import os, re, json, time
import urllib.parse
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

# ---------------- Local Project ----------------
from ..core.context import Context, background
from ..core.errors import CodedError, invalid_args_error, network_error, validation_error
from ..core.runner import Runner
from ..network.rpc_client import NetPeer, RPCClient, RPCError
from ..network.trust import TrustParams, TrustProvider
from ..storage.configstore import ConfigStore, StateSyncParams
from ..utils import config as CFG
from ..utils.settings import base_url
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.node(bootstrap)")

ProgressCallback = Optional[Callable[[str], None]]


@dataclass
class BootstrapOptions:
    home: str
    chain_id: str
    genesis_domain: str
    moniker: str = CFG.DEFAULT_MONIKER
    denom: str = CFG.DEFAULT_DENOM
    bin_path: str = CFG.DEFAULT_NODE_BIN
    snapshot_rpc_primary: str = CFG.BOOTSTRAP_SNAPSHOT_RPC
    snapshot_rpc_secondary: Optional[str] = CFG.BOOTSTRAP_FALLBACK_RPC
    progress: ProgressCallback = None


@dataclass(frozen=True)
class BootstrapResult:
    genesis_path: str
    peers: list = field(default_factory=list)
    rpc_servers: list = field(default_factory=list)
    trust: Optional[TrustParams] = None
    duration_s: float = 0.0


def _host_of(url: str) -> str:
    parsed = urllib.parse.urlparse(url if "://" in url else "https://" + url)
    return parsed.hostname or url


def _port_of(listen_addr: str) -> int:
    tail = listen_addr.rsplit(":", 1)
    if len(tail) == 2 and tail[1].isdigit():
        return int(tail[1])
    return CFG.DEFAULT_P2P_PORT


def filter_peers(entries: list[NetPeer], cap: int = CFG.BOOTSTRAP_PEER_CAP) -> list[str]:
    """`id@ip:port` for usable `/net_info` entries; unspecified-host advertisers are dropped."""
    out: list[str] = []
    for p in entries:
        if not p.id or not p.remote_ip:
            continue
        if "0.0.0.0" in p.listen_addr:
            continue
        out.append(f"{p.id}@{p.remote_ip}:{_port_of(p.listen_addr)}")
        if len(out) >= cap:
            break
    return out


def dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(i for i in items if i))


_MEMBER_DECODER = json.JSONDecoder()


def raw_member(text: str, key: str, expected) -> str:
    """Source text of the `key` member whose decoded value equals `expected`."""
    pattern = re.compile(r'"' + re.escape(key) + r'"\s*:\s*')
    for match in pattern.finditer(text):
        try:
            value, end = _MEMBER_DECODER.raw_decode(text, match.end())
        except ValueError:
            continue
        if value == expected:
            return text[match.end():end]
    raise validation_error(f"{key} member not found in payload")


class Bootstrapper:
    """Fresh-node setup: genesis, peers, trust parameters and state sync config."""

    def __init__(
        self,
        runner: Optional[Runner] = None,
        http_timeout: float = CFG.BOOTSTRAP_HTTP_TIMEOUT,
        trust_retry_step: float = CFG.TRUST_RETRY_STEP,
        probe_timeout: float = CFG.PROBE_TIMEOUT,
        probe_attempts: int = CFG.PROBE_ATTEMPTS,
        probe_delay: float = CFG.PROBE_RETRY_DELAY,
        seed_hosts: tuple = CFG.BOOTSTRAP_SEED_HOSTS,
        fallback_rpc: str = CFG.BOOTSTRAP_FALLBACK_RPC,
    ):
        self.runner = runner or Runner()
        self.http_timeout = float(http_timeout)
        self.trust_retry_step = float(trust_retry_step)
        self.probe_timeout = float(probe_timeout)
        self.probe_attempts = max(1, int(probe_attempts))
        self.probe_delay = float(probe_delay)
        self.seed_hosts = tuple(seed_hosts)
        self.fallback_rpc = fallback_rpc

    def _client(self, base: str) -> RPCClient:
        return RPCClient(base, timeout=self.http_timeout)

    # ---------- steps ----------

    def fetch_genesis(self, genesis_base: str, ctx: Context) -> bytes:
        """`result.genesis` of the remote `/genesis`, byte for byte as served."""
        try:
            raw = self._client(genesis_base).get_bytes("/genesis", ctx=ctx)
        except RPCError as exc:
            raise network_error("fetch genesis", exc) from exc
        try:
            text = raw.decode("utf-8")
            payload = json.loads(text)
        except (UnicodeDecodeError, ValueError) as exc:
            raise validation_error("fetch genesis: malformed JSON", exc) from exc
        genesis = (payload.get("result") or {}).get("genesis") if isinstance(payload, dict) else None
        if not genesis:
            raise validation_error("fetch genesis: empty genesis")
        return raw_member(text, "genesis", genesis).encode("utf-8")

    def discover_peers(self, genesis_base: str, ctx: Context) -> list[str]:
        try:
            peers = filter_peers(self._client(genesis_base).net_info(ctx=ctx))
        except RPCError as exc:
            log.warning("[bootstrap] net_info on %s failed: %s", genesis_base, exc)
            peers = []
        if peers:
            return peers

        for base in (genesis_base, *("https://" + h for h in self.seed_hosts)):
            peer = self.node_peer(base, ctx)
            if peer:
                peers.append(peer)
                if base == genesis_base:
                    break
        return peers

    def node_peer(self, rpc_url: str, ctx: Context) -> Optional[str]:
        """`node_id@host:26656` for the node behind an RPC URL, or None."""
        try:
            st = self._client(rpc_url).status(ctx=ctx)
        except RPCError as exc:
            log.warning("[bootstrap] status on %s failed: %s", rpc_url, exc)
            return None
        if not st.node_id:
            return None
        return f"{st.node_id}@{_host_of(rpc_url)}:{CFG.DEFAULT_P2P_PORT}"

    def probe_rpc(self, url: str, ctx: Context) -> bool:
        client = self._client(url)
        for attempt in range(self.probe_attempts):
            if client.probe(url, timeout=self.probe_timeout, ctx=ctx):
                return True
            if attempt < self.probe_attempts - 1:
                ctx.sleep(self.probe_delay)
        return False

    def pick_rpc_servers(self, candidates: list[str], ctx: Context) -> list[str]:
        alive = [u for u in dedupe(candidates) if self.probe_rpc(u, ctx)]
        if not alive:
            raise network_error("no reachable RPC servers for state sync")
        if len(alive) == 1:
            # state sync wants two distinct witnesses
            if not self.fallback_rpc or self.fallback_rpc == alive[0]:
                raise network_error(f"state sync needs two distinct RPC servers, only {alive[0]} is reachable")
            alive.append(self.fallback_rpc)
        return alive

    # ---------- pipeline ----------

    def init(self, opts: BootstrapOptions, ctx: Optional[Context] = None) -> BootstrapResult:
        ctx = ctx or background()
        started = time.time()
        if not opts.home or not opts.chain_id:
            raise invalid_args_error("home directory and chain id are required")
        if not opts.genesis_domain:
            raise invalid_args_error("genesis domain is required")
        moniker = opts.moniker or CFG.DEFAULT_MONIKER
        denom = opts.denom or CFG.DEFAULT_DENOM
        bin_path = opts.bin_path or CFG.DEFAULT_NODE_BIN

        def _emit(message: str) -> None:
            if opts.progress:
                try:
                    opts.progress(message)
                except Exception as exc:
                    log.debug("[bootstrap] progress callback failed: %s", exc)
            log.info("[bootstrap] %s", message)

        home = opts.home
        config_dir = os.path.join(home, CFG.CONFIG_DIRNAME)
        cfg_path = os.path.join(config_dir, CFG.CONFIG_FILENAME)

        _emit("Setting up node directories...")
        os.makedirs(config_dir, mode=0o755, exist_ok=True)
        os.makedirs(os.path.join(home, CFG.LOGS_DIRNAME), mode=0o755, exist_ok=True)

        if not os.path.exists(cfg_path):
            _emit(f"Running {os.path.basename(bin_path)} init...")
            self.runner.run(
                ctx, bin_path, "init", moniker,
                f"--chain-id={opts.chain_id}", f"--default-denom={denom}", f"--home={home}", "--overwrite",
            )
            if not os.path.exists(cfg_path):
                with open(cfg_path, "w", encoding="utf-8"):
                    pass

        _emit("Fetching genesis from network...")
        genesis_base = base_url(opts.genesis_domain)
        genesis = self.fetch_genesis(genesis_base, ctx)
        genesis_path = os.path.join(config_dir, CFG.GENESIS_FILENAME)
        with open(genesis_path, "wb") as handle:
            handle.write(genesis)

        _emit("Discovering peers...")
        peers = self.discover_peers(genesis_base, ctx)
        snapshot_rpcs = dedupe([opts.snapshot_rpc_primary or "", opts.snapshot_rpc_secondary or ""])
        for rpc in snapshot_rpcs:
            peer = self.node_peer(rpc, ctx)
            if peer:
                peers.append(peer)
        peers = dedupe(peers) or list(CFG.BOOTSTRAP_FULLNODE_PEERS)

        store = ConfigStore(home)
        store.set_persistent_peers(peers)

        pvs = os.path.join(home, CFG.DATA_DIRNAME, CFG.PVS_FILENAME)
        if not os.path.exists(pvs):
            os.makedirs(os.path.dirname(pvs), mode=0o755, exist_ok=True)
            with open(pvs, "w", encoding="utf-8") as handle:
                handle.write(CFG.PVS_EMPTY_JSON)

        _emit("Computing state sync trust parameters...")
        primary = opts.snapshot_rpc_primary or CFG.BOOTSTRAP_SNAPSHOT_RPC
        trust = TrustProvider(self._client(primary), retry_step=self.trust_retry_step).compute(ctx)

        _emit("Selecting state sync RPC servers...")
        rpc_servers = self.pick_rpc_servers(snapshot_rpcs or [primary], ctx)

        _emit("Configuring state sync...")
        store.try_backup()
        store.enable_state_sync(StateSyncParams(
            trust_height=trust.height,
            trust_hash=trust.hash,
            rpc_servers=rpc_servers,
            trust_period=CFG.TRUST_PERIOD,
        ))

        try:
            self.runner.run(ctx, bin_path, "tendermint", "unsafe-reset-all", "--home", home, "--keep-addr-book")
        except CodedError as exc:
            log.warning("[bootstrap] unsafe-reset-all failed: %s", exc)

        marker = os.path.join(home, CFG.STATE_SYNC_MARKER)
        try:
            with open(marker, "w", encoding="utf-8") as handle:
                handle.write(datetime.now(timezone.utc).isoformat(timespec="seconds"))
        except OSError as exc:
            log.warning("[bootstrap] failed writing %s: %s", marker, exc)

        duration = time.time() - started
        _emit(f"Bootstrap complete ({len(peers)} peers, trust height {trust.height})")
        return BootstrapResult(
            genesis_path=genesis_path,
            peers=peers,
            rpc_servers=rpc_servers,
            trust=trust,
            duration_s=duration,
        )


__all__ = ["Bootstrapper", "BootstrapOptions", "BootstrapResult", "filter_peers", "dedupe", "raw_member"]
