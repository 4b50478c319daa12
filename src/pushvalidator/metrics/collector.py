# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional
import psutil

# ---------------- Local Project ----------------
from ..core.context import Context, background
from ..network.rpc_client import RPCClient, RPCError
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.metrics(collector)")

CPU_SAMPLE_INTERVAL = 1.0


@dataclass(frozen=True)
class SystemMetrics:
    cpu_percent: float = 0.0
    mem_used: int = 0
    mem_total: int = 0
    disk_used: int = 0
    disk_total: int = 0


@dataclass(frozen=True)
class NetworkMetrics:
    peers: int = 0
    latency_ms: int = 0


@dataclass(frozen=True)
class ChainMetrics:
    local_height: int = 0
    remote_height: int = 0
    catching_up: bool = False


@dataclass(frozen=True)
class NodeMetrics:
    chain_id: str = ""
    node_id: str = ""
    moniker: str = ""
    rpc_listening: bool = False


@dataclass(frozen=True)
class MetricsSnapshot:
    system: SystemMetrics = field(default_factory=SystemMetrics)
    network: NetworkMetrics = field(default_factory=NetworkMetrics)
    chain: ChainMetrics = field(default_factory=ChainMetrics)
    node: NodeMetrics = field(default_factory=NodeMetrics)

    def to_dict(self) -> dict:
        return {
            "system": self.system.__dict__.copy(),
            "network": self.network.__dict__.copy(),
            "chain": self.chain.__dict__.copy(),
            "node": self.node.__dict__.copy(),
        }


def remote_url(remote: str) -> str:
    if remote.startswith("http://") or remote.startswith("https://"):
        return remote
    return f"https://{remote}:443"


class Collector:
    """
    Node + host metrics. CPU is sampled by a background thread so `collect()`
    never blocks on it; short-lived callers simply never call `start()`.
    """

    def __init__(self, start_cpu: bool = False, sample_interval: float = CPU_SAMPLE_INTERVAL):
        self.sample_interval = float(sample_interval)
        self._lock = threading.Lock()
        self._last_cpu = 0.0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        if start_cpu:
            self.start()

    @property
    def cpu_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            self._stop = threading.Event()
            self._thread = threading.Thread(target=self._sample_cpu, args=(self._stop,), name="cpu-sampler", daemon=True)
            self._thread.start()
            return True

    def stop(self, timeout: float = 2.0) -> None:
        with self._lock:
            thread, stop = self._thread, self._stop
            self._thread = None
        stop.set()
        if thread is not None:
            thread.join(timeout)

    def _sample_cpu(self, stop: threading.Event) -> None:
        psutil.cpu_percent(interval=None)
        while not stop.wait(self.sample_interval):
            value = psutil.cpu_percent(interval=None)
            with self._lock:
                self._last_cpu = float(value)

    def last_cpu(self) -> float:
        with self._lock:
            return self._last_cpu

    def system(self, disk_path: str = "/") -> SystemMetrics:
        vm = psutil.virtual_memory()
        try:
            du = psutil.disk_usage(disk_path)
            disk_used, disk_total = int(du.used), int(du.total)
        except OSError as exc:
            log.debug("[metrics] disk usage for %s failed: %s", disk_path, exc)
            disk_used = disk_total = 0
        return SystemMetrics(
            cpu_percent=self.last_cpu(),
            mem_used=int(vm.used),
            mem_total=int(vm.total),
            disk_used=disk_used,
            disk_total=disk_total,
        )

    def collect(self, local_rpc: str, remote_rpc: str, ctx: Optional[Context] = None) -> MetricsSnapshot:
        ctx = ctx or background()
        local = RPCClient(local_rpc)
        remote = remote_url(remote_rpc)

        chain = dict(local_height=0, remote_height=0, catching_up=False)
        node = dict(chain_id="", node_id="", moniker="", rpc_listening=False)
        try:
            st = local.status(ctx=ctx)
            chain.update(local_height=st.height, catching_up=st.catching_up)
            node.update(chain_id=st.network, node_id=st.node_id, moniker=st.moniker, rpc_listening=True)
        except RPCError as exc:
            log.debug("[metrics] local status failed: %s", exc)

        latency_ms = 0
        try:
            rst, elapsed = local.measure_latency(remote, ctx=ctx)
            chain["remote_height"] = rst.height
            latency_ms = int(elapsed)
        except RPCError as exc:
            log.debug("[metrics] remote status failed: %s", exc)

        peers = 0
        try:
            peers = len(local.peers(ctx=ctx))
        except RPCError as exc:
            log.debug("[metrics] net_info failed: %s", exc)

        return MetricsSnapshot(
            system=self.system(),
            network=NetworkMetrics(peers=peers, latency_ms=latency_ms),
            chain=ChainMetrics(**chain),
            node=NodeMetrics(**node),
        )


__all__ = [
    "Collector", "MetricsSnapshot", "SystemMetrics", "NetworkMetrics", "ChainMetrics", "NodeMetrics", "remote_url",
]
