# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Static panels: header, node status, chain sync, network and my-validator.
Each keeps the last DashboardData it was handed and renders from it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

# ---------------- Local Project ----------------
from .component import Component
from .messages import Data
from .types import DashboardData
from .util import (
    NONE_MARK, ETACalculator, Icons, duration_short, format_float, format_timestamp, human_int,
    inner_width_for_box, pad_right, percent, render_box, time_until, truncate_with_ellipsis,
)
from ..utils import config as CFG
from ..utils.helpers import parse_rfc3339

SYNC_BAR_WIDTH = 28
MAX_PEERS_SHOWN = 5


class _DataPanel(Component):
    def __init__(self, no_emoji: bool = False):
        super().__init__(no_emoji)
        self.icons = Icons.for_mode(no_emoji)
        self.data = DashboardData()

    def update(self, msg, data: DashboardData):
        self.data = data
        return None


class Header(_DataPanel):
    id = "header"
    title = "PUSH VALIDATOR DASHBOARD"
    min_width = 40
    min_height = 3

    def content(self, width: int, height: int) -> list[str]:
        lines = [self.title]
        if self.data.err is not None:
            lines.append(f"{self.icons.warn} {self.data.err}")
        if self.data.update.available:
            lines.append(f"Update available: v{self.data.update.latest_version} (run: {CFG.TOOL_NAME} update)")
        return lines

    def frame(self, lines, width, height):
        return render_box(lines, width, height, self.no_emoji, align_center=True)


class NodeStatus(_DataPanel):
    id = "node_status"
    title = "Node Status"
    min_width = 25
    min_height = 8

    def content(self, width: int, height: int) -> list[str]:
        node, system = self.data.node, self.data.metrics.system
        lines = [self.title_line(width)]
        if node.running:
            status = f"Running (pid {node.pid})" if node.pid else "Running"
            lines.append(f"{self.icons.ok} {status}")
        else:
            lines.append(f"{self.icons.err} Stopped")
        if self.data.metrics.node.rpc_listening:
            lines.append(f"{self.icons.ok} RPC: Listening")
        else:
            lines.append(f"{self.icons.err} RPC: Not listening")
        if node.uptime > 0:
            lines.append(f"Uptime: {duration_short(node.uptime)}")
        if system.mem_total > 0:
            lines.append(f"Memory: {percent(system.mem_used / system.mem_total)}")
        if system.disk_total > 0:
            lines.append(f"Disk: {percent(system.disk_used / system.disk_total)}")
        if node.binary_version:
            lines.append(f"Version: {node.binary_version}")
        return lines


def render_sync_progress(local: int, remote: int, no_emoji: bool, catching_up: bool) -> str:
    if remote <= 0:
        return ""
    pct = min(max(local / remote * 100.0, 0.0), 100.0)
    filled = min(max(int(pct / 100.0 * SYNC_BAR_WIDTH), 0), SYNC_BAR_WIDTH)
    bar = "█" * filled + "░" * (SYNC_BAR_WIDTH - filled)
    label = "Syncing" if catching_up else "In Sync"
    if not no_emoji:
        label = "📊 " + label
    return f"{label} [{bar}] {pct:.2f}% | {human_int(local)}/{human_int(remote)} blocks"


class ChainStatus(_DataPanel):
    id = "chain_status"
    title = "Chain Status"
    min_width = 30
    min_height = 10

    def __init__(self, no_emoji: bool = False, eta: Optional[ETACalculator] = None):
        super().__init__(no_emoji)
        self.eta = eta or ETACalculator()

    def update(self, msg, data: DashboardData):
        self.data = data
        chain = data.metrics.chain
        # one sample per successful fetch, not per key press or resize
        if isinstance(msg, Data) and chain.remote_height > chain.local_height:
            self.eta.add_sample(chain.remote_height - chain.local_height)
        return None

    def content(self, width: int, height: int) -> list[str]:
        chain = self.data.metrics.chain
        lines = [self.title_line(width)]
        if not self.data.node.running or not self.data.metrics.node.rpc_listening:
            lines.append(f"{self.icons.err} Unknown")
            if chain.remote_height > 0:
                lines.append(f"{human_int(chain.local_height)}/{human_int(chain.remote_height)}")
            else:
                lines.append(f"Height: {human_int(chain.local_height)}")
            return lines

        sync = render_sync_progress(chain.local_height, chain.remote_height, self.no_emoji, chain.catching_up)
        if chain.catching_up and chain.remote_height > chain.local_height:
            eta = self.eta.calculate()
            if eta and eta != "calculating...":
                sync += f" | ETA: {eta}"
        elif chain.remote_height > 0:
            sync += " | ETA: 0s"
        # long sync line wraps onto following rows
        inner = inner_width_for_box(width)
        while sync:
            lines.append(sync[:inner])
            sync = sync[inner:]
        return lines


class NetworkStatus(_DataPanel):
    id = "network_status"
    title = "Network Status"
    min_width = 25
    min_height = 8

    def content(self, width: int, height: int) -> list[str]:
        metrics = self.data.metrics
        peers = self.data.peers
        lines = [self.title_line(width)]
        if peers:
            lines.append(f"Connected to {len(peers)} peers (Node ID):")
            for peer in peers[:MAX_PEERS_SHOWN]:
                lines.append(f"  {peer.id}")
            if len(peers) > MAX_PEERS_SHOWN:
                lines.append(f"  ... and {len(peers) - MAX_PEERS_SHOWN} more")
        else:
            lines.append(f"{self.icons.warn} 0 peers")
        if metrics.network.latency_ms > 0:
            lines.append(f"Latency: {metrics.network.latency_ms}ms")
        if metrics.node.chain_id:
            lines.append(f"Chain: {truncate_with_ellipsis(metrics.node.chain_id, 24)}")
        if metrics.node.node_id:
            lines.append(f"Node ID: {metrics.node.node_id}")
        if metrics.node.moniker:
            lines.append(f"Name: {metrics.node.moniker}")
        return lines


def jail_expired(rfc_time: str, now: Optional[datetime] = None) -> bool:
    if not rfc_time:
        return False
    try:
        until = parse_rfc3339(rfc_time)
    except ValueError:
        return False
    return (now or datetime.now(timezone.utc)) > until


def _has_amount(value: str) -> bool:
    return bool(value) and value not in (NONE_MARK, "0")


class ValidatorInfo(_DataPanel):
    id = "validator_info"
    title = "My Validator Status"
    min_width = 30
    min_height = 10
    # jail release is checked against the clock
    volatile = True

    def _status_icon(self) -> str:
        mv = self.data.my_validator
        if mv.jailed:
            return self.icons.err
        if mv.status in ("UNBONDING", "UNBONDED"):
            return self.icons.warn
        return self.icons.ok

    def _power_text(self) -> str:
        mv = self.data.my_validator
        text = human_int(mv.voting_power)
        if mv.voting_pct > 0:
            text += f" ({percent(mv.voting_pct)})"
        return text

    def content(self, width: int, height: int) -> list[str]:
        mv = self.data.my_validator
        title = self.title_line(width)

        # matched by moniker only: someone else's key, or this node before `register`
        if not mv.is_validator and mv.moniker and mv.status:
            lines = [
                title,
                f"{self.icons.warn} Validator found by moniker",
                "but running with different key/node",
                "",
                f"{self._status_icon()} Status: {mv.status}",
                f"Power: {self._power_text()}",
            ]
            if mv.commission:
                lines.append(f"Commission: {mv.commission}")
            if mv.jailed:
                lines += ["", f"{self.icons.err} Jailed: {mv.slashing.jail_reason or 'Unknown'}"]
            lines += ["", "To control this validator, run:", f"{CFG.TOOL_NAME} register-validator"]
            return lines

        if not mv.is_validator:
            if mv.has_moniker_conflict:
                return [
                    title, "",
                    f"{self.icons.warn} Not registered", "",
                    f"{self.icons.err} Moniker conflict detected!",
                    "A different validator is using",
                    f"moniker '{truncate_with_ellipsis(mv.moniker_conflict, 20)}'", "",
                    "Use a different moniker to register:",
                    f"{CFG.TOOL_NAME} register-validator",
                ]
            return [
                title, "",
                f"{self.icons.warn} Not registered as validator", "",
                "To register, run:",
                f"{CFG.TOOL_NAME} register-validator",
            ]

        left = []
        if mv.moniker:
            left.append(f"Moniker: {truncate_with_ellipsis(mv.moniker, 22)}")
        left.append(f"{self._status_icon()} Status: {mv.status}")
        left.append(f"Power: {self._power_text()}")
        if mv.commission:
            left.append(f"Commission: {mv.commission}")
        rewards = self.data.my_rewards
        if rewards.commission not in ("", NONE_MARK):
            left.append(f"Commission Rewards: {format_float(rewards.commission)} PC")
        if rewards.outstanding not in ("", NONE_MARK):
            left.append(f"Outstanding Rewards: {format_float(rewards.outstanding)} PC")
        if _has_amount(rewards.commission) or _has_amount(rewards.outstanding):
            left += ["", "Rewards available!", f"Run: {CFG.TOOL_NAME} withdraw-rewards"]

        if not mv.jailed:
            return [title, *left]

        right = ["STATUS DETAILS", "", f"{mv.status} (JAILED)", ""]
        slashing = mv.slashing
        if mv.slashing_error:
            right.append(truncate_with_ellipsis(mv.slashing_error, 40))
        right.append(f"Reason: {slashing.jail_reason or 'Unknown'}")
        if slashing.missed_blocks > 0:
            right.append(f"Missed: {human_int(slashing.missed_blocks)} blks")
        if slashing.tombstoned:
            right.append(f"{self.icons.err} Tombstoned: Yes")
        if slashing.jailed_until:
            formatted = format_timestamp(slashing.jailed_until)
            if formatted:
                right.append(f"Until: {formatted}")
            left_time = time_until(slashing.jailed_until)
            if left_time and left_time != "0s":
                right.append(f"Remaining: {left_time}")
            if jail_expired(slashing.jailed_until):
                right += ["", f"{self.icons.ok} Ready to unjail!", f"Run: {CFG.TOOL_NAME} unjail"]

        inner = inner_width_for_box(width)
        left_w = inner // 2
        right_w = max(inner - left_w - 2, 0)
        rows = max(len(left), len(right))
        merged = []
        for i in range(rows):
            l_txt = left[i] if i < len(left) else ""
            r_txt = right[i] if i < len(right) else ""
            merged.append(pad_right(l_txt, left_w) + "  " + pad_right(r_txt, right_w))
        return [title, *merged]


__all__ = [
    "Header", "NodeStatus", "ChainStatus", "NetworkStatus", "ValidatorInfo", "render_sync_progress", "jail_expired",
]
