# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

# ---------------- Local Project ----------------
from ..metrics.collector import MetricsSnapshot
from ..utils import config as CFG
from ..utils.settings import NodeSettings
from ..validator.fetcher import MyValidatorInfo, Rewards, ValidatorList


@dataclass(frozen=True)
class NodeInfo:
    running: bool = False
    pid: int = 0
    uptime: float = 0.0
    binary_version: str = ""


@dataclass(frozen=True)
class UpdateInfo:
    available: bool = False
    latest_version: str = ""


@dataclass(frozen=True)
class DashboardData:
    """One fetch worth of dashboard state. Panels only ever read it."""
    metrics: MetricsSnapshot = field(default_factory=MetricsSnapshot)
    node: NodeInfo = field(default_factory=NodeInfo)
    my_validator: MyValidatorInfo = field(default_factory=MyValidatorInfo)
    my_rewards: Rewards = field(default_factory=Rewards)
    validators: ValidatorList = field(default_factory=ValidatorList)
    peers: tuple = field(default_factory=tuple)
    update: UpdateInfo = field(default_factory=UpdateInfo)
    cli_version: str = ""
    last_update: float = 0.0
    err: Optional[BaseException] = None


@dataclass(frozen=True)
class Options:
    settings: NodeSettings
    refresh_interval: float = CFG.DASH_REFRESH_INTERVAL
    rpc_timeout: float = CFG.DASH_RPC_TIMEOUT
    no_color: bool = False
    no_emoji: bool = False
    debug: bool = False
    cli_version: str = ""
    bin_path: str = ""

    def fetch_timeout(self) -> float:
        """RPC deadline, never longer than two refresh intervals."""
        timeout = self.rpc_timeout if self.rpc_timeout > 0 else CFG.DASH_RPC_TIMEOUT
        if self.refresh_interval > 0:
            timeout = min(timeout, 2 * self.refresh_interval)
        return timeout


__all__ = ["NodeInfo", "UpdateInfo", "DashboardData", "Options"]
