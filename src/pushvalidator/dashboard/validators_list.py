# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import threading
from typing import Callable, Optional

# ---------------- Local Project ----------------
from .component import Component
from .messages import Data, Key, RewardsFetched, Task
from .types import DashboardData
from .util import NONE_MARK, Icons, format_float, human_int, inner_width_for_box, truncate_with_ellipsis
from ..core.context import Context, ContextError
from ..core.errors import CodedError
from ..utils import config as CFG
from ..utils.pv_logging import get_ctx_logger
from ..validator.fetcher import Rewards, bech32_to_hex

log = get_ctx_logger("pushvalidator.dashboard(validators)")

ROW_FORMAT = "{:<40} {:<24} {:<9} {:<11} {:<18} {:<18} {}"
STATUS_ORDER = {"BONDED": 1, "UNBONDING": 2, "UNBONDED": 3}

RewardsFn = Callable[[str, Context], Rewards]


def fetch_page_rewards(addresses: list, rewards_fn: RewardsFn, timeout: float = CFG.REWARDS_TIMEOUT) -> dict:
    """Rewards for every address, one worker each; returns once all have finished."""
    results: dict = {}
    lock = threading.Lock()

    def _one(addr: str) -> None:
        ctx = Context(timeout=timeout)
        try:
            value = rewards_fn(addr, ctx)
        except (CodedError, ContextError) as exc:
            log.debug("[validators] rewards for %s failed: %s", addr, exc)
            return
        with lock:
            results[addr] = value

    workers = [threading.Thread(target=_one, args=(a,), name="rewards", daemon=True) for a in addresses]
    for w in workers:
        w.start()
    for w in workers:
        w.join()
    return results


class ValidatorsList(Component):
    id = "validators_list"
    min_width = 30
    min_height = 16

    def __init__(self, no_emoji: bool = False, rewards_fn: Optional[RewardsFn] = None, page_size: int = CFG.VALIDATORS_PAGE_SIZE):
        super().__init__(no_emoji)
        self.icons = Icons.for_mode(no_emoji)
        self.rewards_fn = rewards_fn
        self.page_size = page_size
        self.page = 0
        self.show_evm = True
        self.data = DashboardData()
        self.sorted: list = []
        self.my_address = ""
        self.rewards_cache: dict = {}
        self.evm_cache: dict = {}
        self.fetching_rewards = False

    # ---------- state ----------

    @property
    def total_pages(self) -> int:
        return (len(self.sorted) + self.page_size - 1) // self.page_size

    @property
    def title(self) -> str:
        if self.total_pages > 1:
            return f"Network Validators (Page {self.page + 1}/{self.total_pages})"
        return "Network Validators"

    def sort_validators(self, validators) -> list:
        mine = self.my_address
        return sorted(
            validators,
            key=lambda v: (v.operator_address != mine or not mine, STATUS_ORDER.get(v.status, 4), -v.voting_power),
        )

    def page_addresses(self) -> list:
        start = self.page * self.page_size
        page = self.sorted[start:start + self.page_size]
        return [v.operator_address for v in page if v.operator_address and v.operator_address not in self.rewards_cache]

    def _rewards_cmd(self) -> Optional[Task]:
        if self.rewards_fn is None:
            return None
        addresses = self.page_addresses()
        if not addresses:
            return None
        self.fetching_rewards = True
        rewards_fn = self.rewards_fn
        return Task(lambda: RewardsFetched(fetch_page_rewards(addresses, rewards_fn)), name="page-rewards")

    # ---------- update ----------

    def update(self, msg, data: DashboardData):
        had_any = bool(self.sorted)
        self.data = data
        self.my_address = data.my_validator.address
        if isinstance(msg, Data) and data.validators.total:
            self.sorted = self.sort_validators(data.validators.validators)
            for v in self.sorted:
                if v.operator_address not in self.evm_cache:
                    self.evm_cache[v.operator_address] = bech32_to_hex(v.operator_address)
            if self.page >= max(self.total_pages, 1):
                self.page = 0
            if not had_any and not self.fetching_rewards and not self.rewards_cache:
                return self._rewards_cmd()

        if isinstance(msg, RewardsFetched):
            self.fetching_rewards = False
            self.rewards_cache.update(msg.rewards)
            return None
        if isinstance(msg, Key):
            return self._handle_key(msg.key)
        return None

    def _handle_key(self, key: str):
        if key == "e":
            self.show_evm = not self.show_evm
            return None
        if not self.sorted:
            return None
        if key in ("left", "p") and self.page > 0:
            self.page -= 1
            return self._rewards_cmd()
        if key in ("right", "n") and self.page < self.total_pages - 1:
            self.page += 1
            return self._rewards_cmd()
        return None

    # ---------- render ----------

    def content(self, width: int, height: int) -> list[str]:
        inner = inner_width_for_box(width)
        title = self.title_line(width)
        if self.data.validators.total == 0 or not self.sorted:
            return [title, "", f"{self.icons.warn} Loading validators..."]

        label = "ADDRESS (EVM)" if self.show_evm else "ADDRESS (COSMOS)"
        lines = [
            title,
            ROW_FORMAT.format("NODE NAME", "STATUS", "STAKE(PC)", "COMMISSION%", "COMMISSION REWARDS", "OUTSTANDING REWARDS", label),
            "─" * inner,
        ]
        start = self.page * self.page_size
        if start >= len(self.sorted):
            start = 0
        page = self.sorted[start:start + self.page_size]
        for row in range(self.page_size):
            if row >= len(page):
                lines.append("")
                continue
            v = page[row]
            mine = bool(self.my_address) and v.operator_address == self.my_address
            moniker = truncate_with_ellipsis(v.moniker + (" [My Validator]" if mine else ""), 40)
            status = v.status
            if v.jailed and status in ("UNBONDING", "UNBONDED"):
                status += " (JAILED)"
            rewards = self.rewards_cache.get(v.operator_address)
            comm = rewards.commission if rewards and rewards.commission else NONE_MARK
            outs = rewards.outstanding if rewards and rewards.outstanding else NONE_MARK
            address = v.operator_address
            if self.show_evm:
                address = self.evm_cache.get(v.operator_address) or NONE_MARK
            lines.append(ROW_FORMAT.format(
                moniker, status, human_int(v.voting_power), v.commission[:5], format_float(comm), format_float(outs), address,
            ))

        lines.append("")
        total = self.data.validators.total
        if self.total_pages > 1:
            lines.append(f"← / →: change page | e: toggle EVM/Cosmos | Total: {total} validators")
        else:
            lines.append(f"e: toggle EVM/Cosmos | Total: {total} validators")
        return lines


__all__ = ["ValidatorsList", "fetch_page_rewards", "ROW_FORMAT"]
