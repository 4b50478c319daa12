# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Dashboard state machine.

`Dashboard.update(msg)` is the only place UI state changes; it returns the
commands the runtime should run next. At most one data fetch is in flight:
its cancel handle arrives through a FetchStarted message and is cleared by the
Data / DataErr carrying the same fetch id; results of a superseded fetch are
dropped. The tick interval is 1s while the node catches up and 5s once it
reports in sync.
"""

from __future__ import annotations

import time, threading, subprocess
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

# ---------------- Local Project ----------------
from .component import ComponentRegistry
from .layout import DEFAULT_LAYOUT, Layout
from .log_viewer import LogViewer
from .messages import (
    Cmd, Data, DataErr, Emit, FetchStarted, ForceRefresh, Key, RewardsFetched, Seq, SpinAfter, SpinnerTick, Task,
    Tick, TickAfter, ToggleHelp, WindowSize,
)
from .panels import ChainStatus, Header, NetworkStatus, NodeStatus, ValidatorInfo
from .types import DashboardData, NodeInfo, Options, UpdateInfo
from .util import center, human_int, join_horizontal, percent, render_box
from .validators_list import ValidatorsList
from ..core.context import CancelledError, Context, ContextError
from ..core.errors import CodedError
from ..core.runner import run_capture
from ..metrics.collector import Collector
from ..network.rpc_client import RPCClient, RPCError
from ..node.supervisor import Supervisor
from ..update.cache import load_cache
from ..utils import config as CFG
from ..utils.pv_logging import get_ctx_logger
from ..validator.fetcher import NONE_MARK, Rewards, ValidatorFetcher

log = get_ctx_logger("pushvalidator.dashboard(model)")

SPINNER_FRAMES = ("⣾", "⣽", "⣻", "⢿", "⡿", "⣟", "⣯", "⣷")
SPINNER_FRAMES_ASCII = ("|", "/", "-", "\\")
FOOTER_LINES = 3

NAV_KEYS = ("up", "down", "left", "right", "p", "n", "/", "f", "t", "l")
INPUT_KEYS = ("backspace", "enter", "esc")

HELP_TEXT = f"""\
Push Validator Manager
{'─' * 60}

USAGE
  {CFG.TOOL_NAME} <command> [flags]

Quick Start
  {CFG.TOOL_NAME} start              Start the node process
  {CFG.TOOL_NAME} status             Show node/rpc/sync status
  {CFG.TOOL_NAME} dashboard          Live dashboard with metrics
  {CFG.TOOL_NAME} sync               Monitor sync progress live

Operations
  {CFG.TOOL_NAME} stop               Stop the node process
  {CFG.TOOL_NAME} restart            Restart the node process
  {CFG.TOOL_NAME} logs               Tail node logs

Validator
  {CFG.TOOL_NAME} validators         List validators (--output json)
  {CFG.TOOL_NAME} register-validator Register this node as validator
  {CFG.TOOL_NAME} withdraw-rewards   Withdraw rewards and commission
  {CFG.TOOL_NAME} restake-rewards    Withdraw rewards and delegate them back
  {CFG.TOOL_NAME} proposals          List governance proposals

Maintenance
  {CFG.TOOL_NAME} backup             Create config/state backup
  {CFG.TOOL_NAME} reset              Reset chain data (keeps addr book)

Utilities
  {CFG.TOOL_NAME} doctor             Run diagnostic checks
  {CFG.TOOL_NAME} peers              List connected peers
  {CFG.TOOL_NAME} version            Show version information

Keys
  q quit | r refresh now | h toggle help
  ↑/↓ scroll logs | ←/p →/n validator pages | e EVM/Cosmos
  / search logs | f follow | t oldest | l latest

Press 'q', 'h', or 'esc' to close help"""


class VersionCache:
    """`<bin> version`, cached for a few minutes and reset whenever the node PID changes."""

    def __init__(self, binary_fn: Callable[[], str], ttl: float = CFG.DASH_VERSION_TTL, runner=run_capture):
        self.binary_fn = binary_fn
        self.ttl = ttl
        self._run = runner
        self._lock = threading.Lock()
        self._value = ""
        self._at = 0.0
        self._pid = 0

    def get(self, running: bool, pid: int, ctx: Optional[Context] = None) -> str:
        if not running:
            return NONE_MARK
        with self._lock:
            if pid != self._pid:
                self._value, self._at, self._pid = "", 0.0, pid
            if self._value and time.monotonic() - self._at < self.ttl:
                return self._value
            try:
                path = self.binary_fn()
            except CodedError as exc:
                self._value = str(exc)
                return self._value
            timeout = ctx.remaining(CFG.DASH_RPC_TIMEOUT) if ctx is not None else CFG.DASH_RPC_TIMEOUT
            try:
                proc = self._run([path, "version"], timeout=timeout)
            except (OSError, subprocess.TimeoutExpired) as exc:
                log.debug("[dashboard] %s version failed: %s", path, exc)
                self._value = "version error"
                return self._value
            if proc.returncode == 0:
                self._value = (proc.stdout or "").strip()
                self._at = time.monotonic()
            else:
                self._value = "version error"
            return self._value


class Dashboard:
    def __init__(
        self,
        opts: Options,
        supervisor: Optional[Supervisor] = None,
        fetcher: Optional[ValidatorFetcher] = None,
        collector: Optional[Collector] = None,
        versions: Optional[VersionCache] = None,
        log_viewer: Optional[LogViewer] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if opts.refresh_interval <= 0:
            opts = replace(opts, refresh_interval=CFG.DASH_REFRESH_INTERVAL)
        self.opts = opts
        settings = opts.settings
        self.supervisor = supervisor or Supervisor(settings.home_dir)
        self.fetcher = fetcher or ValidatorFetcher(settings, binary=opts.bin_path or None)
        self.collector = collector or Collector()
        self.versions = versions or VersionCache(self.fetcher.binary)
        self._clock = clock

        self.registry = ComponentRegistry()
        self.registry.register(Header(opts.no_emoji))
        self.registry.register(NodeStatus(opts.no_emoji))
        self.registry.register(ChainStatus(opts.no_emoji))
        self.registry.register(NetworkStatus(opts.no_emoji))
        self.registry.register(ValidatorsList(opts.no_emoji, rewards_fn=self._page_rewards))
        self.registry.register(ValidatorInfo(opts.no_emoji))
        self.registry.register(log_viewer or LogViewer(settings.node_log_path, opts.no_emoji))
        self.layout = Layout(DEFAULT_LAYOUT, self.registry)

        self.data = DashboardData(cli_version=opts.cli_version)
        self.last_ok: Optional[float] = None
        self.err: Optional[BaseException] = None
        self.stale = False
        self.loading = True
        self.show_help = False
        self.quitting = False
        self.width = 0
        self.height = 0
        self.fetch_cancel: Optional[Callable[[], None]] = None
        self.fetch_id = 0
        self._fetch_seq = 0
        self.spinner_frame = 0

    # ---------- lifecycle ----------

    def init(self) -> list[Cmd]:
        self.collector.start()
        cmds = [SpinAfter(CFG.DASH_SPINNER_INTERVAL), self.fetch_cmd(), TickAfter(self.opts.refresh_interval)]
        return cmds + self.registry.init_all()

    def close(self) -> None:
        if self.fetch_cancel is not None:
            self.fetch_cancel()
            self.fetch_cancel = None
        self.registry.close_all()
        self.collector.stop()

    def next_interval(self) -> float:
        # the 1s floor holds until a fetch has succeeded
        if self.last_ok is not None and not self.data.metrics.chain.catching_up:
            return CFG.DASH_INSYNC_INTERVAL
        return self.opts.refresh_interval

    # ---------- update ----------

    def update(self, msg) -> list[Cmd]:
        if isinstance(msg, Key):
            return self.handle_key(msg.key)
        if isinstance(msg, WindowSize):
            self.width, self.height = msg.width, msg.height
            return []
        if isinstance(msg, FetchStarted):
            if self.fetch_cancel is not None:
                self.fetch_cancel()
            self.fetch_cancel = msg.cancel
            self.fetch_id = msg.fetch_id
            return []
        if isinstance(msg, Tick):
            cmds: list[Cmd] = [TickAfter(self.next_interval())]
            if self.fetch_cancel is None:
                cmds.append(self.fetch_cmd())
            return cmds
        if isinstance(msg, (Data, DataErr)) and msg.fetch_id != self.fetch_id:
            log.debug("[dashboard] dropping result of superseded fetch %d", msg.fetch_id)
            return []
        if isinstance(msg, Data):
            self.data = msg.data
            self.last_ok = self._clock()
            self.err = None
            self.stale = False
            self.loading = False
            self.fetch_cancel = None
            return self.registry.update_all(msg, self.data)
        if isinstance(msg, DataErr):
            if isinstance(msg.err, CancelledError):
                # superseded by a forced refresh or shutting down
                return []
            self.err = msg.err
            self.data = replace(self.data, err=msg.err)
            self.stale = self.last_ok is None or self._clock() - self.last_ok > CFG.DASH_STALE_AFTER
            self.loading = False
            self.fetch_cancel = None
            return self.registry.update_all(msg, self.data)
        if isinstance(msg, ForceRefresh):
            return [self.fetch_cmd()]
        if isinstance(msg, ToggleHelp):
            self.show_help = not self.show_help
            return []
        if isinstance(msg, RewardsFetched):
            return self.registry.update_all(msg, self.data)
        if isinstance(msg, SpinnerTick):
            self.spinner_frame += 1
            return [SpinAfter(CFG.DASH_SPINNER_INTERVAL)] if self.loading else []
        return []

    def handle_key(self, key: str) -> list[Cmd]:
        if self.show_help:
            if key in ("q", "h", "esc"):
                return [Emit(ToggleHelp())]
            return []
        if key in ("q", "ctrl+c"):
            if self.fetch_cancel is not None:
                self.fetch_cancel()
                self.fetch_cancel = None
            self.quitting = True
            return []
        if key == "r":
            return [Emit(ForceRefresh())]
        if key == "h":
            return [Emit(ToggleHelp())]
        if key in NAV_KEYS or key in INPUT_KEYS or len(key) == 1:
            return self.registry.update_all(Key(key), self.data)
        return []

    # ---------- fetching ----------

    def fetch_cmd(self) -> Seq:
        self._fetch_seq += 1
        fetch_id = self._fetch_seq
        ctx = Context(timeout=self.opts.fetch_timeout())
        return Seq((
            Emit(FetchStarted(ctx.cancel, fetch_id)),
            Task(lambda: self.run_fetch(ctx, fetch_id), name="fetch"),
        ))

    def run_fetch(self, ctx: Context, fetch_id: int = 0):
        try:
            return Data(self.fetch_data(ctx), fetch_id)
        except (CodedError, ContextError, OSError) as exc:
            return DataErr(exc, fetch_id)
        except Exception as exc:
            # the slot must be released or no later tick fetches again
            log.exception("[dashboard] fetch failed unexpectedly")
            return DataErr(exc, fetch_id)
        finally:
            ctx.cancel()

    def _page_rewards(self, addr: str, ctx: Context) -> Rewards:
        return self.fetcher.rewards(addr, ctx)

    def fetch_data(self, ctx: Context) -> DashboardData:
        """Runs on a worker thread; touches no UI state."""
        settings = self.opts.settings
        metrics = self.collector.collect(settings.rpc_local, settings.genesis_domain, ctx)

        peers: tuple = ()
        try:
            peers = tuple(RPCClient(settings.rpc_local).peers(ctx=ctx))
        except RPCError as exc:
            log.debug("[dashboard] peers unavailable: %s", exc)

        pid = self.supervisor.pid()
        running = pid is not None
        uptime = (self.supervisor.uptime() or 0.0) if running else 0.0
        node = NodeInfo(
            running=running,
            pid=pid or 0,
            uptime=uptime,
            binary_version=self.versions.get(running, pid or 0, ctx),
        )

        data = DashboardData(
            metrics=metrics,
            node=node,
            peers=peers,
            cli_version=self.opts.cli_version,
            last_update=time.time(),
            update=self._update_info(),
        )

        try:
            data = replace(data, validators=self.fetcher.validators(ctx))
        except CodedError as exc:
            log.debug("[dashboard] validator list unavailable: %s", exc)
        try:
            mine = self.fetcher.my_validator(ctx)
            data = replace(data, my_validator=mine)
            if mine.is_validator and mine.address:
                try:
                    data = replace(data, my_rewards=self.fetcher.rewards(mine.address, ctx))
                except CodedError as exc:
                    log.debug("[dashboard] rewards unavailable: %s", exc)
        except CodedError as exc:
            log.debug("[dashboard] my validator unavailable: %s", exc)

        # results of a cancelled fetch never reach the UI
        ctx.check()
        return data

    def _update_info(self) -> UpdateInfo:
        entry = load_cache(self.opts.settings.home_dir)
        if entry is None or not entry.update_available:
            return UpdateInfo()
        return UpdateInfo(available=True, latest_version=entry.latest_version)

    # ---------- view ----------

    def spinner(self) -> str:
        frames = SPINNER_FRAMES_ASCII if self.opts.no_emoji else SPINNER_FRAMES
        return frames[self.spinner_frame % len(frames)]

    def _place(self, box: list[str]) -> list[str]:
        top = max((self.height - len(box)) // 2, 0)
        lines = [""] * top + [center(line, self.width) for line in box]
        return lines[:self.height]

    def view(self) -> list[str]:
        if self.width <= 0 or self.height <= 1:
            return []
        if self.loading:
            body = [self.spinner(), "CONNECTING TO RPC", "", "Initializing dashboard..."]
            box_w = min(self.width, 40)
            return self._place(render_box(["", *body, ""], box_w, len(body) + 4, self.opts.no_emoji, align_center=True))
        if self.show_help:
            help_lines = HELP_TEXT.splitlines()
            box_w = min(self.width, max(len(l) for l in help_lines) + 6)
            box_h = min(self.height, len(help_lines) + 2)
            return self._place(render_box(help_lines, box_w, box_h, self.opts.no_emoji))

        result = self.layout.compute(self.width, max(self.height - FOOTER_LINES, 1))
        rows: dict[int, list] = {}
        for cell in result.cells:
            rows.setdefault(cell.y, []).append(cell)
        out: list[str] = []
        for y in sorted(rows):
            cells = sorted(rows[y], key=lambda c: c.x)
            blocks, widths = [], []
            for cell in cells:
                blocks.append(self.render_cell(cell.id, cell.w, cell.h))
                widths.append(cell.w)
            out.extend(join_horizontal(blocks, widths, cells[0].h))
        if result.warning:
            out.append(f"⚠ {result.warning}")
        out.append("Controls: h for help | Ctrl+C to exit")
        out.append(
            f"Quick Commands: {CFG.TOOL_NAME} status | {CFG.TOOL_NAME} start | {CFG.TOOL_NAME} stop | "
            f"{CFG.TOOL_NAME} dashboard | {CFG.TOOL_NAME} --help"
        )
        return out

    def render_cell(self, comp_id: str, width: int, height: int) -> list[str]:
        comp = self.registry.get(comp_id)
        if comp is None:
            return []
        try:
            return comp.view(width, height)
        except Exception:
            # one broken panel must not take the whole screen down
            log.exception("[dashboard] render of %s failed", comp_id)
            return render_box([f"render error in {comp_id}"], width, height, self.opts.no_emoji)


def render_static(data: DashboardData, rpc_local: str = CFG.DEFAULT_RPC_LOCAL) -> str:
    """Plain-text status for non-interactive terminals."""
    chain, node, mv = data.metrics.chain, data.node, data.my_validator
    out = ["=== PUSH VALIDATOR STATUS ===", "", "NODE STATUS:"]
    if node.running:
        out.append(f"  Status: Running (PID: {node.pid})")
        out.append(f"  Version: {node.binary_version}")
    else:
        out.append("  Status: Stopped")
    out += [f"  RPC: {rpc_local}", "", "CHAIN STATUS:", f"  Height: {human_int(chain.local_height)}"]
    if chain.remote_height > 0:
        out.append(f"  Remote Height: {human_int(chain.remote_height)}")
    if chain.remote_height > chain.local_height:
        out.append(f"  Blocks Behind: {human_int(chain.remote_height - chain.local_height)}")
    out += [
        f"  Catching Up: {str(chain.catching_up).lower()}",
        "",
        "NETWORK STATUS:",
        f"  Peers: {data.metrics.network.peers}",
        f"  Chain ID: {data.metrics.node.chain_id}",
        "",
    ]
    if mv.is_validator:
        power = human_int(mv.voting_power)
        if mv.voting_pct > 0:
            power += f" ({percent(mv.voting_pct)})"
        out += [
            "VALIDATOR STATUS:",
            f"  Moniker: {mv.moniker}",
            f"  Status: {mv.status}",
            f"  Voting Power: {power}",
            f"  Jailed: {str(mv.jailed).lower()}",
            "",
        ]
    stamp = datetime.fromtimestamp(data.last_update or time.time()).astimezone()
    out.append(f"Last Update: {stamp.strftime('%Y-%m-%d %H:%M:%S %Z')}")
    return "\n".join(out) + "\n"


__all__ = ["Dashboard", "VersionCache", "render_static", "HELP_TEXT"]
