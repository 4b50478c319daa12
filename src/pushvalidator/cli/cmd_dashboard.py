# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import sys

# ---------------- Local Project ----------------
from .common import Env
from .. import __version__
from ..core.context import Context
from ..dashboard import terminal
from ..dashboard.model import Dashboard, render_static
from ..dashboard.types import Options
from ..utils import config as CFG


def dashboard_options(env: Env) -> Options:
    return Options(
        settings=env.settings,
        refresh_interval=env.args.refresh_interval,
        rpc_timeout=env.args.rpc_timeout,
        no_color=bool(env.args.no_color),
        no_emoji=env.no_emoji,
        debug=bool(env.args.debug),
        cli_version=__version__,
        bin_path=env.args.bin or "",
    )


def cmd_dashboard(env: Env) -> int:
    opts = dashboard_options(env)
    model = Dashboard(opts)
    if not sys.stdout.isatty():
        # one fetch rendered as plain text for pipes and CI logs
        try:
            data = model.fetch_data(Context(timeout=opts.fetch_timeout() * 2))
        finally:
            model.close()
        print(render_static(data, env.settings.rpc_local), end="")
        return 0
    terminal.run(model)
    return 0


def register(sub) -> None:
    p = sub.add_parser("dashboard", help="Live dashboard with node, chain and validator panels")
    p.add_argument("--refresh-interval", type=float, default=CFG.DASH_REFRESH_INTERVAL, help="Refresh interval while syncing (seconds)")
    p.add_argument("--rpc-timeout", type=float, default=CFG.DASH_RPC_TIMEOUT, help="Fetch deadline (seconds)")
    p.set_defaults(func=cmd_dashboard)


__all__ = ["register", "dashboard_options"]
