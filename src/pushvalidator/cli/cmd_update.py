# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import platform

# ---------------- Local Project ----------------
from .common import Env
from .. import __version__
from ..update.release import platform_pair
from ..update.updater import Updater
from ..utils import config as CFG
from ..utils.helpers import YELLOW, format_bytes_human


def cmd_update(env: Env) -> int:
    updater = Updater(__version__, home=env.settings.home_dir)

    if env.args.rollback:
        updater.rollback()
        env.info(f"Restored previous binary at {updater.binary_path}")
        return 0

    if env.args.check:
        result = updater.check(force=env.args.force)
        if env.json_output:
            env.emit_json(result.to_dict())
        elif result.update_available:
            env.info(f"Update available: v{result.current_version} -> v{result.latest_version}", YELLOW)
            env.info(f"Run: {CFG.TOOL_NAME} update")
        else:
            env.info(f"Up to date (v{result.current_version})")
        return 0

    last = [-1]

    def _progress(done: int, total: int) -> None:
        if total <= 0:
            return
        step = done * 10 // total
        if step > last[0]:
            last[0] = step
            env.info(f"Downloading: {format_bytes_human(done)} / {format_bytes_human(total)} ({step * 10}%)")

    if not env.args.version and not env.confirm(f"Update {CFG.TOOL_NAME} at {updater.binary_path}?"):
        env.info("Update cancelled", YELLOW)
        return 0
    result = updater.update(
        version=env.args.version,
        force=env.args.force,
        skip_verify=env.args.skip_verify,
        progress=_progress,
    )
    if result is None:
        env.info(f"Already at the latest version (v{__version__})")
        return 0
    if env.json_output:
        env.emit_json({
            "previous_version": result.previous_version,
            "installed_version": result.installed_version,
            "binary_path": result.binary_path,
            "backup_path": result.backup_path,
        })
    else:
        env.info(f"Updated v{result.previous_version} -> v{result.installed_version}")
        env.info(f"Backup kept at {result.backup_path} (rollback: {CFG.TOOL_NAME} update --rollback)")
    return 0


def cmd_version(env: Env) -> int:
    os_name, arch = platform_pair()
    if env.json_output:
        env.emit_json({"version": __version__, "os": os_name, "arch": arch, "python": platform.python_version()})
    else:
        print(f"{CFG.TOOL_NAME} v{__version__} ({os_name}/{arch}, python {platform.python_version()})")
    return 0


def register(sub) -> None:
    p = sub.add_parser("update", help=f"Update {CFG.TOOL_NAME} to the latest release")
    p.add_argument("--check", action="store_true", help="Only report whether an update is available")
    p.add_argument("--version", default=None, help="Install a specific version (e.g. v1.2.0)")
    p.add_argument("--rollback", action="store_true", help="Restore the binary replaced by the last update")
    p.add_argument("--force", action="store_true", help="Ignore the update cache / reinstall the same version")
    p.add_argument("--skip-verify", action="store_true", help="Skip checksum verification (not recommended)")
    p.set_defaults(func=cmd_update)

    sub.add_parser("version", help="Show version information").set_defaults(func=cmd_version)


__all__ = ["register"]
