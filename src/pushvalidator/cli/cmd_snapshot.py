# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

# ---------------- Local Project ----------------
from .common import Env
from ..core.errors import CodedError, precondition_error
from ..node.supervisor import Supervisor
from ..snapshot import cache
from ..snapshot.service import PHASE_DOWNLOAD, SnapshotService
from ..utils import config as CFG
from ..utils.helpers import YELLOW, format_bytes_human


class ProgressPrinter:
    """Snapshot progress as clog lines; download progress every 10%."""

    def __init__(self, env: Env):
        self.env = env
        self._last_step = -1

    def __call__(self, phase: str, current: int, total: int, message: str) -> None:
        if message:
            self.env.note(message)
            return
        if phase != PHASE_DOWNLOAD or total <= 0:
            return
        step = int(current * 10 // total)
        if step > self._last_step:
            self._last_step = step
            self.env.info(f"Downloading: {format_bytes_human(current)} / {format_bytes_human(total)} ({step * 10}%)")


def cmd_download(env: Env) -> int:
    s = env.settings
    url = env.args.url or s.snapshot_url
    result = SnapshotService().download(url, s.home_dir, no_cache=env.args.no_cache, progress=ProgressPrinter(env))
    if env.json_output:
        env.emit_json({
            "status": result.status,
            "checksum": result.checksum,
            "path": result.path,
            "bytes_written": result.bytes_written,
            "duration_s": round(result.duration_s, 2),
        })
    else:
        env.info(f"Snapshot {result.status}: {result.path}")
    return 0


def cmd_extract(env: Env) -> int:
    s = env.settings
    if Supervisor(s.home_dir).is_running():
        raise precondition_error(f"node is running, stop it first: {CFG.TOOL_NAME} stop")
    result = SnapshotService().extract(s.home_dir, env.args.target, progress=ProgressPrinter(env))
    if env.json_output:
        env.emit_json({
            "target_dir": result.target_dir,
            "entries": result.entries,
            "preserved_state": result.preserved_state,
            "duration_s": round(result.duration_s, 2),
        })
    else:
        env.info(f"Extracted {result.entries} entries into {result.target_dir}")
    return 0


def cmd_status(env: Env) -> int:
    s = env.settings
    st = cache.status(s.home_dir)
    payload = st.to_dict()
    remote_valid = None
    if st.present and not env.args.offline:
        try:
            remote_valid = SnapshotService().is_cache_valid(s.snapshot_url, s.home_dir)
        except CodedError as exc:
            env.warn(f"Could not check remote checksum: {exc}")
    payload["remote_valid"] = remote_valid

    if env.json_output:
        env.emit_json(payload)
        return 0
    if not st.present:
        env.info("No cached snapshot", YELLOW)
    else:
        env.info(f"Cached snapshot: {st.path} ({format_bytes_human(st.size)})")
        env.info(f"Checksum       : {st.checksum or 'missing'}")
        if remote_valid is not None:
            env.info(f"Matches remote : {env.mark(remote_valid)}")
    if st.partial_bytes:
        env.info(f"Partial download: {format_bytes_human(st.partial_bytes)}", YELLOW)
    return 0


def register(sub) -> None:
    p = sub.add_parser("snapshot", help="Download, extract or inspect the chain snapshot")
    snap = p.add_subparsers(dest="snapshot_cmd", metavar="<action>")
    snap.required = True

    d = snap.add_parser("download", help="Download latest.tar.lz4 into the snapshot cache")
    d.add_argument("--url", default=None, help=f"Snapshot base URL (default: {CFG.DEFAULT_SNAPSHOT_URL})")
    d.add_argument("--no-cache", action="store_true", help="Ignore a valid cached snapshot")
    d.set_defaults(func=cmd_download)

    e = snap.add_parser("extract", help="Extract the cached snapshot into <home>/data")
    e.add_argument("--target", default=None, help="Target directory (default: <home>/data)")
    e.set_defaults(func=cmd_extract)

    st = snap.add_parser("status", help="Show snapshot cache status")
    st.add_argument("--offline", action="store_true", help="Skip the remote checksum comparison")
    st.set_defaults(func=cmd_status)


__all__ = ["register", "ProgressPrinter"]
