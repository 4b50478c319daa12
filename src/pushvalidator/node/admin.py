# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import os, shutil, tarfile
from datetime import datetime
from typing import Optional

# ---------------- Local Project ----------------
from ..core.errors import invalid_args_error
from ..utils import config as CFG
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.node(admin)")

BACKUP_FILES = (
    (CFG.CONFIG_DIRNAME, CFG.CONFIG_FILENAME),
    (CFG.CONFIG_DIRNAME, CFG.APP_CONFIG_FILENAME),
    (CFG.CONFIG_DIRNAME, CFG.GENESIS_FILENAME),
    (CFG.DATA_DIRNAME, CFG.PVS_FILENAME),
)


def reset(home: str, keep_addr_book: bool = True) -> None:
    """Wipe chain data and logs; keys, config and optionally the address book survive."""
    if not home:
        raise invalid_args_error("home directory required")
    addrbook = os.path.join(home, CFG.CONFIG_DIRNAME, CFG.ADDRBOOK_FILENAME)
    saved: Optional[bytes] = None
    if keep_addr_book and os.path.isfile(addrbook):
        with open(addrbook, "rb") as handle:
            saved = handle.read()

    for name in (CFG.DATA_DIRNAME, CFG.LOGS_DIRNAME):
        shutil.rmtree(os.path.join(home, name), ignore_errors=True)
        os.makedirs(os.path.join(home, name), mode=0o755, exist_ok=True)

    if saved:
        with open(addrbook, "wb") as handle:
            handle.write(saved)
    log.info("[admin] reset %s (address book kept: %s)", home, bool(saved))


def backup(home: str, out_dir: Optional[str] = None) -> str:
    """tar.gz of config files and signing state; missing files are skipped."""
    if not home:
        raise invalid_args_error("home directory required")
    out_dir = out_dir or os.path.join(home, CFG.BACKUPS_DIRNAME)
    os.makedirs(out_dir, mode=0o755, exist_ok=True)
    out_path = os.path.join(out_dir, f"backup-{datetime.now().strftime('%Y%m%d-%H%M%S')}.tar.gz")
    with tarfile.open(out_path, "w:gz") as tar:
        for parts in BACKUP_FILES:
            path = os.path.join(home, *parts)
            if not os.path.isfile(path):
                log.debug("[admin] backup skipping missing %s", path)
                continue
            tar.add(path, arcname="/".join(parts))
    log.info("[admin] backup written to %s", out_path)
    return out_path


__all__ = ["reset", "backup", "BACKUP_FILES"]
