# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import os, threading
from dataclasses import dataclass, replace
from typing import Optional

# ---------------- Local Project ----------------
from . import config as CFG
from .pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.utils(settings)")

_keyring_warned = threading.Event()


@dataclass(frozen=True)
class NodeSettings:
    home_dir: str
    chain_id: str = CFG.DEFAULT_CHAIN_ID
    genesis_domain: str = CFG.DEFAULT_GENESIS_DOMAIN
    keyring_backend: str = CFG.DEFAULT_KEYRING_BACKEND
    snapshot_url: str = CFG.DEFAULT_SNAPSHOT_URL
    rpc_local: str = CFG.DEFAULT_RPC_LOCAL
    denom: str = CFG.DEFAULT_DENOM
    node_bin: str = CFG.DEFAULT_NODE_BIN

    # ---- Derived paths ----
    @property
    def config_dir(self) -> str:
        return os.path.join(self.home_dir, CFG.CONFIG_DIRNAME)

    @property
    def data_dir(self) -> str:
        return os.path.join(self.home_dir, CFG.DATA_DIRNAME)

    @property
    def logs_dir(self) -> str:
        return os.path.join(self.home_dir, CFG.LOGS_DIRNAME)

    @property
    def config_path(self) -> str:
        return os.path.join(self.config_dir, CFG.CONFIG_FILENAME)

    @property
    def genesis_path(self) -> str:
        return os.path.join(self.config_dir, CFG.GENESIS_FILENAME)

    @property
    def node_log_path(self) -> str:
        return os.path.join(self.logs_dir, CFG.NODE_LOG_FILENAME)

    def with_overrides(self, **changes) -> "NodeSettings":
        clean = {k: v for k, v in changes.items() if v not in (None, "")}
        return replace(self, **clean) if clean else self


def _env(*names: str) -> Optional[str]:
    for name in names:
        val = os.environ.get(name, "").strip()
        if val:
            return val
    return None


def load_settings(
    home: Optional[str] = None,
    bin_path: Optional[str] = None,
    rpc: Optional[str] = None,
    genesis_domain: Optional[str] = None,
    chain_id: Optional[str] = None,
    snapshot_url: Optional[str] = None,
) -> NodeSettings:
    """Resolve settings: explicit argument > environment > config default."""
    home_dir = home or _env("HOME_DIR", "PCHAIN_HOME") or CFG.DEFAULT_HOME_DIR
    settings = NodeSettings(
        home_dir=os.path.abspath(os.path.expanduser(home_dir)),
        chain_id=chain_id or _env("CHAIN_ID") or CFG.DEFAULT_CHAIN_ID,
        genesis_domain=genesis_domain or _env("GENESIS_DOMAIN") or CFG.DEFAULT_GENESIS_DOMAIN,
        keyring_backend=_env("PUSH_KEYRING_BACKEND", "KEYRING_BACKEND") or CFG.DEFAULT_KEYRING_BACKEND,
        snapshot_url=snapshot_url or _env("SNAPSHOT_URL") or CFG.DEFAULT_SNAPSHOT_URL,
        rpc_local=rpc or _env("RPC_LOCAL") or CFG.DEFAULT_RPC_LOCAL,
        denom=_env("DENOM") or CFG.DEFAULT_DENOM,
        node_bin=bin_path or _env("PCHAIND", "PCHAIN_BIN") or CFG.DEFAULT_NODE_BIN,
    )
    if settings.keyring_backend == "test" and not _keyring_warned.is_set():
        _keyring_warned.set()
        log.warning("[settings] keyring backend 'test' stores keys unencrypted; set PUSH_KEYRING_BACKEND=file for production")
    return settings


def base_url(domain_or_url: str) -> str:
    """https:// base for a bare domain; URLs pass through without a trailing slash."""
    value = (domain_or_url or "").strip().rstrip("/")
    if value.startswith("http://") or value.startswith("https://"):
        return value
    return "https://" + value


def remote_rpc_url(settings: NodeSettings) -> str:
    value = (settings.genesis_domain or "").strip().rstrip("/")
    if value.startswith("http://") or value.startswith("https://"):
        return value
    return f"https://{value}:443"


__all__ = ["NodeSettings", "load_settings", "base_url", "remote_rpc_url"]
