# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Line-oriented rewriter for `<home>/config/config.toml`.

Only the keys this tool manages are touched (`persistent_peers`,
`addr_book_strict` under `[p2p]`, and the `[statesync]` block); every other
line, comment and blank is preserved as-is. Missing sections are appended.
"""

from __future__ import annotations

import os, re, shutil
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

# ---------------- Local Project ----------------
from ..core.errors import precondition_error
from ..utils import config as CFG
from ..utils.helpers import write_atomic
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.storage(configstore)")

_ANY_SECTION = re.compile(r"^\[[^\]]+\][ \t]*$", re.M)


@dataclass
class StateSyncParams:
    trust_height: int
    trust_hash: str
    rpc_servers: Sequence[str] = field(default_factory=list)
    trust_period: str = CFG.TRUST_PERIOD
    chunk_fetchers: int = CFG.STATESYNC_CHUNK_FETCHERS
    chunk_request_timeout: str = CFG.STATESYNC_CHUNK_TIMEOUT
    discovery_time: str = CFG.STATESYNC_DISCOVERY_TIME


def _section_re(section: str) -> re.Pattern:
    return re.compile(r"^\[" + re.escape(section) + r"\][ \t]*$", re.M)


def ensure_section(content: str, section: str) -> str:
    if _section_re(section).search(content):
        return content
    return content + f"\n[{section}]\n"


def set_in_section(content: str, section: str, values: dict) -> str:
    """Replace or append `key = value` lines inside `[section]`; no-op if the section is absent."""
    m = _section_re(section).search(content)
    if not m:
        return content
    start = m.end()
    nxt = _ANY_SECTION.search(content, start)
    end = nxt.start() if nxt else len(content)
    before, block, after = content[:start], content[start:end], content[end:]

    for key, value in values.items():
        line = f"{key} = {value}"
        key_re = re.compile(r"^[ \t]*" + re.escape(key) + r"[ \t]*=.*$", re.M)
        if key_re.search(block):
            block = key_re.sub(lambda _m: line, block)
        else:
            if block.strip() and not block.endswith("\n"):
                block += "\n"
            block += line + "\n"
    return before + block + after


def get_in_section(content: str, section: str, key: str) -> Optional[str]:
    m = _section_re(section).search(content)
    if not m:
        return None
    nxt = _ANY_SECTION.search(content, m.end())
    block = content[m.end():(nxt.start() if nxt else len(content))]
    km = re.search(r"^[ \t]*" + re.escape(key) + r"[ \t]*=[ \t]*(.*?)[ \t]*$", block, re.M)
    if not km:
        return None
    return km.group(1).strip().strip('"')


def _quote(value: str) -> str:
    return f'"{value}"'


class ConfigStore:
    def __init__(self, home: str):
        self.home = home

    @property
    def path(self) -> str:
        return os.path.join(self.home, CFG.CONFIG_DIRNAME, CFG.CONFIG_FILENAME)

    def read(self) -> str:
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                return handle.read()
        except FileNotFoundError as exc:
            raise precondition_error(f"config not found at {self.path}", exc) from exc

    def write(self, content: str) -> None:
        write_atomic(self.path, content.encode("utf-8"), mode=0o644)

    def backup(self) -> str:
        """Copy config.toml to `config.toml.<YYYYmmdd-HHMMSS>.bak`; returns the backup path."""
        dst = f"{self.path}.{datetime.now().strftime('%Y%m%d-%H%M%S')}.bak"
        shutil.copyfile(self.path, dst)
        log.info("[config] backup written to %s", dst)
        return dst

    def try_backup(self) -> Optional[str]:
        try:
            return self.backup()
        except OSError as exc:
            log.warning("[config] backup failed: %s", exc)
            return None

    def set_persistent_peers(self, peers: Sequence[str]) -> None:
        content = ensure_section(self.read(), "p2p")
        content = set_in_section(content, "p2p", {
            "persistent_peers": _quote(",".join(peers)),
            "addr_book_strict": "false",
        })
        self.write(content)
        log.info("[config] persistent_peers set (%d peers)", len(peers))

    def get_persistent_peers(self) -> list[str]:
        value = get_in_section(self.read(), "p2p", "persistent_peers")
        if not value:
            return []
        return [p.strip() for p in value.split(",") if p.strip()]

    def enable_state_sync(self, params: StateSyncParams) -> None:
        content = ensure_section(self.read(), "statesync")
        content = set_in_section(content, "statesync", {
            "enable": "true",
            "rpc_servers": _quote(",".join(params.rpc_servers)),
            "trust_height": str(int(params.trust_height)),
            "trust_hash": _quote((params.trust_hash or "").upper()),
            "trust_period": _quote(params.trust_period or CFG.TRUST_PERIOD),
            "chunk_fetchers": str(int(params.chunk_fetchers or CFG.STATESYNC_CHUNK_FETCHERS)),
            "chunk_request_timeout": _quote(params.chunk_request_timeout or CFG.STATESYNC_CHUNK_TIMEOUT),
            "discovery_time": _quote(params.discovery_time or CFG.STATESYNC_DISCOVERY_TIME),
        })
        self.write(content)
        log.info("[config] state sync enabled at height %d", params.trust_height)

    def disable_state_sync(self) -> None:
        content = set_in_section(self.read(), "statesync", {"enable": "false"})
        self.write(content)


__all__ = ["ConfigStore", "StateSyncParams", "ensure_section", "set_in_section", "get_in_section"]
