# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import os, json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

# ---------------- Local Project ----------------
from ..utils import config as CFG
from ..utils.helpers import parse_rfc3339
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.update(cache)")


@dataclass(frozen=True)
class CacheEntry:
    checked_at: datetime
    latest_version: str
    update_available: bool

    def age(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.checked_at).total_seconds()

    def is_fresh(self, ttl: float = CFG.UPDATE_CACHE_TTL, now: Optional[datetime] = None) -> bool:
        return self.age(now) < ttl


def cache_path(home: str) -> str:
    return os.path.join(home, CFG.UPDATE_CHECK_FILENAME)


def load_cache(home: str) -> Optional[CacheEntry]:
    try:
        with open(cache_path(home), "r", encoding="utf-8") as handle:
            data = json.load(handle)
        return CacheEntry(
            checked_at=parse_rfc3339(str(data.get("checked_at", ""))),
            latest_version=str(data.get("latest_version") or ""),
            update_available=bool(data.get("update_available")),
        )
    except FileNotFoundError:
        return None
    except (OSError, ValueError, AttributeError) as exc:
        log.debug("[update.cache] ignoring unreadable %s: %s", cache_path(home), exc)
        return None


def save_cache(home: str, entry: CacheEntry) -> None:
    payload = {
        "checked_at": entry.checked_at.astimezone(timezone.utc).isoformat(),
        "latest_version": entry.latest_version,
        "update_available": entry.update_available,
    }
    path = cache_path(home)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    os.chmod(path, 0o644)


__all__ = ["CacheEntry", "cache_path", "load_cache", "save_cache"]
