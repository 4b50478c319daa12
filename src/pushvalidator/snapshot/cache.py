# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Content-addressed snapshot cache under `<home>/snapshot-cache/`.

The cache identity is the remote checksum: the tarball is valid only while
the stored checksum equals the checksum the remote currently publishes. An
in-progress download lives in `.partial` next to a sidecar that records the
remote checksum the partial belongs to.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

# ---------------- Local Project ----------------
from ..utils import config as CFG
from ..utils.helpers import read_text, write_atomic
from ..utils.pv_logging import get_ctx_logger
from .verifier import checksums_equal

log = get_ctx_logger("pushvalidator.snapshot(cache)")


def cache_dir(home: str) -> str:
    return os.path.join(home, CFG.SNAPSHOT_CACHE_DIRNAME)


def tarball_path(home: str) -> str:
    return os.path.join(cache_dir(home), CFG.SNAPSHOT_TARBALL_NAME)


def cached_checksum_path(home: str) -> str:
    return os.path.join(cache_dir(home), CFG.SNAPSHOT_CHECKSUM_NAME)


def partial_path(home: str) -> str:
    return os.path.join(cache_dir(home), CFG.SNAPSHOT_PARTIAL_NAME)


def partial_sidecar_path(home: str) -> str:
    return os.path.join(cache_dir(home), CFG.SNAPSHOT_SIDECAR_NAME)


def read_cached_checksum(home: str) -> Optional[str]:
    raw = read_text(cached_checksum_path(home))
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def write_cached_checksum(home: str, checksum: str) -> None:
    write_atomic(cached_checksum_path(home), (checksum.strip() + "\n").encode("utf-8"))


def is_valid(home: str, remote_checksum: str) -> bool:
    if not os.path.isfile(tarball_path(home)):
        return False
    stored = read_cached_checksum(home)
    return stored is not None and checksums_equal(stored, remote_checksum)


def _remove(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def discard_tarball(home: str) -> None:
    """Drop the tarball, its stored checksum and the partial sidecar."""
    for path in (tarball_path(home), cached_checksum_path(home), partial_sidecar_path(home)):
        _remove(path)


def reconcile_partial(home: str, remote_checksum: str) -> int:
    """
    Decide what to do with a leftover `.partial` before downloading `remote_checksum`.

    - sidecar matches: resume
    - sidecar differs (a newer snapshot was published): delete partial + sidecar
    - no sidecar (older tool version): resume and let the final hash decide

    The sidecar is then (re)written for `remote_checksum`. Returns the number of
    bytes already present in the partial.
    """
    part = partial_path(home)
    sidecar = partial_sidecar_path(home)
    if os.path.exists(part):
        marker = read_text(sidecar)
        if marker is None:
            log.info("[snapshot.cache] resuming legacy partial without checksum marker")
        elif not checksums_equal(marker, remote_checksum):
            log.info("[snapshot.cache] partial belongs to an older snapshot (%s); discarding", marker.strip()[:12])
            _remove(part)
            _remove(sidecar)
    elif os.path.exists(sidecar):
        _remove(sidecar)

    write_atomic(sidecar, (remote_checksum.strip() + "\n").encode("utf-8"))
    try:
        return os.path.getsize(part)
    except FileNotFoundError:
        return 0


def promote_partial(home: str) -> str:
    """Rename the finished partial onto the tarball path."""
    target = tarball_path(home)
    os.replace(partial_path(home), target)
    return target


@dataclass(frozen=True)
class CacheStatus:
    present: bool
    path: str
    size: int = 0
    checksum: Optional[str] = None
    partial_bytes: int = 0

    def to_dict(self) -> dict:
        return {
            "present": self.present,
            "path": self.path,
            "size": self.size,
            "checksum": self.checksum,
            "partial_bytes": self.partial_bytes,
        }


def status(home: str) -> CacheStatus:
    path = tarball_path(home)
    size = os.path.getsize(path) if os.path.isfile(path) else 0
    partial = partial_path(home)
    partial_bytes = os.path.getsize(partial) if os.path.isfile(partial) else 0
    return CacheStatus(
        present=os.path.isfile(path),
        path=path,
        size=size,
        checksum=read_cached_checksum(home),
        partial_bytes=partial_bytes,
    )


__all__ = [
    "cache_dir", "tarball_path", "cached_checksum_path", "partial_path", "partial_sidecar_path",
    "read_cached_checksum", "write_cached_checksum", "is_valid", "discard_tarball",
    "reconcile_partial", "promote_partial", "CacheStatus", "status",
]
