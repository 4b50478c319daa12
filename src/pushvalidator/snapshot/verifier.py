# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import hashlib, re
from typing import IO, Iterable, Union

# ---------------- Local Project ----------------
from ..core.errors import validation_error
from ..utils import config as CFG

_HEX64 = re.compile(r"^[0-9a-fA-F]{64}$")


def sha256_of_file(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(CFG.SNAPSHOT_HASH_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def parse_checksum_manifest(source: Union[str, bytes, IO, Iterable[str]]) -> str:
    """First 64-hex token of a `<hex>  <name>` manifest; blanks and `#` lines are skipped."""
    if isinstance(source, bytes):
        lines = source.decode("utf-8", "replace").splitlines()
    elif isinstance(source, str):
        lines = source.splitlines()
    else:
        lines = []
        for raw in source:
            lines.append(raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw)

    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        token = line.split()[0]
        if _HEX64.match(token):
            return token
    raise validation_error("no valid SHA256 hash found in checksum file")


def checksums_equal(a: str, b: str) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


def verify_file(path: str, expected: str) -> None:
    actual = sha256_of_file(path)
    if not checksums_equal(actual, expected):
        raise validation_error(f"hash mismatch: expected {expected}, got {actual}")


__all__ = ["sha256_of_file", "parse_checksum_manifest", "checksums_equal", "verify_file"]
