# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Safe tar extraction over a streaming lz4 decoder.

Archive entries are never handed to `tarfile.extractall`; each member is
validated and materialized here so that no entry can write outside the
destination directory:

- names are normalized (`.`/`..` collapsed, forward slashes) and rejected when
  they climb above the root or are absolute
- the joined target must still sit below the destination
- absolute symlink targets are refused before anything is created
- regular files must be written in full (short writes usually mean disk full)
"""

from __future__ import annotations

import os, posixpath, tarfile
from typing import IO, Callable, Optional
import lz4.frame

# ---------------- Local Project ----------------
from ..core.context import Context
from ..core.errors import CodedError, GENERAL_ERROR, VALIDATION_ERROR
from ..utils import config as CFG
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.snapshot(extractor)")

ExtractProgress = Optional[Callable[[int, int, str], None]]


class ExtractError(CodedError):
    pass


class InvalidPathError(ExtractError):
    def __init__(self, message: str):
        super().__init__(VALIDATION_ERROR, message)


class AbsoluteSymlinkError(ExtractError):
    def __init__(self, message: str):
        super().__init__(VALIDATION_ERROR, message)


class IncompleteExtractionError(ExtractError):
    def __init__(self, message: str):
        super().__init__(GENERAL_ERROR, message)


def clean_name(name: str) -> str:
    return posixpath.normpath((name or "").replace("\\", "/"))


def safe_target(dest: str, name: str) -> tuple[str, str]:
    """(clean name, absolute target) for an archive entry, or InvalidPathError."""
    clean = clean_name(name)
    if clean.startswith("..") or clean.startswith("/") or os.path.isabs(clean):
        raise InvalidPathError(f"invalid path in archive: {name}")
    root = os.path.normpath(os.path.abspath(dest))
    target = os.path.normpath(os.path.join(root, *clean.split("/")))
    if not target.startswith(root + os.sep):
        raise InvalidPathError(f"path traversal detected: {name}")
    return clean, target


def _write_member(tar: tarfile.TarFile, member: tarfile.TarInfo, clean: str, target: str, ctx: Optional[Context]) -> None:
    os.makedirs(os.path.dirname(target), mode=0o755, exist_ok=True)
    src = tar.extractfile(member)
    written = 0
    fd = os.open(target, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, member.mode & 0o7777)
    with os.fdopen(fd, "wb") as out:
        if src is not None:
            with src:
                for chunk in iter(lambda: src.read(CFG.SNAPSHOT_CHUNK_BYTES), b""):
                    if ctx is not None:
                        ctx.check()
                    out.write(chunk)
                    written += len(chunk)
    if member.size > 0 and written != member.size:
        raise IncompleteExtractionError(
            f"incomplete extraction of {clean}: wrote {written} of {member.size} bytes (disk full?)"
        )


def extract_tar_stream(
    fileobj: IO[bytes],
    dest: str,
    progress: ExtractProgress = None,
    ctx: Optional[Context] = None,
) -> int:
    """Extract an uncompressed tar stream into `dest`; returns the entry count."""
    os.makedirs(dest, mode=0o755, exist_ok=True)
    root = os.path.abspath(dest)
    count = 0
    with tarfile.open(fileobj=fileobj, mode="r|") as tar:
        for member in tar:
            if ctx is not None:
                ctx.check()
            if clean_name(member.name) == ".":
                continue
            clean, target = safe_target(root, member.name)
            count += 1
            if progress:
                progress(count, -1, clean)

            if member.isdir():
                os.makedirs(target, mode=member.mode & 0o7777, exist_ok=True)
            elif member.isreg():
                _write_member(tar, member, clean, target, ctx)
            elif member.issym():
                link = member.linkname
                if posixpath.isabs(link) or os.path.isabs(link):
                    raise AbsoluteSymlinkError(f"absolute symlink not allowed: {clean} -> {link}")
                if os.path.lexists(target):
                    os.remove(target)
                os.makedirs(os.path.dirname(target), mode=0o755, exist_ok=True)
                os.symlink(link, target)
            elif member.islnk():
                _, link_src = safe_target(root, member.linkname)
                os.makedirs(os.path.dirname(target), mode=0o755, exist_ok=True)
                os.link(link_src, target)
            else:
                log.trace("[extract] skipping special entry %s (type %r)", clean, member.type)
    return count


def extract_tar_lz4(
    archive_path: str,
    dest: str,
    progress: ExtractProgress = None,
    ctx: Optional[Context] = None,
) -> int:
    with lz4.frame.open(archive_path, mode="rb") as raw:
        return extract_tar_stream(raw, dest, progress=progress, ctx=ctx)


__all__ = [
    "ExtractError", "InvalidPathError", "AbsoluteSymlinkError", "IncompleteExtractionError",
    "clean_name", "safe_target", "extract_tar_stream", "extract_tar_lz4",
]
