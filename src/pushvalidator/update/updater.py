# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Self-update: discover, download, verify, extract and atomically install a
new release of this tool.

Install keeps a `<path>.backup` copy of the running binary; `rollback()`
moves it back into place.
"""

from __future__ import annotations

import io, os, sys, stat, shutil, hashlib, tarfile, tempfile, http.client
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

# ---------------- Local Project ----------------
from . import cache as update_cache
from .release import (
    Asset, Release, asset_for_platform, checksum_asset, fetch_latest_release, fetch_release_by_tag,
    is_newer_version, strip_v,
)
from ..core.errors import network_error, precondition_error, process_error, validation_error
from ..utils import config as CFG
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.update(updater)")

DownloadProgress = Optional[Callable[[int, int], None]]


@dataclass(frozen=True)
class CheckResult:
    current_version: str
    latest_version: str
    update_available: bool
    release: Optional[Release] = None
    cached: bool = False

    def to_dict(self) -> dict:
        return {
            "current_version": self.current_version,
            "latest_version": self.latest_version,
            "update_available": self.update_available,
            "cached": self.cached,
        }


@dataclass(frozen=True)
class UpdateResult:
    previous_version: str
    installed_version: str
    binary_path: str
    backup_path: str


def current_binary_path() -> str:
    found = shutil.which(CFG.TOOL_NAME) or sys.argv[0]
    return os.path.realpath(found)


def expected_checksum(manifest: str, name: str) -> Optional[str]:
    """Hash on the `<sha256>  <name>` line of a checksums.txt manifest (`*name` marks binary mode)."""
    for line in manifest.splitlines():
        parts = line.split()
        if len(parts) == 2 and parts[1].lstrip("*") == name:
            return parts[0]
    return None


class Updater:
    def __init__(
        self,
        current_version: str,
        binary_path: Optional[str] = None,
        home: Optional[str] = None,
        download_timeout: float = CFG.UPDATE_DOWNLOAD_TIMEOUT,
    ):
        self.current_version = current_version
        self.binary_path = binary_path or current_binary_path()
        self.home = home
        self.download_timeout = float(download_timeout)

    @property
    def backup_path(self) -> str:
        return self.binary_path + ".backup"

    # ---------- discovery ----------

    def check(self, force: bool = False, release: Optional[Release] = None) -> CheckResult:
        current = strip_v(self.current_version)
        if not force and release is None and self.home:
            entry = update_cache.load_cache(self.home)
            if entry is not None and entry.is_fresh():
                return CheckResult(current, entry.latest_version, entry.update_available, cached=True)

        release = release or fetch_latest_release()
        result = CheckResult(
            current_version=current,
            latest_version=release.version,
            update_available=is_newer_version(self.current_version, release.tag_name),
            release=release,
        )
        if self.home:
            try:
                update_cache.save_cache(self.home, update_cache.CacheEntry(
                    checked_at=datetime.now(timezone.utc),
                    latest_version=result.latest_version,
                    update_available=result.update_available,
                ))
            except OSError as exc:
                log.warning("[update] failed to write update cache: %s", exc)
        return result

    # ---------- pipeline steps ----------

    def download(self, url: str, progress: DownloadProgress = None) -> bytes:
        req = urllib.request.Request(url, headers={"User-Agent": CFG.UPDATE_USER_AGENT})
        buf = io.BytesIO()
        try:
            with urllib.request.urlopen(req, timeout=self.download_timeout) as resp:
                length = resp.headers.get("Content-Length")
                total = int(length) if length and length.isdigit() else -1
                done = 0
                for chunk in iter(lambda: resp.read(64 * 1024), b""):
                    buf.write(chunk)
                    done += len(chunk)
                    if progress:
                        progress(done, total)
        except urllib.error.HTTPError as exc:
            exc.close()
            raise network_error(f"download failed: HTTP {exc.code}", exc) from exc
        except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
            raise network_error("failed to download", exc) from exc
        return buf.getvalue()

    def verify_checksum(self, data: bytes, release: Release, name: str) -> None:
        manifest = self.download(checksum_asset(release).url).decode("utf-8", "replace")
        expected = expected_checksum(manifest, name)
        if not expected:
            raise validation_error(f"checksum not found for {name}")
        actual = hashlib.sha256(data).hexdigest()
        if actual.lower() != expected.lower():
            raise validation_error(f"checksum mismatch: expected {expected}, got {actual}")

    @staticmethod
    def extract_binary(archive: bytes, name: str = CFG.TOOL_NAME) -> bytes:
        try:
            with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as tar:
                for member in tar:
                    if member.isreg() and os.path.basename(member.name) == name:
                        handle = tar.extractfile(member)
                        if handle is None:
                            break
                        with handle:
                            return handle.read()
        except (tarfile.TarError, OSError, EOFError) as exc:
            raise validation_error("failed to read release archive", exc) from exc
        raise validation_error("binary not found in archive")

    def install(self, binary: bytes) -> None:
        try:
            mode = stat.S_IMODE(os.stat(self.binary_path).st_mode)
        except OSError as exc:
            raise precondition_error("failed to stat current binary", exc) from exc
        try:
            shutil.copyfile(self.binary_path, self.backup_path)
        except OSError as exc:
            raise process_error("failed to create backup", exc) from exc

        fd, tmp_path = tempfile.mkstemp(prefix=f"{CFG.TOOL_NAME}-update-", dir=os.path.dirname(self.binary_path))
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(binary)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, self.binary_path)
        except OSError as exc:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
            raise process_error("failed to install binary", exc) from exc
        log.info("[update] installed new binary at %s (backup %s)", self.binary_path, self.backup_path)

    def rollback(self) -> None:
        if not os.path.exists(self.backup_path):
            raise precondition_error("no backup found")
        os.replace(self.backup_path, self.binary_path)
        log.info("[update] restored %s from backup", self.binary_path)

    # ---------- full run ----------

    def update(
        self,
        version: Optional[str] = None,
        force: bool = False,
        skip_verify: bool = False,
        progress: DownloadProgress = None,
    ) -> Optional[UpdateResult]:
        """Install `version` (or the latest release). Returns None when already current."""
        release = fetch_release_by_tag(version) if version else fetch_latest_release()
        if not force and not version and not is_newer_version(self.current_version, release.tag_name):
            log.info("[update] already at %s", self.current_version)
            return None

        asset: Asset = asset_for_platform(release)
        archive = self.download(asset.url, progress)
        if skip_verify:
            log.warning("[update] checksum verification skipped for %s", asset.name)
        else:
            self.verify_checksum(archive, release, asset.name)
        binary = self.extract_binary(archive)
        self.install(binary)
        return UpdateResult(
            previous_version=strip_v(self.current_version),
            installed_version=release.version,
            binary_path=self.binary_path,
            backup_path=self.backup_path,
        )


__all__ = ["Updater", "CheckResult", "UpdateResult", "current_binary_path", "expected_checksum"]
