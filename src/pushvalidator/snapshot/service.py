# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import os, time, shutil, tempfile, http.client
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Callable, Optional

# ---------------- Local Project ----------------
from . import cache
from .extractor import extract_tar_lz4
from .verifier import checksums_equal, parse_checksum_manifest, sha256_of_file
from ..core.context import Context, ContextError, background
from ..core.errors import CodedError, network_error, precondition_error, validation_error
from ..utils import config as CFG
from ..utils.helpers import format_bytes_human, free_bytes, write_atomic
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.snapshot(service)")

# (phase, current, total, message); total is -1 when unknown
ProgressCallback = Optional[Callable[[str, int, int, str], None]]

PHASE_CACHE = "cache"
PHASE_DOWNLOAD = "download"
PHASE_VERIFY = "verify"
PHASE_EXTRACT = "extract"

_RETRYABLE = (CodedError, OSError, urllib.error.URLError, http.client.HTTPException)


@dataclass(frozen=True)
class DownloadResult:
    status: str
    checksum: str
    path: str
    bytes_written: int = 0
    duration_s: float = 0.0


@dataclass(frozen=True)
class ExtractResult:
    target_dir: str
    entries: int
    preserved_state: bool
    duration_s: float = 0.0


def tarball_url(snapshot_url: str) -> str:
    return snapshot_url.rstrip("/") + "/" + CFG.SNAPSHOT_TARBALL_NAME


def checksum_url(snapshot_url: str) -> str:
    return snapshot_url.rstrip("/") + "/" + CFG.SNAPSHOT_CHECKSUM_NAME


def check_disk_space(path: str, need: int) -> None:
    have = free_bytes(path)
    if have < need:
        raise precondition_error(
            f"insufficient disk space: need {format_bytes_human(need)}, have {format_bytes_human(have)} available"
        )


def _dir_size_exceeds(path: str, limit: int) -> bool:
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                continue
            if total > limit:
                return True
    return False


def is_snapshot_present(home: str) -> bool:
    """True when the data dir already holds restored chain databases."""
    data_dir = os.path.join(home, CFG.DATA_DIRNAME)
    for db in CFG.SNAPSHOT_PRESENT_DBS:
        path = os.path.join(data_dir, db)
        if os.path.isdir(path) and _dir_size_exceeds(path, CFG.SNAPSHOT_PRESENT_MIN):
            return True
    return False


class SnapshotService:
    """Download, cache-check and extract `latest.tar.lz4` snapshots."""

    def __init__(
        self,
        http_timeout: float = CFG.SNAPSHOT_HTTP_TIMEOUT,
        max_attempts: int = CFG.SNAPSHOT_MAX_ATTEMPTS,
        backoff_initial: float = CFG.SNAPSHOT_BACKOFF_INITIAL,
        backoff_max: float = CFG.SNAPSHOT_BACKOFF_MAX,
        extract_factor: int = CFG.SNAPSHOT_EXTRACT_FACTOR,
    ):
        self.http_timeout = float(http_timeout)
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_initial = float(backoff_initial)
        self.backoff_max = float(backoff_max)
        self.extract_factor = int(extract_factor)

    # ---------- HTTP ----------

    def _timeout(self, ctx: Context) -> float:
        left = ctx.remaining(self.http_timeout)
        if left is not None and left <= 0:
            ctx.check()
        return left if left else self.http_timeout

    def _request(self, url: str, method: str = "GET", headers: Optional[dict] = None) -> urllib.request.Request:
        h = {"User-Agent": CFG.SNAPSHOT_USER_AGENT}
        if headers:
            h.update(headers)
        return urllib.request.Request(url, headers=h, method=method)

    def fetch_remote_checksum(self, ctx: Context, snapshot_url: str) -> str:
        url = checksum_url(snapshot_url)
        ctx.check()
        try:
            with urllib.request.urlopen(self._request(url), timeout=self._timeout(ctx)) as resp:
                if resp.status != 200:
                    raise network_error(f"failed to fetch checksum: HTTP {resp.status}")
                raw = resp.read()
        except urllib.error.HTTPError as exc:
            raise network_error(f"failed to fetch checksum: HTTP {exc.code}", exc) from exc
        except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
            ctx.check()
            raise network_error("failed to fetch checksum", exc) from exc
        return parse_checksum_manifest(raw)

    def remote_size(self, ctx: Context, url: str) -> int:
        """Content-Length from a HEAD request, or -1 when the server does not say."""
        try:
            with urllib.request.urlopen(self._request(url, method="HEAD"), timeout=self._timeout(ctx)) as resp:
                length = resp.headers.get("Content-Length")
                return int(length) if length else -1
        except (urllib.error.URLError, OSError, http.client.HTTPException, ValueError) as exc:
            ctx.check()
            log.warning("[snapshot.download] HEAD %s failed, skipping size preflight: %s", url, exc)
            return -1

    # ---------- Public operations ----------

    def is_cache_valid(self, snapshot_url: str, home: str, ctx: Optional[Context] = None) -> bool:
        ctx = ctx or background()
        remote = self.fetch_remote_checksum(ctx, snapshot_url)
        return cache.is_valid(home, remote)

    def download(
        self,
        snapshot_url: str,
        home: str,
        no_cache: bool = False,
        progress: ProgressCallback = None,
        ctx: Optional[Context] = None,
    ) -> DownloadResult:
        ctx = ctx or background()
        started = time.time()

        def _emit(phase: str, current: int, total: int, message: str = "") -> None:
            if progress:
                try:
                    progress(phase, current, total, message)
                except Exception as exc:
                    log.debug("[snapshot.download] progress callback failed: %s", exc)
            if message:
                log.info("[snapshot.%s] %s", phase, message)

        _emit(PHASE_CACHE, 0, -1, "Checking snapshot checksum")
        remote = self.fetch_remote_checksum(ctx, snapshot_url)
        target = cache.tarball_path(home)

        if not no_cache and cache.is_valid(home, remote):
            _emit(PHASE_CACHE, 1, 1, "Using cached snapshot")
            return DownloadResult(status="cached", checksum=remote, path=target)

        os.makedirs(cache.cache_dir(home), mode=0o755, exist_ok=True)
        url = tarball_url(snapshot_url)
        size = self.remote_size(ctx, url)
        if size > 0:
            check_disk_space(cache.cache_dir(home), size)

        resumed_from = cache.reconcile_partial(home, remote)
        if resumed_from > 0:
            _emit(PHASE_DOWNLOAD, resumed_from, size, f"Resuming download at {format_bytes_human(resumed_from)}")
        else:
            _emit(PHASE_DOWNLOAD, 0, size, "Downloading snapshot")

        written = self._download_with_retry(ctx, url, cache.partial_path(home), _emit)
        cache.promote_partial(home)

        _emit(PHASE_VERIFY, 0, -1, "Verifying checksum")
        actual = sha256_of_file(target)
        if not checksums_equal(actual, remote):
            cache.discard_tarball(home)
            log.error("[snapshot.verify] expected %s, got %s", remote, actual)
            raise validation_error("checksum verification failed")

        cache.write_cached_checksum(home, remote)
        try:
            os.remove(cache.partial_sidecar_path(home))
        except FileNotFoundError:
            pass
        duration = time.time() - started
        _emit(PHASE_VERIFY, 1, 1, f"Snapshot ready ({format_bytes_human(os.path.getsize(target))} in {duration:.1f}s)")
        return DownloadResult(
            status="downloaded", checksum=remote, path=target, bytes_written=written, duration_s=duration
        )

    def _download_with_retry(self, ctx: Context, url: str, partial: str, emit) -> int:
        delay = self.backoff_initial
        for attempt in range(1, self.max_attempts + 1):
            ctx.check()
            try:
                return self._download_once(ctx, url, partial, emit)
            except ContextError:
                raise
            except _RETRYABLE as exc:
                ctx.check()
                if attempt >= self.max_attempts:
                    raise network_error(f"download failed after {attempt} attempts", exc) from exc
                log.warning(
                    "[snapshot.download] attempt %d/%d failed: %s; retrying in %.1fs",
                    attempt, self.max_attempts, exc, delay,
                )
                ctx.sleep(delay)
                delay = min(delay * 2, self.backoff_max)
        raise network_error("download failed")

    def _download_once(self, ctx: Context, url: str, partial: str, emit) -> int:
        offset = os.path.getsize(partial) if os.path.exists(partial) else 0
        headers = {"Range": f"bytes={offset}-"} if offset > 0 else None
        try:
            resp = urllib.request.urlopen(self._request(url, headers=headers), timeout=self._timeout(ctx))
        except urllib.error.HTTPError as exc:
            exc.close()
            if exc.code == 416 and offset > 0:
                log.info("[snapshot.download] server rejected range at %d, restarting from zero", offset)
                os.remove(partial)
                return self._download_once(ctx, url, partial, emit)
            raise network_error(f"HTTP {exc.code}", exc) from exc

        with resp:
            length = resp.headers.get("Content-Length")
            length = int(length) if length and length.isdigit() else -1
            if resp.status == 206:
                mode, current = "ab", offset
                total = offset + length if length >= 0 else -1
            elif resp.status == 200:
                mode, current, total = "wb", 0, length
            else:
                raise network_error(f"HTTP {resp.status}")

            next_report = current + CFG.SNAPSHOT_PROGRESS_BYTES
            with open(partial, mode) as handle:
                for chunk in iter(lambda: resp.read(CFG.SNAPSHOT_CHUNK_BYTES), b""):
                    ctx.check()
                    handle.write(chunk)
                    current += len(chunk)
                    if current >= next_report:
                        emit(PHASE_DOWNLOAD, current, total)
                        next_report = current + CFG.SNAPSHOT_PROGRESS_BYTES
            if total >= 0 and current < total:
                raise network_error(f"connection closed early: got {current} of {total} bytes")
            emit(PHASE_DOWNLOAD, current, total)
            return current

    def extract(
        self,
        home: str,
        target_dir: Optional[str] = None,
        progress: ProgressCallback = None,
        ctx: Optional[Context] = None,
    ) -> ExtractResult:
        ctx = ctx or background()
        started = time.time()
        target_dir = target_dir or os.path.join(home, CFG.DATA_DIRNAME)
        tarball = cache.tarball_path(home)

        def _emit(current: int, total: int, message: str = "") -> None:
            if progress:
                try:
                    progress(PHASE_EXTRACT, current, total, message)
                except Exception as exc:
                    log.debug("[snapshot.extract] progress callback failed: %s", exc)
            if message:
                log.info("[snapshot.extract] %s", message)

        if not os.path.isfile(tarball):
            raise precondition_error("no cached snapshot found, run 'snapshot download' first")

        _emit(0, -1, "Verifying cached snapshot")
        stored = cache.read_cached_checksum(home)
        if stored is None:
            log.warning("[snapshot.extract] no stored checksum for %s; skipping verification", tarball)
        else:
            actual = sha256_of_file(tarball)
            if not checksums_equal(actual, stored):
                cache.discard_tarball(home)
                raise validation_error(
                    "cached snapshot is corrupted (checksum mismatch), please re-download with 'snapshot download --no-cache'"
                )

        os.makedirs(target_dir, mode=0o755, exist_ok=True)
        check_disk_space(target_dir, os.path.getsize(tarball) * self.extract_factor)

        pvs_path = os.path.join(target_dir, CFG.PVS_FILENAME)
        preserved: Optional[bytes] = None
        if os.path.isfile(pvs_path):
            with open(pvs_path, "rb") as handle:
                preserved = handle.read()

        workdir = tempfile.mkdtemp(prefix=".snapshot-extract-", dir=home)
        try:
            _emit(0, -1, "Extracting snapshot")
            count = extract_tar_lz4(
                tarball, workdir, progress=lambda n, total, name: _emit(n, total), ctx=ctx
            )
            src_data = os.path.join(workdir, CFG.DATA_DIRNAME)
            if not os.path.isdir(src_data):
                raise validation_error("extracted snapshot missing data/ directory")

            self._prepare_target(target_dir)
            for name in os.listdir(src_data):
                shutil.move(os.path.join(src_data, name), os.path.join(target_dir, name))
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        if preserved is not None:
            try:
                write_atomic(pvs_path, preserved, mode=0o600)
            except OSError as exc:
                log.warning("[snapshot.extract] failed to restore %s: %s", CFG.PVS_FILENAME, exc)

        duration = time.time() - started
        _emit(count, count, f"Extracted {count} entries in {duration:.1f}s")
        return ExtractResult(
            target_dir=target_dir, entries=count, preserved_state=preserved is not None, duration_s=duration
        )

    @staticmethod
    def _prepare_target(target_dir: str) -> None:
        for name in os.listdir(target_dir):
            if name == CFG.PVS_FILENAME:
                continue
            path = os.path.join(target_dir, name)
            if os.path.isdir(path) and not os.path.islink(path):
                shutil.rmtree(path)
            else:
                os.remove(path)


__all__ = [
    "SnapshotService", "DownloadResult", "ExtractResult", "ProgressCallback",
    "PHASE_CACHE", "PHASE_DOWNLOAD", "PHASE_VERIFY", "PHASE_EXTRACT",
    "tarball_url", "checksum_url", "check_disk_space", "is_snapshot_present",
]
