# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

import io
import os
import hashlib
import tarfile

import lz4.frame
import pytest

from conftest import range_route
from pushvalidator.core.errors import NETWORK_ERROR, PRECONDITION_FAILED, VALIDATION_ERROR, CodedError
from pushvalidator.snapshot import cache
from pushvalidator.snapshot import service as service_mod
from pushvalidator.snapshot.service import SnapshotService, check_disk_space, is_snapshot_present

TARBALL = "/latest.tar.lz4"
MANIFEST = "/latest.tar.lz4.sha256"


def _sha(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _service() -> SnapshotService:
    return SnapshotService(http_timeout=5, max_attempts=2, backoff_initial=0.01, backoff_max=0.02)


def _publish(server, body: bytes, checksum: str = None) -> str:
    checksum = checksum or _sha(body)
    server.route(MANIFEST, (200, {}, f"{checksum}  latest.tar.lz4\n".encode()))
    server.route(TARBALL, range_route(body))
    return checksum


def _snapshot_archive(files: dict) -> bytes:
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w") as tar:
        for name, payload in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(payload)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(payload))
    return lz4.frame.compress(raw.getvalue())


def _install_cached(home: str, archive: bytes, checksum: str = None) -> None:
    os.makedirs(cache.cache_dir(home), exist_ok=True)
    with open(cache.tarball_path(home), "wb") as handle:
        handle.write(archive)
    cache.write_cached_checksum(home, checksum or _sha(archive))


# ---------- download ----------

def test_fresh_download_writes_tarball_and_checksum(http_server, tmp_path):
    body = os.urandom(4096)
    checksum = _publish(http_server, body)
    home = str(tmp_path)
    events = []

    result = _service().download(http_server.url, home, progress=lambda *a: events.append(a))

    assert result.status == "downloaded"
    assert result.checksum == checksum
    assert result.bytes_written == len(body)
    with open(cache.tarball_path(home), "rb") as handle:
        assert handle.read() == body
    assert cache.read_cached_checksum(home) == checksum
    assert not os.path.exists(cache.partial_path(home))
    assert not os.path.exists(cache.partial_sidecar_path(home))
    assert {e[0] for e in events} >= {"cache", "download", "verify"}


def test_cache_hit_skips_tarball_download(http_server, tmp_path):
    body = b"cached-archive"
    home = str(tmp_path)
    _install_cached(home, body)
    _publish(http_server, body)

    result = _service().download(http_server.url, home)

    assert result.status == "cached"
    assert http_server.requested("GET", TARBALL) == []
    assert http_server.requested("HEAD", TARBALL) == []


def test_no_cache_forces_download(http_server, tmp_path):
    body = b"cached-archive"
    home = str(tmp_path)
    _install_cached(home, body)
    _publish(http_server, body)

    result = _service().download(http_server.url, home, no_cache=True)

    assert result.status == "downloaded"
    assert len(http_server.requested("GET", TARBALL)) == 1


def test_resume_partial_with_matching_sidecar(http_server, tmp_path):
    body = os.urandom(10000)
    checksum = _publish(http_server, body)
    home = str(tmp_path)
    os.makedirs(cache.cache_dir(home))
    with open(cache.partial_path(home), "wb") as handle:
        handle.write(body[:4000])
    with open(cache.partial_sidecar_path(home), "w") as handle:
        handle.write(checksum + "\n")

    result = _service().download(http_server.url, home)

    assert result.status == "downloaded"
    gets = http_server.requested("GET", TARBALL)
    assert len(gets) == 1
    assert gets[0][2].get("Range") == "bytes=4000-"
    with open(cache.tarball_path(home), "rb") as handle:
        assert handle.read() == body


def test_stale_partial_from_older_snapshot_is_discarded(http_server, tmp_path):
    body = os.urandom(2048)
    _publish(http_server, body)
    home = str(tmp_path)
    os.makedirs(cache.cache_dir(home))
    with open(cache.partial_path(home), "wb") as handle:
        handle.write(b"old-bytes")
    with open(cache.partial_sidecar_path(home), "w") as handle:
        handle.write("f" * 64)

    _service().download(http_server.url, home)

    gets = http_server.requested("GET", TARBALL)
    assert "Range" not in gets[0][2]
    with open(cache.tarball_path(home), "rb") as handle:
        assert handle.read() == body


def test_checksum_mismatch_discards_download(http_server, tmp_path):
    body = b"tampered"
    _publish(http_server, body, checksum="0" * 64)
    home = str(tmp_path)

    with pytest.raises(CodedError) as info:
        _service().download(http_server.url, home)

    assert info.value.code == VALIDATION_ERROR
    assert "checksum verification failed" in str(info.value)
    assert not os.path.exists(cache.tarball_path(home))
    assert not os.path.exists(cache.cached_checksum_path(home))


def test_missing_manifest_is_network_error(http_server, tmp_path):
    with pytest.raises(CodedError) as info:
        _service().download(http_server.url, str(tmp_path))
    assert info.value.code == NETWORK_ERROR


def test_download_gives_up_after_max_attempts(http_server, tmp_path):
    http_server.route(MANIFEST, (200, {}, ("1" * 64 + "\n").encode()))
    http_server.route(TARBALL, (500, {}, b"oops"))
    svc = _service()
    with pytest.raises(CodedError) as info:
        svc.download(http_server.url, str(tmp_path))
    assert info.value.code == NETWORK_ERROR
    assert "after 2 attempts" in str(info.value)
    assert len(http_server.requested("GET", TARBALL)) == svc.max_attempts


def test_is_cache_valid(http_server, tmp_path):
    home = str(tmp_path)
    _publish(http_server, b"abc")
    assert not _service().is_cache_valid(http_server.url, home)
    _install_cached(home, b"abc")
    assert _service().is_cache_valid(http_server.url, home)


# ---------- extract ----------

def test_extract_replaces_data_and_preserves_signing_state(tmp_path):
    home = str(tmp_path)
    _install_cached(home, _snapshot_archive({
        "data/application.db/000001.ldb": b"app",
        "data/priv_validator_state.json": b'{"height": "0"}',
    }))
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "stale.db").write_text("old")
    (data_dir / "priv_validator_state.json").write_text('{"height": "777"}')

    result = _service().extract(home)

    assert result.preserved_state
    assert result.entries == 2
    assert (data_dir / "application.db" / "000001.ldb").read_bytes() == b"app"
    assert not (data_dir / "stale.db").exists()
    assert (data_dir / "priv_validator_state.json").read_text() == '{"height": "777"}'


def test_extract_without_cached_tarball(tmp_path):
    with pytest.raises(CodedError) as info:
        _service().extract(str(tmp_path))
    assert info.value.code == PRECONDITION_FAILED


def test_extract_corrupt_cache_is_discarded(tmp_path):
    home = str(tmp_path)
    _install_cached(home, b"not really lz4", checksum="2" * 64)
    with pytest.raises(CodedError) as info:
        _service().extract(home)
    assert info.value.code == VALIDATION_ERROR
    assert "corrupted" in str(info.value)
    assert not os.path.exists(cache.tarball_path(home))


def test_extract_requires_data_directory(tmp_path):
    home = str(tmp_path)
    _install_cached(home, _snapshot_archive({"wasm/code.bin": b"x"}))
    with pytest.raises(CodedError, match="missing data/ directory"):
        _service().extract(home)
    assert not [n for n in os.listdir(home) if n.startswith(".snapshot-extract-")]


# ---------- cache helpers ----------

def test_reconcile_partial_cases(tmp_path):
    home = str(tmp_path)
    os.makedirs(cache.cache_dir(home))
    assert cache.reconcile_partial(home, "a" * 64) == 0
    assert open(cache.partial_sidecar_path(home)).read().strip() == "a" * 64

    with open(cache.partial_path(home), "wb") as handle:
        handle.write(b"12345")
    assert cache.reconcile_partial(home, "a" * 64) == 5
    assert cache.reconcile_partial(home, "b" * 64) == 0
    assert not os.path.exists(cache.partial_path(home))

    # partial without sidecar resumes
    with open(cache.partial_path(home), "wb") as handle:
        handle.write(b"123")
    os.remove(cache.partial_sidecar_path(home))
    assert cache.reconcile_partial(home, "c" * 64) == 3


def test_cache_status(tmp_path):
    home = str(tmp_path)
    assert not cache.status(home).present
    _install_cached(home, b"xyz", checksum="d" * 64)
    st = cache.status(home).to_dict()
    assert st["present"] and st["size"] == 3
    assert st["checksum"] == "d" * 64


def test_is_snapshot_present(tmp_path):
    home = str(tmp_path)
    db = tmp_path / "data" / "blockstore.db"
    db.mkdir(parents=True)
    (db / "small.log").write_bytes(b"x" * 10)
    assert not is_snapshot_present(home)
    (db / "big.log").write_bytes(b"x" * (1024 * 1024 + 1))
    assert is_snapshot_present(home)


def test_disk_space_preflight(monkeypatch, tmp_path):
    monkeypatch.setattr(service_mod, "free_bytes", lambda path: 1024)
    with pytest.raises(CodedError) as info:
        check_disk_space(str(tmp_path), 10 * 1024 ** 3)
    assert info.value.code == PRECONDITION_FAILED
    assert "insufficient disk space" in str(info.value)
