# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

import io
import os
import json
import hashlib
import tarfile
from datetime import datetime, timedelta, timezone

import pytest

from conftest import json_body
from pushvalidator.core.errors import NETWORK_ERROR, PRECONDITION_FAILED, VALIDATION_ERROR, CodedError
from pushvalidator.update import updater as updater_mod
from pushvalidator.update.cache import CacheEntry, cache_path, load_cache, save_cache
from pushvalidator.update.release import (
    Asset, Release, asset_for_platform, asset_name, checksum_asset, fetch_latest_release, fetch_release_by_tag,
    is_newer_version, strip_v,
)
from pushvalidator.update.updater import Updater, expected_checksum

ASSET = "push-validator_1.5.0_linux_amd64.tar.gz"


def _archive(payload: bytes, name: str = "push-validator") -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo(name)
        info.size = len(payload)
        info.mode = 0o755
        tar.addfile(info, io.BytesIO(payload))
    return buf.getvalue()


def _release(base: str, tag: str = "v1.5.0") -> Release:
    return Release(tag_name=tag, assets=(
        Asset(name=ASSET, url=f"{base}/{ASSET}"),
        Asset(name="checksums.txt", url=f"{base}/checksums.txt"),
    ))


def _publish(server, payload: bytes, checksum: str = None) -> None:
    archive = _archive(payload)
    checksum = checksum or hashlib.sha256(archive).hexdigest()
    server.route(f"/{ASSET}", (200, {}, archive))
    server.route("/checksums.txt", (200, {}, f"{checksum}  {ASSET}\n{'0' * 64}  other.tar.gz\n".encode()))


def _installed_binary(tmp_path, content: bytes = b"old-binary") -> str:
    path = tmp_path / "bin" / "push-validator"
    path.parent.mkdir()
    path.write_bytes(content)
    os.chmod(path, 0o755)
    return str(path)


# ---------- versions & releases ----------

@pytest.mark.parametrize(
    "current, latest, newer",
    [
        ("1.4.0", "v1.5.0", True),
        ("v1.5.0", "1.5.0", False),
        ("1.10.0", "1.9.9", False),
        ("dev", "v1.0.0", True),
        ("1.0.0", "garbage", False),
        ("1.0.0", "v1.0.1-rc1", True),
    ],
)
def test_is_newer_version(current, latest, newer):
    assert is_newer_version(current, latest) is newer


def test_strip_v_and_asset_name():
    assert strip_v("v1.2.3") == "1.2.3"
    assert strip_v("1.2.3") == "1.2.3"
    assert asset_name("v1.5.0", "linux", "amd64") == ASSET


def test_asset_lookup():
    rel = _release("https://example.org")
    assert asset_for_platform(rel, "linux", "amd64").name == ASSET
    assert checksum_asset(rel).name == "checksums.txt"
    with pytest.raises(CodedError) as info:
        asset_for_platform(rel, "darwin", "arm64")
    assert info.value.code == PRECONDITION_FAILED


def test_fetch_release(http_server):
    http_server.route("/releases/latest", json_body({
        "tag_name": "v1.5.0",
        "assets": [{"name": ASSET, "browser_download_url": "https://x/a", "size": 10}],
    }))
    rel = fetch_latest_release(http_server.url + "/releases/latest", timeout=5)
    assert rel.version == "1.5.0"
    assert rel.assets[0].size == 10
    with pytest.raises(CodedError) as info:
        fetch_release_by_tag("1.9.9", url_template=http_server.url + "/releases/tags/{tag}", timeout=5)
    assert info.value.code == NETWORK_ERROR
    assert "release v1.9.9 not found" in str(info.value)


def test_expected_checksum():
    manifest = f"{'a' * 64}  {ASSET}\n{'b' * 64}  other\n"
    assert expected_checksum(manifest, ASSET) == "a" * 64
    assert expected_checksum(manifest, "missing") is None
    # sha256sum -b output
    assert expected_checksum(f"{'c' * 64} *{ASSET}\n", ASSET) == "c" * 64


# ---------- update cache ----------

def test_cache_round_trip_and_freshness(tmp_path):
    home = str(tmp_path)
    assert load_cache(home) is None
    now = datetime.now(timezone.utc)
    save_cache(home, CacheEntry(checked_at=now, latest_version="1.5.0", update_available=True))
    entry = load_cache(home)
    assert entry.latest_version == "1.5.0" and entry.update_available
    assert entry.is_fresh(ttl=3600)
    assert not entry.is_fresh(ttl=3600, now=now + timedelta(hours=2))


def test_corrupt_cache_is_ignored(tmp_path):
    with open(cache_path(str(tmp_path)), "w") as handle:
        handle.write("{broken")
    assert load_cache(str(tmp_path)) is None


def test_check_uses_fresh_cache(monkeypatch, tmp_path):
    home = str(tmp_path)
    save_cache(home, CacheEntry(checked_at=datetime.now(timezone.utc), latest_version="1.5.0", update_available=True))

    def _no_network():
        raise AssertionError("network used despite fresh cache")

    monkeypatch.setattr(updater_mod, "fetch_latest_release", _no_network)
    result = Updater("1.4.0", binary_path="/nonexistent", home=home).check()
    assert result.cached and result.update_available
    assert result.to_dict()["latest_version"] == "1.5.0"


def test_check_refreshes_cache(monkeypatch, tmp_path):
    home = str(tmp_path)
    monkeypatch.setattr(updater_mod, "fetch_latest_release", lambda: Release(tag_name="v1.4.0"))
    result = Updater("1.4.0", binary_path="/nonexistent", home=home).check(force=True)
    assert not result.update_available and not result.cached
    with open(cache_path(home)) as handle:
        assert json.load(handle)["latest_version"] == "1.4.0"


# ---------- install pipeline ----------

def test_update_installs_and_keeps_backup(monkeypatch, http_server, tmp_path):
    _publish(http_server, b"new-binary")
    monkeypatch.setattr(updater_mod, "fetch_latest_release", lambda: _release(http_server.url))
    monkeypatch.setattr(updater_mod, "asset_for_platform", lambda rel: rel.assets[0])
    path = _installed_binary(tmp_path)
    seen = []

    result = Updater("1.4.0", binary_path=path).update(progress=lambda done, total: seen.append((done, total)))

    assert result.previous_version == "1.4.0"
    assert result.installed_version == "1.5.0"
    with open(path, "rb") as handle:
        assert handle.read() == b"new-binary"
    with open(result.backup_path, "rb") as handle:
        assert handle.read() == b"old-binary"
    assert os.stat(path).st_mode & 0o777 == 0o755
    assert seen and seen[-1][0] == seen[-1][1]


def test_update_skipped_when_current(monkeypatch, tmp_path):
    monkeypatch.setattr(updater_mod, "fetch_latest_release", lambda: Release(tag_name="v1.4.0"))
    assert Updater("1.4.0", binary_path=_installed_binary(tmp_path)).update() is None


def test_checksum_mismatch_leaves_binary_alone(monkeypatch, http_server, tmp_path):
    _publish(http_server, b"new-binary", checksum="f" * 64)
    monkeypatch.setattr(updater_mod, "fetch_latest_release", lambda: _release(http_server.url))
    monkeypatch.setattr(updater_mod, "asset_for_platform", lambda rel: rel.assets[0])
    path = _installed_binary(tmp_path)

    with pytest.raises(CodedError) as info:
        Updater("1.4.0", binary_path=path).update()

    assert info.value.code == VALIDATION_ERROR
    assert "checksum mismatch" in str(info.value)
    with open(path, "rb") as handle:
        assert handle.read() == b"old-binary"


def test_skip_verify_does_not_fetch_manifest(monkeypatch, http_server, tmp_path):
    _publish(http_server, b"new-binary", checksum="f" * 64)
    monkeypatch.setattr(updater_mod, "fetch_latest_release", lambda: _release(http_server.url))
    monkeypatch.setattr(updater_mod, "asset_for_platform", lambda rel: rel.assets[0])
    Updater("1.4.0", binary_path=_installed_binary(tmp_path)).update(skip_verify=True)
    assert http_server.requested("GET", "/checksums.txt") == []


def test_extract_binary_errors():
    with pytest.raises(CodedError, match="binary not found"):
        Updater.extract_binary(_archive(b"x", name="README.md"))
    with pytest.raises(CodedError, match="failed to read release archive"):
        Updater.extract_binary(b"not a tarball")


def test_rollback(tmp_path):
    path = _installed_binary(tmp_path, b"new")
    upd = Updater("1.5.0", binary_path=path)
    with pytest.raises(CodedError) as info:
        upd.rollback()
    assert info.value.code == PRECONDITION_FAILED
    with open(upd.backup_path, "wb") as handle:
        handle.write(b"old")
    upd.rollback()
    with open(path, "rb") as handle:
        assert handle.read() == b"old"
    assert not os.path.exists(upd.backup_path)
