# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

import io
import os
import tarfile

import lz4.frame
import pytest

from pushvalidator.core.errors import VALIDATION_ERROR, CodedError
from pushvalidator.snapshot.extractor import (
    AbsoluteSymlinkError,
    InvalidPathError,
    extract_tar_lz4,
    extract_tar_stream,
    safe_target,
)
from pushvalidator.snapshot.verifier import (
    checksums_equal,
    parse_checksum_manifest,
    sha256_of_file,
    verify_file,
)

HEX = "a" * 64


def _tar_bytes(entries) -> bytes:
    """entries: (name, kind, payload) with kind in file/dir/symlink/hardlink."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, kind, payload in entries:
            info = tarfile.TarInfo(name)
            if kind == "file":
                info.size = len(payload)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(payload))
            elif kind == "dir":
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            elif kind == "symlink":
                info.type = tarfile.SYMTYPE
                info.linkname = payload
                tar.addfile(info)
            elif kind == "hardlink":
                info.type = tarfile.LNKTYPE
                info.linkname = payload
                tar.addfile(info)
    return buf.getvalue()


# ---------- verifier ----------

def test_manifest_first_hex_token_wins():
    text = f"# comment\n\nnot-a-hash  file\n{HEX}  latest.tar.lz4\n{'b' * 64}  other\n"
    assert parse_checksum_manifest(text) == HEX
    assert parse_checksum_manifest(text.encode()) == HEX
    assert parse_checksum_manifest(io.StringIO(text)) == HEX


def test_manifest_without_hash_is_validation_error():
    with pytest.raises(CodedError) as info:
        parse_checksum_manifest("# nothing here\nabc  file\n")
    assert info.value.code == VALIDATION_ERROR
    assert "no valid SHA256 hash" in str(info.value)


def test_checksum_comparison_is_case_insensitive():
    assert checksums_equal("ABCDEF", "abcdef ")
    assert not checksums_equal("abc", "abd")


def test_verify_file(tmp_path):
    path = tmp_path / "blob"
    path.write_bytes(b"snapshot")
    good = sha256_of_file(str(path))
    verify_file(str(path), good.upper())
    with pytest.raises(CodedError, match="hash mismatch"):
        verify_file(str(path), HEX)


# ---------- extractor ----------

@pytest.mark.parametrize("name", ["../evil", "data/../../evil", "/etc/passwd"])
def test_traversal_rejected(tmp_path, name):
    with pytest.raises(InvalidPathError) as info:
        safe_target(str(tmp_path), name)
    assert info.value.code == VALIDATION_ERROR


def test_traversal_entry_aborts_extraction(tmp_path):
    raw = _tar_bytes([("../escape.txt", "file", b"x")])
    dest = tmp_path / "out"
    with pytest.raises(InvalidPathError):
        extract_tar_stream(io.BytesIO(raw), str(dest))
    assert not (tmp_path / "escape.txt").exists()


def test_absolute_symlink_rejected(tmp_path):
    raw = _tar_bytes([("data/link", "symlink", "/etc/passwd")])
    with pytest.raises(AbsoluteSymlinkError) as info:
        extract_tar_stream(io.BytesIO(raw), str(tmp_path / "out"))
    assert info.value.code == VALIDATION_ERROR


def test_extracts_files_links_and_skips_dot(tmp_path):
    raw = _tar_bytes([
        (".", "dir", None),
        ("data", "dir", None),
        ("data/a.txt", "file", b"hello"),
        ("data/rel", "symlink", "a.txt"),
        ("data/hard", "hardlink", "data/a.txt"),
    ])
    dest = tmp_path / "out"
    seen = []
    count = extract_tar_stream(io.BytesIO(raw), str(dest), progress=lambda n, total, name: seen.append(name))
    assert count == 4
    assert seen == ["data", "data/a.txt", "data/rel", "data/hard"]
    assert (dest / "data" / "a.txt").read_bytes() == b"hello"
    assert os.readlink(dest / "data" / "rel") == "a.txt"
    assert (dest / "data" / "hard").read_bytes() == b"hello"


def test_hardlink_target_outside_dest_rejected(tmp_path):
    raw = _tar_bytes([("data/hard", "hardlink", "../../outside")])
    with pytest.raises(InvalidPathError):
        extract_tar_stream(io.BytesIO(raw), str(tmp_path / "out"))


def test_extract_lz4_archive(tmp_path):
    archive = tmp_path / "latest.tar.lz4"
    with lz4.frame.open(str(archive), mode="wb") as handle:
        handle.write(_tar_bytes([("data/blockstore.db/000001.log", "file", b"block")]))
    count = extract_tar_lz4(str(archive), str(tmp_path / "out"))
    assert count == 1
    assert (tmp_path / "out" / "data" / "blockstore.db" / "000001.log").read_bytes() == b"block"
