# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

import os

import pytest

from conftest import json_body
from pushvalidator.core.errors import NETWORK_ERROR, PRECONDITION_FAILED, CodedError
from pushvalidator.network.peer_refresh import PeerRefreshService, fetch_remote_peers
from pushvalidator.storage.configstore import (
    ConfigStore,
    StateSyncParams,
    ensure_section,
    get_in_section,
    set_in_section,
)
from pushvalidator.utils.helpers import write_atomic

SAMPLE = """# node config
moniker = "node"

[p2p]
laddr = "tcp://0.0.0.0:26656"
persistent_peers = ""

[statesync]
enable = false
rpc_servers = ""

[mempool]
size = 5000
"""


def _store(tmp_path, content: str = SAMPLE) -> ConfigStore:
    cfg = tmp_path / "config"
    cfg.mkdir(exist_ok=True)
    (cfg / "config.toml").write_text(content)
    return ConfigStore(str(tmp_path))


def test_set_in_section_replaces_and_appends():
    out = set_in_section(SAMPLE, "p2p", {"persistent_peers": '"a@1.2.3.4:26656"', "pex": "true"})
    assert get_in_section(out, "p2p", "persistent_peers") == "a@1.2.3.4:26656"
    assert get_in_section(out, "p2p", "pex") == "true"
    # other sections untouched
    assert get_in_section(out, "mempool", "size") == "5000"
    assert out.index("pex = true") < out.index("[statesync]")


def test_set_in_missing_section_is_noop():
    assert set_in_section(SAMPLE, "rpc", {"laddr": "x"}) == SAMPLE
    assert get_in_section(SAMPLE, "rpc", "laddr") is None


def test_ensure_section_appends_once():
    out = ensure_section(SAMPLE, "rpc")
    assert out.endswith("\n[rpc]\n")
    assert ensure_section(out, "rpc") == out


def test_persistent_peers_round_trip(tmp_path):
    store = _store(tmp_path)
    store.set_persistent_peers(["a@1.1.1.1:26656", "b@2.2.2.2:26656"])
    content = store.read()
    assert 'persistent_peers = "a@1.1.1.1:26656,b@2.2.2.2:26656"' in content
    assert "addr_book_strict = false" in content
    assert store.get_persistent_peers() == ["a@1.1.1.1:26656", "b@2.2.2.2:26656"]


def test_enable_state_sync(tmp_path):
    store = _store(tmp_path)
    store.enable_state_sync(StateSyncParams(
        trust_height=34000, trust_hash="abc", rpc_servers=["https://a:443", "https://b:443"],
    ))
    content = store.read()
    assert get_in_section(content, "statesync", "enable") == "true"
    assert get_in_section(content, "statesync", "trust_height") == "34000"
    assert get_in_section(content, "statesync", "trust_hash") == "ABC"
    assert get_in_section(content, "statesync", "rpc_servers") == "https://a:443,https://b:443"
    assert get_in_section(content, "statesync", "trust_period") == "336h0m0s"
    store.disable_state_sync()
    assert get_in_section(store.read(), "statesync", "enable") == "false"


def test_read_missing_config_is_precondition(tmp_path):
    with pytest.raises(CodedError) as info:
        ConfigStore(str(tmp_path)).read()
    assert info.value.code == PRECONDITION_FAILED


def test_backup_copies_config(tmp_path):
    store = _store(tmp_path)
    path = store.backup()
    assert path.endswith(".bak")
    with open(path) as handle:
        assert handle.read() == SAMPLE
    assert ConfigStore(str(tmp_path / "nowhere")).try_backup() is None


# ---------- peer refresh ----------

def _net_info(n: int) -> tuple:
    return json_body({"result": {"peers": [
        {"node_info": {"id": f"id{i}", "listen_addr": "tcp://0.0.0.0:26656"}, "remote_ip": f"10.0.0.{i}"}
        for i in range(n)
    ]}})


def test_fetch_remote_peers_caps(http_server):
    http_server.route("/net_info", _net_info(12))
    peers = fetch_remote_peers(http_server.url, max_peers=10)
    assert len(peers) == 10
    assert peers[0] == "id0@10.0.0.0:26656"


def test_refresh_once_rewrites_then_noop(http_server, tmp_path):
    http_server.route("/net_info", _net_info(4))
    store = _store(tmp_path)
    svc = PeerRefreshService(http_server.url, str(tmp_path), log_path=str(tmp_path / "refresh.log"))

    assert svc.refresh_once() is True
    assert len(store.get_persistent_peers()) == 4
    assert svc.last_error is None
    assert svc.refresh_once() is False


def test_refresh_once_needs_minimum_peers(http_server, tmp_path):
    http_server.route("/net_info", _net_info(2))
    _store(tmp_path)
    svc = PeerRefreshService(http_server.url, str(tmp_path), min_peers=3)
    with pytest.raises(CodedError) as info:
        svc.refresh_once()
    assert info.value.code == PRECONDITION_FAILED
    assert "only found 2 peers" in str(info.value)
    assert svc.last_error is info.value


def test_refresh_once_network_failure(http_server, tmp_path):
    _store(tmp_path)
    svc = PeerRefreshService(http_server.url, str(tmp_path))
    with pytest.raises(CodedError) as info:
        svc.refresh_once()
    assert info.value.code == NETWORK_ERROR


def test_refresh_loop_start_stop(http_server, tmp_path):
    http_server.route("/net_info", _net_info(3))
    _store(tmp_path)
    svc = PeerRefreshService(http_server.url, str(tmp_path), interval=60, log_path=str(tmp_path / "logs" / "r.log"))
    assert svc.start()
    assert not svc.start()
    svc.stop()
    assert not svc.is_running()
    assert os.path.isdir(tmp_path / "logs")


def test_write_atomic_leaves_no_temp_files(tmp_path):
    target = tmp_path / "config.toml"
    (tmp_path / "config.toml.tmp").write_text("someone else's scratch file")
    write_atomic(str(target), b"a = 1\n")
    write_atomic(str(target), b"a = 2\n", mode=0o600)
    assert target.read_bytes() == b"a = 2\n"
    assert os.stat(target).st_mode & 0o777 == 0o600
    assert sorted(p.name for p in tmp_path.iterdir()) == ["config.toml", "config.toml.tmp"]
    assert (tmp_path / "config.toml.tmp").read_text() == "someone else's scratch file"


def test_write_atomic_cleans_up_on_failure(tmp_path):
    with pytest.raises(TypeError):
        write_atomic(str(tmp_path / "out"), "not bytes")
    assert list(tmp_path.iterdir()) == []
