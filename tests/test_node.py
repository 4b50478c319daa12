# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

import os
import socket
import tarfile

import pytest

from conftest import json_body
from pushvalidator.core.errors import PRECONDITION_FAILED, CodedError
from pushvalidator.metrics.collector import Collector, remote_url
from pushvalidator.node.admin import backup, reset
from pushvalidator.node.supervisor import Supervisor, is_rpc_listening, process_alive

FAKE_NODE = """#!/bin/sh
if [ "$1" = "start" ]; then
    echo "node starting"
    exec sleep 30
fi
exit 0
"""


def _home(tmp_path):
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    (tmp_path / "config" / "config.toml").write_text("[p2p]\n")
    (tmp_path / "config" / "genesis.json").write_text("{}")
    (tmp_path / "config" / "addrbook.json").write_text('{"addrs": []}')
    (tmp_path / "data" / "priv_validator_state.json").write_text('{"height": "5"}')
    (tmp_path / "data" / "blockstore.db").mkdir()
    return str(tmp_path)


def _fake_node(tmp_path) -> str:
    path = tmp_path / "pchaind"
    path.write_text(FAKE_NODE)
    os.chmod(path, 0o755)
    return str(path)


# ---------- admin ----------

def test_reset_keeps_address_book(tmp_path):
    home = _home(tmp_path)
    reset(home)
    assert os.listdir(tmp_path / "data") == []
    assert (tmp_path / "config" / "addrbook.json").read_text() == '{"addrs": []}'
    assert (tmp_path / "config" / "config.toml").exists()


def test_backup_contains_config_and_state(tmp_path):
    home = _home(tmp_path)
    path = backup(home, str(tmp_path / "out"))
    with tarfile.open(path, "r:gz") as tar:
        names = sorted(tar.getnames())
    assert names == ["config/config.toml", "config/genesis.json", "data/priv_validator_state.json"]


# ---------- supervisor ----------

def test_start_requires_genesis(tmp_path):
    with pytest.raises(CodedError) as info:
        Supervisor(str(tmp_path)).start(_fake_node(tmp_path))
    assert info.value.code == PRECONDITION_FAILED
    assert "genesis.json not found" in str(info.value)


def test_start_stop_cycle(tmp_path):
    home = _home(tmp_path)
    sup = Supervisor(home)
    pid = sup.start(_fake_node(tmp_path))
    try:
        assert sup.pid() == pid
        assert sup.is_running()
        assert sup.uptime() is not None
        # already running: same pid back
        assert sup.start(_fake_node(tmp_path)) == pid
    finally:
        sup.stop(grace=5, kill_grace=2)
    assert not sup.is_running()
    assert not os.path.exists(sup.pid_file)
    assert os.path.exists(sup.log_path)


def test_stale_pid_file_is_removed(tmp_path):
    sup = Supervisor(str(tmp_path))
    with open(sup.pid_file, "w") as handle:
        handle.write("999999999")
    assert sup.pid() is None
    assert not os.path.exists(sup.pid_file)


def test_process_alive_and_listening():
    assert process_alive(os.getpid())
    assert not process_alive(0)
    with socket.socket() as srv:
        srv.bind(("127.0.0.1", 0))
        srv.listen(1)
        port = srv.getsockname()[1]
        assert is_rpc_listening(f"127.0.0.1:{port}")
    assert not is_rpc_listening("127.0.0.1:notaport")


# ---------- metrics ----------

def test_remote_url():
    assert remote_url("donut.rpc.push.org") == "https://donut.rpc.push.org:443"
    assert remote_url("http://127.0.0.1:1") == "http://127.0.0.1:1"


def test_collect_snapshot(http_server):
    http_server.route("/status", json_body({"result": {
        "node_info": {"id": "nid", "moniker": "m", "network": "push_42101-1"},
        "sync_info": {"latest_block_height": "1200", "catching_up": True},
    }}))
    http_server.route("/net_info", json_body({"result": {"peers": [
        {"node_info": {"id": "p1", "listen_addr": "tcp://1.1.1.1:26656"}, "remote_ip": "1.1.1.1"},
        {"node_info": {"id": "p2", "listen_addr": "tcp://2.2.2.2:26656"}, "remote_ip": "2.2.2.2"},
    ]}}))
    snap = Collector().collect(http_server.url, http_server.url)
    assert snap.chain.local_height == 1200
    assert snap.chain.remote_height == 1200
    assert snap.chain.catching_up
    assert snap.node.chain_id == "push_42101-1"
    assert snap.node.rpc_listening
    assert snap.network.peers == 2
    assert snap.system.mem_total > 0
    assert set(snap.to_dict()) == {"system", "network", "chain", "node"}


def test_collect_with_rpc_down(http_server):
    snap = Collector().collect(http_server.url, http_server.url)
    assert not snap.node.rpc_listening
    assert snap.chain.local_height == 0
    assert snap.network.peers == 0


def test_cpu_sampler_lifecycle():
    col = Collector(sample_interval=0.01)
    assert col.start()
    assert not col.start()
    assert col.cpu_running
    col.stop()
    assert not col.cpu_running
    assert col.last_cpu() >= 0.0
