# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

import os

import pytest

from conftest import json_body
from pushvalidator.core.context import background
from pushvalidator.core.errors import INVALID_ARGS, NETWORK_ERROR, VALIDATION_ERROR, CodedError
from pushvalidator.core.runner import RecordingRunner
from pushvalidator.network.rpc_client import NetPeer
from pushvalidator.node.bootstrap import BootstrapOptions, Bootstrapper, dedupe, filter_peers, raw_member
from pushvalidator.storage.configstore import ConfigStore, get_in_section

WITNESS = "https://witness.example:443"


GENESIS = b'{"chain_id":"push_42101-1",  "app_state": {"bank": {"supply": []}},"initial_height":"1"}'


def _serve_network(server) -> None:
    server.route("/genesis", (200, {"Content-Type": "application/json"},
                              b'{"jsonrpc":"2.0","id":-1,"result":{"genesis":' + GENESIS + b'}}'))
    server.route("/net_info", json_body({"result": {"peers": [
        {"node_info": {"id": "bad", "listen_addr": "tcp://0.0.0.0:26656"}, "remote_ip": "5.6.7.8"},
        {"node_info": {"id": "good", "listen_addr": "tcp://1.2.3.4:26656"}, "remote_ip": "1.2.3.4"},
    ]}}))
    server.route("/status", json_body({"result": {
        "node_info": {"id": "S", "moniker": "snap"},
        "sync_info": {"latest_block_height": "35000", "catching_up": False},
    }}))
    server.route("/block?height=34000", json_body({"result": {"block_id": {"hash": "abc123"}}}))
    server.route("/", json_body({"result": {}}), method="POST")


def _bootstrapper(runner) -> Bootstrapper:
    return Bootstrapper(
        runner=runner, http_timeout=5, trust_retry_step=0.01,
        probe_timeout=2, probe_attempts=1, probe_delay=0.01, seed_hosts=(), fallback_rpc=WITNESS,
    )


def _options(server, home) -> BootstrapOptions:
    return BootstrapOptions(
        home=str(home),
        chain_id="push_42101-1",
        genesis_domain=server.url,
        bin_path="pchaind",
        snapshot_rpc_primary=server.url,
        snapshot_rpc_secondary=None,
    )


def test_filter_peers_drops_unspecified_listeners():
    entries = [
        NetPeer(id="a", listen_addr="tcp://0.0.0.0:26656", remote_ip="9.9.9.9"),
        NetPeer(id="b", listen_addr="tcp://1.2.3.4:26656", remote_ip="1.2.3.4"),
        NetPeer(id="c", listen_addr="tcp://5.5.5.5:36656", remote_ip="5.5.5.5"),
        NetPeer(id="", listen_addr="tcp://6.6.6.6:26656", remote_ip="6.6.6.6"),
    ]
    assert filter_peers(entries) == ["b@1.2.3.4:26656", "c@5.5.5.5:36656"]
    assert filter_peers(entries, cap=1) == ["b@1.2.3.4:26656"]


def test_dedupe_keeps_order():
    assert dedupe(["x", "", "y", "x"]) == ["x", "y"]


def test_fresh_bootstrap(http_server, tmp_path):
    _serve_network(http_server)
    runner = RecordingRunner()
    messages = []
    opts = _options(http_server, tmp_path)
    opts.progress = messages.append

    result = _bootstrapper(runner).init(opts)

    # genesis written verbatim
    with open(result.genesis_path, "rb") as handle:
        assert handle.read() == GENESIS

    content = ConfigStore(str(tmp_path)).read()
    assert get_in_section(content, "p2p", "persistent_peers") == "good@1.2.3.4:26656,S@127.0.0.1:26656"
    assert get_in_section(content, "statesync", "enable") == "true"
    assert get_in_section(content, "statesync", "trust_height") == "34000"
    assert get_in_section(content, "statesync", "trust_hash") == "ABC123"
    assert get_in_section(content, "statesync", "rpc_servers") == f"{http_server.url},{WITNESS}"

    assert result.trust.height == 34000
    assert runner.calls[0][:3] == ("pchaind", "init", "push-validator")
    assert "--chain-id=push_42101-1" in runner.calls[0]
    assert runner.calls[-1][1:3] == ("tendermint", "unsafe-reset-all")
    assert os.path.exists(tmp_path / ".initial_state_sync")
    assert os.path.exists(tmp_path / "data" / "priv_validator_state.json")
    assert messages and messages[-1].startswith("Bootstrap complete")


def test_existing_config_skips_init(http_server, tmp_path):
    _serve_network(http_server)
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "config.toml").write_text("[p2p]\npersistent_peers = \"\"\n")
    runner = RecordingRunner()

    _bootstrapper(runner).init(_options(http_server, tmp_path))

    assert [c[1] for c in runner.calls] == ["tendermint"]


def test_unreachable_rpc_servers(http_server, tmp_path):
    _serve_network(http_server)
    del http_server.routes[("POST", "/")]
    with pytest.raises(CodedError) as info:
        _bootstrapper(RecordingRunner()).init(_options(http_server, tmp_path))
    assert info.value.code == NETWORK_ERROR
    assert "no reachable RPC servers" in str(info.value)


def test_genesis_failure_is_network_error(http_server, tmp_path):
    with pytest.raises(CodedError) as info:
        _bootstrapper(RecordingRunner()).init(_options(http_server, tmp_path))
    assert info.value.code == NETWORK_ERROR
    assert "fetch genesis" in str(info.value)


def test_missing_chain_id_is_invalid_args(tmp_path):
    opts = BootstrapOptions(home=str(tmp_path), chain_id="", genesis_domain="example.org")
    with pytest.raises(CodedError) as info:
        _bootstrapper(RecordingRunner()).init(opts)
    assert info.value.code == INVALID_ARGS


def test_raw_member_keeps_source_text():
    text = '{"result": {"genesis" :{"b": 1,  "a": [1, 2]}, "other": {"genesis": 0}}}'
    assert raw_member(text, "genesis", {"a": [1, 2], "b": 1}) == '{"b": 1,  "a": [1, 2]}'
    with pytest.raises(CodedError):
        raw_member(text, "genesis", {"c": 3})


def test_malformed_genesis_is_validation_error(http_server, tmp_path):
    http_server.route("/genesis", (200, {}, b"<html>maintenance</html>"))
    with pytest.raises(CodedError) as info:
        _bootstrapper(RecordingRunner()).init(_options(http_server, tmp_path))
    assert info.value.code == VALIDATION_ERROR


def test_single_live_server_equal_to_fallback(http_server):
    http_server.route("/", json_body({"result": {}}), method="POST")
    boot = Bootstrapper(
        runner=RecordingRunner(), http_timeout=5, trust_retry_step=0.01,
        probe_timeout=2, probe_attempts=1, probe_delay=0.01, seed_hosts=(), fallback_rpc=http_server.url,
    )
    with pytest.raises(CodedError) as info:
        boot.pick_rpc_servers(["http://127.0.0.1:1", http_server.url], background())
    assert info.value.code == NETWORK_ERROR
    assert "two distinct RPC servers" in str(info.value)


def test_single_live_server_gets_fallback_witness(http_server):
    http_server.route("/", json_body({"result": {}}), method="POST")
    servers = _bootstrapper(RecordingRunner()).pick_rpc_servers(["http://127.0.0.1:1", http_server.url], background())
    assert servers == [http_server.url, WITNESS]
