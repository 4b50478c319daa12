# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

import pytest

from conftest import json_body
from pushvalidator.core.errors import NETWORK_ERROR, CodedError
from pushvalidator.network.rpc_client import RPCClient, RPCError
from pushvalidator.network.trust import TrustProvider, candidate_height


def _status(height: int, node_id: str = "abc", catching_up: bool = False) -> tuple:
    return json_body({"result": {
        "node_info": {"id": node_id, "moniker": "m", "network": "push_42101-1"},
        "sync_info": {"latest_block_height": str(height), "catching_up": catching_up},
    }})


def _provider(server) -> TrustProvider:
    return TrustProvider(RPCClient(server.url, timeout=5), attempts=3, retry_step=0.01)


@pytest.mark.parametrize(
    "latest, offset, expected",
    [
        (35000, 1, 34000),
        (35999, 1, 34000),
        (35000, 5, 30000),
        (1500, 1, 1000),
        (0, 1, 1000),
    ],
)
def test_candidate_height(latest, offset, expected):
    assert candidate_height(latest, offset) == expected


def test_block_hash_at_first_candidate(http_server):
    http_server.route("/status", _status(35000))
    http_server.route("/block?height=34000", json_body({"result": {"block_id": {"hash": "abc123"}}}))
    params = _provider(http_server).compute()
    assert (params.height, params.hash) == (34000, "ABC123")


def test_falls_back_to_commit_and_next_offset(http_server):
    http_server.route("/status", _status(35000))
    # 34000: both endpoints 404
    http_server.route("/block?height=33000", (200, {}, b"{not json"))
    http_server.route("/commit?height=33000", json_body({
        "result": {"signed_header": {"commit": {"block_id": {"hash": "def456"}}}},
    }))
    params = _provider(http_server).compute()
    assert (params.height, params.hash) == (33000, "DEF456")
    # 404 on /block?height=34000 is retried, malformed JSON at 33000 is not
    assert len(http_server.requested("GET", "/block?height=34000")) == 3
    assert len(http_server.requested("GET", "/block?height=33000")) == 1


def test_no_hash_anywhere_is_network_error(http_server):
    http_server.route("/status", _status(35000))
    provider = TrustProvider(RPCClient(http_server.url, timeout=5), attempts=1, retry_step=0.0)
    with pytest.raises(CodedError) as info:
        provider.compute()
    assert info.value.code == NETWORK_ERROR
    assert "trust hash" in str(info.value)


def test_latest_height_falls_back_to_block_header(http_server):
    http_server.route("/block", json_body({"result": {"block": {"header": {"height": "4321"}}}}))
    assert RPCClient(http_server.url).latest_height() == 4321


# ---------- rpc client ----------

def test_status_and_peers(http_server):
    http_server.route("/status", _status(12, node_id="node1", catching_up=True))
    http_server.route("/net_info", json_body({"result": {"peers": [
        {"node_info": {"id": "p1", "listen_addr": "tcp://0.0.0.0:26656"}, "remote_ip": "10.0.0.1"},
        {"node_info": {"id": "", "listen_addr": "tcp://1.1.1.1:26656"}, "remote_ip": "1.1.1.1"},
    ]}}))
    client = RPCClient(http_server.url)
    st = client.status()
    assert (st.node_id, st.height, st.catching_up) == ("node1", 12, True)
    peers = client.peers()
    assert [str(p) for p in peers] == ["p1@10.0.0.1:26656"]


def test_rpc_error_statuses(http_server):
    http_server.route("/bad", (200, {}, b"[1, 2"))
    client = RPCClient(http_server.url)
    with pytest.raises(RPCError) as info:
        client.get_json("/missing")
    assert info.value.status == 404
    with pytest.raises(RPCError) as info:
        client.get_json("/bad")
    assert info.value.status == 200
    assert "malformed JSON" in str(info.value)


def test_probe_posts_jsonrpc(http_server):
    http_server.route("/", json_body({"result": {}}), method="POST")
    assert RPCClient(http_server.url).probe()
    method, path, _headers, payload = http_server.requests[-1]
    assert (method, path) == ("POST", "/")
    assert b'"method": "status"' in payload
    assert not RPCClient(http_server.url + "/nothing").probe()
