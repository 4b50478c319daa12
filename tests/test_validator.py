# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

import os
import json
import subprocess
from decimal import Decimal

import bech32
import pytest

from pushvalidator.core.errors import INVALID_ARGS, PRECONDITION_FAILED, PROCESS_ERROR, CodedError
from pushvalidator.utils.settings import NodeSettings
from pushvalidator.validator.fetcher import (
    NONE_MARK, Proposal, Rewards, ValidatorFetcher, bech32_to_hex, commission_percent, format_token_amount, jail_reason,
    parse_proposal_status, parse_status, same_account, sort_proposals, voting_power,
)
from pushvalidator.validator.service import (
    DelegateArgs, RegisterArgs, ValidatorService, VoteArgs, extract_mnemonic, find_txhash, restake_amount, rewards_total,
)

PAYLOAD = "qyqszqgpqyqszqgpqyqszqgpqyqszqgp"
MNEMONIC = " ".join(["abandon"] * 11 + ["about"])


class _Chain:
    """Fake node binary: maps the first words of the argv to a canned reply."""

    def __init__(self, replies=None):
        self.replies = dict(replies or {})
        self.calls = []

    def __call__(self, argv, timeout):
        self.calls.append(list(argv))
        for key, reply in self.replies.items():
            if tuple(argv[1:1 + len(key)]) == key:
                if callable(reply):
                    reply = reply(argv)
                code, out, err = reply
                return subprocess.CompletedProcess(argv, code, stdout=out, stderr=err)
        return subprocess.CompletedProcess(argv, 1, stdout="", stderr="Error: unknown command")

    def count(self, *prefix):
        return sum(1 for c in self.calls if tuple(c[1:1 + len(prefix)]) == prefix)


def _ok(payload):
    return (0, payload if isinstance(payload, str) else json.dumps(payload), "")


def _validator(addr, moniker, key, tokens="1000000000000000000000", jailed=False, status="BOND_STATUS_BONDED"):
    return {
        "operator_address": addr,
        "consensus_pubkey": {"@type": "/cosmos.crypto.ed25519.PubKey", "key": key},
        "description": {"moniker": moniker},
        "status": status,
        "tokens": tokens,
        "jailed": jailed,
        "commission": {"commission_rates": {"rate": "0.100000000000000000"}},
    }


def _settings(tmp_path) -> NodeSettings:
    return NodeSettings(home_dir=str(tmp_path), genesis_domain="http://127.0.0.1:1")


# ---------- pure helpers ----------

def test_bech32_to_hex():
    raw = bytes(range(1, 21))
    addr = bech32.bech32_encode("pushvaloper", bech32.convertbits(raw, 8, 5))
    assert bech32_to_hex(addr) == "0x" + raw.hex().upper()
    assert bech32_to_hex("push1notvalid") == NONE_MARK
    assert bech32_to_hex("") == NONE_MARK


@pytest.mark.parametrize(
    "status, text",
    [("BOND_STATUS_BONDED", "BONDED"), ("BOND_STATUS_UNBONDING", "UNBONDING"), ("BOND_STATUS_UNBONDED", "UNBONDED"), ("OTHER", "OTHER")],
)
def test_parse_status(status, text):
    assert parse_status(status) == text


def test_voting_power_and_commission():
    assert voting_power("2500000000000000000000") == 2500
    assert voting_power("") == 0
    assert voting_power("abc") == 0
    assert commission_percent("0.100000000000000000") == "10%"
    assert commission_percent("50000000000000000") == "5%"
    assert commission_percent("junk") == "0%"


def test_format_token_amount():
    assert format_token_amount("123000000000000000000upc") == "123.00"
    assert format_token_amount("1500000000000000000.000000000000000000upc") == "1.50"
    assert format_token_amount("nothing") == NONE_MARK


@pytest.mark.parametrize(
    "tombstoned, until, missed, reason",
    [
        (True, "2030-01-01T00:00:00Z", 0, "Double Sign"),
        (False, "2030-01-01T00:00:00Z", 0, "Downtime"),
        (False, "1970-01-01T00:00:00Z", 12, "Downtime"),
        (False, "1970-01-01T00:00:00Z", 0, "Unknown"),
    ],
)
def test_jail_reason(tombstoned, until, missed, reason):
    assert jail_reason(tombstoned, until, missed) == reason


def test_same_account():
    assert same_account(f"push1{PAYLOAD}abcdef", f"pushvaloper1{PAYLOAD}uvwxyz")
    assert not same_account(f"push1{PAYLOAD}abcdef", f"pushvaloper1{PAYLOAD[:-1]}xuvwxyz")
    assert not same_account(f"pushvaloper1{PAYLOAD}abcdef", f"push1{PAYLOAD}uvwxyz")
    assert not same_account("push1abc", "pushvaloper1abc")


# ---------- fetcher ----------

def test_validators_are_cached(tmp_path):
    chain = _Chain({("query", "staking", "validators"): _ok({"validators": [
        _validator("pushvaloper1a", "alpha", "K1", status="BOND_STATUS_BONDED"),
        _validator("pushvaloper1b", "beta", "K2", tokens="3000000000000000000000", status="BOND_STATUS_UNBONDED"),
    ]})})
    fetcher = ValidatorFetcher(_settings(tmp_path), exec_fn=chain, binary="pchaind")

    first = fetcher.validators()
    assert first.total == 2
    assert [v.moniker for v in first.validators] == ["alpha", "beta"]
    assert first.validators[1].voting_power == 3000
    assert first.validators[1].status == "UNBONDED"
    assert first.validators[0].commission == "10%"
    assert fetcher.validators() is first
    assert chain.count("query", "staking", "validators") == 1
    assert chain.calls[0][-4:] == ["--node", "http://127.0.0.1:1", "-o", "json"]


def test_stale_validator_list_served_on_failure(tmp_path):
    replies = {("query", "staking", "validators"): _ok({"validators": [_validator("pushvaloper1a", "alpha", "K1")]})}
    chain = _Chain(replies)
    fetcher = ValidatorFetcher(_settings(tmp_path), exec_fn=chain, binary="pchaind", cache_ttl=0)
    first = fetcher.validators()
    replies[("query", "staking", "validators")] = (1, "", "Error: post failed: connection refused")
    chain.replies = replies
    assert fetcher.validators() is first
    assert chain.count("query", "staking", "validators") == 2


def test_validator_query_failure_without_cache(tmp_path):
    chain = _Chain({("query", "staking", "validators"): (1, "", "line one\nError: connection refused")})
    fetcher = ValidatorFetcher(_settings(tmp_path), exec_fn=chain, binary="pchaind")
    with pytest.raises(CodedError) as info:
        fetcher.validators()
    assert info.value.code == PROCESS_ERROR
    assert "connection refused" in str(info.value)


def test_timeout_becomes_process_error(tmp_path):
    def _slow(argv, timeout):
        raise subprocess.TimeoutExpired(argv, timeout)

    fetcher = ValidatorFetcher(_settings(tmp_path), exec_fn=_slow, binary="pchaind")
    with pytest.raises(CodedError, match="timed out"):
        fetcher.validators()


def test_my_validator_by_consensus_key(tmp_path):
    slashing = {"val_signing_info": {"tombstoned": False, "jailed_until": "2030-01-01T00:00:00Z", "missed_blocks_counter": "40"}}
    chain = _Chain({
        ("tendermint", "show-validator"): _ok({"@type": "/cosmos.crypto.ed25519.PubKey", "key": "MYKEY"}),
        ("status",): _ok({"NodeInfo": {"moniker": "mine"}}),
        ("query", "staking", "validators"): _ok({"validators": [
            _validator("pushvaloper1other", "mine", "OTHERKEY", tokens="3000000000000000000000"),
            _validator("pushvaloper1mine", "mine-node", "mykey", jailed=True),
        ]}),
        ("query", "slashing", "signing-info"): _ok(slashing),
    })
    fetcher = ValidatorFetcher(_settings(tmp_path), exec_fn=chain, binary="pchaind")

    info = fetcher.my_validator()

    assert info.is_validator
    assert info.address == "pushvaloper1mine"
    assert info.voting_power == 1000
    assert info.voting_pct == pytest.approx(0.25)
    assert info.jailed
    assert info.slashing.jail_reason == "Downtime"
    assert info.slashing.missed_blocks == 40
    assert info.has_moniker_conflict and info.moniker_conflict == "mine"
    # cached
    assert fetcher.my_validator() is info


def test_my_validator_slashing_failure_is_reported(tmp_path):
    chain = _Chain({
        ("tendermint", "show-validator"): _ok({"key": "MYKEY"}),
        ("status",): _ok({"NodeInfo": {"moniker": "mine"}}),
        ("query", "staking", "validators"): _ok({"validators": [_validator("pushvaloper1mine", "mine", "MYKEY", jailed=True)]}),
    })
    info = ValidatorFetcher(_settings(tmp_path), exec_fn=chain, binary="pchaind").my_validator()
    assert info.is_validator and info.jailed
    assert info.slashing_error.startswith("Failed to fetch jail reason")


def test_my_validator_without_key(tmp_path):
    chain = _Chain()
    info = ValidatorFetcher(_settings(tmp_path), exec_fn=chain, binary="pchaind").my_validator()
    assert not info.is_validator
    assert info.address == ""
    assert chain.count("query", "staking", "validators") == 0


def test_my_validator_matched_through_keyring(tmp_path):
    chain = _Chain({
        ("tendermint", "show-validator"): _ok({"key": "FRESHKEY"}),
        ("status",): _ok({"NodeInfo": {"moniker": "renamed"}}),
        ("query", "staking", "validators"): _ok({"validators": [
            _validator(f"pushvaloper1{PAYLOAD}uvwxyz", "old-name", "OLDKEY"),
        ]}),
        ("keys", "list"): _ok([{"name": "validator-key", "address": f"push1{PAYLOAD}abcdef"}]),
    })
    info = ValidatorFetcher(_settings(tmp_path), exec_fn=chain, binary="pchaind").my_validator()
    assert not info.is_validator
    assert info.address == f"pushvaloper1{PAYLOAD}uvwxyz"
    assert info.moniker == "old-name"


def test_rewards_are_cached_per_validator(tmp_path):
    chain = _Chain({
        ("query", "distribution", "commission"): _ok({"commission": {"commission": ["5000000000000000000.000000000000000000upc"]}}),
        ("query", "distribution", "validator-outstanding-rewards"): (1, "", "Error: not found"),
    })
    fetcher = ValidatorFetcher(_settings(tmp_path), exec_fn=chain, binary="pchaind")

    rewards = fetcher.rewards("pushvaloper1mine")

    assert rewards.commission == "5.00"
    assert rewards.outstanding == NONE_MARK
    assert fetcher.rewards("pushvaloper1mine") is rewards
    assert chain.count("query", "distribution", "commission") == 1


def test_rewards_need_address(tmp_path):
    fetcher = ValidatorFetcher(_settings(tmp_path), exec_fn=_Chain(), binary="pchaind")
    with pytest.raises(CodedError) as info:
        fetcher.fetch_rewards("")
    assert info.value.code == PRECONDITION_FAILED


# ---------- governance ----------

PROPOSALS = {"proposals": [
    {"id": "1", "status": "PROPOSAL_STATUS_PASSED", "voting_end_time": "2025-01-10T00:00:00Z",
     "messages": [{"@type": "/cosmos.gov.v1.MsgExecLegacyContent", "content": {"title": "Legacy upgrade", "description": "old"}}]},
    {"id": "2", "status": "PROPOSAL_STATUS_VOTING_PERIOD", "voting_end_time": "2025-03-01T12:30:00.123456789Z",
     "title": "Raise block gas", "messages": []},
    {"id": "3", "status": "PROPOSAL_STATUS_DEPOSIT_PERIOD", "voting_end_time": "0001-01-01T00:00:00Z", "messages": []},
]}


def test_proposals_are_parsed_and_cached(tmp_path):
    chain = _Chain({("query", "gov", "proposals"): _ok(PROPOSALS)})
    fetcher = ValidatorFetcher(_settings(tmp_path), exec_fn=chain, binary="pchaind")

    props = fetcher.proposals()

    assert props.total == 3
    first, second, third = props.proposals
    assert (first.title, first.status, first.description) == ("Legacy upgrade", "PASSED", "old")
    assert (second.title, second.status) == ("Raise block gas", "VOTING")
    assert third.title == "Untitled Proposal"
    assert third.voting_end == ""
    assert fetcher.proposals() is props
    assert chain.count("query", "gov", "proposals") == 1


def test_stale_proposals_served_on_failure(tmp_path):
    chain = _Chain({("query", "gov", "proposals"): _ok(PROPOSALS)})
    fetcher = ValidatorFetcher(_settings(tmp_path), exec_fn=chain, binary="pchaind", cache_ttl=0)
    first = fetcher.proposals()
    chain.replies = {("query", "gov", "proposals"): (1, "", "Error: connection refused")}
    assert fetcher.proposals() is first


def test_sort_proposals_latest_voting_end_first():
    props = [
        Proposal("3", "c", "DEPOSIT"),
        Proposal("1", "a", "PASSED", voting_end="2025-01-10T00:00:00Z"),
        Proposal("4", "d", "DEPOSIT"),
        Proposal("2", "b", "VOTING", voting_end="2025-03-01T12:30:00.123456789Z"),
    ]
    assert [p.id for p in sort_proposals(props)] == ["2", "1", "4", "3"]
    assert parse_proposal_status("PROPOSAL_STATUS_FAILED") == "FAILED"
    assert parse_proposal_status("SOMETHING_NEW") == "SOMETHING_NEW"


# ---------- service ----------

def test_output_parsers():
    assert find_txhash("code: 0\ntxhash: ABCDEF\n") == "ABCDEF"
    assert find_txhash("nothing") == ""
    banner = f"- address: push1xyz\n\n**Important** write this mnemonic phrase in a safe place.\n\n{MNEMONIC}\n"
    assert extract_mnemonic(banner) == MNEMONIC
    assert extract_mnemonic("no phrase here") == ""


def test_ensure_key_existing(tmp_path):
    chain = _Chain({("keys", "show"): _ok("push1existing\n")})
    key = ValidatorService(_settings(tmp_path), "pchaind", exec_fn=chain).ensure_key("validator-key")
    assert key.address == "push1existing"
    assert key.mnemonic == ""
    assert chain.count("keys", "add") == 0


def test_ensure_key_creates_missing_key(tmp_path):
    shows = iter([(1, "", "Error: validator-key is not a valid name or address"), _ok("push1fresh\n")])
    chain = _Chain({
        ("keys", "show"): lambda argv: next(shows),
        ("keys", "add"): (0, "", f"- address: push1fresh\n\n**Important** write this down\n\n{MNEMONIC}\n"),
    })
    key = ValidatorService(_settings(tmp_path), "pchaind", exec_fn=chain).ensure_key("validator-key")
    assert key.address == "push1fresh"
    assert key.mnemonic == MNEMONIC
    assert "eth_secp256k1" in chain.calls[1]


def test_balance(tmp_path):
    chain = _Chain({("query", "bank", "balances"): _ok({"balances": [
        {"denom": "other", "amount": "7"}, {"denom": "upc", "amount": "2000"},
    ]})})
    svc = ValidatorService(_settings(tmp_path), "pchaind", exec_fn=chain)
    assert svc.balance("push1abc") == "2000"


def test_delegate_submits_tx(tmp_path):
    chain = _Chain({("tx", "staking", "delegate"): (0, "code: 0\ntxhash: 0xFEED\n", "gas estimate: 1000\n")})
    svc = ValidatorService(_settings(tmp_path), "pchaind", exec_fn=chain)

    txhash = svc.delegate(DelegateArgs(validator_address="pushvaloper1mine", amount="100", key_name="validator-key"))

    assert txhash == "0xFEED"
    argv = chain.calls[0]
    assert argv[1:5] == ["tx", "staking", "delegate", "pushvaloper1mine"]
    assert argv[5] == "100upc"
    assert "--yes" in argv
    assert argv[argv.index("--from") + 1] == "validator-key"
    assert argv[argv.index("--chain-id") + 1] == "push_42101-1"


def test_tx_error_line_is_surfaced(tmp_path):
    out = "gas estimate: 1\nError: rpc error: code = Unknown desc = insufficient funds\nUsage: ..."
    chain = _Chain({("tx", "slashing", "unjail"): (1, "", out)})
    with pytest.raises(CodedError) as info:
        ValidatorService(_settings(tmp_path), "pchaind", exec_fn=chain).unjail("validator-key")
    assert info.value.code == PROCESS_ERROR
    assert "insufficient funds" in str(info.value)


def test_withdraw_error_is_made_friendly(tmp_path):
    chain = _Chain({("tx", "distribution", "withdraw-rewards"): (1, "", "Error: rpc error: no delegation distribution info")})
    svc = ValidatorService(_settings(tmp_path), "pchaind", exec_fn=chain)
    with pytest.raises(CodedError, match="No rewards to withdraw"):
        svc.withdraw_rewards("pushvaloper1mine", "validator-key", include_commission=True)
    assert "--commission" in chain.calls[0]


def test_missing_txhash(tmp_path):
    chain = _Chain({("tx", "gov", "vote"): _ok("code: 0\n")})
    svc = ValidatorService(_settings(tmp_path), "pchaind", exec_fn=chain)
    with pytest.raises(CodedError, match="txhash not found"):
        svc.vote(VoteArgs(proposal_id="3", option="YES", key_name="validator-key"))
    assert chain.calls[0][1:5] == ["tx", "gov", "vote", "3"]
    assert chain.calls[0][5] == "yes"


@pytest.mark.parametrize("proposal, option", [("3", "maybe"), ("x1", "yes")])
def test_vote_rejects_bad_input(tmp_path, proposal, option):
    chain = _Chain()
    with pytest.raises(CodedError) as info:
        ValidatorService(_settings(tmp_path), "pchaind", exec_fn=chain).vote(VoteArgs(proposal, option, "k"))
    assert info.value.code == INVALID_ARGS
    assert chain.calls == []


def test_register_writes_and_removes_payload(tmp_path):
    seen = {}

    def _create(argv):
        path = argv[4]
        with open(path) as handle:
            seen["payload"] = json.load(handle)
        seen["path"] = path
        return (0, "txhash: CAFE\n", "")

    chain = _Chain({
        ("tendermint", "show-validator"): _ok({"@type": "/cosmos.crypto.ed25519.PubKey", "key": "MYKEY"}),
        ("tx", "staking", "create-validator"): _create,
    })
    svc = ValidatorService(_settings(tmp_path), "pchaind", exec_fn=chain)

    txhash = svc.register(RegisterArgs(moniker="mine", amount="1500", key_name="validator-key"))

    assert txhash == "CAFE"
    assert seen["payload"]["pubkey"]["key"] == "MYKEY"
    assert seen["payload"]["amount"] == "1500upc"
    assert seen["payload"]["commission-rate"] == "0.10"
    assert not os.path.exists(seen["path"])


def test_register_requires_fields(tmp_path):
    with pytest.raises(CodedError) as info:
        ValidatorService(_settings(tmp_path), "pchaind", exec_fn=_Chain()).register(RegisterArgs("", "1", "k"))
    assert info.value.code == INVALID_ARGS


# ---------- restake ----------

def test_rewards_total_ignores_missing_slots():
    assert rewards_total(Rewards(commission="1.25", outstanding="2.50")) == Decimal("3.75")
    assert rewards_total(Rewards(commission=NONE_MARK, outstanding="0.40")) == Decimal("0.40")
    assert rewards_total(Rewards()) == 0


def test_restake_amount_keeps_gas_reserve():
    assert restake_amount(Decimal("3.75")) == "3600000000000000000"
    assert restake_amount(Decimal("0.15")) == ""
    assert restake_amount(Decimal("0.05")) == ""
