# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Validator queries and transactions. Reads go through ValidatorFetcher, writes
through ValidatorService; both shell out to the node binary.
"""

from __future__ import annotations

# ---------------- Local Project ----------------
from .common import Env
from ..core.context import Context
from ..core.errors import invalid_args_error, precondition_error
from ..dashboard.util import human_int, truncate_with_ellipsis
from ..dashboard.validators_list import ROW_FORMAT
from ..network.rpc_client import RPCClient, RPCError
from ..utils import config as CFG
from ..utils.helpers import YELLOW, parse_rfc3339
from ..validator.fetcher import NONE_MARK, ValidatorFetcher, bech32_to_hex, sort_proposals
from ..validator.service import (
    RESTAKE_MIN, VOTE_OPTIONS, DelegateArgs, RegisterArgs, ValidatorService, VoteArgs, restake_amount, rewards_total,
)

QUERY_DEADLINE = 30.0
DEFAULT_KEY_NAME = "validator-key"
DEFAULT_STAKE = "1500000000000000000"  # 1.5 PC in upc


def _fetcher(env: Env) -> ValidatorFetcher:
    return ValidatorFetcher(env.settings, binary=env.node_binary())


def _service(env: Env) -> ValidatorService:
    return ValidatorService(env.settings, env.node_binary())


def _tx_done(env: Env, action: str, txhash: str) -> int:
    if env.json_output:
        env.emit_json({"action": action, "txhash": txhash})
    else:
        env.info(f"{action} submitted, txhash: {txhash}")
    return 0


# ---------- queries ----------

def cmd_validators(env: Env) -> int:
    vals = _fetcher(env).validators(Context(timeout=QUERY_DEADLINE))
    if env.json_output:
        env.emit_json([
            {
                "operator_address": v.operator_address,
                "evm_address": bech32_to_hex(v.operator_address),
                "moniker": v.moniker,
                "status": v.status,
                "tokens": v.tokens,
                "voting_power": v.voting_power,
                "commission": v.commission,
                "jailed": v.jailed,
            }
            for v in vals.validators
        ])
        return 0
    env.line(ROW_FORMAT.format("NODE NAME", "STATUS", "STAKE(PC)", "COMMISSION%", "", "", "ADDRESS"))
    for v in sorted(vals.validators, key=lambda v: -v.voting_power):
        status = v.status + (" (JAILED)" if v.jailed else "")
        env.line(ROW_FORMAT.format(
            truncate_with_ellipsis(v.moniker, 40), status, human_int(v.voting_power), v.commission, "", "", v.operator_address,
        ))
    env.line(f"Total: {vals.total} validators")
    return 0


PROPOSAL_STATUS_FILTERS = ("voting", "passed", "rejected", "deposit", "failed")
PROPOSAL_ROW_FORMAT = "{:<6} {:<40} {:<10} {}"


def cmd_proposals(env: Env) -> int:
    props = _fetcher(env).proposals(Context(timeout=QUERY_DEADLINE)).proposals
    wanted = (env.args.status or "").upper()
    if wanted:
        props = tuple(p for p in props if p.status == wanted)
    props = sort_proposals(props)
    if env.json_output:
        env.emit_json([
            {"id": p.id, "title": p.title, "status": p.status, "voting_end": p.voting_end, "description": p.description}
            for p in props
        ])
        return 0
    if not props:
        env.info("No proposals match the filter" if wanted else "No proposals found", YELLOW)
        return 0
    env.line(PROPOSAL_ROW_FORMAT.format("ID", "TITLE", "STATUS", "VOTING ENDS"))
    for p in props:
        env.line(PROPOSAL_ROW_FORMAT.format(p.id, truncate_with_ellipsis(p.title, 40), p.status, _voting_end(p.voting_end)))
    env.line(f"Total Proposals: {len(props)}")
    if any(p.status == "VOTING" for p in props):
        env.info(f"Vote with: {CFG.TOOL_NAME} vote <id> <{'|'.join(VOTE_OPTIONS)}>")
    return 0


def _voting_end(value: str) -> str:
    try:
        return parse_rfc3339(value).strftime("%Y-%m-%d %H:%M") if value else NONE_MARK
    except ValueError:
        return NONE_MARK


# ---------- transactions ----------

def _require_synced(env: Env) -> None:
    try:
        st = RPCClient(env.settings.rpc_local).status(Context(timeout=CFG.RPC_STATUS_TIMEOUT))
    except RPCError as exc:
        raise precondition_error(f"local node RPC unavailable at {env.settings.rpc_local}, start the node first", exc) from exc
    if st.catching_up:
        raise precondition_error(f"node is still syncing (height {human_int(st.height)}), wait for: {CFG.TOOL_NAME} sync")


def cmd_register(env: Env) -> int:
    a = env.args
    if not str(a.amount).isdigit():
        raise invalid_args_error(f"--amount must be a whole number of {env.settings.denom}")
    _require_synced(env)
    ctx = Context(timeout=QUERY_DEADLINE * 4)
    mine = _fetcher(env).my_validator(ctx)
    if mine.is_validator:
        env.info(f"Already registered as validator '{mine.moniker}' ({mine.address})", YELLOW)
        return 0
    if mine.has_moniker_conflict and mine.moniker_conflict == a.moniker:
        raise precondition_error(f"moniker '{a.moniker}' is already used by another validator")

    svc = _service(env)
    key = svc.ensure_key(a.key_name, ctx)
    if key.mnemonic:
        env.warn("New key created. Save this recovery phrase somewhere safe:")
        env.warn(key.mnemonic)
    env.info(f"Validator key '{key.name}': {key.address}")

    balance = svc.balance(key.address, ctx)
    have = int(balance) if str(balance).isdigit() else 0
    if have < int(a.amount):
        raise precondition_error(
            f"insufficient balance: have {balance}{env.settings.denom}, need {a.amount}{env.settings.denom} "
            f"(fund {key.address} first)"
        )
    if not env.confirm(f"Register validator '{a.moniker}' staking {a.amount}{env.settings.denom}?"):
        env.info("Registration cancelled", YELLOW)
        return 0
    txhash = svc.register(RegisterArgs(
        moniker=a.moniker,
        amount=a.amount,
        key_name=a.key_name,
        commission_rate=a.commission_rate,
        min_self_delegation=a.min_self_delegation,
    ), ctx)
    return _tx_done(env, "register-validator", txhash)


def cmd_delegate(env: Env) -> int:
    a = env.args
    addr = a.validator
    if not addr:
        mine = _fetcher(env).my_validator(Context(timeout=QUERY_DEADLINE))
        if not mine.is_validator:
            raise precondition_error("this node is not a registered validator, pass --validator")
        addr = mine.address
    txhash = _service(env).delegate(DelegateArgs(validator_address=addr, amount=a.amount, key_name=a.key_name))
    return _tx_done(env, "delegate", txhash)


def cmd_withdraw(env: Env) -> int:
    mine = _fetcher(env).my_validator(Context(timeout=QUERY_DEADLINE))
    if not mine.is_validator:
        raise precondition_error(f"this node is not a registered validator, run: {CFG.TOOL_NAME} register-validator")
    txhash = _service(env).withdraw_rewards(mine.address, env.args.key_name, include_commission=not env.args.no_commission)
    return _tx_done(env, "withdraw-rewards", txhash)


def cmd_restake(env: Env) -> int:
    """Withdraw rewards and commission, then delegate them back to this validator minus a gas reserve."""
    if env.args.amount is not None and not str(env.args.amount).isdigit():
        raise invalid_args_error(f"--amount must be a whole number of {env.settings.denom}")
    _require_synced(env)
    ctx = Context(timeout=QUERY_DEADLINE * 4)
    fetcher = _fetcher(env)
    mine = fetcher.my_validator(ctx)
    if not mine.is_validator:
        raise precondition_error(f"this node is not a registered validator, run: {CFG.TOOL_NAME} register-validator")
    rewards = fetcher.fetch_rewards(mine.address, ctx)
    total = rewards_total(rewards)
    env.line(f"Commission rewards:  {rewards.commission} PC")
    env.line(f"Outstanding rewards: {rewards.outstanding} PC")
    if total < RESTAKE_MIN:
        raise precondition_error(f"no significant rewards available (less than {RESTAKE_MIN} PC)")

    svc = _service(env)
    key_name = env.args.key_name
    withdraw_hash = svc.withdraw_rewards(mine.address, key_name, include_commission=True, ctx=ctx)
    env.info(f"Withdrew {total} PC, txhash: {withdraw_hash}")

    amount = env.args.amount or restake_amount(total)
    if not amount:
        env.info("Withdrawn rewards do not cover the gas reserve; nothing restaked", YELLOW)
        if env.json_output:
            env.emit_json({"action": "restake", "withdraw_txhash": withdraw_hash, "delegate_txhash": ""})
        return 0
    if not env.confirm(f"Delegate {amount}{env.settings.denom} back to {mine.moniker or mine.address}?"):
        env.info("Restake cancelled; withdrawn rewards stay in your account", YELLOW)
        return 0
    delegate_hash = svc.delegate(DelegateArgs(validator_address=mine.address, amount=amount, key_name=key_name), ctx)
    if env.json_output:
        env.emit_json({"action": "restake", "withdraw_txhash": withdraw_hash, "delegate_txhash": delegate_hash})
    else:
        env.info(f"restake submitted, txhash: {delegate_hash}")
    return 0


def cmd_unjail(env: Env) -> int:
    mine = _fetcher(env).my_validator(Context(timeout=QUERY_DEADLINE))
    if not mine.is_validator:
        raise precondition_error("this node is not a registered validator")
    if not mine.jailed:
        env.info("Validator is not jailed", YELLOW)
        return 0
    if mine.slashing.tombstoned:
        env.error("Validator is tombstoned and can never be unjailed")
        raise precondition_error("validator tombstoned")
    txhash = _service(env).unjail(env.args.key_name)
    return _tx_done(env, "unjail", txhash)


def cmd_vote(env: Env) -> int:
    a = env.args
    txhash = _service(env).vote(VoteArgs(proposal_id=a.proposal_id, option=a.option, key_name=a.key_name))
    return _tx_done(env, "vote", txhash)


def register(sub) -> None:
    sub.add_parser("validators", help="List network validators").set_defaults(func=cmd_validators)

    p = sub.add_parser("register-validator", help="Register this node as a validator")
    p.add_argument("--moniker", default=CFG.DEFAULT_MONIKER, help="Validator moniker")
    p.add_argument("--amount", default=DEFAULT_STAKE, help=f"Self stake in {CFG.DEFAULT_DENOM}")
    p.add_argument("--key-name", default=DEFAULT_KEY_NAME, help="Keyring key used to sign")
    p.add_argument("--commission-rate", default="0.10", help="Commission rate (0.00 - 0.20)")
    p.add_argument("--min-self-delegation", default="1", help="Minimum self delegation")
    p.set_defaults(func=cmd_register)

    p = sub.add_parser("delegate", help="Delegate stake to a validator")
    p.add_argument("--validator", default=None, help="Validator operator address (default: this node)")
    p.add_argument("--amount", required=True, help=f"Amount in {CFG.DEFAULT_DENOM}")
    p.add_argument("--key-name", default=DEFAULT_KEY_NAME, help="Keyring key used to sign")
    p.set_defaults(func=cmd_delegate)

    p = sub.add_parser("withdraw-rewards", help="Withdraw rewards and commission")
    p.add_argument("--key-name", default=DEFAULT_KEY_NAME, help="Keyring key used to sign")
    p.add_argument("--no-commission", action="store_true", help="Withdraw delegation rewards only")
    p.set_defaults(func=cmd_withdraw)

    p = sub.add_parser("restake-rewards", help="Withdraw all rewards and delegate them back to this validator")
    p.add_argument("--key-name", default=DEFAULT_KEY_NAME, help="Keyring key used to sign")
    p.add_argument("--amount", default=None, help=f"Amount to delegate in {CFG.DEFAULT_DENOM} (default: rewards minus gas reserve)")
    p.set_defaults(func=cmd_restake)

    p = sub.add_parser("proposals", help="List governance proposals")
    p.add_argument("--status", choices=PROPOSAL_STATUS_FILTERS, default=None, help="Only proposals in this state")
    p.set_defaults(func=cmd_proposals)

    p = sub.add_parser("unjail", help="Unjail this validator")
    p.add_argument("--key-name", default=DEFAULT_KEY_NAME, help="Keyring key used to sign")
    p.set_defaults(func=cmd_unjail)

    p = sub.add_parser("vote", help="Vote on a governance proposal")
    p.add_argument("proposal_id", help="Proposal id")
    p.add_argument("option", choices=VOTE_OPTIONS, help="Vote option")
    p.add_argument("--key-name", default=DEFAULT_KEY_NAME, help="Keyring key used to sign")
    p.set_defaults(func=cmd_vote)


__all__ = ["register"]
