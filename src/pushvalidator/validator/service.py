# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Write side of the validator capability: keys, balance and the transactions
an operator submits (create-validator, delegate, withdraw, restake, unjail, vote).

Every transaction is `<bin> tx ... --yes` against the remote RPC; the hash is
read back from the `txhash:` line of the CLI output.
"""

from __future__ import annotations

import os, json, tempfile, subprocess
from decimal import Decimal, InvalidOperation
from dataclasses import dataclass
from typing import Optional, Sequence

# ---------------- Local Project ----------------
from .fetcher import Executor, Rewards, default_exec
from ..core.context import Context
from ..core.errors import invalid_args_error, process_error, validation_error
from ..utils.settings import NodeSettings, remote_rpc_url
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.validator(service)")

TX_TIMEOUT = 60.0
QUERY_TIMEOUT = 30.0
GAS_PRICE = "1000000000"
VOTE_OPTIONS = ("yes", "no", "abstain", "no_with_veto")
BASE_UNITS = Decimal(10) ** 18
RESTAKE_MIN = Decimal("0.01")
RESTAKE_FEE_RESERVE = Decimal("0.15")

_ERROR_MARKERS = (
    "rpc error:",
    "failed to execute message",
    "insufficient",
    "unauthorized",
    "key not found",
    "failed to convert",
    "account sequence mismatch",
)


@dataclass(frozen=True)
class KeyInfo:
    name: str
    address: str
    mnemonic: str = ""


@dataclass(frozen=True)
class RegisterArgs:
    moniker: str
    amount: str
    key_name: str
    commission_rate: str = "0.10"
    min_self_delegation: str = "1"


@dataclass(frozen=True)
class DelegateArgs:
    validator_address: str
    amount: str
    key_name: str


@dataclass(frozen=True)
class VoteArgs:
    proposal_id: str
    option: str
    key_name: str


def extract_error_line(output: str) -> str:
    for line in (output or "").splitlines():
        if any(marker in line for marker in _ERROR_MARKERS):
            return line.strip()
    return ""


def last_nonempty_line(output: str) -> str:
    for line in reversed((output or "").splitlines()):
        if line.strip():
            return line.strip()
    return ""


def find_txhash(output: str) -> str:
    for line in (output or "").splitlines():
        if "txhash:" in line:
            return line.split("txhash:", 1)[1].strip()
    return ""


def improve_reward_error(message: str) -> str:
    msg = (message or "").lower()
    if "no delegation distribution info" in msg:
        return "No rewards to withdraw. This is normal for new validators that haven't earned any rewards yet."
    if "insufficient" in msg and "fee" in msg:
        return "Insufficient balance to pay transaction fees. Check your account balance."
    if "invalid coins" in msg or "empty" in msg:
        return "No rewards available to withdraw."
    if "unauthorized" in msg:
        return "Transaction signing failed. Check that the key exists and is accessible."
    return msg


def rewards_total(rewards: Rewards) -> Decimal:
    """Commission plus outstanding, in PC; unparsable slots ("—") count as zero."""
    total = Decimal(0)
    for text in (rewards.commission, rewards.outstanding):
        try:
            total += Decimal(str(text).strip())
        except InvalidOperation:
            continue
    return total


def restake_amount(total: Decimal) -> str:
    """Base-unit amount left for delegation after keeping RESTAKE_FEE_RESERVE for gas; "" when nothing is left."""
    left = total - RESTAKE_FEE_RESERVE
    if left <= 0:
        return ""
    return str(int(left * BASE_UNITS))


def extract_mnemonic(output: str) -> str:
    """The recovery phrase `keys add` prints after its warning banner."""
    lines = [l.strip() for l in (output or "").splitlines()]
    for line in reversed(lines):
        words = line.split()
        if len(words) in (12, 15, 18, 21, 24) and all(w.isalpha() and w.islower() for w in words):
            return line
    return ""


class ValidatorService:
    def __init__(self, settings: NodeSettings, binary: str, exec_fn: Optional[Executor] = None):
        self.settings = settings
        self.binary = binary
        self._exec = exec_fn or default_exec

    @property
    def remote(self) -> str:
        return remote_rpc_url(self.settings)

    def _call(self, args: Sequence[str], ctx: Optional[Context], timeout: float) -> subprocess.CompletedProcess:
        if ctx is not None:
            ctx.check()
            timeout = ctx.remaining(timeout)
        argv = [self.binary, *args]
        log.debug("[validator] exec %s", " ".join(argv[:4]))
        try:
            return self._exec(argv, timeout)
        except subprocess.TimeoutExpired as exc:
            raise process_error(f"{' '.join(args[:3])} timed out", exc) from exc
        except OSError as exc:
            raise process_error(f"failed to run {self.binary}", exc) from exc

    def _keyring_flags(self) -> list[str]:
        return ["--keyring-backend", self.settings.keyring_backend, "--home", self.settings.home_dir]

    def _tx(self, args: Sequence[str], key_name: str, ctx: Optional[Context], friendly=None) -> str:
        proc = self._call([
            "tx", *args,
            "--from", key_name,
            "--chain-id", self.settings.chain_id,
            *self._keyring_flags(),
            "--node", self.remote,
            "--gas=auto", "--gas-adjustment=1.3", f"--gas-prices={GAS_PRICE}{self.settings.denom}",
            "--yes",
        ], ctx, TX_TIMEOUT)
        output = (proc.stdout or "") + (proc.stderr or "")
        if proc.returncode != 0:
            msg = extract_error_line(output) or last_nonempty_line(output) or f"exit status {proc.returncode}"
            raise process_error(friendly(msg) if friendly else msg)
        txhash = find_txhash(output)
        if not txhash:
            raise process_error("transaction submitted; txhash not found in output")
        log.info("[validator] tx %s submitted: %s", " ".join(args[:2]), txhash)
        return txhash

    # ---------- keys & balance ----------

    def ensure_key(self, name: str, ctx: Optional[Context] = None) -> KeyInfo:
        if not name:
            raise invalid_args_error("key name required")
        show = self._call(["keys", "show", name, "-a", *self._keyring_flags()], ctx, QUERY_TIMEOUT)
        if show.returncode == 0 and (show.stdout or "").strip():
            return KeyInfo(name=name, address=show.stdout.strip())

        add = self._call(["keys", "add", name, *self._keyring_flags(), "--algo", "eth_secp256k1"], ctx, QUERY_TIMEOUT)
        output = (add.stdout or "") + (add.stderr or "")
        if add.returncode != 0:
            raise process_error(f"keys add: {last_nonempty_line(output) or 'exit ' + str(add.returncode)}")
        show = self._call(["keys", "show", name, "-a", *self._keyring_flags()], ctx, QUERY_TIMEOUT)
        if show.returncode != 0:
            raise process_error(f"keys show: {last_nonempty_line(show.stderr or show.stdout)}")
        return KeyInfo(name=name, address=show.stdout.strip(), mnemonic=extract_mnemonic(output))

    def balance(self, addr: str, ctx: Optional[Context] = None) -> str:
        proc = self._call(["query", "bank", "balances", addr, "--node", self.remote, "-o", "json"], ctx, QUERY_TIMEOUT)
        if proc.returncode != 0:
            raise process_error(f"query balance: {last_nonempty_line(proc.stderr or proc.stdout)}")
        try:
            payload = json.loads(proc.stdout or "")
        except ValueError as exc:
            raise validation_error("parse balance output", exc) from exc
        for coin in payload.get("balances") or []:
            if isinstance(coin, dict) and coin.get("denom") == self.settings.denom:
                return str(coin.get("amount") or "0")
        return "0"

    # ---------- transactions ----------

    def register(self, args: RegisterArgs, ctx: Optional[Context] = None) -> str:
        if not args.moniker or not args.amount or not args.key_name:
            raise invalid_args_error("moniker, amount and key name are required")
        show = self._call(["tendermint", "show-validator", "--home", self.settings.home_dir], ctx, QUERY_TIMEOUT)
        if show.returncode != 0:
            raise process_error(f"show-validator: {last_nonempty_line(show.stderr or show.stdout)}")
        try:
            pubkey = json.loads(show.stdout)
        except ValueError as exc:
            raise validation_error("show-validator returned invalid JSON", exc) from exc

        payload = {
            "pubkey": pubkey,
            "amount": f"{args.amount}{self.settings.denom}",
            "moniker": args.moniker,
            "identity": "",
            "website": "",
            "security": "",
            "details": "Push Chain Validator",
            "commission-rate": args.commission_rate.strip() or "0.10",
            "commission-max-rate": "0.20",
            "commission-max-change-rate": "0.01",
            "min-self-delegation": args.min_self_delegation.strip() or "1",
        }
        fd, path = tempfile.mkstemp(prefix="validator-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle)
            return self._tx(["staking", "create-validator", path], args.key_name, ctx)
        finally:
            os.remove(path)

    def delegate(self, args: DelegateArgs, ctx: Optional[Context] = None) -> str:
        if not args.validator_address:
            raise invalid_args_error("validator address required")
        if not args.amount:
            raise invalid_args_error("amount required")
        amount = args.amount if args.amount.endswith(self.settings.denom) else args.amount + self.settings.denom
        return self._tx(["staking", "delegate", args.validator_address, amount], args.key_name, ctx)

    def withdraw_rewards(self, validator_addr: str, key_name: str, include_commission: bool = False, ctx: Optional[Context] = None) -> str:
        if not validator_addr:
            raise invalid_args_error("validator address required")
        if not key_name:
            raise invalid_args_error("key name required")
        args = ["distribution", "withdraw-rewards", validator_addr]
        if include_commission:
            args.append("--commission")
        return self._tx(args, key_name, ctx, friendly=improve_reward_error)

    def unjail(self, key_name: str, ctx: Optional[Context] = None) -> str:
        if not key_name:
            raise invalid_args_error("key name required")
        return self._tx(["slashing", "unjail"], key_name, ctx)

    def vote(self, args: VoteArgs, ctx: Optional[Context] = None) -> str:
        option = (args.option or "").strip().lower()
        if option not in VOTE_OPTIONS:
            raise invalid_args_error(f"invalid vote option '{args.option}' (valid: {', '.join(VOTE_OPTIONS)})")
        if not str(args.proposal_id).isdigit():
            raise invalid_args_error(f"invalid proposal id '{args.proposal_id}'")
        return self._tx(["gov", "vote", str(args.proposal_id), option], args.key_name, ctx)


__all__ = [
    "ValidatorService", "KeyInfo", "RegisterArgs", "DelegateArgs", "VoteArgs", "VOTE_OPTIONS",
    "extract_error_line", "find_txhash", "improve_reward_error", "extract_mnemonic", "last_nonempty_line",
    "rewards_total", "restake_amount", "RESTAKE_MIN",
]
