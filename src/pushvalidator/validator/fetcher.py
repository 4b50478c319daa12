# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Read side of the validator capability.

All chain queries shell out to the node binary (`pchaind query ... -o json`)
against the remote RPC. Results are cached for 30 seconds; when a refresh
fails and an older value exists, the stale value is returned instead of the
error so the dashboard keeps showing something useful.
"""

from __future__ import annotations

import os, json, time, shutil, threading, subprocess
from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Sequence
import bech32

# ---------------- Local Project ----------------
from ..core.context import Context, ContextError
from ..core.errors import CodedError, precondition_error, process_error, validation_error
from ..core.runner import run_capture
from ..utils import config as CFG
from ..utils.helpers import parse_rfc3339
from ..utils.settings import NodeSettings, remote_rpc_url
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.validator(fetcher)")

NONE_MARK = "—"
ACCOUNT_PREFIX = "push1"
VALOPER_PREFIX = "pushvaloper1"
BECH32_CHECKSUM_LEN = 6
EPOCH_ZERO = "1970-01-01T00:00:00Z"
TOKEN_DECIMALS = 1e18
SLASHING_TIMEOUT = 10.0

Executor = Callable[[Sequence[str], Optional[float]], "subprocess.CompletedProcess"]


# ---------- types ----------

@dataclass(frozen=True)
class ValidatorInfo:
    operator_address: str
    moniker: str
    status: str
    tokens: str = ""
    voting_power: int = 0
    commission: str = "0%"
    jailed: bool = False


@dataclass(frozen=True)
class ValidatorList:
    validators: tuple = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return len(self.validators)


@dataclass(frozen=True)
class SlashingInfo:
    tombstoned: bool = False
    jailed_until: str = ""
    missed_blocks: int = 0
    jail_reason: str = ""


@dataclass(frozen=True)
class MyValidatorInfo:
    is_validator: bool = False
    address: str = ""
    moniker: str = ""
    status: str = ""
    voting_power: int = 0
    voting_pct: float = 0.0
    commission: str = ""
    jailed: bool = False
    slashing: SlashingInfo = field(default_factory=SlashingInfo)
    slashing_error: str = ""
    moniker_conflict: str = ""

    @property
    def has_moniker_conflict(self) -> bool:
        return bool(self.moniker_conflict)


@dataclass(frozen=True)
class Rewards:
    commission: str = NONE_MARK
    outstanding: str = NONE_MARK


@dataclass(frozen=True)
class Proposal:
    id: str
    title: str
    status: str
    voting_end: str = ""
    description: str = ""


@dataclass(frozen=True)
class ProposalList:
    proposals: tuple = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return len(self.proposals)


# ---------- pure helpers ----------

def bech32_to_hex(addr: str) -> str:
    """`push1...` / `pushvaloper1...` to `0x` + upper-case hex; "—" when undecodable."""
    if not addr:
        return NONE_MARK
    _hrp, data = bech32.bech32_decode(addr)
    if data is None:
        return NONE_MARK
    raw = bech32.convertbits(data, 5, 8, False)
    if raw is None:
        return NONE_MARK
    return "0x" + bytes(raw).hex().upper()


def parse_status(status: str) -> str:
    return {
        "BOND_STATUS_BONDED": "BONDED",
        "BOND_STATUS_UNBONDING": "UNBONDING",
        "BOND_STATUS_UNBONDED": "UNBONDED",
    }.get(status, status)


def voting_power(tokens: str) -> int:
    try:
        return int(float(tokens) / TOKEN_DECIMALS) if tokens else 0
    except ValueError:
        return 0


def commission_percent(rate: str) -> str:
    try:
        value = float(rate)
    except (TypeError, ValueError):
        return "0%"
    if value > 1:
        value /= TOKEN_DECIMALS
    return f"{value * 100:.0f}%"


def format_token_amount(coin: str, denom: str = CFG.DEFAULT_DENOM) -> str:
    """"123000000000000000000upc" -> "123.00"; "—" when unparsable."""
    text = (coin or "").strip()
    if text.endswith(denom):
        text = text[: -len(denom)]
    try:
        return f"{float(text) / TOKEN_DECIMALS:.2f}"
    except ValueError:
        return NONE_MARK


def jail_reason(tombstoned: bool, jailed_until: str, missed_blocks: int) -> str:
    if tombstoned:
        return "Double Sign"
    if jailed_until and jailed_until != EPOCH_ZERO:
        return "Downtime"
    if missed_blocks > 0:
        return "Downtime"
    return "Unknown"


def same_account(account_addr: str, valoper_addr: str) -> bool:
    """Keyring account and operator address share the bech32 payload; only the hrp and checksum differ."""
    if not account_addr.startswith(ACCOUNT_PREFIX) or not valoper_addr.startswith(VALOPER_PREFIX):
        return False
    a = account_addr[len(ACCOUNT_PREFIX):]
    v = valoper_addr[len(VALOPER_PREFIX):]
    if len(a) <= BECH32_CHECKSUM_LEN or len(v) <= BECH32_CHECKSUM_LEN:
        return False
    return a[:-BECH32_CHECKSUM_LEN] == v[:-BECH32_CHECKSUM_LEN]


def parse_proposal_status(status: str) -> str:
    return {
        "PROPOSAL_STATUS_DEPOSIT_PERIOD": "DEPOSIT",
        "PROPOSAL_STATUS_VOTING_PERIOD": "VOTING",
        "PROPOSAL_STATUS_PASSED": "PASSED",
        "PROPOSAL_STATUS_REJECTED": "REJECTED",
        "PROPOSAL_STATUS_FAILED": "FAILED",
    }.get(status, status)


def _first_text(key: str, *sources) -> str:
    for src in sources:
        if isinstance(src, dict) and src.get(key):
            return str(src[key])
    return ""


def _proposal_from_json(raw: dict) -> Proposal:
    # v1 proposals carry the title on the proposal or its first message; legacy ones under content
    msgs = raw.get("messages") or [{}]
    first = msgs[0] if isinstance(msgs[0], dict) else {}
    title = _first_text("title", raw, raw.get("content"), first, first.get("content"))
    description = _first_text("description", raw.get("content"), first, first.get("content"))
    end = str(raw.get("voting_end_time") or "")
    return Proposal(
        id=str(raw.get("id") or raw.get("proposal_id") or ""),
        title=title or "Untitled Proposal",
        status=parse_proposal_status(str(raw.get("status") or "")),
        voting_end="" if end.startswith("0001-01-01") else end,
        description=description,
    )


def sort_proposals(items) -> list[Proposal]:
    """Latest voting end first; proposals without one follow, highest id first."""
    def _key(p: Proposal):
        try:
            end = parse_rfc3339(p.voting_end).timestamp() if p.voting_end else None
        except ValueError:
            end = None
        pid = int(p.id) if p.id.isdigit() else 0
        return (0, -end, -pid) if end is not None else (1, 0, -pid)

    return sorted(items, key=_key)


def _validator_from_json(raw: dict) -> ValidatorInfo:
    desc = raw.get("description") or {}
    rates = (raw.get("commission") or {}).get("commission_rates") or {}
    tokens = str(raw.get("tokens") or "")
    return ValidatorInfo(
        operator_address=str(raw.get("operator_address") or ""),
        moniker=str(desc.get("moniker") or "unknown"),
        status=parse_status(str(raw.get("status") or "")),
        tokens=tokens,
        voting_power=voting_power(tokens),
        commission=commission_percent(rates.get("rate", "")),
        jailed=bool(raw.get("jailed")),
    )


def _consensus_key(raw: dict) -> str:
    pk = raw.get("consensus_pubkey") or {}
    return str(pk.get("value") or pk.get("key") or "")


def resolve_node_binary(settings: NodeSettings) -> str:
    """Prefer cosmovisor-managed binaries, then an explicit path, then PATH."""
    for sub in ("genesis", "current"):
        candidate = os.path.join(settings.home_dir, "cosmovisor", sub, "bin", CFG.DEFAULT_NODE_BIN)
        if os.path.isfile(candidate):
            return candidate
    if os.sep in settings.node_bin and os.path.isfile(settings.node_bin):
        return settings.node_bin
    found = shutil.which(settings.node_bin)
    if found:
        return found
    raise precondition_error(f"{settings.node_bin} not found in PATH or {os.path.join(settings.home_dir, 'cosmovisor')}")


def default_exec(argv: Sequence[str], timeout: Optional[float]) -> subprocess.CompletedProcess:
    return run_capture(argv, timeout=timeout, merge_stderr=False)


# ---------- fetcher ----------

class ValidatorFetcher:
    def __init__(
        self,
        settings: NodeSettings,
        exec_fn: Optional[Executor] = None,
        cache_ttl: float = CFG.VALIDATOR_CACHE_TTL,
        rewards_ttl: float = CFG.REWARDS_CACHE_TTL,
        binary: Optional[str] = None,
    ):
        self.settings = settings
        self._exec = exec_fn or default_exec
        self.cache_ttl = float(cache_ttl)
        self.rewards_ttl = float(rewards_ttl)
        self._binary = binary
        self._lock = threading.Lock()
        self._all: Optional[ValidatorList] = None
        self._all_at = 0.0
        self._mine: Optional[MyValidatorInfo] = None
        self._mine_at = 0.0
        self._rewards: dict[str, tuple[Rewards, float]] = {}
        self._proposals: Optional[ProposalList] = None
        self._proposals_at = 0.0

    @property
    def remote(self) -> str:
        return remote_rpc_url(self.settings)

    def binary(self) -> str:
        if not self._binary:
            self._binary = resolve_node_binary(self.settings)
        return self._binary

    # ---- process plumbing ----

    def _run(self, args: Sequence[str], ctx: Optional[Context] = None, timeout: Optional[float] = None) -> str:
        if ctx is not None:
            ctx.check()
            timeout = ctx.remaining(timeout)
        argv = [self.binary(), *args]
        try:
            proc = self._exec(argv, timeout)
        except subprocess.TimeoutExpired as exc:
            raise process_error(f"{' '.join(args[:3])} timed out", exc) from exc
        except OSError as exc:
            raise process_error(f"failed to run {argv[0]}", exc) from exc
        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout or "").strip().splitlines()
            raise process_error(f"{' '.join(args[:3])} failed: {detail[-1] if detail else 'exit ' + str(proc.returncode)}")
        return proc.stdout or ""

    def _query_json(self, args: Sequence[str], ctx: Optional[Context] = None, timeout: Optional[float] = None):
        out = self._run([*args, "--node", self.remote, "-o", "json"], ctx, timeout)
        try:
            return json.loads(out)
        except ValueError as exc:
            raise validation_error(f"parse {' '.join(args[:3])} output", exc) from exc

    def _raw_validators(self, ctx: Optional[Context]) -> list:
        data = self._query_json(["query", "staking", "validators"], ctx)
        vals = data.get("validators") if isinstance(data, dict) else None
        return [v for v in vals or [] if isinstance(v, dict)]

    # ---- validator list ----

    def validators(self, ctx: Optional[Context] = None) -> ValidatorList:
        with self._lock:
            now = time.monotonic()
            if self._all is not None and self._all.total > 0 and now - self._all_at < self.cache_ttl:
                return self._all
            try:
                fresh = ValidatorList(tuple(_validator_from_json(v) for v in self._raw_validators(ctx)))
            except Exception:
                if self._all is not None and self._all.total > 0:
                    log.debug("[validator] list refresh failed, serving cached copy")
                    return self._all
                raise
            self._all, self._all_at = fresh, now
            return fresh

    # ---- my validator ----

    def my_validator(self, ctx: Optional[Context] = None) -> MyValidatorInfo:
        with self._lock:
            now = time.monotonic()
            if self._mine_at and now - self._mine_at < self.cache_ttl:
                return self._mine or MyValidatorInfo()
            try:
                fresh = self._fetch_my_validator(ctx)
            except Exception:
                first = not self._mine_at
                # stamp even on failure so a broken query is not retried every tick
                self._mine_at = now
                if not first and self._mine is not None:
                    return self._mine
                raise
            self._mine, self._mine_at = fresh, now
            return fresh

    def local_consensus_pubkey(self, ctx: Optional[Context] = None) -> tuple[str, str]:
        """(key, raw json) from `tendermint show-validator`; ("", "") when there is no key file."""
        try:
            out = self._run(["tendermint", "show-validator", "--home", self.settings.home_dir], ctx)
            data = json.loads(out)
        except (CodedError, ValueError) as exc:
            log.debug("[validator] show-validator unusable: %s", exc)
            return "", ""
        key = str(data.get("key") or "") if isinstance(data, dict) else ""
        return key, out.strip()

    def local_moniker(self, ctx: Optional[Context] = None) -> str:
        try:
            out = self._run(["status", "--node", self.settings.rpc_local], ctx)
            data = json.loads(out)
        except (CodedError, ValueError) as exc:
            log.debug("[validator] local status unavailable: %s", exc)
            return ""
        if not isinstance(data, dict):
            return ""
        info = data.get("NodeInfo") or data.get("node_info") or {}
        return str(info.get("moniker") or "")

    def keyring_addresses(self, ctx: Optional[Context] = None) -> list[str]:
        try:
            out = self._run([
                "keys", "list", "--keyring-backend", self.settings.keyring_backend,
                "--home", self.settings.home_dir, "--output", "json",
            ], ctx)
            keys = json.loads(out)
        except (CodedError, ValueError) as exc:
            log.debug("[validator] keys list unavailable: %s", exc)
            return []
        if not isinstance(keys, list):
            return []
        return [str(k.get("address")) for k in keys if isinstance(k, dict) and k.get("address")]

    def _fetch_my_validator(self, ctx: Optional[Context]) -> MyValidatorInfo:
        pubkey, pubkey_json = self.local_consensus_pubkey(ctx)
        if not pubkey:
            return MyValidatorInfo()
        moniker = self.local_moniker(ctx)
        raw_vals = self._raw_validators(ctx)
        total_power = sum(voting_power(str(v.get("tokens") or "")) for v in raw_vals)

        def _info(raw: dict, is_validator: bool, conflict: str = "") -> MyValidatorInfo:
            v = _validator_from_json(raw)
            return MyValidatorInfo(
                is_validator=is_validator,
                address=v.operator_address,
                moniker=v.moniker,
                status=v.status,
                voting_power=v.voting_power,
                voting_pct=(v.voting_power / total_power) if total_power else 0.0,
                commission=v.commission,
                jailed=v.jailed,
                moniker_conflict=conflict,
            )

        conflict = ""
        for raw in raw_vals:
            same_key = _consensus_key(raw).lower() == pubkey.lower()
            if moniker and (raw.get("description") or {}).get("moniker") == moniker and not same_key:
                conflict = moniker
            if not same_key:
                continue
            info = _info(raw, True, conflict)
            if info.jailed:
                try:
                    info = replace(info, slashing=self.slashing_info(pubkey_json, timeout=SLASHING_TIMEOUT))
                except CodedError as exc:
                    info = replace(info, slashing_error=f"Failed to fetch jail reason: {exc}")
            return info

        for addr in self.keyring_addresses(ctx):
            for raw in raw_vals:
                if same_account(addr, str(raw.get("operator_address") or "")):
                    return _info(raw, False)

        if moniker:
            for raw in raw_vals:
                if (raw.get("description") or {}).get("moniker") == moniker:
                    return _info(raw, False)

        return MyValidatorInfo(moniker_conflict=conflict)

    # ---- slashing ----

    def slashing_info(self, consensus_pubkey_json: str, ctx: Optional[Context] = None, timeout: Optional[float] = None) -> SlashingInfo:
        data = self._query_json(["query", "slashing", "signing-info", consensus_pubkey_json], ctx, timeout)
        info = (data or {}).get("val_signing_info") or {}
        try:
            missed = int(info.get("missed_blocks_counter") or 0)
        except (TypeError, ValueError):
            missed = 0
        tombstoned = bool(info.get("tombstoned"))
        until = str(info.get("jailed_until") or "")
        return SlashingInfo(
            tombstoned=tombstoned,
            jailed_until=until,
            missed_blocks=missed,
            jail_reason=jail_reason(tombstoned, until, missed),
        )

    # ---- rewards ----

    def fetch_rewards(self, validator_addr: str, ctx: Optional[Context] = None) -> Rewards:
        """Commission and outstanding rewards, both queried in parallel; each falls back to "—"."""
        if not validator_addr:
            raise precondition_error("validator address required")
        self.binary()
        result = {"commission": NONE_MARK, "outstanding": NONE_MARK}

        def _one(slot: str, args: list, outer: str, inner: str) -> None:
            try:
                data = self._query_json(args, ctx, CFG.REWARDS_TIMEOUT)
                coins = ((data or {}).get(outer) or {}).get(inner) or []
                if coins:
                    result[slot] = format_token_amount(str(coins[0]), self.settings.denom)
            except (CodedError, ContextError, AttributeError) as exc:
                log.debug("[validator] %s query for %s failed: %s", slot, validator_addr, exc)

        workers = [
            threading.Thread(target=_one, args=("commission", ["query", "distribution", "commission", validator_addr], "commission", "commission"), daemon=True),
            threading.Thread(target=_one, args=("outstanding", ["query", "distribution", "validator-outstanding-rewards", validator_addr], "rewards", "rewards"), daemon=True),
        ]
        for w in workers:
            w.start()
        for w in workers:
            w.join()
        return Rewards(result["commission"], result["outstanding"])

    def rewards(self, validator_addr: str, ctx: Optional[Context] = None) -> Rewards:
        with self._lock:
            cached = self._rewards.get(validator_addr)
            if cached is not None and time.monotonic() - cached[1] < self.rewards_ttl:
                return cached[0]
        fresh = self.fetch_rewards(validator_addr, ctx)
        with self._lock:
            self._rewards[validator_addr] = (fresh, time.monotonic())
        return fresh

    def evm_address(self, validator_addr: str) -> str:
        return bech32_to_hex(validator_addr)

    # ---- governance ----

    def proposals(self, ctx: Optional[Context] = None) -> ProposalList:
        with self._lock:
            now = time.monotonic()
            if self._proposals is not None and self._proposals.total > 0 and now - self._proposals_at < self.cache_ttl:
                return self._proposals
            try:
                data = self._query_json(["query", "gov", "proposals"], ctx)
                raw = data.get("proposals") if isinstance(data, dict) else None
                fresh = ProposalList(tuple(_proposal_from_json(p) for p in raw or [] if isinstance(p, dict)))
            except Exception:
                if self._proposals is not None and self._proposals.total > 0:
                    log.debug("[validator] proposals refresh failed, serving cached copy")
                    return self._proposals
                raise
            self._proposals, self._proposals_at = fresh, now
            return fresh


__all__ = [
    "ValidatorInfo", "ValidatorList", "SlashingInfo", "MyValidatorInfo", "Rewards", "Proposal", "ProposalList",
    "ValidatorFetcher", "parse_proposal_status", "sort_proposals",
    "bech32_to_hex", "parse_status", "voting_power", "commission_percent", "format_token_amount",
    "jail_reason", "same_account", "resolve_node_binary", "default_exec", "NONE_MARK",
]
