# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import json, time, http.client
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Optional

# ---------------- Local Project ----------------
from ..core.context import Context, background
from ..core.errors import CodedError, NETWORK_ERROR
from ..utils import config as CFG
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.network(rpc_client)")


class RPCError(CodedError):
    """Transport failure, non-200 status or undecodable body from a CometBFT RPC."""

    def __init__(self, message: str, status: Optional[int] = None, cause: Optional[BaseException] = None):
        super().__init__(NETWORK_ERROR, message, cause)
        self.status = status


@dataclass(frozen=True)
class Status:
    node_id: str = ""
    moniker: str = ""
    network: str = ""
    catching_up: bool = False
    height: int = 0


@dataclass(frozen=True)
class Peer:
    id: str
    addr: str  # host:port

    def __str__(self) -> str:
        return f"{self.id}@{self.addr}"


@dataclass(frozen=True)
class NetPeer:
    """Raw `/net_info` entry, kept for callers that filter on listen_addr."""
    id: str
    listen_addr: str
    remote_ip: str
    moniker: str = ""


def _dig(data: Any, *keys: str) -> Any:
    cur = data
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _to_int(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


class RPCClient:
    """Small typed wrapper over the CometBFT HTTP RPC (`/status`, `/net_info`, `/block`, `/commit`)."""

    def __init__(self, base: str = CFG.DEFAULT_RPC_LOCAL, timeout: float = CFG.RPC_TIMEOUT):
        self.base = (base or "").rstrip("/")
        self.timeout = float(timeout)

    def __repr__(self) -> str:
        return f"RPCClient({self.base!r})"

    # ---------- transport ----------

    def _call_timeout(self, ctx: Context) -> float:
        ctx.check()
        left = ctx.remaining(self.timeout)
        return left if left else self.timeout

    def get_bytes(self, path: str, params: Optional[dict] = None, ctx: Optional[Context] = None, base: Optional[str] = None) -> bytes:
        """Raw 200 body of a GET; callers that must keep the bytes as served (genesis) use this."""
        ctx = ctx or background()
        url = (base or self.base).rstrip("/") + path
        if params:
            url += "?" + urllib.parse.urlencode(params)
        req = urllib.request.Request(url, headers={"User-Agent": CFG.RPC_USER_AGENT, "Accept": "application/json"})
        try:
            with urllib.request.urlopen(req, timeout=self._call_timeout(ctx)) as resp:
                if resp.status != 200:
                    raise RPCError(f"GET {path}: HTTP {resp.status}", status=resp.status)
                raw = resp.read()
        except urllib.error.HTTPError as exc:
            exc.close()
            raise RPCError(f"GET {path}: HTTP {exc.code}", status=exc.code, cause=exc) from exc
        except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
            ctx.check()
            raise RPCError(f"GET {path} failed", cause=exc) from exc
        log.trace("[rpc] GET %s ok", url)
        return raw

    def get_json(self, path: str, params: Optional[dict] = None, ctx: Optional[Context] = None, base: Optional[str] = None) -> dict:
        raw = self.get_bytes(path, params=params, ctx=ctx, base=base)
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise RPCError(f"GET {path}: malformed JSON", status=200, cause=exc) from exc
        if not isinstance(payload, dict):
            raise RPCError(f"GET {path}: unexpected payload", status=200)
        return payload

    # ---------- typed endpoints ----------

    def remote_status(self, base_url: str, ctx: Optional[Context] = None) -> Status:
        payload = self.get_json("/status", ctx=ctx, base=base_url)
        result = payload.get("result") or {}
        return Status(
            node_id=str(_dig(result, "node_info", "id") or ""),
            moniker=str(_dig(result, "node_info", "moniker") or ""),
            network=str(_dig(result, "node_info", "network") or ""),
            catching_up=bool(_dig(result, "sync_info", "catching_up")),
            height=_to_int(_dig(result, "sync_info", "latest_block_height")),
        )

    def status(self, ctx: Optional[Context] = None) -> Status:
        return self.remote_status(self.base, ctx=ctx)

    def net_info(self, ctx: Optional[Context] = None, base_url: Optional[str] = None) -> list[NetPeer]:
        payload = self.get_json("/net_info", ctx=ctx, base=base_url)
        out: list[NetPeer] = []
        for item in _dig(payload, "result", "peers") or []:
            if not isinstance(item, dict):
                continue
            out.append(NetPeer(
                id=str(_dig(item, "node_info", "id") or ""),
                listen_addr=str(_dig(item, "node_info", "listen_addr") or ""),
                remote_ip=str(item.get("remote_ip") or ""),
                moniker=str(_dig(item, "node_info", "moniker") or ""),
            ))
        return out

    def peers(self, ctx: Optional[Context] = None, base_url: Optional[str] = None) -> list[Peer]:
        out: list[Peer] = []
        for p in self.net_info(ctx=ctx, base_url=base_url):
            if not p.id or not p.remote_ip:
                continue
            out.append(Peer(id=p.id, addr=f"{p.remote_ip}:{CFG.DEFAULT_P2P_PORT}"))
        return out

    def block(self, height: int = 0, ctx: Optional[Context] = None) -> dict:
        params = {"height": str(int(height))} if height and height > 0 else None
        return self.get_json("/block", params=params, ctx=ctx)

    def block_hash(self, height: int = 0, ctx: Optional[Context] = None) -> str:
        return str(_dig(self.block(height, ctx=ctx), "result", "block_id", "hash") or "").upper()

    def commit_hash(self, height: int, ctx: Optional[Context] = None) -> str:
        payload = self.get_json("/commit", params={"height": str(int(height))}, ctx=ctx)
        return str(_dig(payload, "result", "signed_header", "commit", "block_id", "hash") or "").upper()

    def latest_height(self, ctx: Optional[Context] = None) -> int:
        """Latest height from `/status`, falling back to the header of the latest `/block`."""
        try:
            height = self.status(ctx=ctx).height
            if height > 0:
                return height
        except RPCError as exc:
            log.debug("[rpc] /status on %s failed, trying /block: %s", self.base, exc)
        payload = self.block(ctx=ctx)
        return _to_int(_dig(payload, "result", "block", "header", "height"))

    def measure_latency(self, base_url: Optional[str] = None, ctx: Optional[Context] = None) -> tuple[Status, float]:
        """One `/status` round trip; returns (status, milliseconds)."""
        started = time.monotonic()
        st = self.remote_status(base_url or self.base, ctx=ctx)
        return st, (time.monotonic() - started) * 1000.0

    def probe(self, url: Optional[str] = None, timeout: float = CFG.PROBE_TIMEOUT, ctx: Optional[Context] = None) -> bool:
        """JSON-RPC `status` POST used to check that a light-client witness answers."""
        ctx = ctx or background()
        ctx.check()
        body = json.dumps({"jsonrpc": "2.0", "method": "status", "id": 1}).encode("utf-8")
        req = urllib.request.Request(
            (url or self.base).rstrip("/"),
            data=body,
            headers={"Content-Type": "application/json", "User-Agent": CFG.RPC_USER_AGENT},
            method="POST",
        )
        left = ctx.remaining(timeout) or timeout
        try:
            with urllib.request.urlopen(req, timeout=left) as resp:
                resp.read()
                return resp.status == 200
        except urllib.error.HTTPError as exc:
            exc.close()
            return False
        except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
            log.debug("[rpc] probe %s failed: %s", url or self.base, exc)
            return False


__all__ = ["RPCClient", "RPCError", "Status", "Peer", "NetPeer"]
