# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Trust parameters for state sync.

The light client needs a (height, hash) anchor that the remote still serves
and that lands on a snapshot boundary. Heights are walked back one snapshot
interval at a time from the latest height; for each candidate `/block` is
tried first and `/commit` second.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

# ---------------- Local Project ----------------
from .rpc_client import RPCClient, RPCError
from ..core.context import Context, background
from ..core.errors import network_error
from ..utils import config as CFG
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.network(trust)")


@dataclass(frozen=True)
class TrustParams:
    height: int
    hash: str


def candidate_height(latest: int, offset: int, interval: int = CFG.TRUST_INTERVAL) -> int:
    h = (max(latest, CFG.TRUST_MIN_LATEST) // interval - offset) * interval
    return max(h, interval)


class TrustProvider:
    def __init__(
        self,
        client: RPCClient,
        interval: int = CFG.TRUST_INTERVAL,
        offsets: tuple = CFG.TRUST_OFFSETS,
        attempts: int = CFG.TRUST_RETRY_ATTEMPTS,
        retry_step: float = CFG.TRUST_RETRY_STEP,
    ):
        self.client = client
        self.interval = int(interval)
        self.offsets = tuple(offsets)
        self.attempts = max(1, int(attempts))
        self.retry_step = float(retry_step)

    def _with_retry(self, ctx: Context, what: str, fn: Callable[[], str]) -> Optional[str]:
        """Run one RPC with linear backoff on non-200; malformed bodies are not retried."""
        for attempt in range(self.attempts):
            try:
                value = fn()
                return value or None
            except RPCError as exc:
                if exc.status == 200 or attempt == self.attempts - 1:
                    log.debug("[trust] %s failed: %s", what, exc)
                    return None
                log.trace("[trust] %s attempt %d failed: %s", what, attempt + 1, exc)
                ctx.sleep(self.retry_step * (attempt + 1))
        return None

    def latest_height(self, ctx: Context) -> int:
        try:
            latest = self.client.latest_height(ctx=ctx)
        except RPCError as exc:
            raise network_error("could not determine latest height from RPC", exc) from exc
        return max(latest, CFG.TRUST_MIN_LATEST)

    def compute(self, ctx: Optional[Context] = None) -> TrustParams:
        ctx = ctx or background()
        latest = self.latest_height(ctx)
        log.info("[trust] latest height %d from %s", latest, self.client.base)
        for offset in self.offsets:
            ctx.check()
            height = candidate_height(latest, offset, self.interval)
            value = self._with_retry(ctx, f"/block?height={height}", lambda: self.client.block_hash(height, ctx=ctx))
            if not value:
                value = self._with_retry(ctx, f"/commit?height={height}", lambda: self.client.commit_hash(height, ctx=ctx))
            if value:
                params = TrustParams(height=height, hash=value.upper())
                log.info("[trust] using height %d hash %s", params.height, params.hash)
                return params
        raise network_error("could not determine trust hash from RPC")


def compute_trust_params(rpc_url: str, ctx: Optional[Context] = None, timeout: float = CFG.RPC_TIMEOUT) -> TrustParams:
    return TrustProvider(RPCClient(rpc_url, timeout=timeout)).compute(ctx)


__all__ = ["TrustParams", "TrustProvider", "candidate_height", "compute_trust_params"]
