# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Grid layout for the dashboard: rows of weighted panels, minimum sizes honoured
first, slack handed out by weight, panels dropped when the terminal is too
narrow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

# ---------------- Local Project ----------------
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.dashboard(layout)")

UNKNOWN_MIN_WIDTH = 20
ESSENTIAL_IDS = ("header", "node_status", "chain_status")

WARN_TRUNCATED = "Terminal too narrow — display truncated"
WARN_HIDDEN = "Some panels hidden"


@dataclass(frozen=True)
class LayoutRow:
    components: tuple
    weights: tuple
    min_height: int


@dataclass(frozen=True)
class LayoutConfig:
    rows: tuple


@dataclass(frozen=True)
class Cell:
    id: str
    x: int
    y: int
    w: int
    h: int


@dataclass
class LayoutResult:
    cells: list = field(default_factory=list)
    warning: str = ""


DEFAULT_LAYOUT = LayoutConfig(rows=(
    LayoutRow(("header",), (100,), 4),
    LayoutRow(("node_status", "chain_status"), (50, 50), 10),
    LayoutRow(("network_status", "validator_info"), (50, 50), 10),
    LayoutRow(("validators_list",), (100,), 16),
    LayoutRow(("log_viewer",), (100,), 12),
))


def clamp_even(kept: Sequence[str], width: int) -> list[int]:
    n = len(kept)
    per = max(width // n, 1)
    remainder = width - per * n
    widths = [per + (1 if i < remainder else 0) for i in range(n)]
    total = sum(widths)
    for i in range(n - 1, -1, -1):
        if total <= width:
            break
        if widths[i] > 1:
            widths[i] -= 1
            total -= 1
    return widths


class Layout:
    def __init__(self, config: LayoutConfig = DEFAULT_LAYOUT, registry=None):
        self.config = config
        self.registry = registry

    def _min_width(self, comp_id: str) -> Optional[int]:
        comp = self.registry.get(comp_id) if self.registry is not None else None
        return comp.min_width if comp is not None else None

    def row_heights(self, height: int) -> list[int]:
        heights = [row.min_height for row in self.config.rows]
        slack = height - sum(heights)
        if slack > 0 and len(heights) > 1:
            # header row keeps its minimum
            data_rows = len(heights) - 1
            per, remainder = divmod(slack, data_rows)
            for i in range(1, len(heights)):
                heights[i] += per + (1 if i - 1 < remainder else 0)
        return heights

    def compute(self, width: int, height: int) -> LayoutResult:
        result = LayoutResult()
        y = 0
        for row, row_h in zip(self.config.rows, self.row_heights(height)):
            widths, kept, warning = self.row_widths(row, width)
            if warning:
                result.warning = warning
            x = 0
            for comp_id, w in zip(kept, widths):
                result.cells.append(Cell(id=comp_id, x=x, y=y, w=w, h=row_h))
                x += w
            y += row_h
        return result

    def row_widths(self, row: LayoutRow, total: int) -> tuple[list[int], list[str], str]:
        ids = list(row.components)
        mins = []
        for comp_id in ids:
            mw = self._min_width(comp_id)
            mins.append(UNKNOWN_MIN_WIDTH if mw is None else mw)
        widths = list(mins)
        remaining = total - sum(widths)
        if remaining < 0:
            return self._insufficient(row, total)

        weights = list(row.weights)[:len(ids)]
        total_weight = sum(weights)
        if total_weight == 0:
            return widths, ids, ""

        fracs = []
        distributed = 0
        for i, weight in enumerate(weights):
            exact = remaining * weight / total_weight
            extra = int(exact)
            widths[i] += extra
            distributed += extra
            fracs.append((exact - extra, i))
        fracs.sort(key=lambda item: item[0], reverse=True)
        for _, idx in fracs[:remaining - distributed]:
            widths[idx] += 1

        # adjacent borders overlap by one column
        for i in range(len(widths) - 1):
            widths[i] += 1

        excess = sum(widths) - total
        for i in range(len(widths) - 1, -1, -1):
            if excess <= 0:
                break
            mw = self._min_width(ids[i])
            if mw is None:
                continue
            trim = min(excess, widths[i] - mw)
            if trim > 0:
                widths[i] -= trim
                excess -= trim
        # rows sized exactly at their minimums cannot absorb the overlap
        for i in range(len(widths) - 1, -1, -1):
            if excess <= 0:
                break
            trim = min(excess, widths[i] - 1)
            if trim > 0:
                widths[i] -= trim
                excess -= trim
        return widths, ids, ""

    def _insufficient(self, row: LayoutRow, width: int) -> tuple[list[int], list[str], str]:
        ids = list(row.components)
        kept = [c for c in ids if c in ESSENTIAL_IDS] or ids[:1]

        if len(kept) >= len(ids) or width < 10:
            if width <= 0:
                return [1], kept[:1], WARN_TRUNCATED
            kept = kept[:width]
            log.debug("[layout] row %s truncated to width %d", ",".join(ids), width)
            return clamp_even(kept, width), kept, WARN_TRUNCATED

        reduced = LayoutRow(components=tuple(kept), weights=tuple(1 for _ in kept), min_height=row.min_height)
        widths, kept, _ = self.row_widths(reduced, width)
        return widths, kept, WARN_HIDDEN


__all__ = [
    "Layout", "LayoutConfig", "LayoutRow", "LayoutResult", "Cell", "DEFAULT_LAYOUT", "ESSENTIAL_IDS",
    "WARN_TRUNCATED", "WARN_HIDDEN", "clamp_even",
]
