# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import hashlib
from typing import Optional

# ---------------- Local Project ----------------
from .messages import Cmd
from .util import format_title, inner_width_for_box as inner_width, render_box


def cache_key(content: str, width: int, height: int) -> int:
    """64-bit key over `WxH|content`; a resize invalidates the cached render."""
    digest = hashlib.blake2b(f"{width}x{height}|{content}".encode("utf-8", "replace"), digest_size=8).digest()
    return int.from_bytes(digest, "big")


class Component:
    """
    Base for dashboard panels.

    Subclasses override `update()` (consume messages, return an optional follow-up
    command) and `content()` (pure text lines for the given cell). `view()`
    frames the content in a box and caches the result keyed on the size and
    the content text. Between updates a same-size view returns the cached
    frame without calling `content()`; panels whose text changes without an
    update (a background tailer, the wall clock) set `volatile`.
    """

    id = ""
    title = ""
    min_width = 20
    min_height = 3
    volatile = False

    def __init__(self, no_emoji: bool = False):
        self.no_emoji = no_emoji
        self._last_key: Optional[int] = None
        self._cached: list[str] = []
        self._size = (0, 0)
        self._dirty = True

    # ---------- lifecycle ----------

    def init(self) -> Optional[Cmd]:
        return None

    def close(self) -> None:
        pass

    def update(self, msg, data) -> Optional[Cmd]:
        return None

    # ---------- rendering ----------

    def content(self, width: int, height: int) -> list[str]:
        """Text lines for the panel body; pure, no I/O."""
        raise NotImplementedError

    def title_line(self, width: int) -> str:
        return format_title(self.title, inner_width(width))

    def frame(self, lines: list[str], width: int, height: int) -> list[str]:
        return render_box(lines, width, height, self.no_emoji)

    def check_cache(self, content: str, width: int, height: int) -> bool:
        key = cache_key(content, width, height)
        if key == self._last_key and self._cached:
            return True
        self._last_key = key
        return False

    def update_cache(self, rendered: list[str]) -> None:
        self._cached = list(rendered)

    def cached(self) -> list[str]:
        return list(self._cached)

    def touch(self) -> None:
        self._dirty = True

    def view(self, width: int, height: int) -> list[str]:
        if width <= 0 or height <= 0:
            return []
        if not (self._dirty or self.volatile) and self._cached and self._size == (width, height):
            return self.cached()
        lines = self.content(width, height)
        self._size, self._dirty = (width, height), False
        if self.check_cache("\n".join(lines), width, height):
            return self.cached()
        rendered = self.frame(lines, width, height)
        self.update_cache(rendered)
        return list(rendered)


class ComponentRegistry:
    """Panels in registration order; that order is also the update order."""

    def __init__(self):
        self._order: list[str] = []
        self._components: dict[str, Component] = {}

    def register(self, comp: Component) -> None:
        if comp.id not in self._components:
            self._order.append(comp.id)
        self._components[comp.id] = comp

    def get(self, comp_id: str) -> Optional[Component]:
        return self._components.get(comp_id)

    def all(self) -> list[Component]:
        return [self._components[cid] for cid in self._order]

    def init_all(self) -> list[Cmd]:
        return [cmd for cmd in (c.init() for c in self.all()) if cmd is not None]

    def update_all(self, msg, data) -> list[Cmd]:
        cmds = []
        for comp in self.all():
            cmd = comp.update(msg, data)
            comp.touch()
            if cmd is not None:
                cmds.append(cmd)
        return cmds

    def close_all(self) -> None:
        for comp in self.all():
            comp.close()


__all__ = ["Component", "ComponentRegistry", "cache_key"]
