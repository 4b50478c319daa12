# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import json, platform, http.client
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Optional
from packaging.version import InvalidVersion, Version

# ---------------- Local Project ----------------
from ..core.errors import network_error, precondition_error
from ..utils import config as CFG
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.update(release)")

_OS_MAP = {"linux": "linux", "darwin": "darwin"}
_ARCH_MAP = {"x86_64": "amd64", "amd64": "amd64", "aarch64": "arm64", "arm64": "arm64"}


@dataclass(frozen=True)
class Asset:
    name: str
    url: str
    size: int = 0
    content_type: str = ""

    @classmethod
    def from_json(cls, data: dict) -> "Asset":
        return cls(
            name=str(data.get("name") or ""),
            url=str(data.get("browser_download_url") or ""),
            size=int(data.get("size") or 0),
            content_type=str(data.get("content_type") or ""),
        )


@dataclass(frozen=True)
class Release:
    tag_name: str
    name: str = ""
    body: str = ""
    html_url: str = ""
    prerelease: bool = False
    assets: tuple = field(default_factory=tuple)

    @classmethod
    def from_json(cls, data: dict) -> "Release":
        return cls(
            tag_name=str(data.get("tag_name") or ""),
            name=str(data.get("name") or ""),
            body=str(data.get("body") or ""),
            html_url=str(data.get("html_url") or ""),
            prerelease=bool(data.get("prerelease")),
            assets=tuple(Asset.from_json(a) for a in data.get("assets") or [] if isinstance(a, dict)),
        )

    @property
    def version(self) -> str:
        return strip_v(self.tag_name)


def strip_v(version: str) -> str:
    v = (version or "").strip()
    return v[1:] if v[:1] in ("v", "V") else v


def parse_version(version: str) -> Optional[Version]:
    try:
        return Version(strip_v(version))
    except InvalidVersion:
        return None


def is_newer_version(current: str, latest: str) -> bool:
    """Dev builds (unparseable current) always update; an unparseable latest never wins."""
    cur = parse_version(current)
    if cur is None:
        return True
    new = parse_version(latest)
    if new is None:
        return False
    return new > cur


def platform_pair() -> tuple[str, str]:
    os_name = platform.system().lower()
    arch = platform.machine().lower()
    return _OS_MAP.get(os_name, os_name), _ARCH_MAP.get(arch, arch)


def _fetch_json(url: str, timeout: float, not_found: str) -> dict:
    req = urllib.request.Request(url, headers={"Accept": CFG.UPDATE_ACCEPT, "User-Agent": CFG.UPDATE_USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
    except urllib.error.HTTPError as exc:
        exc.close()
        if exc.code == 404:
            raise network_error(not_found, exc) from exc
        raise network_error(f"GitHub API error: HTTP {exc.code}", exc) from exc
    except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
        raise network_error("failed to fetch release", exc) from exc
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise network_error("failed to parse release", exc) from exc
    if not isinstance(data, dict):
        raise network_error("failed to parse release")
    return data


def fetch_latest_release(url: str = CFG.UPDATE_RELEASE_URL, timeout: float = CFG.UPDATE_HTTP_TIMEOUT) -> Release:
    release = Release.from_json(_fetch_json(url, timeout, "no releases found"))
    log.debug("[update] latest release %s", release.tag_name)
    return release


def fetch_release_by_tag(tag: str, url_template: str = CFG.UPDATE_TAG_URL, timeout: float = CFG.UPDATE_HTTP_TIMEOUT) -> Release:
    tag = tag if tag.startswith("v") else "v" + tag
    return Release.from_json(_fetch_json(url_template.format(tag=tag), timeout, f"release {tag} not found"))


def asset_for_platform(release: Release, os_name: Optional[str] = None, arch: Optional[str] = None, tool: str = CFG.TOOL_NAME) -> Asset:
    if os_name is None or arch is None:
        default_os, default_arch = platform_pair()
        os_name = os_name or default_os
        arch = arch or default_arch
    prefix = f"{tool}_"
    suffix = f"_{os_name}_{arch}.tar.gz"
    for asset in release.assets:
        if asset.name.startswith(prefix) and asset.name.endswith(suffix):
            return asset
    raise precondition_error(f"no binary found for {os_name}/{arch} in release {release.tag_name}")


def checksum_asset(release: Release) -> Asset:
    for asset in release.assets:
        if asset.name == CFG.UPDATE_CHECKSUMS_NAME:
            return asset
    raise precondition_error(f"{CFG.UPDATE_CHECKSUMS_NAME} not found in release")


def asset_name(version: str, os_name: str, arch: str, tool: str = CFG.TOOL_NAME) -> str:
    return CFG.UPDATE_ASSET_TEMPLATE.format(tool=tool, version=strip_v(version), os=os_name, arch=arch)


__all__ = [
    "Asset", "Release", "strip_v", "parse_version", "is_newer_version", "platform_pair",
    "fetch_latest_release", "fetch_release_by_tag", "asset_for_platform", "checksum_asset", "asset_name",
]
