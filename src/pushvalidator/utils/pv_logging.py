# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE
'''
Logging for push-validator.

Every module grabs a contextual logger once at import time:

    log = get_ctx_logger("pushvalidator.snapshot(service)")
    log.info("[snapshot.download] %s", message)
    log.trace("[rpc] GET %s ok", url)        # below DEBUG, dev profile only

Records carry three optional extras (height, peer, phase). Formatters fill the
missing ones with "-" so a format string that names them never raises.

The CLI calls setup_logging() once. Output goes to a rotating file under the
per-user log directory; --debug mirrors it to stderr, never stdout, because
stdout carries command output and --output json payloads.
'''

from __future__ import annotations

import os, re, sys, json, time, logging, hashlib, platform, threading, zipfile
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Iterator, Optional

from . import config as CFG
from .. import __version__

# ---- TRACE sits one step under DEBUG ----
TRACE = 9
logging.addLevelName(TRACE, "TRACE")


def _logger_trace(self: logging.Logger, msg, *args, **kwargs) -> None:
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)


logging.Logger.trace = _logger_trace

ROOT_NAME = "pushvalidator"
CONTEXT_FIELDS = ("height", "peer", "phase")
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LINE_FORMAT = (
    "%(asctime)s [%(levelname)s] "
    + ("%(threadName)s " if CFG.LOG_SHOW_THREAD else "")
    + "%(name)s: %(message)s"
)


# ---------- filters ----------

class RedactFilter(logging.Filter):
    """Scrubs recovery phrases and raw private keys before a record is written."""

    # `keys add` prints a 12..24 word phrase
    MNEMONIC = re.compile(r"\b(?:[a-z]{3,8} ){11,23}[a-z]{3,8}\b")
    KEY_FIELD = re.compile(r"((?:priv(?:ate)?[_ ]?key|passphrase|mnemonic)[\"']?\s*[:=]\s*[\"']?)[^\s\"',}]+", re.I)

    def filter(self, record: logging.LogRecord) -> bool:
        text = record.getMessage()
        scrubbed = self.MNEMONIC.sub("[REDACTED_MNEMONIC]", text)
        scrubbed = self.KEY_FIELD.sub(r"\1[REDACTED]", scrubbed)
        if scrubbed != text:
            record.msg, record.args = scrubbed, None
        return True


class RateLimitFilter(logging.Filter):
    """Drops repeats of the same (logger, level, template) inside `min_interval` seconds."""

    def __init__(self, min_interval: float, max_keys: int = CFG.LOG_RATE_LIMIT_KEYS):
        super().__init__()
        self.min_interval = float(min_interval)
        self.max_keys = int(max_keys)
        self._seen: dict[bytes, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(record: logging.LogRecord) -> bytes:
        raw = f"{record.name}\x00{record.levelno}\x00{record.msg}".encode("utf-8", "replace")
        return hashlib.blake2b(raw, digest_size=8).digest()

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True
        key = self._key(record)
        now = time.monotonic()
        with self._lock:
            last = self._seen.get(key)
            if last is not None and now - last < self.min_interval:
                return False
            if len(self._seen) >= self.max_keys:
                horizon = now - self.min_interval
                self._seen = {k: t for k, t in self._seen.items() if t >= horizon}
            self._seen[key] = now
        return True


# ---------- formatters ----------

def _fill_context(record: logging.LogRecord) -> None:
    for name in CONTEXT_FIELDS:
        if not hasattr(record, name):
            setattr(record, name, "-")


class SafeFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        _fill_context(record)
        return super().format(record)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; context extras only when set."""

    def format(self, record: logging.LogRecord) -> str:
        _fill_context(record)
        entry = {
            "time": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if CFG.LOG_SHOW_THREAD:
            entry["thread"] = record.threadName
        entry.update({k: getattr(record, k) for k in CONTEXT_FIELDS if getattr(record, k) != "-"})
        if record.exc_info:
            entry["traceback"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


# ---------- loggers ----------

class ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter whose bound extras are defaults; per-call `extra=` wins."""

    def process(self, msg, kwargs):
        merged = {name: "-" for name in CONTEXT_FIELDS}
        merged.update(self.extra or {})
        merged.update(kwargs.get("extra") or {})
        kwargs["extra"] = merged
        return msg, kwargs

    def trace(self, msg, *args, **kwargs) -> None:
        if self.isEnabledFor(TRACE):
            self.log(TRACE, msg, *args, **kwargs)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name or ROOT_NAME)


def get_ctx_logger(name: str = ROOT_NAME, **ctx) -> ContextAdapter:
    return ContextAdapter(get_logger(name), ctx)


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = CFG.LOG_LEVEL
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _dress(handler: logging.Handler, as_json: bool, rate_seconds: float) -> logging.Handler:
    handler.setFormatter(JsonFormatter() if as_json else SafeFormatter(LINE_FORMAT, DATE_FORMAT))
    handler.addFilter(RedactFilter())
    if rate_seconds > 0:
        handler.addFilter(RateLimitFilter(rate_seconds))
    return handler


def setup_logging(
    log_file: str | os.PathLike | None = None,
    level: int | str | None = None,
    to_console: bool | None = None,
    rotate_max_bytes: int | None = None,
    backup_count: int | None = None,
    force: bool = False,
) -> logging.Logger:
    """Install the tool-wide handlers; arguments left as None fall back to the active profile in config."""
    path = Path(log_file or CFG.LOG_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    as_json = str(CFG.LOG_FORMAT).strip().lower() == "json"
    console = CFG.LOG_TO_CONSOLE if to_console is None else to_console
    max_bytes = CFG.LOG_ROTATE_MAX_BYTES if rotate_max_bytes is None else rotate_max_bytes
    backups = CFG.LOG_BACKUP_COUNT if backup_count is None else backup_count
    lvl = _resolve_level(level)

    handlers: list[logging.Handler] = [_dress(
        RotatingFileHandler(path, maxBytes=int(max_bytes), backupCount=int(backups), encoding="utf-8", delay=True),
        as_json, float(CFG.LOG_FILE_RATE_LIMIT_SECONDS),
    )]
    if console:
        handlers.append(_dress(logging.StreamHandler(sys.stderr), as_json, float(CFG.LOG_RATE_LIMIT_SECONDS)))

    logging.basicConfig(level=lvl, handlers=handlers, force=force)
    root = get_logger()
    root.trace("[logging] level=%s file=%s json=%s console=%s", logging.getLevelName(lvl), path, as_json, console)
    return root


def add_file_logger(name: str, path: str | os.PathLike, level: int = logging.INFO) -> logging.Logger:
    """Give one logger its own rotating file in addition to the tool log (peer refresh uses this)."""
    logger = get_logger(name)
    target = os.path.abspath(path)
    if any(getattr(h, "baseFilename", None) == target for h in logger.handlers):
        return logger
    os.makedirs(os.path.dirname(target), exist_ok=True)
    handler = _dress(
        RotatingFileHandler(target, maxBytes=int(CFG.LOG_ROTATE_MAX_BYTES), backupCount=int(CFG.LOG_BACKUP_COUNT),
                            encoding="utf-8", delay=True),
        as_json=False, rate_seconds=0.0,
    )
    handler.setLevel(level)
    logger.addHandler(handler)
    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)
    return logger


# ---------- support bundle ----------

def _with_rotations(path: Path) -> Iterator[Path]:
    if path.is_file():
        yield path
    if path.parent.is_dir():
        yield from sorted(p for p in path.parent.glob(path.name + ".*") if p.is_file())


def export_log_bundle(path: str = "push_validator_logs.zip", extra_files: Optional[list[str]] = None) -> Path:
    """Zip the tool log, its rotations and any extra logs (node log, peer refresh log) for a bug report."""
    sources = [Path(CFG.LOG_PATH)]
    for handler in logging.getLogger().handlers:
        if isinstance(handler, RotatingFileHandler):
            handler.flush()
            sources.append(Path(handler.baseFilename))
    sources.extend(Path(p) for p in extra_files or [])

    picked: dict[Path, Path] = {}
    for source in sources:
        for found in _with_rotations(source):
            picked.setdefault(found.resolve(), found)

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    header = [
        f"push-validator : {__version__}",
        f"python         : {platform.python_version()}",
        f"platform       : {platform.platform()}",
        f"mode           : {CFG.MODE}",
        f"log level      : {CFG.LOG_LEVEL}",
        f"log format     : {CFG.LOG_FORMAT}",
        f"files          : {len(picked)}",
    ]
    with zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as bundle:
        bundle.writestr("log_info.txt", "\n".join(header) + "\n")
        used: set[str] = set()
        for real, shown in picked.items():
            name = shown.name
            if name in used:
                name = f"{shown.parent.name}_{name}"
            used.add(name)
            bundle.write(real, name)
    return out.resolve()


__all__ = [
    "TRACE", "RedactFilter", "RateLimitFilter", "JsonFormatter", "SafeFormatter", "ContextAdapter",
    "get_ctx_logger", "setup_logging", "add_file_logger", "get_logger", "export_log_bundle",
]
