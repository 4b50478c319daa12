# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from __future__ import annotations

import os, time, signal, socket, threading, subprocess
from typing import Optional, Sequence
import psutil

# ---------------- Local Project ----------------
from ..core.errors import invalid_args_error, precondition_error, process_error
from ..utils import config as CFG
from ..utils.pv_logging import get_ctx_logger

log = get_ctx_logger("pushvalidator.node(supervisor)")

STOP_GRACE = 15.0
KILL_GRACE = 5.0
NODE_LOG_LEVEL = "statesync:debug,*:info"


def process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        proc = psutil.Process(pid)
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def is_rpc_listening(hostport: str = "127.0.0.1:26657", timeout: float = 1.0) -> bool:
    host, _, port = (hostport or "127.0.0.1:26657").rpartition(":")
    try:
        with socket.create_connection((host or "127.0.0.1", int(port)), timeout=timeout):
            return True
    except (OSError, ValueError):
        return False


class Supervisor:
    """Starts and stops the node as a detached process tracked by a PID file."""

    def __init__(self, home: str):
        self.home = home
        self.pid_file = os.path.join(home, CFG.PID_FILENAME)
        self.log_path = os.path.join(home, CFG.LOGS_DIRNAME, CFG.NODE_LOG_FILENAME)
        self._lock = threading.Lock()

    def pid(self) -> Optional[int]:
        """PID of the running node; a stale PID file is removed."""
        try:
            with open(self.pid_file, "r", encoding="utf-8") as handle:
                txt = handle.read().strip()
        except FileNotFoundError:
            return None
        try:
            pid = int(txt)
        except ValueError:
            return None
        if process_alive(pid):
            return pid
        self._remove_pid_file()
        return None

    def is_running(self) -> bool:
        return self.pid() is not None

    def uptime(self) -> Optional[float]:
        pid = self.pid()
        if pid is None:
            return None
        try:
            return max(0.0, time.time() - psutil.Process(pid).create_time())
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None

    def _remove_pid_file(self) -> None:
        try:
            os.remove(self.pid_file)
        except FileNotFoundError:
            pass

    def _needs_initial_sync(self) -> bool:
        marker = os.path.join(self.home, CFG.STATE_SYNC_MARKER)
        blockstore = os.path.join(self.home, CFG.DATA_DIRNAME, "blockstore.db")
        return os.path.exists(marker) or not os.path.exists(blockstore)

    def start(self, bin_path: str = CFG.DEFAULT_NODE_BIN, extra_args: Sequence[str] = ()) -> int:
        with self._lock:
            if not self.home:
                raise invalid_args_error("home directory required")
            running = self.pid()
            if running is not None:
                return running

            genesis = os.path.join(self.home, CFG.CONFIG_DIRNAME, CFG.GENESIS_FILENAME)
            if not os.path.exists(genesis):
                raise precondition_error(f"genesis.json not found at {genesis}. Please run 'init' first")

            bin_path = bin_path or CFG.DEFAULT_NODE_BIN
            if self._needs_initial_sync():
                try:
                    subprocess.run(
                        [bin_path, "tendermint", "unsafe-reset-all", "--home", self.home, "--keep-addr-book"],
                        stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=False,
                    )
                except OSError as exc:
                    log.warning("[supervisor] unsafe-reset-all failed: %s", exc)
                try:
                    os.remove(os.path.join(self.home, CFG.STATE_SYNC_MARKER))
                except FileNotFoundError:
                    pass

            pvs = os.path.join(self.home, CFG.DATA_DIRNAME, CFG.PVS_FILENAME)
            if not os.path.exists(pvs):
                os.makedirs(os.path.dirname(pvs), mode=0o755, exist_ok=True)
                with open(pvs, "w", encoding="utf-8") as handle:
                    handle.write(CFG.PVS_EMPTY_JSON)

            os.makedirs(os.path.dirname(self.log_path), mode=0o755, exist_ok=True)
            argv = [bin_path, "start", "--home", self.home, "--log_level", NODE_LOG_LEVEL, *extra_args]
            with open(self.log_path, "ab") as logf:
                try:
                    proc = subprocess.Popen(
                        argv,
                        cwd=self.home,
                        stdin=subprocess.DEVNULL,
                        stdout=logf,
                        stderr=logf,
                        start_new_session=True,
                    )
                except OSError as exc:
                    raise process_error(f"start {os.path.basename(bin_path)}", exc) from exc
            try:
                with open(self.pid_file, "w", encoding="utf-8") as handle:
                    handle.write(str(proc.pid))
            except OSError as exc:
                proc.terminate()
                raise process_error("failed to write pid file", exc) from exc
            log.info("[supervisor] started %s (pid %d)", os.path.basename(bin_path), proc.pid)
            return proc.pid

    def _signal(self, pid: int, sig: int) -> None:
        try:
            os.killpg(pid, sig)
        except OSError:
            try:
                os.kill(pid, sig)
            except OSError as exc:
                log.debug("[supervisor] signal %s to %d failed: %s", sig, pid, exc)

    def _wait_dead(self, pid: int, timeout: float, step: float) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if not process_alive(pid):
                return True
            time.sleep(step)
        return not process_alive(pid)

    def stop(self, grace: float = STOP_GRACE, kill_grace: float = KILL_GRACE) -> None:
        with self._lock:
            pid = self.pid()
            if pid is None:
                return
            self._signal(pid, signal.SIGTERM)
            if self._wait_dead(pid, grace, 0.3):
                self._remove_pid_file()
                log.info("[supervisor] node stopped (pid %d)", pid)
                return
            log.warning("[supervisor] node did not exit after SIGTERM, sending SIGKILL")
            self._signal(pid, signal.SIGKILL)
            dead = self._wait_dead(pid, kill_grace, 0.2)
            self._remove_pid_file()
            if not dead:
                raise process_error("failed to stop pchaind")

    def restart(self, bin_path: str = CFG.DEFAULT_NODE_BIN, extra_args: Sequence[str] = ()) -> int:
        self.stop()
        return self.start(bin_path, extra_args)


__all__ = ["Supervisor", "process_alive", "is_rpc_listening"]
