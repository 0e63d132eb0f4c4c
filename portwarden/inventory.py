import os
import sys
import time
import socket
import subprocess
from shutil import which

import psutil

from .config import debug_log, load_protected_rules
from .errors import TransportError, ElevationError
from .models import PortEntry, Snapshot, KillResult, ProcessDetails

ACCESS_DENIED_MSG = "Access denied. Restart as Administrator."


class Inventory:
    """
    What the engine needs from the operating system.

    fetch_inventory() raises TransportError when the port table cannot be
    read; an empty table is a normal, empty Snapshot.
    """

    def fetch_inventory(self):
        raise NotImplementedError

    def kill_process(self, pid, port, process_name):
        raise NotImplementedError

    def request_elevated_restart(self):
        raise NotImplementedError

    def fetch_process_details(self, pid):
        raise NotImplementedError


def is_privileged():
    if os.name == "nt":
        try:
            import ctypes
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


class PsutilInventory(Inventory):
    def __init__(self, protected=None):
        self.protected = protected if protected is not None else load_protected_rules()

    def is_protected(self, pid, name):
        if pid in self.protected["pids"]:
            return True
        return (name or "").lower() in self.protected["names"]

    def fetch_inventory(self):
        try:
            conns = psutil.net_connections(kind="inet")
        except (psutil.Error, OSError) as e:
            raise TransportError(f"Cannot list sockets: {e}") from e

        seen = set()
        names = {}  # pid -> (name, path)
        entries = []
        for c in conns:
            if c.pid is None or not c.laddr:
                continue
            if c.type == socket.SOCK_STREAM:
                if c.status != psutil.CONN_LISTEN:
                    continue
                proto = "TCP"
            elif c.type == socket.SOCK_DGRAM:
                if c.raddr:
                    continue
                proto = "UDP"
            else:
                continue

            ip, port = c.laddr[0], c.laddr[1]
            if not port or (port, c.pid) in seen:
                continue
            seen.add((port, c.pid))

            if c.pid not in names:
                names[c.pid] = self._process_info(c.pid)
            name, path = names[c.pid]
            entries.append(PortEntry(
                pid=c.pid,
                port=port,
                protocol=proto,
                process_name=name,
                process_path=path,
                is_protected=self.is_protected(c.pid, name),
                local_address=ip,
            ))

        entries.sort(key=lambda e: e.port)
        return Snapshot(entries, time.time(), is_privileged())

    def _process_info(self, pid):
        try:
            p = psutil.Process(pid)
            name = p.name()
        except psutil.Error:
            return "Unknown", ""
        try:
            path = p.exe() or ""
        except (psutil.Error, OSError):
            path = ""
        return name, path

    def kill_process(self, pid, port, process_name):
        if self.is_protected(pid, process_name):
            return KillResult(False, f"Cannot kill protected system process: {process_name}", port)

        debug_log(f"KILL: Targeted PID {pid} ({process_name}) on port {port}")
        try:
            p = psutil.Process(pid)
            p.kill()
            try:
                p.wait(timeout=2)
            except psutil.TimeoutExpired:
                debug_log(f"KILL: PID {pid} did not exit within 2s")
        except psutil.NoSuchProcess:
            return KillResult(False, f"Process {pid} not found (already exited)", port)
        except psutil.AccessDenied:
            return self._kill_fallback(pid, port, process_name)
        return KillResult(True, f"Port {port} freed (killed {process_name})", port)

    def _kill_fallback(self, pid, port, process_name):
        """Retry through the platform tool when the direct signal is refused."""
        if os.name == "nt":
            cmd = ["taskkill", "/F", "/PID", str(pid)]
        else:
            # -n: never prompt, the terminal belongs to curses
            cmd = ["sudo", "-n", "kill", "-9", str(pid)]
        try:
            res = subprocess.run(cmd, capture_output=True, text=True, timeout=5)
        except (OSError, subprocess.SubprocessError) as e:
            debug_log(f"KILL: Fallback {cmd[0]} failed: {e}")
            return KillResult(False, ACCESS_DENIED_MSG, port)

        debug_log(f"KILL: Fallback result - Code {res.returncode}, Err: {res.stderr.strip()}")
        if res.returncode == 0:
            return KillResult(True, f"Port {port} freed (killed {process_name})", port)
        err = res.stderr.strip()
        if "No such process" in err or "not found" in err:
            return KillResult(False, f"Process {pid} not found (already exited)", port)
        if not err or "denied" in err.lower() or "not permitted" in err or "password" in err:
            return KillResult(False, ACCESS_DENIED_MSG, port)
        return KillResult(False, f"Failed to kill process: {err}", port)

    def request_elevated_restart(self):
        argv = [sys.executable, "-m", "portwarden"] + sys.argv[1:]
        if os.name == "nt":
            import ctypes
            params = subprocess.list2cmdline(argv[1:])
            rc = ctypes.windll.shell32.ShellExecuteW(None, "runas", sys.executable, params, None, 1)
            if rc <= 32:
                raise ElevationError(f"ShellExecute failed with code {rc}")
            return
        launcher = which("pkexec")
        if launcher is None:
            raise ElevationError("pkexec not found; run portwarden with sudo")
        subprocess.Popen(
            [launcher] + argv,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

    def fetch_process_details(self, pid):
        p = psutil.Process(pid)
        with p.oneshot():
            name = p.name()
            try:
                path = p.exe() or ""
            except (psutil.Error, OSError):
                path = ""
            memory = p.memory_info().rss
        cpu = p.cpu_percent(interval=0.1)
        children = tuple(c.pid for c in p.children())
        return ProcessDetails(pid=pid, name=name, path=path, memory_bytes=memory,
                              cpu_percent=cpu, children=children)
