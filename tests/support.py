"""Deterministic stand-ins for the clock, the executor and the OS inventory."""
from concurrent.futures import Future

from portwarden.inventory import Inventory
from portwarden.models import KillResult, PortEntry, ProcessDetails, Snapshot


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ManualExecutor:
    """Holds submitted calls until the test runs them."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args):
        future = Future()
        self.pending.append((future, fn, args))
        return future

    def run_next(self):
        future, fn, args = self.pending.pop(0)
        self._run(future, fn, args)
        return future

    def run_all(self):
        while self.pending:
            self.run_next()

    def shutdown(self, wait=True):
        pass

    @staticmethod
    def _run(future, fn, args):
        try:
            result = fn(*args)
        except Exception as e:
            future.set_exception(e)
        else:
            future.set_result(result)


class ImmediateExecutor(ManualExecutor):
    def submit(self, fn, *args):
        future = Future()
        self._run(future, fn, args)
        return future


class FakeInventory(Inventory):
    def __init__(self, snapshots=None):
        self.snapshots = list(snapshots or [])
        self.current = Snapshot(())
        self.fetch_error = None
        self.kills = []
        self.kill_results = {}   # pid -> KillResult or Exception
        self.details = {}
        self.elevated = 0
        self.elevate_error = None

    def fetch_inventory(self):
        if self.fetch_error is not None:
            raise self.fetch_error
        if self.snapshots:
            self.current = self.snapshots.pop(0)
        return self.current

    def kill_process(self, pid, port, process_name):
        self.kills.append(pid)
        result = self.kill_results.get(pid)
        if isinstance(result, Exception):
            raise result
        return result or KillResult(True, f"Port {port} freed (killed {process_name})", port)

    def request_elevated_restart(self):
        self.elevated += 1
        if self.elevate_error is not None:
            raise self.elevate_error

    def fetch_process_details(self, pid):
        if pid not in self.details:
            raise LookupError(f"Process {pid} not found")
        return self.details[pid]


def entry(port, pid, name="node", protected=False, protocol="TCP"):
    return PortEntry(pid=pid, port=port, protocol=protocol, process_name=name,
                     process_path=f"/usr/bin/{name}", is_protected=protected,
                     local_address="127.0.0.1")


def snap(*entries, privileged=False):
    return Snapshot(entries, 0.0, privileged)


def details(pid, name="node"):
    return ProcessDetails(pid=pid, name=name, path=f"/usr/bin/{name}",
                          memory_bytes=4096, cpu_percent=1.5, children=(pid + 1,))
