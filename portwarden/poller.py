import queue
from concurrent.futures import ThreadPoolExecutor

from .config import debug_log
from .errors import TransportError
from .models import KillResult

POLL_KEY = "poll"


class Poller:
    """
    Refresh loop around the inventory collaborator.

    Collaborator calls run on `executor`; their completions are posted to
    a queue and only applied when the owner calls `drain()`, so every
    callback runs on the owner's thread. Each fetch carries a generation
    and completions from any other generation are discarded.
    """

    def __init__(self, inventory, timers, executor=None, interval=2.0,
                 on_snapshot=None, on_error=None, max_workers=4):
        self.inventory = inventory
        self.timers = timers
        self.interval = interval
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="portwarden")
        self._completions = queue.Queue()
        self._generation = 0
        self._in_flight = None
        self._refresh_requested = False
        self.running = False

    @property
    def in_flight(self):
        return self._in_flight is not None

    def start(self):
        if self.running:
            return
        self.running = True
        debug_log(f"POLLER: Started (interval {self.interval}s)")
        self._fetch()
        self._schedule_tick()

    def stop(self):
        if not self.running:
            return
        self.running = False
        self.timers.cancel_key(POLL_KEY)
        self._generation += 1
        self._in_flight = None
        self._refresh_requested = False
        self._discard_completions()
        if self._owns_executor:
            self.executor.shutdown(wait=False)
        debug_log("POLLER: Stopped")

    def refresh_now(self):
        """Fetch immediately, or right after the fetch already in flight."""
        if not self.running:
            return False
        if self._in_flight is not None:
            self._refresh_requested = True
            return False
        self._fetch()
        return True

    def kill(self, entry, callback):
        self._submit_job(callback, self.inventory.kill_process,
                         entry.pid, entry.port, entry.process_name)

    def kill_many(self, entries, callback):
        self._submit_job(callback, self._kill_all, list(entries))

    def elevate(self, callback):
        self._submit_job(callback, self.inventory.request_elevated_restart)

    def details(self, pid, callback):
        self._submit_job(callback, self.inventory.fetch_process_details, pid)

    def drain(self):
        """Apply every completion posted so far. Returns how many were applied."""
        applied = 0
        while True:
            try:
                tag, payload, future = self._completions.get_nowait()
            except queue.Empty:
                break
            if not self.running or future.cancelled():
                continue
            if tag == "fetch":
                self._complete_fetch(payload, future)
            else:
                self._complete_job(payload, future)
            applied += 1
        return applied

    def _schedule_tick(self):
        self.timers.schedule(self.interval, self._tick, key=POLL_KEY)

    def _tick(self):
        if not self.running:
            return
        if self._in_flight is not None:
            debug_log(f"POLLER: Fetch {self._in_flight} still in flight, skipping tick")
        else:
            self._fetch()
        self._schedule_tick()

    def _fetch(self):
        self._generation += 1
        self._in_flight = self._generation
        self._submit("fetch", self._generation, self.inventory.fetch_inventory)

    def _complete_fetch(self, generation, future):
        if generation != self._generation:
            debug_log(f"POLLER: Dropping stale fetch {generation} (current {self._generation})")
            return
        self._in_flight = None
        exc = future.exception()
        if exc is not None:
            if not isinstance(exc, TransportError):
                exc = TransportError(str(exc) or exc.__class__.__name__)
            debug_log(f"POLLER: Fetch failed: {exc}")
            if self.on_error:
                self.on_error(exc)
        elif self.on_snapshot:
            self.on_snapshot(future.result())

        if self._refresh_requested and self.running:
            self._refresh_requested = False
            self._fetch()

    def _submit_job(self, callback, fn, *args):
        if not self.running:
            debug_log(f"POLLER: Ignoring {getattr(fn, '__name__', fn)} after stop")
            return
        self._submit("job", callback, fn, *args)

    def _complete_job(self, callback, future):
        exc = future.exception()
        if exc is not None:
            callback(None, exc)
        else:
            callback(future.result(), None)

    def _submit(self, tag, payload, fn, *args):
        future = self.executor.submit(fn, *args)
        future.add_done_callback(lambda f: self._completions.put((tag, payload, f)))
        return future

    def _kill_all(self, entries):
        # runs on a worker thread: touch nothing but the collaborator
        results = []
        for entry in entries:
            try:
                result = self.inventory.kill_process(entry.pid, entry.port, entry.process_name)
            except Exception as e:
                result = KillResult(False, str(e), entry.port)
            results.append((entry, result))
        return results

    def _discard_completions(self):
        while True:
            try:
                self._completions.get_nowait()
            except queue.Empty:
                break
