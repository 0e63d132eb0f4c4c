import time
from collections import namedtuple
from functools import partial

from .changes import ChangeTracker
from .commands import CommandKind, parse_command, parse_port_literal, parse_port_number
from .config import CONFIG, debug_log
from .confirm import BULK, ConfirmationGate, Outcome
from .errors import CommandError, ElevationError, KillFailed, KillRejected
from .events import (Activate, Cancel, Confirm, KillSelected, Modifier, NavigateDelta,
                     Query, SelectAll, ShowDetails, Submit)
from .export import write_export
from .models import ChangeState, Notice, ProcessDetails
from .poller import Poller
from .ranker import rank_scored
from .selection import SelectionModel
from .timers import TimerRegistry

SessionView = namedtuple("SessionView", [
    "ranked_entries",        # tuple of PortEntry, best match first
    "scores",                # identity -> score (empty for the empty query)
    "change_states",         # identity -> ChangeState, stable entries omitted
    "removed_entries",       # entries that vanished on the last poll
    "selection",             # frozenset of identities
    "cursor",                # index into ranked_entries, -1 when empty
    "pending_confirmation",  # PendingConfirmation or None
    "killing",               # frozenset of identities with a kill in flight
    "notice",                # Notice or None
    "error",                 # last TransportError text or None
    "is_privileged",
    "panel",                 # None, 'help' or 'settings'
    "details",               # ProcessDetails or None
    "query",
    "loading",
    "last_updated",
    "quit_requested",
])

PANELS = {CommandKind.HELP: "help", CommandKind.SETTINGS: "settings"}


class SessionController:
    """
    Owns the engine state and every timer; the only writer of both.

    Front ends call the on_* handlers (or dispatch() with an event), call
    pump() from their loop, and render view().
    """

    def __init__(self, inventory, executor=None, clock=time.monotonic, config=None):
        self.config = dict(CONFIG)
        self.config.update(config or {})
        self.inventory = inventory
        self.timers = TimerRegistry(clock=clock)
        self.changes = ChangeTracker(self.timers, ttl=self.config["change_ttl"])
        self.selection = SelectionModel()
        self.gate = ConfirmationGate(self.timers, timeout=self.config["confirm_timeout"])
        self.poller = Poller(
            inventory, self.timers,
            executor=executor,
            interval=self.config["poll_interval"],
            on_snapshot=self.on_refresh,
            on_error=self.on_transport_error,
            max_workers=self.config.get("max_workers", 4),
        )

        self.snapshot = None
        self.previous = None
        self.query = ""
        self.ranked = ()
        self.scores = {}
        self.killing = set()
        self.notice = None
        self.error = None
        self.panel = None
        self.details = None
        self.loading = True
        self.quit_requested = False
        self.closed = False

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def start(self):
        if self.closed:
            raise RuntimeError("session already shut down")
        self.poller.start()

    def pump(self):
        """Apply finished collaborator calls, then fire due timers."""
        if self.closed:
            return
        self.poller.drain()
        if not self.closed:
            self.timers.run_due()

    def shutdown(self):
        if self.closed:
            return
        self.closed = True
        self.poller.stop()
        self.changes.close()
        self.gate.close()
        self.timers.close()
        self.killing.clear()
        debug_log("SESSION: Shut down")

    # ------------------------------------------------------------------
    # inventory
    # ------------------------------------------------------------------
    def on_refresh(self, snapshot):
        if self.closed:
            return
        self.previous, self.snapshot = self.snapshot, snapshot
        self.changes.update(self.previous, snapshot)
        self.error = None
        self.loading = False
        self._rerank()

        pending = self.gate.pending
        if pending is not None and pending.token is not BULK and snapshot.find(pending.token) is None:
            self.gate.cancel()

    def on_transport_error(self, exc):
        if self.closed:
            return
        self.error = str(exc)
        self.loading = False
        self.notify(f"Failed to read ports: {exc} (type 'r' to retry)", "error")

    def refresh(self):
        self.poller.refresh_now()

    # ------------------------------------------------------------------
    # search and selection
    # ------------------------------------------------------------------
    def on_query(self, text):
        self.query = text or ""
        self._rerank()

    def on_activate(self, identity, modifier=Modifier.PLAIN, index=None):
        if index is None:
            index = self.selection.index_of(identity)
            if index is None:
                return False
        return self.selection.activate(index, identity, modifier)

    def on_navigate(self, delta, extend=False):
        return self.selection.navigate(delta, extend)

    def on_select_all(self):
        self.selection.select_all()

    def _rerank(self):
        entries = self.snapshot.entries if self.snapshot is not None else ()
        scored = rank_scored(self.query, entries)
        self.ranked = tuple(e for e, _ in scored)
        self.scores = {e.identity: s for e, s in scored} if self.query.strip() else {}
        self.selection.set_view([e.identity for e in self.ranked])

    # ------------------------------------------------------------------
    # killing
    # ------------------------------------------------------------------
    def current_entry(self, identity):
        if self.snapshot is None:
            return None
        return self.snapshot.find(identity)

    def on_kill_request(self, identity):
        """First call arms the confirmation, a second call on the same entry kills."""
        if self.closed:
            return None
        entry = self.current_entry(identity)
        if entry is None:
            self.notify(f"Port {identity[0]} is no longer in use", "error")
            return None
        if identity in self.killing:
            return None
        try:
            outcome = self.gate.request(identity, entry)
        except KillRejected as e:
            self.notify(str(e), "error")
            return None

        if outcome is Outcome.CONFIRMED:
            self._execute_kill(identity)
        else:
            self.notify(f"Press again to kill {entry.process_name} on port {entry.port}", "info")
        return outcome

    def _execute_kill(self, identity):
        # re-read: the entry may have changed since the first press
        entry = self.current_entry(identity)
        if entry is None:
            self.notify(f"Port {identity[0]} is no longer in use", "error")
            return
        if entry.is_protected:
            self.notify(str(KillRejected(entry)), "error")
            return
        self.killing.add(identity)
        self.poller.kill(entry, partial(self._kill_done, entry))

    def _kill_done(self, entry, result, error):
        try:
            if error is not None:
                failure = error if isinstance(error, KillFailed) else KillFailed.classify(str(error))
                self._report_kill_failure(failure)
            elif result.success:
                self.notify(result.message, "success")
                self._refresh_soon()
            else:
                self._report_kill_failure(KillFailed.classify(result.message))
        finally:
            self.killing.discard(entry.identity)
            if self.gate.is_pending(entry.identity):
                self.gate.cancel()
            self.on_query("")

    def _report_kill_failure(self, failure):
        debug_log(f"KILL: Failed ({failure.reason}): {failure}")
        if failure.reason == KillFailed.ACCESS_DENIED:
            self.notify(f"{failure} Type 'admin' to elevate.", "error")
        elif failure.reason == KillFailed.ALREADY_EXITED:
            self.notify(f"{failure}. Refreshing.", "error")
            self.poller.refresh_now()
        else:
            self.notify(str(failure), "error")

    def on_bulk_kill_request(self):
        if self.closed:
            return None
        if not self.selection.selected:
            if self.gate.is_pending(BULK):
                self.gate.cancel()
            self.notify("No ports selected", "info")
            return None
        outcome = self.gate.request(BULK)
        if outcome is Outcome.CONFIRMED:
            self._execute_bulk()
        else:
            n = len(self.selection.selected)
            self.notify(f"Press again to kill {n} selected", "info")
        return outcome

    def _execute_bulk(self):
        # the killable set is taken now, not when the bulk kill was armed
        targets = []
        for ident in self.selection.ordered():
            entry = self.current_entry(ident)
            if entry is not None and not entry.is_protected and ident not in self.killing:
                targets.append(entry)
        if not targets:
            self.notify("Nothing killable in the selection", "error")
            return
        self.killing.update(e.identity for e in targets)
        self.poller.kill_many(targets, partial(self._bulk_done, targets))

    def _bulk_done(self, targets, results, error):
        try:
            if error is not None:
                self.notify(f"Bulk kill failed: {error}", "error")
                return
            ok = sum(1 for _, r in results if r.success)
            exited = any(KillFailed.classify(r.message).reason == KillFailed.ALREADY_EXITED
                         for _, r in results if not r.success)
            self.notify(f"Killed {ok}/{len(targets)} processes", "success" if ok == len(targets) else "error")
            if exited:
                self.poller.refresh_now()
            elif ok:
                self._refresh_soon()
        finally:
            for entry in targets:
                self.killing.discard(entry.identity)
            self.selection.clear()

    def _refresh_soon(self):
        self.timers.schedule(self.config["kill_refresh_delay"], self.poller.refresh_now, key="kill-refresh")

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    def on_command(self, text):
        cmd = parse_command(text)
        kind = cmd.kind

        try:
            if kind is CommandKind.REFRESH:
                self.refresh()
            elif kind is CommandKind.CLEAR:
                self.on_query("")
                self.selection.clear()
                self.gate.cancel()
            elif kind is CommandKind.ADMIN:
                self.on_elevate()
            elif kind in PANELS:
                self.panel = PANELS[kind]
            elif kind is CommandKind.KILL_PORT:
                self._kill_port(cmd.port)
            elif kind is CommandKind.EXPORT:
                self.export(cmd.format)
            else:
                port = parse_port_number(text)
                if port is not None:
                    self._kill_port(port)
                # anything else is just a search
                return cmd
        except CommandError as e:
            self.notify(str(e), "error")
            return cmd

        if kind is not CommandKind.KILL_PORT and kind is not CommandKind.CLEAR:
            self.on_query("")
        return cmd

    def _kill_port(self, port):
        entry = None
        if self.snapshot is not None and parse_port_literal(str(port)) is not None:
            entry = self.snapshot.find_port(port)
        if entry is None:
            raise CommandError(f"Port {port} is not in use")
        return self.on_kill_request(entry.identity)

    def on_elevate(self):
        if self.snapshot is not None and self.snapshot.is_privileged:
            self.notify("Already running as Administrator", "info")
            return
        self.notify("Restarting as Administrator...", "success")
        self.poller.elevate(self._elevate_done)

    def _elevate_done(self, _result, error):
        if error is not None:
            self.notify(f"Failed to restart as admin: {error}", "error")
            if not isinstance(error, ElevationError):
                debug_log(f"ELEVATE: Unexpected failure: {error!r}")
            return
        self.quit_requested = True

    def export(self, fmt="json", directory=None):
        entries = self.snapshot.entries if self.snapshot is not None else ()
        try:
            path = write_export(entries, fmt, directory or self.config["export_dir"])
        except OSError as e:
            self.notify(f"Export failed: {e}", "error")
            return None
        self.notify(f"Exported {len(entries)} ports to {path}", "success")
        return path

    def common_port_status(self):
        """[(common port dict, live entry or None)] for the configured common ports."""
        out = []
        for cp in self.config.get("common_ports") or []:
            entry = self.snapshot.find_port(cp["port"]) if self.snapshot is not None else None
            out.append((cp, entry))
        return out

    # ------------------------------------------------------------------
    # details, cancel, notices
    # ------------------------------------------------------------------
    def on_details(self, identity=None):
        identity = identity or self.selection.current()
        entry = self.current_entry(identity) if identity else None
        if entry is None:
            return
        self.details = ProcessDetails.fallback(entry)
        self.poller.details(entry.pid, partial(self._details_done, identity))

    def _details_done(self, identity, details, error):
        entry = self.current_entry(identity)
        if entry is None or self.details is None or self.details.pid != entry.pid:
            return
        if error is not None:
            debug_log(f"DETAILS: pid {entry.pid}: {error}")
            self.details = ProcessDetails.fallback(entry)
        else:
            self.details = details

    def on_cancel(self):
        """Undo the most recent thing; returns what was cancelled or None."""
        if self.gate.cancel():
            self.notify("Cancelled", "info")
            return "confirmation"
        if self.details is not None or self.panel is not None:
            self.details = None
            self.panel = None
            return "panel"
        if self.query:
            self.on_query("")
            return "query"
        if self.notice is not None or self.error is not None:
            self.dismiss_notice()
            return "notice"
        return None

    def notify(self, message, level="info"):
        if self.closed:
            return
        debug_log(f"NOTIFY: {message}")
        ttl = self.config["notice_ttl"]
        notice = Notice(message, level, self.timers.clock() + ttl)
        self.notice = notice
        self.timers.schedule(ttl, partial(self._expire_notice, notice), key="notice")

    def dismiss_notice(self):
        # the error line comes back on the next failed fetch
        self.notice = None
        self.error = None
        self.timers.cancel_key("notice")

    def _expire_notice(self, notice):
        if self.notice is notice:
            self.notice = None

    # ------------------------------------------------------------------
    # events and view
    # ------------------------------------------------------------------
    def dispatch(self, event):
        if self.closed:
            return None
        if isinstance(event, Activate):
            return self.on_activate(event.identity, event.modifier, event.index)
        if isinstance(event, NavigateDelta):
            return self.on_navigate(event.delta, event.extend)
        if isinstance(event, Confirm):
            current = self.selection.current()
            return self.on_kill_request(current) if current is not None else None
        if isinstance(event, Cancel):
            return self.on_cancel()
        if isinstance(event, SelectAll):
            return self.on_select_all()
        if isinstance(event, KillSelected):
            return self.on_bulk_kill_request()
        if isinstance(event, ShowDetails):
            return self.on_details(event.identity)
        if isinstance(event, Query):
            return self.on_query(event.text)
        if isinstance(event, Submit):
            return self.on_command(event.text)
        raise TypeError(f"unknown event: {event!r}")

    def view(self):
        removed = ()
        if self.previous is not None:
            removed = tuple(e for e in self.previous.entries
                            if self.changes.state_of(e.identity) is ChangeState.REMOVED)
        return SessionView(
            ranked_entries=self.ranked,
            scores=dict(self.scores),
            change_states=self.changes.changes(),
            removed_entries=removed,
            selection=frozenset(self.selection.selected),
            cursor=self.selection.cursor,
            pending_confirmation=self.gate.pending,
            killing=frozenset(self.killing),
            notice=self.notice,
            error=self.error,
            is_privileged=bool(self.snapshot and self.snapshot.is_privileged),
            panel=self.panel,
            details=self.details,
            query=self.query,
            loading=self.loading,
            last_updated=self.snapshot.timestamp if self.snapshot is not None else None,
            quit_requested=self.quit_requested,
        )
