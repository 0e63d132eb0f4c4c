import os
import tempfile
import unittest

from portwarden.confirm import BULK, Outcome
from portwarden.errors import TransportError
from portwarden.events import Activate, Cancel, Confirm, KillSelected, Modifier, Query, Submit
from portwarden.inventory import ACCESS_DENIED_MSG
from portwarden.models import ChangeState, KillResult, ProcessDetails
from portwarden.session import SessionController
from support import FakeClock, FakeInventory, ImmediateExecutor, ManualExecutor, details, entry, snap

TEST_CONFIG = {
    "poll_interval": 2.0,
    "change_ttl": 3.0,
    "confirm_timeout": 3.0,
    "notice_ttl": 3.0,
    "kill_refresh_delay": 0.5,
}

A = entry(3000, 10, "node")
B = entry(8080, 20, "java")
C = entry(5432, 30, "postgres")
SSHD = entry(22, 40, "sshd", protected=True)


class SessionTestCase(unittest.TestCase):
    executor_class = ImmediateExecutor

    def setUp(self):
        self.clock = FakeClock()
        self.inventory = FakeInventory()
        self.executor = self.executor_class()
        self.ctrl = SessionController(self.inventory, executor=self.executor,
                                      clock=self.clock, config=dict(TEST_CONFIG))

    def tearDown(self):
        self.ctrl.shutdown()

    def start(self, snapshot):
        self.inventory.snapshots.append(snapshot)
        self.ctrl.start()
        self.ctrl.pump()

    def poll(self, snapshot):
        self.inventory.snapshots.append(snapshot)
        self.ctrl.refresh()
        self.ctrl.pump()

    def notice(self):
        n = self.ctrl.view().notice
        return n.message if n else None


class TestRefresh(SessionTestCase):
    def test_first_poll_has_no_change_marks(self):
        self.start(snap(A, B))
        view = self.ctrl.view()
        self.assertEqual(view.ranked_entries, (A, B))
        self.assertEqual(view.change_states, {})
        self.assertFalse(view.loading)

    def test_new_and_removed_marks(self):
        self.start(snap(A, B))
        self.poll(snap(A, C))
        view = self.ctrl.view()
        self.assertEqual(view.change_states, {
            C.identity: ChangeState.NEW,
            B.identity: ChangeState.REMOVED,
        })
        self.assertEqual(view.removed_entries, (B,))

        self.clock.advance(3.0)
        self.poll(snap(A, C))
        self.assertEqual(self.ctrl.view().change_states, {})

    def test_transport_error_keeps_last_snapshot(self):
        self.start(snap(A, B))
        self.inventory.fetch_error = TransportError("permission denied reading sockets")
        self.ctrl.refresh()
        self.ctrl.pump()
        view = self.ctrl.view()
        self.assertEqual(view.ranked_entries, (A, B))
        self.assertEqual(view.error, "permission denied reading sockets")
        self.assertTrue(self.notice().startswith("Failed to read ports"))

        self.inventory.fetch_error = None
        self.poll(snap(A))
        self.assertIsNone(self.ctrl.view().error)

    def test_transport_error_can_be_dismissed(self):
        self.start(snap(A))
        self.inventory.fetch_error = TransportError("socket table unreadable")
        self.ctrl.refresh()
        self.ctrl.pump()
        self.assertEqual(self.ctrl.on_cancel(), "notice")
        view = self.ctrl.view()
        self.assertIsNone(view.error)
        self.assertIsNone(view.notice)
        self.assertEqual(view.ranked_entries, (A,))

    def test_poll_timer_fetches_again(self):
        self.start(snap(A))
        self.inventory.snapshots.append(snap(A, B))
        self.clock.advance(2.0)
        self.ctrl.pump()
        self.ctrl.pump()
        self.assertEqual(self.ctrl.view().ranked_entries, (A, B))


class TestSearchAndSelection(SessionTestCase):
    def test_port_query(self):
        self.start(snap(A))
        self.ctrl.dispatch(Query("300"))
        view = self.ctrl.view()
        self.assertEqual(view.ranked_entries, (A,))
        self.assertGreaterEqual(view.scores[A.identity], 100)
        self.ctrl.on_query("xyz")
        self.assertEqual(self.ctrl.view().ranked_entries, ())

    def test_selection_is_subset_after_refresh(self):
        self.start(snap(A, B, C))
        self.ctrl.on_select_all()
        self.poll(snap(A, C))
        self.assertEqual(self.ctrl.view().selection, {A.identity, C.identity})

    def test_query_narrows_selection_view(self):
        self.start(snap(A, B, C))
        self.ctrl.dispatch(Activate(B.identity, 1, Modifier.PLAIN))
        self.ctrl.on_query("node")
        self.assertEqual(self.ctrl.view().selection, frozenset())

    def test_activate_unknown_identity(self):
        self.start(snap(A))
        self.assertFalse(self.ctrl.on_activate((1, 1)))


class TestKill(SessionTestCase):
    def test_kill_needs_two_presses(self):
        self.start(snap(A, B))
        self.assertIs(self.ctrl.on_kill_request(A.identity), Outcome.PENDING)
        self.assertEqual(self.notice(), "Press again to kill node on port 3000")
        self.assertEqual(self.inventory.kills, [])

        self.assertIs(self.ctrl.on_kill_request(A.identity), Outcome.CONFIRMED)
        self.assertEqual(self.inventory.kills, [10])
        self.assertIn(A.identity, self.ctrl.view().killing)
        # a third press while the kill is in flight does nothing
        self.assertIsNone(self.ctrl.on_kill_request(A.identity))

        self.ctrl.pump()
        self.assertEqual(self.inventory.kills, [10])
        self.assertEqual(self.notice(), "Port 3000 freed (killed node)")
        self.assertEqual(self.ctrl.view().killing, frozenset())

    def test_refreshes_shortly_after_kill(self):
        self.start(snap(A, B))
        self.ctrl.on_query("node")
        self.ctrl.on_kill_request(A.identity)
        self.ctrl.on_kill_request(A.identity)
        self.inventory.snapshots.append(snap(B))
        self.ctrl.pump()
        self.assertEqual(self.ctrl.view().query, "")
        self.clock.advance(0.5)
        self.ctrl.pump()
        self.ctrl.pump()
        self.assertEqual(self.ctrl.view().ranked_entries, (B,))

    def test_switching_target_kills_nothing(self):
        self.start(snap(A, B))
        self.ctrl.on_kill_request(A.identity)
        self.assertIs(self.ctrl.on_kill_request(B.identity), Outcome.REPLACED)
        self.assertEqual(self.ctrl.view().pending_confirmation.token, B.identity)
        self.ctrl.pump()
        self.assertEqual(self.inventory.kills, [])

    def test_confirmation_times_out(self):
        self.start(snap(A))
        self.ctrl.on_kill_request(A.identity)
        self.clock.advance(3.0)
        self.ctrl.pump()
        self.assertIsNone(self.ctrl.view().pending_confirmation)
        self.assertIs(self.ctrl.on_kill_request(A.identity), Outcome.PENDING)

    def test_protected_entry_is_rejected(self):
        self.start(snap(A, SSHD))
        self.assertIsNone(self.ctrl.on_kill_request(SSHD.identity))
        self.assertEqual(self.notice(), "Cannot kill protected process: sshd")
        self.assertIsNone(self.ctrl.view().pending_confirmation)
        self.assertEqual(self.inventory.kills, [])

    def test_pending_entry_vanishing_cancels_confirmation(self):
        self.start(snap(A, B))
        self.ctrl.on_kill_request(A.identity)
        # port 3000 is now held by a different process
        self.poll(snap(entry(3000, 11), B))
        self.assertIsNone(self.ctrl.view().pending_confirmation)
        self.assertIsNone(self.ctrl.on_kill_request(A.identity))
        self.assertEqual(self.notice(), "Port 3000 is no longer in use")
        self.assertEqual(self.inventory.kills, [])

    def test_already_exited_refreshes(self):
        self.start(snap(A, B))
        self.inventory.kill_results[10] = KillResult(False, "Process 10 not found (already exited)", 3000)
        self.inventory.snapshots.append(snap(B))
        self.ctrl.on_kill_request(A.identity)
        self.ctrl.on_kill_request(A.identity)
        self.ctrl.pump()
        self.ctrl.pump()
        self.assertEqual(self.ctrl.view().ranked_entries, (B,))
        self.assertIn("already exited", self.notice())

    def test_access_denied_suggests_admin(self):
        self.start(snap(A))
        self.inventory.kill_results[10] = KillResult(False, ACCESS_DENIED_MSG, 3000)
        self.ctrl.on_kill_request(A.identity)
        self.ctrl.on_kill_request(A.identity)
        self.ctrl.pump()
        self.assertTrue(self.notice().endswith("Type 'admin' to elevate."))

    def test_kill_exception_is_reported(self):
        self.start(snap(A))
        self.inventory.kill_results[10] = OSError("boom")
        self.ctrl.on_kill_request(A.identity)
        self.ctrl.on_kill_request(A.identity)
        self.ctrl.pump()
        self.assertEqual(self.notice(), "boom")
        self.assertEqual(self.ctrl.view().killing, frozenset())

    def test_confirm_event_uses_cursor(self):
        self.start(snap(A, B))
        self.ctrl.dispatch(Confirm())
        self.ctrl.dispatch(Confirm())
        self.assertEqual(self.inventory.kills, [10])


class TestBulkKill(SessionTestCase):
    def test_protected_members_are_skipped(self):
        self.start(snap(A, SSHD))
        self.ctrl.on_activate(A.identity)
        self.ctrl.on_activate(SSHD.identity, Modifier.TOGGLE)
        self.assertIs(self.ctrl.dispatch(KillSelected()), Outcome.PENDING)
        self.assertEqual(self.notice(), "Press again to kill 2 selected")
        self.assertIs(self.ctrl.view().pending_confirmation.token, BULK)

        self.assertIs(self.ctrl.dispatch(KillSelected()), Outcome.CONFIRMED)
        self.ctrl.pump()
        self.assertEqual(self.inventory.kills, [10])
        self.assertEqual(self.notice(), "Killed 1/1 processes")
        self.assertEqual(self.ctrl.view().selection, frozenset())

    def test_killable_set_is_taken_at_confirmation(self):
        self.start(snap(A, B, C))
        self.ctrl.on_select_all()
        self.ctrl.on_bulk_kill_request()
        self.ctrl.on_activate(B.identity, Modifier.TOGGLE)
        self.ctrl.on_activate(C.identity, Modifier.TOGGLE)
        self.assertIs(self.ctrl.on_bulk_kill_request(), Outcome.CONFIRMED)
        self.ctrl.pump()
        self.assertEqual(self.inventory.kills, [10])
        self.assertEqual(self.notice(), "Killed 1/1 processes")

    def test_entry_gone_between_presses_is_skipped(self):
        self.start(snap(A, B))
        self.ctrl.on_select_all()
        self.ctrl.on_bulk_kill_request()
        self.poll(snap(A))
        self.assertIs(self.ctrl.on_bulk_kill_request(), Outcome.CONFIRMED)
        self.ctrl.pump()
        self.assertEqual(self.inventory.kills, [10])
        self.assertEqual(self.notice(), "Killed 1/1 processes")

    def test_emptied_selection_cancels_armed_bulk(self):
        self.start(snap(A, B))
        self.ctrl.on_activate(A.identity)
        self.ctrl.on_bulk_kill_request()
        self.poll(snap(B))
        self.assertIs(self.ctrl.view().pending_confirmation.token, BULK)
        self.assertIsNone(self.ctrl.on_bulk_kill_request())
        self.assertIsNone(self.ctrl.view().pending_confirmation)
        self.assertEqual(self.notice(), "No ports selected")
        self.assertEqual(self.inventory.kills, [])

    def test_empty_selection(self):
        self.start(snap(A))
        self.assertIsNone(self.ctrl.on_bulk_kill_request())
        self.assertEqual(self.notice(), "No ports selected")

    def test_partial_failure_counts(self):
        self.start(snap(A, B, C))
        self.inventory.kill_results[20] = OSError("Access is denied")
        self.ctrl.on_select_all()
        self.ctrl.on_bulk_kill_request()
        self.ctrl.on_bulk_kill_request()
        self.ctrl.pump()
        self.assertEqual(sorted(self.inventory.kills), [10, 20, 30])
        self.assertEqual(self.notice(), "Killed 2/3 processes")


class TestCommands(SessionTestCase):
    def test_kill_port_not_in_use(self):
        self.start(snap(A))
        self.ctrl.dispatch(Submit("kill 9999"))
        self.assertEqual(self.notice(), "Port 9999 is not in use")
        self.assertEqual(self.inventory.kills, [])

    def test_out_of_range_port_is_not_in_use(self):
        self.start(snap(A))
        self.ctrl.on_command("kill 70000")
        self.assertEqual(self.notice(), "Port 70000 is not in use")
        self.ctrl.on_command("99999")
        self.assertEqual(self.notice(), "Port 99999 is not in use")
        self.assertIsNone(self.ctrl.view().pending_confirmation)
        self.assertEqual(self.inventory.kills, [])

    def test_kill_port_goes_through_confirmation(self):
        self.start(snap(A, B))
        self.ctrl.on_command("kill 8080")
        self.assertEqual(self.inventory.kills, [])
        self.ctrl.on_command("kill 8080")
        self.assertEqual(self.inventory.kills, [20])

    def test_port_literal_kills(self):
        self.start(snap(A))
        self.ctrl.on_command("3000")
        self.ctrl.on_command("3000")
        self.assertEqual(self.inventory.kills, [10])

    def test_unknown_text_stays_a_search(self):
        self.start(snap(A, B))
        self.ctrl.on_query("nod")
        self.ctrl.on_command("nod")
        self.assertEqual(self.ctrl.view().query, "nod")
        self.assertEqual(self.inventory.kills, [])

    def test_panels_and_clear(self):
        self.start(snap(A, B))
        self.ctrl.on_command("help")
        self.assertEqual(self.ctrl.view().panel, "help")
        self.ctrl.on_command("settings")
        self.assertEqual(self.ctrl.view().panel, "settings")

        self.ctrl.on_select_all()
        self.ctrl.on_query("java")
        self.ctrl.on_command("clear")
        view = self.ctrl.view()
        self.assertEqual(view.query, "")
        self.assertEqual(view.selection, frozenset())

    def test_admin_restarts_elevated(self):
        self.start(snap(A))
        self.ctrl.on_command("admin")
        self.ctrl.pump()
        self.assertEqual(self.inventory.elevated, 1)
        self.assertTrue(self.ctrl.view().quit_requested)

    def test_admin_when_already_privileged(self):
        self.start(snap(A, privileged=True))
        self.ctrl.on_command("sudo")
        self.assertEqual(self.inventory.elevated, 0)
        self.assertEqual(self.notice(), "Already running as Administrator")
        self.assertTrue(self.ctrl.view().is_privileged)

    def test_export(self):
        self.start(snap(A, B))
        with tempfile.TemporaryDirectory() as tmp:
            path = self.ctrl.export("csv", tmp)
            self.assertTrue(os.path.exists(path))
            self.assertEqual(self.notice(), f"Exported 2 ports to {path}")

    def test_export_command_uses_configured_dir(self):
        with tempfile.TemporaryDirectory() as tmp:
            self.ctrl.config["export_dir"] = tmp
            self.start(snap(A))
            self.ctrl.on_command("export json")
            self.assertEqual([f[-5:] for f in os.listdir(tmp)], [".json"])

    def test_common_port_status(self):
        self.start(snap(A))
        status = dict((cp["port"], e) for cp, e in self.ctrl.common_port_status())
        self.assertEqual(status[3000], A)
        self.assertIsNone(status[8080])


class TestDetailsAndCancel(SessionTestCase):
    executor_class = ManualExecutor

    def start(self, snapshot):
        self.inventory.snapshots.append(snapshot)
        self.ctrl.start()
        self.executor.run_all()
        self.ctrl.pump()

    def test_details_fallback_then_real(self):
        self.start(snap(A))
        self.inventory.details[10] = details(10)
        self.ctrl.on_details(A.identity)
        self.assertEqual(self.ctrl.view().details, ProcessDetails.fallback(A))
        self.executor.run_all()
        self.ctrl.pump()
        self.assertEqual(self.ctrl.view().details, details(10))

    def test_details_lookup_failure_keeps_fallback(self):
        self.start(snap(A))
        self.ctrl.on_details()
        self.executor.run_all()
        self.ctrl.pump()
        self.assertEqual(self.ctrl.view().details, ProcessDetails.fallback(A))

    def test_cancel_order(self):
        self.start(snap(A))
        self.ctrl.on_command("help")
        self.ctrl.on_query("node")
        self.ctrl.on_kill_request(A.identity)
        self.assertEqual(self.ctrl.dispatch(Cancel()), "confirmation")
        self.assertEqual(self.ctrl.on_cancel(), "panel")
        self.assertEqual(self.ctrl.on_cancel(), "query")
        self.assertEqual(self.ctrl.on_cancel(), "notice")
        self.assertIsNone(self.ctrl.on_cancel())

    def test_notice_expires(self):
        self.start(snap(A))
        self.ctrl.notify("hello")
        self.clock.advance(3.0)
        self.ctrl.pump()
        self.assertIsNone(self.ctrl.view().notice)

    def test_shutdown_stops_everything(self):
        self.start(snap(A))
        self.ctrl.on_kill_request(A.identity)
        self.ctrl.on_kill_request(A.identity)
        self.ctrl.shutdown()
        self.assertEqual(len(self.ctrl.timers), 0)

        self.executor.run_all()
        self.clock.advance(10.0)
        self.ctrl.pump()
        self.assertNotIn("freed", self.notice())
        self.assertIsNone(self.ctrl.on_kill_request(A.identity))
        self.assertIsNone(self.ctrl.dispatch(Confirm()))
        self.assertEqual(self.executor.pending, [])

    def test_unknown_event(self):
        with self.assertRaises(TypeError):
            self.ctrl.dispatch(object())


if __name__ == "__main__":
    unittest.main()
