import pathlib
import sys
import unittest

ROOT = pathlib.Path(__file__).resolve().parents[1]
for p in (ROOT, ROOT / "tests"):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from fakes import FakeClock, member, stats
from models import MemberState
from reconciler import (
    Reconciler,
    Transition,
    diff_rows,
    render_row,
    summarize_disk,
    summarize_memory,
)


class RenderRowTests(unittest.TestCase):
    def test_transition_target_wins_over_member_state(self):
        row = render_row(member("a", "Stopped"), Transition("a", MemberState.STARTING, 0))
        self.assertEqual(row.state, "Starting")
        self.assertTrue(row.busy)
        self.assertFalse(row.can_start or row.can_stop or row.can_delete)

    def test_controls_only_in_stable_states(self):
        running = render_row(member("a", "Running"))
        self.assertEqual((running.can_start, running.can_stop, running.can_delete), (False, True, True))
        stopped = render_row(member("a", "Stopped"))
        self.assertEqual((stopped.can_start, stopped.can_stop, stopped.can_delete), (True, False, True))
        for state in ("Starting", "Stopping", "Creating", "Deleting"):
            row = render_row(member("a", state))
            self.assertTrue(row.busy, state)
            self.assertFalse(row.can_start or row.can_stop or row.can_delete, state)

    def test_unknown_stats_render_as_dashes(self):
        row = render_row(member("a", "Running", memory="--"))
        self.assertEqual((row.memory, row.disk), ("--", "--"))


class SummaryTests(unittest.TestCase):
    def test_memory_from_free_output(self):
        raw = "               total        used        free\nMem:           7950         512        7000\nSwap: 2048 0 2048"
        self.assertEqual(summarize_memory(raw), "512 MB")

    def test_memory_passthrough(self):
        self.assertEqual(summarize_memory("1.2GB"), "1.2GB")

    def test_disk_from_root_line(self):
        raw = "Filesystem Size Used Avail Use% Mounted on\n/dev/sdc 251G 3.1G 235G 2% /\nnone 3.9G 0 3.9G 0% /mnt/wsl"
        self.assertEqual(summarize_disk(raw), "3.1G")

    def test_disk_passthrough(self):
        self.assertEqual(summarize_disk("3.1G"), "3.1G")


class DiffTests(unittest.TestCase):
    def test_update_carries_only_changed_fields(self):
        before = {"a": render_row(member("a", "Stopped"))}
        after = {"a": render_row(member("a", "Running"))}
        (patch,) = diff_rows(before, after)
        self.assertEqual(patch.op, "update")
        self.assertEqual(set(patch.changes), {"state", "can_start", "can_stop"})

    def test_add_and_remove(self):
        before = {"a": render_row(member("a", "Stopped"))}
        after = {"b": render_row(member("b", "Stopped"))}
        ops = sorted((p.op, p.name) for p in diff_rows(before, after))
        self.assertEqual(ops, [("add", "b"), ("remove", "a")])


class ReconcilerTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.rec = Reconciler(clock=self.clock, grace_period=120.0)

    def test_immediate_feedback_placeholder(self):
        patches = self.rec.begin("x", "create")
        self.assertEqual([(p.op, p.name) for p in patches], [("add", "x")])
        row = self.rec.row("x")
        self.assertEqual(row.state, "Creating")
        self.assertTrue(row.busy)

    def test_begin_on_existing_row_marks_busy(self):
        self.rec.apply_snapshot([member("a", "Running")])
        (patch,) = self.rec.begin("a", "terminate")
        self.assertEqual(patch.op, "update")
        self.assertEqual(patch.changes["state"], "Stopping")
        self.assertTrue(patch.changes["busy"])

    def test_one_transition_per_name(self):
        self.rec.begin("a", "start")
        self.rec.begin("a", "terminate")
        self.assertEqual(len(self.rec.transitions), 1)
        self.assertEqual(self.rec.transitions["a"].target, MemberState.STOPPING)

    def test_persist_creates_no_transition(self):
        self.assertEqual(self.rec.begin("a", "persist"), [])
        self.assertEqual(self.rec.transitions, {})

    def test_no_flicker_on_stale_snapshot(self):
        self.rec.apply_snapshot([member("x", "Stopped")])
        self.rec.begin("x", "start")
        self.clock.advance(0.5)
        for state in ("Stopped", "Stopping"):
            self.assertEqual(self.rec.apply_snapshot([member("x", state)]), [])
            self.assertEqual(self.rec.displayed_state("x"), MemberState.STARTING)

    def test_start_arrival(self):
        self.rec.begin("x", "start")
        self.rec.apply_snapshot([member("x", "Running")])
        self.assertNotIn("x", self.rec.transitions)
        self.assertEqual(self.rec.row("x").state, "Running")
        self.assertFalse(self.rec.row("x").busy)

    def test_stop_arrival(self):
        self.rec.apply_snapshot([member("x", "Running")])
        self.rec.begin("x", "terminate")
        self.rec.apply_snapshot([member("x", "Running")])
        self.assertIn("x", self.rec.transitions)
        self.rec.apply_snapshot([member("x", "Stopped")])
        self.assertNotIn("x", self.rec.transitions)
        self.assertEqual(self.rec.row("x").state, "Stopped")

    def test_create_arrives_when_running(self):
        self.rec.begin("x", "create")
        self.rec.apply_snapshot([member("x", "Stopped")])
        self.assertEqual(self.rec.displayed_state("x"), MemberState.CREATING)
        self.rec.apply_snapshot([member("x", "Running")])
        self.assertEqual(self.rec.displayed_state("x"), MemberState.RUNNING)

    def test_grace_period_for_absent_member(self):
        self.rec.begin("x", "start")
        self.clock.advance(119)
        self.rec.apply_snapshot([])
        self.assertIsNotNone(self.rec.row("x"))
        self.clock.advance(2)
        patches = self.rec.apply_snapshot([])
        self.assertEqual([(p.op, p.name) for p in patches], [("remove", "x")])
        self.assertIsNone(self.rec.row("x"))
        self.assertNotIn("x", self.rec.transitions)

    def test_delete_success_removes_immediately(self):
        self.rec.apply_snapshot([member("x", "Stopped")])
        self.rec.begin("x", "delete")
        self.clock.advance(0.1)
        self.rec.apply_snapshot([])
        self.assertIsNone(self.rec.row("x"))
        self.assertEqual(self.rec.transitions, {})

    def test_absent_without_transition_is_removed(self):
        self.rec.apply_snapshot([member("a", "Running"), member("b", "Stopped")])
        self.rec.apply_snapshot([member("a", "Running")])
        self.assertEqual([r.name for r in self.rec.rows()], ["a"])

    def test_present_transition_settles_after_grace_period(self):
        self.rec.apply_snapshot([member("x", "Stopped")])
        self.rec.begin("x", "start")
        self.clock.advance(121)
        self.rec.apply_snapshot([member("x", "Stopped")])
        self.assertEqual(self.rec.row("x").state, "Stopped")
        self.assertTrue(self.rec.row("x").can_start)

    def test_pending_delete_never_expires_while_present(self):
        self.rec.apply_snapshot([member("x", "Stopped")])
        self.rec.begin("x", "delete")
        self.clock.advance(600)
        self.rec.apply_snapshot([member("x", "Stopped")])
        self.assertEqual(self.rec.displayed_state("x"), MemberState.DELETING)

    def test_idempotent_snapshot(self):
        snap = [member("a", "Running", memory="1 MB"), member("b", "Stopped")]
        self.assertEqual(len(self.rec.apply_snapshot(snap)), 2)
        self.assertEqual(self.rec.apply_snapshot(snap), [])

    def test_scenario_stale_snapshot_after_start(self):
        self.rec.apply_snapshot([member("a", "Stopped")])
        self.rec.begin("a", "start")
        self.rec.apply_snapshot([member("a", "Stopped")])
        row = self.rec.row("a")
        self.assertEqual(row.state, "Starting")
        self.assertFalse(row.can_start or row.can_stop or row.can_delete)

    def test_stats_update_fields_independently(self):
        self.rec.apply_snapshot([member("a", "Running")])
        self.rec.apply_stats(stats("a", memory="512 MB"))
        self.rec.apply_stats(stats("a", disk="3.1G"))
        row = self.rec.row("a")
        self.assertEqual((row.memory, row.disk), ("512 MB", "3.1G"))

    def test_stats_for_unknown_name_is_noop(self):
        self.assertEqual(self.rec.apply_stats(stats("ghost", memory="1 MB")), [])
        self.assertIsNone(self.rec.row("ghost"))

    def test_snapshot_without_stats_keeps_last_known(self):
        self.rec.apply_snapshot([member("a", "Running")])
        self.rec.apply_stats(stats("a", memory="512 MB"))
        self.assertEqual(self.rec.apply_snapshot([member("a", "Running")]), [])
        self.assertEqual(self.rec.row("a").memory, "512 MB")

    def test_apply_event_dispatch(self):
        self.rec.apply_event({"type": "list", "data": [{"name": "a", "state": "Running"}]})
        self.rec.apply_event({"type": "stats", "data": {"name": "a", "memory": "9 MB", "disk": None}})
        self.assertEqual(self.rec.row("a").memory, "9 MB")
        self.assertEqual(self.rec.apply_event({"type": "list", "data": [{"name": "a", "state": "Exploded"}]}), [])
        self.assertEqual(self.rec.apply_event({"type": "list", "data": None}), [])
        self.assertEqual(self.rec.apply_event({"type": "ps-log", "data": "hi"}), [])
        self.assertIsNotNone(self.rec.row("a"))

    def test_reconnect_snapshot_reuses_transitions(self):
        self.rec.apply_snapshot([member("a", "Running")])
        self.rec.begin("a", "terminate")
        # channel drops; the fresh snapshot on reconnect is still stale
        self.rec.apply_snapshot([member("a", "Running")])
        self.assertEqual(self.rec.displayed_state("a"), MemberState.STOPPING)
        self.rec.apply_snapshot([member("a", "Stopped")])
        self.assertEqual(self.rec.displayed_state("a"), MemberState.STOPPED)


if __name__ == "__main__":
    unittest.main()
