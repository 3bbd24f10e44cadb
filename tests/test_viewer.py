import io
import json
import pathlib
import sys
import unittest
from datetime import datetime

ROOT = pathlib.Path(__file__).resolve().parents[1]
for p in (ROOT, ROOT / "tests"):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from rich.console import Console

from fakes import FakeClock, FakeSocket
from reconciler import Reconciler
from viewer import FleetView, ViewerSession, classify_log, read_commands


def frame(kind, data):
    return json.dumps({"type": kind, "data": data})


class ClassifyLogTests(unittest.TestCase):
    def test_levels(self):
        self.assertEqual(classify_log("[ERROR] new a exited with code 1"), "error")
        self.assertEqual(classify_log("Import FAILED"), "error")
        self.assertEqual(classify_log("[INFO] starting"), "info")
        self.assertEqual(classify_log("[DEBUG] wsl --list"), "debug")
        self.assertEqual(classify_log("plain text"), "info")


class FleetViewTests(unittest.TestCase):
    def test_log_is_capped_and_timestamped(self):
        view = FleetView(log_limit=3)
        for i in range(5):
            view.add_log(f"line {i}", now=datetime(2026, 1, 1, 12, 0, i))
        self.assertEqual([e.text for e in view.logs], ["line 2", "line 3", "line 4"])
        self.assertEqual(view.logs[-1].at, "12:00:04")

    def test_render_has_one_row_per_member(self):
        session = ViewerSession("ws://unused")
        session.handle_message(frame("list", [{"name": "a", "state": "Running"}, {"name": "b", "state": "Stopped"}]))
        table = session.view.render().renderables[0]
        self.assertEqual(table.row_count, 2)

    def test_render_shows_names_and_usage_literally(self):
        session = ViewerSession("ws://unused")
        session.handle_message(frame("list", [{"name": "[/x]", "state": "Running", "memory": "[red]hot"}]))
        out = io.StringIO()
        Console(file=out, width=120).print(session.view.render())
        self.assertIn("[/x]", out.getvalue())
        self.assertIn("[red]hot", out.getvalue())


class ViewerSessionTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.changes = 0
        self.session = ViewerSession("ws://unused", Reconciler(clock=self.clock))
        self.session.on_change = self._on_change

    def _on_change(self):
        self.changes += 1

    async def test_messages_patch_the_view(self):
        s = self.session
        s.handle_message(frame("list", [{"name": "a", "state": "Running"}]))
        s.handle_message(frame("stats", {"name": "a", "memory": "5 MB", "disk": None}))
        s.handle_message(frame("ps-log", "[INFO] hello"))
        s.handle_message("{not json")
        self.assertEqual(s.view.rows["a"].memory, "5 MB")
        self.assertEqual(s.view.logs[-1].text, "[INFO] hello")
        self.assertEqual(self.changes, 3)
        # identical snapshot: nothing to repaint
        s.handle_message(frame("list", [{"name": "a", "state": "Running", "memory": "5 MB"}]))
        self.assertEqual(self.changes, 3)

    async def test_issue_is_optimistic_and_sends(self):
        s = self.session
        s.ws = FakeSocket()
        s.handle_message(frame("list", [{"name": "a", "state": "Running"}]))
        self.assertTrue(await s.issue("stop", "a"))
        self.assertEqual(s.ws.sent, [{"type": "terminate", "name": "a"}])
        self.assertEqual(s.view.rows["a"].state, "Stopping")
        s.handle_message(frame("list", [{"name": "a", "state": "Running"}]))
        self.assertEqual(s.view.rows["a"].state, "Stopping")
        s.handle_message(frame("list", [{"name": "a", "state": "Stopped"}]))
        self.assertEqual(s.view.rows["a"].state, "Stopped")

    async def test_create_shows_placeholder_before_any_snapshot(self):
        s = self.session
        s.ws = FakeSocket()
        await s.issue("create", "fresh")
        self.assertEqual(s.view.rows["fresh"].state, "Creating")
        self.assertTrue(s.view.rows["fresh"].busy)

    async def test_issue_while_disconnected(self):
        s = self.session
        self.assertFalse(await s.issue("start", "a"))
        self.assertEqual(s.reconciler.transitions, {})
        self.assertEqual(s.view.logs[-1].level, "error")

    async def test_unknown_command(self):
        self.session.ws = FakeSocket()
        self.assertFalse(await self.session.issue("reboot", "a"))
        self.assertEqual(self.session.ws.sent, [])

    async def test_read_commands_from_stream(self):
        s = self.session
        s.ws = FakeSocket()
        await read_commands(s, io.StringIO("start a\n\nbogus\npersist b\n"))
        self.assertEqual(s.ws.sent, [{"type": "start", "name": "a"}, {"type": "persist", "name": "b"}])
        self.assertIn("usage", s.view.logs[-1].text)


if __name__ == "__main__":
    unittest.main()
