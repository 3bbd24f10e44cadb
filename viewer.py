"""
Terminal viewer for the fleet dashboard.

Holds its own Reconciler, renders the fleet table with rich and reads
commands from stdin, one per line:

    create <name> | start <name> | daemon <name> | stop <name>
    delete <name> | persist <name> | unpersist <name>

Transitions live in this process only. They survive a dropped channel, not a
restart of the viewer.
"""

import asyncio
import json
import logging
import sys
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, Optional

import websockets
from rich.console import Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from models import COMMAND_TYPES
from reconciler import DisplayRow, Patch, Reconciler

log = logging.getLogger(__name__)

LOG_LIMIT = 100
COMMAND_ALIASES = {"stop": "terminate"}


def classify_log(text: str) -> str:
    if "[ERROR]" in text or "FAILED" in text:
        return "error"
    if "[DEBUG]" in text:
        return "debug"
    return "info"


@dataclass
class LogEntry:
    at: str
    level: str
    text: str


class FleetView:
    """Rows as currently shown, kept in sync by applying reconciler patches."""

    def __init__(self, log_limit: int = LOG_LIMIT):
        self.rows: Dict[str, DisplayRow] = {}
        self.logs: Deque[LogEntry] = deque(maxlen=log_limit)

    def apply(self, patches: Iterable[Patch]) -> bool:
        changed = False
        for patch in patches:
            changed = True
            if patch.op == "remove":
                self.rows.pop(patch.name, None)
            else:
                self.rows[patch.name] = patch.row
        return changed

    def add_log(self, text: str, now: Optional[datetime] = None):
        at = (now or datetime.now()).strftime("%H:%M:%S")
        self.logs.append(LogEntry(at=at, level=classify_log(text), text=text))

    def render(self, log_lines: int = 12) -> Group:
        table = Table(title="WSL Fleet", expand=True, title_style="bold magenta")
        table.add_column("NAME", no_wrap=True)
        table.add_column("STATE")
        table.add_column("MEMORY", justify="right")
        table.add_column("DISK", justify="right")
        table.add_column("CONTROLS")
        for row in self.rows.values():
            if row.state == "Running":
                style = "green"
            elif row.busy:
                style = "yellow blink"
            else:
                style = "dim"
            controls = Text()
            for label, enabled in (("start", row.can_start), ("stop", row.can_stop), ("delete", row.can_delete)):
                controls.append(label + " ", style="bold" if enabled else "dim strike")
            # plain Text: names and usage come from the tool and may hold markup characters
            table.add_row(Text(row.name), Text(row.state, style=style), Text(row.memory), Text(row.disk), controls)

        colors = {"error": "red", "info": "white", "debug": "dim"}
        tail = Text()
        for entry in list(self.logs)[-log_lines:]:
            tail.append(f"[{entry.at}] {entry.text}\n", style=colors[entry.level])
        return Group(table, tail)


class ViewerSession:
    def __init__(self, url: str, reconciler: Optional[Reconciler] = None,
                 view: Optional[FleetView] = None, reconnect_delay: float = 2.0):
        self.url = url
        self.reconciler = reconciler or Reconciler()
        self.view = view or FleetView()
        self.reconnect_delay = reconnect_delay
        self.on_change: Optional[Callable[[], None]] = None
        self.ws = None
        self._stopped = False

    def _changed(self):
        if self.on_change is not None:
            self.on_change()

    def handle_message(self, raw) -> None:
        """One inbound frame, processed to completion."""
        try:
            message = json.loads(raw)
        except ValueError:
            log.debug(f"unreadable frame: {str(raw)[:80]!r}")
            return
        if not isinstance(message, dict):
            return
        if message.get("type") == "ps-log":
            self.view.add_log(str(message.get("data", "")))
            self._changed()
            return
        if self.view.apply(self.reconciler.apply_event(message)):
            self._changed()

    async def issue(self, command_type: str, name: str) -> bool:
        command_type = COMMAND_ALIASES.get(command_type, command_type)
        if command_type not in COMMAND_TYPES:
            self.view.add_log(f"[ERROR] unknown command {command_type!r}")
            self._changed()
            return False
        if self.ws is None:
            self.view.add_log(f"[ERROR] not connected, {command_type} {name} not sent")
            self._changed()
            return False
        self.view.apply(self.reconciler.begin(name, command_type))
        self._changed()
        await self.ws.send(json.dumps({"type": command_type, "name": name}))
        return True

    async def run(self):
        while not self._stopped:
            try:
                async with websockets.connect(self.url) as ws:
                    self.ws = ws
                    log.info(f"Connected to {self.url}")
                    async for raw in ws:
                        self.handle_message(raw)
            except (OSError, websockets.exceptions.WebSocketException) as e:
                log.info(f"Channel lost: {e}")
            finally:
                self.ws = None
            if self._stopped:
                break
            await asyncio.sleep(self.reconnect_delay)

    def stop(self):
        self._stopped = True


async def read_commands(session: ViewerSession, stream=None):
    stream = stream or sys.stdin
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, stream.readline)
        if not line:
            return
        parts = line.split()
        if not parts:
            continue
        if len(parts) != 2:
            session.view.add_log("[ERROR] usage: <command> <name>")
            session._changed()
            continue
        await session.issue(parts[0], parts[1])


async def watch(url: str, reconnect_delay: float = 2.0, grace_period: float = 120.0):
    session = ViewerSession(url, Reconciler(grace_period=grace_period), reconnect_delay=reconnect_delay)
    with Live(session.view.render(), refresh_per_second=4) as live:
        session.on_change = lambda: live.update(session.view.render())
        await asyncio.gather(session.run(), read_commands(session))
