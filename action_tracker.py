"""
Action tracker
Turns viewer commands into control-plane step chains, streams their output to
the hub as ps-log lines and keeps each name marked active until a cooldown
after the last step exits.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

import redis
from pydantic import ValidationError

import action_journal as AJ
from broadcast import BroadcastHub
from control_plane import ControlPlane, ControlPlaneError, OutputLine, ProcessSpawnError
from models import Command

log = logging.getLogger(__name__)

# command type -> tool commands, run one after another against the same name
COMMAND_CHAINS: Dict[str, Tuple[str, ...]] = {
    "create":    ("new", "daemon"),
    "start":     ("daemon",),
    "daemon":    ("daemon",),
    "terminate": ("stop", "unpersist"),
    "delete":    ("delete",),
    "persist":   ("persist",),
    "unpersist": ("unpersist",),
}


@dataclass
class Action:
    name: str
    kind: str
    started_at: float = field(default_factory=time.time)
    active: bool = True
    cooldown: Optional[asyncio.TimerHandle] = None
    journal_id: str = ""


class ActionTracker:
    def __init__(self, control_plane: ControlPlane, hub: BroadcastHub,
                 refresh: Optional[Callable[[], Awaitable]] = None,
                 cooldown: float = 5.0, refresh_delay: float = 1.0,
                 journal: Optional[redis.Redis] = None):
        self.control_plane = control_plane
        self.hub = hub
        self.refresh = refresh
        self.cooldown = cooldown
        self.refresh_delay = refresh_delay
        self.journal = journal
        self.actions: Dict[str, Action] = {}
        self._tasks: Set[asyncio.Task] = set()

    def is_active(self, name: str) -> bool:
        action = self.actions.get(name)
        return bool(action and action.active)

    def parse(self, raw) -> Optional[Command]:
        """Validate an inbound message; malformed ones are logged and dropped."""
        try:
            data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            return Command.model_validate(data)
        except (ValueError, ValidationError) as e:
            log.warning(f"Ignoring malformed command {str(raw)[:120]!r}: {str(e).splitlines()[0]}")
            return None

    def handle(self, raw) -> Optional[asyncio.Task]:
        command = self.parse(raw)
        if command is None:
            return None
        return self.dispatch(command)

    def dispatch(self, command: Command) -> asyncio.Task:
        log.info(f"Action: {command.type} on {command.name}")
        chain = COMMAND_CHAINS[command.type]

        prev = self.actions.get(command.name)
        if prev and prev.cooldown:
            prev.cooldown.cancel()
        action = Action(name=command.name, kind=command.type)
        self.actions[command.name] = action
        action.journal_id = self._journal_start(action, chain)

        task = self._spawn(self._run_chain(action, chain))
        if self.refresh is not None:
            self._spawn(self._delayed_refresh())
        return task

    async def _run_chain(self, action: Action, chain: Tuple[str, ...]):
        status = "done"
        try:
            for step in chain:
                try:
                    code = await self.control_plane.stream(step, action.name, on_line=self._on_line)
                except ProcessSpawnError as e:
                    self.hub.publish_log(f"[ERROR] {step} {action.name}: {e}")
                    self._journal_step(action, step, None)
                    status = "failed"
                    break
                except ControlPlaneError as e:
                    # the step ran but its output could not be read; it was killed
                    self.hub.publish_log(f"[ERROR] {step} {action.name}: {e}")
                    self._journal_step(action, step, -1)
                    status = "failed"
                    continue
                self._journal_step(action, step, code)
                if code != 0:
                    self.hub.publish_log(f"[ERROR] {step} {action.name} exited with code {code}")
                    status = "failed"
            if self.refresh is not None:
                await self.refresh()
        finally:
            self._journal_complete(action, status)
            loop = asyncio.get_running_loop()
            action.cooldown = loop.call_later(self.cooldown, self._clear, action)

    def _clear(self, action: Action):
        action.active = False
        action.cooldown = None
        # a newer action for the same name owns the slot now
        if self.actions.get(action.name) is action:
            del self.actions[action.name]
            log.debug(f"{action.name} released after cooldown")

    async def _delayed_refresh(self):
        await asyncio.sleep(self.refresh_delay)
        await self.refresh()

    def _on_line(self, line: OutputLine):
        if line.structured:
            log.debug(f"structured output: {line.text[:200]}")
            return
        self.hub.publish_log(line.text)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Action task failed", exc_info=task.exception())

    async def shutdown(self):
        for action in self.actions.values():
            if action.cooldown:
                action.cooldown.cancel()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self.actions.clear()

    # ── journal (best effort) ──────────────────────────────────────────────────

    def _journal_start(self, action: Action, chain) -> str:
        if self.journal is None:
            return ""
        try:
            return AJ.record_start(self.journal, action.name, action.kind, list(chain))
        except redis.exceptions.RedisError as e:
            log.debug(f"Journal start error: {e}")
            return ""

    def _journal_step(self, action: Action, step: str, code: Optional[int]):
        if self.journal is None or not action.journal_id:
            return
        try:
            AJ.record_step(self.journal, action.journal_id, step, code)
        except redis.exceptions.RedisError as e:
            log.debug(f"Journal step error: {e}")

    def _journal_complete(self, action: Action, status: str):
        if self.journal is None or not action.journal_id:
            return
        try:
            AJ.record_complete(self.journal, action.journal_id, status=status)
        except redis.exceptions.RedisError as e:
            log.debug(f"Journal complete error: {e}")
