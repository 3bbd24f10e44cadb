"""
Polling monitor
Every POLL_INTERVAL seconds: one fleet snapshot, then stats for every running
member. Both go out on the broadcast hub. Failures only skip data.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from broadcast import BroadcastHub
from control_plane import ControlPlane, ControlPlaneError
from models import FleetMember, MemberState

log = logging.getLogger(__name__)


class PollingMonitor:
    def __init__(self, control_plane: ControlPlane, hub: BroadcastHub,
                 interval: float = 3.0, is_active: Optional[Callable[[str], bool]] = None):
        self.control_plane = control_plane
        self.hub = hub
        self.interval = interval
        self.is_active = is_active or (lambda name: False)
        self._last_states: Dict[str, MemberState] = {}
        self._task: Optional[asyncio.Task] = None

    async def snapshot(self) -> Optional[List[FleetMember]]:
        try:
            members = await self.control_plane.list_members()
        except ControlPlaneError as e:
            log.debug(f"snapshot skipped: {e}")
            return None
        self._note_states(members)
        return members

    async def refresh(self) -> Optional[List[FleetMember]]:
        """Out-of-cycle snapshot, no stats."""
        members = await self.snapshot()
        if members is not None:
            self.hub.publish_list(members)
        return members

    async def run_cycle(self) -> Optional[List[FleetMember]]:
        members = await self.refresh()
        if members is None:
            return None
        for member in members:
            if member.state != MemberState.RUNNING:
                continue
            try:
                stats = await self.control_plane.member_stats(member.name)
            except ControlPlaneError as e:
                log.debug(f"stats for {member.name} dropped: {e}")
                continue
            self.hub.publish_stats(stats)
        return members

    async def run_forever(self):
        log.info(f"Polling monitor started | interval={self.interval}s")
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(f"Monitor error: {e}", exc_info=True)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def _note_states(self, members: List[FleetMember]):
        seen = {}
        for m in members:
            seen[m.name] = m.state
            prev = self._last_states.get(m.name)
            if prev == m.state:
                continue
            msg = f"{m.name}: {prev.value if prev else 'new'} -> {m.state.value}"
            # member is under manual control, the tracker already reports it
            if self.is_active(m.name):
                log.debug(msg)
            else:
                log.info(msg)
        for name in set(self._last_states) - set(seen):
            if self.is_active(name):
                log.debug(f"{name}: gone")
            else:
                log.info(f"{name}: gone")
        self._last_states = seen
