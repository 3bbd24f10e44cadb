"""
Broadcast hub — one shared "fleet" topic.
Every subscriber gets every event, in publish order. Nothing is replayed.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from models import MemberStats, list_event, log_event, stats_event

log = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_MAX = 1000


class Subscription:
    def __init__(self, hub: "BroadcastHub", maxsize: int):
        self.hub = hub
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def get(self) -> Optional[Dict[str, Any]]:
        """Next event, or None once the subscription has been closed."""
        if self.closed and self.queue.empty():
            return None
        return await self.queue.get()

    def drop_pending(self, kind: str) -> int:
        """Discard queued events of one type, keeping the rest in order."""
        if self.closed:
            return 0
        kept = []
        dropped = 0
        while not self.queue.empty():
            event = self.queue.get_nowait()
            if event.get("type") == kind:
                dropped += 1
            else:
                kept.append(event)
        for event in kept:
            self.queue.put_nowait(event)
        return dropped

    def close(self):
        self.hub.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self):
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class BroadcastHub:
    def __init__(self, maxsize: int = SUBSCRIBER_QUEUE_MAX):
        self.maxsize = maxsize
        self._subscribers: Set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self.maxsize)
        self._subscribers.add(sub)
        log.debug(f"subscriber joined ({len(self._subscribers)} total)")
        return sub

    def unsubscribe(self, sub: Subscription):
        if sub.closed:
            return
        sub.closed = True
        self._subscribers.discard(sub)
        # wake a reader blocked in get()
        while not sub.queue.empty():
            sub.queue.get_nowait()
        sub.queue.put_nowait(None)
        log.debug(f"subscriber left ({len(self._subscribers)} total)")

    def publish(self, event: Dict[str, Any]):
        for sub in list(self._subscribers):
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                log.warning(f"dropping slow subscriber ({self.maxsize} events behind)")
                self.unsubscribe(sub)

    def publish_list(self, members):
        self.publish(list_event(members))

    def publish_stats(self, stats: MemberStats):
        self.publish(stats_event(stats))

    def publish_log(self, line: str):
        self.publish(log_event(line))
