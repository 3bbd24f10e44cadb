"""
WSL Fleet Dashboard — live control of the local WSL fleet
Streams control-plane snapshots, stats and command output to every viewer
over one shared WebSocket topic.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse

import action_journal as AJ
import settings
from action_tracker import ActionTracker
from broadcast import BroadcastHub, Subscription
from control_plane import ControlPlane
from dashboard_page import HTML
from models import list_event
from poller import PollingMonitor

log = logging.getLogger(__name__)


class Dashboard:
    """The server-side pipeline: adapter, hub, monitor and tracker."""

    def __init__(self, control_plane: ControlPlane,
                 poll_interval: float = settings.POLL_INTERVAL,
                 cooldown: float = settings.ACTION_COOLDOWN,
                 refresh_delay: float = settings.REFRESH_DELAY,
                 journal: Optional[redis.Redis] = None):
        self.control_plane = control_plane
        self.hub = BroadcastHub()
        self.tracker = ActionTracker(
            control_plane, self.hub,
            refresh=self._refresh,
            cooldown=cooldown,
            refresh_delay=refresh_delay,
            journal=journal,
        )
        self.monitor = PollingMonitor(
            control_plane, self.hub,
            interval=poll_interval,
            is_active=self.tracker.is_active,
        )

    async def _refresh(self):
        return await self.monitor.refresh()

    async def start(self):
        self.monitor.start()

    async def stop(self):
        await self.monitor.stop()
        await self.tracker.shutdown()


def default_journal() -> Optional[redis.Redis]:
    if not settings.REDIS_HOST:
        return None
    return AJ.get_redis(settings.REDIS_HOST, settings.REDIS_PORT)


@asynccontextmanager
async def _lifespan(application: FastAPI):
    dashboard = application.state.dashboard
    await dashboard.start()
    yield
    await dashboard.stop()


def create_app(dashboard: Optional[Dashboard] = None) -> FastAPI:
    application = FastAPI(title="WSL Fleet Dashboard", docs_url=None, redoc_url=None,
                          openapi_url=None, lifespan=_lifespan)
    application.state.dashboard = dashboard or Dashboard(
        ControlPlane(settings.CONTROL_CMD), journal=default_journal())
    application.add_api_route("/", index, methods=["GET"], response_class=HTMLResponse)
    application.add_api_route("/index.html", index, methods=["GET"], response_class=HTMLResponse)
    application.add_api_websocket_route("/ws", websocket_endpoint)
    return application


# ── WebSocket ──────────────────────────────────────────────────────────────────

async def _pump(websocket: WebSocket, sub: Subscription):
    try:
        async for event in sub:
            await websocket.send_json(event)
    except Exception as e:
        log.debug(f"viewer send failed: {e}")
        return
    # evicted by the hub; closing makes the viewer reconnect for a fresh snapshot
    try:
        await websocket.close()
    except Exception as e:
        log.debug(f"viewer close failed: {e}")


async def websocket_endpoint(websocket: WebSocket):
    dashboard: Dashboard = websocket.app.state.dashboard
    await websocket.accept()
    sub = dashboard.hub.subscribe()
    pump = None
    try:
        members = await dashboard.monitor.snapshot()
        if members is not None:
            await websocket.send_json(list_event(members))
            # the snapshot just sent supersedes lists queued while it was fetched
            sub.drop_pending("list")
        pump = asyncio.create_task(_pump(websocket, sub))
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is not None:
                dashboard.tracker.handle(raw)
    except (WebSocketDisconnect, RuntimeError):
        pass
    finally:
        if pump is not None:
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
        sub.close()


# ── HTML ───────────────────────────────────────────────────────────────────────

async def index():
    return HTML


app = create_app()
