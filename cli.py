#!/usr/bin/env python3
"""
WSL Fleet Dashboard CLI

Run: wsl-fleet serve [--port N]       dashboard server (writes .port)
     wsl-fleet watch [--url ws://...] terminal viewer
     wsl-fleet history [--name NAME]  recent actions from the redis journal
"""

import argparse
import asyncio
import logging
import os
import shlex
import socket
import sys

import settings


def setup_logging(component: str, verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=f"%(asctime)s [{component}] %(message)s",
        datefmt="%H:%M:%S",
    )


def write_port_file(path: str, port: int):
    with open(path, "w") as f:
        f.write(str(port))


def bind_socket(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind((host, port))
    return sock


def cmd_serve(args) -> int:
    setup_logging("dashboard", args.verbose)
    log = logging.getLogger("dashboard")

    import uvicorn
    from control_plane import ControlPlane
    from main import Dashboard, create_app, default_journal

    control_cmd = shlex.split(args.control_cmd) if args.control_cmd else settings.CONTROL_CMD
    dashboard = Dashboard(
        ControlPlane(control_cmd),
        poll_interval=args.interval,
        cooldown=args.cooldown,
        refresh_delay=settings.REFRESH_DELAY,
        journal=default_journal(),
    )
    application = create_app(dashboard)

    sock = bind_socket(args.host, args.port)
    port = sock.getsockname()[1]
    write_port_file(args.port_file, port)
    log.info(f"Dashboard active at http://{args.host}:{port} | control={' '.join(control_cmd)}")

    config = uvicorn.Config(application, log_level="debug" if args.verbose else "warning")
    server = uvicorn.Server(config)
    try:
        server.run(sockets=[sock])
    finally:
        sock.close()
    return 0


def _default_url() -> str:
    port = settings.PORT
    if not port and os.path.exists(settings.PORT_FILE):
        with open(settings.PORT_FILE) as f:
            port = int(f.read().strip() or 0)
    return f"ws://127.0.0.1:{port or 8000}/ws"


def cmd_watch(args) -> int:
    setup_logging("viewer", args.verbose)
    from viewer import watch

    try:
        asyncio.run(watch(args.url or _default_url(), reconnect_delay=args.reconnect_delay,
                          grace_period=args.grace_period))
    except KeyboardInterrupt:
        pass
    return 0


def cmd_history(args) -> int:
    setup_logging("history", args.verbose)
    import redis
    import action_journal as AJ

    host = args.redis_host or settings.REDIS_HOST
    if not host:
        print("no redis host: set FLEET_REDIS_HOST or pass --redis-host", file=sys.stderr)
        return 2
    r = AJ.get_redis(host, args.redis_port)
    try:
        actions = AJ.list_actions(r, limit=args.limit, name=args.name)
    except redis.exceptions.ConnectionError as e:
        print(f"redis unavailable: {e}", file=sys.stderr)
        return 1
    for a in actions:
        steps = ", ".join(
            f"{s['step']}={'spawn-error' if s['exit_code'] is None else s['exit_code']}" for s in a["steps"]
        )
        print(f"{a['action_id']:<28} {a['kind']:<10} {a['status']:<8} {a['duration_s']:>4}s  {steps}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wsl-fleet", description="WSL Fleet Dashboard")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the dashboard server")
    serve.add_argument("--host", default=settings.HOST)
    serve.add_argument("--port", type=int, default=settings.PORT, help="0 picks a free port")
    serve.add_argument("--port-file", default=settings.PORT_FILE)
    serve.add_argument("--interval", type=float, default=settings.POLL_INTERVAL, help="Poll period (s)")
    serve.add_argument("--cooldown", type=float, default=settings.ACTION_COOLDOWN, help="Action cooldown (s)")
    serve.add_argument("--control-cmd", default="", help="Control-plane command prefix")
    serve.set_defaults(func=cmd_serve)

    watch = sub.add_parser("watch", help="Terminal viewer")
    watch.add_argument("--url", default="", help="ws://host:port/ws (default: from port file)")
    watch.add_argument("--reconnect-delay", type=float, default=settings.RECONNECT_DELAY)
    watch.add_argument("--grace-period", type=float, default=settings.GRACE_PERIOD)
    watch.set_defaults(func=cmd_watch)

    history = sub.add_parser("history", help="Recent actions from the journal")
    history.add_argument("--name", default=None)
    history.add_argument("--limit", type=int, default=20)
    history.add_argument("--redis-host", default="")
    history.add_argument("--redis-port", type=int, default=settings.REDIS_PORT)
    history.set_defaults(func=cmd_history)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
