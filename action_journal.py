"""
Fleet Action Journal
Stores an audit trail of dashboard-issued lifecycle actions in Redis.
One hash per action, a sorted index by start time, and a capped event stream.
"""

import json
import time
import uuid
from typing import Optional, Dict, Any, List
import redis as redis_lib


ACTION_STREAM = "fleet:actions"
ACTION_KEY_PREFIX = "action:"
ACTION_INDEX = "action:index"
STREAM_MAXLEN = 500


def get_redis(host="fleet-redis", port=6379) -> redis_lib.Redis:
    return redis_lib.Redis(host=host, port=port, decode_responses=True)


def record_start(r: redis_lib.Redis, name: str, kind: str, chain: List[str]) -> str:
    """Start an action record. Returns action_id."""
    action_id = f"{name}-{uuid.uuid4().hex[:8]}"
    now = int(time.time())

    record = {
        "action_id": action_id,
        "name": name,
        "kind": kind,
        "chain": json.dumps(chain),
        "started_at": str(now),
        "completed_at": "",
        "duration_s": "",
        "status": "running",
        "steps": "[]",
    }

    r.hset(f"{ACTION_KEY_PREFIX}{action_id}", mapping=record)
    r.zadd(ACTION_INDEX, {action_id: now})
    r.xadd(ACTION_STREAM, {"event": "started", "action_id": action_id, "name": name, "kind": kind},
           maxlen=STREAM_MAXLEN)
    return action_id


def record_step(r: redis_lib.Redis, action_id: str, step: str, exit_code: Optional[int]):
    """Append one finished chain step. exit_code None means the step never launched, -1 that it was killed."""
    key = f"{ACTION_KEY_PREFIX}{action_id}"
    try:
        steps = json.loads(r.hget(key, "steps") or "[]")
    except ValueError:
        steps = []
    steps.append({"step": step, "exit_code": exit_code, "at": int(time.time())})
    r.hset(key, "steps", json.dumps(steps))
    r.xadd(ACTION_STREAM, {
        "event": "step",
        "action_id": action_id,
        "step": step,
        "exit_code": "spawn-error" if exit_code is None else str(exit_code),
    }, maxlen=STREAM_MAXLEN)


def record_complete(r: redis_lib.Redis, action_id: str, status: str = "done"):
    now = int(time.time())
    data = r.hgetall(f"{ACTION_KEY_PREFIX}{action_id}") or {}
    started = int(data.get("started_at", now) or now)
    duration = now - started

    r.hset(f"{ACTION_KEY_PREFIX}{action_id}", mapping={
        "completed_at": str(now),
        "duration_s": str(duration),
        "status": status,
    })
    r.xadd(ACTION_STREAM, {
        "event": "completed",
        "action_id": action_id,
        "status": status,
        "duration_s": str(duration),
    }, maxlen=STREAM_MAXLEN)
    return {"action_id": action_id, "duration_s": duration, "status": status}


def get_action(r: redis_lib.Redis, action_id: str) -> Optional[Dict[str, Any]]:
    data = r.hgetall(f"{ACTION_KEY_PREFIX}{action_id}")
    if not data:
        return None
    for f in ("chain", "steps"):
        try:
            data[f] = json.loads(data.get(f, "[]"))
        except Exception:
            data[f] = []
    for f in ("started_at", "duration_s"):
        try:
            data[f] = int(data.get(f, 0) or 0)
        except Exception:
            data[f] = 0
    return data


def list_actions(r: redis_lib.Redis, limit: int = 50, name: Optional[str] = None) -> List[Dict]:
    """List actions newest first, optionally for one member."""
    ids = r.zrevrange(ACTION_INDEX, 0, limit - 1)
    results = []
    for aid in ids:
        data = get_action(r, aid)
        if data and (name is None or data.get("name") == name):
            results.append(data)
    return results
