"""
Client-side reconciliation of authoritative snapshots with optimistic
transitions.

A Reconciler belongs to exactly one viewer. It owns two collections keyed by
member name: the members last reported by the server (or synthesized as
placeholders) and the transitions the viewer started itself. Rendering is a
pure function of (member, transition); every mutation returns the patches
needed to bring the last rendered rows up to date, so a viewer only touches
what changed.
"""

import re
import time
from dataclasses import dataclass, field, fields
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from models import STABLE_STATES, FleetMember, MemberState, MemberStats

UNKNOWN = "--"

# viewer command type -> optimistic target state
COMMAND_TARGETS: Dict[str, MemberState] = {
    "create":    MemberState.CREATING,
    "start":     MemberState.STARTING,
    "daemon":    MemberState.STARTING,
    "terminate": MemberState.STOPPING,
    "delete":    MemberState.DELETING,
}

# authoritative states that complete a transition towards its target
ARRIVALS: Dict[MemberState, frozenset] = {
    MemberState.CREATING: frozenset({MemberState.CREATING, MemberState.RUNNING}),
    MemberState.STARTING: frozenset({MemberState.STARTING, MemberState.RUNNING}),
    MemberState.STOPPING: frozenset({MemberState.STOPPING, MemberState.STOPPED}),
    MemberState.DELETING: frozenset({MemberState.DELETING}),
}


@dataclass
class Transition:
    name: str
    target: MemberState
    timestamp: float

    def arrived(self, state: MemberState) -> bool:
        return state in ARRIVALS[self.target]


@dataclass(frozen=True)
class DisplayRow:
    name: str
    state: str
    busy: bool
    memory: str
    disk: str
    can_start: bool
    can_stop: bool
    can_delete: bool


@dataclass(frozen=True)
class Patch:
    op: str                     # "add" | "update" | "remove"
    name: str
    row: Optional[DisplayRow] = None
    changes: Dict[str, object] = field(default_factory=dict)


# ── stats summaries ────────────────────────────────────────────────────────────

_DISK_RE = re.compile(r"/\s+\d+\w+\s+(\d+\w+)")


def summarize_memory(raw: Optional[str]) -> str:
    """Used MB from `free -m` output, else the raw text."""
    if not raw:
        return UNKNOWN
    parts = raw.split()
    if "Mem:" in parts:
        idx = parts.index("Mem:")
        if idx + 2 < len(parts) and parts[idx + 2].isdigit():
            return f"{parts[idx + 2]} MB"
    return raw.strip()


def summarize_disk(raw: Optional[str]) -> str:
    """Used size of the root filesystem from `df -h` output, else the raw text."""
    if not raw:
        return UNKNOWN
    for line in raw.strip().splitlines():
        line = line.rstrip()
        if line.endswith(" /"):
            parts = line.split()
            if len(parts) > 2:
                return parts[2]
    m = _DISK_RE.search(raw)
    if m:
        return m.group(1)
    return raw.strip()


def render_row(member: FleetMember, transition: Optional[Transition] = None) -> DisplayRow:
    state = transition.target if transition is not None else member.state
    stable = state in STABLE_STATES
    return DisplayRow(
        name=member.name,
        state=state.value,
        busy=not stable,
        memory=summarize_memory(member.memory),
        disk=summarize_disk(member.disk),
        can_start=state == MemberState.STOPPED,
        can_stop=state == MemberState.RUNNING,
        can_delete=stable,
    )


def diff_rows(before: Dict[str, DisplayRow], after: Dict[str, DisplayRow]) -> List[Patch]:
    patches = [Patch("remove", name) for name in before if name not in after]
    for name, row in after.items():
        old = before.get(name)
        if old is None:
            patches.append(Patch("add", name, row=row))
        elif old != row:
            changes = {f.name: getattr(row, f.name) for f in fields(row)
                       if getattr(row, f.name) != getattr(old, f.name)}
            patches.append(Patch("update", name, row=row, changes=changes))
    return patches


class Reconciler:
    def __init__(self, clock: Callable[[], float] = time.monotonic, grace_period: float = 120.0):
        self.clock = clock
        self.grace_period = grace_period
        self.members: Dict[str, FleetMember] = {}
        self.transitions: Dict[str, Transition] = {}
        self._rendered: Dict[str, DisplayRow] = {}

    # ── queries ──

    def displayed_state(self, name: str) -> Optional[MemberState]:
        trans = self.transitions.get(name)
        if trans is not None:
            return trans.target
        member = self.members.get(name)
        return member.state if member else None

    def row(self, name: str) -> Optional[DisplayRow]:
        return self._rendered.get(name)

    def rows(self) -> List[DisplayRow]:
        return list(self._rendered.values())

    # ── mutations ──

    def begin(self, name: str, command_type: str) -> List[Patch]:
        """Record that this viewer just sent command_type for name."""
        target = COMMAND_TARGETS.get(command_type)
        if target is None:
            return []
        self.transitions[name] = Transition(name, target, self.clock())
        if name not in self.members:
            self.members[name] = FleetMember(name=name, state=target)
        return self._commit()

    def apply_snapshot(self, snapshot: Iterable[FleetMember]) -> List[Patch]:
        now = self.clock()
        current = {m.name: m for m in snapshot}

        # 1. arrival
        for name, member in current.items():
            trans = self.transitions.get(name)
            if trans is not None and trans.arrived(member.state):
                del self.transitions[name]

        # 2. absence
        for name in [n for n in self.members if n not in current]:
            trans = self.transitions.get(name)
            if trans is not None and trans.target != MemberState.DELETING \
                    and now - trans.timestamp <= self.grace_period:
                continue
            del self.members[name]
            self.transitions.pop(name, None)

        # Arrival is otherwise the only way out of a transition for a listed
        # member. A non-delete transition still expires after the grace period
        # so a command the tool dropped cannot pin the row; a pending delete
        # waits for the member to vanish.
        for name in list(self.transitions):
            trans = self.transitions[name]
            if name in current and trans.target != MemberState.DELETING \
                    and now - trans.timestamp > self.grace_period:
                del self.transitions[name]

        # 3. add / refresh
        for name, member in current.items():
            if name in self.transitions:
                continue
            old = self.members.get(name)
            if old is not None:
                member = member.model_copy(update={
                    "memory": member.memory if member.memory is not None else old.memory,
                    "disk": member.disk if member.disk is not None else old.disk,
                })
            self.members[name] = member

        return self._commit()

    def apply_stats(self, stats: MemberStats) -> List[Patch]:
        member = self.members.get(stats.name)
        if member is None:
            return []
        update = {}
        if stats.memory is not None:
            update["memory"] = stats.memory
        if stats.disk is not None:
            update["disk"] = stats.disk
        if update:
            self.members[stats.name] = member.model_copy(update=update)
        return self._commit()

    def apply_event(self, message: dict) -> List[Patch]:
        """Feed one server message; unknown or unreadable payloads are no-ops."""
        kind = message.get("type")
        data = message.get("data")
        try:
            if kind == "list":
                if isinstance(data, dict):
                    data = [data]
                if not isinstance(data, list):
                    return []
                return self.apply_snapshot([FleetMember.model_validate(d) for d in data])
            if kind == "stats":
                return self.apply_stats(MemberStats.model_validate(data))
        except (ValidationError, TypeError):
            return []
        return []

    def _commit(self) -> List[Patch]:
        desired = {name: render_row(m, self.transitions.get(name)) for name, m in self.members.items()}
        patches = diff_rows(self._rendered, desired)
        self._rendered = desired
        return patches
