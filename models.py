"""
Wire models shared by the server and the viewers.
The control plane speaks PascalCase (Name, State, ...); viewers get lowercase.
"""

import re
from enum import Enum
from typing import Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MemberState(str, Enum):
    STOPPED = "Stopped"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    CREATING = "Creating"
    DELETING = "Deleting"


STABLE_STATES = frozenset({MemberState.RUNNING, MemberState.STOPPED})

COMMAND_TYPES = ("create", "start", "daemon", "terminate", "delete", "persist", "unpersist")

# names wsl accepts for a distribution
MEMBER_NAME_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]*")


def _unknown_to_none(value):
    if value is None:
        return None
    text = str(value).strip()
    if not text or text == "--":
        return None
    return text


class FleetMember(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(alias="Name", min_length=1)
    state: MemberState = Field(alias="State")
    memory: Optional[str] = Field(default=None, alias="Memory")
    disk: Optional[str] = Field(default=None, alias="Disk")

    @field_validator("memory", "disk", mode="before")
    @classmethod
    def _blank_is_unknown(cls, v):
        return _unknown_to_none(v)


class MemberStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="InstanceName", min_length=1)
    memory: Optional[str] = Field(default=None, alias="Memory")
    disk: Optional[str] = Field(default=None, alias="Disk")

    @field_validator("memory", "disk", mode="before")
    @classmethod
    def _blank_is_unknown(cls, v):
        return _unknown_to_none(v)


class Command(BaseModel):
    """A viewer → server lifecycle command."""
    type: Literal["create", "start", "daemon", "terminate", "delete", "persist", "unpersist"]
    name: str = Field(min_length=1, max_length=128)

    @field_validator("name")
    @classmethod
    def _plain_name(cls, v: str) -> str:
        v = v.strip()
        if not MEMBER_NAME_RE.fullmatch(v):
            raise ValueError("member name may only hold letters, digits, '.', '_' and '-'")
        return v


# ── Server → viewer envelopes ──────────────────────────────────────────────────

def list_event(members):
    return {"type": "list", "data": [m.model_dump(mode="json") for m in members]}


def stats_event(stats: MemberStats):
    return {"type": "stats", "data": stats.model_dump(mode="json")}


def log_event(line: str):
    return {"type": "ps-log", "data": line}
