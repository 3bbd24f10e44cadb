"""
Control-plane adapter
Runs the external fleet tool (wsl_tools.ps1 by default) as a subprocess and
turns its output into sanitized lines, JSON documents and fleet models.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from pydantic import ValidationError

from models import FleetMember, MemberStats

log = logging.getLogger(__name__)

CONTROL_CHAR_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]|[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

LIST_COMMAND = "list-json"
STATS_COMMAND = "monitor-json"

# longest single output line accepted from the tool
LINE_LIMIT = 1024 * 1024


class ControlPlaneError(Exception):
    pass


class ProcessSpawnError(ControlPlaneError):
    """The tool could not be launched at all."""


class MalformedOutputError(ControlPlaneError):
    """JSON was expected and the tool printed something else."""


class OutputOverrunError(ControlPlaneError):
    """The tool printed a line longer than the read buffer."""


@dataclass
class Invocation:
    exit_code: int
    stdout_lines: List[str] = field(default_factory=list)
    stderr_lines: List[str] = field(default_factory=list)


@dataclass
class OutputLine:
    text: str
    data: Any = None
    structured: bool = False
    stream: str = "stdout"


def sanitize_line(raw) -> str:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return CONTROL_CHAR_RE.sub("", raw.replace("\r", "")).rstrip()


def classify_line(line: str, stream: str = "stdout") -> OutputLine:
    text = line.strip()
    if text:
        try:
            return OutputLine(text=text, data=json.loads(text), structured=True, stream=stream)
        except ValueError:
            pass
    return OutputLine(text=line, stream=stream)


def _split_lines(blob: bytes) -> List[str]:
    lines = [sanitize_line(l) for l in blob.decode("utf-8", errors="replace").splitlines()]
    return [l for l in lines if l.strip()]


async def _reap(proc: asyncio.subprocess.Process):
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()


def parse_json_output(lines: Sequence[str]) -> Any:
    # PowerShell pretty-prints ConvertTo-Json over many lines
    text = "\n".join(lines).strip()
    if not text:
        raise MalformedOutputError("empty output")
    try:
        return json.loads(text)
    except ValueError as e:
        raise MalformedOutputError(f"not JSON: {text[:80]!r}") from e


class ControlPlane:
    def __init__(self, command_prefix: Sequence[str], line_limit: int = LINE_LIMIT):
        if not command_prefix:
            raise ValueError("control plane command prefix is empty")
        self.command_prefix = list(command_prefix)
        self.line_limit = line_limit

    def argv(self, command: str, *args: str) -> List[str]:
        return [*self.command_prefix, command, *args]

    async def _spawn(self, command: str, *args: str) -> asyncio.subprocess.Process:
        argv = self.argv(command, *args)
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.line_limit,
            )
        except OSError as e:
            raise ProcessSpawnError(f"cannot launch {argv[0]}: {e}") from e

    async def invoke(self, command: str, *args: str) -> Invocation:
        proc = await self._spawn(command, *args)
        try:
            stdout, stderr = await proc.communicate()
        finally:
            await _reap(proc)
        return Invocation(
            exit_code=proc.returncode,
            stdout_lines=_split_lines(stdout or b""),
            stderr_lines=_split_lines(stderr or b""),
        )

    async def stream(self, command: str, *args: str,
                     on_line: Optional[Callable[[OutputLine], None]] = None) -> int:
        """Run a command, handing every line to on_line as soon as it is read.
        Returns the exit code. The process is killed if reading fails or the
        caller is cancelled."""
        proc = await self._spawn(command, *args)

        async def pump(reader: asyncio.StreamReader, name: str):
            async for raw in reader:
                line = sanitize_line(raw)
                if line.strip() and on_line is not None:
                    on_line(classify_line(line, stream=name))

        pumps = [asyncio.ensure_future(pump(proc.stdout, "stdout")),
                 asyncio.ensure_future(pump(proc.stderr, "stderr"))]
        try:
            await asyncio.gather(*pumps)
            return await proc.wait()
        except ValueError as e:
            # StreamReader reports an over-long line as ValueError
            raise OutputOverrunError(f"{command}: output line over {self.line_limit} bytes") from e
        finally:
            for task in pumps:
                task.cancel()
            await _reap(proc)
            await asyncio.gather(*pumps, return_exceptions=True)

    async def fetch_json(self, command: str, *args: str) -> Any:
        result = await self.invoke(command, *args)
        if result.exit_code != 0:
            log.debug(f"{command} exited with {result.exit_code}: {' '.join(result.stderr_lines)[:200]}")
        return parse_json_output(result.stdout_lines)

    async def list_members(self) -> List[FleetMember]:
        data = await self.fetch_json(LIST_COMMAND)
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise MalformedOutputError(f"{LIST_COMMAND} returned {type(data).__name__}")
        try:
            return [FleetMember.model_validate(item) for item in data]
        except ValidationError as e:
            raise MalformedOutputError(f"bad fleet member: {e.errors()[0].get('msg')}") from e

    async def member_stats(self, name: str) -> MemberStats:
        data = await self.fetch_json(STATS_COMMAND, name)
        if not isinstance(data, dict):
            raise MalformedOutputError(f"{STATS_COMMAND} returned {type(data).__name__}")
        data.setdefault("InstanceName", name)
        try:
            return MemberStats.model_validate(data)
        except ValidationError as e:
            raise MalformedOutputError(f"bad stats for {name}") from e
