"""Producer process lifecycle: spawn, pump stdout into an Accumulator, drain stderr."""

from __future__ import annotations

import asyncio
import logging
import shlex
import sys
from dataclasses import dataclass, field
from typing import List, Optional

from callcoach.accumulator import Accumulator
from callcoach.events import EventBus, EventKind, ProducerSpawnError

logger = logging.getLogger(__name__)

READ_SIZE = 4096
DIAG_TAIL_CHARS = 400


@dataclass
class ProducerStatus:
    stream: str
    running: bool
    pid: Optional[int]
    exit_code: Optional[int]
    bytes_received: int
    bytes_drained: int
    last_diag: str
    command: str


@dataclass
class ProducerHandle:
    stream: str
    command: List[str]
    process: asyncio.subprocess.Process
    accumulator: Accumulator
    last_diag: str = ""
    stopping: bool = False
    tasks: List[asyncio.Task] = field(default_factory=list)
    watcher: Optional[asyncio.Task] = None


def build_command(command: str) -> List[str]:
    """Split a shell-style command; a leading `python` means this interpreter."""
    cmd = shlex.split(command)
    if not cmd:
        raise ProducerSpawnError("empty producer command")
    if cmd[0] in ("python", "python3"):
        cmd[0] = sys.executable
    return cmd


class ProducerSupervisor:
    """Spawns one capture process per stream and keeps its pipes flowing.

    stdout chunks go straight into the stream's Accumulator. stderr is always
    read (and only its last line kept) so the child can never block on a full
    diagnostic pipe. An exit that was not requested through `stop` is
    published as PRODUCER_EXITED; the stream simply stays silent afterwards.
    """

    def __init__(self, events: EventBus, read_size: int = READ_SIZE):
        self._events = events
        self._read_size = read_size

    async def spawn(self, stream: str, command: str, accumulator: Accumulator) -> ProducerHandle:
        cmd = build_command(command)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProducerSpawnError(f"{stream}: {type(e).__name__}: {e} | cmd={cmd[0]}") from e

        handle = ProducerHandle(stream=stream, command=cmd, process=process, accumulator=accumulator)
        handle.tasks = [
            asyncio.create_task(self._pump_stdout(handle), name=f"{stream}-stdout"),
            asyncio.create_task(self._drain_stderr(handle), name=f"{stream}-stderr"),
        ]
        handle.watcher = asyncio.create_task(self._watch(handle), name=f"{stream}-watch")
        logger.info("%s producer started (pid=%s): %s", stream, process.pid, shlex.join(cmd))
        return handle

    async def _pump_stdout(self, handle: ProducerHandle) -> None:
        stdout = handle.process.stdout
        while True:
            chunk = await stdout.read(self._read_size)
            if not chunk:
                break
            handle.accumulator.append(chunk)

    async def _drain_stderr(self, handle: ProducerHandle) -> None:
        # Chunked reads: a diagnostic line longer than the reader limit must not stop the drain
        stderr = handle.process.stderr
        pending = b""
        while True:
            chunk = await stderr.read(self._read_size)
            if not chunk:
                break
            lines = (pending + chunk).split(b"\n")
            pending = lines.pop()[-DIAG_TAIL_CHARS:]
            for line in reversed(lines):
                if self._set_diag(handle, line):
                    break
        self._set_diag(handle, pending)

    @staticmethod
    def _set_diag(handle: ProducerHandle, line: bytes) -> bool:
        text = line.decode("utf-8", errors="replace").strip()
        if text:
            handle.last_diag = text[:DIAG_TAIL_CHARS]
        return bool(text)

    async def _watch(self, handle: ProducerHandle) -> None:
        exit_code = await handle.process.wait()
        await asyncio.gather(*handle.tasks, return_exceptions=True)
        if handle.stopping:
            return
        detail = f" ({handle.last_diag})" if handle.last_diag else ""
        self._events.publish(
            EventKind.PRODUCER_EXITED,
            f"producer exited unexpectedly with code {exit_code}{detail}",
            stream=handle.stream,
        )

    async def stop(self, handle: ProducerHandle, timeout: float = 2.0) -> None:
        """Terminate the process and wait until its stdout is fully pumped."""
        if handle.stopping:
            return
        handle.stopping = True
        process = handle.process
        if process.returncode is None:
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                logger.warning("%s producer did not exit after terminate, killing", handle.stream)
                process.kill()
                await process.wait()
        # Bytes still in the pipe belong to the final cycle
        await asyncio.gather(*handle.tasks, return_exceptions=True)
        if handle.watcher is not None:
            await handle.watcher
        logger.info("%s producer stopped (exit=%s)", handle.stream, process.returncode)

    def status(self, handle: ProducerHandle) -> ProducerStatus:
        process = handle.process
        return ProducerStatus(
            stream=handle.stream,
            running=process.returncode is None,
            pid=process.pid,
            exit_code=process.returncode,
            bytes_received=handle.accumulator.bytes_received,
            bytes_drained=handle.accumulator.bytes_drained,
            last_diag=handle.last_diag,
            command=shlex.join(handle.command),
        )
