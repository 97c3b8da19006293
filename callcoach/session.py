"""Session controller: wires producers, cycles, ledger and feedback together."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from callcoach.accumulator import Accumulator
from callcoach.config import SessionSettings
from callcoach.events import (
    EventBus,
    EventKind,
    PersistenceError,
    ProducerSpawnError,
    SessionEvent,
    SessionStartupError,
)
from callcoach.feedback import FeedbackEngine
from callcoach.ledger import TranscriptLedger
from callcoach.models import STREAM_FORMATS, STREAM_ORDER, StreamKind, TranscriptEntry, iso_timestamp
from callcoach.producers import ProducerHandle, ProducerSupervisor
from callcoach.scheduler import CycleScheduler
from callcoach.transcriber import Transcriber

logger = logging.getLogger(__name__)

RULE = "─" * 60


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


def make_session_id(started_at: datetime) -> str:
    return iso_timestamp(started_at).replace(":", "-").replace(".", "-")


def print_block(kind: str, text: str) -> None:
    print(f"\n[{kind.upper()}] {text}")
    print(RULE)


class Session:
    """One recording session per process.

    Owns every piece of mutable state (accumulators, producer handles, the
    ledger and the scheduler); nothing lives at module level.
    """

    def __init__(
        self,
        settings: SessionSettings,
        transcriber: Transcriber,
        feedback: FeedbackEngine,
        events: Optional[EventBus] = None,
        supervisor: Optional[ProducerSupervisor] = None,
        started_at: Optional[datetime] = None,
        emit: Callable[[str, str], None] = print_block,
    ):
        self.settings = settings
        self.transcriber = transcriber
        self.feedback = feedback
        self.events = events or EventBus()
        self.supervisor = supervisor or ProducerSupervisor(self.events)
        self.started_at = started_at or datetime.now(timezone.utc)
        self.id = make_session_id(self.started_at)
        self.emit = emit

        self.state = SessionState.IDLE
        self.accumulators: Dict[StreamKind, Accumulator] = {s: Accumulator(s) for s in STREAM_ORDER}
        self.handles: Dict[StreamKind, ProducerHandle] = {}
        self.ledger = TranscriptLedger(Path(settings.data_dir) / f"transcript_{self.id}.json")
        self.scheduler = CycleScheduler(self.run_cycle, settings.interval_seconds)
        self.cycle_count = 0
        self.saved = False
        self._starting = False

        self.events.subscribe(self._on_event)

    def _on_event(self, event: SessionEvent) -> None:
        where = f"[{event.stream}] " if event.stream else ""
        if event.kind.fatal:
            logger.error("%s%s: %s", where, event.kind.value, event.message)
        elif event.kind is EventKind.PRODUCER_EXITED:
            logger.error("%s%s: %s; stream will stay silent", where, event.kind.value, event.message)
        else:
            logger.warning("%s%s: %s", where, event.kind.value, event.message)

    def _commands(self) -> Dict[StreamKind, str]:
        return {
            "local": self.settings.local_command,
            "remote": self.settings.remote_command,
        }

    async def start(self) -> None:
        """Idle -> Recording: spawn both producers and start the cycle timer.

        Raises:
            SessionStartupError: the data directory cannot be created or a
                producer cannot be spawned. Producers already started are stopped.
        """
        if self._starting or self.state is not SessionState.IDLE:
            if self._starting or self.state is SessionState.RECORDING:
                logger.info("Already recording...")
            return
        # Set before the first await so a concurrent start returns early
        self._starting = True
        try:
            await self._spawn_producers()
        finally:
            self._starting = False

        self.scheduler.start()
        self.state = SessionState.RECORDING
        logger.info("Recording started (cycle every %.1fs). Press Ctrl+C to stop.", self.scheduler.interval)

    async def _spawn_producers(self) -> None:
        try:
            self.ledger.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.state = SessionState.TERMINATED
            raise SessionStartupError(f"cannot create data directory {self.ledger.path.parent}: {e}") from e

        logger.info("Starting live call feedback session %s", self.id)
        commands = self._commands()
        for stream in STREAM_ORDER:
            try:
                self.handles[stream] = await self.supervisor.spawn(
                    stream, commands[stream], self.accumulators[stream]
                )
            except ProducerSpawnError as e:
                self.events.publish(EventKind.PRODUCER_SPAWN_FAILED, str(e), stream=stream)
                await self._stop_producers()
                self.state = SessionState.TERMINATED
                raise SessionStartupError(f"{stream} producer failed to spawn") from e

    async def run_cycle(self) -> List[TranscriptEntry]:
        """Drain, transcribe, append, persist and ask for feedback.

        Returns the entries appended this cycle.
        """
        self.cycle_count += 1
        timestamp = datetime.now(timezone.utc)

        # All drains happen in this turn, before the first await
        segments = {}
        for stream in STREAM_ORDER:
            segment = self.accumulators[stream].drain()
            if segment:
                segments[stream] = segment
                logger.debug("cycle %d: drained %d bytes from %s", self.cycle_count, len(segment), stream)

        results = await asyncio.gather(*(
            self.transcriber.transcribe(segment, STREAM_FORMATS[stream], stream)
            for stream, segment in segments.items()
        ))

        entries = [
            TranscriptEntry(timestamp=timestamp, speaker=stream, text=text.strip())
            for stream, text in zip(segments, results)
            if text and text.strip()
        ]
        if not entries:
            logger.info("No speech detected in recent audio")
            return []

        self.ledger.extend(entries)
        for entry in entries:
            logger.info("[%s] %s", entry.label, entry.text)
        self._persist()

        feedback = await self.feedback.generate(self.ledger.window(self.settings.max_transcriptions))
        if feedback:
            self.emit("feedback", feedback)
        return entries

    def _persist(self) -> bool:
        try:
            self.ledger.save()
        except PersistenceError as e:
            self.events.publish(EventKind.PERSISTENCE_FAILED, str(e))
            return False
        return True

    async def _stop_producers(self) -> None:
        handles = list(self.handles.values())
        await asyncio.gather(*(self.supervisor.stop(h) for h in handles))
        for handle in handles:
            status = self.supervisor.status(handle)
            logger.info(
                "%s producer: %d bytes received, %d drained, exit=%s%s",
                status.stream, status.bytes_received, status.bytes_drained, status.exit_code,
                f", last diagnostic: {status.last_diag}" if status.last_diag else "",
            )

    async def shutdown(self) -> None:
        """Recording -> ShuttingDown -> Terminated.

        Stops the timer (letting an in-flight cycle finish), stops both
        producers, runs one final cycle over whatever they left behind,
        persists, and emits the closing summary when configured.
        """
        if self.state is not SessionState.RECORDING:
            return
        self.state = SessionState.SHUTTING_DOWN
        logger.info("Stopping recording...")

        try:
            try:
                await self.scheduler.stop()
                await self._stop_producers()
                await self.scheduler.flush()
            finally:
                self.saved = self._persist()

            if self.settings.session_summary and len(self.ledger):
                summary = await self.feedback.summarize(self.ledger.window(self.settings.summary_window))
                if summary:
                    self.emit("summary", summary)
        finally:
            self.state = SessionState.TERMINATED
            logger.info(
                "Session %s ended after %d cycles, %d transcript snapshots written",
                self.id, self.scheduler.cycles_run, self.ledger.writes,
            )

    async def run(self, stop: asyncio.Event) -> None:
        """Start, record until `stop` is set, then shut down gracefully."""
        await self.start()
        await stop.wait()
        await self.shutdown()
