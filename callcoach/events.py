"""Structured failure events and the channel the session consumes them from."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional


class CallCoachError(Exception):
    """Base class for errors raised inside component boundaries."""


class ProducerSpawnError(CallCoachError):
    """A producer process could not be started."""


class ConversionError(CallCoachError):
    """A raw segment could not be converted to the canonical waveform."""


class TranscriptionError(CallCoachError):
    """The speech-to-text service failed or returned an unusable body."""


class ProviderError(CallCoachError):
    """A model provider call failed or returned an unusable body."""


class PersistenceError(CallCoachError):
    """The transcript snapshot could not be written."""


class SessionStartupError(CallCoachError):
    """The session could not be brought up."""


class EventKind(str, Enum):
    PRODUCER_SPAWN_FAILED = "producer_spawn_failed"
    PRODUCER_EXITED = "producer_exited"
    CONVERSION_FAILED = "conversion_failed"
    TRANSCRIPTION_FAILED = "transcription_failed"
    FEEDBACK_FAILED = "feedback_failed"
    PERSISTENCE_FAILED = "persistence_failed"

    @property
    def fatal(self) -> bool:
        return self is EventKind.PRODUCER_SPAWN_FAILED


@dataclass(frozen=True)
class SessionEvent:
    kind: EventKind
    message: str
    stream: Optional[str] = None
    ts: float = field(default_factory=time.time)


EventHandler = Callable[[SessionEvent], None]


class EventBus:
    """Fan-out channel for SessionEvents.

    Components publish here instead of printing; the session controller
    subscribes and decides whether a failure is logged or escalated.
    """

    def __init__(self):
        self._handlers: List[EventHandler] = []
        self.history: List[SessionEvent] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def publish(self, kind: EventKind, message: str, stream: Optional[str] = None) -> SessionEvent:
        event = SessionEvent(kind=kind, message=message, stream=stream)
        self.history.append(event)
        for handler in list(self._handlers):
            handler(event)
        return event

    def count(self, kind: EventKind) -> int:
        return sum(1 for e in self.history if e.kind is kind)
