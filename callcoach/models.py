"""Data models for the call feedback recorder."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Tuple


StreamKind = Literal["local", "remote"]

# Fixed commit order for entries produced within one cycle
STREAM_ORDER: Tuple[StreamKind, ...] = ("local", "remote")

# Speaker labels used on disk and in prompts
SPEAKER_LABELS = {
    "local": "microphone",
    "remote": "system",
}


@dataclass(frozen=True)
class AudioFormat:
    """Raw PCM layout emitted by a producer process."""
    sample_rate: int
    channels: int
    bit_depth: int
    encoding: Literal["signed-integer", "floating-point"]
    little_endian: bool = True

    @property
    def bytes_per_frame(self) -> int:
        return self.channels * self.bit_depth // 8


# Microphone capture: 16kHz mono int16
LOCAL_FORMAT = AudioFormat(sample_rate=16000, channels=1, bit_depth=16, encoding="signed-integer")

# System audio capture: 48kHz stereo float32 little-endian
REMOTE_FORMAT = AudioFormat(sample_rate=48000, channels=2, bit_depth=32, encoding="floating-point")

STREAM_FORMATS = {
    "local": LOCAL_FORMAT,
    "remote": REMOTE_FORMAT,
}


def iso_timestamp(instant: datetime) -> str:
    """Render an instant as ISO-8601 UTC with millisecond precision and a Z suffix."""
    instant = instant.astimezone(timezone.utc)
    return instant.strftime("%Y-%m-%dT%H:%M:%S.") + f"{instant.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class TranscriptEntry:
    """A single speaker-attributed line of the session transcript."""
    timestamp: datetime
    speaker: StreamKind
    text: str

    def __post_init__(self):
        if not self.text.strip():
            raise ValueError("TranscriptEntry text must be non-empty")

    @property
    def label(self) -> str:
        return SPEAKER_LABELS[self.speaker]

    def to_dict(self):
        return {
            "timestamp": iso_timestamp(self.timestamp),
            "speaker": self.label,
            "text": self.text,
        }
