"""Transcriber abstraction for segment-to-text conversion."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from callcoach.convert import Converter
from callcoach.events import ConversionError, EventBus, EventKind, TranscriptionError
from callcoach.models import AudioFormat

logger = logging.getLogger(__name__)


class Transcriber(ABC):
    """Abstract interface for segment transcription."""

    @abstractmethod
    async def transcribe(self, raw: bytes, fmt: AudioFormat, stream: Optional[str] = None) -> str:
        """Transcribe one drained segment.

        Args:
            raw: Raw PCM bytes in `fmt`
            fmt: Format of `raw`
            stream: Stream label, used only for reporting

        Returns:
            The transcription, or "" when there is nothing usable. Never raises.
        """


class WhisperTranscriber(Transcriber):
    """whisper.cpp server transcription over a multipart upload."""

    def __init__(
        self,
        url: str,
        converter: Converter,
        events: Optional[EventBus] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 90.0,
    ):
        self.url = url
        self.converter = converter
        self.events = events or EventBus()
        self._client = client
        self.timeout = timeout

    async def transcribe(self, raw: bytes, fmt: AudioFormat, stream: Optional[str] = None) -> str:
        if not raw:
            return ""

        try:
            wav = await self.converter.convert(raw, fmt)
        except ConversionError as e:
            self.events.publish(EventKind.CONVERSION_FAILED, str(e), stream=stream)
            return ""
        except Exception as e:
            self.events.publish(EventKind.CONVERSION_FAILED, f"{type(e).__name__}: {e}", stream=stream)
            return ""

        try:
            return await self._request(wav)
        except Exception as e:
            self.events.publish(
                EventKind.TRANSCRIPTION_FAILED, f"{type(e).__name__}: {e}", stream=stream
            )
            return ""

    async def _request(self, wav: bytes) -> str:
        files = {"file": ("audio.wav", wav, "audio/wav")}
        data = {"response_format": "json"}

        if self._client is not None:
            r = await self._client.post(self.url, files=files, data=data, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(self.url, files=files, data=data)
        r.raise_for_status()

        result = r.json()
        if not isinstance(result, dict):
            raise TranscriptionError(f"expected a JSON object, got {type(result).__name__}")
        text = result.get("text", "")
        if not isinstance(text, str):
            raise TranscriptionError("transcription returned non-string value")
        return text
