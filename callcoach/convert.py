"""Conversion of raw stream segments into the canonical 16kHz mono PCM16 WAV."""

from __future__ import annotations

import asyncio
import io
import os
import tempfile
import wave
from abc import ABC, abstractmethod
from typing import List

import numpy as np

from callcoach.events import ConversionError
from callcoach.models import AudioFormat

CANONICAL_FORMAT = AudioFormat(sample_rate=16000, channels=1, bit_depth=16, encoding="signed-integer")


class Converter(ABC):
    """Turns a raw segment in a stream's format into canonical WAV bytes."""

    name: str = ""

    @abstractmethod
    async def convert(self, raw: bytes, fmt: AudioFormat) -> bytes:
        """Return a WAV container (mono, 16kHz, 16-bit signed) or raise ConversionError."""


def sox_input_args(fmt: AudioFormat) -> List[str]:
    args = [
        "-t", "raw",
        "-r", str(fmt.sample_rate),
        "-c", str(fmt.channels),
        "-e", fmt.encoding,
        "-b", str(fmt.bit_depth),
    ]
    if fmt.bit_depth > 8:
        args.append("-L" if fmt.little_endian else "-B")
    return args + ["-"]


def sox_output_args(path: str) -> List[str]:
    return [
        "-t", "wav",
        "-r", str(CANONICAL_FORMAT.sample_rate),
        "-c", "1",
        "-e", "signed-integer",
        "-b", "16",
        path,
    ]


class SoxConverter(Converter):
    """Pipes the segment through `sox` into a temporary WAV file."""

    name = "sox"

    def __init__(self, sox: str = "sox"):
        self.sox = sox

    async def convert(self, raw: bytes, fmt: AudioFormat) -> bytes:
        fd, path = tempfile.mkstemp(prefix="callcoach_", suffix=".wav")
        os.close(fd)
        try:
            try:
                proc = await asyncio.create_subprocess_exec(
                    self.sox, *sox_input_args(fmt), *sox_output_args(path),
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise ConversionError(f"cannot run {self.sox}: {e}") from e

            _, err = await proc.communicate(raw)
            if proc.returncode != 0:
                tail = err.decode("utf-8", errors="replace").strip()[-400:]
                raise ConversionError(f"sox exited with {proc.returncode}: {tail}")

            with open(path, "rb") as f:
                return f.read()
        finally:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass


def decode_pcm(raw: bytes, fmt: AudioFormat) -> np.ndarray:
    """Decode interleaved PCM into a float32 array shaped (frames, channels) in [-1, 1]."""
    order = "<" if fmt.little_endian else ">"
    if fmt.encoding == "floating-point":
        if fmt.bit_depth not in (32, 64):
            raise ConversionError(f"unsupported float bit depth {fmt.bit_depth}")
        dtype = np.dtype(f"{order}f{fmt.bit_depth // 8}")
        scale = 1.0
    else:
        if fmt.bit_depth not in (8, 16, 32):
            raise ConversionError(f"unsupported integer bit depth {fmt.bit_depth}")
        dtype = np.dtype(f"{order}i{fmt.bit_depth // 8}")
        scale = float(2 ** (fmt.bit_depth - 1))

    # Ignore a trailing partial frame
    usable = len(raw) - len(raw) % fmt.bytes_per_frame
    samples = np.frombuffer(raw[:usable], dtype=dtype).astype(np.float32) / scale
    return samples.reshape(-1, fmt.channels)


def resample(mono: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    if src_rate == dst_rate or mono.size == 0:
        return mono
    n_out = int(round(mono.size * dst_rate / src_rate))
    src_t = np.arange(mono.size) / src_rate
    dst_t = np.arange(n_out) / dst_rate
    return np.interp(dst_t, src_t, mono).astype(np.float32)


def pcm16_to_wav(pcm16: bytes, sample_rate: int = CANONICAL_FORMAT.sample_rate) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm16)
    return buffer.getvalue()


class NumpyConverter(Converter):
    """In-process conversion: downmix, linear resample, requantize."""

    name = "numpy"

    def _convert_sync(self, raw: bytes, fmt: AudioFormat) -> bytes:
        frames = decode_pcm(raw, fmt)
        mono = frames.mean(axis=1) if fmt.channels > 1 else frames[:, 0]
        mono = resample(mono, fmt.sample_rate, CANONICAL_FORMAT.sample_rate)
        pcm16 = (np.clip(mono, -1.0, 1.0) * 32767.0).astype("<i2").tobytes()
        return pcm16_to_wav(pcm16)

    async def convert(self, raw: bytes, fmt: AudioFormat) -> bytes:
        # CPU-bound; keep the loop free for producer reads
        return await asyncio.to_thread(self._convert_sync, raw, fmt)


def create_converter(name: str) -> Converter:
    name = name.lower()
    if name == "sox":
        return SoxConverter()
    elif name == "numpy":
        return NumpyConverter()
    raise ValueError(f"Unsupported converter: '{name}'. Supported converters are: 'sox', 'numpy'")
