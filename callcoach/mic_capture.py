"""Microphone capture process for the `local` stream.

Writes raw little-endian int16 PCM to stdout, diagnostics to stderr. Runs as
its own process so PortAudio callbacks never share an interpreter with the
session's event loop.
"""
from __future__ import annotations

import queue
import sys
from typing import Optional, Union

import numpy as np
import sounddevice as sd


def log(text: str) -> None:
    print(f"[mic_capture] {text}", file=sys.stderr, flush=True)


def to_pcm16(indata: np.ndarray, channels: int) -> bytes:
    """
    Convert a float32 sounddevice block into interleaved PCM16 bytes.
    When the device delivers more channels than requested, only the leading
    ones are kept (LEFT first), avoiding phase cancellation from downmixing.
    """
    x = np.asarray(indata, dtype=np.float32)
    if x.ndim == 1:
        x = x.reshape(-1, 1)
    x = x[:, :channels]
    x = np.clip(x, -1.0, 1.0)
    return (x * 32767.0).astype("<i2").tobytes(order="C")


def run_capture(
    device: Optional[Union[int, str]] = None,
    sample_rate: int = 16000,
    channels: int = 1,
    blocksize: int = 1600,
) -> int:
    out = sys.stdout.buffer
    log(f"capture start device={device} sr={sample_rate} ch={channels} bs={blocksize}")

    # Buffer a little; drop oldest when the writer falls behind
    q: "queue.Queue[bytes]" = queue.Queue(maxsize=250)

    def audio_cb(indata, frames, time_info, status):
        if status:
            log(f"sd_status: {status}")
        pcm = to_pcm16(indata, channels)
        if q.full():
            try:
                q.get_nowait()
            except queue.Empty:
                pass
        q.put_nowait(pcm)

    try:
        with sd.InputStream(
            device=device,
            samplerate=int(sample_rate),
            channels=int(channels),
            dtype="float32",
            blocksize=int(blocksize),
            callback=audio_cb,
        ):
            while True:
                try:
                    pcm = q.get(timeout=0.5)
                except queue.Empty:
                    continue
                try:
                    out.write(pcm)
                    out.flush()
                except (BrokenPipeError, ValueError):
                    # Parent closed our stdout
                    return 0
    except KeyboardInterrupt:
        return 0
    except sd.PortAudioError as e:
        log(f"stream_error: {e!r}")
        return 1


def main(argv=None) -> int:
    import argparse

    p = argparse.ArgumentParser(description="Capture microphone audio as raw PCM16 on stdout")
    p.add_argument("--device", default=None)
    p.add_argument("--sr", type=int, default=16000)
    p.add_argument("--ch", type=int, default=1)
    p.add_argument("--bs", type=int, default=1600)
    args = p.parse_args(argv)

    dev = args.device
    if dev is not None and dev.isdigit():
        dev = int(dev)
    return run_capture(dev, args.sr, args.ch, args.bs)


if __name__ == "__main__":
    sys.exit(main())
