"""Per-stream byte buffer for audio received since the last drain."""


class Accumulator:
    """Growable byte buffer with an atomic swap-on-drain.

    Only `append` (producer side) and `drain` (cycle side) touch the buffer.
    Both run on the event loop thread without awaiting, so a drain can never
    observe a half-appended chunk or lose one that arrives right after it.
    """

    def __init__(self, stream: str):
        self.stream = stream
        self._buffer = bytearray()
        self.bytes_received = 0
        self.bytes_drained = 0

    def __len__(self) -> int:
        return len(self._buffer)

    def append(self, chunk: bytes) -> None:
        if not chunk:
            return
        self._buffer += chunk
        self.bytes_received += len(chunk)

    def drain(self) -> bytes:
        """Swap in a fresh buffer and return everything held so far.

        Returns b"" without swapping when nothing is buffered.
        """
        if not self._buffer:
            return b""
        segment, self._buffer = self._buffer, bytearray()
        self.bytes_drained += len(segment)
        return bytes(segment)
