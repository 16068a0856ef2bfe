from collections.abc import Iterator


class BufferOverflow(Exception):
    """Raised by :meth:`LineFramer.feed` after an unterminated buffer was dropped."""


class LineFramer:
    """Reassembles text lines from arbitrarily fragmented byte chunks.

    One framer per source. An unterminated tail stays buffered until its
    ``\\n`` arrives; a tail longer than ``max_buffer_bytes`` is discarded.
    """

    def __init__(self, max_buffer_bytes: int = 4096) -> None:
        self.max_buffer_bytes = max_buffer_bytes
        self._pending = bytearray()

    @property
    def pending(self) -> bytes:
        return bytes(self._pending)

    def reset(self) -> None:
        self._pending.clear()

    def feed(self, data: bytes) -> Iterator[str]:
        # Append now; lines are extracted lazily as the caller iterates
        self._pending += data
        return self._drain()

    def _drain(self) -> Iterator[str]:
        while True:
            idx = self._pending.find(b"\n")
            if idx == -1:
                break
            raw = bytes(self._pending[: idx + 1])
            del self._pending[: idx + 1]
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

        if len(self._pending) > self.max_buffer_bytes:
            dropped = len(self._pending)
            self._pending.clear()
            raise BufferOverflow(f"{dropped} bytes without line terminator")
