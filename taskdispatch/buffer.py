"""A growable byte buffer with a region to fill and a region to drain."""

from __future__ import annotations


class Buffer:
    """Bytes waiting to be written out, followed by free space to read into.

    Data between the drain position and the fill position is ready to be
    sent. Space after the fill position is free. When everything pending has
    been drained, both positions go back to the start so the space is reused.
    """

    def __init__(self) -> None:
        self._data = bytearray()
        self._into = 0
        self._outof = 0

    @property
    def size(self) -> int:
        """Total bytes allocated."""
        return len(self._data)

    def __len__(self) -> int:
        return self.outof_size()

    def into_size(self) -> int:
        """Free bytes available to fill."""
        return len(self._data) - self._into

    def outof_size(self) -> int:
        """Bytes pending to be drained."""
        return self._into - self._outof

    def need_into(self, count: int) -> None:
        """Grow the buffer so at least ``count`` bytes are free to fill."""
        if count < 0:
            raise ValueError("count must not be negative")
        free = self.into_size()
        if count <= free:
            return
        self._data.extend(bytes(count - free))

    def append(self, data: bytes | bytearray | memoryview) -> int:
        """Copy ``data`` into the free space, growing as needed; returns its length."""
        view = memoryview(data).cast("B")
        length = len(view)
        self.need_into(length)
        self._data[self._into:self._into + length] = view
        self._into += length
        return length

    def write_text(self, text: str) -> int:
        """Append ``text`` encoded as UTF-8; returns the number of bytes added."""
        return self.append(text.encode("utf-8"))

    def pending(self) -> bytes:
        """A copy of the bytes waiting to be drained."""
        return bytes(self._data[self._outof:self._into])

    def used_outof(self, used: int) -> None:
        """Mark ``used`` pending bytes as drained."""
        if used < 0 or used > self.outof_size():
            raise ValueError(
                f"cannot drain {used} bytes, only {self.outof_size()} pending"
            )
        self._outof += used
        if self._outof == self._into:
            self._into = self._outof = 0

    def debug_str(self) -> str:
        """Size, free space and pending bytes in a compact form."""
        return f"S{self.size} i#{self.into_size()} o#{self.outof_size()}"