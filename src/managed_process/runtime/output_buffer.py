"""Ordered chunk accumulator for one output stream of a child process."""

from __future__ import annotations

from collections.abc import Iterator

__all__ = ["OutputBuffer"]


class OutputBuffer:
    """Append-only sequence of byte chunks, in arrival order.

    Chunks are kept as received and only joined on demand. ``clear()``
    truncates the sequence in place, so anyone holding a reference to the
    buffer sees the reset without re-fetching it.

    Example:
        buf = OutputBuffer()
        buf.append(b"hel")
        buf.append(b"lo")
        assert buf.to_bytes() == b"hello"
    """

    __slots__ = ("_chunks",)

    def __init__(self) -> None:
        self._chunks: list[bytes] = []

    def append(self, chunk: bytes) -> None:
        """Add one chunk at the tail."""
        self._chunks.append(bytes(chunk))

    def to_bytes(self) -> bytes:
        """Return a snapshot of all chunks joined in arrival order."""
        return b"".join(self._chunks)

    def to_text(self, encoding: str = "utf-8", errors: str = "replace") -> str:
        """Decode the joined chunks.

        Args:
            encoding: Text encoding
            errors: Codec error handler; the default never raises

        Returns:
            Decoded text
        """
        return self.to_bytes().decode(encoding, errors=errors)

    @property
    def is_empty(self) -> bool:
        return not self._chunks

    @property
    def size(self) -> int:
        """Total number of bytes held."""
        return sum(len(chunk) for chunk in self._chunks)

    def clear(self) -> None:
        """Drop all chunks, keeping this object."""
        del self._chunks[:]

    def __len__(self) -> int:
        return len(self._chunks)

    def __iter__(self) -> Iterator[bytes]:
        return iter(list(self._chunks))

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    def __str__(self) -> str:
        return self.to_text()

    def __repr__(self) -> str:
        return f"OutputBuffer(chunks={len(self._chunks)}, size={self.size})"
