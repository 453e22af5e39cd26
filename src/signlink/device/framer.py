"""
Line framer: turns a chunked byte stream into trimmed text lines.

The device writes one recognised sign per line. Reads arrive in arbitrary
chunks: a chunk may hold several lines, a fragment of one, a bare
terminator, or split a multi-byte UTF-8 character in half. The framer keeps
undecoded tail bytes in an incremental decoder and the unterminated text in
a string buffer, so after every feed() at most one partial line remains.

A device that never sends a terminator would grow the buffer forever, so the
partial line is capped: past ``max_line_length`` characters it is discarded
and everything up to the next terminator is dropped (resync).
"""

from __future__ import annotations

import codecs
import logging
from typing import AsyncIterable, AsyncIterator, Optional

logger = logging.getLogger(__name__)

TERMINATOR = "\n"


class LineFramer:
    """Stateful per-connection decoder. Create a fresh one for every open channel."""

    def __init__(
        self,
        encoding: str = "utf-8",
        max_line_length: Optional[int] = 1024,
    ):
        self._encoding = encoding
        self._max_line_length = max_line_length
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""
        self._resyncing = False
        self.discarded = 0  # partial lines dropped by the cap

    @property
    def pending(self) -> str:
        """Decoded text received since the last terminator."""
        return self._pending

    def feed(self, chunk: bytes) -> list[str]:
        """Consume one chunk and return the lines it completed (possibly none)."""
        if not chunk:
            return []

        self._pending += self._decoder.decode(chunk)
        if TERMINATOR not in self._pending:
            self._enforce_cap()
            return []

        *segments, self._pending = self._pending.split(TERMINATOR)
        if self._resyncing:
            # The first segment is the tail of an oversized line
            segments = segments[1:]
            self._resyncing = False

        # A line completed within this chunk may be just as oversized
        kept = (segment for segment in segments if not self._oversized(segment))
        lines = [line for line in (segment.strip() for segment in kept) if line]
        self._enforce_cap()
        return lines

    def flush(self) -> Optional[str]:
        """End of stream: return the unterminated trailing line, if any."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        resyncing = self._resyncing
        self.reset()
        if resyncing:
            return None
        tail = tail.strip()
        return tail or None

    def reset(self) -> None:
        self._decoder = codecs.getincrementaldecoder(self._encoding)(errors="replace")
        self._pending = ""
        self._resyncing = False

    def _oversized(self, text: str) -> bool:
        if self._max_line_length is None or len(text) <= self._max_line_length:
            return False
        logger.warning("Discarding %d-character line over the length limit", len(text))
        self.discarded += 1
        return True

    def _enforce_cap(self) -> None:
        if self._max_line_length is None:
            return
        if len(self._pending) <= self._max_line_length:
            return
        logger.warning(
            "Discarding %d buffered characters without a line terminator",
            len(self._pending),
        )
        self._pending = ""
        self._resyncing = True
        self.discarded += 1


async def frame_lines(
    chunks: AsyncIterable[bytes], framer: Optional[LineFramer] = None
) -> AsyncIterator[str]:
    """Lazily frame an async byte-chunk stream, flushing the tail at the end."""
    framer = framer or LineFramer()
    async for chunk in chunks:
        for line in framer.feed(chunk):
            yield line
    tail = framer.flush()
    if tail is not None:
        yield tail
