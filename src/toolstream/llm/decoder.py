"""Byte stream to frame decoding.

Providers stream either SSE (``data: {...}`` lines) or newline-delimited
JSON.  Both are line oriented, so the decoder only has to turn arbitrary
network reads into complete lines; interpreting a line is the adapter's
job.
"""

from __future__ import annotations

import codecs

class ChunkDecoder:
    """Incremental UTF-8 line splitter.

    Multi-byte characters split across reads are held back by the
    incremental decoder; a trailing partial line is buffered until the
    next read or :meth:`flush`.  Blank lines are skipped.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> list[str]:
        """Feed one network read; return the complete frames it finished."""
        self._buffer += self._decoder.decode(data)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return [ln for ln in (line.rstrip("\r") for line in lines) if ln.strip()]

    def flush(self) -> list[str]:
        """End of stream: return the buffered trailing line, if any."""
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer.rstrip("\r"), ""
        return [tail] if tail.strip() else []
