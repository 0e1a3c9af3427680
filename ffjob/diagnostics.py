"""
Bounded ring buffer for external tool diagnostics.

This module provides DiagnosticBuffer, which keeps the last N non-empty lines
written to it. ffmpeg and ffprobe stderr are drained into a DiagnosticBuffer
while the process runs; when the process fails the snapshot is attached to
the raised JobError so the tool's own complaint travels with the exception.
"""

from __future__ import annotations

import io
import threading
from collections import deque
from typing import List, Union

DEFAULT_LIMIT = 10


class DiagnosticBuffer(io.RawIOBase):
    """
    Thread-safe FIFO of the most recent diagnostic lines.

    Writable binary stream: anything that writes bytes (or str) to a file
    object can write here. Each write is split on newlines, every line is
    stripped, and blank lines are dropped. When more than ``limit`` lines are
    held the oldest is discarded (insertion order only).

    Attributes:
        limit: Maximum number of lines kept
    """

    def __init__(self, limit: int = DEFAULT_LIMIT) -> None:
        """
        Initialize diagnostic buffer.

        Args:
            limit: Maximum number of lines (must be > 0)

        Raises:
            ValueError: If limit <= 0
        """
        super().__init__()
        if limit <= 0:
            raise ValueError(f"DiagnosticBuffer limit must be > 0, got {limit}")
        self.limit = limit
        # deque with maxlen drops the oldest line on append once full
        self._lines: deque[str] = deque(maxlen=limit)
        self._lock = threading.Lock()
        self._total_lines = 0

    def writable(self) -> bool:
        return True

    def write(self, chunk: Union[bytes, bytearray, memoryview, str]) -> int:
        """
        Append the lines contained in chunk.

        Returns:
            Number of bytes (or characters) consumed, always len(chunk)
        """
        if isinstance(chunk, str):
            text = chunk
        else:
            text = bytes(chunk).decode("utf-8", errors="replace")
        with self._lock:
            for line in text.split("\n"):
                line = line.strip()
                if not line:
                    continue
                self._lines.append(line)
                self._total_lines += 1
        return len(chunk)

    def lines(self) -> List[str]:
        """Return a snapshot of the buffered lines, oldest first."""
        with self._lock:
            return list(self._lines)

    @property
    def total_lines(self) -> int:
        """Number of lines ever appended, including evicted ones."""
        with self._lock:
            return self._total_lines

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)
