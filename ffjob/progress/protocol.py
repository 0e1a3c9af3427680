"""
ffmpeg progress protocol.

ffmpeg started with ``-progress <sink>`` periodically writes blocks of
``key=value`` lines to the sink. Each block ends with a ``progress`` line whose
value is ``continue`` while encoding and ``done`` on the final block:

    frame=1040
    fps=342.68
    out_time_us=35968000
    speed=11.9x
    progress=continue

This module decodes single lines (ProgressLine) and stitches a stream of lines
into ProgressRecord values (ProgressAssembler). It does no I/O of its own; the
pipe and HTTP transports both feed it plain text lines.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Iterable, Iterator, Optional

logger = logging.getLogger(__name__)

KEY_OUT_TIME_US = "out_time_us"
KEY_SPEED = "speed"
KEY_PROGRESS = "progress"

PROGRESS_DONE = "done"
PROGRESS_CONTINUE = "continue"


@dataclass(frozen=True)
class ProgressLine:
    """One ``key=value`` line of an ffmpeg progress report."""
    key: str
    value: str

    @classmethod
    def parse(cls, text: str) -> "ProgressLine":
        """
        Split text on the first ``=``.

        The value is returned verbatim and may itself contain ``=``.

        Raises:
            ValueError: If text has no ``=`` separator
        """
        key, sep, value = text.partition("=")
        if not sep:
            raise ValueError(f"bad progress line format: {text!r}")
        return cls(key=key, value=value)


@dataclass
class ProgressRecord:
    """Progress state accumulated between two ``progress=`` lines."""
    done: bool = False
    speed: float = 0.0  # 10.8x
    out_time: timedelta = field(default_factory=timedelta)


ProgressCallback = Callable[[ProgressRecord], None]


def iter_lines(chunks: Iterable[bytes]) -> Iterator[str]:
    """
    Re-split arbitrary byte chunks into decoded text lines.

    A trailing partial line is yielded once chunks is exhausted.
    """
    pending = b""
    for chunk in chunks:
        pending += chunk
        *complete, pending = pending.split(b"\n")
        for raw in complete:
            yield raw.decode("utf-8", errors="replace")
    if pending:
        yield pending.decode("utf-8", errors="replace")


def _parse_speed(value: str) -> float:
    if value.endswith("x"):
        value = value[:-1]
    return float(value)


class ProgressAssembler:
    """
    Stateful consumer that turns progress lines into ProgressRecord values.

    The callback is invoked once per ``progress=`` line, from whichever thread
    calls feed()/run(). Malformed lines and fields that fail to parse are
    skipped: ffmpeg's progress output is not versioned and may grow new keys
    or odd values (``speed=N/A`` before the first frame).
    """

    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self._callback = callback
        self._record = ProgressRecord()
        self.records_delivered = 0

    def feed(self, text: str) -> Optional[ProgressRecord]:
        """
        Consume a single line.

        Returns:
            The completed record if this line closed one, otherwise None
        """
        try:
            line = ProgressLine.parse(text.rstrip("\r\n"))
        except ValueError:
            return None

        if line.key == KEY_OUT_TIME_US:
            try:
                self._record.out_time = timedelta(microseconds=int(line.value))
            except (ValueError, OverflowError):
                pass
        elif line.key == KEY_SPEED:
            try:
                self._record.speed = _parse_speed(line.value)
            except ValueError:
                pass
        elif line.key == KEY_PROGRESS:
            record = self._record
            record.done = line.value == PROGRESS_DONE
            self._record = ProgressRecord()
            self.records_delivered += 1
            if self._callback is not None:
                self._callback(record)
            return record
        return None

    def run(self, lines: Iterable[str]) -> None:
        """
        Consume lines until the source is exhausted.

        Errors raised by the source while iterating propagate to the caller.
        """
        for text in lines:
            self.feed(text)
        logger.debug(f"Progress stream ended after {self.records_delivered} records")
