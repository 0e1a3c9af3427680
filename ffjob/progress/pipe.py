"""
In-process pipe transport for ffmpeg progress.

ProgressPipe wraps an os.pipe(). The write end is handed to the child process
as its stdout; the read end is consumed line by line by the progress thread.
close_read() may be called from any thread and unblocks a reader that is
waiting in select(), which is how the supervisor tears the consumer down on
cancellation or after the process has exited.
"""

from __future__ import annotations

import logging
import os
import select
import threading
from typing import Iterator, Optional

from ffjob.progress.protocol import iter_lines

logger = logging.getLogger(__name__)

READ_SIZE = 4096


class ClosedPipeError(OSError):
    """Read on a pipe whose read end was closed by close_read()."""


class ProgressPipe:
    """
    Unidirectional byte pipe with independently closable ends.

    Reads use select() on the data fd plus a private wakeup fd, so a blocked
    reader returns as soon as close_read() is called instead of waiting for
    the writer.
    """

    def __init__(self) -> None:
        self._read_fd, self._write_fd = os.pipe()
        self._wake_r, self._wake_w = os.pipe()
        self._closed = threading.Event()
        self._read_lock = threading.Lock()
        self._reading = False
        self._write_lock = threading.Lock()

    @property
    def write_fd(self) -> Optional[int]:
        """File descriptor to pass as the child's stdout (None once closed)."""
        return self._write_fd

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close_write(self) -> None:
        """Close the parent's copy of the write end so EOF follows the child's exit."""
        with self._write_lock:
            if self._write_fd is not None:
                os.close(self._write_fd)
                self._write_fd = None

    def close_read(self) -> None:
        """
        Close the read end.

        Safe to call more than once and from any thread. A reader blocked in
        lines() raises ClosedPipeError.
        """
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            os.write(self._wake_w, b"\0")
        except OSError:
            pass
        with self._read_lock:
            # An active reader owns the fd while it sits in select(); it
            # closes the fd itself once woken.
            if not self._reading:
                self._release_read_fd()
        logger.debug("Progress pipe read end closed")

    def _release_read_fd(self) -> None:
        if self._read_fd is not None:
            os.close(self._read_fd)
            self._read_fd = None

    def close(self) -> None:
        """Release every descriptor held by the pipe."""
        self.close_read()
        self.close_write()
        for name in ("_wake_r", "_wake_w"):
            fd = getattr(self, name)
            if fd is not None:
                os.close(fd)
                setattr(self, name, None)

    def read(self) -> bytes:
        """
        Read the next chunk of bytes.

        Returns:
            Bytes read, or b"" at end of stream (all writers closed)

        Raises:
            ClosedPipeError: If close_read() was called
        """
        while True:
            with self._read_lock:
                if self._closed.is_set() or self._read_fd is None:
                    raise ClosedPipeError("read on closed pipe")
                fd = self._read_fd
                self._reading = True
            try:
                ready, _, _ = select.select([fd, self._wake_r], [], [])
            except BaseException:
                with self._read_lock:
                    self._reading = False
                    if self._closed.is_set():
                        self._release_read_fd()
                raise
            with self._read_lock:
                self._reading = False
                if self._closed.is_set():
                    self._release_read_fd()
                    raise ClosedPipeError("read on closed pipe")
                if fd in ready:
                    # select() reported the fd readable, so this returns
                    # without blocking (b"" at EOF).
                    return os.read(fd, READ_SIZE)

    def lines(self) -> Iterator[str]:
        """
        Yield decoded text lines until end of stream.

        A trailing line without a newline is yielded at EOF.
        """
        return iter_lines(iter(self.read, b""))

    def __enter__(self) -> "ProgressPipe":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
