"""Tests for the os.pipe() progress transport."""

import os
import threading
import time

import pytest

from ffjob.progress.pipe import ClosedPipeError, ProgressPipe


class TestProgressPipe:
    """Tests for ProgressPipe read/close behavior."""

    def test_reads_lines_until_writer_closes(self):
        with ProgressPipe() as pipe:
            os.write(pipe.write_fd, b"speed=1x\nprogress=done\n")
            pipe.close_write()
            assert list(pipe.lines()) == ["speed=1x", "progress=done"]

    def test_write_fd_is_none_after_close_write(self):
        with ProgressPipe() as pipe:
            pipe.close_write()
            pipe.close_write()
            assert pipe.write_fd is None

    def test_read_after_close_read_raises(self):
        with ProgressPipe() as pipe:
            pipe.close_read()
            assert pipe.closed
            with pytest.raises(ClosedPipeError):
                pipe.read()

    @pytest.mark.timeout(5)
    def test_close_read_unblocks_waiting_reader(self, thread_leak_guard):
        """A reader blocked with the write end still open returns promptly."""
        pipe = ProgressPipe()
        errors = []
        started = threading.Event()

        def reader():
            started.set()
            try:
                list(pipe.lines())
            except ClosedPipeError as e:
                errors.append(e)

        thread = threading.Thread(target=reader)
        thread.start()
        started.wait()
        time.sleep(0.1)

        pipe.close_read()
        thread.join(timeout=2.0)
        pipe.close()

        assert not thread.is_alive()
        assert len(errors) == 1
        assert isinstance(errors[0], OSError)

    def test_close_is_idempotent(self):
        pipe = ProgressPipe()
        pipe.close()
        pipe.close()
        assert pipe.closed
