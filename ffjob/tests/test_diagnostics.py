"""
Tests for DiagnosticBuffer.

The buffer keeps the most recent non-empty lines, oldest first.
"""

import threading

import pytest

from ffjob.diagnostics import DEFAULT_LIMIT, DiagnosticBuffer


class TestDiagnosticBuffer:

    def test_keeps_last_lines_in_order(self):
        buffer = DiagnosticBuffer(limit=10)
        for i in range(25):
            buffer.write(f"line {i}\n".encode())
        assert buffer.lines() == [f"line {i}" for i in range(15, 25)]
        assert len(buffer) == 10
        assert buffer.total_lines == 25

    def test_multi_line_write_evicts_per_line(self):
        buffer = DiagnosticBuffer(limit=2)
        buffer.write(b"a\nb\nc\n")
        assert buffer.lines() == ["b", "c"]

    def test_lines_are_stripped_and_blanks_dropped(self):
        buffer = DiagnosticBuffer()
        buffer.write(b"  first  \n\n   \r\nsecond\r\n")
        assert buffer.lines() == ["first", "second"]

    def test_write_returns_length(self):
        buffer = DiagnosticBuffer()
        assert buffer.write(b"abc\n") == 4
        assert buffer.write("str input") == 9
        assert buffer.lines() == ["abc", "str input"]

    def test_snapshot_is_a_copy(self):
        buffer = DiagnosticBuffer()
        buffer.write(b"one")
        snapshot = buffer.lines()
        buffer.write(b"two")
        assert snapshot == ["one"]

    def test_default_limit(self):
        assert DiagnosticBuffer().limit == DEFAULT_LIMIT

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            DiagnosticBuffer(limit=0)

    def test_print_to_buffer(self):
        """Usable as a file object."""
        buffer = DiagnosticBuffer()
        print("written with print", file=_TextAdapter(buffer))
        assert buffer.lines() == ["written with print"]

    def test_concurrent_writers(self):
        buffer = DiagnosticBuffer(limit=5)

        def writer(n):
            for i in range(200):
                buffer.write(f"{n}-{i}\n".encode())

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(buffer) == 5
        assert buffer.total_lines == 800


class _TextAdapter:
    def __init__(self, buffer):
        self._buffer = buffer

    def write(self, text):
        return self._buffer.write(text)
