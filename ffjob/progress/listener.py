"""
HTTP transport for ffmpeg progress.

ffmpeg can deliver ``-progress`` output to a URL instead of a file descriptor.
ProgressListener binds an ephemeral local port and accepts the progress stream
as request bodies on a single path. Handler threads only decode: completed
ProgressRecord values are queued, and run() hands them to the callback on the
thread that called it, one at a time and in arrival order. Callers see the
same callbacks as with the pipe transport.
"""

import logging
import queue
import socket
import socketserver
import threading
from http.server import BaseHTTPRequestHandler
from typing import Iterator, Optional, Set
from urllib.parse import urlsplit

from ffjob.progress.protocol import ProgressAssembler, ProgressCallback, iter_lines

logger = logging.getLogger(__name__)

DEFAULT_PATH = "/progress"
READ_SIZE = 4096

# Queued by stop() after the last handler has finished
_STOP = object()


class ProgressRequestHandler(BaseHTTPRequestHandler):
    """
    Request handler for the progress endpoint.

    ffmpeg POSTs one long-lived request with a chunked body; plain
    Content-Length bodies and bodies terminated by connection close are
    accepted as well.
    """

    listener: "ProgressListener" = None

    def setup(self):
        super().setup()
        self.listener._track(self.connection)

    def finish(self):
        try:
            super().finish()
        finally:
            self.listener._untrack(self.connection)

    def do_POST(self):
        """Consume a progress stream."""
        self._handle_progress()

    def do_PUT(self):
        """Consume a progress stream (some ffmpeg builds use PUT for http output)."""
        self._handle_progress()

    def do_GET(self):
        """Reject GET requests."""
        if urlsplit(self.path).path == self.listener.path:
            self.send_error(405, "Method Not Allowed")
        else:
            self.send_error(404, "Not Found")

    def _handle_progress(self):
        if urlsplit(self.path).path != self.listener.path:
            self.send_error(404, "Not Found")
            return

        try:
            length = self._content_length()
        except ValueError:
            self.send_error(400, "Bad Content-Length")
            return

        self._aborted = False
        assembler = ProgressAssembler(self.listener._records.put)
        assembler.run(iter_lines(self._read_body(length)))
        if self._aborted:
            return

        logger.debug(
            "Progress request complete",
            extra={"client": self.address_string(), "records": assembler.records_delivered},
        )
        self._respond(200)

    def _respond(self, code: int) -> None:
        try:
            self.send_response(code)
            self.send_header("Content-Length", "0")
            self.send_header("Connection", "close")
            self.end_headers()
        except OSError as e:
            logger.debug(f"Error sending progress response: {e}")

    def _content_length(self) -> Optional[int]:
        """
        Body length for non-chunked requests.

        Returns:
            None when the body is chunked or runs until the client closes

        Raises:
            ValueError: If Content-Length is not a non-negative integer
        """
        if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
            return None
        value = self.headers.get("Content-Length")
        if value is None:
            return None
        length = int(value)
        if length < 0:
            raise ValueError(f"negative Content-Length: {length}")
        return length

    def _read_body(self, length: Optional[int]) -> Iterator[bytes]:
        try:
            yield from self._iter_body(length)
        except (OSError, ValueError) as e:
            # Connection reset, bad chunk framing, or the socket was shut
            # down by stop()
            logger.debug(f"Progress request ended early: {e}")
            self._aborted = True

    def _iter_body(self, length: Optional[int]) -> Iterator[bytes]:
        if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
            yield from self._iter_chunked()
            return

        if length is not None:
            remaining = length
            while remaining > 0:
                data = self.rfile.read1(min(READ_SIZE, remaining))
                if not data:
                    break
                remaining -= len(data)
                yield data
            return

        # No framing: body runs until the client closes its side
        while True:
            data = self.rfile.read1(READ_SIZE)
            if not data:
                return
            yield data

    def _iter_chunked(self) -> Iterator[bytes]:
        while True:
            size_line = self.rfile.readline()
            if not size_line:
                return
            size = int(size_line.split(b";", 1)[0].strip(), 16)
            if size == 0:
                # Skip optional trailers up to the terminating blank line
                while True:
                    trailer = self.rfile.readline()
                    if not trailer or trailer in (b"\r\n", b"\n"):
                        return
            data = self.rfile.read(size)
            if len(data) < size:
                if data:
                    yield data
                return
            self.rfile.readline()  # CRLF after chunk data
            yield data

    def log_message(self, format, *args):
        """Override to use our logger instead of stderr."""
        logger.debug(f"{self.address_string()} - {format % args}")


class _ThreadingHTTPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """
    Threaded HTTP server for the progress endpoint.

    server_close() joins the handler threads; stop() shuts their sockets
    down first so none of them is left blocked on a read.
    """
    daemon_threads = True
    block_on_close = True


class ProgressListener:
    """
    Local HTTP endpoint receiving ffmpeg progress.

    The port is bound in the constructor so addr is valid immediately and can
    be passed to ffmpeg as ``-progress <addr>`` before serving starts.

    Args:
        callback: Invoked with every completed ProgressRecord, only from the
            thread running run()
        host: Interface to bind (default: localhost)
        port: Port to bind (default: 0, ephemeral)
        path: Request path accepting progress (default: /progress)
    """

    def __init__(
        self,
        callback: Optional[ProgressCallback],
        host: str = "localhost",
        port: int = 0,
        path: str = DEFAULT_PATH,
    ) -> None:
        self.path = path
        self._callback = callback
        self._records: "queue.Queue" = queue.Queue()

        handler = type("Handler", (ProgressRequestHandler,), {"listener": self})
        self._server = _ThreadingHTTPServer((host, port), handler)

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._connections: Set[socket.socket] = set()
        self._stopped = False
        self._accept_thread: Optional[threading.Thread] = None
        self._thread: Optional[threading.Thread] = None

        logger.info(f"Progress listener bound at {self.addr}")

    @property
    def addr(self) -> str:
        """URL ffmpeg should deliver progress to."""
        host, port = self._server.server_address[:2]
        if ":" in host:
            host = f"[{host}]"
        return f"http://{host}:{port}{self.path}"

    def run(self) -> None:
        """
        Accept requests and deliver records until stop() is called.

        Connections are accepted on a helper thread; the callback runs here.
        Records received before stop() are all delivered before run() returns.

        Raises:
            The exception raised by the callback; the listener is stopped first
        """
        with self._lock:
            if self._stopped:
                return
            self._accept_thread = threading.Thread(
                target=self._server.serve_forever,
                kwargs={"poll_interval": 0.1},
                name="ProgressListener-accept",
                daemon=True,
            )
            self._accept_thread.start()

        try:
            while True:
                record = self._records.get()
                if record is _STOP:
                    break
                if self._callback is not None:
                    self._callback(record)
        except Exception:
            self.stop()
            raise
        finally:
            logger.debug("Progress listener delivery loop exited")

    def start(self) -> "ProgressListener":
        """Run the delivery loop on a background thread."""
        def target():
            try:
                self.run()
            except Exception as e:
                logger.error(f"Progress listener failed: {e}")

        self._thread = threading.Thread(target=target, name="ProgressListener", daemon=True)
        self._thread.start()
        return self

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until no progress request is in flight.

        Returns:
            True if idle, False on timeout
        """
        with self._idle:
            return self._idle.wait_for(lambda: not self._connections, timeout=timeout)

    def stop(self) -> None:
        """
        Stop serving and release the port.

        Ends the accept loop, shuts down in-flight request connections, joins
        their handler threads and closes the listening socket, then ends
        run(). Safe to call more than once and from any thread.
        """
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            accept_thread = self._accept_thread
            connections = list(self._connections)

        if accept_thread is not None:
            self._server.shutdown()
            accept_thread.join()
        for conn in connections:
            _shutdown_socket(conn)
        self._server.server_close()
        self._records.put(_STOP)

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
        logger.info("Progress listener stopped")

    def _track(self, conn: socket.socket) -> None:
        with self._lock:
            self._connections.add(conn)
            stopped = self._stopped
        if stopped:
            # Accepted just before stop(); do not let its handler block
            _shutdown_socket(conn)

    def _untrack(self, conn: socket.socket) -> None:
        with self._idle:
            self._connections.discard(conn)
            self._idle.notify_all()

    def __enter__(self) -> "ProgressListener":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.stop()


def _shutdown_socket(conn: socket.socket) -> None:
    try:
        conn.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
