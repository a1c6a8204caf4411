"""Serving HTTP requests on accepted client connections."""

from __future__ import annotations

import logging
import queue
import socket
import ssl
import threading
import time
from typing import Any, BinaryIO

from .handler import HttpRequestHandler
from .request import HttpRequest, RequestStatus
from .response import HttpResponse
from .settings import Settings

_log = logging.getLogger(__name__)

_TOO_LARGE = b"HTTP/1.1 413 entity too large\r\nConnection: close\r\n\r\n413 Entity too large\r\n"


def _peer_address(sock: socket.socket) -> Any:
    try:
        return sock.getpeername()
    except OSError:
        return None


def _close_socket(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    sock.close()


class ConnectionHandler:
    """Serves one client connection at a time in its own thread.

    Several requests may arrive on one connection; they are answered one
    after the other. ``readTimeout`` (milliseconds, default 10000) limits
    the wait for a complete request. With an ``ssl_context`` the
    connections are encrypted.
    """

    def __init__(
        self,
        settings: Settings,
        request_handler: HttpRequestHandler,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._settings = settings
        self._request_handler = request_handler
        self._ssl_context = ssl_context
        self._busy = False
        self._closed = False
        self._lock = threading.Lock()
        self._current: socket.socket | None = None
        self._queue: queue.Queue[socket.socket | None] = queue.Queue()
        self._thread = threading.Thread(target=self._run, name="http-connection", daemon=True)
        self._thread.start()
        _log.debug("ConnectionHandler (%x): constructed", id(self))

    def handle_connection(self, sock: socket.socket) -> None:
        """Take over an accepted connection and serve it."""
        if self._closed:
            raise RuntimeError("the connection handler has been closed")
        _log.debug("ConnectionHandler (%x): handle new connection", id(self))
        self._busy = True
        self._queue.put(sock)

    def is_busy(self) -> bool:
        """Whether this handler is in use."""
        return self._busy

    def mark_busy(self) -> None:
        """Mark this handler as in use."""
        self._busy = True

    def close(self) -> None:
        """Stop serving, drop the current connection and end the thread."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(None)
        with self._lock:
            if self._current is not None:
                try:
                    self._current.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass
        if self._thread is not threading.current_thread():
            self._thread.join()
        _log.debug("ConnectionHandler (%x): destroyed", id(self))

    def __enter__(self) -> ConnectionHandler:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _read_timeout(self) -> float:
        return int(self._settings.value("readTimeout", 10000)) / 1000

    def _run(self) -> None:
        while True:
            sock = self._queue.get()
            if sock is None:
                break
            try:
                if not self._closed:
                    self._serve(sock)
            except Exception:
                _log.critical("ConnectionHandler (%x): an uncaught exception occurred", id(self), exc_info=True)
            finally:
                with self._lock:
                    current, self._current = self._current, None
                for item in {sock, current} - {None}:
                    _close_socket(item)
                _log.debug("ConnectionHandler (%x): disconnected", id(self))
                self._busy = False

    def _serve(self, sock: socket.socket) -> None:
        if self._ssl_context is not None:
            try:
                sock = self._ssl_context.wrap_socket(sock, server_side=True)
            except (ssl.SSLError, OSError) as exc:
                _log.critical("ConnectionHandler (%x): cannot initialize socket: %s", id(self), exc)
                return
        with self._lock:
            if self._closed:
                _close_socket(sock)
                return
            self._current = sock
        peer = _peer_address(sock)
        reader = sock.makefile("rb")
        writer = sock.makefile("wb")
        try:
            self._process(sock, reader, writer, peer)
        finally:
            for stream in (writer, reader):
                try:
                    stream.close()
                except OSError:
                    pass

    def _process(self, sock: socket.socket, reader: BinaryIO, writer: BinaryIO, peer: Any) -> None:
        timeout = self._read_timeout()
        while True:
            request = HttpRequest(self._settings, peer)
            try:
                status = self._receive(sock, reader, request, timeout)
                if status is None:
                    return
                if status is RequestStatus.ABORT:
                    writer.write(_TOO_LARGE)
                    writer.flush()
                    return
                if not self._respond(request, writer):
                    return
            except OSError:
                return
            finally:
                request.close()

    def _receive(
        self, sock: socket.socket, reader: BinaryIO, request: HttpRequest, timeout: float
    ) -> RequestStatus | None:
        deadline = time.monotonic() + timeout
        while request.status not in (RequestStatus.COMPLETE, RequestStatus.ABORT):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _log.debug("ConnectionHandler (%x): read timeout occurred", id(self))
                return None
            sock.settimeout(remaining)
            try:
                status = request.read_from(reader)
            except TimeoutError:
                _log.debug("ConnectionHandler (%x): read timeout occurred", id(self))
                return None
            except (EOFError, OSError, ValueError):
                return None
            if status is RequestStatus.WAIT_FOR_BODY:
                # Large uploads may take longer than one timeout period.
                deadline = time.monotonic() + timeout
        return request.status

    def _respond(self, request: HttpRequest, writer: BinaryIO) -> bool:
        """Answer one request; return whether the connection stays open."""
        _log.debug("ConnectionHandler (%x): received request", id(self))
        response = HttpResponse(writer)
        close = request.get_header(b"Connection").lower() == b"close"
        if close:
            response.set_header(b"Connection", b"close")
        elif request.version.lower() == b"http/1.0":
            # HTTP/1.0 does not support chunked mode.
            close = True
            response.set_header(b"Connection", b"close")

        try:
            self._request_handler.service(request, response)
        except Exception:
            _log.critical(
                "ConnectionHandler (%x): an uncaught exception occurred in the request handler",
                id(self), exc_info=True,
            )
        if not response.has_sent_last_part:
            response.write(b"", True)
        _log.debug("ConnectionHandler (%x): finished request", id(self))

        if not close:
            headers = response.headers
            if headers.get(b"Connection", b"").lower() == b"close":
                close = True
            elif b"Content-Length" not in headers and headers.get(b"Transfer-Encoding", b"").lower() != b"chunked":
                close = True
        return not close