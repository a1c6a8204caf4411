"""Accepting TCP connections and passing them to connection handlers."""

from __future__ import annotations

import argparse
import configparser
import logging
import socket
import threading
from collections.abc import Sequence

from .handler import HttpRequestHandler
from .pool import ConnectionHandlerPool
from .settings import Settings
from .staticfiles import StaticFileController

_log = logging.getLogger(__name__)

_TOO_MANY = b"HTTP/1.1 503 too many connections\r\nConnection: close\r\n\r\nToo many connections\r\n"
_ACCEPT_POLL = 0.2


class HttpListener:
    """Listens on a TCP port and hands each connection to a pooled handler.

    Settings: ``host`` binds to one interface (all interfaces if empty) and
    ``port`` is the TCP port. The pool settings are described in
    :class:`ConnectionHandlerPool`. Listening starts on construction.
    """

    def __init__(self, settings: Settings, request_handler: HttpRequestHandler) -> None:
        self._settings = settings
        self._request_handler = request_handler
        self._pool: ConnectionHandlerPool | None = None
        self._server: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        try:
            self.listen()
        except OSError:
            self.close()
            raise

    @property
    def is_listening(self) -> bool:
        """Whether the listener accepts connections."""
        return self._server is not None

    @property
    def server_address(self) -> tuple:
        """The address the listener is bound to."""
        if self._server is None:
            raise RuntimeError("the listener is not listening")
        return self._server.getsockname()

    def listen(self) -> None:
        """Start listening, again after :meth:`close` if needed.

        Raises OSError when the port cannot be bound.
        """
        if self._server is not None:
            return
        if self._pool is None:
            self._pool = ConnectionHandlerPool(self._settings, self._request_handler)
        host = str(self._settings.value("host", "") or "")
        port = int(self._settings.value("port", 0) or 0)
        try:
            server = socket.create_server((host, port))
        except OSError as exc:
            _log.critical("HttpListener: Cannot bind on port %i: %s", port, exc)
            raise
        server.settimeout(_ACCEPT_POLL)
        self._server = server
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._accept_loop, args=(server, self._stop), name="http-listener", daemon=True
        )
        self._thread.start()
        _log.debug("HttpListener: Listening on port %i", server.getsockname()[1])

    def _accept_loop(self, server: socket.socket, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                sock, _ = server.accept()
            except TimeoutError:
                continue
            except OSError:
                break
            try:
                self.incoming_connection(sock)
            except Exception:
                _log.critical("HttpListener: cannot dispatch connection", exc_info=True)
                sock.close()

    def close(self) -> None:
        """Stop listening, then close the pool after its pending requests."""
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        server, self._server = self._server, None
        if server is not None:
            server.close()
        _log.debug("HttpListener: closed")
        pool, self._pool = self._pool, None
        if pool is not None:
            pool.close()

    def incoming_connection(self, sock: socket.socket) -> None:
        """Give ``sock`` to a free handler, or reject it with status 503."""
        handler = self._pool.get_connection_handler() if self._pool is not None else None
        if handler is not None:
            handler.handle_connection(sock)
            return
        _log.debug("HttpListener: Too many incoming connections")
        try:
            sock.sendall(_TOO_MANY)
            sock.shutdown(socket.SHUT_WR)
        except OSError:
            pass
        finally:
            sock.close()

    def __enter__(self) -> HttpListener:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _read_config(path: str) -> tuple[dict[str, str], dict[str, str]]:
    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str  # type: ignore[assignment]
    if not parser.read(path):
        raise OSError(f"cannot read configuration file {path}")
    listener = dict(parser["listener"]) if parser.has_section("listener") else {}
    docroot = dict(parser["docroot"]) if parser.has_section("docroot") else {}
    return listener, docroot


def main(argv: Sequence[str] | None = None) -> int:
    """Serve static files over HTTP until interrupted."""
    parser = argparse.ArgumentParser(prog="webappserver", description="Serve static files over HTTP.")
    parser.add_argument("config", nargs="?", help="INI file with [listener] and [docroot] sections")
    parser.add_argument("--host", help="interface to bind to")
    parser.add_argument("--port", type=int, help="TCP port to listen on")
    parser.add_argument("--docroot", help="directory with the files to serve")
    args = parser.parse_args(argv)

    listener_values: dict[str, str] = {}
    docroot_values: dict[str, str] = {}
    if args.config:
        try:
            listener_values, docroot_values = _read_config(args.config)
        except (OSError, configparser.Error) as exc:
            parser.error(str(exc))
    if args.host is not None:
        listener_values["host"] = args.host
    if args.port is not None:
        listener_values["port"] = str(args.port)
    listener_values.setdefault("port", "8080")
    if args.docroot is not None:
        docroot_values["path"] = args.docroot

    logging.basicConfig(level=logging.INFO)
    controller = StaticFileController(Settings(docroot_values, args.config))
    try:
        listener = HttpListener(Settings(listener_values, args.config), controller)
    except OSError as exc:
        parser.error(str(exc))
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        listener.close()
    return 0