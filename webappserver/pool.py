"""A pool of connection handlers that grows and shrinks on demand."""

from __future__ import annotations

import logging
import ssl
import threading

from .connection import ConnectionHandler
from .handler import HttpRequestHandler
from .settings import Settings

_log = logging.getLogger(__name__)


def load_ssl_context(settings: Settings) -> ssl.SSLContext | None:
    """Build a server TLS context from ``sslKeyFile`` and ``sslCertFile``.

    Relative file names are taken relative to the configuration file.
    Returns None when TLS is not configured or the files cannot be loaded.
    """
    key_file = str(settings.value("sslKeyFile", "") or "")
    cert_file = str(settings.value("sslCertFile", "") or "")
    if not key_file or not cert_file:
        return None
    key_file = settings.resolve_path(key_file)
    cert_file = settings.resolve_path(cert_file)

    for label, path in (("sslCertFile", cert_file), ("sslKeyFile", key_file)):
        try:
            with open(path, "rb"):
                pass
        except OSError:
            _log.critical("ConnectionHandlerPool: cannot open %s %s", label, path)
            return None

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.verify_mode = ssl.CERT_NONE
    try:
        context.load_cert_chain(certfile=cert_file, keyfile=key_file)
    except ssl.SSLError as exc:
        _log.critical("ConnectionHandlerPool: cannot load SSL certificate or key: %s", exc)
        return None
    _log.debug("ConnectionHandlerPool: SSL settings loaded")
    return context


class ConnectionHandlerPool:
    """Hands out idle connection handlers, creating new ones as needed.

    Settings: ``maxThreads`` (default 100) limits the number of handlers,
    ``minThreads`` (default 1) is the number of idle handlers kept, and
    ``cleanupInterval`` (milliseconds, default 1000) is how often one
    surplus idle handler is closed. TLS is used when ``sslKeyFile`` and
    ``sslCertFile`` are configured.
    """

    def __init__(self, settings: Settings, request_handler: HttpRequestHandler) -> None:
        self._settings = settings
        self._request_handler = request_handler
        self._ssl_context = load_ssl_context(settings)
        self._pool: list[ConnectionHandler] = []
        self._lock = threading.Lock()
        self._closed = False
        interval = int(settings.value("cleanupInterval", 1000)) / 1000
        self._interval = interval if interval > 0 else 0.001
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run_cleanup, name="pool-cleanup", daemon=True)
        self._thread.start()

    @property
    def ssl_context(self) -> ssl.SSLContext | None:
        """The TLS context given to new handlers, if any."""
        return self._ssl_context

    def _run_cleanup(self) -> None:
        while not self._stop.wait(self._interval):
            self.cleanup()

    def get_connection_handler(self) -> ConnectionHandler | None:
        """Return an idle handler marked busy, or None if the pool is full."""
        with self._lock:
            if self._closed:
                return None
            for handler in self._pool:
                if not handler.is_busy():
                    handler.mark_busy()
                    return handler
            max_handlers = int(self._settings.value("maxThreads", 100))
            if len(self._pool) < max_handlers:
                handler = ConnectionHandler(self._settings, self._request_handler, self._ssl_context)
                handler.mark_busy()
                self._pool.append(handler)
                return handler
        return None

    def cleanup(self) -> None:
        """Close one idle handler if more than ``minThreads`` are idle."""
        max_idle = int(self._settings.value("minThreads", 1))
        idle = 0
        with self._lock:
            for handler in self._pool:
                if handler.is_busy():
                    continue
                idle += 1
                if idle > max_idle:
                    self._pool.remove(handler)
                    handler.close()
                    _log.debug(
                        "ConnectionHandlerPool: Removed connection handler (%x), pool size is now %i",
                        id(handler), len(self._pool),
                    )
                    break

    def close(self) -> None:
        """Stop the cleanup and close every handler, waiting for their threads."""
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join()
        with self._lock:
            self._closed = True
            handlers, self._pool = self._pool, []
        for handler in handlers:
            handler.close()
        _log.debug("ConnectionHandlerPool (%x): destroyed", id(self))

    def __len__(self) -> int:
        with self._lock:
            return len(self._pool)

    def __enter__(self) -> ConnectionHandlerPool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()