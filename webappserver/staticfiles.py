"""Delivery of static files from a document root, with an in-memory cache."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from functools import partial

from .handler import HttpRequestHandler
from .request import HttpRequest
from .response import HttpResponse
from .settings import Settings

_log = logging.getLogger(__name__)

_BLOCK_SIZE = 65536

_CONTENT_TYPES: tuple[tuple[tuple[str, ...], str | None], ...] = (
    ((".png",), "image/png"),
    ((".jpg",), "image/jpeg"),
    ((".gif",), "image/gif"),
    ((".pdf",), "application/pdf"),
    ((".txt",), None),
    ((".html", ".htm"), None),
    ((".css",), "text/css"),
    ((".js",), "text/javascript"),
    ((".svg",), "image/svg+xml"),
    ((".woff",), "font/woff"),
    ((".woff2",), "font/woff2"),
    ((".ttf",), "application/x-font-ttf"),
    ((".eot",), "application/vnd.ms-fontobject"),
    ((".otf",), "application/font-otf"),
)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class _CacheEntry:
    document: bytes
    created: int
    filename: bytes


class _CostCache:
    """A least-recently-used cache whose entries each have a cost."""

    def __init__(self, max_cost: int) -> None:
        self.max_cost = max_cost
        self._entries: OrderedDict[bytes, tuple[_CacheEntry, int]] = OrderedDict()
        self._total = 0

    def get(self, key: bytes) -> _CacheEntry | None:
        item = self._entries.get(key)
        if item is None:
            return None
        self._entries.move_to_end(key)
        return item[0]

    def insert(self, key: bytes, entry: _CacheEntry, cost: int) -> bool:
        old = self._entries.pop(key, None)
        if old is not None:
            self._total -= old[1]
        if cost > self.max_cost:
            return False
        while self._entries and self._total + cost > self.max_cost:
            _, (_, evicted_cost) = self._entries.popitem(last=False)
            self._total -= evicted_cost
        self._entries[key] = (entry, cost)
        self._total += cost
        return True


class StaticFileController(HttpRequestHandler):
    """Serves files below a document root.

    Settings: ``path`` (document root, relative to the configuration file),
    ``encoding`` for text and HTML files, ``maxAge`` in milliseconds for the
    browser cache, ``cacheTime`` in milliseconds (0 keeps entries forever),
    ``cacheSize`` in bytes and ``maxCachedFileSize`` in bytes.
    """

    def __init__(self, settings: Settings) -> None:
        self._max_age = int(settings.value("maxAge", "60000"))
        self._encoding = str(settings.value("encoding", "UTF-8"))
        docroot = str(settings.value("path", "."))
        if not (docroot.startswith(":/") or docroot.startswith("qrc://")):
            docroot = settings.resolve_path(docroot)
        self._docroot = docroot
        _log.debug(
            "StaticFileController: docroot=%s, encoding=%s, maxAge=%i",
            self._docroot, self._encoding, self._max_age,
        )
        self._max_cached_file_size = int(settings.value("maxCachedFileSize", "65536"))
        self._cache = _CostCache(int(settings.value("cacheSize", "1000000")))
        self._cache_timeout = int(settings.value("cacheTime", "60000"))
        self._lock = threading.Lock()
        _log.debug(
            "StaticFileController: cache timeout=%i, size=%i",
            self._cache_timeout, self._cache.max_cost,
        )

    @property
    def docroot(self) -> str:
        """The absolute document root."""
        return self._docroot

    @property
    def encoding(self) -> str:
        """The character set announced for text and HTML files."""
        return self._encoding

    def content_type_for(self, file_name: bytes | str) -> str | None:
        """Return the Content-Type for ``file_name``, or None if unknown."""
        name = os.fsdecode(file_name)
        for suffixes, content_type in _CONTENT_TYPES:
            if name.endswith(suffixes):
                if suffixes == (".txt",):
                    return "text/plain; charset=" + self._encoding
                if suffixes == (".html", ".htm"):
                    return "text/html; charset=" + self._encoding
                return content_type
        _log.debug("StaticFileController: unknown MIME type for filename %r", name)
        return None

    def _set_headers(self, file_name: bytes, response: HttpResponse) -> None:
        content_type = self.content_type_for(file_name)
        if content_type is not None:
            response.set_header(b"Content-Type", content_type)
        response.set_header(b"Cache-Control", "max-age=%d" % int(self._max_age / 1000))

    def service(self, request: HttpRequest, response: HttpResponse) -> None:
        """Write the requested file, a cached copy of it, or an error."""
        path = request.path
        now = _now_ms()
        with self._lock:
            entry = self._cache.get(path)
            if entry is not None and not (self._cache_timeout == 0 or entry.created > now - self._cache_timeout):
                entry = None
        if entry is not None:
            _log.debug("StaticFileController: Cache hit for %r", path)
            self._set_headers(entry.filename, response)
            response.write(entry.document)
            return

        _log.debug("StaticFileController: Cache miss for %r", path)
        if b"/.." in path:
            _log.warning("StaticFileController: detected forbidden characters in path %r", path)
            response.set_status(403, b"forbidden")
            response.write(b"403 forbidden", True)
            return
        if os.path.isdir(self._docroot + os.fsdecode(path)):
            path += b"/index.html"
        file_path = self._docroot + os.fsdecode(path)
        _log.debug("StaticFileController: Open file %s", file_path)
        try:
            handle = open(file_path, "rb")
        except OSError:
            if os.path.exists(file_path):
                _log.warning("StaticFileController: Cannot open existing file %s for reading", file_path)
                response.set_status(403, b"forbidden")
                response.write(b"403 forbidden", True)
            else:
                response.set_status(404, b"not found")
                response.write(b"404 not found", True)
            return

        with handle:
            self._set_headers(path, response)
            blocks = iter(partial(handle.read, _BLOCK_SIZE), b"")
            if os.fstat(handle.fileno()).st_size <= self._max_cached_file_size:
                document = bytearray()
                for block in blocks:
                    response.write(block)
                    document += block
                entry = _CacheEntry(bytes(document), now, path)
                with self._lock:
                    self._cache.insert(request.path, entry, len(entry.document))
            else:
                for block in blocks:
                    response.write(block)