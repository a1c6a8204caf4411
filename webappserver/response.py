"""HTTP responses written to a client connection."""

from __future__ import annotations

from typing import Any, BinaryIO

from .cookie import HttpCookie, _as_bytes

_CHUNK_WAIT_LIMIT = 16384


class ResponseStateError(RuntimeError):
    """Raised when a response is changed after that is no longer possible."""


class HttpResponse:
    """A response to one HTTP request, written to a binary stream.

    The status line, headers and cookies are sent before the first body
    data. A single write with ``last_part=True`` sets ``Content-Length``;
    otherwise chunked transfer encoding is used unless the response carries
    ``Connection: close``.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._status_code = 200
        self._status_text = b"OK"
        self._headers: dict[bytes, bytes] = {}
        self._cookies: dict[bytes, HttpCookie] = {}
        self._sent_headers = False
        self._sent_last_part = False
        self._chunked = False

    @property
    def headers(self) -> dict[bytes, bytes]:
        """The response headers."""
        return self._headers

    @property
    def cookies(self) -> dict[bytes, HttpCookie]:
        """The cookies to be set, by name."""
        return self._cookies

    @property
    def status_code(self) -> int:
        """The HTTP status code."""
        return self._status_code

    @property
    def status_text(self) -> bytes:
        """The description sent with the status code."""
        return self._status_text

    @property
    def has_sent_last_part(self) -> bool:
        """Whether the body has been sent completely."""
        return self._sent_last_part

    @property
    def is_connected(self) -> bool:
        """Whether the connection to the client is still open."""
        return not getattr(self._stream, "closed", False)

    def set_header(self, name: bytes | str, value: Any) -> None:
        """Set a header; this must happen before the first write."""
        if self._sent_headers:
            raise ResponseStateError("headers have already been sent")
        self._headers[_as_bytes(name)] = _as_bytes(value)

    def set_status(self, status_code: int, description: bytes | str = b"") -> None:
        """Set the status code and its description."""
        self._status_code = int(status_code)
        self._status_text = _as_bytes(description)

    def set_cookie(self, cookie: HttpCookie) -> None:
        """Add a cookie; cookies without a name are ignored."""
        if self._sent_headers:
            raise ResponseStateError("headers have already been sent")
        if cookie.name:
            self._cookies[cookie.name] = cookie

    def _write_raw(self, data: bytes) -> bool:
        view = memoryview(data)
        while view and self.is_connected:
            try:
                written = self._stream.write(view)
            except OSError:
                return False
            view = view[len(view) if written is None else written:]
        return True

    def _write_headers(self) -> None:
        lines = [b"HTTP/1.1 %d %s\r\n" % (self._status_code, self._status_text)]
        lines.extend(b"%s: %s\r\n" % (name, self._headers[name]) for name in sorted(self._headers))
        lines.extend(b"Set-Cookie: %s\r\n" % self._cookies[name].to_bytes() for name in sorted(self._cookies))
        lines.append(b"\r\n")
        self._write_raw(b"".join(lines))
        self._sent_headers = True

    def write(self, data: bytes | str = b"", last_part: bool = False) -> None:
        """Write body data, sending the headers first if needed."""
        if self._sent_last_part:
            raise ResponseStateError("the last part has already been sent")
        data = _as_bytes(data)
        if not self._sent_headers:
            if last_part:
                self._headers[b"Content-Length"] = str(len(data)).encode("ascii")
            else:
                connection = self._headers.get(b"Connection", self._headers.get(b"connection", b""))
                if connection.lower() != b"close":
                    self._headers[b"Transfer-Encoding"] = b"chunked"
                    self._chunked = True
            self._write_headers()

        if data:
            if self._chunked:
                self._write_raw(b"%x\r\n" % len(data))
                self._write_raw(data)
                self._write_raw(b"\r\n")
            else:
                self._write_raw(data)

        if last_part:
            if self._chunked:
                self._write_raw(b"0\r\n\r\n")
            self.flush()
            self._sent_last_part = True

    def redirect(self, url: bytes | str) -> None:
        """Send a 303 redirect to ``url`` as the complete response."""
        self.set_status(303, b"See Other")
        self.set_header(b"Location", url)
        self.write(b"Redirect", True)

    def flush(self) -> None:
        """Flush the underlying stream if it is still open."""
        if self.is_connected:
            self._stream.flush()