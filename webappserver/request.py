"""Incremental parsing of HTTP requests read from a client connection."""

from __future__ import annotations

import enum
import logging
import os
import re
import tempfile
from typing import IO, Any, BinaryIO

from .cookie import _as_bytes, _split_name_value, _to_int, split_csv
from .settings import Settings

_log = logging.getLogger(__name__)

_BLOCK_SIZE = 65536
_HEX = re.compile(rb"[0-9A-Fa-f]{1,2}")


class RequestStatus(enum.Enum):
    """Stages of reading a request."""

    WAIT_FOR_REQUEST = "waitForRequest"
    WAIT_FOR_HEADER = "waitForHeader"
    WAIT_FOR_BODY = "waitForBody"
    COMPLETE = "complete"
    ABORT = "abort"


def url_decode(source: bytes | str) -> bytes:
    """Decode a URL-encoded value: ``+`` becomes a space, ``%xx`` a byte."""
    buffer = bytearray(_as_bytes(source).replace(b"+", b" "))
    pos = buffer.find(b"%")
    while pos >= 0:
        match = _HEX.fullmatch(bytes(buffer[pos + 1:pos + 3]))
        if match:
            buffer[pos:pos + 3] = bytes([int(match.group(), 16)])
        pos = buffer.find(b"%", pos + 1)
    return bytes(buffer)


def _read_line(stream: BinaryIO, limit: int) -> bytes:
    data = stream.readline(max(limit, 1))
    if data is None:
        return b""
    if not data:
        raise EOFError("connection closed while reading the request")
    return data


def _read_block(stream: BinaryIO, size: int) -> bytes:
    if size <= 0:
        return b""
    reader = getattr(stream, "read1", stream.read)
    data = reader(size)
    if data is None:
        return b""
    if not data:
        raise EOFError("connection closed while reading the request body")
    return data


class HttpRequest:
    """A single HTTP request, filled step by step from a binary stream.

    Call :meth:`read_from` until :attr:`status` is ``COMPLETE`` or ``ABORT``.
    The settings ``maxRequestSize`` and ``maxMultiPartSize`` limit the size
    of ordinary requests and of multipart/form-data bodies.
    """

    def __init__(self, settings: Settings, peer_address: Any = None) -> None:
        self._status = RequestStatus.WAIT_FOR_REQUEST
        self._current_size = 0
        self._expected_body_size = 0
        self._max_size = int(settings.value("maxRequestSize", "16000"))
        self._max_multipart_size = int(settings.value("maxMultiPartSize", "1000000"))
        self._peer_address = peer_address
        self._method = b""
        self._path = b""
        self._version = b""
        self._headers: dict[bytes, list[bytes]] = {}
        self._parameters: dict[bytes, list[bytes]] = {}
        self._cookies: dict[bytes, bytes] = {}
        self._uploaded_files: dict[bytes, IO[bytes]] = {}
        self._body = bytearray()
        self._line_buffer = bytearray()
        self._current_header = b""
        self._boundary = b""
        self._temp_file: IO[bytes] | None = None

    # -- reading -----------------------------------------------------------

    def read_from(self, stream: BinaryIO) -> RequestStatus:
        """Read the next piece of the request and return the new status.

        Raises EOFError when the stream ends before the request is complete.
        """
        if self._status is RequestStatus.COMPLETE:
            raise RuntimeError("the request has already been read completely")
        if self._status is RequestStatus.WAIT_FOR_REQUEST:
            self._read_request(stream)
        elif self._status is RequestStatus.WAIT_FOR_HEADER:
            self._read_header(stream)
        elif self._status is RequestStatus.WAIT_FOR_BODY:
            self._read_body(stream)

        limit = self._max_multipart_size if self._boundary else self._max_size
        if self._current_size > limit:
            _log.warning("HttpRequest: received too many bytes")
            self._status = RequestStatus.ABORT
        if self._status is RequestStatus.COMPLETE:
            self._decode_request_params()
            self._extract_cookies()
        return self._status

    def _collect_line(self, stream: BinaryIO) -> bytes | None:
        data = _read_line(stream, self._max_size - self._current_size + 1)
        if not data:
            return None
        self._line_buffer += data
        self._current_size += len(self._line_buffer)
        if b"\r" not in self._line_buffer and b"\n" not in self._line_buffer:
            return None
        line = bytes(self._line_buffer).strip()
        self._line_buffer.clear()
        return line

    def _read_request(self, stream: BinaryIO) -> None:
        line = self._collect_line(stream)
        if not line:
            return
        parts = line.split(b" ")
        if len(parts) != 3 or b"HTTP" not in parts[2]:
            _log.warning("HttpRequest: received broken HTTP request, invalid first line")
            self._status = RequestStatus.ABORT
            return
        self._method = parts[0].strip()
        self._path = parts[1]
        self._version = parts[2]
        self._status = RequestStatus.WAIT_FOR_HEADER

    def _read_header(self, stream: BinaryIO) -> None:
        line = self._collect_line(stream)
        if line is None:
            return
        colon = line.find(b":")
        if colon > 0:
            self._current_header = line[:colon].lower()
            self._headers.setdefault(self._current_header, []).append(line[colon + 1:].strip())
        elif line:
            values = self._headers.get(self._current_header)
            if values:
                values.append(values[-1] + b" " + line)
        else:
            self._finish_headers()

    def _finish_headers(self) -> None:
        content_type = self.get_header(b"content-type")
        if content_type.startswith(b"multipart/form-data"):
            pos = content_type.find(b"boundary=")
            if pos >= 0:
                boundary = content_type[pos + 9:]
                if len(boundary) >= 2 and boundary.startswith(b'"') and boundary.endswith(b'"'):
                    boundary = boundary[1:-1]
                self._boundary = boundary
        content_length = self.get_header(b"content-length")
        if content_length:
            self._expected_body_size = _to_int(content_length)

        if self._expected_body_size == 0:
            self._status = RequestStatus.COMPLETE
        elif not self._boundary and self._expected_body_size + self._current_size > self._max_size:
            _log.warning("HttpRequest: expected body is too large")
            self._status = RequestStatus.ABORT
        elif self._boundary and self._expected_body_size > self._max_multipart_size:
            _log.warning("HttpRequest: expected multipart body is too large")
            self._status = RequestStatus.ABORT
        else:
            self._status = RequestStatus.WAIT_FOR_BODY

    def _read_body(self, stream: BinaryIO) -> None:
        if not self._boundary:
            data = _read_block(stream, self._expected_body_size - len(self._body))
            self._current_size += len(data)
            self._body += data
            if len(self._body) >= self._expected_body_size:
                self._status = RequestStatus.COMPLETE
            return

        if self._temp_file is None:
            self._temp_file = tempfile.TemporaryFile()
        file_size = self._temp_file.seek(0, os.SEEK_END)
        to_read = min(self._expected_body_size - file_size, _BLOCK_SIZE)
        file_size += self._temp_file.write(_read_block(stream, to_read))
        if file_size >= self._max_multipart_size:
            _log.warning("HttpRequest: received too many multipart bytes")
            self._status = RequestStatus.ABORT
        elif file_size >= self._expected_body_size:
            self._temp_file.flush()
            self._parse_multipart(self._temp_file)
            self._temp_file.close()
            self._temp_file = None
            self._status = RequestStatus.COMPLETE

    def _add_parameter(self, name: bytes, value: bytes) -> None:
        self._parameters.setdefault(name, []).append(value)

    def _decode_request_params(self) -> None:
        raw = b""
        question_mark = self._path.find(b"?")
        if question_mark >= 0:
            raw = self._path[question_mark + 1:]
            self._path = self._path[:question_mark]
        content_type = self.get_header(b"content-type")
        if self._body and (not content_type or content_type.startswith(b"application/x-www-form-urlencoded")):
            raw = raw + b"&" + bytes(self._body) if raw else bytes(self._body)
        for part in raw.split(b"&"):
            equals = part.find(b"=")
            if equals >= 0:
                self._add_parameter(url_decode(part[:equals].strip()), url_decode(part[equals + 1:].strip()))
            elif part:
                self._add_parameter(url_decode(part), b"")

    def _extract_cookies(self) -> None:
        # Later Cookie headers are applied first, so the earliest one wins.
        for header in reversed(self._headers.pop(b"cookie", [])):
            for part in split_csv(header):
                name, value = _split_name_value(part)
                self._cookies[name] = value

    def _parse_multipart(self, source: IO[bytes]) -> None:
        source.seek(0)
        marker = b"--" + self._boundary
        finished = False
        while not finished:
            field_name = b""
            file_name = b""
            while True:
                raw = source.readline(_BLOCK_SIZE)
                if not raw:
                    return
                line = raw.strip()
                if line.startswith(b"Content-Disposition:"):
                    if b"form-data" in line:
                        start = line.find(b' name="')
                        end = line.find(b'"', start + 7)
                        if start >= 0 and end >= start:
                            field_name = line[start + 7:end]
                        start = line.find(b' filename="')
                        end = line.find(b'"', start + 11)
                        if start >= 0 and end >= start:
                            file_name = line[start + 11:end]
                    else:
                        _log.debug("HttpRequest: ignoring unsupported content part %r", line)
                elif not line:
                    break

            uploaded: IO[bytes] | None = None
            field_value = bytearray()
            while True:
                raw = source.readline(_BLOCK_SIZE)
                if not raw:
                    if uploaded is not None:
                        uploaded.close()
                    return
                if raw.startswith(marker):
                    if field_name and not file_name:
                        self._add_parameter(field_name, bytes(field_value[:-2]))
                    elif field_name and file_name:
                        if uploaded is not None:
                            uploaded.truncate(max(uploaded.seek(0, os.SEEK_END) - 2, 0))
                            uploaded.flush()
                            uploaded.seek(0)
                            self._add_parameter(field_name, file_name)
                            previous = self._uploaded_files.pop(field_name, None)
                            if previous is not None:
                                previous.close()
                            self._uploaded_files[field_name] = uploaded
                        else:
                            _log.warning("HttpRequest: format error, unexpected end of file data")
                    if self._boundary + b"--" in raw:
                        finished = True
                    break
                if field_name and not file_name:
                    self._current_size += len(raw)
                    field_value += raw
                elif field_name and file_name:
                    if uploaded is None:
                        uploaded = tempfile.TemporaryFile()
                    uploaded.write(raw)

    # -- access ------------------------------------------------------------

    @property
    def status(self) -> RequestStatus:
        """The current stage of reading."""
        return self._status

    @property
    def method(self) -> bytes:
        """The request method, e.g. ``b"GET"``."""
        return self._method

    @property
    def path(self) -> bytes:
        """The decoded request path, without the query string."""
        return url_decode(self._path)

    @property
    def raw_path(self) -> bytes:
        """The request path as received, URL-encoded."""
        return self._path

    @property
    def version(self) -> bytes:
        """The protocol version, e.g. ``b"HTTP/1.1"``."""
        return self._version

    @property
    def body(self) -> bytes:
        """The raw body of a request that is not multipart."""
        return bytes(self._body)

    @property
    def peer_address(self) -> Any:
        """The address of the connected client."""
        return self._peer_address

    @property
    def header_map(self) -> dict[bytes, list[bytes]]:
        """All headers with lower-case names, each with its values in order."""
        return {name: list(values) for name, values in self._headers.items()}

    @property
    def parameter_map(self) -> dict[bytes, list[bytes]]:
        """All request parameters, each with its values in order."""
        return {name: list(values) for name, values in self._parameters.items()}

    @property
    def cookies(self) -> dict[bytes, bytes]:
        """The received cookies by name."""
        return self._cookies

    def get_header(self, name: bytes | str) -> bytes:
        """Return the last value of a header (case-insensitive), or ``b""``."""
        values = self._headers.get(_as_bytes(name).lower())
        return values[-1] if values else b""

    def get_headers(self, name: bytes | str) -> list[bytes]:
        """Return all values of a header (case-insensitive) in the order received."""
        return list(self._headers.get(_as_bytes(name).lower(), []))

    def get_parameter(self, name: bytes | str) -> bytes:
        """Return the last value of a parameter (case-sensitive), or ``b""``."""
        values = self._parameters.get(_as_bytes(name))
        return values[-1] if values else b""

    def get_parameters(self, name: bytes | str) -> list[bytes]:
        """Return all values of a parameter in the order received."""
        return list(self._parameters.get(_as_bytes(name), []))

    def get_uploaded_file(self, field_name: bytes | str) -> IO[bytes] | None:
        """Return the open temporary file uploaded under ``field_name``, if any."""
        return self._uploaded_files.get(_as_bytes(field_name))

    def get_cookie(self, name: bytes | str) -> bytes:
        """Return the value of a cookie, or ``b""``."""
        return self._cookies.get(_as_bytes(name), b"")

    def close(self) -> None:
        """Close and delete the uploaded and temporary files."""
        for uploaded in self._uploaded_files.values():
            uploaded.close()
        self._uploaded_files.clear()
        if self._temp_file is not None:
            self._temp_file.close()
            self._temp_file = None

    def __enter__(self) -> HttpRequest:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()