"""HTTP cookies as described in RFC 2109."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

_log = logging.getLogger(__name__)

_INTEGER = re.compile(rb"\s*[+-]?\d+\s*")
_QUOTE = ord('"')
_SEMICOLON = ord(";")


def _as_bytes(value: Any) -> bytes:
    """Convert text, bytes or integers to bytes."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value).encode("ascii")
    raise TypeError(f"cannot convert {type(value).__name__} to bytes")


def _to_int(value: bytes) -> int:
    """Parse a decimal integer, giving 0 for anything that is not one."""
    return int(value) if _INTEGER.fullmatch(value) else 0


def split_csv(source: bytes | str) -> list[bytes]:
    """Split ``source`` at semicolons that are not inside double quotes.

    The double quotes are removed, each part is stripped of whitespace and
    empty parts are dropped.
    """
    parts: list[bytes] = []
    buffer = bytearray()
    in_string = False
    for char in _as_bytes(source):
        if char == _QUOTE:
            in_string = not in_string
        elif char == _SEMICOLON and not in_string:
            part = bytes(buffer).strip()
            if part:
                parts.append(part)
            buffer.clear()
        else:
            buffer.append(char)
    part = bytes(buffer).strip()
    if part:
        parts.append(part)
    return parts


def _split_name_value(part: bytes) -> tuple[bytes, bytes]:
    """Split one cookie attribute into name and value."""
    pos = part.find(b"=")
    if pos == 0:
        return part.strip(), b""
    # A part without '=' gives an empty name and the whole part as value.
    if pos < 0:
        return b"", part.strip()
    return part[:pos].strip(), part[pos + 1:].strip()


@dataclass
class HttpCookie:
    """A cookie with the attributes of a Set-Cookie header."""

    name: bytes = b""
    value: bytes = b""
    max_age: int = 0
    path: bytes = b"/"
    comment: bytes = b""
    domain: bytes = b""
    secure: bool = False
    http_only: bool = False
    version: int = 1

    def __post_init__(self) -> None:
        self.name = _as_bytes(self.name)
        self.value = _as_bytes(self.value)
        self.path = _as_bytes(self.path)
        self.comment = _as_bytes(self.comment)
        self.domain = _as_bytes(self.domain)
        self.max_age = int(self.max_age)
        self.version = int(self.version)

    @classmethod
    def parse(cls, source: bytes | str) -> HttpCookie:
        """Create a cookie from the text of a cookie header."""
        cookie = cls(path=b"")
        for part in split_csv(source):
            name, value = _split_name_value(part)
            if name == b"Comment":
                cookie.comment = value
            elif name == b"Domain":
                cookie.domain = value
            elif name == b"Max-Age":
                cookie.max_age = _to_int(value)
            elif name == b"Path":
                cookie.path = value
            elif name == b"Secure":
                cookie.secure = True
            elif name == b"HttpOnly":
                cookie.http_only = True
            elif name == b"Version":
                cookie.version = _to_int(value)
            elif not cookie.name:
                cookie.name = name
                cookie.value = value
            else:
                _log.warning("HttpCookie: Ignoring unknown %r=%r", name, value)
        return cookie

    def to_bytes(self) -> bytes:
        """Return the cookie as used in a Set-Cookie header."""
        parts = [self.name + b"=" + self.value]
        if self.comment:
            parts.append(b"Comment=" + self.comment)
        if self.domain:
            parts.append(b"Domain=" + self.domain)
        if self.max_age != 0:
            parts.append(b"Max-Age=" + str(self.max_age).encode("ascii"))
        if self.path:
            parts.append(b"Path=" + self.path)
        if self.secure:
            parts.append(b"Secure")
        if self.http_only:
            parts.append(b"HttpOnly")
        parts.append(b"Version=" + str(self.version).encode("ascii"))
        return b"; ".join(parts)

    def __bytes__(self) -> bytes:
        return self.to_bytes()