"""Per-client session data shared between requests."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from .cookie import _as_bytes


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class _SessionData:
    id: bytes
    last_access: int
    values: dict[bytes, Any] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock)


class HttpSession:
    """Key/value storage for one HTTP session.

    A session created with ``can_store=True`` gets a unique id and keeps
    data; a null session (the default) ignores ``set`` and ``remove``.
    Objects returned for the same session share their data. All methods
    are thread safe.
    """

    def __init__(self, can_store: bool = False) -> None:
        if can_store:
            self._data: _SessionData | None = _SessionData(
                id=("{%s}" % uuid.uuid4()).encode("ascii"),
                last_access=_now_ms(),
            )
        else:
            self._data = None

    @property
    def id(self) -> bytes:
        """The unique id of the session, or ``b""`` for a null session."""
        return self._data.id if self._data is not None else b""

    @property
    def is_null(self) -> bool:
        """Whether this is a null session that cannot store data."""
        return self._data is None

    @property
    def last_access(self) -> int:
        """Time of the last access in milliseconds since the epoch, 0 if null."""
        if self._data is None:
            return 0
        with self._data.lock:
            return self._data.last_access

    def set(self, key: bytes | str, value: Any) -> None:
        """Store ``value`` under ``key``."""
        if self._data is not None:
            with self._data.lock:
                self._data.values[_as_bytes(key)] = value

    def remove(self, key: bytes | str) -> None:
        """Remove ``key`` if it is present."""
        if self._data is not None:
            with self._data.lock:
                self._data.values.pop(_as_bytes(key), None)

    def get(self, key: bytes | str) -> Any:
        """Return the value stored under ``key``, or None."""
        if self._data is None:
            return None
        with self._data.lock:
            return self._data.values.get(_as_bytes(key))

    def contains(self, key: bytes | str) -> bool:
        """Whether a value is stored under ``key``."""
        if self._data is None:
            return False
        with self._data.lock:
            return _as_bytes(key) in self._data.values

    def get_all(self) -> dict[bytes, Any]:
        """Return a copy of all stored values."""
        if self._data is None:
            return {}
        with self._data.lock:
            return dict(self._data.values)

    def touch(self) -> None:
        """Renew the timeout period by setting the last access to now."""
        if self._data is not None:
            with self._data.lock:
                self._data.last_access = _now_ms()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, (bytes, str)) and self.contains(key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HttpSession):
            return NotImplemented
        return self._data is other._data

    def __hash__(self) -> int:
        return id(self._data)

    def __repr__(self) -> str:
        return f"HttpSession(id={self.id!r})"