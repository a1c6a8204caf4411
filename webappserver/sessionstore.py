"""Storage of HTTP sessions with expiry."""

from __future__ import annotations

import logging
import threading

from .cookie import HttpCookie, _as_bytes
from .request import HttpRequest
from .response import HttpResponse
from .session import HttpSession, _now_ms
from .settings import Settings

_log = logging.getLogger(__name__)

_CLEANUP_INTERVAL = 60.0


class HttpSessionStore:
    """Keeps HTTP sessions and removes them once they have expired.

    Settings: ``cookieName`` (default ``sessionid``), ``expirationTime`` in
    milliseconds (default 3600000), and optionally ``cookiePath``,
    ``cookieComment`` and ``cookieDomain``. Expired sessions are removed
    once a minute by a background thread until :meth:`close` is called.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._lock = threading.RLock()
        self._sessions: dict[bytes, HttpSession] = {}
        self._cookie_name = _as_bytes(settings.value("cookieName", "sessionid"))
        self._expiration_time = int(settings.value("expirationTime", 3600000))
        _log.debug("HttpSessionStore: Sessions expire after %i milliseconds", self._expiration_time)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run_cleanup, name="session-cleanup", daemon=True)
        self._thread.start()

    @property
    def cookie_name(self) -> bytes:
        """Name of the session cookie."""
        return self._cookie_name

    @property
    def expiration_time(self) -> int:
        """Time in milliseconds after which idle sessions expire."""
        return self._expiration_time

    def _run_cleanup(self) -> None:
        while not self._stop.wait(_CLEANUP_INTERVAL):
            self.cleanup()

    def _setting_bytes(self, key: str) -> bytes:
        value = self._settings.value(key)
        return b"" if value is None else _as_bytes(value)

    def _session_cookie(self, session: HttpSession) -> HttpCookie:
        return HttpCookie(
            name=self._cookie_name,
            value=session.id,
            max_age=int(self._expiration_time / 1000),
            path=self._setting_bytes("cookiePath"),
            comment=self._setting_bytes("cookieComment"),
            domain=self._setting_bytes("cookieDomain"),
        )

    def get_session_id(self, request: HttpRequest, response: HttpResponse) -> bytes:
        """Return the id of the current valid session, or ``b""``.

        The cookie in the response takes priority over the one in the request.
        """
        with self._lock:
            cookie = response.cookies.get(self._cookie_name)
            session_id = cookie.value if cookie is not None else b""
            if not session_id:
                session_id = request.get_cookie(self._cookie_name)
            if session_id and session_id not in self._sessions:
                _log.debug("HttpSessionStore: received invalid session cookie with ID %r", session_id)
                session_id = b""
            return session_id

    def get_session(self, request: HttpRequest, response: HttpResponse, allow_create: bool = True) -> HttpSession:
        """Return the session of a request, creating one if allowed.

        Returns a null session when there is none and creation is disabled.
        """
        session_id = self.get_session_id(request, response)
        with self._lock:
            if session_id:
                session = self._sessions.get(session_id)
                if session is not None and not session.is_null:
                    response.set_cookie(self._session_cookie(session))
                    session.touch()
                    return session
            if allow_create:
                session = HttpSession(True)
                _log.debug("HttpSessionStore: create new session with ID %r", session.id)
                self._sessions[session.id] = session
                response.set_cookie(self._session_cookie(session))
                return session
        return HttpSession()

    def get_session_by_id(self, session_id: bytes | str) -> HttpSession:
        """Return the session with ``session_id``, or a null session."""
        with self._lock:
            session = self._sessions.get(_as_bytes(session_id), HttpSession())
        session.touch()
        return session

    def remove_session(self, session: HttpSession) -> None:
        """Delete ``session`` from the store."""
        with self._lock:
            self._sessions.pop(session.id, None)

    def cleanup(self) -> None:
        """Remove every session whose last access is too long ago."""
        with self._lock:
            now = _now_ms()
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if now - session.last_access > self._expiration_time
            ]
            for session_id in expired:
                _log.debug("HttpSessionStore: session %r expired", session_id)
                del self._sessions[session_id]

    def close(self) -> None:
        """Stop the background cleanup."""
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __enter__(self) -> HttpSessionStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()