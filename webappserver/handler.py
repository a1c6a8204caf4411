"""Base class for objects that answer HTTP requests."""

from __future__ import annotations

import logging

from .request import HttpRequest
from .response import HttpResponse

_log = logging.getLogger(__name__)


class HttpRequestHandler:
    """Generates a response for each HTTP request.

    Subclasses override :meth:`service`. The default implementation answers
    every request with status 501. One instance serves many connections at
    the same time, so ``service`` must be thread safe.
    """

    def service(self, request: HttpRequest, response: HttpResponse) -> None:
        """Answer ``request`` by writing to ``response``."""
        _log.critical("HttpRequestHandler: you need to override the service() function")
        _log.debug(
            "HttpRequestHandler: request=%r %r %r",
            request.method,
            request.path,
            request.version,
        )
        response.set_status(501, b"not implemented")
        response.write(b"501 not implemented", True)