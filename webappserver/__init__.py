"""Threaded HTTP server with request parsing, cookies, sessions and static files."""

__version__ = "1.7.4"