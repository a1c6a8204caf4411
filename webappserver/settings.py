"""Configuration settings shared by the HTTP server components."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

_LIBRARY_VERSION = "1.7.4"


def library_version() -> str:
    """Return the version number of the server library."""
    return _LIBRARY_VERSION


class Settings:
    """A read-only set of configuration values.

    ``file_name`` names the configuration file the values came from. Relative
    paths found in the settings are resolved against its directory.
    """

    def __init__(self, values: Mapping[str, Any] | None = None, file_name: str | os.PathLike | None = None) -> None:
        self._values: dict[str, Any] = dict(values or {})
        self._file_name = os.fspath(file_name) if file_name is not None else ""

    @property
    def file_name(self) -> str:
        """Name of the configuration file, or an empty string."""
        return self._file_name

    def value(self, key: str, default: Any = None) -> Any:
        """Return the value stored under ``key``, or ``default`` if there is none."""
        return self._values.get(key, default)

    def resolve_path(self, path: str | os.PathLike) -> str:
        """Return ``path`` as an absolute path.

        Relative paths are taken relative to the directory of the
        configuration file, or to the working directory if there is no file.
        """
        path = os.fspath(path)
        if os.path.isabs(path):
            return path
        base = os.path.dirname(os.path.abspath(self._file_name)) if self._file_name else os.getcwd()
        return os.path.abspath(os.path.join(base, path))

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __repr__(self) -> str:
        return f"Settings({self._values!r}, file_name={self._file_name!r})"