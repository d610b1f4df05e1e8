"""Error taxonomy for export runs.

Every fatal condition stops the run at the point where it occurs. Header
mismatches during identifier correction are deliberately absent here: they are
reported through ``CorrectionResult.header_matched`` and never raised.
"""

from __future__ import annotations

from typing import Iterable


class ScripterError(Exception):
    """Base class for fatal export errors."""


class ConfigurationError(ScripterError):
    """A required setting is missing or invalid; the run never starts."""

    def __init__(self, message: str, fields: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.fields = list(fields)


class ConnectivityError(ScripterError):
    """The server cannot be reached or the login was rejected."""


class SelectionError(ScripterError):
    """The target database cannot be selected."""


class FetchError(ScripterError):
    """A catalog query failed (as opposed to returning no rows)."""

    def __init__(self, category: str, message: str) -> None:
        super().__init__(f"{category}: {message}")
        self.category = category


class WriteError(ScripterError):
    """A script file could not be persisted."""

    def __init__(self, path: object, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class ExportCancelledError(ScripterError):
    """The run-scoped cancellation signal was set."""


__all__ = [
    "ScripterError",
    "ConfigurationError",
    "ConnectivityError",
    "SelectionError",
    "FetchError",
    "WriteError",
    "ExportCancelledError",
]
