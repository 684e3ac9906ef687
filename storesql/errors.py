"""Exceptions raised by storage backends and the virtual table layer."""

from __future__ import annotations


class VTableError(Exception):
    """Base error of the package; a bare instance carries a custom message."""

    prefix = ""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.prefix}{self.message}"


class StorageError(VTableError):
    """The storage backend failed to list, stat or read an entry."""

    prefix = "Storage backend error: "


class InvalidConfigError(VTableError):
    """A configuration value is not acceptable."""

    prefix = "Invalid configuration: "


class MissingParameterError(VTableError):
    """A required credential or parameter was not supplied."""

    prefix = "Missing required parameter: "


class InvalidPathError(VTableError):
    """A path has a form the backend cannot handle."""

    prefix = "Invalid path: "