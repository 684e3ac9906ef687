"""The storage backend interface and helpers shared by backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import TypeVar

from .types import FileMetadata, QueryConfig

T = TypeVar("T")


class StorageBackend(ABC):
    """A store whose entries can be listed as :class:`FileMetadata`."""

    @abstractmethod
    def list_files(self, config: QueryConfig) -> list[FileMetadata]:
        """List entries according to ``config``; raise VTableError on failure."""

    @abstractmethod
    def backend_name(self) -> str:
        """Short name of the backend, for logging."""


def normalize_root(root_path: str) -> str:
    """Turn a listing root into a relative path; the root itself becomes ''."""
    if root_path in ("", "/"):
        return ""
    return root_path.strip("/")


def apply_pagination(entries: Iterable[T], config: QueryConfig) -> list[T]:
    """Collect entries, stopping once limit + offset are gathered, then skip offset.

    The offset is skipped only when fewer entries than it were not gathered;
    an offset at or beyond the number of entries leaves them all in place.
    """
    results: list[T] = []
    for entry in entries:
        results.append(entry)
        if config.limit is not None and len(results) >= config.limit + config.offset:
            break
    if 0 < config.offset < len(results):
        results = results[config.offset :]
    return results