"""Core data types: file metadata, query configuration and the column layout."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from .errors import InvalidConfigError


@dataclass
class FileMetadata:
    """Metadata of one file or directory in a store.

    ``content`` is only filled when a query asks for file contents.
    """

    name: str
    path: str
    size: int = 0
    last_modified: str | None = None
    etag: str | None = None
    is_dir: bool = False
    content_type: str | None = None
    content: bytes | None = None


@dataclass
class QueryConfig:
    """How a backend lists entries: where to start, recursion and pagination."""

    root_path: str = "/"
    fetch_content: bool = False
    recursive: bool = False
    limit: int | None = None
    offset: int = 0

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise InvalidConfigError(f"offset must not be negative: {self.offset}")
        if self.limit is not None and self.limit < 0:
            raise InvalidConfigError(f"limit must not be negative: {self.limit}")


class Column(IntEnum):
    """Column positions of the virtual table schema."""

    PATH = 0
    SIZE = 1
    LAST_MODIFIED = 2
    ETAG = 3
    IS_DIR = 4
    CONTENT_TYPE = 5
    NAME = 6
    CONTENT = 7