"""Listing a local directory tree as file metadata."""

from __future__ import annotations

import os
import sqlite3
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from .base import StorageBackend, apply_pagination, normalize_root
from .errors import StorageError
from .types import FileMetadata, QueryConfig
from .vtab import register_backend


def _format_mtime(mtime_ns: int) -> str:
    """Render a timestamp as 'YYYY-MM-DD HH:MM:SS[.fraction] UTC'."""
    seconds, nanos = divmod(mtime_ns, 1_000_000_000)
    stamp = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    if nanos == 0:
        fraction = ""
    elif nanos % 1_000_000 == 0:
        fraction = f".{nanos // 1_000_000:03d}"
    elif nanos % 1_000 == 0:
        fraction = f".{nanos // 1_000:06d}"
    else:
        fraction = f".{nanos:09d}"
    return f"{stamp}{fraction} UTC"


def _extension(path: str) -> str | None:
    """Extension of the last path component, without the dot."""
    name = PurePosixPath(path).name
    if name == "..":
        return None
    stem, dot, extension = name.rpartition(".")
    if not dot or not stem:
        return None
    return extension


class LocalFsBackend(StorageBackend):
    """Lists files and directories below a local root directory."""

    def __init__(self, root_path: str) -> None:
        self.root_path = root_path

    def backend_name(self) -> str:
        return "local_fs"

    def list_files(self, config: QueryConfig) -> list[FileMetadata]:
        if not self.root_path:
            raise StorageError("root is not specified")
        start = normalize_root(config.root_path)
        prefix = f"{start}/" if start else ""
        directory = Path(self.root_path) / start if start else Path(self.root_path)
        entries = (
            self._metadata(relative, is_dir, config)
            for relative, is_dir in self._walk(directory, prefix, config.recursive)
        )
        return apply_pagination(entries, config)

    def _walk(self, directory: Path, prefix: str, recursive: bool) -> Iterator[tuple[str, bool]]:
        """Yield (path relative to the root, is_dir) for each entry, in name order."""
        try:
            with os.scandir(directory) as scan:
                entries = sorted(scan, key=lambda entry: entry.name)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"cannot list {directory}: {exc}") from exc

        for entry in entries:
            relative = prefix + entry.name
            if entry.is_dir(follow_symlinks=False):
                yield f"{relative}/", True
                if recursive:
                    yield from self._walk(Path(entry.path), f"{relative}/", True)
            elif entry.is_file(follow_symlinks=False):
                yield relative, False

    def _metadata(self, relative: str, is_dir: bool, config: QueryConfig) -> FileMetadata:
        full_path = relative if relative.startswith("/") else f"/{relative}"
        name = PurePosixPath(full_path).name
        if is_dir:
            return FileMetadata(
                name=name,
                path=full_path,
                size=0,
                is_dir=True,
                content_type="directory",
            )

        local = Path(self.root_path) / relative
        try:
            stat = local.stat()
        except OSError as exc:
            raise StorageError(f"cannot stat {full_path}: {exc}") from exc

        content = None
        if config.fetch_content:
            try:
                content = local.read_bytes()
            except OSError:
                content = None

        return FileMetadata(
            name=name,
            path=full_path,
            size=stat.st_size,
            last_modified=_format_mtime(stat.st_mtime_ns),
            etag=None,
            is_dir=False,
            content_type=_extension(full_path),
            content=content,
        )


def register(
    conn: sqlite3.Connection, module_name: str, root_path: str
) -> Callable[[], int]:
    """Make the listing of ``root_path`` queryable as the table ``module_name``."""
    return register_backend(conn, module_name, LocalFsBackend(root_path))