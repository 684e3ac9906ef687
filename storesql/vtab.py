"""Exposing storage listings as SQLite tables."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from .base import StorageBackend
from .errors import InvalidConfigError
from .types import Column, FileMetadata, QueryConfig

_SQL_TYPES = {
    Column.PATH: "TEXT",
    Column.SIZE: "INTEGER",
    Column.LAST_MODIFIED: "TEXT",
    Column.ETAG: "TEXT",
    Column.IS_DIR: "INTEGER",
    Column.CONTENT_TYPE: "TEXT",
    Column.NAME: "TEXT",
    Column.CONTENT: "BLOB",
}


def _value(file: FileMetadata, column: Column) -> Any:
    if column is Column.SIZE:
        return int(file.size)
    if column is Column.IS_DIR:
        return int(file.is_dir)
    if column is Column.CONTENT:
        return None if file.content is None else bytes(file.content)
    return getattr(file, column.name.lower())


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class FileCursor:
    """Walks the entries returned by ``fetch`` one row at a time."""

    def __init__(self, fetch: Callable[[], Iterable[FileMetadata]]) -> None:
        self._fetch = fetch
        self.files: list[FileMetadata] = []
        self.current_row = 0

    def filter(self) -> None:
        """Fetch the entries afresh and rewind to the first row."""
        self.files = list(self._fetch())
        self.current_row = 0

    def next(self) -> None:
        self.current_row += 1

    def eof(self) -> bool:
        return self.current_row >= len(self.files)

    def column(self, index: int) -> Any:
        """Value of column ``index`` in the current row; None past the end."""
        if self.eof():
            return None
        try:
            column = Column(index)
        except ValueError:
            return None
        return _value(self.files[self.current_row], column)

    def rowid(self) -> int:
        return self.current_row

    def rows(self) -> Iterator[tuple[Any, ...]]:
        """Run the query and yield every row as a tuple in schema order."""
        self.filter()
        while not self.eof():
            yield tuple(self.column(column) for column in Column)
            self.next()


def register_backend(
    conn: sqlite3.Connection, module_name: str, backend: StorageBackend
) -> Callable[[], int]:
    """Make ``backend``'s listing queryable as the temporary table ``module_name``.

    The table is filled at once; the returned function lists the backend
    again, replaces the rows and returns how many there are now.
    """
    if not module_name:
        raise InvalidConfigError("table name must not be empty")

    table = f"temp.{_quote(module_name)}"
    names = [column.name.lower() for column in Column]
    definition = ", ".join(f"{name} {_SQL_TYPES[column]}" for name, column in zip(names, Column))
    insert = (
        f"INSERT INTO {table} (rowid, {', '.join(names)}) "
        f"VALUES ({', '.join('?' * (len(names) + 1))})"
    )
    cursor = FileCursor(lambda: backend.list_files(QueryConfig()))

    def refresh() -> int:
        cursor.filter()
        rows = []
        while not cursor.eof():
            rows.append((cursor.rowid(), *(cursor.column(column) for column in Column)))
            cursor.next()

        in_transaction = conn.in_transaction
        conn.execute(f"DROP TABLE IF EXISTS {table}")
        conn.execute(f"CREATE TEMP TABLE {_quote(module_name)} ({definition})")
        conn.executemany(insert, rows)
        if not in_transaction:
            conn.commit()
        return len(rows)

    refresh()
    return refresh