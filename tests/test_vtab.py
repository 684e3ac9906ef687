import sqlite3

import pytest

from storesql.base import StorageBackend
from storesql.errors import InvalidConfigError, StorageError
from storesql.types import Column, FileMetadata
from storesql.vtab import FileCursor, register_backend


class _Memory(StorageBackend):
    def __init__(self, files):
        self.files = list(files)
        self.fail = False
        self.configs = []

    def list_files(self, config):
        self.configs.append(config)
        if self.fail:
            raise StorageError("unreachable")
        return list(self.files)

    def backend_name(self):
        return "memory"


def _file(name, size, **kwargs):
    return FileMetadata(name=name, path=f"/{name}", size=size, **kwargs)


def test_cursor_creation():
    cursor = FileCursor(lambda: [])
    assert cursor.rowid() == 0
    assert cursor.files == []
    assert cursor.eof()


def test_cursor_navigation():
    cursor = FileCursor(lambda: [])
    assert cursor.eof()
    cursor.next()
    assert cursor.rowid() == 1


def test_filter_loads_and_walks_rows():
    files = [_file("a.txt", 3), _file("b.txt", 5)]
    cursor = FileCursor(lambda: files)
    cursor.filter()
    seen = []
    while not cursor.eof():
        seen.append(cursor.column(Column.NAME))
        cursor.next()
    assert seen == ["a.txt", "b.txt"]


def test_filter_rewinds_cursor():
    cursor = FileCursor(lambda: [_file("a", 1)])
    cursor.filter()
    cursor.next()
    assert cursor.eof()
    cursor.filter()
    assert not cursor.eof()
    assert cursor.rowid() == 0


def test_column_values_follow_schema():
    file = _file(
        "doc.pdf",
        42,
        last_modified="2024-01-15T10:30:00Z",
        etag="abc123",
        content_type="pdf",
        content=b"data",
    )
    cursor = FileCursor(lambda: [file])
    cursor.filter()
    assert cursor.column(Column.PATH) == "/doc.pdf"
    assert cursor.column(Column.SIZE) == 42
    assert cursor.column(Column.LAST_MODIFIED) == "2024-01-15T10:30:00Z"
    assert cursor.column(Column.ETAG) == "abc123"
    assert cursor.column(Column.IS_DIR) == 0
    assert cursor.column(Column.CONTENT_TYPE) == "pdf"
    assert cursor.column(Column.CONTENT) == b"data"


def test_directory_and_missing_content():
    folder = FileMetadata(name="sub", path="/sub", is_dir=True, content_type="directory")
    cursor = FileCursor(lambda: [folder])
    cursor.filter()
    assert cursor.column(Column.IS_DIR) == 1
    assert cursor.column(Column.CONTENT) is None
    assert cursor.column(99) is None


def test_column_past_end_is_none():
    cursor = FileCursor(lambda: [_file("a", 1)])
    cursor.filter()
    cursor.next()
    assert cursor.column(Column.NAME) is None
    assert cursor.eof()


def test_rows_yield_full_tuples():
    files = [_file("a", 1), _file("b", 2)]
    rows = list(FileCursor(lambda: files).rows())
    assert len(rows) == 2
    assert all(len(row) == len(Column) for row in rows)
    assert [row[Column.NAME] for row in rows] == ["a", "b"]


def test_register_backend_supports_sql_queries():
    backend = _Memory(
        [_file("large.txt", 10000), _file("small.txt", 4), _file("medium.txt", 14)]
    )
    conn = sqlite3.connect(":memory:")
    register_backend(conn, "local_files", backend)

    rows = conn.execute("SELECT name, size, is_dir FROM local_files ORDER BY name").fetchall()
    assert [name for name, _, _ in rows] == ["large.txt", "medium.txt", "small.txt"]
    assert all(is_dir == 0 for _, _, is_dir in rows)

    large = conn.execute("SELECT name FROM local_files WHERE size > 100").fetchall()
    assert large == [("large.txt",)]
    assert backend.configs[0].root_path == "/"


def test_register_backend_aggregates_and_rowid():
    backend = _Memory([_file(f"file{i}.txt", 8) for i in range(1, 6)])
    conn = sqlite3.connect(":memory:")
    register_backend(conn, "local_files", backend)
    assert conn.execute("SELECT COUNT(*) FROM local_files").fetchone() == (5,)
    assert conn.execute("SELECT SUM(size) FROM local_files").fetchone()[0] > 0
    first = conn.execute("SELECT name FROM local_files ORDER BY name LIMIT 1").fetchone()
    assert first == ("file1.txt",)
    assert conn.execute("SELECT MIN(rowid) FROM local_files").fetchone() == (0,)


def test_refresh_lists_backend_again():
    backend = _Memory([_file("a", 1)])
    conn = sqlite3.connect(":memory:")
    refresh = register_backend(conn, "files", backend)
    backend.files.append(_file("b", 2))
    assert refresh() == 2
    assert conn.execute("SELECT COUNT(*) FROM files").fetchone() == (2,)
    assert not conn.in_transaction


def test_backend_error_propagates_and_keeps_old_rows():
    backend = _Memory([_file("a", 1)])
    conn = sqlite3.connect(":memory:")
    refresh = register_backend(conn, "files", backend)
    backend.fail = True
    with pytest.raises(StorageError):
        refresh()
    assert conn.execute("SELECT name FROM files").fetchall() == [("a",)]


def test_table_name_is_quoted():
    conn = sqlite3.connect(":memory:")
    register_backend(conn, 'odd "name"', _Memory([_file("x", 1)]))
    assert conn.execute('SELECT name FROM "odd ""name"""').fetchall() == [("x",)]


def test_empty_table_name_rejected():
    with pytest.raises(InvalidConfigError):
        register_backend(sqlite3.connect(":memory:"), "", _Memory([]))