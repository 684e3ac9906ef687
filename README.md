# storesql

Query the metadata of files and objects with ordinary SQL through Python's
`sqlite3` module. The files and objects can be on local disk, in Dropbox, in
Google Drive or in an S3 bucket. A backend lists the storage, and the listing
is loaded into a temporary SQLite table that you can filter, sort and
aggregate.

## Installation

```
pip install storesql
```

To run the test suite, install the test extra:

```
pip install "storesql[test]"
pytest
```

## Querying a local directory

```python
import sqlite3

from storesql.local_fs import register

conn = sqlite3.connect(":memory:")
refresh = register(conn, "local_files", "/tmp")

for name, size in conn.execute(
    "SELECT name, size FROM local_files WHERE size > 100 ORDER BY size DESC"
):
    print(name, size)

count = conn.execute("SELECT COUNT(*) FROM local_files").fetchone()[0]
```

`register` lists the storage once, right away. It fills the temporary table
`temp.<module_name>` with the top level of the root: no recursion, and no file
contents. It returns a function that takes no arguments. Call that function to
list the storage again, replace the table's rows and get the new row count.
Until you call it, queries see the rows from the last listing.

The `rowid` of each row is its position in the listing, counting from 0.

Every registered table has the same columns, in this order:

| column          | type    | meaning                                               |
|-----------------|---------|-------------------------------------------------------|
| `path`          | TEXT    | full path, starting with `/`; directories end in `/`  |
| `size`          | INTEGER | size in bytes (0 for directories)                     |
| `last_modified` | TEXT    | `YYYY-MM-DD HH:MM:SS[.fraction] UTC`, when known      |
| `etag`          | TEXT    | ETag or content hash, when the backend provides one   |
| `is_dir`        | INTEGER | 1 for directories, 0 for files                        |
| `content_type`  | TEXT    | MIME type or file extension; `directory` for dirs     |
| `name`          | TEXT    | last component of the path                            |
| `content`       | BLOB    | file bytes; always NULL in tables made by `register`  |

The `storesql.types.Column` enum gives the column positions.

## Backends

Each backend module has a `register` function. Its first two arguments are
always the connection and the table name.

```python
from storesql import dropbox, gdrive, s3

dropbox.register(conn, "dropbox_files", "token", "/")
gdrive.register(conn, "gdrive_files", "token", "/")
s3.register(conn, "s3_files", "my-bucket", "us-east-1", "placeholder", "secret")
```

- `storesql.local_fs.LocalFsBackend(root_path)` lists a local directory. Entries
  are sorted by name, and symbolic links are skipped. `etag` is always NULL.
  `content_type` is the file extension.
- `storesql.dropbox.DropboxBackend(access_token, base_path)` works through the
  Dropbox HTTP API, using a bearer token. `content_type` is the file extension.
- `storesql.gdrive.GdriveBackend(access_token, base_path)` works through the
  Google Drive v3 API, using a bearer token. `base_path` is resolved folder by
  folder from the drive root. `etag` is the MD5 checksum.
- `storesql.s3.S3Backend(bucket, region)` sends Signature V4 requests to
  `s3.<region>.amazonaws.com`. `with_credentials(access_key_id,
  secret_access_key)` returns a configured copy, and so does
  `with_base_path(path)`. Without explicit credentials, the backend uses
  `AWS_ACCESS_KEY_ID`, `AWS_SECRET_ACCESS_KEY` and `AWS_SESSION_TOKEN` from the
  environment. If none are set, it sends the requests unsigned. For
  `s3.register`, an empty access key ID means the environment is used.

## Using a backend directly

You can call a backend without SQLite. `list_files` takes a `QueryConfig`
and returns a list of `FileMetadata` records:

```python
from storesql.local_fs import LocalFsBackend
from storesql.s3 import S3Backend
from storesql.types import QueryConfig

backend = LocalFsBackend("/tmp")
config = QueryConfig(recursive=True, fetch_content=True, limit=100, offset=0)
for entry in backend.list_files(config):
    print(entry.path, entry.size, entry.is_dir, entry.content_type)

bucket = (
    S3Backend("my-bucket", "eu-west-1")
    .with_credentials("placeholder", "secret")
    .with_base_path("logs/")
)
print(bucket.backend_name())  # "s3"
```

`QueryConfig` defaults:

- `root_path="/"`: where the listing starts, relative to the backend's root
- `fetch_content=False`: metadata only
- `recursive=False`: list one level only
- `limit=None`: no limit
- `offset=0`: the number of entries to skip

Pagination gathers up to `limit + offset` entries and then drops the first
`offset` of them. If the offset is at least the number of entries gathered,
nothing is dropped. A negative `limit` or `offset` raises
`InvalidConfigError`.

To plug in your own storage, subclass `storesql.base.StorageBackend` and
implement `list_files` and `backend_name`. Then pass an instance to
`storesql.vtab.register_backend(conn, module_name, backend)`. The helpers
`storesql.base.normalize_root` and `storesql.base.apply_pagination` carry the
path and pagination rules described above. `storesql.vtab.FileCursor` walks
a listing one row at a time.

## What it does not do

- There is no backend for plain HTTP endpoints, and no command-line tool.
- The tables are ordinary temporary tables filled from a listing. They are not
  live views: a `WHERE` clause does not narrow what the backend fetches, and
  changes to the storage show up only after you call the refresh function.
- Tables cannot be written to in order to change the storage.

## Errors

All failures raise `storesql.errors.VTableError` or one of its subclasses.
Backend failures raise `StorageError`. Bad configuration, such as an empty
table name or a negative limit, raises `InvalidConfigError`. The package also
defines `MissingParameterError` and `InvalidPathError`, for use by custom
backends.