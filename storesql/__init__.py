"""SQL access to local, Dropbox, Google Drive and S3 file metadata through SQLite."""

__version__ = "0.1.0"

__all__ = [
    "base",
    "dropbox",
    "errors",
    "gdrive",
    "local_fs",
    "s3",
    "types",
    "vtab",
]