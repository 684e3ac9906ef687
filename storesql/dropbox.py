"""Listing a Dropbox folder tree as file metadata."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any

import requests

from .base import StorageBackend, apply_pagination, normalize_root
from .errors import StorageError
from .types import FileMetadata, QueryConfig
from .vtab import register_backend

API_URL = "https://api.dropboxapi.com/2"
CONTENT_URL = "https://content.dropboxapi.com/2"
TIMEOUT = 30


def _format_timestamp(value: str | None) -> str | None:
    """Render an ISO 8601 timestamp as 'YYYY-MM-DD HH:MM:SS UTC'."""
    if not value:
        return None
    try:
        stamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    stamp = stamp.astimezone(timezone.utc)
    text = stamp.strftime("%Y-%m-%d %H:%M:%S")
    if stamp.microsecond:
        text += f".{stamp.microsecond:06d}"
    return f"{text} UTC"


def _extension(path: str) -> str | None:
    """Extension of the last path component, without the dot."""
    name = PurePosixPath(path).name
    stem, dot, extension = name.rpartition(".")
    if not dot or not stem or name == "..":
        return None
    return extension


def _error_summary(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()
    if isinstance(body, dict) and "error_summary" in body:
        return str(body["error_summary"])
    return response.text.strip()


class DropboxBackend(StorageBackend):
    """Lists files and folders below a base path of a Dropbox account."""

    def __init__(self, access_token: str, base_path: str) -> None:
        self.access_token = access_token
        self.base_path = base_path

    def backend_name(self) -> str:
        return "dropbox"

    @property
    def _root(self) -> str:
        """The base path in the form the Dropbox API expects; the root is ''."""
        stripped = self.base_path.strip("/")
        return f"/{stripped}" if stripped else ""

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _call(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{API_URL}/{endpoint}"
        try:
            response = requests.post(url, json=payload, headers=self._headers(), timeout=TIMEOUT)
        except requests.RequestException as exc:
            raise StorageError(f"dropbox {endpoint} failed: {exc}") from exc
        if response.status_code != 200:
            raise StorageError(
                f"dropbox {endpoint} failed: HTTP {response.status_code}: "
                f"{_error_summary(response)}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise StorageError(f"dropbox {endpoint} returned invalid JSON") from exc

    def _download(self, api_path: str) -> bytes | None:
        headers = self._headers()
        headers["Dropbox-API-Arg"] = json.dumps({"path": api_path})
        try:
            response = requests.post(
                f"{CONTENT_URL}/files/download", headers=headers, timeout=TIMEOUT
            )
        except requests.RequestException:
            return None
        if response.status_code != 200:
            return None
        return response.content

    def _entries(self, api_path: str, recursive: bool) -> Iterator[dict[str, Any]]:
        """Yield raw listing entries, following continuation cursors lazily."""
        page = self._call("files/list_folder", {"path": api_path, "recursive": recursive})
        yield from page.get("entries", [])
        while page.get("has_more"):
            page = self._call("files/list_folder/continue", {"cursor": page["cursor"]})
            yield from page.get("entries", [])

    def _relative(self, entry: dict[str, Any]) -> str:
        """Path of an entry relative to the base path, without leading slash."""
        lower = entry.get("path_lower") or ""
        display = entry.get("path_display") or lower
        root = self._root
        if root and lower.startswith(root.lower()):
            display = display[len(root):]
        return display.lstrip("/")

    def _metadata(self, entry: dict[str, Any], config: QueryConfig) -> FileMetadata | None:
        tag = entry.get(".tag")
        if tag not in ("file", "folder"):
            return None
        relative = self._relative(entry)
        if tag == "folder" and relative:
            relative += "/"
        if relative in ("", "/", "."):
            return None

        full_path = relative if relative.startswith("/") else f"/{relative}"
        name = PurePosixPath(full_path).name

        if tag == "folder":
            return FileMetadata(
                name=name,
                path=full_path,
                size=0,
                is_dir=True,
                content_type="directory",
            )

        api_path = self._root + full_path
        stat = self._call("files/get_metadata", {"path": api_path})
        content = self._download(api_path) if config.fetch_content else None
        return FileMetadata(
            name=name,
            path=full_path,
            size=int(stat.get("size", 0)),
            last_modified=_format_timestamp(stat.get("server_modified")),
            etag=None,
            is_dir=False,
            content_type=_extension(full_path),
            content=content,
        )

    def list_files(self, config: QueryConfig) -> list[FileMetadata]:
        start = normalize_root(config.root_path)
        api_path = f"{self._root}/{start}" if start else self._root
        entries = (
            metadata
            for entry in self._entries(api_path, config.recursive)
            if (metadata := self._metadata(entry, config)) is not None
        )
        return apply_pagination(entries, config)


def register(
    conn: sqlite3.Connection, module_name: str, access_token: str, base_path: str
) -> Callable[[], int]:
    """Make the Dropbox listing below ``base_path`` queryable as ``module_name``."""
    return register_backend(conn, module_name, DropboxBackend(access_token, base_path))