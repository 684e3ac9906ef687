"""Listing a Google Drive folder tree as file metadata."""

from __future__ import annotations

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

FILES_URL = "https://www.googleapis.com/drive/v3/files"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
TIMEOUT = 30

_LIST_FIELDS = "nextPageToken, files(id, name, mimeType)"
_STAT_FIELDS = "id, name, mimeType, size, modifiedTime, md5Checksum"


def _format_timestamp(value: str | None) -> str | None:
    """Render an RFC 3339 timestamp as 'YYYY-MM-DD HH:MM:SS[.fraction] UTC'."""
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
    micros = stamp.microsecond
    if micros:
        if micros % 1000 == 0:
            text += f".{micros // 1000:03d}"
        else:
            text += f".{micros:06d}"
    return f"{text} UTC"


def _extension(path: str) -> str | None:
    """Extension of the last path component, without the dot."""
    name = PurePosixPath(path).name
    stem, dot, extension = name.rpartition(".")
    if not dot or not stem or name == "..":
        return None
    return extension


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and "message" in error:
            return str(error["message"])
    return response.text.strip()


class GdriveBackend(StorageBackend):
    """Lists files and folders below a base path of a Google Drive."""

    def __init__(self, access_token: str, base_path: str) -> None:
        self.access_token = access_token
        self.base_path = base_path

    def backend_name(self) -> str:
        return "gdrive"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _get(self, url: str, params: dict[str, Any], what: str) -> requests.Response:
        try:
            response = requests.get(url, params=params, headers=self._headers(), timeout=TIMEOUT)
        except requests.RequestException as exc:
            raise StorageError(f"gdrive {what} failed: {exc}") from exc
        if response.status_code != 200:
            raise StorageError(
                f"gdrive {what} failed: HTTP {response.status_code}: {_error_message(response)}"
            )
        return response

    def _json(self, url: str, params: dict[str, Any], what: str) -> dict[str, Any]:
        response = self._get(url, params, what)
        try:
            return response.json()
        except ValueError as exc:
            raise StorageError(f"gdrive {what} returned invalid JSON") from exc

    def _children(self, folder_id: str) -> Iterator[dict[str, Any]]:
        """Yield the items directly inside a folder, following page tokens lazily."""
        params: dict[str, Any] = {
            "q": f"'{folder_id}' in parents and trashed = false",
            "fields": _LIST_FIELDS,
            "pageSize": 1000,
            "orderBy": "name",
        }
        while True:
            page = self._json(FILES_URL, params, "list")
            yield from page.get("files", [])
            token = page.get("nextPageToken")
            if not token:
                return
            params = {**params, "pageToken": token}

    def _resolve_folder(self, path: str) -> str | None:
        """Id of the folder at ``path`` below the drive root, or None if absent."""
        folder_id: str | None = "root"
        for part in path.split("/"):
            if not part:
                continue
            folder_id = next(
                (
                    child["id"]
                    for child in self._children(folder_id)
                    if child.get("name") == part and child.get("mimeType") == FOLDER_MIME_TYPE
                ),
                None,
            )
            if folder_id is None:
                return None
        return folder_id

    def _walk(
        self, folder_id: str, prefix: str, recursive: bool
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        """Yield (path relative to the listing start, item) for each entry."""
        for item in self._children(folder_id):
            relative = prefix + item.get("name", "")
            if item.get("mimeType") == FOLDER_MIME_TYPE:
                yield f"{relative}/", item
                if recursive:
                    yield from self._walk(item["id"], f"{relative}/", True)
            else:
                yield relative, item

    def _download(self, file_id: str) -> bytes | None:
        try:
            response = requests.get(
                f"{FILES_URL}/{file_id}",
                params={"alt": "media"},
                headers=self._headers(),
                timeout=TIMEOUT,
            )
        except requests.RequestException:
            return None
        if response.status_code != 200:
            return None
        return response.content

    def _metadata(
        self, relative: str, item: dict[str, Any], config: QueryConfig
    ) -> FileMetadata | None:
        if relative in ("", "/", "."):
            return None
        full_path = relative if relative.startswith("/") else f"/{relative}"
        name = PurePosixPath(full_path).name

        if item.get("mimeType") == FOLDER_MIME_TYPE:
            return FileMetadata(
                name=name,
                path=full_path,
                size=0,
                is_dir=True,
                content_type="directory",
            )

        stat = self._json(f"{FILES_URL}/{item['id']}", {"fields": _STAT_FIELDS}, "stat")
        content = self._download(item["id"]) if config.fetch_content else None
        return FileMetadata(
            name=name,
            path=full_path,
            size=int(stat.get("size", 0)),
            last_modified=_format_timestamp(stat.get("modifiedTime")),
            etag=stat.get("md5Checksum"),
            is_dir=False,
            content_type=_extension(full_path),
            content=content,
        )

    def list_files(self, config: QueryConfig) -> list[FileMetadata]:
        start = normalize_root(config.root_path)
        base = self.base_path.strip("/")
        target = "/".join(part for part in (base, start) if part)
        folder_id = self._resolve_folder(target)
        if folder_id is None:
            return []
        prefix = f"{start}/" if start else ""
        entries = (
            metadata
            for relative, item in self._walk(folder_id, prefix, config.recursive)
            if (metadata := self._metadata(relative, item, config)) is not None
        )
        return apply_pagination(entries, config)


def register(
    conn: sqlite3.Connection, module_name: str, access_token: str, base_path: str
) -> Callable[[], int]:
    """Make the Google Drive listing below ``base_path`` queryable as ``module_name``."""
    return register_backend(conn, module_name, GdriveBackend(access_token, base_path))