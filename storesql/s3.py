"""Listing the objects of an S3 bucket as file metadata."""

from __future__ import annotations

import copy
import hashlib
import hmac
import os
import sqlite3
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import PurePosixPath
from urllib.parse import quote

import requests

from .base import StorageBackend, apply_pagination, normalize_root
from .errors import StorageError
from .types import FileMetadata, QueryConfig
from .vtab import register_backend

TIMEOUT = 30
EMPTY_SHA256 = hashlib.sha256(b"").hexdigest()
_UNRESERVED = "-_.~"


@dataclass(frozen=True)
class _Credentials:
    access_key_id: str
    secret_access_key: str
    session_token: str | None = None


@dataclass(frozen=True)
class _Listed:
    """One raw listing entry: the key relative to the root and its kind."""

    relative: str
    is_dir: bool
    size: int


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def _signature_headers(
    method: str,
    host: str,
    canonical_uri: str,
    canonical_query: str,
    region: str,
    credentials: _Credentials,
    when: datetime,
) -> dict[str, str]:
    """Headers that sign a request with AWS Signature Version 4."""
    amz_date = when.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    date = amz_date[:8]
    headers = {
        "host": host,
        "x-amz-content-sha256": EMPTY_SHA256,
        "x-amz-date": amz_date,
    }
    if credentials.session_token:
        headers["x-amz-security-token"] = credentials.session_token
    names = sorted(headers)
    canonical_headers = "".join(f"{name}:{headers[name]}\n" for name in names)
    signed_headers = ";".join(names)
    canonical_request = "\n".join(
        [method, canonical_uri, canonical_query, canonical_headers, signed_headers, EMPTY_SHA256]
    )
    scope = f"{date}/{region}/s3/aws4_request"
    string_to_sign = "\n".join(
        [
            "AWS4-HMAC-SHA256",
            amz_date,
            scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )
    key = _hmac(("AWS4" + credentials.secret_access_key).encode("utf-8"), date)
    key = _hmac(key, region)
    key = _hmac(key, "s3")
    key = _hmac(key, "aws4_request")
    signature = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    result = {name: value for name, value in headers.items() if name != "host"}
    result["Authorization"] = (
        f"AWS4-HMAC-SHA256 Credential={credentials.access_key_id}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    return result


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element, name: str) -> Iterator[ET.Element]:
    return (child for child in element if _local(child.tag) == name)


def _text(element: ET.Element, name: str) -> str | None:
    return next((child.text or "" for child in _children(element, name)), None)


def _format_http_date(value: str | None) -> str | None:
    """Render an HTTP date as 'YYYY-MM-DD HH:MM:SS UTC'."""
    if not value:
        return None
    try:
        stamp = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return value
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _extension(path: str) -> str | None:
    """Extension of the last path component, without the dot."""
    name = PurePosixPath(path).name
    stem, dot, extension = name.rpartition(".")
    if not dot or not stem or name == "..":
        return None
    return extension


def _error_message(response: requests.Response) -> str:
    try:
        root = ET.fromstring(response.content)
    except ET.ParseError:
        return response.text.strip() or response.reason or ""
    code = _text(root, "Code")
    message = _text(root, "Message")
    return ": ".join(part for part in (code, message) if part) or response.text.strip()


class S3Backend(StorageBackend):
    """Lists objects and folders below a base prefix of an S3 bucket."""

    def __init__(self, bucket: str, region: str) -> None:
        self.bucket = bucket
        self.region = region
        self.access_key_id: str | None = None
        self.secret_access_key: str | None = None
        self.base_path = "/"

    def with_credentials(self, access_key_id: str, secret_access_key: str) -> S3Backend:
        """A copy of this backend that signs requests with the given credentials."""
        backend = copy.copy(self)
        backend.access_key_id = access_key_id
        backend.secret_access_key = secret_access_key
        return backend

    def with_base_path(self, path: str) -> S3Backend:
        """A copy of this backend rooted at the prefix ``path``."""
        backend = copy.copy(self)
        backend.base_path = path
        return backend

    def backend_name(self) -> str:
        return "s3"

    @property
    def _root_prefix(self) -> str:
        stripped = self.base_path.strip("/")
        return f"{stripped}/" if stripped else ""

    @property
    def _host(self) -> str:
        return f"s3.{self.region}.amazonaws.com"

    def _credentials(self) -> _Credentials | None:
        if self.access_key_id is not None and self.secret_access_key is not None:
            return _Credentials(self.access_key_id, self.secret_access_key)
        key_id = os.environ.get("AWS_ACCESS_KEY_ID")
        secret_access_key = os.environ.get("AWS_SECRET_ACCESS_KEY")
        if key_id and secret_access_key:
            return _Credentials(key_id, secret_access_key, os.environ.get("AWS_SESSION_TOKEN"))
        return None

    def _send(self, method: str, key: str, query: dict[str, str]) -> requests.Response:
        """Send a request for ``key`` in the bucket; network failures raise StorageError."""
        canonical_uri = quote(f"/{self.bucket}/{key}" if key else f"/{self.bucket}", safe="/" + _UNRESERVED)
        canonical_query = "&".join(
            f"{quote(name, safe=_UNRESERVED)}={quote(value, safe=_UNRESERVED)}"
            for name, value in sorted(query.items())
        )
        url = f"https://{self._host}{canonical_uri}"
        if canonical_query:
            url += f"?{canonical_query}"
        credentials = self._credentials()
        headers = (
            _signature_headers(
                method,
                self._host,
                canonical_uri,
                canonical_query,
                self.region,
                credentials,
                datetime.now(timezone.utc),
            )
            if credentials is not None
            else {}
        )
        try:
            return requests.request(method, url, headers=headers, timeout=TIMEOUT)
        except requests.RequestException as exc:
            raise StorageError(f"s3 {method} {key or self.bucket} failed: {exc}") from exc

    def _checked(self, method: str, key: str, query: dict[str, str], what: str) -> requests.Response:
        response = self._send(method, key, query)
        if not 200 <= response.status_code < 300:
            raise StorageError(
                f"s3 {what} failed: HTTP {response.status_code}: {_error_message(response)}"
            )
        return response

    def _listing(self, prefix: str, recursive: bool) -> Iterator[_Listed]:
        """Yield entries below ``prefix``, following continuation tokens lazily."""
        root = self._root_prefix
        query = {"list-type": "2"}
        if prefix:
            query["prefix"] = prefix
        if not recursive:
            query["delimiter"] = "/"
        while True:
            response = self._checked("GET", "", query, "list")
            try:
                result = ET.fromstring(response.content)
            except ET.ParseError as exc:
                raise StorageError("s3 list returned invalid XML") from exc

            for common in _children(result, "CommonPrefixes"):
                key = _text(common, "Prefix") or ""
                if key != prefix:
                    yield _Listed(key[len(root):], True, 0)
            for contents in _children(result, "Contents"):
                key = _text(contents, "Key") or ""
                if key == prefix:
                    continue
                size = int(_text(contents, "Size") or 0)
                yield _Listed(key[len(root):], key.endswith("/"), size)

            token = _text(result, "NextContinuationToken")
            if (_text(result, "IsTruncated") or "").lower() != "true" or not token:
                return
            query = {**query, "continuation-token": token}

    def _download(self, key: str) -> bytes | None:
        try:
            response = self._send("GET", key, {})
        except StorageError:
            return None
        if response.status_code != 200:
            return None
        return response.content

    def _metadata(self, listed: _Listed, config: QueryConfig) -> FileMetadata | None:
        relative = listed.relative
        if relative in ("", "/", "."):
            return None
        full_path = relative if relative.startswith("/") else f"/{relative}"
        name = PurePosixPath(full_path).name

        if listed.is_dir:
            return FileMetadata(
                name=name,
                path=full_path,
                size=0,
                is_dir=True,
                content_type="directory",
            )

        key = self._root_prefix + relative.lstrip("/")
        stat = self._checked("HEAD", key, {}, f"stat {full_path}")
        headers = stat.headers
        length = headers.get("Content-Length")
        content = self._download(key) if config.fetch_content else None
        return FileMetadata(
            name=name,
            path=full_path,
            size=int(length) if length is not None else listed.size,
            last_modified=_format_http_date(headers.get("Last-Modified")),
            etag=headers.get("ETag") or headers.get("Content-MD5"),
            is_dir=False,
            content_type=headers.get("Content-Type") or _extension(full_path),
            content=content,
        )

    def list_files(self, config: QueryConfig) -> list[FileMetadata]:
        if not self.bucket:
            raise StorageError("bucket is empty")
        if not self.region:
            raise StorageError("region is missing")
        start = normalize_root(config.root_path)
        prefix = self._root_prefix + (f"{start}/" if start else "")
        entries = (
            metadata
            for listed in self._listing(prefix, config.recursive)
            if (metadata := self._metadata(listed, config)) is not None
        )
        return apply_pagination(entries, config)


def register(
    conn: sqlite3.Connection,
    module_name: str,
    bucket: str,
    region: str,
    access_key_id: str,
    secret_access_key: str,
) -> Callable[[], int]:
    """Make the object listing of ``bucket`` queryable as ``module_name``.

    An empty ``access_key_id`` leaves credentials to the environment.
    """
    backend = S3Backend(bucket, region)
    if access_key_id:
        backend = backend.with_credentials(access_key_id, secret_access_key)
    return register_backend(conn, module_name, backend)