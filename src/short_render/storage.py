"""Key-object storage for usage logs.

The ledger only needs whole-object GET and PUT on string keys such as
``usage-logs/daily/2024-02-05.json``. Three backends implement that:

- LocalObjectStore: JSON files under a directory, written atomically
- R2ObjectStore: a Cloudflare R2 bucket via the Cloudflare REST API
- MemoryObjectStore: a dict, for tests and unconfigured runs
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import date
from pathlib import Path
from typing import Any

import httpx

from short_render.config import StorageSettings
from short_render.errors import StorageError
from short_render.logging import get_logger

logger = get_logger(__name__)

DAILY_LOG_PREFIX = "usage-logs/daily"
CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4"


class NotFoundError(StorageError):
    """Raised when a requested file does not exist."""


def daily_log_key(day: date) -> str:
    """Store key of the usage log for a calendar day."""
    return f"{DAILY_LOG_PREFIX}/{day.isoformat()}.json"


def atomic_write(path: Path, data: str, encoding: str = "utf-8") -> None:
    """Write data to a file atomically.

    Writes to a temporary file in the same directory, then renames it over
    the target, so readers never see a half-written log.

    Raises:
        StorageError: If the write operation fails
    """
    fd = None
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            suffix=".tmp",
            prefix=path.stem + "_",
            dir=path.parent,
        )
        os.write(fd, data.encode(encoding))
        os.fsync(fd)
        os.close(fd)
        fd = None

        os.replace(temp_path, path)
        temp_path = None
    except OSError as e:
        raise StorageError(f"Failed to write {path}: {e}") from e
    finally:
        if fd is not None:
            try:
                os.close(fd)
            except OSError:
                pass
        if temp_path is not None:
            try:
                os.unlink(temp_path)
            except OSError:
                pass


def atomic_write_json(path: Path, data: dict | list, indent: int = 2) -> None:
    """Write JSON data to a file atomically."""
    atomic_write(path, json.dumps(data, indent=indent, default=str))


def read_json(path: Path) -> Any:
    """Read JSON data from a file.

    Raises:
        NotFoundError: If file doesn't exist
        StorageError: If file is invalid JSON, not UTF-8, or unreadable
    """
    if not path.exists():
        raise NotFoundError(f"File not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise StorageError(f"Invalid JSON in {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise StorageError(f"Invalid UTF-8 in {path}: {e}") from e
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}") from e


class ObjectStore(ABC):
    """Whole-object key/value store. No partial updates, no listing."""

    @abstractmethod
    async def get(self, key: str) -> dict | None:
        """Return the object stored under key, or None if there is none.

        Raises:
            StorageError: If the store cannot be read
        """

    @abstractmethod
    async def put(self, key: str, data: dict) -> None:
        """Replace the object stored under key.

        Raises:
            StorageError: If the store cannot be written
        """


class MemoryObjectStore(ObjectStore):
    """In-process store. Objects are stored as JSON text, so callers never
    share mutable state with the store."""

    def __init__(self) -> None:
        self._objects: dict[str, str] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._objects

    def __len__(self) -> int:
        return len(self._objects)

    async def get(self, key: str) -> dict | None:
        raw = self._objects.get(key)
        return json.loads(raw) if raw is not None else None

    async def put(self, key: str, data: dict) -> None:
        self._objects[key] = json.dumps(data, default=str)


class LocalObjectStore(ObjectStore):
    """Objects as JSON files below a root directory."""

    def __init__(self, root: Path):
        self.root = root

    def path_for(self, key: str) -> Path:
        """File path backing a key.

        Raises:
            StorageError: If the key would escape the root directory
        """
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise StorageError(f"Key escapes store root: {key}")
        return path

    async def get(self, key: str) -> dict | None:
        path = self.path_for(key)
        try:
            return await asyncio.to_thread(read_json, path)
        except NotFoundError:
            return None

    async def put(self, key: str, data: dict) -> None:
        await asyncio.to_thread(atomic_write_json, self.path_for(key), data)


class R2ObjectStore(ObjectStore):
    """Objects in a Cloudflare R2 bucket."""

    def __init__(
        self,
        account_id: str,
        api_token: str,
        bucket: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ):
        self.account_id = account_id
        self.bucket = bucket
        self._api_token = api_token
        self._client = client
        self._timeout = timeout

    def object_url(self, key: str) -> str:
        return (
            f"{CLOUDFLARE_API_URL}/accounts/{self.account_id}"
            f"/r2/buckets/{self.bucket}/objects/{key}"
        )

    async def _send(self, method: str, key: str, body: dict | None = None) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._api_token}"}
        if body is not None:
            headers["Content-Type"] = "application/json"
        content = json.dumps(body, default=str) if body is not None else None
        try:
            if self._client is not None:
                return await self._client.request(
                    method, self.object_url(key), content=content, headers=headers
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.request(
                    method, self.object_url(key), content=content, headers=headers
                )
        except httpx.HTTPError as e:
            raise StorageError(
                f"R2 request failed: {type(e).__name__}",
                context={"method": method, "key": key},
            ) from e

    async def get(self, key: str) -> dict | None:
        response = await self._send("GET", key)
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise StorageError(
                f"R2 GET returned {response.status_code}",
                context={"key": key},
            )
        try:
            return response.json()
        except ValueError as e:
            raise StorageError(f"Invalid JSON in R2 object {key}") from e

    async def put(self, key: str, data: dict) -> None:
        response = await self._send("PUT", key, data)
        if not response.is_success:
            raise StorageError(
                f"R2 PUT returned {response.status_code}",
                context={"key": key},
            )


def create_store(settings: StorageSettings) -> ObjectStore:
    """Pick a store backend from settings.

    R2 wins when credentials are configured, then a local directory.
    Without either, usage is kept in memory and lost at exit.
    """
    if settings.has_r2_credentials:
        return R2ObjectStore(
            account_id=settings.cloudflare_account_id,
            api_token=settings.cloudflare_api_token,
            bucket=settings.r2_bucket,
        )
    if settings.usage_dir is not None:
        return LocalObjectStore(settings.usage_dir)

    logger.warning("No usage store configured; usage will not be persisted")
    return MemoryObjectStore()
