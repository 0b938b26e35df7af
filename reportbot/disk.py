# -*- coding: utf-8 -*-

# --- IMPORTS ---
import asyncio
import logging
import time
from abc import ABC, abstractmethod

# HTTP
import httpx

# Local Imports
from .constants import (
    YANDEX_API_BASE, YANDEX_RESOURCES_PATH, YANDEX_UPLOAD_PATH, LIST_FILES_LIMIT,
    DEFAULT_REQUEST_TIMEOUT_SECONDS
)
from .errors import (
    AuthenticationMissingError, DiskError, DiskNotFoundError, DiskUnavailableError, UploadError
)

# --- BASIC SETUP ---
logger = logging.getLogger(__name__)


class RemoteDisk(ABC):
    """What the event engine and the wizard need from the remote storage."""

    @abstractmethod
    async def list_files(self, user_id: int, folder_path: str) -> list[str]:
        """File names (no subfolders) in `folder_path`; empty if the folder is absent.

        Raises DiskUnavailableError when the folder could not be enumerated.
        """

    @abstractmethod
    async def ensure_path(self, user_id: int, folder_path: str) -> None:
        """Creates `folder_path` and its parents; existing folders are fine."""

    @abstractmethod
    async def upload_file(self, user_id: int, local_path: str, remote_path: str) -> bool:
        """Uploads a local file, overwriting `remote_path`. Returns False on failure."""


class YandexDisk(RemoteDisk):
    """Yandex Disk REST client, authenticated with the per-user OAuth token."""

    def __init__(self, file_manager, timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
                 transport: httpx.AsyncBaseTransport | None = None, api_base: str = YANDEX_API_BASE):
        self.file_manager = file_manager
        self.timeout = timeout
        self.api_base = api_base.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _token(self, user_id: int) -> str:
        token = self.file_manager.get_token(user_id)
        if not token:
            raise AuthenticationMissingError(user_id)
        return token

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Sends a request, retrying once on timeout."""
        for attempt in (1, 2):
            try:
                return await self.client.request(method, url, **kwargs)
            except httpx.TimeoutException as e:
                if attempt == 2:
                    raise DiskUnavailableError(f"Yandex Disk timed out: {method} {url}") from e
                logger.warning(f"Timeout on {method} {url}, retrying once...")
            except httpx.RequestError as e:
                raise DiskUnavailableError(f"Yandex Disk unreachable: {e}") from e

    async def request(self, user_id: int, method: str, api_path: str, params: dict | None = None) -> dict | None:
        """Calls the API and returns the decoded JSON body (None when empty)."""
        headers = {
            "Authorization": f"OAuth {self._token(user_id)}",
            "Content-Type": "application/json",
        }
        response = await self._send(method, f"{self.api_base}{api_path}", params=params, headers=headers)
        status = response.status_code
        if status >= 400:
            body = response.text
            if status == 404 or "DiskNotFoundError" in body:
                raise DiskNotFoundError(f"Yandex Disk Error: {status} - {body}", status, body)
            raise DiskError(f"Yandex Disk Error: {status} - {body}", status, body)
        if not response.content:
            return None
        try:
            result = response.json()
        except ValueError as e:
            raise DiskUnavailableError(f"Yandex Disk returned a non-JSON reply: {status}", status, response.text[:200]) from e
        if not isinstance(result, dict):
            raise DiskUnavailableError(f"Yandex Disk returned an unexpected reply: {status}", status, response.text[:200])
        return result

    # --- FOLDERS ---
    async def ensure_path(self, user_id, folder_path):
        current = ""
        for part in [p for p in folder_path.split("/") if p]:
            current += "/" + part
            try:
                await self.request(user_id, "PUT", YANDEX_RESOURCES_PATH, {"path": current})
                logger.info(f"Created folder: {current}")
            except DiskError as e:
                if e.status != 409:
                    raise
                logger.debug(f"Folder already exists: {current}")

    async def list_files(self, user_id, folder_path):
        try:
            result = await self.request(user_id, "GET", YANDEX_RESOURCES_PATH,
                                        {"path": folder_path, "limit": LIST_FILES_LIMIT})
        except DiskNotFoundError:
            return []
        items = ((result or {}).get("_embedded") or {}).get("items") or []
        return [item["name"] for item in items if item.get("type") == "file"]

    async def delete(self, user_id: int, path: str) -> None:
        await self.request(user_id, "DELETE", YANDEX_RESOURCES_PATH, {"path": path})

    async def get_disk_info(self, user_id: int) -> dict:
        return await self.request(user_id, "GET", "/") or {}

    # --- UPLOAD ---
    async def get_upload_link(self, user_id: int, remote_path: str, overwrite: bool = True) -> dict:
        return await self.request(user_id, "GET", YANDEX_UPLOAD_PATH,
                                  {"path": remote_path, "overwrite": str(overwrite).lower()}) or {}

    async def upload_file(self, user_id, local_path, remote_path):
        folder = remote_path.rsplit("/", 1)[0]
        try:
            if folder:
                await self.ensure_path(user_id, folder)
            link = await self.get_upload_link(user_id, remote_path)
            href = link.get("href")
            if not href:
                raise UploadError("Failed to get upload link")
            data = await asyncio.to_thread(_read_bytes, local_path)
            response = await self._send(link.get("method", "PUT"), href, content=data,
                                        headers={"Content-Type": "application/octet-stream"})
            if response.status_code not in (201, 202):
                raise UploadError(f"Upload error: {response.status_code}")
        except AuthenticationMissingError:
            raise
        except (DiskError, UploadError, OSError) as e:
            logger.error(f"Error uploading {local_path} to Yandex Disk at {remote_path}: {e}")
            return False
        logger.info(f"Uploaded {local_path} -> {remote_path}")
        return True

    # --- CONNECTION CHECK ---
    async def check_connection(self, user_id: int, base_path: str) -> int:
        """Reads disk info and creates/deletes a probe folder. Returns free space in GB."""
        info = await self.get_disk_info(user_id)
        probe = f"{base_path.rstrip('/')}/test_connection_{int(time.time() * 1000)}"
        await self.ensure_path(user_id, probe)
        await self.delete(user_id, probe)
        free = info.get("total_space", 0) - info.get("used_space", 0)
        return round(free / 1024 / 1024 / 1024)


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()
