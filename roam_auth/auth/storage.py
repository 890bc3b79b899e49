"""
File Storage

Uploads binary assets (avatars, logos) to the backend's object storage and
returns their public URLs.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional

import aiohttp

from roam_auth.auth.exceptions import classify_error, error_from_response
from roam_auth.common.logger import get_logger, log_execution_time

logger = get_logger(__name__)


class FileStorage(ABC):
    """Object storage used for profile images."""

    @abstractmethod
    async def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Store ``data`` at ``bucket/path``, replacing any object there; return its public URL."""

    @abstractmethod
    async def remove(self, bucket: str, paths: List[str]) -> None:
        """Delete objects from a bucket."""

    @abstractmethod
    def public_url(self, bucket: str, path: str) -> str:
        """Public URL of an object."""


class SupabaseStorage(FileStorage):
    """Supabase Storage implementation over its REST API."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        token_provider=None,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize the storage client.

        Args:
            url: Supabase project URL
            anon_key: Project anon key
            token_provider: Optional zero-argument callable returning the current access token
            timeout: Total request timeout in seconds
            session: Optional aiohttp session to reuse
        """
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.token_provider = token_provider
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> dict:
        token = self.token_provider() if self.token_provider else None
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token or self.anon_key}",
        }

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{path.lstrip('/')}"

    @log_execution_time(logger)
    async def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        headers = self._headers()
        headers["x-upsert"] = "true"
        headers["Content-Type"] = content_type or "application/octet-stream"
        url = f"{self.url}/storage/v1/object/{bucket}/{path.lstrip('/')}"

        try:
            async with self._ensure_session().post(url, data=data, headers=headers) as response:
                if response.status >= 400:
                    payload = await response.json(content_type=None)
                    logger.error(f"Upload to {bucket}/{path} failed with status {response.status}")
                    raise error_from_response(response.status, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise classify_error(e) from e

        return self.public_url(bucket, path)

    async def remove(self, bucket: str, paths: List[str]) -> None:
        url = f"{self.url}/storage/v1/object/{bucket}"
        try:
            async with self._ensure_session().delete(
                url, json={"prefixes": list(paths)}, headers=self._headers()
            ) as response:
                if response.status >= 400:
                    payload = await response.json(content_type=None)
                    raise error_from_response(response.status, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise classify_error(e) from e

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
