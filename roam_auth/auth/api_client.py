"""
Outbound API Client

HTTP client for the application's own API. The auth contexts set and clear
its bearer credential as identities are committed and signed out.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from roam_auth.auth.exceptions import classify_error, error_from_response
from roam_auth.auth.identity import UserType
from roam_auth.common.logger import get_logger

logger = get_logger(__name__)


class ApiClient:
    """
    Application API client carrying one process-wide bearer credential.

    The credential remembers which role set it, so a context releasing a
    credential it never owned leaves the other role's credential in place.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize the API client.

        Args:
            base_url: Base URL of the application API
            timeout: Total request timeout in seconds
            session: Optional aiohttp session to reuse
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._session_lock = asyncio.Lock()
        self._auth_token: Optional[str] = None
        self._owner: Optional[UserType] = None

    @property
    def auth_token(self) -> Optional[str]:
        return self._auth_token

    @property
    def owner(self) -> Optional[UserType]:
        return self._owner

    def set_auth_token(self, token: str, owner: Optional[UserType] = None) -> None:
        self._auth_token = token
        self._owner = owner

    def clear_auth_token(self, owner: Optional[UserType] = None) -> bool:
        """
        Drop the credential.

        Args:
            owner: Only clear when the credential was set by this role

        Returns:
            True if a credential was cleared
        """
        if self._auth_token is None:
            return False
        if owner is not None and self._owner is not None and self._owner is not owner:
            return False
        self._auth_token = None
        self._owner = None
        return True

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is not None:
            return self._session
        async with self._session_lock:
            if self._session is None:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                )
        return self._session

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """
        Send a request to the application API.

        Args:
            method: HTTP method
            path: Path relative to ``base_url``
            **kwargs: Forwarded to ``aiohttp.ClientSession.request``

        Returns:
            The decoded JSON body, or None for an empty response
        """
        session = await self._ensure_session()
        headers = self.headers()
        headers.update(kwargs.pop("headers", None) or {})
        url = f"{self.base_url}/{path.lstrip('/')}"

        try:
            async with session.request(method, url, headers=headers, **kwargs) as response:
                if response.status >= 400:
                    try:
                        payload = await response.json(content_type=None)
                    except ValueError:
                        payload = await response.text()
                    logger.warning(f"{method} {path} failed with status {response.status}")
                    raise error_from_response(response.status, payload)
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise classify_error(e) from e

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
