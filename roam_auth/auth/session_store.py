"""
Persisted Session Cache

Stores the last-known identity, its access token and the user-type tag in a
durable key-value backend so a restart can restore the session before the
gateway answers.
"""

import asyncio
import json
from typing import Optional, Tuple

from roam_auth.auth.identity import Identity, UserType, identity_from_dict
from roam_auth.common.cache import CacheBackend
from roam_auth.common.logger import get_logger
from roam_auth.config import SessionKeys

logger = get_logger(__name__)


class SessionStore:
    """
    Role-aware view over the shared session keys.

    Each role has its own identity key; the access token and user-type tag are
    shared, and belong to whichever role wrote them last. Both role contexts
    use one store, and every multi-key operation runs under its lock so an
    ownership check and the writes that depend on it cannot interleave with
    the other role's writes.
    """

    def __init__(self, backend: CacheBackend, keys: Optional[SessionKeys] = None):
        self._backend = backend
        self._keys = keys or SessionKeys()
        self._lock: Optional[asyncio.Lock] = None

    @property
    def keys(self) -> SessionKeys:
        return self._keys

    @property
    def lock(self) -> asyncio.Lock:
        # Created on first use so it binds to the running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def identity_key(self, user_type: UserType) -> str:
        if user_type is UserType.PROVIDER:
            return self._keys.provider
        return self._keys.customer

    async def _read(self, key: str) -> Optional[str]:
        result = await self._backend.get(key)
        return result.value if result.hit else None

    async def _owner(self) -> Optional[UserType]:
        tag = await self._read(self._keys.user_type)
        if tag is None:
            return None
        try:
            return UserType(tag)
        except ValueError:
            logger.warning(f"Ignoring unknown user type tag {tag!r}")
            return None

    async def _cached_user_id(self, user_type: UserType) -> Optional[str]:
        blob = await self._read(self.identity_key(user_type))
        if not blob:
            return None
        try:
            return json.loads(blob).get("user_id")
        except (ValueError, AttributeError):
            return None

    async def owner(self) -> Optional[UserType]:
        """Return the role tagged as owning the shared credential."""
        async with self.lock:
            return await self._owner()

    async def load(self, user_type: UserType) -> Optional[Tuple[Identity, str]]:
        """
        Load the cached identity and token for ``user_type``.

        Returns:
            The pair, or None when absent or malformed
        """
        async with self.lock:
            blob = await self._read(self.identity_key(user_type))
            token = await self._read(self._keys.access_token)
            if not blob or not token:
                return None
            owner = await self._owner()

        if owner is not None and owner is not user_type:
            logger.debug(f"Cached credential belongs to {owner.value}, not {user_type.value}")
            return None

        try:
            identity = identity_from_dict(user_type, json.loads(blob))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Discarding malformed cached {user_type.value} identity: {e}")
            return None

        if not identity.user_id:
            return None
        return identity, token

    async def save(self, user_type: UserType, identity: Identity, token: str) -> None:
        """Write identity, token and tag, replacing the other role's identity."""
        other = UserType.CUSTOMER if user_type is UserType.PROVIDER else UserType.PROVIDER
        async with self.lock:
            await self._backend.set(self.identity_key(user_type), identity.to_json())
            await self._backend.set(self._keys.access_token, token)
            await self._backend.set(self._keys.user_type, user_type.value)
            await self._backend.delete(self.identity_key(other))

    async def update_identity(self, user_type: UserType, identity: Identity) -> bool:
        """
        Rewrite the cached identity blob of the same user.

        Returns:
            False when the blob is gone or belongs to another user, and nothing was written
        """
        async with self.lock:
            if await self._cached_user_id(user_type) != identity.user_id:
                return False
            await self._backend.set(self.identity_key(user_type), identity.to_json())
            return True

    async def update_token(self, user_type: UserType, token: str) -> bool:
        """Replace the shared token if ``user_type`` owns it."""
        async with self.lock:
            if await self._owner() is not user_type:
                return False
            await self._backend.set(self._keys.access_token, token)
            return True

    async def discard(self, user_type: UserType, user_id: str) -> None:
        """Clear the role's entries only while they still describe ``user_id``."""
        async with self.lock:
            if await self._cached_user_id(user_type) != user_id:
                return
            await self._clear(user_type)

    async def clear(self, user_type: UserType) -> None:
        """
        Remove the role's identity, and the shared keys when this role owns them.
        """
        async with self.lock:
            await self._clear(user_type)

    async def _clear(self, user_type: UserType) -> None:
        keys = [self.identity_key(user_type)]
        owner = await self._owner()
        if owner is None or owner is user_type:
            keys.extend([self._keys.access_token, self._keys.user_type])
        await self._backend.delete_many(keys)

    async def clear_all(self) -> None:
        async with self.lock:
            await self._backend.delete_many([
                self._keys.customer,
                self._keys.provider,
                self._keys.access_token,
                self._keys.user_type,
            ])
