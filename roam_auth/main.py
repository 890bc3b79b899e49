"""
Composition root for the Roam auth session layer.

Builds the cache backend, gateway, storage, API client and both role contexts
from settings and wires them together. Nothing here is a module-level
singleton; each runtime owns its collaborators.

Usage:
    async with auth_lifespan() as runtime:
        if runtime.auth.is_authenticated:
            ...
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from roam_auth.auth.api_client import ApiClient
from roam_auth.auth.customer import CustomerAuthContext
from roam_auth.auth.facade import UnifiedAuth
from roam_auth.auth.notifications import NotificationCenter
from roam_auth.auth.provider import ProviderAuthContext
from roam_auth.auth.session_store import SessionStore
from roam_auth.auth.storage import SupabaseStorage
from roam_auth.auth.supabase import SupabaseGateway
from roam_auth.common.cache import CacheBackend, create_cache_backend
from roam_auth.common.logger import configure_logger, get_app_logger
from roam_auth.config import Settings, get_settings

logger = get_app_logger().getChild("main")


@dataclass
class AuthRuntime:
    """Every collaborator of one running auth layer."""

    settings: Settings
    cache: CacheBackend
    gateway: SupabaseGateway
    storage: SupabaseStorage
    api_client: ApiClient
    notifications: NotificationCenter
    customer: CustomerAuthContext
    provider: ProviderAuthContext
    auth: UnifiedAuth

    async def start(self) -> None:
        """Mount both role contexts concurrently."""
        await asyncio.gather(self.customer.start(), self.provider.start())
        logger.info(f"Auth layer started (user_type={self.auth.user_type.value if self.auth.user_type else None})")

    async def shutdown(self) -> None:
        """Unsubscribe the contexts and release network resources."""
        try:
            self.auth.close()
            await self.customer.close()
            await self.provider.close()
            await self.gateway.close()
            await self.storage.close()
            await self.api_client.close()
            await self.cache.close()
            logger.info("Auth layer shutdown complete")
        except Exception as e:
            logger.error(f"Error during auth layer shutdown: {str(e)}")
            raise


def build_runtime(settings: Optional[Settings] = None) -> AuthRuntime:
    """
    Construct an unstarted runtime.

    Args:
        settings: Settings to use; loaded from file and environment when omitted

    Returns:
        The wired runtime
    """
    settings = settings or get_settings()
    configure_logger(
        level=settings.LOG_LEVEL,
        use_json=settings.LOG_JSON,
        log_file=settings.LOG_FILE,
    )

    if settings.CACHE_BACKEND == "redis":
        cache = create_cache_backend("redis", url=settings.REDIS_URL, key_prefix=settings.CACHE_KEY_PREFIX)
    else:
        cache = create_cache_backend("memory")

    keys = settings.SESSION_KEYS
    gateway = SupabaseGateway(
        settings.SUPABASE_URL,
        settings.SUPABASE_ANON_KEY,
        cache,
        session_key=keys.gateway_session,
        timeout=settings.REQUEST_TIMEOUT,
    )
    storage = SupabaseStorage(
        settings.SUPABASE_URL,
        settings.SUPABASE_ANON_KEY,
        token_provider=lambda: gateway.access_token,
    )
    api_client = ApiClient(settings.API_BASE_URL, timeout=settings.REQUEST_TIMEOUT)
    store = SessionStore(cache, keys)
    notifications = NotificationCenter()

    shared = dict(
        api_client=api_client,
        notifications=notifications,
        storage=storage,
        oauth_redirect_url=settings.OAUTH_REDIRECT_URL,
    )
    customer = CustomerAuthContext(gateway, store, **shared)
    provider = ProviderAuthContext(gateway, store, **shared)

    return AuthRuntime(
        settings=settings,
        cache=cache,
        gateway=gateway,
        storage=storage,
        api_client=api_client,
        notifications=notifications,
        customer=customer,
        provider=provider,
        auth=UnifiedAuth(customer, provider),
    )


@asynccontextmanager
async def auth_lifespan(settings: Optional[Settings] = None) -> AsyncIterator[AuthRuntime]:
    """Start a runtime for the duration of the block."""
    runtime = build_runtime(settings)
    await runtime.start()
    try:
        yield runtime
    finally:
        await runtime.shutdown()
