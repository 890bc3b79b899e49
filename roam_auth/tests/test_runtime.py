import json
import os
import time
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from roam_auth.auth.gateway import Session
from roam_auth.auth.identity import UserType
from roam_auth.auth.notifications import NotificationCenter
from roam_auth.auth.storage import SupabaseStorage
from roam_auth.common.cache import MemoryCacheBackend, RedisCacheBackend
from roam_auth.config import Settings
from roam_auth.main import auth_lifespan, build_runtime


def settings(**overrides):
    with patch.dict(os.environ, {}, clear=True):
        return Settings(_env_file=None, SUPABASE_URL="https://project.supabase.co", **overrides)


def response(status=200, payload=None):
    resp = MagicMock()
    resp.status = status
    resp.text = AsyncMock(return_value=json.dumps(payload) if payload is not None else "")
    resp.json = AsyncMock(return_value=payload)
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=resp)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


@pytest.mark.asyncio
class TestNotificationCenter:

    async def test_notify_fans_out_and_keeps_history(self):
        center = NotificationCenter(history_size=2)
        received = []

        async def listener(notification):
            received.append(notification.title)

        async def broken(notification):
            raise RuntimeError("render failed")

        center.register_listener(broken)
        center.register_listener(listener)
        for title in ("one", "two", "three"):
            await center.notify(title)

        assert received == ["one", "two", "three"]
        assert [n.title for n in center.recent] == ["two", "three"]

        center.unregister_listener(listener)
        await center.notify("four")
        assert received == ["one", "two", "three"]


@pytest.mark.asyncio
class TestSupabaseStorage:

    async def test_upload_returns_public_url(self):
        http = MagicMock(spec=aiohttp.ClientSession)
        http.post.return_value = response(200, {"Key": "k"})
        storage = SupabaseStorage("https://project.supabase.co", "anon", token_provider=lambda: "user-token", session=http)

        url = await storage.upload("customer-avatars", "customer_avatars/c1.png", b"img", "image/png")

        args, kwargs = http.post.call_args
        assert args[0] == "https://project.supabase.co/storage/v1/object/customer-avatars/customer_avatars/c1.png"
        assert kwargs["headers"]["Authorization"] == "Bearer user-token"
        assert kwargs["headers"]["x-upsert"] == "true"
        assert url == "https://project.supabase.co/storage/v1/object/public/customer-avatars/customer_avatars/c1.png"

    async def test_remove(self):
        http = MagicMock(spec=aiohttp.ClientSession)
        http.delete.return_value = response(200, [])
        storage = SupabaseStorage("https://project.supabase.co", "anon", session=http)

        await storage.remove("provider-avatars", ["a.png"])

        assert http.delete.call_args[1]["json"] == {"prefixes": ["a.png"]}


@pytest.mark.asyncio
class TestRuntime:
    """Composition root wiring."""

    async def test_build_runtime_wires_collaborators(self):
        runtime = build_runtime(settings())

        assert isinstance(runtime.cache, MemoryCacheBackend)
        assert runtime.customer.gateway is runtime.gateway
        assert runtime.provider.store is runtime.customer.store
        assert runtime.customer.api_client is runtime.api_client
        assert runtime.auth.customer is runtime.customer
        assert runtime.gateway.url == "https://project.supabase.co"

    async def test_build_runtime_with_redis(self):
        runtime = build_runtime(settings(CACHE_BACKEND="redis", REDIS_URL="redis://cache:6379/2"))
        assert isinstance(runtime.cache, RedisCacheBackend)

    async def test_lifespan_restores_persisted_session(self):
        runtime_settings = settings()
        runtime = build_runtime(runtime_settings)
        session = Session(user_id="u1", access_token="at", refresh_token="rt", expires_at=time.time() + 3600)
        await runtime.cache.set("roam_gateway_session", json.dumps(session.to_dict()))

        async def profile(user_id, user_type):
            if user_type is UserType.CUSTOMER:
                return {"id": "c1", "user_id": user_id, "email": "u1@example.com"}
            return None

        runtime.gateway.get_profile_by_user_id = profile
        await runtime.start()

        assert runtime.auth.user_type is UserType.CUSTOMER
        assert runtime.auth.loading is False
        assert runtime.api_client.auth_token == "at"

        await runtime.shutdown()
        assert runtime.gateway.access_token == "at"

    async def test_auth_lifespan_context(self):
        with patch("roam_auth.main.build_runtime") as build:
            runtime = MagicMock()
            runtime.start = AsyncMock()
            runtime.shutdown = AsyncMock()
            build.return_value = runtime

            async with auth_lifespan(settings()) as active:
                assert active is runtime
                runtime.start.assert_awaited_once()

            runtime.shutdown.assert_awaited_once()
