"""
Supabase Gateway

Implements the gateway contract over Supabase's REST surface: GoTrue for
sessions and PostgREST for profile rows. The gateway keeps its own session in
a cache backend, the same way the browser client keeps it in local storage.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import aiohttp

from roam_auth.auth.exceptions import (
    AuthErrorKind,
    ProfileNotFoundError,
    UnknownAuthError,
    classify_error,
    error_from_response,
)
from roam_auth.auth.gateway import (
    AuthEventBus,
    AuthEventKind,
    AuthEventListener,
    AuthGateway,
    Session,
    SignUpResult,
    Unsubscribe,
)
from roam_auth.auth.identity import UserType
from roam_auth.common.cache import CacheBackend
from roam_auth.common.logger import get_logger, log_execution_time

logger = get_logger(__name__)

PROFILE_TABLES = {
    UserType.CUSTOMER: "customer_profiles",
    UserType.PROVIDER: "providers",
}

BUSINESS_COLUMNS = "id,business_name,business_type,verification_status,is_active,logo_url"
LOCATION_COLUMNS = "id,location_name,address_line1,city,state,postal_code,is_primary,is_active"


class SupabaseGateway(AuthGateway):
    """
    Gateway backed by a Supabase project.

    Features:
    - Session persisted through a cache backend and restored lazily
    - Refresh of expired sessions on ``get_session`` (emits ``token_refreshed``)
    - ``signed_in`` / ``signed_out`` notifications for its own session changes
    - Provider profiles enriched with business and location data
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        store: CacheBackend,
        session_key: str = "roam_gateway_session",
        timeout: float = 10.0,
        refresh_margin: float = 60.0,
        http_session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize the gateway.

        Args:
            url: Supabase project URL
            anon_key: Project anon key
            store: Backend persisting the gateway session
            session_key: Key of the persisted session
            timeout: Total request timeout in seconds
            refresh_margin: Refresh sessions expiring within this many seconds
            http_session: Optional aiohttp session to reuse
        """
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self.refresh_margin = refresh_margin
        self._store = store
        self._session_key = session_key
        self._http = http_session
        self._owns_http = http_session is None
        self._events = AuthEventBus()
        self._session: Optional[Session] = None
        self._loaded = False
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, name: str) -> asyncio.Lock:
        # Created on first use so they bind to the running loop
        if name not in self._locks:
            self._locks[name] = asyncio.Lock()
        return self._locks[name]

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    def subscribe(self, listener: AuthEventListener) -> Unsubscribe:
        return self._events.subscribe(listener)

    def _ensure_http(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._http

    @log_execution_time(logger)
    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        token: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        request_headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token or self.anon_key}",
            "Content-Type": "application/json",
        }
        request_headers.update(headers or {})
        url = f"{self.url}{path}"

        try:
            async with self._ensure_http().request(
                method, url, params=params, json=json_body, headers=request_headers
            ) as response:
                text = await response.text()
                try:
                    payload = json.loads(text) if text else None
                except ValueError:
                    payload = text
                if response.status >= 400:
                    logger.debug(f"{method} {path} failed with status {response.status}")
                    raise error_from_response(response.status, payload)
                return payload
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise classify_error(e) from e

    # Session persistence

    async def _load_session(self) -> Optional[Session]:
        if self._loaded:
            return self._session
        async with self._lock("load"):
            if self._loaded:
                return self._session
            result = await self._store.get(self._session_key)
            if result.hit and result.value:
                try:
                    self._session = Session.from_dict(json.loads(result.value))
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Discarding malformed persisted gateway session: {e}")
                    await self._store.delete(self._session_key)
            self._loaded = True
        return self._session

    async def _set_session(self, session: Optional[Session]) -> None:
        self._session = session
        self._loaded = True
        if session is None:
            await self._store.delete(self._session_key)
        else:
            await self._store.set(self._session_key, json.dumps(session.to_dict()))

    async def get_session(self) -> Optional[Session]:
        session = await self._load_session()
        if session is None:
            return None
        if not session.is_expired(self.refresh_margin):
            return session
        if not session.refresh_token:
            await self._set_session(None)
            return None
        return await self._refresh(session)

    async def _refresh(self, session: Session) -> Optional[Session]:
        async with self._lock("refresh"):
            # Another caller refreshed or dropped the session while we waited
            if self._session is not session:
                return self._session

            try:
                payload = await self._request(
                    "POST",
                    "/auth/v1/token",
                    params={"grant_type": "refresh_token"},
                    json_body={"refresh_token": session.refresh_token},
                )
            except Exception as e:
                error = classify_error(e)
                if error.kind is AuthErrorKind.NETWORK:
                    raise error
                logger.info(f"Session refresh rejected ({error.kind.value}), signing out locally")
                await self._set_session(None)
                await self._events.publish(AuthEventKind.SIGNED_OUT)
                return None

            refreshed = Session.from_payload(payload)
            await self._set_session(refreshed)
            await self._events.publish(AuthEventKind.TOKEN_REFRESHED, refreshed)
            return refreshed

    # Sign-in family

    async def _start_session(self, payload: Dict[str, Any]) -> Session:
        session = Session.from_payload(payload)
        await self._set_session(session)
        await self._events.publish(AuthEventKind.SIGNED_IN, session)
        return session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        payload = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json_body={"email": email, "password": password},
        )
        return await self._start_session(payload)

    async def sign_in_with_id_token(self, provider: str, id_token: str, nonce: Optional[str] = None) -> Session:
        body = {"provider": provider, "id_token": id_token}
        if nonce:
            body["nonce"] = nonce
        payload = await self._request(
            "POST", "/auth/v1/token", params={"grant_type": "id_token"}, json_body=body
        )
        return await self._start_session(payload)

    async def sign_in_with_oauth(self, provider: str, redirect_to: Optional[str] = None) -> str:
        params = {"provider": provider}
        if redirect_to:
            params["redirect_to"] = redirect_to
        return f"{self.url}/auth/v1/authorize?{urlencode(params)}"

    async def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> SignUpResult:
        payload = await self._request(
            "POST",
            "/auth/v1/signup",
            json_body={"email": email, "password": password, "data": metadata or {}},
        )
        if payload and payload.get("access_token"):
            session = await self._start_session(payload)
            return SignUpResult(user_id=session.user_id, email=session.email or email, session=session)

        # E-mail confirmation pending: GoTrue returns the bare user
        user = (payload or {}).get("user") or payload or {}
        if not user.get("id"):
            raise UnknownAuthError("Registration failed - no user returned")
        return SignUpResult(user_id=str(user["id"]), email=user.get("email") or email, session=None)

    async def sign_out(self) -> None:
        session = await self._load_session()
        await self._set_session(None)
        if session is not None:
            try:
                await self._request("POST", "/auth/v1/logout", token=session.access_token)
            except Exception as e:
                logger.warning(f"Remote sign-out failed: {classify_error(e)!r}")
        await self._events.publish(AuthEventKind.SIGNED_OUT)

    async def resend_verification_email(self, email: str) -> None:
        await self._request("POST", "/auth/v1/resend", json_body={"type": "signup", "email": email})

    async def reset_password(self, email: str, redirect_to: Optional[str] = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._request("POST", "/auth/v1/recover", params=params, json_body={"email": email})

    async def confirm_password_reset(self, token: str, new_password: str) -> None:
        await self._request("PUT", "/auth/v1/user", json_body={"password": new_password}, token=token)

    # Profiles

    async def _select(self, table: str, filters: Dict[str, str], columns: str = "*") -> List[Dict[str, Any]]:
        params = {key: f"eq.{value}" for key, value in filters.items()}
        params["select"] = columns
        rows = await self._request("GET", f"/rest/v1/{table}", params=params, token=self.access_token)
        return list(rows or [])

    async def get_profile_by_user_id(self, user_id: str, user_type: UserType) -> Optional[Dict[str, Any]]:
        rows = await self._select(PROFILE_TABLES[user_type], {"user_id": user_id})
        if not rows:
            return None
        row = dict(rows[0])

        if user_type is UserType.PROVIDER and row.get("business_id"):
            businesses = await self._select(
                "business_profiles", {"id": row["business_id"]}, BUSINESS_COLUMNS
            )
            row["business"] = businesses[0] if businesses else None
            row["business_locations"] = await self._select(
                "business_locations", {"business_id": row["business_id"]}, LOCATION_COLUMNS
            )
        return row

    async def create_profile(self, user_type: UserType, values: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "POST",
            f"/rest/v1/{PROFILE_TABLES[user_type]}",
            json_body=values,
            token=self.access_token,
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise UnknownAuthError(f"Failed to create {user_type.value} profile")
        return dict(rows[0])

    async def update_profile(self, user_type: UserType, profile_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "PATCH",
            f"/rest/v1/{PROFILE_TABLES[user_type]}",
            params={"id": f"eq.{profile_id}"},
            json_body=values,
            token=self.access_token,
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise ProfileNotFoundError(f"No {user_type.value} profile with id {profile_id}")
        return dict(rows[0])

    async def close(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None
