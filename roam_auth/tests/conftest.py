import asyncio
from typing import Any, Dict, List, Optional

import pytest

from roam_auth.auth.api_client import ApiClient
from roam_auth.auth.customer import CustomerAuthContext
from roam_auth.auth.exceptions import (
    InvalidCredentialsError,
    ProfileNotFoundError,
    UnauthenticatedError,
)
from roam_auth.auth.gateway import (
    AuthEventBus,
    AuthEventKind,
    AuthGateway,
    Session,
    SignUpResult,
)
from roam_auth.auth.identity import UserType
from roam_auth.auth.notifications import NotificationCenter
from roam_auth.auth.provider import ProviderAuthContext
from roam_auth.auth.session_store import SessionStore
from roam_auth.auth.storage import FileStorage
from roam_auth.common.cache import MemoryCacheBackend


def make_session(user_id: str, token: Optional[str] = None, email: Optional[str] = None, **metadata) -> Session:
    return Session(
        user_id=user_id,
        access_token=token or f"token-{user_id}",
        refresh_token=f"refresh-{user_id}",
        email=email or f"{user_id}@example.com",
        user_metadata=metadata,
    )


def customer_row(user_id: str, **overrides) -> Dict[str, Any]:
    row = {
        "id": f"cust-{user_id}",
        "user_id": user_id,
        "email": f"{user_id}@example.com",
        "first_name": "Casey",
        "last_name": "Jones",
        "phone": "555-0100",
        "image_url": None,
    }
    row.update(overrides)
    return row


def provider_row(user_id: str, role: str = "provider", **overrides) -> Dict[str, Any]:
    row = {
        "id": f"prov-{user_id}",
        "user_id": user_id,
        "email": f"{user_id}@example.com",
        "first_name": "Pat",
        "last_name": "Lee",
        "provider_role": role,
        "business_id": "biz-1",
        "location_id": None,
        "verification_status": "approved",
        "is_active": True,
    }
    row.update(overrides)
    return row


async def settle(rounds: int = 20) -> None:
    """Let every runnable task advance until it blocks."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeGateway(AuthGateway):
    """
    Scripted in-memory gateway.

    Profile fetches for a role block on ``gates[role]`` while that event is
    present and unset, which lets tests interleave notifications with an
    in-flight fetch.
    """

    def __init__(self):
        self.session: Optional[Session] = None
        self.profiles: Dict[UserType, Dict[str, Dict[str, Any]]] = {
            UserType.CUSTOMER: {},
            UserType.PROVIDER: {},
        }
        self.passwords: Dict[str, str] = {}
        self.events = AuthEventBus()
        self.gates: Dict[UserType, asyncio.Event] = {}
        self.emit_events = False
        self.confirm_email = False

        self.session_error: Optional[Exception] = None
        self.profile_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.sign_out_error: Optional[Exception] = None

        self.session_calls = 0
        self.profile_calls: List[tuple] = []
        self.created: List[tuple] = []
        self.updated: List[tuple] = []
        self.resent: List[str] = []
        self.reset_requests: List[tuple] = []
        self.recovery_tokens: Dict[str, str] = {}
        self.sign_out_calls = 0

    def add_customer(self, user_id: str, **overrides) -> Dict[str, Any]:
        row = customer_row(user_id, **overrides)
        self.profiles[UserType.CUSTOMER][user_id] = row
        return row

    def add_provider(self, user_id: str, role: str = "provider", **overrides) -> Dict[str, Any]:
        row = provider_row(user_id, role, **overrides)
        self.profiles[UserType.PROVIDER][user_id] = row
        return row

    def add_account(self, email: str, password: str) -> None:
        self.passwords[email] = password

    def fetches(self, user_type: UserType) -> List[str]:
        return [user_id for user_id, kind in self.profile_calls if kind is user_type]

    async def get_session(self) -> Optional[Session]:
        self.session_calls += 1
        if self.session_error is not None:
            raise self.session_error
        return self.session

    async def get_profile_by_user_id(self, user_id: str, user_type: UserType) -> Optional[Dict[str, Any]]:
        self.profile_calls.append((user_id, user_type))
        gate = self.gates.get(user_type)
        if gate is not None:
            await gate.wait()
        if self.profile_error is not None:
            raise self.profile_error
        row = self.profiles[user_type].get(user_id)
        return dict(row) if row is not None else None

    async def _start(self, session: Session) -> Session:
        self.session = session
        if self.emit_events:
            await self.events.publish(AuthEventKind.SIGNED_IN, session)
        return session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        if self.passwords.get(email) != password:
            raise InvalidCredentialsError()
        user_id = email.split("@")[0]
        return await self._start(make_session(user_id, email=email))

    async def sign_in_with_id_token(self, provider: str, id_token: str, nonce: Optional[str] = None) -> Session:
        user_id = f"oauth-{id_token}"
        return await self._start(
            make_session(user_id, email="jane.doe@example.com", full_name="Jane Doe")
        )

    async def sign_in_with_oauth(self, provider: str, redirect_to: Optional[str] = None) -> str:
        return f"https://auth.example.com/authorize?provider={provider}&redirect_to={redirect_to}"

    async def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> SignUpResult:
        user_id = email.split("@")[0]
        self.passwords[email] = password
        if self.confirm_email:
            return SignUpResult(user_id=user_id, email=email)
        session = await self._start(make_session(user_id, email=email, **(metadata or {})))
        return SignUpResult(user_id=user_id, email=email, session=session)

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        self.session = None
        if self.sign_out_error is not None:
            raise self.sign_out_error
        if self.emit_events:
            await self.events.publish(AuthEventKind.SIGNED_OUT)

    async def resend_verification_email(self, email: str) -> None:
        self.resent.append(email)

    async def reset_password(self, email: str, redirect_to: Optional[str] = None) -> None:
        self.reset_requests.append((email, redirect_to))
        self.recovery_tokens[f"recovery-{email}"] = email

    async def confirm_password_reset(self, token: str, new_password: str) -> None:
        email = self.recovery_tokens.pop(token, None)
        if email is None:
            raise UnauthenticatedError("Token has expired or is invalid")
        self.passwords[email] = new_password

    async def create_profile(self, user_type: UserType, values: Dict[str, Any]) -> Dict[str, Any]:
        self.created.append((user_type, dict(values)))
        if self.create_error is not None:
            raise self.create_error
        prefix = "cust" if user_type is UserType.CUSTOMER else "prov"
        row = dict(values, id=f"{prefix}-{values['user_id']}")
        self.profiles[user_type][values["user_id"]] = row
        return dict(row)

    async def update_profile(self, user_type: UserType, profile_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        self.updated.append((user_type, profile_id, dict(values)))
        for row in self.profiles[user_type].values():
            if row["id"] == profile_id:
                row.update(values)
                return {k: v for k, v in row.items() if k not in ("business", "business_locations")}
        raise ProfileNotFoundError()

    def subscribe(self, listener):
        return self.events.subscribe(listener)

    async def emit(self, kind: AuthEventKind, session: Optional[Session] = None) -> None:
        await self.events.publish(kind, session)


class YieldingCacheBackend(MemoryCacheBackend):
    """Memory backend that yields to the loop before every call, like a network store."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def set(self, key, value, ttl=0):
        await asyncio.sleep(0)
        return await super().set(key, value, ttl)

    async def delete(self, key):
        await asyncio.sleep(0)
        return await super().delete(key)


class FakeStorage(FileStorage):
    def __init__(self):
        self.objects: Dict[str, bytes] = {}

    async def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        self.objects[f"{bucket}/{path}"] = data
        return self.public_url(bucket, path)

    async def remove(self, bucket: str, paths: List[str]) -> None:
        for path in paths:
            self.objects.pop(f"{bucket}/{path}", None)

    def public_url(self, bucket: str, path: str) -> str:
        return f"https://cdn.example.com/{bucket}/{path}"


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def backend():
    return MemoryCacheBackend()


@pytest.fixture
def store(backend):
    return SessionStore(backend)


@pytest.fixture
def api_client():
    return ApiClient("http://api.example.com")


@pytest.fixture
def notifications():
    return NotificationCenter()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def customer(gateway, store, api_client, notifications, storage):
    return CustomerAuthContext(
        gateway, store, api_client=api_client, notifications=notifications, storage=storage
    )


@pytest.fixture
def provider(gateway, store, api_client, notifications, storage):
    return ProviderAuthContext(
        gateway, store, api_client=api_client, notifications=notifications, storage=storage
    )
