"""
Credential/Session Gateway Contract

This module defines what the auth contexts need from the remote auth service:
session lookup, profile fetch, the sign-in family, sign-out and session-change
notifications. Concrete gateways implement ``AuthGateway``.
"""

import enum
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from roam_auth.auth.identity import UserType
from roam_auth.common.logger import get_logger

logger = get_logger(__name__)


class AuthEventKind(enum.Enum):
    """Session-change notifications emitted by a gateway."""

    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    TOKEN_REFRESHED = "token_refreshed"


@dataclass(frozen=True)
class Session:
    """
    An authenticated gateway session.

    The core treats ``expires_at`` as opaque; only gateways interpret it.
    """

    user_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = field(default_factory=dict)
    provider: Optional[str] = None

    def is_expired(self, margin: float = 0.0) -> bool:
        if self.expires_at is None:
            return False
        return time.time() + margin >= self.expires_at

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Session":
        """Build from a GoTrue token response."""
        user = payload.get("user") or {}
        app_metadata = user.get("app_metadata") or {}
        expires_at = payload.get("expires_at")
        if expires_at is None and payload.get("expires_in") is not None:
            expires_at = time.time() + float(payload["expires_in"])
        return cls(
            user_id=str(user["id"]),
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=float(expires_at) if expires_at is not None else None,
            email=user.get("email"),
            user_metadata=dict(user.get("user_metadata") or {}),
            provider=app_metadata.get("provider"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "email": self.email,
            "user_metadata": dict(self.user_metadata),
            "provider": self.provider,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            user_id=str(data["user_id"]),
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
            email=data.get("email"),
            user_metadata=dict(data.get("user_metadata") or {}),
            provider=data.get("provider"),
        )


@dataclass(frozen=True)
class SignUpResult:
    """Outcome of a registration; ``session`` is None until the e-mail is confirmed."""

    user_id: str
    email: str
    session: Optional[Session] = None


@dataclass(frozen=True)
class SignInData:
    email: str
    password: str


@dataclass(frozen=True)
class SignUpData:
    email: str
    password: str
    first_name: str
    last_name: str
    phone: Optional[str] = None


@dataclass(frozen=True)
class ProfileUpdateData:
    first_name: str
    last_name: str
    email: str
    phone: str = ""
    date_of_birth: Optional[str] = None
    bio: Optional[str] = None
    image_url: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "date_of_birth": self.date_of_birth or None,
            "bio": self.bio or None,
            "image_url": self.image_url or None,
        }


@dataclass(frozen=True)
class AuthEvent:
    """One session-change notification."""

    kind: AuthEventKind
    session: Optional[Session] = None
    timestamp: datetime = field(default_factory=datetime.now)


AuthEventListener = Callable[[AuthEvent], Awaitable[None]]
Unsubscribe = Callable[[], None]


class AuthEventBus:
    """
    Fan-out of session-change notifications to async listeners.

    Listeners run in registration order. A failing listener is logged and the
    remaining listeners still run.
    """

    def __init__(self):
        self._listeners: List[AuthEventListener] = []

    def subscribe(self, listener: AuthEventListener) -> Unsubscribe:
        self._listeners.append(listener)
        logger.debug(f"Registered auth event listener ({len(self._listeners)} total)")

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def publish(self, kind: AuthEventKind, session: Optional[Session] = None) -> AuthEvent:
        event = AuthEvent(kind=kind, session=session)
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                logger.error(f"Error in auth event listener for {kind.value}: {e}", exc_info=True)
        return event


class AuthGateway(ABC):
    """
    Remote authentication/session service.

    Methods raise ``AuthError`` subclasses; profile lookups return None when no
    profile exists for the user.
    """

    @abstractmethod
    async def get_session(self) -> Optional[Session]:
        """Return the active session, or None."""

    @abstractmethod
    async def get_profile_by_user_id(self, user_id: str, user_type: UserType) -> Optional[Dict[str, Any]]:
        """Fetch the profile row of ``user_type`` for a gateway user."""

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """Authenticate with e-mail and password."""

    @abstractmethod
    async def sign_in_with_id_token(self, provider: str, id_token: str, nonce: Optional[str] = None) -> Session:
        """Authenticate with an identity token issued by an OAuth provider."""

    @abstractmethod
    async def sign_in_with_oauth(self, provider: str, redirect_to: Optional[str] = None) -> str:
        """Start a federated sign-in; return the URL to redirect the user to."""

    @abstractmethod
    async def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> SignUpResult:
        """Register a new gateway user."""

    @abstractmethod
    async def sign_out(self) -> None:
        """Invalidate the remote session."""

    @abstractmethod
    async def resend_verification_email(self, email: str) -> None:
        """Send the sign-up confirmation e-mail again."""

    @abstractmethod
    async def reset_password(self, email: str, redirect_to: Optional[str] = None) -> None:
        """Send a password recovery e-mail."""

    @abstractmethod
    async def confirm_password_reset(self, token: str, new_password: str) -> None:
        """Set a new password, authorized by a recovery token."""

    @abstractmethod
    async def create_profile(self, user_type: UserType, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a profile row and return it."""

    @abstractmethod
    async def update_profile(self, user_type: UserType, profile_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Update a profile row and return it."""

    @abstractmethod
    def subscribe(self, listener: AuthEventListener) -> Unsubscribe:
        """Register for session-change notifications."""

    async def close(self) -> None:
        """Release transport resources."""
        return None
