"""
Authentication Exceptions

This module defines the tagged error hierarchy for the auth layer and the
helpers that turn raw gateway failures into it. Callers branch on
``AuthError.kind`` instead of matching message text.
"""

import asyncio
import enum
from typing import Any, Dict, Mapping, Optional

import aiohttp


class AuthErrorKind(enum.Enum):
    """Kinds of authentication failure."""

    NETWORK = "network"
    INVALID_CREDENTIALS = "invalid_credentials"
    NOT_FOUND = "not_found"
    UNAUTHENTICATED = "unauthenticated"
    UNKNOWN = "unknown"


class AuthError(Exception):
    """Base exception for authentication errors."""

    kind = AuthErrorKind.UNKNOWN

    def __init__(
        self,
        message: str = "Authentication error",
        status_code: int = 401,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r}, code={self.code!r})"


class NetworkError(AuthError):
    """Exception raised when the gateway cannot be reached or answers with a server error."""

    kind = AuthErrorKind.NETWORK

    def __init__(self, message: str = "Network error", **kwargs):
        kwargs.setdefault("status_code", 503)
        super().__init__(message, **kwargs)


class InvalidCredentialsError(AuthError):
    """Exception raised when credentials are rejected."""

    kind = AuthErrorKind.INVALID_CREDENTIALS

    def __init__(self, message: str = "Invalid email or password", **kwargs):
        kwargs.setdefault("status_code", 400)
        super().__init__(message, **kwargs)


class ProfileNotFoundError(AuthError):
    """Exception raised when a record or profile does not exist."""

    kind = AuthErrorKind.NOT_FOUND

    def __init__(self, message: str = "Profile not found", **kwargs):
        kwargs.setdefault("status_code", 404)
        super().__init__(message, **kwargs)


class UnauthenticatedError(AuthError):
    """Exception raised when an operation needs a signed-in identity or a live session."""

    kind = AuthErrorKind.UNAUTHENTICATED

    def __init__(self, message: str = "Not signed in", **kwargs):
        kwargs.setdefault("status_code", 401)
        super().__init__(message, **kwargs)


class UnknownAuthError(AuthError):
    """Exception raised for any failure that fits no other kind."""

    kind = AuthErrorKind.UNKNOWN

    def __init__(self, message: str = "Unknown authentication error", **kwargs):
        kwargs.setdefault("status_code", 500)
        super().__init__(message, **kwargs)


# PostgREST code for ".single()" returning zero rows
POSTGREST_NO_ROWS = "PGRST116"

_INVALID_CREDENTIAL_CODES = {"invalid_grant", "invalid_credentials"}


def friendly_message(message: str) -> str:
    """
    Map a raw gateway message to text suitable for a form error.

    Args:
        message: The message reported by the gateway

    Returns:
        A user-facing message
    """
    if message == "Invalid login credentials":
        return "Invalid email or password"
    if "Email not confirmed" in message:
        return "Please check your email and click the confirmation link before signing in."
    if "Too many requests" in message or "rate limit" in message.lower():
        return "Too many login attempts. Please wait a few minutes before trying again."
    if "User already registered" in message:
        return "An account with this email already exists. Please sign in instead."
    if "Password should be" in message:
        return (
            "Password must be at least 6 characters long and contain at least one "
            "uppercase letter, one lowercase letter, and one number."
        )
    return message


def error_from_response(status: int, payload: Any) -> AuthError:
    """
    Build a tagged error from a gateway error response.

    Args:
        status: HTTP status code
        payload: Decoded JSON body (or raw text)

    Returns:
        The matching AuthError subclass instance
    """
    fields: Mapping[str, Any] = payload if isinstance(payload, Mapping) else {}
    code = fields.get("error_code") or fields.get("code") or fields.get("error")
    code = str(code) if code is not None else None
    raw_message = (
        fields.get("msg")
        or fields.get("message")
        or fields.get("error_description")
        or (payload if isinstance(payload, str) and payload else None)
        or f"Gateway request failed with status {status}"
    )
    raw_message = str(raw_message)
    message = friendly_message(raw_message)
    details = {"status": status, "raw_message": raw_message}

    if code in _INVALID_CREDENTIAL_CODES or raw_message == "Invalid login credentials":
        return InvalidCredentialsError(message, status_code=status, code=code, details=details)
    if code == POSTGREST_NO_ROWS or status == 404:
        return ProfileNotFoundError(message, status_code=status, code=code, details=details)
    if status in (401, 403):
        return UnauthenticatedError(message, status_code=status, code=code, details=details)
    if status >= 500:
        return NetworkError(message, status_code=status, code=code, details=details)
    return UnknownAuthError(message, status_code=status, code=code, details=details)


def classify_error(error: BaseException) -> AuthError:
    """
    Convert any exception raised on a gateway path into a tagged AuthError.

    Args:
        error: The exception to classify

    Returns:
        ``error`` itself when already tagged, otherwise a new AuthError
    """
    if isinstance(error, AuthError):
        return error
    if isinstance(error, aiohttp.ClientResponseError):
        return error_from_response(error.status, {"message": error.message})
    if isinstance(error, (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)):
        return NetworkError(str(error) or type(error).__name__)
    return UnknownAuthError(str(error) or type(error).__name__)
