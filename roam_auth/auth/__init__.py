"""
Authentication and session reconciliation.

This package keeps the customer and provider identities of the Roam apps in
sync with the remote auth service and the persisted session cache.
"""

from roam_auth.auth.exceptions import (
    AuthError,
    AuthErrorKind,
    NetworkError,
    InvalidCredentialsError,
    ProfileNotFoundError,
    UnauthenticatedError,
    UnknownAuthError,
    classify_error,
    error_from_response,
)

from roam_auth.auth.identity import (
    UserType,
    ProviderRole,
    Identity,
    CustomerIdentity,
    ProviderIdentity,
    BusinessSummary,
    BusinessLocation,
)

from roam_auth.auth.gateway import (
    AuthEvent,
    AuthEventBus,
    AuthEventKind,
    AuthGateway,
    Session,
    SignInData,
    SignUpData,
    SignUpResult,
    ProfileUpdateData,
)

from roam_auth.auth.guard import ProcessingGuard
from roam_auth.auth.session_store import SessionStore
from roam_auth.auth.api_client import ApiClient
from roam_auth.auth.notifications import Notification, NotificationCenter
from roam_auth.auth.storage import FileStorage, SupabaseStorage
from roam_auth.auth.supabase import SupabaseGateway
from roam_auth.auth.context import AuthSnapshot, RoleAuthContext
from roam_auth.auth.customer import CustomerAuthContext
from roam_auth.auth.provider import ProviderAuthContext
from roam_auth.auth.facade import UnifiedAuth, UnifiedSnapshot

__all__ = [
    'AuthError',
    'AuthErrorKind',
    'NetworkError',
    'InvalidCredentialsError',
    'ProfileNotFoundError',
    'UnauthenticatedError',
    'UnknownAuthError',
    'classify_error',
    'error_from_response',
    'UserType',
    'ProviderRole',
    'Identity',
    'CustomerIdentity',
    'ProviderIdentity',
    'BusinessSummary',
    'BusinessLocation',
    'AuthEvent',
    'AuthEventBus',
    'AuthEventKind',
    'AuthGateway',
    'Session',
    'SignInData',
    'SignUpData',
    'SignUpResult',
    'ProfileUpdateData',
    'ProcessingGuard',
    'SessionStore',
    'ApiClient',
    'Notification',
    'NotificationCenter',
    'FileStorage',
    'SupabaseStorage',
    'SupabaseGateway',
    'AuthSnapshot',
    'RoleAuthContext',
    'CustomerAuthContext',
    'ProviderAuthContext',
    'UnifiedAuth',
    'UnifiedSnapshot',
]
