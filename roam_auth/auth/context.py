"""
Role-Specific Auth Context

This module holds the reconciliation state machine shared by the customer and
provider contexts: restoring a cached identity, validating it against the
gateway session, fetching and committing profiles, and keeping the published
state converged with gateway notifications.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from roam_auth.auth.api_client import ApiClient
from roam_auth.auth.exceptions import (
    AuthErrorKind,
    ProfileNotFoundError,
    UnauthenticatedError,
    UnknownAuthError,
    classify_error,
)
from roam_auth.auth.gateway import (
    AuthEvent,
    AuthEventKind,
    AuthGateway,
    ProfileUpdateData,
    Session,
    SignInData,
    SignUpData,
    SignUpResult,
    Unsubscribe,
)
from roam_auth.auth.guard import ProcessingGuard
from roam_auth.auth.identity import Identity, UserType, identity_from_row
from roam_auth.auth.notifications import NotificationCenter
from roam_auth.auth.session_store import SessionStore
from roam_auth.auth.storage import FileStorage
from roam_auth.common.logger import LoggerAdapter, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthSnapshot:
    """
    Published state of one role context.

    ``loading`` is True only while a restoration or reconciliation is running;
    ``identity`` is either fully resolved or None.
    """

    identity: Optional[Identity] = None
    loading: bool = True

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None


SnapshotListener = Callable[[AuthSnapshot], None]


class RoleAuthContext:
    """
    Auth state machine for one identity type.

    Subclasses set ``user_type`` and the avatar location, and decide what a
    sign-in without an application profile does.
    """

    user_type: UserType = None
    avatar_bucket: str = None
    avatar_prefix: str = None

    def __init__(
        self,
        gateway: AuthGateway,
        store: SessionStore,
        api_client: Optional[ApiClient] = None,
        notifications: Optional[NotificationCenter] = None,
        storage: Optional[FileStorage] = None,
        oauth_redirect_url: Optional[str] = None
    ):
        """
        Initialize the context.

        Args:
            gateway: Remote auth/session service
            store: Persisted session cache
            api_client: Outbound API client whose credential this context sets
            notifications: Sink for user-visible confirmations
            storage: Object storage used for avatar uploads
            oauth_redirect_url: Default redirect for federated sign-in
        """
        self.gateway = gateway
        self.store = store
        self.api_client = api_client
        self.notifications = notifications or NotificationCenter()
        self.storage = storage
        self.oauth_redirect_url = oauth_redirect_url

        self._guard = ProcessingGuard()
        self._identity: Optional[Identity] = None
        self._restoring = True
        self._busy = 0
        self._pending: Dict[str, asyncio.Future] = {}
        self._listeners: List[SnapshotListener] = []
        self._published: Optional[AuthSnapshot] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._started = False
        self.log = LoggerAdapter(logger, {"role": self.user_type.value})

    # Published state

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def loading(self) -> bool:
        return self._restoring or self._busy > 0

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    @property
    def guard(self) -> ProcessingGuard:
        return self._guard

    @property
    def snapshot(self) -> AuthSnapshot:
        return AuthSnapshot(identity=self._identity, loading=self.loading)

    def subscribe(self, callback: SnapshotListener) -> Unsubscribe:
        """
        Register a synchronous callback invoked with every new snapshot.

        Returns:
            A function removing the callback
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self.snapshot
        if snapshot == self._published:
            return
        self._published = snapshot
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception as e:
                self.log.error(f"Error in snapshot listener: {e}", exc_info=True)

    # Lifecycle

    async def start(self) -> AuthSnapshot:
        """
        Mount the context: resolve the initial identity and follow gateway events.

        Returns:
            The settled snapshot
        """
        if self._started:
            raise RuntimeError(f"{type(self).__name__} already started")
        self._started = True
        self._unsubscribe = self.gateway.subscribe(self._on_auth_event)

        mark = self._mark()
        try:
            await self._resolve(mark)
        except Exception as e:
            self.log.warning(f"Session restoration failed: {classify_error(e)!r}")
            await self._fail_closed(mark)
        finally:
            self._restoring = False
            self._publish()

        return self.snapshot

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _mark(self) -> Tuple[int, Optional[Identity]]:
        return self._guard.epoch, self._identity

    def _superseded(self, mark: Tuple[int, Optional[Identity]]) -> bool:
        """True once an event or action has changed state since ``mark`` was taken."""
        epoch, identity = mark
        return self._guard.epoch != epoch or self._identity is not identity or bool(self._pending)

    async def _fail_closed(self, mark: Tuple[int, Optional[Identity]]) -> None:
        if self._superseded(mark):
            self.log.debug("Newer state arrived during restoration, keeping it")
            return
        await self._clear_local()

    async def _resolve(self, mark: Tuple[int, Optional[Identity]]) -> None:
        cached = await self.store.load(self.user_type)
        session: Optional[Session] = None
        session_known = False

        if cached is not None:
            identity, _ = cached
            try:
                session = await self.gateway.get_session()
                session_known = True
            except Exception as e:
                self.log.warning(f"Could not validate cached identity: {classify_error(e)!r}")

            if session is not None and session.user_id == identity.user_id:
                await self._restore_cached(identity, session)
                return

            if self._superseded(mark):
                self.log.debug("Newer state arrived during restoration, keeping it")
                return
            self.log.info(f"Discarding cached identity for user {identity.user_id}")
            mark = (self._guard.epoch, None)
            await self._clear_local()

        if not session_known:
            try:
                session = await self.gateway.get_session()
            except Exception as e:
                self.log.warning(f"Session lookup failed: {classify_error(e)!r}")
                await self._fail_closed(mark)
                return

        if session is None:
            self.log.debug("No active session")
            await self._fail_closed(mark)
            return

        await self._reconcile(session)

    # Guarded reconciliation

    def _begin(self, user_id: str) -> Optional[Tuple[int, asyncio.Future]]:
        if not self._guard.try_begin(user_id):
            return None
        future = asyncio.get_running_loop().create_future()
        self._pending[user_id] = future
        self._busy += 1
        self._publish()
        return self._guard.epoch, future

    def _end(self, user_id: str, epoch: int, future: asyncio.Future, success: bool) -> None:
        if self._guard.is_current(user_id, epoch):
            self._guard.complete(user_id, success)
        if self._pending.get(user_id) is future:
            del self._pending[user_id]
        if not future.done():
            future.set_result(self._identity if success else None)
        self._busy -= 1
        self._publish()

    async def _await_pending(self, user_id: str) -> Optional[Identity]:
        pending = self._pending.get(user_id)
        if pending is None:
            if self._identity is not None and self._identity.user_id == user_id:
                return self._identity
            return None
        return await asyncio.shield(pending)

    async def _commit(self, identity: Identity, token: str, user_id: str, epoch: int) -> bool:
        """Persist and publish ``identity`` unless the run was superseded."""
        log = self.log.with_context(user_id=user_id)
        if not self._guard.is_current(user_id, epoch):
            log.debug("Discarding stale reconciliation result")
            return False

        await self.store.save(self.user_type, identity, token)

        if not self._guard.is_current(user_id, epoch):
            log.debug("Discarding stale reconciliation result after cache write")
            await self._discard_cached(user_id)
            return False

        self._identity = identity
        if self.api_client is not None:
            self.api_client.set_auth_token(token, owner=self.user_type)
        log.info(f"Committed {self.user_type.value} identity {identity.id}")
        return True

    async def _discard_cached(self, user_id: str) -> None:
        await self.store.discard(self.user_type, user_id)

    async def _clear_local(self) -> None:
        self._identity = None
        self._guard.forget_last_processed()
        if self.api_client is not None:
            self.api_client.clear_auth_token(owner=self.user_type)
        self._publish()
        await self.store.clear(self.user_type)

    async def _restore_cached(self, identity: Identity, session: Session) -> None:
        claim = self._begin(session.user_id)
        if claim is None:
            await self._await_pending(session.user_id)
            return

        epoch, future = claim
        success = False
        try:
            success = await self._commit(identity, session.access_token, session.user_id, epoch)
        finally:
            self._end(session.user_id, epoch, future, success)

    async def _reconcile(self, session: Session) -> Optional[Identity]:
        """
        Fetch the profile for ``session`` and commit it, failing closed.

        Never raises. Returns the committed identity, or None.
        """
        user_id = session.user_id
        log = self.log.with_context(user_id=user_id)

        claim = self._begin(user_id)
        if claim is None:
            log.debug("Reconciliation already in flight or current, skipping")
            return await self._await_pending(user_id)

        epoch, future = claim
        success = False
        try:
            row = await self.gateway.get_profile_by_user_id(user_id, self.user_type)
            if not self._guard.is_current(user_id, epoch):
                log.debug("Discarding stale profile fetch")
                return None
            if row is None:
                log.info(f"No {self.user_type.value} profile for session")
                await self._clear_local()
                return None
            identity = identity_from_row(self.user_type, row)
            success = await self._commit(identity, session.access_token, user_id, epoch)
        except Exception as e:
            error = classify_error(e)
            level = logging.INFO if error.kind is AuthErrorKind.NOT_FOUND else logging.WARNING
            log.log(level, f"Reconciliation failed, treating as signed out: {error!r}")
            if self._guard.is_current(user_id, epoch):
                await self._clear_local()
        finally:
            self._end(user_id, epoch, future, success)

        return self._identity if success else None

    # Gateway notifications

    async def _on_auth_event(self, event: AuthEvent) -> None:
        if event.kind is AuthEventKind.SIGNED_OUT:
            self._drop_local_state()
            await self.store.clear_all()
            return

        session = event.session
        if session is None:
            return

        if event.kind is AuthEventKind.TOKEN_REFRESHED:
            if self._identity is None:
                await self._reconcile(session)
            elif self._identity.user_id == session.user_id:
                await self._renew_token(session.access_token)
            return

        if session.user_id == self._guard.last_processed or self._guard.is_in_flight(session.user_id):
            self.log.with_context(user_id=session.user_id).debug(f"Ignoring redundant {event.kind.value}")
            return
        await self._reconcile(session)

    async def _renew_token(self, token: str) -> None:
        await self.store.update_token(self.user_type, token)
        if self.api_client is not None and self.api_client.owner is self.user_type:
            self.api_client.set_auth_token(token, owner=self.user_type)

    def _drop_local_state(self) -> None:
        self._guard.reset()
        self._identity = None
        if self.api_client is not None:
            self.api_client.clear_auth_token()
        self._publish()

    # Actions

    async def sign_in(self, credentials: SignInData) -> Identity:
        """
        Sign in with e-mail and password.

        Raises:
            AuthError: The gateway rejected the credentials or the profile lookup failed
        """
        self.log.info(f"Signing in {credentials.email}")
        try:
            session = await self.gateway.sign_in_with_password(credentials.email, credentials.password)
            return await self._establish(session)
        except Exception as e:
            self.log.error(f"Sign-in failed: {classify_error(e)!r}")
            raise

    async def sign_in_with_id_token(self, provider: str, id_token: str, nonce: Optional[str] = None) -> Identity:
        """Sign in with an identity token from ``provider`` (e.g. native Google sign-in)."""
        self.log.info(f"Signing in with {provider} id token")
        try:
            session = await self.gateway.sign_in_with_id_token(provider, id_token, nonce)
            return await self._establish(session)
        except Exception as e:
            self.log.error(f"Sign-in with {provider} failed: {classify_error(e)!r}")
            raise

    async def sign_in_with_oauth(self, provider: str, redirect_to: Optional[str] = None) -> str:
        """Start a federated sign-in; the identity arrives later as a ``signed_in`` event."""
        return await self.gateway.sign_in_with_oauth(provider, redirect_to or self.oauth_redirect_url)

    async def _establish(self, session: Session) -> Identity:
        user_id = session.user_id
        claim = self._begin(user_id)
        while claim is None:
            if user_id not in self._pending:
                if self._identity is not None and self._identity.user_id == user_id:
                    return self._identity
                raise UnknownAuthError("Sign-in could not be reconciled")
            identity = await self._await_pending(user_id)
            if identity is not None and identity.user_id == user_id:
                return identity
            claim = self._begin(user_id)

        epoch, future = claim
        success = False
        try:
            row = await self.gateway.get_profile_by_user_id(user_id, self.user_type)
            if row is None:
                row = await self._provision_profile(session)
            identity = identity_from_row(self.user_type, row)
            success = await self._commit(identity, session.access_token, user_id, epoch)
            if not success:
                raise UnauthenticatedError("Sign-in was superseded by a sign-out")
            return identity
        finally:
            self._end(user_id, epoch, future, success)

    async def _provision_profile(self, session: Session) -> Dict[str, Any]:
        raise ProfileNotFoundError(f"No {self.user_type.value} profile for this account")

    def _new_profile_values(self, result: SignUpResult, data: SignUpData) -> Dict[str, Any]:
        return {
            "user_id": result.user_id,
            "email": data.email,
            "first_name": data.first_name,
            "last_name": data.last_name,
            "phone": data.phone,
        }

    async def sign_up(self, data: SignUpData) -> Optional[Identity]:
        """
        Register a new account and its application profile.

        Returns:
            The committed identity, or None when the e-mail must be confirmed first
        """
        self.log.info(f"Registering {data.email}")
        try:
            result = await self.gateway.sign_up(
                data.email,
                data.password,
                {
                    "first_name": data.first_name,
                    "last_name": data.last_name,
                    "phone": data.phone,
                    "user_type": self.user_type.value,
                },
            )
            try:
                await self.gateway.create_profile(self.user_type, self._new_profile_values(result, data))
            except Exception:
                try:
                    await self.gateway.sign_out()
                except Exception as cleanup_error:
                    self.log.warning(f"Sign-out after failed registration failed: {cleanup_error!r}")
                raise

            if result.session is None:
                await self.notifications.notify(
                    "Confirm your email",
                    f"We sent a confirmation link to {result.email}. Please verify your email to sign in.",
                )
                return None

            identity = await self._establish(result.session)
        except Exception as e:
            self.log.error(f"Registration failed: {classify_error(e)!r}")
            raise

        await self.notifications.notify("Registration Successful", "Welcome! Your account has been created.")
        return identity

    async def sign_out(self) -> None:
        """Clear local state, then invalidate the remote session; never raises."""
        self.log.info("Signing out")
        self._drop_local_state()
        try:
            await self.store.clear(self.user_type)
        except Exception as e:
            self.log.warning(f"Failed to clear session cache: {e!r}")
        try:
            await self.gateway.sign_out()
        except Exception as e:
            self.log.warning(f"Remote sign-out failed: {classify_error(e)!r}")

    async def refresh_user(self) -> None:
        """Re-fetch the current profile and replace the identity; sign out if it is gone."""
        identity = self._identity
        if identity is None:
            return

        log = self.log.with_context(user_id=identity.user_id)
        try:
            row = await self.gateway.get_profile_by_user_id(identity.user_id, self.user_type)
            if self._identity is not identity:
                log.debug("Identity changed during refresh, discarding result")
                return
            if row is None:
                log.info("Profile no longer exists, signing out")
                await self.sign_out()
                return
            refreshed = identity_from_row(self.user_type, row)
        except Exception as e:
            log.warning(f"Profile refresh failed: {classify_error(e)!r}")
            return

        self._identity = refreshed
        self._publish()
        await self._persist_identity(refreshed)

    async def _persist_identity(self, identity: Identity) -> None:
        if not await self.store.update_identity(self.user_type, identity):
            self.log.debug("Cached identity changed owner, skipping rewrite")
            return
        # A sign-out or user switch may have landed during the write
        current = self._identity
        if current is None or current.user_id != identity.user_id:
            await self._discard_cached(identity.user_id)

    def _require_identity(self) -> Identity:
        if self._identity is None:
            raise UnauthenticatedError(f"No {self.user_type.value} is signed in")
        return self._identity

    def _identity_from_update(self, previous: Identity, row: Dict[str, Any]) -> Identity:
        return identity_from_row(self.user_type, row)

    async def _apply_profile_update(self, values: Dict[str, Any]) -> Identity:
        identity = self._require_identity()
        row = await self.gateway.update_profile(self.user_type, identity.id, values)
        if self._identity is None or self._identity.user_id != identity.user_id:
            raise UnauthenticatedError("Signed out while the profile was being updated")

        updated = self._identity_from_update(identity, row)
        self._identity = updated
        self._publish()
        await self._persist_identity(updated)
        return updated

    async def update_profile(self, data: ProfileUpdateData) -> Identity:
        """
        Write profile fields and replace the identity with the stored row.

        Raises:
            UnauthenticatedError: Nobody is signed in
            AuthError: The gateway rejected the update
        """
        try:
            updated = await self._apply_profile_update(data.to_row())
        except Exception as e:
            self.log.error(f"Profile update failed: {classify_error(e)!r}")
            raise

        await self.notifications.notify("Profile Updated", "Your profile has been successfully updated.")
        return updated

    async def upload_avatar(self, filename: str, data: bytes, content_type: Optional[str] = None) -> str:
        """
        Upload a new avatar and point the profile at it.

        Returns:
            Public URL of the uploaded image
        """
        identity = self._require_identity()
        if self.storage is None:
            raise UnknownAuthError("File storage is not configured")

        extension = os.path.splitext(filename)[1].lstrip(".").lower() or "jpg"
        path = f"{self.avatar_prefix}/{identity.id}.{extension}"
        try:
            url = await self.storage.upload(self.avatar_bucket, path, data, content_type)
            await self._apply_profile_update({"image_url": url})
        except Exception as e:
            self.log.error(f"Avatar upload failed: {classify_error(e)!r}")
            raise
        return url

    async def resend_verification_email(self, email: str) -> None:
        try:
            await self.gateway.resend_verification_email(email)
        except Exception as e:
            self.log.error(f"Resending verification e-mail failed: {classify_error(e)!r}")
            raise
        await self.notifications.notify(
            "Verification Email Sent", "Please check your email for the verification link."
        )

    async def reset_password(self, email: str, redirect_to: Optional[str] = None) -> None:
        """Send a password recovery e-mail; errors propagate."""
        self.log.info(f"Requesting password reset for {email}")
        try:
            await self.gateway.reset_password(email, redirect_to)
        except Exception as e:
            self.log.error(f"Password reset request failed: {classify_error(e)!r}")
            raise
        await self.notifications.notify(
            "Password Reset Email Sent", f"Check {email} for a link to reset your password."
        )

    async def confirm_password_reset(self, token: str, new_password: str) -> None:
        """
        Set a new password using the recovery token from the reset e-mail.

        Raises:
            UnauthenticatedError: The recovery token is invalid or expired
        """
        try:
            await self.gateway.confirm_password_reset(token, new_password)
        except Exception as e:
            self.log.error(f"Password reset failed: {classify_error(e)!r}")
            raise
        await self.notifications.notify("Password Updated", "Your password has been updated successfully.")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(identity={self._identity!r}, loading={self.loading})"
