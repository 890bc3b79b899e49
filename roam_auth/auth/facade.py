"""
Unified Auth Facade

Combines the customer and provider contexts into one view for the rest of the
application. Everything here is derived from the two contexts' published
state; the facade performs no I/O of its own.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

from roam_auth.auth.context import AuthSnapshot, RoleAuthContext
from roam_auth.auth.customer import CustomerAuthContext
from roam_auth.auth.identity import Identity, UserType
from roam_auth.auth.provider import ProviderAuthContext
from roam_auth.common.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class UnifiedSnapshot:
    user_type: Optional[UserType] = None
    identity: Optional[Identity] = None
    loading: bool = True

    @property
    def is_authenticated(self) -> bool:
        return self.user_type is not None


UnifiedListener = Callable[[UnifiedSnapshot], None]


class UnifiedAuth:
    """
    Discriminated view over both role contexts.

    The customer context takes precedence when both report an identity.
    """

    def __init__(self, customer: CustomerAuthContext, provider: ProviderAuthContext):
        self.customer = customer
        self.provider = provider
        self._listeners: List[UnifiedListener] = []
        self._snapshot = self._derive()
        self._unsubscribers = [
            customer.subscribe(self._on_child_change),
            provider.subscribe(self._on_child_change),
        ]

    def _active(self) -> Optional[RoleAuthContext]:
        if self.customer.is_authenticated:
            return self.customer
        if self.provider.is_authenticated:
            return self.provider
        return None

    def _derive(self) -> UnifiedSnapshot:
        active = self._active()
        return UnifiedSnapshot(
            user_type=active.user_type if active else None,
            identity=active.identity if active else None,
            loading=self.customer.loading or self.provider.loading,
        )

    @property
    def user_type(self) -> Optional[UserType]:
        active = self._active()
        return active.user_type if active else None

    @property
    def identity(self) -> Optional[Identity]:
        active = self._active()
        return active.identity if active else None

    @property
    def loading(self) -> bool:
        return self.customer.loading or self.provider.loading

    @property
    def is_authenticated(self) -> bool:
        return self.customer.is_authenticated or self.provider.is_authenticated

    @property
    def snapshot(self) -> UnifiedSnapshot:
        return self._snapshot

    def subscribe(self, callback: UnifiedListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _on_child_change(self, _: AuthSnapshot) -> None:
        snapshot = self._derive()
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in unified auth listener: {e}", exc_info=True)

    async def sign_out(self) -> None:
        """Sign out of whichever context is authenticated."""
        active = self._active()
        if active is None:
            logger.debug("Sign-out requested with no authenticated context")
            return
        await active.sign_out()

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
