"""
Provider Auth Context

Providers are created by registration only. Their identity carries a role in
the owner > dispatcher > provider hierarchy plus denormalized business data.
"""

import dataclasses
from typing import Any, Dict, Optional

from roam_auth.auth.context import RoleAuthContext
from roam_auth.auth.gateway import SignUpData, SignUpResult
from roam_auth.auth.identity import Identity, ProviderIdentity, ProviderRole, UserType


class ProviderAuthContext(RoleAuthContext):
    """Auth context resolving ``ProviderIdentity`` values."""

    user_type = UserType.PROVIDER
    avatar_bucket = "provider-avatars"
    avatar_prefix = "provider_avatars"

    @property
    def provider(self) -> Optional[ProviderIdentity]:
        return self.identity

    def _has_role(self, role: ProviderRole) -> bool:
        identity = self.identity
        return identity is not None and identity.has_role(role)

    @property
    def is_owner(self) -> bool:
        return self._has_role(ProviderRole.OWNER)

    @property
    def is_dispatcher(self) -> bool:
        return self._has_role(ProviderRole.DISPATCHER)

    @property
    def is_provider(self) -> bool:
        return self._has_role(ProviderRole.PROVIDER)

    def _new_profile_values(self, result: SignUpResult, data: SignUpData) -> Dict[str, Any]:
        values = super()._new_profile_values(result, data)
        values.update(
            provider_role=ProviderRole.OWNER.value,
            verification_status="pending",
            is_active=False,
        )
        return values

    def _identity_from_update(self, previous: Identity, row: Dict[str, Any]) -> Identity:
        updated = super()._identity_from_update(previous, row)
        # Update responses carry only the providers row
        if "business" not in row and previous.business_id == updated.business_id:
            updated = dataclasses.replace(
                updated,
                business=previous.business,
                business_locations=previous.business_locations,
            )
        return updated
