"""
Customer Auth Context

Customers may arrive through federated sign-in without ever registering, so
an explicit sign-in provisions a customer profile when none exists yet.
"""

from typing import Any, Dict, Optional, Tuple

from roam_auth.auth.context import RoleAuthContext
from roam_auth.auth.gateway import Session
from roam_auth.auth.identity import CustomerIdentity, UserType


def names_from_session(session: Session) -> Tuple[str, str]:
    """
    Derive first and last name for a new customer profile.

    Uses OAuth metadata when present, then the e-mail local part split on
    dots, then a generic placeholder.
    """
    metadata = session.user_metadata or {}
    if metadata.get("first_name"):
        return metadata["first_name"], metadata.get("last_name") or ""

    full_name = metadata.get("full_name") or metadata.get("name")
    if full_name:
        parts = full_name.strip().split(" ", 1)
        return parts[0], parts[1] if len(parts) > 1 else ""

    local_part = (session.email or "").split("@")[0]
    parts = [part for part in local_part.split(".") if part]
    if parts:
        return parts[0].capitalize(), " ".join(part.capitalize() for part in parts[1:])
    return "Customer", ""


class CustomerAuthContext(RoleAuthContext):
    """Auth context resolving ``CustomerIdentity`` values."""

    user_type = UserType.CUSTOMER
    avatar_bucket = "customer-avatars"
    avatar_prefix = "customer_avatars"

    @property
    def customer(self) -> Optional[CustomerIdentity]:
        return self.identity

    async def _provision_profile(self, session: Session) -> Dict[str, Any]:
        first_name, last_name = names_from_session(session)
        self.log.with_context(user_id=session.user_id).info("Creating customer profile for new account")
        return await self.gateway.create_profile(
            self.user_type,
            {
                "user_id": session.user_id,
                "email": session.email,
                "first_name": first_name,
                "last_name": last_name,
                "image_url": session.user_metadata.get("avatar_url") or session.user_metadata.get("picture"),
            },
        )
