"""
Identity Models

This module defines the resolved identities published by the auth contexts:
customers and providers, the provider role hierarchy, and the denormalized
business data a provider dashboard reads.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from roam_auth.common.serialization import SerializableMixin


class UserType(enum.Enum):
    """Identity variants an auth context can resolve."""

    CUSTOMER = "customer"
    PROVIDER = "provider"


class ProviderRole(enum.Enum):
    """
    Provider roles, ordered by capability.

    An owner can do everything a dispatcher can, and a dispatcher everything a
    provider can.
    """

    OWNER = "owner"
    DISPATCHER = "dispatcher"
    PROVIDER = "provider"

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]

    def includes(self, other: "ProviderRole") -> bool:
        """Check whether this role carries every capability of ``other``."""
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Union[str, "ProviderRole", None]) -> "ProviderRole":
        """Parse a stored role; a missing role is the least capable one."""
        if isinstance(value, ProviderRole):
            return value
        if value is None or value == "":
            return cls.PROVIDER
        return cls(str(value).lower())


_ROLE_RANKS = {
    ProviderRole.PROVIDER: 1,
    ProviderRole.DISPATCHER: 2,
    ProviderRole.OWNER: 3,
}


@dataclass(frozen=True)
class BusinessSummary(SerializableMixin):
    """The business a provider belongs to."""

    id: str
    business_name: str = ""
    business_type: Optional[str] = None
    verification_status: Optional[str] = None
    is_active: bool = True
    logo_url: Optional[str] = None

    __serializable_fields__ = [
        "id", "business_name", "business_type", "verification_status", "is_active", "logo_url",
    ]
    __optional_fields__ = [
        "business_name", "business_type", "verification_status", "is_active", "logo_url",
    ]


@dataclass(frozen=True)
class BusinessLocation(SerializableMixin):
    """One physical location of a provider's business."""

    id: str
    location_name: str = ""
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    is_primary: bool = False
    is_active: bool = True

    __serializable_fields__ = [
        "id", "location_name", "address_line1", "city", "state", "postal_code", "is_primary", "is_active",
    ]
    __optional_fields__ = [
        "location_name", "address_line1", "city", "state", "postal_code", "is_primary", "is_active",
    ]


_COMMON_FIELDS = ["id", "user_id", "email", "first_name", "last_name", "phone", "image_url"]
_COMMON_OPTIONAL = ["first_name", "last_name", "phone", "image_url"]


@dataclass(frozen=True)
class Identity(SerializableMixin):
    """
    Base identity shared by both variants.

    Attributes:
        id: Application profile identifier
        user_id: Gateway-assigned user identifier (distinct from ``id``)
        email: Contact e-mail address
        first_name: Given name
        last_name: Family name
        phone: Phone number
        image_url: Public URL of the avatar
    """

    id: str
    user_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    image_url: Optional[str] = None

    user_type = None

    __serializable_fields__ = list(_COMMON_FIELDS)
    __optional_fields__ = list(_COMMON_OPTIONAL)

    @property
    def display_name(self) -> str:
        """Get the identity's display name."""
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        if self.first_name:
            return self.first_name
        if self.last_name:
            return self.last_name
        return self.email

    @classmethod
    def _common_from_row(cls, row: Mapping[str, Any]) -> Dict[str, Any]:
        if not row.get("user_id"):
            raise ValueError("Profile row has no user_id")
        return {
            "id": str(row["id"]),
            "user_id": str(row["user_id"]),
            "email": row.get("email") or "",
            "first_name": row.get("first_name") or "",
            "last_name": row.get("last_name") or "",
            "phone": row.get("phone") or None,
            "image_url": row.get("image_url") or None,
        }


@dataclass(frozen=True)
class CustomerIdentity(Identity):
    """A resolved customer profile."""

    user_type = UserType.CUSTOMER

    @property
    def customer_id(self) -> str:
        return self.id

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CustomerIdentity":
        """Build from a ``customer_profiles`` row."""
        return cls(**cls._common_from_row(row))


@dataclass(frozen=True)
class ProviderIdentity(Identity):
    """
    A resolved provider profile.

    Business data is denormalized for the dashboard; it is replaced together
    with the identity on refresh and never patched in place.
    """

    role: ProviderRole = ProviderRole.PROVIDER
    business_id: Optional[str] = None
    location_id: Optional[str] = None
    verification_status: Optional[str] = None
    is_active: bool = False
    business: Optional[BusinessSummary] = None
    business_locations: Tuple[BusinessLocation, ...] = field(default_factory=tuple)

    user_type = UserType.PROVIDER

    __serializable_fields__ = _COMMON_FIELDS + [
        "role", "business_id", "location_id", "verification_status", "is_active",
        "business", "business_locations",
    ]
    __optional_fields__ = _COMMON_OPTIONAL + [
        "role", "business_id", "location_id", "verification_status", "is_active",
        "business", "business_locations",
    ]

    def has_role(self, role: ProviderRole) -> bool:
        return self.role.includes(role)

    @classmethod
    def _load_field(cls, name: str, value: Any) -> Any:
        if name == "role":
            return ProviderRole.parse(value)
        if name == "business":
            return BusinessSummary.from_dict(value) if value else None
        if name == "business_locations":
            return tuple(BusinessLocation.from_dict(item) for item in (value or ()))
        return value

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ProviderIdentity":
        """Build from a ``providers`` row, optionally enriched with business data."""
        values = cls._common_from_row(row)
        business = row.get("business")
        values.update(
            role=ProviderRole.parse(row.get("provider_role") or row.get("role")),
            business_id=row.get("business_id"),
            location_id=row.get("location_id"),
            verification_status=row.get("verification_status"),
            is_active=bool(row.get("is_active", False)),
            business=BusinessSummary.from_dict(business) if business else None,
            business_locations=tuple(
                BusinessLocation.from_dict(location) for location in (row.get("business_locations") or ())
            ),
        )
        return cls(**values)


def identity_from_row(user_type: UserType, row: Mapping[str, Any]) -> Identity:
    """Build the identity variant for ``user_type`` from a profile row."""
    if user_type is UserType.PROVIDER:
        return ProviderIdentity.from_row(row)
    return CustomerIdentity.from_row(row)


def identity_from_dict(user_type: UserType, data: Mapping[str, Any]) -> Identity:
    """Rebuild an identity from its cached ``to_dict`` form."""
    if user_type is UserType.PROVIDER:
        return ProviderIdentity.from_dict(dict(data))
    return CustomerIdentity.from_dict(dict(data))
