import json
import unittest

from roam_auth.auth.identity import (
    CustomerIdentity,
    ProviderIdentity,
    ProviderRole,
    UserType,
    identity_from_dict,
    identity_from_row,
)
from roam_auth.common.serialization import serialize, to_json
from roam_auth.tests.conftest import customer_row, provider_row


class TestProviderRole(unittest.TestCase):

    def test_hierarchy(self):
        self.assertTrue(ProviderRole.OWNER.includes(ProviderRole.DISPATCHER))
        self.assertTrue(ProviderRole.DISPATCHER.includes(ProviderRole.PROVIDER))
        self.assertFalse(ProviderRole.PROVIDER.includes(ProviderRole.DISPATCHER))

    def test_parse(self):
        self.assertIs(ProviderRole.parse("Owner"), ProviderRole.OWNER)
        self.assertIs(ProviderRole.parse(None), ProviderRole.PROVIDER)
        self.assertIs(ProviderRole.parse(ProviderRole.DISPATCHER), ProviderRole.DISPATCHER)
        with self.assertRaises(ValueError):
            ProviderRole.parse("admin")


class TestIdentities(unittest.TestCase):

    def test_customer_from_row(self):
        identity = identity_from_row(UserType.CUSTOMER, customer_row("u1", phone=""))

        self.assertIsInstance(identity, CustomerIdentity)
        self.assertEqual(identity.customer_id, "cust-u1")
        self.assertIsNone(identity.phone)
        self.assertEqual(identity.display_name, "Casey Jones")
        self.assertIs(identity.user_type, UserType.CUSTOMER)

    def test_row_without_user_id(self):
        with self.assertRaises(ValueError):
            CustomerIdentity.from_row({"id": "c1", "email": "a@b.com"})

    def test_display_name_fallback(self):
        identity = CustomerIdentity.from_row(customer_row("u1", first_name="", last_name=""))
        self.assertEqual(identity.display_name, "u1@example.com")

    def test_provider_cache_form(self):
        row = provider_row(
            "p1",
            role="dispatcher",
            business={"id": "b1", "business_name": "Glow"},
            business_locations=[{"id": "l1", "is_primary": True}],
        )
        identity = ProviderIdentity.from_row(row)

        data = json.loads(identity.to_json())
        self.assertEqual(data["role"], "dispatcher")
        self.assertEqual(data["business"]["business_name"], "Glow")

        restored = identity_from_dict(UserType.PROVIDER, data)
        self.assertEqual(restored, identity)
        self.assertTrue(restored.has_role(ProviderRole.PROVIDER))
        self.assertFalse(restored.has_role(ProviderRole.OWNER))

    def test_legacy_role_column(self):
        identity = ProviderIdentity.from_row(provider_row("p1", provider_role=None, role="owner"))
        self.assertIs(identity.role, ProviderRole.OWNER)


class TestSerialization(unittest.TestCase):

    def test_serialize_values(self):
        self.assertEqual(serialize({"role": ProviderRole.OWNER, "ids": ("a", "b")}), {"role": "owner", "ids": ["a", "b"]})
        self.assertEqual(serialize({"a": None, "b": 1}, exclude_none=True), {"b": 1})

    def test_to_json(self):
        self.assertEqual(json.loads(to_json({"role": ProviderRole.PROVIDER})), {"role": "provider"})

    def test_from_dict_rejects_non_mapping(self):
        with self.assertRaises(ValueError):
            CustomerIdentity.from_dict(["not", "a", "dict"])
