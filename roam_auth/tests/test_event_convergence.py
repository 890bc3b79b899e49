import asyncio

import pytest

from roam_auth.auth.exceptions import NetworkError
from roam_auth.auth.gateway import AuthEventKind
from roam_auth.auth.identity import CustomerIdentity, UserType
from roam_auth.tests.conftest import customer_row, make_session, settle


@pytest.mark.asyncio
class TestEventConvergence:
    """Gateway notifications arriving after mount."""

    async def test_signed_in_event_commits_identity(self, customer, gateway, store):
        gateway.add_customer("u1")
        await customer.start()

        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1"))

        assert customer.identity.user_id == "u1"
        assert (await store.load(UserType.CUSTOMER)) is not None

    async def test_overlapping_signed_in_events_fetch_once(self, customer, gateway):
        """Two signed_in events for one user before the fetch returns produce one fetch and one commit."""
        gateway.add_customer("u1")
        await customer.start()
        gate = gateway.gates[UserType.CUSTOMER] = asyncio.Event()
        commits = []
        customer.subscribe(lambda s: commits.append(s.identity) if s.identity is not None else None)

        first = asyncio.ensure_future(gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1")))
        await settle()
        second = asyncio.ensure_future(gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1")))
        await settle()

        assert customer.guard.is_in_flight("u1")
        gate.set()
        await asyncio.gather(first, second)

        assert gateway.fetches(UserType.CUSTOMER) == ["u1"]
        assert len({id(identity) for identity in commits}) == 1
        assert customer.identity.user_id == "u1"
        assert customer.loading is False

    async def test_signed_in_for_current_user_is_ignored(self, customer, gateway):
        gateway.add_customer("u1")
        gateway.session = make_session("u1")
        await customer.start()
        assert gateway.fetches(UserType.CUSTOMER) == ["u1"]

        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1"))
        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1", token="newer"))

        assert gateway.fetches(UserType.CUSTOMER) == ["u1"]

    async def test_signed_out_during_fetch_wins(self, customer, gateway, store, api_client):
        """A fetch that resolves after signed_out must not resurrect the identity."""
        gateway.add_customer("u1")
        await customer.start()
        gate = gateway.gates[UserType.CUSTOMER] = asyncio.Event()

        pending = asyncio.ensure_future(gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1")))
        await settle()
        assert customer.loading is True

        await gateway.emit(AuthEventKind.SIGNED_OUT)
        assert customer.identity is None

        gate.set()
        await pending

        assert customer.identity is None
        assert customer.loading is False
        assert await store.load(UserType.CUSTOMER) is None
        assert api_client.auth_token is None
        assert customer.guard.in_flight == frozenset()

    async def test_signed_out_clears_state_synchronously(self, customer, gateway, api_client):
        gateway.add_customer("u1")
        gateway.session = make_session("u1")
        await customer.start()

        published = []
        customer.subscribe(published.append)
        await gateway.emit(AuthEventKind.SIGNED_OUT)

        assert published[0].identity is None
        assert api_client.auth_token is None
        assert customer.guard.last_processed is None

    async def test_user_switch_discards_stale_reconciliation(self, customer, gateway, store):
        """Sign-out of A then sign-in of B while A's fetch is in flight ends with B."""
        gateway.add_customer("a")
        gateway.add_customer("b")
        await customer.start()
        gate_a = asyncio.Event()

        original = gateway.get_profile_by_user_id

        async def fetch(user_id, user_type):
            if user_id == "a":
                await gate_a.wait()
            return await original(user_id, user_type)

        gateway.get_profile_by_user_id = fetch

        stale = asyncio.ensure_future(gateway.emit(AuthEventKind.SIGNED_IN, make_session("a")))
        await settle()
        await gateway.emit(AuthEventKind.SIGNED_OUT)
        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("b"))
        assert customer.identity.user_id == "b"

        gate_a.set()
        await stale

        assert customer.identity.user_id == "b"
        cached = await store.load(UserType.CUSTOMER)
        assert cached[0].user_id == "b"
        assert cached[1] == "token-b"
        assert customer.guard.last_processed == "b"

    async def test_stale_empty_session_lookup_keeps_newer_sign_in(self, customer, gateway, store, api_client):
        """A mount-time lookup that saw no session must not undo a sign-in that landed meanwhile."""
        gateway.add_customer("u1")
        lookup = asyncio.Event()
        original = gateway.get_session

        async def get_session():
            session = await original()
            await lookup.wait()
            return session

        gateway.get_session = get_session
        mount = asyncio.ensure_future(customer.start())
        await settle()

        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1"))
        assert customer.identity.user_id == "u1"

        lookup.set()
        await mount

        assert customer.identity.user_id == "u1"
        assert customer.loading is False
        assert (await store.load(UserType.CUSTOMER))[1] == "token-u1"
        assert api_client.auth_token == "token-u1"

    async def test_failed_session_lookup_keeps_newer_sign_in(self, customer, gateway, store, api_client):
        gateway.add_customer("u1")
        lookup = asyncio.Event()

        async def get_session():
            await lookup.wait()
            raise NetworkError("down")

        gateway.get_session = get_session
        mount = asyncio.ensure_future(customer.start())
        await settle()

        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1"))
        lookup.set()
        await mount

        assert customer.identity.user_id == "u1"
        assert await store.load(UserType.CUSTOMER) is not None
        assert api_client.auth_token == "token-u1"

    async def test_mismatched_cache_discard_keeps_newer_sign_in(self, customer, gateway, store):
        """Cached identity for another user is discarded without touching a sign-in made during validation."""
        await store.save(UserType.CUSTOMER, CustomerIdentity.from_row(customer_row("old")), "old-token")
        gateway.add_customer("u1")
        lookup = asyncio.Event()

        async def get_session():
            await lookup.wait()
            return None

        gateway.get_session = get_session
        mount = asyncio.ensure_future(customer.start())
        await settle()

        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1"))
        lookup.set()
        await mount

        assert customer.identity.user_id == "u1"
        assert (await store.load(UserType.CUSTOMER))[0].user_id == "u1"

    async def test_signed_in_for_new_user_replaces_identity(self, customer, gateway):
        gateway.add_customer("a", first_name="Alice")
        gateway.add_customer("b", first_name="Bob")
        gateway.session = make_session("a")
        await customer.start()

        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("b"))

        assert customer.identity == CustomerIdentity.from_row(customer_row("b", first_name="Bob"))

    async def test_token_refresh_with_identity_skips_fetch(self, customer, gateway, store, api_client):
        gateway.add_customer("u1")
        gateway.session = make_session("u1")
        await customer.start()

        await gateway.emit(AuthEventKind.TOKEN_REFRESHED, make_session("u1", token="fresh"))

        assert gateway.fetches(UserType.CUSTOMER) == ["u1"]
        assert api_client.auth_token == "fresh"
        assert (await store.load(UserType.CUSTOMER))[1] == "fresh"

    async def test_token_refresh_without_identity_reconciles(self, customer, gateway):
        gateway.add_customer("u1")
        await customer.start()

        await gateway.emit(AuthEventKind.TOKEN_REFRESHED, make_session("u1"))

        assert customer.identity.user_id == "u1"

    async def test_event_reconciliation_fails_closed(self, customer, gateway):
        gateway.add_customer("u1")
        gateway.session = make_session("u1")
        await customer.start()

        gateway.profile_error = NetworkError("down")
        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("u2"))

        assert customer.identity is None
        assert customer.loading is False
        assert customer.guard.last_processed is None

    async def test_failed_reconciliation_does_not_poison_user(self, customer, gateway):
        await customer.start()
        gateway.profile_error = NetworkError("down")
        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1"))
        assert customer.identity is None

        gateway.profile_error = None
        gateway.add_customer("u1")
        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1"))

        assert customer.identity.user_id == "u1"
        assert gateway.fetches(UserType.CUSTOMER) == ["u1", "u1"]

    async def test_close_unsubscribes(self, customer, gateway):
        gateway.add_customer("u1")
        await customer.start()
        await customer.close()

        await gateway.emit(AuthEventKind.SIGNED_IN, make_session("u1"))

        assert customer.identity is None
        assert gateway.events.listener_count == 0
