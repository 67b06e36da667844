"""
Tests for the session controller: account lifecycle, sending, pairing,
restore and bouquet expiry
"""

import asyncio
import random
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from flowers.errors import RemoteStoreError
from flowers.identity_store import IdentityStore
from flowers.local_cache import LocalCache
from flowers.models import Bouquet, FlowerColor, User

from conftest import START_TIME


def unused_code(*taken):
    return next(code for code in ("0001", "0002", "0003", "0004") if code not in taken)


@pytest.fixture
def make_device(make_session, tmp_path):
    """A second phone: its own cache and identity, same remote store"""
    def factory(name, seed):
        return make_session(
            cache=LocalCache.in_directory(tmp_path / name / "cache"),
            identity=IdentityStore.in_directory(tmp_path / name / "identity"),
            rng=random.Random(seed),
        )
    return factory


@pytest_asyncio.fixture
async def paired(session, make_device):
    """(alice, bob) both registered, paired by code, bob synced"""
    bob = make_device("bob", 99)
    await session.load()
    await bob.load()
    result = await session.pair_with_code(bob.current_user.code)
    assert result.paired
    await bob.sync()
    return session, bob


class TestLoad:
    @pytest.mark.asyncio
    async def test_first_launch_creates_and_registers_account(self, session, cache, identity, remote):
        assert await session.load()

        user = session.current_user
        assert identity.get_user_id() == user.id
        assert cache.load_current_user().id == user.id
        assert (await remote.get_user(user.id)).code == user.code
        assert await remote.get_user_by_code(user.code) is not None
        assert session.streak_count == 0
        assert session.partner is None

    @pytest.mark.asyncio
    async def test_relaunch_restores_cached_account(self, session, make_session):
        await session.load()

        relaunched = make_session()

        assert relaunched.load_local() is False
        assert relaunched.current_user.id == session.current_user.id
        assert relaunched.current_user.code == session.current_user.code

    @pytest.mark.asyncio
    async def test_reinstall_keeps_remote_account(self, session, make_session, cache, memory_store):
        await session.load()
        user_id = session.current_user.id
        await memory_store.update(f"users/{user_id}", {"streakCount": 5})
        cache.clear()

        reinstalled = make_session()
        await reinstalled.load()

        assert reinstalled.current_user.id == user_id
        assert reinstalled.streak_count == 5
        assert (await memory_store.get(f"users/{user_id}"))["streakCount"] == 5

    @pytest.mark.asyncio
    async def test_offline_first_launch_still_has_local_account(self, session, cache, memory_store):
        memory_store.offline = True

        assert await session.load() is False

        assert cache.load_current_user().id == session.current_user.id
        assert isinstance(session.last_remote_error, RemoteStoreError)

    @pytest.mark.asyncio
    async def test_expired_cached_bouquet_not_restored(self, session, cache, clock):
        cache.save_received_bouquet(Bouquet.create(
            flowers=[], flower_slots=[], from_user_id="BOB", to_user_id="ALICE", now=clock(),
        ))
        clock.advance(hours=25)

        session.load_local()

        assert session.received_bouquet is None


class TestSync:
    @pytest.mark.asyncio
    async def test_remote_copy_wins(self, session, cache, memory_store):
        await session.load()
        await memory_store.update(f"users/{session.current_user.id}", {"name": "Renamed", "streakCount": 3})

        assert await session.sync()

        assert session.current_user.name == "Renamed"
        assert session.streak_count == 3
        assert cache.load_current_user().name == "Renamed"

    @pytest.mark.asyncio
    async def test_unreachable_store_keeps_cached_state(self, session, memory_store):
        await session.load()
        before = session.current_user.model_dump()
        memory_store.offline = True

        assert await session.sync() is False
        assert session.current_user.model_dump() == before

    @pytest.mark.asyncio
    async def test_remote_partner_change_drops_old_partner(self, paired, memory_store):
        alice, bob = paired
        await memory_store.update(f"users/{alice.current_user.id}", {"partnerId": "CAROL"})

        assert await alice.sync()

        assert alice.current_user.partner_id == "CAROL"
        assert alice.partner is None
        assert await alice.send_bouquet() is None
        assert alice.cache.load_sent_bouquet(bob.current_user.id) is None

    @pytest.mark.asyncio
    async def test_remote_partner_change_uses_cached_snapshot(self, paired, memory_store):
        alice, bob = paired
        alice.cache.save_partner(User(id="CAROL", code="3333", name="Carol"))
        await memory_store.update(f"users/{alice.current_user.id}", {"partnerId": "CAROL"})

        await alice.sync()
        receipt = await alice.send_bouquet()

        assert alice.partner.name == "Carol"
        assert receipt.bouquet.to_user_id == "CAROL"

    @pytest.mark.asyncio
    async def test_remote_unpairing_clears_partner(self, paired, memory_store):
        alice, _ = paired
        await memory_store.update(f"users/{alice.current_user.id}", {"partnerId": ""})

        assert await alice.sync()

        assert alice.current_user.partner_id is None
        assert alice.partner is None

    @pytest.mark.asyncio
    async def test_sync_picks_up_partner_and_inbound_bouquet(self, paired):
        alice, bob = paired
        alice.fill_next_empty_slot(FlowerColor.RED)
        receipt = await alice.send_bouquet()

        assert await bob.sync()

        assert bob.partner.id == alice.current_user.id
        assert bob.received_bouquet.id == receipt.bouquet.id
        assert bob.cache.load_received_bouquet().id == receipt.bouquet.id


class TestSendBouquet:
    @pytest.mark.asyncio
    async def test_send_without_partner_does_nothing(self, session):
        await session.load()
        session.fill_next_empty_slot(FlowerColor.YELLOW)

        assert await session.send_bouquet() is None

        assert session.filled_count() == 1
        assert session.current_bouquet is None
        assert session.streak_count == 0

    @pytest.mark.asyncio
    async def test_send_delivers_and_resets_arrangement(self, paired, remote, clock):
        alice, bob = paired
        for color in (FlowerColor.YELLOW, FlowerColor.PURPLE, FlowerColor.RED):
            alice.fill_next_empty_slot(color)

        receipt = await alice.send_bouquet()

        assert receipt.delivery and receipt.profile
        assert receipt.streak_incremented
        bouquet = receipt.bouquet
        assert [slot.color for slot in bouquet.flower_slots] == [
            FlowerColor.YELLOW, FlowerColor.PURPLE, FlowerColor.RED,
        ]
        assert bouquet.from_user_id == alice.current_user.id
        assert bouquet.to_user_id == bob.current_user.id
        assert bouquet.created_at == clock()
        assert alice.filled_count() == 0
        assert alice.current_bouquet is bouquet
        assert alice.cache.load_sent_bouquet(bob.current_user.id).id == bouquet.id
        assert [b.id for b in await remote.get_received_bouquets(bob.current_user.id)] == [bouquet.id]

        stored = await remote.get_user(alice.current_user.id)
        assert stored.streak_count == 1
        assert stored.last_bouquet_sent == START_TIME

    @pytest.mark.asyncio
    async def test_streak_counts_once_per_day(self, paired, clock):
        alice, _ = paired

        first = await alice.send_bouquet()
        clock.advance(hours=1)
        second = await alice.send_bouquet()

        assert first.streak_incremented
        assert not second.streak_incremented
        assert alice.streak_count == 1
        assert alice.current_user.last_bouquet_sent == clock()

    @pytest.mark.asyncio
    async def test_streak_increments_on_a_later_day(self, paired, clock):
        alice, _ = paired

        await alice.send_bouquet()
        clock.advance(hours=25)
        receipt = await alice.send_bouquet()

        assert receipt.streak_incremented
        assert alice.streak_count == 2

    @pytest.mark.asyncio
    async def test_empty_arrangement_can_be_sent(self, paired):
        alice, _ = paired
        receipt = await alice.send_bouquet()
        assert receipt.bouquet.flower_slots == []

    @pytest.mark.asyncio
    async def test_offline_send_completes_locally(self, paired, memory_store):
        alice, bob = paired
        alice.fill_next_empty_slot(FlowerColor.PINK)
        memory_store.offline = True

        receipt = await alice.send_bouquet()

        assert not receipt.delivery
        assert not receipt.profile
        assert alice.filled_count() == 0
        assert alice.streak_count == 1
        assert alice.current_bouquet is receipt.bouquet
        assert alice.cache.load_current_user().streak_count == 1
        assert isinstance(alice.last_remote_error, RemoteStoreError)

    @pytest.mark.asyncio
    async def test_failed_delivery_still_saves_profile(self, paired):
        alice, _ = paired
        alice.remote.send_bouquet = AsyncMock(side_effect=RemoteStoreError("send bouquet"))

        receipt = await alice.send_bouquet()

        assert receipt.profile
        assert not receipt.delivery
        assert isinstance(receipt.delivery.error, RemoteStoreError)
        alice.remote.send_bouquet.assert_awaited_once_with(receipt.bouquet)


class TestPairing:
    @pytest.mark.asyncio
    async def test_pair_with_code_links_both_accounts(self, paired, remote):
        alice, bob = paired
        alice_id, bob_id = alice.current_user.id, bob.current_user.id

        assert alice.partner.id == bob_id
        assert alice.current_user.partner_id == bob_id
        assert (await remote.get_user(alice_id)).partner_id == bob_id
        assert (await remote.get_user(bob_id)).partner_id == alice_id
        assert alice.cache.load_partner(bob_id) is not None
        assert bob.current_user.partner_id == alice_id

    @pytest.mark.asyncio
    async def test_own_code_is_refused(self, session):
        await session.load()

        result = await session.pair_with_code(session.current_user.code)

        assert not result
        assert session.partner is None
        assert session.current_user.partner_id is None

    @pytest.mark.asyncio
    async def test_unknown_code_changes_nothing(self, session):
        await session.load()

        result = await session.pair_with_code(unused_code(session.current_user.code))

        assert not result.paired
        assert session.partner is None
        assert session.current_user.partner_id is None

    @pytest.mark.asyncio
    async def test_lookup_failure_changes_nothing(self, session, memory_store):
        await session.load()
        memory_store.offline = True

        assert not await session.pair_with_code("1234")
        assert session.current_user.partner_id is None

    @pytest.mark.asyncio
    async def test_code_is_trimmed(self, session, make_device):
        bob = make_device("bob", 99)
        await session.load()
        await bob.load()

        result = await session.pair_with_code(f"  {bob.current_user.code} ")

        assert result.paired

    @pytest.mark.asyncio
    async def test_pair_with_known_id(self, session, make_device, remote):
        bob = make_device("bob", 99)
        await session.load()
        await bob.load()

        result = await session.pair_with_partner(bob.current_user.id, "Bob")

        assert result.paired and result.remote
        assert (await remote.get_user(bob.current_user.id)).partner_id == session.current_user.id

    @pytest.mark.asyncio
    async def test_pair_with_known_id_keeps_partner_record(self, session, make_device):
        bob = make_device("bob", 99)
        await session.load()
        await bob.load()
        bob_id, bob_code = bob.current_user.id, bob.current_user.code

        result = await session.pair_with_partner(bob_id, "Bob")

        assert result.partner.code == bob_code
        assert session.partner.code == bob_code
        assert session.partner.partner_id == session.current_user.id
        assert session.cache.load_partner(bob_id).code == bob_code

    @pytest.mark.asyncio
    async def test_pair_with_unregistered_id_is_local_only(self, session):
        await session.load()

        result = await session.pair_with_partner("GHOST", "Ghost")

        assert result.paired
        assert not result.remote
        assert session.current_user.partner_id == "GHOST"


class TestRestoreAccount:
    @pytest.mark.asyncio
    async def test_restore_replaces_identity(self, session, remote, identity):
        await remote.save_user(User(id="BOB", code="2222", name="Bob", partner_id="OLD"))
        await session.load()
        code = unused_code(session.current_user.code, "2222")
        original = User(id="OLD", code=code, name="Old Phone", partner_id="BOB",
                        streak_count=7, last_bouquet_sent=START_TIME)
        await remote.save_user(original)

        assert await session.restore_account(code)

        assert session.current_user.model_dump() == original.model_dump()
        assert identity.get_user_id() == "OLD"
        assert session.cache.load_current_user().id == "OLD"
        assert session.partner.id == "BOB"
        assert session.current_bouquet is None

    @pytest.mark.asyncio
    async def test_unknown_code_keeps_current_account(self, session):
        await session.load()
        before = session.current_user.id

        assert not await session.restore_account(unused_code(session.current_user.code))
        assert session.current_user.id == before


class TestExpiry:
    @pytest.mark.asyncio
    async def test_bouquets_expire_strictly_after_24_hours(self, paired, clock):
        alice, bob = paired
        await alice.send_bouquet()
        await bob.sync()

        clock.advance(hours=24)
        assert not bob.check_bouquet_expiration()
        assert bob.received_bouquet is not None

        clock.advance(seconds=1)
        assert bob.check_bouquet_expiration()
        assert bob.received_bouquet is None
        assert bob.cache.load_received_bouquet() is None

        assert alice.check_bouquet_expiration()
        assert alice.current_bouquet is None

    @pytest.mark.asyncio
    async def test_timer_drops_expired_bouquet(self, paired, clock):
        alice, bob = paired
        await alice.send_bouquet()
        await bob.sync()

        bob.start_expiry_timer()
        task = bob._expiry_task
        bob.start_expiry_timer()
        assert bob._expiry_task is task
        assert bob.expiry_timer_running

        clock.advance(hours=25)
        await asyncio.sleep(0.1)

        assert bob.received_bouquet is None
        await bob.close()
        assert not bob.expiry_timer_running

    @pytest.mark.asyncio
    async def test_stop_without_start(self, session):
        await session.stop_expiry_timer()
        assert not session.expiry_timer_running


class TestViewedAndMisc:
    @pytest.mark.asyncio
    async def test_mark_received_bouquet_viewed(self, paired, memory_store):
        alice, bob = paired
        receipt = await alice.send_bouquet()
        await bob.sync()

        result = await bob.mark_received_bouquet_viewed()

        assert result
        assert bob.received_bouquet.is_viewed
        inbox = await memory_store.get(f"users/{bob.current_user.id}/receivedBouquets/{receipt.bouquet.id}")
        assert inbox["isViewed"] is True
        assert await bob.mark_received_bouquet_viewed() is None

    @pytest.mark.asyncio
    async def test_mark_viewed_without_bouquet(self, session):
        await session.load()
        assert await session.mark_received_bouquet_viewed() is None

    @pytest.mark.asyncio
    async def test_invite_link(self, session, test_settings):
        await session.load()
        assert session.generate_invite_link() == (
            f"{test_settings.INVITE_SCHEME}://invite/{session.current_user.id}"
        )

    @pytest.mark.asyncio
    async def test_reset_starts_a_fresh_account(self, paired, identity):
        alice, _ = paired
        old_id = alice.current_user.id
        alice.fill_next_empty_slot(FlowerColor.RED)

        await alice.reset()

        assert alice.current_user.id != old_id
        assert identity.get_user_id() == alice.current_user.id
        assert alice.partner is None
        assert alice.current_user.partner_id is None
        assert alice.filled_count() == 0

    @pytest.mark.asyncio
    async def test_status(self, paired):
        alice, _ = paired
        await alice.send_bouquet()

        status = alice.status()

        assert status["partner"] == "You"
        assert status["streak"] == 1
        assert status["sent_bouquet_remaining"].total_seconds() == 24 * 3600
        assert status["received_bouquet_remaining"] is None
