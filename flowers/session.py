"""
Session controller - the single owner of the running app's state.

Holds the current user, the partner snapshot, the slot arrangement and the
inbound/outbound bouquets. All mutations happen on one asyncio loop: the
synchronous part of every public method runs before its first ``await``,
so local state is updated immediately and remote writes only report back.
"""

import asyncio
import logging
import random
import uuid
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .arrangement import Arrangement, FreeformDesign
from .config import Settings, settings as default_settings
from .errors import DocumentDecodeError, RemoteStoreError
from .identity_store import IdentityStore
from .local_cache import LocalCache
from .models import (
    Bouquet,
    Flower,
    FlowerColor,
    FlowerSlot,
    FlowerType,
    PairingResult,
    RemoteWriteResult,
    SendReceipt,
    User,
)
from .remote import RemoteSyncClient
from .timeutils import Clock, same_local_day, utcnow

logger = logging.getLogger(__name__)

DEFAULT_USER_NAME = "You"

RemoteCall = Callable[[], Awaitable[Any]]


def generate_code(rng: Optional[random.Random] = None) -> str:
    """Random 4-digit code, 0000-9999. Not checked for uniqueness."""
    return f"{(rng or random).randrange(10000):04d}"


class SessionController:
    """Orchestrates arrangement editing, sending, pairing and sync"""

    def __init__(self, remote: RemoteSyncClient, cache: LocalCache, identity: IdentityStore,
                 config: Optional[Settings] = None, clock: Clock = utcnow,
                 rng: Optional[random.Random] = None):
        self.remote = remote
        self.cache = cache
        self.identity = identity
        self.config = config or default_settings
        self.clock = clock
        self.rng = rng or random.Random()

        self.arrangement = Arrangement(self.rng)
        self.designer = FreeformDesign(self.rng)

        # Placeholder identity until load() restores or creates the real one
        self.current_user: User = self._new_user()
        self.partner: Optional[User] = None
        self.received_bouquet: Optional[Bouquet] = None
        self.current_bouquet: Optional[Bouquet] = None
        self.last_remote_error: Optional[BaseException] = None

        self._expiry_task: Optional[asyncio.Task] = None

    def _new_user(self, user_id: Optional[str] = None) -> User:
        return User(
            id=user_id or str(uuid.uuid4()).upper(),
            code=generate_code(self.rng),
            name=DEFAULT_USER_NAME,
        )

    @property
    def streak_count(self) -> int:
        return self.current_user.streak_count

    # Remote plumbing

    async def _run_remote(self, operation: str, *calls: RemoteCall) -> RemoteWriteResult:
        """
        Await each call in order. A failure is logged and reported but does not
        stop the remaining calls or touch local state.
        """
        first_error: Optional[BaseException] = None
        for call in calls:
            try:
                await call()
            except (RemoteStoreError, DocumentDecodeError) as e:
                logger.error(f"{operation} failed, keeping local state: {e}")
                first_error = first_error or e

        if first_error is not None:
            self.last_remote_error = first_error
            return RemoteWriteResult(operation, False, first_error)
        return RemoteWriteResult(operation, True)

    # Loading and sync

    def load_local(self) -> bool:
        """
        Restore state from the local cache, creating a fresh account when
        nothing is cached. Returns True when a new account was created.
        """
        created = False
        cached_user = self.cache.load_current_user()
        stored_id = self.identity.get_user_id()

        if cached_user is not None:
            self.current_user = cached_user
        else:
            self.current_user = self._new_user(stored_id)
            self.cache.save_current_user(self.current_user)
            created = True
            logger.info(f"Created account {self.current_user.id} with code {self.current_user.code}")

        if stored_id != self.current_user.id:
            self.identity.save_user_id(self.current_user.id)

        self.partner = None
        if self.current_user.partner_id:
            self.partner = self.cache.load_partner(self.current_user.partner_id)

        now = self.clock()
        received = self.cache.load_received_bouquet()
        self.received_bouquet = received if received and not received.is_expired(now) else None

        self.current_bouquet = None
        if self.current_user.partner_id:
            sent = self.cache.load_sent_bouquet(self.current_user.partner_id)
            if sent and not sent.is_expired(now):
                self.current_bouquet = sent

        return created

    async def load(self) -> bool:
        """Local restore, registration of a new account, then a remote refresh"""
        if self.load_local():
            user = self.current_user
            try:
                # A reinstall keeps the device id; never clobber that account
                registered = await self.remote.get_user(user.id) is not None
            except RemoteStoreError as e:
                logger.warning(f"Could not check for existing account, registering later: {e}")
                registered = True
            if not registered:
                await self._run_remote("register user", lambda: self.remote.save_user(user))
        return await self.sync()

    async def sync(self) -> bool:
        """
        Refresh user, partner and inbound bouquet from the remote store.

        The remote copy wins. Returns False when the store could not be
        reached; cached state is then left as it was.
        """
        user_id = self.current_user.id
        try:
            remote_user = await self.remote.get_user(user_id)
            if remote_user is not None:
                self.current_user = remote_user
                self.cache.save_current_user(remote_user)

            partner_id = self.current_user.partner_id
            if partner_id:
                remote_partner = await self.remote.get_user(partner_id)
                if remote_partner is not None:
                    self.partner = remote_partner
                    self.cache.save_partner(remote_partner)

            active = await self.remote.get_active_bouquet(self.current_user.id)
            if active is not None:
                self.received_bouquet = active
                self.cache.save_received_bouquet(active)
        except RemoteStoreError as e:
            logger.error(f"Sync error: {e}")
            self.last_remote_error = e
            return False
        finally:
            self._drop_stale_partner()

        logger.info(f"Synced user {self.current_user.id} (partner: {self.current_user.partner_id or 'none'})")
        return True

    def _drop_stale_partner(self):
        """Keep the partner snapshot in step with ``current_user.partner_id``"""
        partner_id = self.current_user.partner_id
        if self.partner is not None and self.partner.id != partner_id:
            logger.info(f"Partner changed to {partner_id or 'none'}, dropping snapshot of {self.partner.id}")
            self.partner = self.cache.load_partner(partner_id) if partner_id else None

    async def save_data(self) -> RemoteWriteResult:
        """Write user and partner to the cache, then upsert the user remotely"""
        user = self.current_user
        self.cache.save_current_user(user)
        if self.partner is not None:
            self.cache.save_partner(self.partner)
        return await self._run_remote("save user", lambda: self.remote.save_user(user))

    # Arrangement

    @property
    def slots(self) -> List[FlowerSlot]:
        return self.arrangement.slots

    def fill_next_empty_slot(self, color: FlowerColor) -> Optional[FlowerSlot]:
        return self.arrangement.fill_next_empty_slot(color)

    def clear_slot(self, slot_id: int):
        self.arrangement.clear_slot(slot_id)

    def clear_all(self):
        self.arrangement.clear_all()

    def randomize(self):
        self.arrangement.randomize()

    def filled_count(self) -> int:
        return self.arrangement.filled_count()

    def can_add_more(self) -> bool:
        return self.arrangement.can_add_more()

    # Free-form designer

    def add_flower(self, flower_type: FlowerType, color: FlowerColor) -> Flower:
        return self.designer.add_flower(flower_type, color)

    def update_flower_position(self, flower_id: str, x: float, y: float) -> bool:
        return self.designer.update_flower_position(flower_id, x, y)

    def remove_flower(self, flower_id: str):
        self.designer.remove_flower(flower_id)

    # Sending

    def _record_send(self, now) -> bool:
        """At most one streak increment per local calendar day. Returns True if incremented."""
        user = self.current_user
        last_sent = user.last_bouquet_sent
        incremented = not (last_sent and same_local_day(last_sent, now))
        if incremented:
            user.streak_count += 1
        user.last_bouquet_sent = now
        return incremented

    async def send_bouquet(self) -> Optional[SendReceipt]:
        """
        Turn the current arrangement into a bouquet for the partner.

        Returns None without doing anything when there is no partner.
        """
        partner = self.partner
        if partner is None:
            logger.info("Send ignored: no partner")
            return None

        now = self.clock()
        bouquet = Bouquet.create(
            flowers=self.arrangement.to_flowers(),
            flower_slots=self.arrangement.occupied_slots(),
            from_user_id=self.current_user.id,
            to_user_id=partner.id,
            now=now,
        )

        incremented = self._record_send(now)
        self.current_bouquet = bouquet
        self.arrangement.clear_all()
        self.cache.save_sent_bouquet(bouquet)

        profile = await self.save_data()
        delivery = await self._run_remote("send bouquet", lambda: self.remote.send_bouquet(bouquet))
        if delivery:
            logger.info(f"Bouquet {bouquet.id} sent with {len(bouquet.flower_slots)} flowers")

        return SendReceipt(bouquet=bouquet, streak_incremented=incremented, delivery=delivery, profile=profile)

    # Pairing

    async def pair_with_partner(self, partner_id: str, partner_name: str) -> PairingResult:
        """Pair with a known user id. No verification beyond having the id."""
        partner = User(id=partner_id, name=partner_name, partner_id=self.current_user.id)
        self.partner = partner
        self.current_user.partner_id = partner_id

        user = self.current_user
        self.cache.save_current_user(user)
        self.cache.save_partner(partner)
        remote = await self._run_remote(
            "pair users",
            lambda: self.remote.save_user(user),
            lambda: self.remote.pair_users(user.id, partner_id),
        )

        # Replace the placeholder snapshot with the partner's real record
        if remote:
            try:
                fetched = await self.remote.get_user(partner_id)
            except RemoteStoreError as e:
                logger.warning(f"Could not refresh partner {partner_id}: {e}")
                fetched = None
            if fetched is not None and self.current_user.partner_id == partner_id:
                partner = fetched
                self.partner = fetched
                self.cache.save_partner(fetched)

        return PairingResult(paired=True, partner=partner, remote=remote)

    async def pair_with_code(self, code: str) -> PairingResult:
        """
        Pair with whoever owns ``code``.

        Fails without changing anything when the code is unknown, the
        store is unreachable, or the code is the caller's own.
        """
        try:
            found = await self.remote.get_user_by_code(code.strip())
        except RemoteStoreError as e:
            logger.error(f"Code lookup failed: {e}")
            self.last_remote_error = e
            return PairingResult(paired=False)

        if found is None:
            logger.info(f"No user found for code {code}")
            return PairingResult(paired=False)

        user = self.current_user
        if found.id == user.id:
            logger.warning("Refusing to pair with own code")
            return PairingResult(paired=False)

        found.partner_id = user.id
        self.partner = found
        user.partner_id = found.id
        self.cache.save_current_user(user)
        self.cache.save_partner(found)

        remote = await self._run_remote(
            "pair users",
            lambda: self.remote.save_user(user),
            lambda: self.remote.pair_users(user.id, found.id),
        )
        logger.info(f"Paired with {found.id} via code")
        return PairingResult(paired=True, partner=found, remote=remote)

    async def restore_account(self, code: str) -> bool:
        """
        Replace the local identity with the account that owns ``code``
        (recovering on a new device), then resync everything else.
        """
        try:
            found = await self.remote.get_user_by_code(code.strip())
        except RemoteStoreError as e:
            logger.error(f"Restore lookup failed: {e}")
            self.last_remote_error = e
            return False

        if found is None:
            logger.info(f"No account found for code {code}")
            return False

        self.current_user = found
        self.identity.save_user_id(found.id)
        self.cache.save_current_user(found)

        # Anything tied to the previous identity is stale
        self.partner = self.cache.load_partner(found.partner_id) if found.partner_id else None
        self.received_bouquet = None
        self.current_bouquet = None
        self.cache.clear_received_bouquet()

        logger.info(f"Restored account {found.id}")
        await self.sync()
        return True

    def generate_invite_link(self) -> str:
        return f"{self.config.INVITE_SCHEME}://invite/{self.current_user.id}"

    # Bouquet lifecycle

    def check_bouquet_expiration(self) -> bool:
        """Drop expired bouquets from memory and cache. Returns True if anything was dropped."""
        now = self.clock()
        dropped = False

        if self.received_bouquet is not None and self.received_bouquet.is_expired(now):
            logger.info(f"Received bouquet {self.received_bouquet.id} expired")
            self.received_bouquet = None
            self.cache.clear_received_bouquet()
            dropped = True

        if self.current_bouquet is not None and self.current_bouquet.is_expired(now):
            self.current_bouquet = None
            dropped = True

        return dropped

    async def mark_received_bouquet_viewed(self) -> Optional[RemoteWriteResult]:
        bouquet = self.received_bouquet
        if bouquet is None or bouquet.is_viewed:
            return None

        bouquet.is_viewed = True
        self.cache.save_received_bouquet(bouquet)
        return await self._run_remote("mark viewed", lambda: self.remote.mark_bouquet_viewed(bouquet))

    # Expiry timer

    @property
    def expiry_timer_running(self) -> bool:
        return self._expiry_task is not None and not self._expiry_task.done()

    def start_expiry_timer(self):
        """Start the repeating expiry check on the running loop (no-op if already running)"""
        if self.expiry_timer_running:
            return
        self._expiry_task = asyncio.get_running_loop().create_task(self._expiry_loop())

    async def _expiry_loop(self):
        interval = self.config.EXPIRY_CHECK_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            self.check_bouquet_expiration()

    async def stop_expiry_timer(self):
        task, self._expiry_task = self._expiry_task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    # Lifecycle

    async def reset(self) -> bool:
        """Forget the device identity and every cached record, then start a fresh account"""
        self.identity.delete_user_id()
        self.cache.clear()
        self.arrangement.clear_all()
        self.designer.clear()
        self.partner = None
        self.received_bouquet = None
        self.current_bouquet = None
        logger.info("Local account data cleared")
        return await self.load()

    async def close(self):
        await self.stop_expiry_timer()

    def status(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            "user_id": self.current_user.id,
            "code": self.current_user.code,
            "name": self.current_user.name,
            "partner": self.partner.name if self.partner else None,
            "streak": self.streak_count,
            "received_bouquet_remaining": (
                self.received_bouquet.time_remaining(now) if self.received_bouquet else None
            ),
            "sent_bouquet_remaining": (
                self.current_bouquet.time_remaining(now) if self.current_bouquet else None
            ),
            "slots_filled": self.filled_count(),
        }
