"""
Remote Sync Client
Translates users, codes and bouquets to and from documents in the remote
store. Stateless: every call works on the records it is handed.

Layout:
    users/{userId}                                 user profile
    codes/{code}                                   code -> userId lookup
    bouquets/{bouquetId}                           every bouquet ever sent
    users/{userId}/receivedBouquets/{bouquetId}    recipient inbox copy
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .document_store import DocumentStore, document_path
from .errors import DocumentDecodeError
from .models import CODE_PATTERN, Bouquet, User
from .timeutils import Clock, from_epoch_seconds, to_epoch_seconds, utcnow

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"
CODES_COLLECTION = "codes"
BOUQUETS_COLLECTION = "bouquets"
RECEIVED_BOUQUETS_COLLECTION = "receivedBouquets"
INBOX_ORDER_FIELD = "createdAt"


def user_to_document(user: User) -> Dict[str, Any]:
    # Absent values are written as "" and 0 so every field always exists
    return {
        "id": user.id,
        "code": user.code,
        "name": user.name,
        "partnerId": user.partner_id or "",
        "streakCount": user.streak_count,
        "lastBouquetSent": to_epoch_seconds(user.last_bouquet_sent),
    }


def user_from_document(data: Dict[str, Any], user_id: str) -> User:
    try:
        return User(
            id=data.get("id") or user_id,
            code=data.get("code") or "0000",
            name=data.get("name") or "User",
            partner_id=data.get("partnerId") or None,
            streak_count=data.get("streakCount") or 0,
            last_bouquet_sent=from_epoch_seconds(data.get("lastBouquetSent")),
        )
    except ValidationError as e:
        raise DocumentDecodeError(f"user document '{user_id}'", e) from e


def bouquet_from_document(data: Dict[str, Any]) -> Bouquet:
    try:
        return Bouquet.model_validate(data)
    except ValidationError as e:
        raise DocumentDecodeError(f"bouquet document '{data.get('id', '?')}'", e) from e


class RemoteSyncClient:
    """CRUD over the remote document store. Transport errors propagate as RemoteStoreError."""

    def __init__(self, store: DocumentStore, clock: Clock = utcnow):
        self.store = store
        self.clock = clock

    # User Operations

    async def save_user(self, user: User):
        """Upsert the user document and its code lookup entry"""
        await self.store.set(document_path(USERS_COLLECTION, user.id), user_to_document(user))

        # Last writer wins on a code collision
        await self.store.set(document_path(CODES_COLLECTION, user.code), {
            "userId": user.id,
            "createdAt": to_epoch_seconds(self.clock()),
        })
        logger.debug(f"Saved user {user.id} (code {user.code})")

    async def get_user(self, user_id: str) -> Optional[User]:
        data = await self.store.get(document_path(USERS_COLLECTION, user_id))
        if data is None:
            return None
        try:
            return user_from_document(data, user_id)
        except DocumentDecodeError as e:
            logger.warning(f"Ignoring malformed remote user: {e}")
            return None

    async def get_user_by_code(self, code: str) -> Optional[User]:
        """Resolve a 4-digit code to its user, or None"""
        if not CODE_PATTERN.match(code or ""):
            return None

        code_doc = await self.store.get(document_path(CODES_COLLECTION, code))
        user_id = code_doc.get("userId") if code_doc else None
        if not isinstance(user_id, str) or not user_id:
            return None

        return await self.get_user(user_id)

    async def is_code_available(self, code: str) -> bool:
        return await self.store.get(document_path(CODES_COLLECTION, code)) is None

    # Bouquet Operations

    async def send_bouquet(self, bouquet: Bouquet):
        """Store the bouquet, then copy it into the recipient's inbox (two separate writes)"""
        document = bouquet.to_document()
        await self.store.set(document_path(BOUQUETS_COLLECTION, bouquet.id), document)
        await self.store.set(
            document_path(USERS_COLLECTION, bouquet.to_user_id, RECEIVED_BOUQUETS_COLLECTION, bouquet.id),
            document,
        )
        logger.info(f"Bouquet {bouquet.id} delivered to {bouquet.to_user_id}")

    async def get_received_bouquets(self, user_id: str, now: Optional[datetime] = None) -> List[Bouquet]:
        """Unexpired inbox bouquets, newest first"""
        now = now or self.clock()
        documents = await self.store.query(
            document_path(USERS_COLLECTION, user_id, RECEIVED_BOUQUETS_COLLECTION),
            order_by=INBOX_ORDER_FIELD,
            descending=True,
        )

        bouquets = []
        for data in documents:
            try:
                bouquet = bouquet_from_document(data)
            except DocumentDecodeError as e:
                logger.warning(f"Skipping malformed bouquet: {e}")
                continue
            if not bouquet.is_expired(now):
                bouquets.append(bouquet)
        return bouquets

    async def get_active_bouquet(self, user_id: str) -> Optional[Bouquet]:
        bouquets = await self.get_received_bouquets(user_id)
        return bouquets[0] if bouquets else None

    async def mark_bouquet_viewed(self, bouquet: Bouquet):
        await self.store.update(
            document_path(USERS_COLLECTION, bouquet.to_user_id, RECEIVED_BOUQUETS_COLLECTION, bouquet.id),
            {"isViewed": True},
        )
        await self.store.update(document_path(BOUQUETS_COLLECTION, bouquet.id), {"isViewed": True})

    # Pairing Operations

    async def pair_users(self, user_id: str, partner_id: str):
        """Point both user documents at each other (two separate writes)"""
        await self.store.update(document_path(USERS_COLLECTION, user_id), {"partnerId": partner_id})
        await self.store.update(document_path(USERS_COLLECTION, partner_id), {"partnerId": user_id})
        logger.info(f"Paired users {user_id} <-> {partner_id}")

    # Diagnostics

    async def test_connection(self) -> bool:
        return await self.store.ping()
