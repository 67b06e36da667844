"""
Local Cache - keeps the last known user, partner and bouquets on disk
so the app can start, and keep working, without the remote store.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Type, TypeVar

from pydantic import ValidationError

from .errors import DocumentDecodeError
from .models import Bouquet, CamelModel, User

logger = logging.getLogger(__name__)

PREFERENCES_FILENAME = "preferences.json"

CURRENT_USER_KEY = "currentUser"
RECEIVED_BOUQUET_KEY = "receivedBouquet"

ModelT = TypeVar("ModelT", bound=CamelModel)


def partner_key(partner_id: str) -> str:
    return f"partner_{partner_id}"


def sent_bouquet_key(partner_id: str) -> str:
    return f"sentBouquet_{partner_id}"


class PreferenceStore:
    """Flat string key-value file, the on-disk equivalent of platform preferences."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Preferences file {self.path} unreadable, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Preferences file {self.path} corrupted - not an object")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: Dict[str, str]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set(self, key: str, value: str):
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove(self, key: str):
        data = self._read_all()
        if data.pop(key, None) is not None:
            self._write_all(data)

    def clear(self):
        if self.path.exists():
            self.path.unlink()


class LocalCache:
    """Typed snapshots of the session's records. Holds no state of its own."""

    def __init__(self, store: PreferenceStore):
        self.store = store

    @classmethod
    def in_directory(cls, data_dir: Path) -> "LocalCache":
        return cls(PreferenceStore(Path(data_dir) / PREFERENCES_FILENAME))

    def _save(self, key: str, record: CamelModel):
        self.store.set(key, record.model_dump_json(by_alias=True))

    def _load(self, key: str, model: Type[ModelT]) -> Optional[ModelT]:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            return model.model_validate_json(raw)
        except ValidationError as e:
            # A bad snapshot is the same as no snapshot
            logger.warning(f"{DocumentDecodeError(f'cached {key}', e)}")
            return None

    # Current user
    def save_current_user(self, user: User):
        self._save(CURRENT_USER_KEY, user)

    def load_current_user(self) -> Optional[User]:
        return self._load(CURRENT_USER_KEY, User)

    # Partner
    def save_partner(self, partner: User):
        self._save(partner_key(partner.id), partner)

    def load_partner(self, partner_id: str) -> Optional[User]:
        return self._load(partner_key(partner_id), User)

    # Inbound bouquet
    def save_received_bouquet(self, bouquet: Bouquet):
        self._save(RECEIVED_BOUQUET_KEY, bouquet)

    def load_received_bouquet(self) -> Optional[Bouquet]:
        return self._load(RECEIVED_BOUQUET_KEY, Bouquet)

    def clear_received_bouquet(self):
        self.store.remove(RECEIVED_BOUQUET_KEY)

    # Outbound bouquet, one per recipient
    def save_sent_bouquet(self, bouquet: Bouquet):
        self._save(sent_bouquet_key(bouquet.to_user_id), bouquet)

    def load_sent_bouquet(self, partner_id: str) -> Optional[Bouquet]:
        return self._load(sent_bouquet_key(partner_id), Bouquet)

    def clear(self):
        self.store.clear()
