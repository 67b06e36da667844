"""
Identity Store - the device's durable user id.

Kept apart from the preference cache so that clearing cached data does not
lose the account. The file is readable by the owner only.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

IDENTITY_FILENAME = "identity.json"
USER_ID_KEY = "userId"
SERVICE_NAME = "com.flowers.app"


class IdentityStore:
    """Stores a single user id under a fixed service/key pair"""

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def in_directory(cls, data_dir: Path) -> "IdentityStore":
        return cls(Path(data_dir) / IDENTITY_FILENAME)

    def save_user_id(self, user_id: str):
        """Replace any stored id with ``user_id``"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"service": SERVICE_NAME, USER_ID_KEY: user_id}
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        logger.debug("Stored device user id")

    def get_user_id(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Identity file unreadable: {e}")
            return None
        if not isinstance(payload, dict) or payload.get("service") != SERVICE_NAME:
            return None
        user_id = payload.get(USER_ID_KEY)
        return user_id if isinstance(user_id, str) and user_id else None

    def delete_user_id(self):
        """Forget the stored id (logout/reset)"""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
