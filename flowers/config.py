import os
import tempfile
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file next to the project root
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# Also check current directory
if not os.getenv("STORE_BACKEND") and not os.getenv("MONGODB_URI"):
    load_dotenv()


VALID_STORE_BACKENDS = ("memory", "mongo", "firestore")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _resolve_data_dir(raw: Optional[str]) -> Path:
    """Pick the directory holding the local cache and identity files."""
    data_dir = Path(raw).expanduser() if raw else Path.home() / ".flowers"
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        # Fallback to temp directory if home directory not writable
        data_dir = Path(tempfile.gettempdir()) / "flowers"
        data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


class Settings:
    """Runtime configuration read from the environment."""

    def __init__(self):
        # Development
        self.DEBUG: bool = _env_bool("DEBUG", "False")
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "DEBUG" if self.DEBUG else "INFO").upper()

        # Remote document store
        self.USE_MOCK_DB: bool = _env_bool("USE_MOCK_DB", "False")
        self.STORE_BACKEND: str = os.getenv(
            "STORE_BACKEND", "memory" if self.USE_MOCK_DB else "mongo"
        ).lower()

        # MongoDB
        self.MONGODB_URI: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
        self.MONGO_DB: str = os.getenv("MONGO_DB", "flowers")

        # Firestore REST
        self.FIRESTORE_PROJECT_ID: str = os.getenv("FIRESTORE_PROJECT_ID", "")
        self.FIRESTORE_DATABASE: str = os.getenv("FIRESTORE_DATABASE", "(default)")
        self.FIRESTORE_API_KEY: str = os.getenv("FIRESTORE_API_KEY", "")
        self.FIRESTORE_BASE_URL: str = os.getenv(
            "FIRESTORE_BASE_URL", "https://firestore.googleapis.com/v1"
        ).rstrip("/")

        self.REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "15"))

        # Local storage (cache + durable identity)
        self.DATA_DIR: Path = _resolve_data_dir(os.getenv("DATA_DIR"))

        # Session
        self.EXPIRY_CHECK_INTERVAL_SECONDS: float = float(
            os.getenv("EXPIRY_CHECK_INTERVAL_SECONDS", "1.0")
        )
        self.INVITE_SCHEME: str = os.getenv("INVITE_SCHEME", "flowers")

        self.validate_config()

    def validate_config(self):
        """Validate critical configuration"""
        if self.STORE_BACKEND not in VALID_STORE_BACKENDS:
            raise ValueError(
                f"STORE_BACKEND must be one of {', '.join(VALID_STORE_BACKENDS)}, got '{self.STORE_BACKEND}'"
            )

        if self.STORE_BACKEND == "firestore" and not self.FIRESTORE_PROJECT_ID:
            raise ValueError("FIRESTORE_PROJECT_ID must be set when STORE_BACKEND=firestore")

        if self.EXPIRY_CHECK_INTERVAL_SECONDS <= 0:
            raise ValueError("EXPIRY_CHECK_INTERVAL_SECONDS must be positive")

    @property
    def safe_mongodb_host(self) -> str:
        """Connection target without credentials, for logging."""
        if "@" in self.MONGODB_URI:
            return self.MONGODB_URI.split("@")[-1].split("/")[0]
        return self.MONGODB_URI.split("//")[-1].split("/")[0]


settings = Settings()
