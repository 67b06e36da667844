"""
Flowers - headless session runner
Builds the stores and the session controller from settings, loads and syncs
the account, keeps the expiry timer running and logs the session status.
"""

import asyncio
import logging
from typing import Optional

from .config import Settings, settings as default_settings
from .database import create_document_store
from .identity_store import IdentityStore
from .local_cache import LocalCache
from .logging_setup import configure_logging
from .remote import RemoteSyncClient
from .session import SessionController
from .timeutils import format_countdown, format_time_remaining

logger = logging.getLogger(__name__)


def build_session(config: Optional[Settings] = None) -> SessionController:
    """Wire up a controller with the configured store and local files"""
    config = config or default_settings
    store = create_document_store(config)
    return SessionController(
        remote=RemoteSyncClient(store),
        cache=LocalCache.in_directory(config.DATA_DIR),
        identity=IdentityStore.in_directory(config.DATA_DIR),
        config=config,
    )


def log_status(session: SessionController):
    status = session.status()
    logger.info(f"Account {status['user_id']} code {status['code']}, streak {status['streak']} day(s)")
    logger.info(f"Partner: {status['partner'] or 'not paired'}")
    if status["received_bouquet_remaining"] is not None:
        logger.info(f"Bouquet on display, {format_countdown(status['received_bouquet_remaining'])} left")
    if status["sent_bouquet_remaining"] is not None:
        logger.info(f"Sent bouquet: {format_time_remaining(status['sent_bouquet_remaining'])}")


async def run(config: Optional[Settings] = None, duration: Optional[float] = None):
    """Run a session until cancelled, or for ``duration`` seconds"""
    config = config or default_settings
    configure_logging(config.LOG_LEVEL)

    session = build_session(config)
    try:
        if not await session.remote.test_connection():
            logger.warning("Remote store unreachable, running from local cache")
        await session.load()
        session.start_expiry_timer()
        log_status(session)

        if duration is not None:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        await session.close()
        await session.remote.store.close()
        logger.info("Session closed")


def main():
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
