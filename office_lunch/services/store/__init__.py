"""
Store Factory

Provides a single entry point for obtaining the synchronized store.

Usage:
    from office_lunch.services.store import get_store

    store = get_store()
    await store.start()

Environment Switching:
    - ENV_MODE=development → MemoryStore (process-local, lost on restart)
    - ENV_MODE=staging/production → SqlStore (DATABASE_URL, optional Redis feed)
"""

import logging
from functools import lru_cache

from office_lunch.core.config import get_settings
from office_lunch.core.exceptions import ConfigurationError
from office_lunch.services.store.base import (
    BaseStore,
    Collection,
    MENU_KEY,
    SERVER_TIMESTAMP,
    Snapshot,
)
from office_lunch.services.store.memory import MemoryStore
from office_lunch.services.store.sql import SqlStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_store() -> BaseStore:
    """
    Get the configured store instance (cached).

    Returns:
        BaseStore: MemoryStore or SqlStore depending on ENV_MODE

    Raises:
        ConfigurationError: If no database URL is configured for the SQL store
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Store: Using MemoryStore (development mode)")
        return MemoryStore()

    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL is required outside development mode")

    logger.info(f"Store: Using SqlStore ({settings.env_mode.value} mode)")
    return SqlStore(
        settings.database_url,
        redis_url=settings.redis_url,
        change_feed=settings.store_change_feed,
        echo=settings.debug,
    )


def reset_store() -> None:
    """
    Clear the cached store instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_store.cache_clear()
    logger.debug("Store cache cleared")


__all__ = [
    "get_store",
    "reset_store",
    "BaseStore",
    "Collection",
    "MENU_KEY",
    "SERVER_TIMESTAMP",
    "Snapshot",
    "MemoryStore",
    "SqlStore",
]
