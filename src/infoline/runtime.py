"""Building the data store and services from settings."""

import logging
from typing import Optional

from database import (
    DataStore,
    DatabasePool,
    InMemoryDataStore,
    PostgresDataStore,
    create_database_config_from_env,
    parse_database_url,
)
from services import Services, build_services

from .config import Settings, get_settings
from .demo import seed_demo_data


logger = logging.getLogger(__name__)


def create_pool(settings: Settings) -> DatabasePool:
    """Pool configured from DATABASE_URL, or from the DB_* variables when it is unset."""
    db = settings.database
    if db.url:
        config = parse_database_url(db.url, min_size=db.pool_min_size, max_size=db.pool_max_size)
    else:
        config = create_database_config_from_env()
    return DatabasePool(config)


async def create_store(settings: Optional[Settings] = None) -> DataStore:
    """
    Create the configured store.

    INFOLINE_STORAGE=memory gives an in-memory store seeded with demo data;
    otherwise a PostgreSQL store with an initialized pool.
    """
    settings = settings or get_settings()

    if settings.app.storage == "memory":
        store = InMemoryDataStore()
        seed_demo_data(store)
        logger.info("Using in-memory store with demo data")
        return store

    pool = create_pool(settings)
    await pool.initialize()
    return PostgresDataStore(pool)


def create_services(store: DataStore, settings: Optional[Settings] = None) -> Services:
    settings = settings or get_settings()
    return build_services(
        store,
        retention_days=settings.notifications.retention_days,
        frontend_url=settings.notifications.frontend_url,
    )


async def close_store(store: DataStore) -> None:
    if isinstance(store, PostgresDataStore):
        await store.close()
