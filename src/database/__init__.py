"""
Database integration layer for İnfoLine.

Provides async PostgreSQL connectivity, the DataStore interface with its
PostgreSQL and in-memory implementations, and caching.
"""

from .connection import (
    DatabaseConfig,
    DatabasePool,
    DatabaseConnectionError,
    get_database_pool,
    close_database_pool,
    create_database_config_from_env,
    parse_database_url,
)

from .store import (
    DataStore,
    InMemoryDataStore,
    StoreError,
)

from .queries import PostgresDataStore

from .cache import (
    CacheInterface,
    InMemoryCache,
    InfoLineCache,
    get_infoline_cache,
    clear_infoline_cache,
)

__all__ = [
    # Connection
    'DatabaseConfig',
    'DatabasePool',
    'DatabaseConnectionError',
    'get_database_pool',
    'close_database_pool',
    'create_database_config_from_env',
    'parse_database_url',

    # Storage
    'DataStore',
    'InMemoryDataStore',
    'PostgresDataStore',
    'StoreError',

    # Caching
    'CacheInterface',
    'InMemoryCache',
    'InfoLineCache',
    'get_infoline_cache',
    'clear_infoline_cache',
]
