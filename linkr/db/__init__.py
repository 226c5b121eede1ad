"""
Database Layer for the Link Registry

Provides:
- PostgreSQL schema (schema.sql)
- LinkStore abstraction (InMemory for dev, Postgres for prod)
- Environment-based store selection
"""

from .store import (
    LinkStore,
    InMemoryLinkStore,
    PostgresLinkStore,
    WriteContext,
    StoreError,
    LockTimeoutError,
)
from .config import (
    DatabaseConfig,
    LinkStoreDriver,
    create_link_store,
    get_database_url,
    get_linkstore_driver,
)

__all__ = [
    "LinkStore",
    "InMemoryLinkStore",
    "PostgresLinkStore",
    "WriteContext",
    "StoreError",
    "LockTimeoutError",
    "DatabaseConfig",
    "LinkStoreDriver",
    "create_link_store",
    "get_database_url",
    "get_linkstore_driver",
]
