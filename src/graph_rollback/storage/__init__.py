"""Storage module for execution checkpoints.

This module provides:
- Abstract checkpoint store interface
- SQLite and PostgreSQL backend implementations
- A factory selecting the backend from configuration
"""

import os
from typing import TYPE_CHECKING, Optional

from .base import StorageBackend
from .postgres import PostgresStorage
from .sqlite import SQLiteStorage

if TYPE_CHECKING:
    from ..config import Settings

DEFAULT_SQLITE_PATH = "data/workflow_executions.db"


def create_storage_backend(
    backend_type: Optional[str] = None,
    settings: Optional["Settings"] = None,
) -> StorageBackend:
    """Create a storage backend based on configuration.

    Args:
        backend_type: Type of backend ("sqlite", "postgres", or None for auto-detect)
        settings: Settings supplying the database path and DSN; the
            environment is read when omitted

    Returns:
        Configured storage backend

    Environment Variables:
        STORAGE_BACKEND: Backend type (sqlite, postgres)
        SQLITE_DB_PATH: Database file for the sqlite backend
        POSTGRES_DSN: PostgreSQL connection string (for the postgres backend)
    """
    # Auto-detect backend type from environment if not specified
    if backend_type is None:
        if settings is not None:
            backend_type = settings.storage_backend
        else:
            backend_type = os.getenv("STORAGE_BACKEND", "sqlite")
    backend_type = backend_type.lower()

    if backend_type == "sqlite":
        if settings is not None:
            db_path = settings.sqlite_db_path
        else:
            db_path = os.getenv("SQLITE_DB_PATH", DEFAULT_SQLITE_PATH)
        return SQLiteStorage(db_path=db_path)

    elif backend_type == "postgres":
        if settings is not None:
            postgres_dsn = settings.postgres_dsn
        else:
            postgres_dsn = os.getenv("POSTGRES_DSN")
        if not postgres_dsn:
            raise ValueError(
                "POSTGRES_DSN environment variable is required for PostgreSQL backend"
            )
        return PostgresStorage(dsn=postgres_dsn)

    else:
        raise ValueError(
            f"Unknown backend type: {backend_type}. "
            f"Supported types: sqlite, postgres"
        )


__all__ = [
    "StorageBackend",
    "SQLiteStorage",
    "PostgresStorage",
    "create_storage_backend",
]
