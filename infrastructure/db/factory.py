from __future__ import annotations

import logging

from domain.repositories import EconomyRepository
from domain.settings import StorageSettings

logger = logging.getLogger(__name__)


def create_repository(storage: StorageSettings) -> EconomyRepository:
    """Build the persistence adapter selected by `STORAGE_BACKEND`."""

    logger.info("Using %s storage backend", storage.backend)

    if storage.backend == "postgres":
        # Imported lazily so SQLite/JSON deployments do not need a libpq.
        from infrastructure.db.economy_repository_postgres import PostgresEconomyRepository

        return PostgresEconomyRepository(storage.postgres_params, timeout=storage.timeout_seconds)

    if storage.backend == "json":
        from infrastructure.db.economy_repository_json import JsonEconomyRepository

        return JsonEconomyRepository(storage.json_path)

    from infrastructure.db.economy_repository_sqlite import SqliteEconomyRepository

    return SqliteEconomyRepository(storage.sqlite_path, timeout=storage.timeout_seconds)
