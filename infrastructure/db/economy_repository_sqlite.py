from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from domain.errors import InvariantViolation, StorageUnavailable

from infrastructure.db.sql_repository import SqlEconomyRepository

logger = logging.getLogger(__name__)


class SqliteEconomyRepository(SqlEconomyRepository):
    """
    SQLite-backed implementation of the economy repositories.

    This repository owns the `accounts`, `clans`, `clan_members`,
    `transactions` and `processed_requests` tables and maps rows to the
    domain models. It is self-initialising: tables are created if needed.
    """

    placeholder = "?"

    def __init__(self, db_path: str, timeout: float = 5.0) -> None:
        self._db_path = db_path
        self._timeout = timeout
        self._ensure_tables()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=self._timeout)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise StorageUnavailable("database could not be opened", backend="sqlite") from exc
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            raise InvariantViolation(f"sqlite rejected write: {exc}") from exc
        except sqlite3.OperationalError as exc:
            logger.warning("SQLite operation failed: %s", exc)
            raise StorageUnavailable("database is busy or unavailable", backend="sqlite") from exc
        finally:
            conn.close()

    def _encode_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value is not None else None

    def _ensure_tables(self) -> None:
        with self._transaction() as conn:
            cur = conn.cursor()
            cur.executescript(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    user_id TEXT PRIMARY KEY,
                    wallet_balance INTEGER NOT NULL DEFAULT 0 CHECK (wallet_balance >= 0),
                    bank_balance INTEGER NOT NULL DEFAULT 0 CHECK (bank_balance >= 0),
                    total_earned INTEGER NOT NULL DEFAULT 0,
                    total_spent INTEGER NOT NULL DEFAULT 0,
                    work_count INTEGER NOT NULL DEFAULT 0,
                    rob_count INTEGER NOT NULL DEFAULT 0,
                    daily_count INTEGER NOT NULL DEFAULT 0,
                    last_work_at TEXT,
                    last_rob_at TEXT,
                    last_daily_on TEXT,
                    streak INTEGER NOT NULL DEFAULT 0,
                    longest_streak INTEGER NOT NULL DEFAULT 0,
                    clan_id TEXT,
                    display_name TEXT,
                    created_at TEXT,
                    version INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS clans (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    name_key TEXT NOT NULL UNIQUE,
                    leader_id TEXT NOT NULL,
                    bank INTEGER NOT NULL DEFAULT 0 CHECK (bank >= 0),
                    level INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT,
                    version INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS clan_members (
                    clan_id TEXT NOT NULL,
                    user_id TEXT NOT NULL UNIQUE,
                    PRIMARY KEY (clan_id, user_id)
                );

                CREATE TABLE IF NOT EXISTS transactions (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    user_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    counterparty_id TEXT,
                    created_at TEXT NOT NULL,
                    metadata TEXT NOT NULL DEFAULT '{}'
                );

                CREATE INDEX IF NOT EXISTS idx_transactions_user
                    ON transactions (user_id, seq);

                CREATE TABLE IF NOT EXISTS processed_requests (
                    request_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )
