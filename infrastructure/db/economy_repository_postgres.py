from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg2

from domain.errors import InvariantViolation, StorageUnavailable

from infrastructure.db.sql_repository import SqlEconomyRepository

logger = logging.getLogger(__name__)


class PostgresEconomyRepository(SqlEconomyRepository):
    """
    Postgres-backed implementation of the economy repositories.

    Every call opens a short-lived connection with a connect timeout and a
    statement timeout, so a stuck database surfaces as `StorageUnavailable`
    instead of hanging the bot.
    """

    placeholder = "%s"

    def __init__(self, db_params: dict, timeout: float = 5.0) -> None:
        self._db_params = dict(db_params)
        self._timeout = timeout
        self._ensure_tables()

    def _get_connection(self):
        timeout_ms = int(self._timeout * 1000)
        return psycopg2.connect(
            connect_timeout=max(1, int(self._timeout)),
            options=f"-c statement_timeout={timeout_ms}",
            **self._db_params,
        )

    @contextmanager
    def _transaction(self) -> Iterator["psycopg2.extensions.connection"]:
        try:
            conn = self._get_connection()
        except psycopg2.OperationalError as exc:
            logger.warning("Could not connect to Postgres: %s", exc)
            raise StorageUnavailable("database could not be reached", backend="postgres") from exc
        try:
            with conn:
                yield conn
        except psycopg2.IntegrityError as exc:
            raise InvariantViolation(f"postgres rejected write: {exc}") from exc
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as exc:
            logger.warning("Postgres operation failed: %s", exc)
            raise StorageUnavailable("database is busy or unavailable", backend="postgres") from exc
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        """
        Ensure that the economy tables exist.

        Balances carry CHECK constraints as a last line of defence; the
        ledger rejects negative balances long before they reach SQL.
        """

        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS accounts (
                        user_id VARCHAR(64) PRIMARY KEY,
                        wallet_balance BIGINT NOT NULL DEFAULT 0 CHECK (wallet_balance >= 0),
                        bank_balance BIGINT NOT NULL DEFAULT 0 CHECK (bank_balance >= 0),
                        total_earned BIGINT NOT NULL DEFAULT 0,
                        total_spent BIGINT NOT NULL DEFAULT 0,
                        work_count INTEGER NOT NULL DEFAULT 0,
                        rob_count INTEGER NOT NULL DEFAULT 0,
                        daily_count INTEGER NOT NULL DEFAULT 0,
                        last_work_at TIMESTAMPTZ,
                        last_rob_at TIMESTAMPTZ,
                        last_daily_on VARCHAR(10),
                        streak INTEGER NOT NULL DEFAULT 0,
                        longest_streak INTEGER NOT NULL DEFAULT 0,
                        clan_id VARCHAR(32),
                        display_name VARCHAR(100),
                        created_at TIMESTAMPTZ,
                        version INTEGER NOT NULL DEFAULT 0
                    );

                    CREATE TABLE IF NOT EXISTS clans (
                        id VARCHAR(32) PRIMARY KEY,
                        name VARCHAR(100) NOT NULL,
                        name_key VARCHAR(100) NOT NULL UNIQUE,
                        leader_id VARCHAR(64) NOT NULL,
                        bank BIGINT NOT NULL DEFAULT 0 CHECK (bank >= 0),
                        level INTEGER NOT NULL DEFAULT 1,
                        created_at TIMESTAMPTZ,
                        version INTEGER NOT NULL DEFAULT 0
                    );

                    CREATE TABLE IF NOT EXISTS clan_members (
                        clan_id VARCHAR(32) NOT NULL,
                        user_id VARCHAR(64) NOT NULL UNIQUE,
                        PRIMARY KEY (clan_id, user_id)
                    );

                    CREATE TABLE IF NOT EXISTS transactions (
                        seq BIGSERIAL PRIMARY KEY,
                        id VARCHAR(32) NOT NULL UNIQUE,
                        user_id VARCHAR(64) NOT NULL,
                        kind VARCHAR(32) NOT NULL,
                        amount BIGINT NOT NULL,
                        counterparty_id VARCHAR(64),
                        created_at TIMESTAMPTZ NOT NULL,
                        metadata JSONB NOT NULL DEFAULT '{}'
                    );

                    CREATE INDEX IF NOT EXISTS idx_transactions_user
                        ON transactions (user_id, seq);

                    CREATE TABLE IF NOT EXISTS processed_requests (
                        request_id VARCHAR(128) PRIMARY KEY,
                        payload JSONB NOT NULL,
                        created_at TIMESTAMPTZ NOT NULL
                    );
                    """
                )
