from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, ContextManager, Dict, List, Optional, Sequence

from domain.errors import DuplicateName, StaleWriteError
from domain.models import Account, Changeset, Clan, TransactionRecord, clan_key

logger = logging.getLogger(__name__)

ACCOUNT_COLUMNS = (
    "user_id",
    "wallet_balance",
    "bank_balance",
    "total_earned",
    "total_spent",
    "work_count",
    "rob_count",
    "daily_count",
    "last_work_at",
    "last_rob_at",
    "last_daily_on",
    "streak",
    "longest_streak",
    "clan_id",
    "display_name",
    "created_at",
    "version",
)
# Written by UPDATE; user_id and version are handled separately.
MUTABLE_ACCOUNT_COLUMNS = ACCOUNT_COLUMNS[1:-1]
DATETIME_COLUMNS = frozenset({"last_work_at", "last_rob_at", "created_at"})


def to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        moment = value
    else:
        moment = datetime.fromisoformat(str(value))
    if moment is not None and moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class SqlEconomyRepository:
    """
    Shared SQL for the SQLite and Postgres adapters.

    Subclasses provide the connection, the DDL, the parameter placeholder
    and the mapping of driver errors to `StorageUnavailable`. All writes of
    one `Changeset` happen inside a single database transaction.
    """

    placeholder = "?"

    # -- hooks -------------------------------------------------------------

    def _transaction(self) -> ContextManager[Any]:
        """Connection whose writes commit together or not at all."""

        raise NotImplementedError

    def _encode_datetime(self, value: Optional[datetime]) -> Any:
        return value

    def _encode_json(self, value: Dict[str, Any]) -> Any:
        return json.dumps(value, sort_keys=True, default=str)

    @staticmethod
    def _decode_json(value: Any) -> Dict[str, Any]:
        if value is None:
            return {}
        if isinstance(value, (bytes, str)):
            return json.loads(value)
        return dict(value)

    # -- helpers -----------------------------------------------------------

    def _sql(self, statement: str) -> str:
        return statement.replace("?", self.placeholder)

    def _execute(self, cur: Any, statement: str, params: Sequence[Any] = ()) -> Any:
        cur.execute(self._sql(statement), tuple(params))
        return cur

    def _account_params(self, account: Account, columns: Sequence[str]) -> List[Any]:
        params = []
        for column in columns:
            value = getattr(account, column)
            if column in DATETIME_COLUMNS:
                value = self._encode_datetime(value)
            params.append(value)
        return params

    @staticmethod
    def _to_account(row: Sequence[Any]) -> Account:
        values = dict(zip(ACCOUNT_COLUMNS, row))
        for column in DATETIME_COLUMNS:
            values[column] = to_datetime(values[column])
        values["user_id"] = str(values["user_id"])
        if values["last_daily_on"] is not None:
            values["last_daily_on"] = str(values["last_daily_on"])
        return Account(**values)

    def _load_members(self, cur: Any, clan_id: str) -> set:
        self._execute(cur, "SELECT user_id FROM clan_members WHERE clan_id = ?", (clan_id,))
        return {str(row[0]) for row in cur.fetchall()}

    def _to_clan(self, cur: Any, row: Sequence[Any]) -> Clan:
        clan_id, name, leader_id, bank, level, created_at, version = row
        return Clan(
            id=str(clan_id),
            name=name,
            leader_id=str(leader_id),
            members=self._load_members(cur, str(clan_id)),
            bank=int(bank),
            level=int(level),
            created_at=to_datetime(created_at),
            version=int(version),
        )

    # -- AccountRepository -------------------------------------------------

    def get_account(self, user_id: str) -> Optional[Account]:
        with self._transaction() as conn:
            cur = conn.cursor()
            self._execute(
                cur,
                f"SELECT {', '.join(ACCOUNT_COLUMNS)} FROM accounts WHERE user_id = ?",
                (user_id,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._to_account(row)

    def get_all_accounts(self) -> List[Account]:
        with self._transaction() as conn:
            cur = conn.cursor()
            self._execute(cur, f"SELECT {', '.join(ACCOUNT_COLUMNS)} FROM accounts")
            return [self._to_account(row) for row in cur.fetchall()]

    def add_account(self, account: Account) -> None:
        with self._transaction() as conn:
            cur = conn.cursor()
            self._execute(
                cur,
                f"""
                INSERT INTO accounts ({', '.join(ACCOUNT_COLUMNS)})
                VALUES ({', '.join('?' for _ in ACCOUNT_COLUMNS)})
                ON CONFLICT (user_id) DO NOTHING
                """,
                self._account_params(account, ACCOUNT_COLUMNS),
            )

    # -- ClanRepository ----------------------------------------------------

    _CLAN_SELECT = "SELECT id, name, leader_id, bank, level, created_at, version FROM clans"

    def get_clan(self, clan_id: str) -> Optional[Clan]:
        with self._transaction() as conn:
            cur = conn.cursor()
            self._execute(cur, f"{self._CLAN_SELECT} WHERE id = ?", (clan_id,))
            row = cur.fetchone()
            return self._to_clan(cur, row) if row else None

    def get_clan_by_name(self, name: str) -> Optional[Clan]:
        with self._transaction() as conn:
            cur = conn.cursor()
            self._execute(cur, f"{self._CLAN_SELECT} WHERE name_key = ?", (clan_key(name),))
            row = cur.fetchone()
            return self._to_clan(cur, row) if row else None

    def get_all_clans(self) -> List[Clan]:
        with self._transaction() as conn:
            cur = conn.cursor()
            self._execute(cur, f"{self._CLAN_SELECT} ORDER BY name_key")
            rows = cur.fetchall()
            return [self._to_clan(cur, row) for row in rows]

    # -- LedgerRepository --------------------------------------------------

    def get_transactions(self, user_id: str, limit: int = 10) -> List[TransactionRecord]:
        with self._transaction() as conn:
            cur = conn.cursor()
            self._execute(
                cur,
                """
                SELECT id, user_id, kind, amount, counterparty_id, created_at, metadata
                FROM transactions
                WHERE user_id = ?
                ORDER BY seq DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            return [
                TransactionRecord(
                    id=str(row[0]),
                    user_id=str(row[1]),
                    kind=row[2],
                    amount=int(row[3]),
                    counterparty_id=row[4],
                    timestamp=to_datetime(row[5]),
                    metadata=self._decode_json(row[6]),
                )
                for row in cur.fetchall()
            ]

    def get_request_result(self, request_id: str) -> Optional[Dict[str, Any]]:
        with self._transaction() as conn:
            cur = conn.cursor()
            self._execute(
                cur, "SELECT payload FROM processed_requests WHERE request_id = ?", (request_id,)
            )
            row = cur.fetchone()
            return self._decode_json(row[0]) if row else None

    def commit(self, changeset: Changeset) -> None:
        with self._transaction() as conn:
            cur = conn.cursor()
            self._write_accounts(cur, changeset.accounts)
            self._write_clans(cur, changeset)
            self._write_records(cur, changeset.records)
            if changeset.request_id is not None:
                self._execute(
                    cur,
                    """
                    INSERT INTO processed_requests (request_id, payload, created_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT (request_id) DO NOTHING
                    """,
                    (
                        changeset.request_id,
                        self._encode_json(changeset.result or {}),
                        self._encode_datetime(datetime.now(timezone.utc)),
                    ),
                )
                if cur.rowcount != 1:
                    raise StaleWriteError(f"request {changeset.request_id} already processed")

        for item in list(changeset.accounts) + list(changeset.clans):
            item.version += 1

    def _write_accounts(self, cur: Any, accounts: Sequence[Account]) -> None:
        assignments = ", ".join(f"{column} = ?" for column in MUTABLE_ACCOUNT_COLUMNS)
        for account in accounts:
            self._execute(
                cur,
                f"""
                UPDATE accounts
                SET {assignments}, version = version + 1
                WHERE user_id = ? AND version = ?
                """,
                self._account_params(account, MUTABLE_ACCOUNT_COLUMNS)
                + [account.user_id, account.version],
            )
            if cur.rowcount != 1:
                raise StaleWriteError(f"account {account.user_id} changed concurrently")

    def _replace_members(self, cur: Any, clan: Clan) -> None:
        self._execute(cur, "DELETE FROM clan_members WHERE clan_id = ?", (clan.id,))
        for user_id in sorted(clan.members):
            self._execute(
                cur,
                "INSERT INTO clan_members (clan_id, user_id) VALUES (?, ?)",
                (clan.id, user_id),
            )

    def _write_clans(self, cur: Any, changeset: Changeset) -> None:
        for clan in changeset.deleted_clans:
            self._execute(cur, "DELETE FROM clan_members WHERE clan_id = ?", (clan.id,))
            self._execute(
                cur, "DELETE FROM clans WHERE id = ? AND version = ?", (clan.id, clan.version)
            )
            if cur.rowcount != 1:
                raise StaleWriteError(f"clan {clan.name} changed concurrently")

        for clan in changeset.clans:
            self._execute(
                cur,
                """
                UPDATE clans
                SET leader_id = ?, bank = ?, level = ?, version = version + 1
                WHERE id = ? AND version = ?
                """,
                (clan.leader_id, clan.bank, clan.level, clan.id, clan.version),
            )
            if cur.rowcount != 1:
                raise StaleWriteError(f"clan {clan.name} changed concurrently")
            self._replace_members(cur, clan)

        for clan in changeset.new_clans:
            self._execute(
                cur,
                """
                INSERT INTO clans (id, name, name_key, leader_id, bank, level, created_at, version)
                VALUES (?, ?, ?, ?, ?, ?, ?, 0)
                ON CONFLICT (name_key) DO NOTHING
                """,
                (
                    clan.id,
                    clan.name,
                    clan.key,
                    clan.leader_id,
                    clan.bank,
                    clan.level,
                    self._encode_datetime(clan.created_at),
                ),
            )
            if cur.rowcount != 1:
                raise DuplicateName("a clan with that name already exists", name=clan.name)
            self._replace_members(cur, clan)

    def _write_records(self, cur: Any, records: Sequence[TransactionRecord]) -> None:
        for record in records:
            self._execute(
                cur,
                """
                INSERT INTO transactions
                    (id, user_id, kind, amount, counterparty_id, created_at, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.user_id,
                    record.kind,
                    record.amount,
                    record.counterparty_id,
                    self._encode_datetime(record.timestamp),
                    self._encode_json(record.metadata),
                ),
            )
