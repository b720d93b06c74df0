from __future__ import annotations

import dataclasses
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from domain.errors import DuplicateName, StaleWriteError, StorageUnavailable
from domain.models import Account, Changeset, Clan, TransactionRecord, clan_key

from infrastructure.db.sql_repository import DATETIME_COLUMNS, to_datetime

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def _empty() -> Dict[str, Any]:
    return {
        "accounts": {},
        "clans": {},
        "transactions": [],
        "requests": {},
        "meta": {"version": SCHEMA_VERSION},
    }


def account_to_dict(account: Account) -> Dict[str, Any]:
    data = dataclasses.asdict(account)
    for column in DATETIME_COLUMNS:
        if data[column] is not None:
            data[column] = data[column].isoformat()
    return data


def account_from_dict(data: Dict[str, Any]) -> Account:
    known = {f.name for f in dataclasses.fields(Account)}
    values = {k: v for k, v in data.items() if k in known}
    for column in DATETIME_COLUMNS:
        values[column] = to_datetime(values.get(column))
    return Account(**values)


def clan_to_dict(clan: Clan) -> Dict[str, Any]:
    return {
        "id": clan.id,
        "name": clan.name,
        "leader_id": clan.leader_id,
        "members": sorted(clan.members),
        "bank": clan.bank,
        "level": clan.level,
        "created_at": clan.created_at.isoformat() if clan.created_at else None,
        "version": clan.version,
    }


def clan_from_dict(data: Dict[str, Any]) -> Clan:
    return Clan(
        id=data["id"],
        name=data["name"],
        leader_id=data["leader_id"],
        members=set(data.get("members", [])),
        bank=int(data.get("bank", 0)),
        level=int(data.get("level", 1)),
        created_at=to_datetime(data.get("created_at")),
        version=int(data.get("version", 0)),
    )


def record_to_dict(record: TransactionRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "kind": record.kind,
        "amount": record.amount,
        "counterparty_id": record.counterparty_id,
        "timestamp": record.timestamp.isoformat(),
        "metadata": record.metadata,
    }


def record_from_dict(data: Dict[str, Any]) -> TransactionRecord:
    return TransactionRecord(
        id=data["id"],
        user_id=data["user_id"],
        kind=data["kind"],
        amount=int(data["amount"]),
        counterparty_id=data.get("counterparty_id"),
        timestamp=to_datetime(data["timestamp"]),
        metadata=dict(data.get("metadata") or {}),
    )


class JsonEconomyRepository:
    """
    File-based implementation of the economy repositories.

    The whole economy lives in one JSON document. Every commit rewrites it
    through a temporary file and `os.replace`, so readers never see a half
    written file. Only suitable for a single bot process.
    """

    def __init__(self, path: str) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, Any]:
        try:
            if not self._path.exists():
                return _empty()
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Could not read %s: %s", self._path, exc)
            raise StorageUnavailable("economy file could not be read", backend="json") from exc
        for key, value in _empty().items():
            data.setdefault(key, value)
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=self._path.name, suffix=".tmp", dir=str(self._path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False, default=str)
                os.replace(tmp_path, self._path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as exc:
            logger.warning("Could not write %s: %s", self._path, exc)
            raise StorageUnavailable("economy file could not be written", backend="json") from exc

    # -- AccountRepository -------------------------------------------------

    def get_account(self, user_id: str) -> Optional[Account]:
        with self._lock:
            data = self._load()["accounts"].get(user_id)
        return account_from_dict(data) if data else None

    def get_all_accounts(self) -> List[Account]:
        with self._lock:
            accounts = self._load()["accounts"]
        return [account_from_dict(a) for a in accounts.values()]

    def add_account(self, account: Account) -> None:
        with self._lock:
            data = self._load()
            if account.user_id in data["accounts"]:
                return
            data["accounts"][account.user_id] = account_to_dict(account)
            self._save(data)

    # -- ClanRepository ----------------------------------------------------

    def get_clan(self, clan_id: str) -> Optional[Clan]:
        with self._lock:
            data = self._load()["clans"].get(clan_id)
        return clan_from_dict(data) if data else None

    def get_clan_by_name(self, name: str) -> Optional[Clan]:
        key = clan_key(name)
        for clan in self.get_all_clans():
            if clan.key == key:
                return clan
        return None

    def get_all_clans(self) -> List[Clan]:
        with self._lock:
            clans = self._load()["clans"]
        return sorted((clan_from_dict(c) for c in clans.values()), key=lambda c: c.key)

    # -- LedgerRepository --------------------------------------------------

    def get_transactions(self, user_id: str, limit: int = 10) -> List[TransactionRecord]:
        with self._lock:
            records = self._load()["transactions"]
        mine = [r for r in reversed(records) if r["user_id"] == user_id]
        return [record_from_dict(r) for r in mine[:limit]]

    def get_request_result(self, request_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._load()["requests"].get(request_id)

    def commit(self, changeset: Changeset) -> None:
        with self._lock:
            data = self._load()
            accounts = data["accounts"]
            clans = data["clans"]

            for account in changeset.accounts:
                stored = accounts.get(account.user_id)
                if stored is None or stored.get("version", 0) != account.version:
                    raise StaleWriteError(f"account {account.user_id} changed concurrently")
            for clan in list(changeset.clans) + list(changeset.deleted_clans):
                stored = clans.get(clan.id)
                if stored is None or stored.get("version", 0) != clan.version:
                    raise StaleWriteError(f"clan {clan.name} changed concurrently")
            taken = {clan_key(c["name"]) for c in clans.values()}
            for clan in changeset.new_clans:
                if clan.key in taken:
                    raise DuplicateName("a clan with that name already exists", name=clan.name)
                taken.add(clan.key)
            if changeset.request_id is not None and changeset.request_id in data["requests"]:
                raise StaleWriteError(f"request {changeset.request_id} already processed")

            for account in changeset.accounts:
                stored = account_to_dict(account)
                stored["version"] = account.version + 1
                accounts[account.user_id] = stored
            for clan in changeset.deleted_clans:
                clans.pop(clan.id, None)
            for clan in changeset.clans:
                stored = clan_to_dict(clan)
                stored["version"] = clan.version + 1
                clans[clan.id] = stored
            for clan in changeset.new_clans:
                clans[clan.id] = clan_to_dict(clan)
            data["transactions"].extend(record_to_dict(r) for r in changeset.records)
            if changeset.request_id is not None:
                data["requests"][changeset.request_id] = changeset.result or {}

            self._save(data)

        for item in list(changeset.accounts) + list(changeset.clans):
            item.version += 1
