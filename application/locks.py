from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterable, Iterator, List, Tuple

from domain.errors import StorageUnavailable

logger = logging.getLogger(__name__)

LockKey = Tuple[str, str]


def account_key(user_id: str) -> LockKey:
    return ("account", user_id)


def clan_lock_key(name: str) -> LockKey:
    return ("clan", name)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLocks:
    """
    One mutex per key, handed out lazily.

    `hold()` takes several keys at once and always acquires them in sorted
    order, so two sessions touching the same pair of accounts from opposite
    directions cannot deadlock. A key's mutex is dropped as soon as nobody
    holds it or waits for it.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self._timeout = timeout
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    def active_keys(self) -> int:
        """Number of keys currently held or waited on."""

        with self._guard:
            return len(self._entries)

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry.lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._entries[key]
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, keys: Iterable[LockKey]) -> Iterator[None]:
        ordered = sorted(set(keys))
        checked_out: List[Hashable] = []
        acquired: List[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                if not lock.acquire(timeout=self._timeout):
                    logger.warning("Timed out waiting for lock %s", key)
                    raise StorageUnavailable(
                        "account is busy, try again", lock=f"{key[0]}:{key[1]}"
                    )
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._checkin(key)
