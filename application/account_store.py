from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from domain.errors import InvariantViolation, StaleWriteError, StorageUnavailable
from domain.models import Account, Changeset
from domain.repositories import EconomyRepository
from domain.settings import EconomySettings

from application.locks import KeyedLocks, account_key

logger = logging.getLogger(__name__)

# Owned by the ledger; `update()` refuses to touch them.
LEDGER_FIELDS = frozenset(
    {
        "user_id",
        "wallet_balance",
        "bank_balance",
        "total_earned",
        "total_spent",
        "clan_id",
        "version",
    }
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountStore:
    """
    Lazily creates accounts and performs locked read-modify-write updates of
    profile fields.

    Balance fields are never written here; see `LedgerEngine`.
    """

    def __init__(
        self,
        repo: EconomyRepository,
        settings: EconomySettings,
        locks: KeyedLocks,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repo
        self._settings = settings
        self._locks = locks
        self._clock = clock

    def new_account(self, user_id: str) -> Account:
        return Account(
            user_id=user_id,
            wallet_balance=self._settings.starting_balance,
            bank_balance=self._settings.starting_bank_balance,
            created_at=self._clock(),
        )

    def get(self, user_id: str) -> Optional[Account]:
        return self._repo.get_account(user_id)

    def get_or_create(self, user_id: str) -> Account:
        account = self._repo.get_account(user_id)
        if account is not None:
            return account

        self._repo.add_account(self.new_account(user_id))
        logger.info("New account initialised: %s", user_id)

        # Re-read so a concurrent creation wins consistently.
        account = self._repo.get_account(user_id)
        if account is None:
            raise StorageUnavailable("account could not be created", user_id=user_id)
        return account

    def update(self, user_id: str, **patch: Any) -> Account:
        """
        Apply `patch` to the stored account and return the post-image.

        Only bookkeeping fields (display name, counters, cooldown stamps) may
        be patched.
        """

        forbidden = sorted(set(patch) & LEDGER_FIELDS)
        if forbidden:
            raise InvariantViolation(f"fields managed by the ledger: {', '.join(forbidden)}")
        known = {f.name for f in dataclasses.fields(Account)}
        unknown = sorted(set(patch) - known)
        if unknown:
            raise InvariantViolation(f"unknown account fields: {', '.join(unknown)}")

        for attempt in range(1, self._settings.max_commit_attempts + 1):
            with self._locks.hold([account_key(user_id)]):
                current = self.get_or_create(user_id)
                updated = dataclasses.replace(current, **patch)
                broken = updated.violations()
                if broken:
                    raise InvariantViolation(f"negative fields after update: {', '.join(broken)}")
                try:
                    self._repo.commit(Changeset(accounts=[updated]))
                except StaleWriteError:
                    logger.info("Stale write updating %s (attempt %d)", user_id, attempt)
                    continue
                return updated

        raise StorageUnavailable("account kept changing, try again", user_id=user_id)
