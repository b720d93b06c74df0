from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from domain.models import Account, Changeset, Clan, TransactionRecord


class AccountRepository(Protocol):
    """
    Abstraction over account persistence.

    Implementations are responsible for:
    - Mapping between stored rows/documents and the `Account` domain model.
    - Hiding any SQL / driver / file details from the application layer.
    - Raising `StorageUnavailable` when the backend cannot be reached.
    """

    def get_account(self, user_id: str) -> Optional[Account]:
        """Return the account for `user_id`, or None if it was never created."""

        ...

    def get_all_accounts(self) -> List[Account]:
        """Return every account currently known to the system."""

        ...

    def add_account(self, account: Account) -> None:
        """
        Persist a brand new account.

        Must be a no-op if an account with the same ID already exists, so
        that two racing lazy creations converge on one record.
        """

        ...


class ClanRepository(Protocol):
    """Read side of clan persistence. Writes go through `LedgerRepository.commit`."""

    def get_clan(self, clan_id: str) -> Optional[Clan]:
        ...

    def get_clan_by_name(self, name: str) -> Optional[Clan]:
        """Case-insensitive lookup by clan name."""

        ...

    def get_all_clans(self) -> List[Clan]:
        ...


class LedgerRepository(Protocol):
    """
    Atomic write side shared by accounts, clans and transaction records.
    """

    def commit(self, changeset: Changeset) -> None:
        """
        Apply `changeset` atomically.

        Every account/clan in the changeset is written only if its stored
        version still equals the version it was loaded with; on success the
        stored version (and the in-memory object's) is incremented. Raises
        `StaleWriteError` on a version mismatch, `DuplicateName` when a new
        clan's name is taken and `StorageUnavailable` on backend failure.
        Nothing is written if any of these is raised.
        """

        ...

    def get_transactions(self, user_id: str, limit: int = 10) -> List[TransactionRecord]:
        """Most recent transaction records for `user_id`, newest first."""

        ...

    def get_request_result(self, request_id: str) -> Optional[Dict[str, Any]]:
        """Stored result payload of an already processed request, if any."""

        ...


class EconomyRepository(AccountRepository, ClanRepository, LedgerRepository, Protocol):
    """Everything the engine needs from one storage backend."""
