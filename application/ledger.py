from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Set, Tuple, TypeVar

from domain.errors import (
    EconomyError,
    InsufficientFunds,
    InvalidAmount,
    InvariantViolation,
    LockSetChanged,
    SelfTargetNotAllowed,
    StaleWriteError,
    StorageUnavailable,
    TargetNotFound,
)
from domain.models import Account, Changeset, Clan, TransactionRecord, clan_key
from domain.repositories import EconomyRepository
from domain.settings import EconomySettings

from application.account_store import AccountStore, utcnow
from application.locks import KeyedLocks, account_key, clan_lock_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

BALANCE_FIELDS = frozenset(
    {"wallet_balance", "bank_balance", "total_earned", "total_spent", "version", "user_id"}
)

# Statistics and cooldowns cleared by an economy reset.
RESET_FIELDS = {
    "work_count": 0,
    "rob_count": 0,
    "daily_count": 0,
    "last_work_at": None,
    "last_rob_at": None,
    "last_daily_on": None,
    "streak": 0,
    "longest_streak": 0,
}


def require_positive(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount("amount must be a positive whole number", amount=amount)
    return amount


@dataclass
class Outcome(Generic[T]):
    value: T
    replayed: bool = False


class LedgerSession:
    """
    The unit of work every mutation runs in.

    A session only sees accounts and clans whose locks the engine acquired
    for it. Mutations are applied to private copies and turned into a single
    `Changeset` at the end; if anything raises before that, nothing is
    written.
    """

    def __init__(
        self,
        repo: EconomyRepository,
        store: AccountStore,
        user_ids: Iterable[str],
        clan_names: Iterable[str],
        now: datetime,
    ) -> None:
        self.now = now
        self._repo = repo
        self._store = store
        self._allowed_users: Set[str] = set(user_ids)
        self._allowed_clans: Set[str] = {clan_key(n) for n in clan_names}
        self._accounts: Dict[str, Account] = {}
        self._dirty: Set[str] = set()
        self._records: List[TransactionRecord] = []
        self._clans: Dict[str, Clan] = {}
        self._dirty_clans: Set[str] = set()
        self._new_clans: Dict[str, Clan] = {}
        self._deleted_clans: Dict[str, Clan] = {}

    # -- loading ---------------------------------------------------------

    def account(self, user_id: str) -> Account:
        if user_id not in self._allowed_users:
            raise InvariantViolation(f"account {user_id} is not locked by this session")
        account = self._accounts.get(user_id)
        if account is None:
            account = self._store.get_or_create(user_id)
            self._accounts[user_id] = account
        return account

    def existing_account(self, user_id: str) -> Account:
        """Like `account()`, but refuses users that have never been seen."""

        if user_id not in self._accounts and self._store.get(user_id) is None:
            raise TargetNotFound("that user has no account yet", user_id=user_id)
        return self.account(user_id)

    def _check_clan_locked(self, name: str) -> None:
        if clan_key(name) not in self._allowed_clans:
            raise InvariantViolation(f"clan {name} is not locked by this session")

    def clan_by_name(self, name: str) -> Optional[Clan]:
        self._check_clan_locked(name)
        key = clan_key(name)
        for clan in list(self._clans.values()) + list(self._new_clans.values()):
            if clan.key == key and clan.id not in self._deleted_clans:
                return clan
        clan = self._repo.get_clan_by_name(name)
        if clan is not None:
            self._clans[clan.id] = clan
        return clan

    # -- balance primitives ----------------------------------------------

    def _record(
        self,
        user_id: str,
        kind: str,
        amount: int,
        counterparty_id: Optional[str],
        metadata: Dict[str, Any],
    ) -> None:
        self._records.append(
            TransactionRecord(
                id=uuid.uuid4().hex,
                user_id=user_id,
                kind=kind,
                amount=amount,
                timestamp=self.now,
                counterparty_id=counterparty_id,
                metadata=metadata,
            )
        )

    def credit(
        self,
        user_id: str,
        amount: int,
        kind: str,
        counterparty_id: Optional[str] = None,
        **metadata: Any,
    ) -> Account:
        amount = require_positive(amount)
        account = self.account(user_id)
        account.wallet_balance += amount
        account.total_earned += amount
        self._dirty.add(user_id)
        self._record(user_id, kind, amount, counterparty_id, metadata)
        return account

    def debit(
        self,
        user_id: str,
        amount: int,
        kind: str,
        counterparty_id: Optional[str] = None,
        **metadata: Any,
    ) -> Account:
        amount = require_positive(amount)
        account = self.account(user_id)
        if account.wallet_balance < amount:
            raise InsufficientFunds(
                "not enough money in wallet",
                user_id=user_id,
                balance=account.wallet_balance,
                required=amount,
            )
        account.wallet_balance -= amount
        account.total_spent += amount
        self._dirty.add(user_id)
        self._record(user_id, kind, -amount, counterparty_id, metadata)
        return account

    def move_to_bank(self, user_id: str, amount: int) -> Account:
        amount = require_positive(amount)
        account = self.account(user_id)
        if account.wallet_balance < amount:
            raise InsufficientFunds(
                "not enough money in wallet",
                user_id=user_id,
                balance=account.wallet_balance,
                required=amount,
            )
        account.wallet_balance -= amount
        account.bank_balance += amount
        self._dirty.add(user_id)
        self._record(user_id, "deposit", amount, None, {})
        return account

    def move_to_wallet(self, user_id: str, amount: int) -> Account:
        amount = require_positive(amount)
        account = self.account(user_id)
        if account.bank_balance < amount:
            raise InsufficientFunds(
                "not enough money in bank",
                user_id=user_id,
                balance=account.bank_balance,
                required=amount,
            )
        account.bank_balance -= amount
        account.wallet_balance += amount
        self._dirty.add(user_id)
        self._record(user_id, "withdrawal", amount, None, {})
        return account

    def transfer(self, from_id: str, to_id: str, amount: int) -> Tuple[Account, Account]:
        """Debit then credit; if the debit is rejected the recipient is untouched."""

        if from_id == to_id:
            raise SelfTargetNotAllowed("cannot transfer to yourself", user_id=from_id)
        sender = self.debit(from_id, amount, "transfer_out", counterparty_id=to_id)
        recipient = self.credit(to_id, amount, "transfer_in", counterparty_id=from_id)
        return sender, recipient

    def set_wallet(
        self,
        user_id: str,
        amount: int,
        counterparty_id: Optional[str] = None,
    ) -> Account:
        """Set the wallet to `amount`, recording the difference as a credit or debit."""

        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidAmount("balance must be a whole number of at least zero", amount=amount)
        account = self.account(user_id)
        previous = account.wallet_balance
        delta = amount - previous
        if delta > 0:
            self.credit(
                user_id, delta, "admin_set", counterparty_id,
                previous_balance=previous, new_balance=amount,
            )
        elif delta < 0:
            self.debit(
                user_id, -delta, "admin_set", counterparty_id,
                previous_balance=previous, new_balance=amount,
            )
        return account

    def reset_account(
        self,
        user_id: str,
        wallet: int,
        bank: int,
        counterparty_id: Optional[str] = None,
    ) -> Account:
        """Put an account back to its starting balances and clear its statistics."""

        account = self.account(user_id)
        metadata = {
            "previous_wallet": account.wallet_balance,
            "previous_bank": account.bank_balance,
        }
        account.wallet_balance = wallet
        account.bank_balance = bank
        account.total_earned = 0
        account.total_spent = 0
        for name, value in RESET_FIELDS.items():
            setattr(account, name, value)
        self._dirty.add(user_id)
        change = wallet + bank - metadata["previous_wallet"] - metadata["previous_bank"]
        self._record(user_id, "admin_reset", change, counterparty_id, metadata)
        return account

    # -- bookkeeping -----------------------------------------------------

    def stamp(self, user_id: str, **fields: Any) -> Account:
        """Set cooldown/streak/profile fields. Balances are off limits."""

        forbidden = sorted(set(fields) & BALANCE_FIELDS)
        if forbidden:
            raise InvariantViolation(f"balance fields cannot be stamped: {', '.join(forbidden)}")
        account = self.account(user_id)
        for name, value in fields.items():
            if not hasattr(account, name):
                raise InvariantViolation(f"unknown account field {name}")
            setattr(account, name, value)
        self._dirty.add(user_id)
        return account

    def increment(self, user_id: str, counter: str, by: int = 1) -> Account:
        account = self.account(user_id)
        return self.stamp(user_id, **{counter: getattr(account, counter) + by})

    # -- clans -----------------------------------------------------------

    def add_clan(self, clan: Clan) -> Clan:
        self._check_clan_locked(clan.name)
        self._new_clans[clan.id] = clan
        return clan

    def touch_clan(self, clan: Clan) -> Clan:
        self._check_clan_locked(clan.name)
        if clan.id not in self._new_clans:
            self._clans[clan.id] = clan
            self._dirty_clans.add(clan.id)
        return clan

    def delete_clan(self, clan: Clan) -> None:
        self._check_clan_locked(clan.name)
        if self._new_clans.pop(clan.id, None) is not None:
            return
        self._dirty_clans.discard(clan.id)
        self._deleted_clans[clan.id] = clan

    def credit_clan(self, clan: Clan, amount: int, level_step: int) -> Clan:
        amount = require_positive(amount)
        clan.bank += amount
        clan.level = 1 + clan.bank // level_step
        return self.touch_clan(clan)

    # -- commit ----------------------------------------------------------

    def changeset(self, request_id: Optional[str], result: Any) -> Changeset:
        accounts = [self._accounts[user_id] for user_id in sorted(self._dirty)]
        for account in accounts:
            broken = account.violations()
            if broken:
                raise InvariantViolation(
                    f"account {account.user_id} would have negative {', '.join(broken)}"
                )

        clans = [self._clans[clan_id] for clan_id in sorted(self._dirty_clans)]
        for clan in clans + list(self._new_clans.values()):
            if clan.bank < 0:
                raise InvariantViolation(f"clan {clan.name} would have a negative bank")
            if clan.leader_id not in clan.members:
                raise InvariantViolation(f"clan {clan.name} leader is not a member")

        return Changeset(
            accounts=accounts,
            records=list(self._records),
            clans=clans,
            new_clans=list(self._new_clans.values()),
            deleted_clans=list(self._deleted_clans.values()),
            request_id=request_id,
            result=result if request_id else None,
        )


class LedgerEngine:
    """
    The only component that mutates balances.

    Each public operation is atomic with respect to the accounts it touches:
    their locks are held for the whole load-mutate-commit cycle, and the
    repository's version check catches writers in other processes, in which
    case the whole session is retried.
    """

    def __init__(
        self,
        repo: EconomyRepository,
        store: AccountStore,
        locks: KeyedLocks,
        settings: EconomySettings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repo
        self._store = store
        self._locks = locks
        self._settings = settings
        self._clock = clock

    @property
    def settings(self) -> EconomySettings:
        return self._settings

    def now(self) -> datetime:
        return self._clock()

    def replay(self, request_id: Optional[str]) -> Optional[Outcome[Any]]:
        """
        Return the stored result of an already processed request, if any.

        Operations that look things up before entering `run` must call this
        first: after a successful leave or disband the lookup itself would
        fail on redelivery.
        """

        if request_id is None:
            return None
        stored = self._repo.get_request_result(request_id)
        if stored is None:
            return None
        logger.info("Replaying already processed request %s", request_id)
        return Outcome(stored, replayed=True)

    def run(
        self,
        user_ids: Iterable[str],
        fn: Callable[[LedgerSession], T],
        *,
        clan_names: Iterable[str] = (),
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[T]:
        """
        Run `fn` inside a locked session and commit what it did.

        When `request_id` is given, `fn` must return a JSON-serialisable
        payload; it is stored in the same commit, and later calls with the
        same ID return it without running `fn` again.
        """

        user_ids = list(dict.fromkeys(user_ids))
        clan_names = list(clan_names)
        keys = [account_key(u) for u in user_ids] + [
            clan_lock_key(clan_key(n)) for n in clan_names
        ]
        moment = now or self._clock()

        for attempt in range(1, self._settings.max_commit_attempts + 1):
            with self._locks.hold(keys):
                replayed = self.replay(request_id)
                if replayed is not None:
                    return replayed

                session = LedgerSession(self._repo, self._store, user_ids, clan_names, moment)
                try:
                    result = fn(session)
                    changeset = session.changeset(request_id, result)
                    if not changeset.is_empty():
                        self._repo.commit(changeset)
                except StaleWriteError:
                    logger.info("Stale write for %s (attempt %d), retrying", keys, attempt)
                    continue
                except (EconomyError, LockSetChanged):
                    raise
                except Exception:
                    logger.exception("Ledger session for %s aborted by an internal error", keys)
                    raise
                return Outcome(result)

        raise StorageUnavailable("accounts kept changing, try again")

    # -- public ledger operations ---------------------------------------

    def credit(self, user_id: str, amount: int, reason: str = "credit") -> Account:
        return self.run(
            [user_id],
            lambda s: s.credit(user_id, amount, "credit", reason=reason),
        ).value

    def debit(self, user_id: str, amount: int, reason: str = "debit") -> Account:
        return self.run(
            [user_id],
            lambda s: s.debit(user_id, amount, "debit", reason=reason),
        ).value

    def transfer(self, from_id: str, to_id: str, amount: int) -> Tuple[Account, Account]:
        if from_id == to_id:
            raise SelfTargetNotAllowed("cannot transfer to yourself", user_id=from_id)
        require_positive(amount)

        return self.run(
            [from_id, to_id], lambda s: s.transfer(from_id, to_id, amount)
        ).value

    def deposit(self, user_id: str, amount: int) -> Account:
        return self.run([user_id], lambda s: s.move_to_bank(user_id, amount)).value

    def withdraw(self, user_id: str, amount: int) -> Account:
        return self.run([user_id], lambda s: s.move_to_wallet(user_id, amount)).value

    def admin_adjust(self, user_id: str, amount: int, admin_id: str) -> Account:
        """Add (positive) or remove (negative) wallet money on an admin's behalf."""

        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise InvalidAmount("amount must be a non-zero whole number", amount=amount)

        def _adjust(session: LedgerSession) -> Account:
            if amount > 0:
                return session.credit(user_id, amount, "admin_add", counterparty_id=admin_id)
            return session.debit(user_id, -amount, "admin_remove", counterparty_id=admin_id)

        return self.run([user_id], _adjust).value

    # -- reads -----------------------------------------------------------

    def history(self, user_id: str, limit: int = 10) -> List[TransactionRecord]:
        return self._repo.get_transactions(user_id, limit)
