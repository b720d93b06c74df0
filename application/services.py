from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from domain.errors import (
    ConfirmationRequired,
    EconomyError,
    InvalidAmount,
    InvalidArguments,
    SelfTargetNotAllowed,
    TargetNotFound,
    UnknownAction,
)
from domain.models import Account, TransactionRecord
from domain.repositories import EconomyRepository
from domain.settings import EconomySettings

from application.account_store import AccountStore, utcnow
from application.actions import ActionResolvers
from application.clans import ClanService
from application.ledger import LedgerEngine, LedgerSession, Outcome, require_positive
from application.locks import KeyedLocks

logger = logging.getLogger(__name__)

Amount = Union[int, str]

ALIASES = {
    "bal": "balance",
    "wallet": "balance",
    "stats": "profile",
    "send": "transfer",
    "pay": "transfer",
    "dep": "deposit",
    "wd": "withdraw",
    "bet": "gamble",
    "lb": "leaderboard",
    "top": "leaderboard",
    "ecoaddmoney": "ecogive",
    "setbalance": "ecosetbalance",
    "ecostats": "ecosettings",
}


@dataclass
class ExternalContext:
    """
    Information about the caller from a particular channel (WhatsApp,
    Telegram, Discord).

    The application layer never depends on concrete SDK types; it only sees
    this small context object.
    """

    provider: str
    user_id: str
    display_name: str = ""


@dataclass
class Command:
    """
    One inbound economy command, already resolved to internal IDs.

    `target` is the user a mention or reply pointed at. Such users get an
    account on the spot; a target typed as plain text must already have one.
    """

    context: ExternalContext
    action: str
    args: List[str] = field(default_factory=list)
    now: Optional[datetime] = None
    request_id: Optional[str] = None
    target: Optional[ExternalContext] = None


@dataclass
class OperationResult:
    """Generic result type handed back to the chat adapters for rendering."""

    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    replayed: bool = False

    @classmethod
    def failure(cls, error: EconomyError) -> "OperationResult":
        return cls(
            success=False,
            data=dict(error.details),
            error_kind=error.kind,
            error_message=error.message,
        )


def account_view(account: Account) -> Dict[str, Any]:
    return {
        "user_id": account.user_id,
        "display_name": account.display_name,
        "wallet_balance": account.wallet_balance,
        "bank_balance": account.bank_balance,
        "total_wealth": account.total_wealth,
        "rank": account.rank,
        "total_earned": account.total_earned,
        "total_spent": account.total_spent,
        "work_count": account.work_count,
        "rob_count": account.rob_count,
        "daily_count": account.daily_count,
        "streak": account.streak,
        "longest_streak": account.longest_streak,
        "clan_id": account.clan_id,
    }


def record_view(record: TransactionRecord) -> Dict[str, Any]:
    return {
        "kind": record.kind,
        "amount": record.amount,
        "counterparty_id": record.counterparty_id,
        "timestamp": record.timestamp.isoformat(),
        "metadata": dict(record.metadata),
    }


def parse_amount(raw: Optional[str], allow_all: bool = False) -> Amount:
    if raw is None:
        raise InvalidArguments("an amount is required")
    text = raw.strip().lower().replace(",", "")
    if allow_all and text == "all":
        return "all"
    try:
        amount = int(text)
    except ValueError:
        raise InvalidAmount("please enter a whole number", amount=raw) from None
    return require_positive(amount)


def parse_whole_number(raw: str) -> int:
    """Signed whole number with optional thousands separators, for admin commands."""

    try:
        return int(raw.replace(",", ""))
    except ValueError:
        raise InvalidAmount("please enter a whole number", amount=raw) from None


def _arg(args: Sequence[str], index: int, what: str) -> str:
    if len(args) <= index or not args[index].strip():
        raise InvalidArguments(f"missing {what}")
    return args[index].strip()


class EconomyService:
    """
    Entry point used by the message dispatcher.

    Wires the account store, ledger engine, action resolvers and clan
    service over one repository and turns every expected rejection into a
    structured `OperationResult`.
    """

    def __init__(
        self,
        repo: EconomyRepository,
        settings: EconomySettings,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings
        self._repo = repo
        self.locks = KeyedLocks(timeout=settings.lock_timeout)
        self.store = AccountStore(repo, settings, self.locks, clock)
        self.ledger = LedgerEngine(repo, self.store, self.locks, settings, clock)
        self.actions = ActionResolvers(self.ledger, rng)
        self.clans = ClanService(self.ledger, repo)
        self._handlers: Dict[str, Callable[[Command], Outcome[Dict[str, Any]]]] = {
            "balance": self._balance,
            "profile": self._profile,
            "work": lambda c: self.actions.work(c.context.user_id, request_id=c.request_id, now=c.now),
            "daily": lambda c: self.actions.daily(c.context.user_id, request_id=c.request_id, now=c.now),
            "rob": self._rob,
            "gamble": self._gamble,
            "transfer": self._transfer,
            "deposit": self._deposit,
            "withdraw": self._withdraw,
            "leaderboard": self._leaderboard,
            "history": self._history,
            "clan": self._clan,
            "ecogive": self._admin_give,
            "ecosetbalance": self._admin_set_balance,
            "ecoreset": self._admin_reset,
            "ecosettings": self._admin_stats,
        }

    @property
    def actions_supported(self) -> List[str]:
        return sorted(self._handlers)

    def dispatch(self, command: Command) -> OperationResult:
        action = ALIASES.get(command.action.lower(), command.action.lower())
        handler = self._handlers.get(action)
        try:
            if handler is None:
                raise UnknownAction(f"unknown economy command {command.action!r}", action=command.action)
            if command.context.display_name:
                self.register(command.context)
            if command.target is not None:
                self.register(command.target)
            outcome = handler(command)
        except EconomyError as exc:
            log = logger.warning if exc.retryable else logger.info
            log("%s rejected for %s: %s", action, command.context.user_id, exc.kind)
            return OperationResult.failure(exc)

        return OperationResult(success=True, data=outcome.value, replayed=outcome.replayed)

    def register(self, context: ExternalContext) -> Account:
        """Create the account behind `context` if needed and keep its display name current."""

        account = self.store.get_or_create(context.user_id)
        if context.display_name and account.display_name != context.display_name:
            account = self.store.update(context.user_id, display_name=context.display_name)
        return account

    # -- money movement ----------------------------------------------------

    def transfer(
        self,
        from_id: str,
        to_id: str,
        amount: int,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        if from_id == to_id:
            raise SelfTargetNotAllowed("cannot send money to yourself", user_id=from_id)
        require_positive(amount)

        def _transfer(session: LedgerSession) -> Dict[str, Any]:
            session.existing_account(to_id)
            sender, _ = session.transfer(from_id, to_id, amount)
            return {
                "action": "transfer",
                "amount": amount,
                "target_id": to_id,
                "wallet_balance": sender.wallet_balance,
                "bank_balance": sender.bank_balance,
            }

        return self.ledger.run([from_id, to_id], _transfer, request_id=request_id, now=now)

    def deposit(
        self,
        user_id: str,
        amount: Amount,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        def _deposit(session: LedgerSession) -> Dict[str, Any]:
            account = session.account(user_id)
            value = account.wallet_balance if amount == "all" else amount
            session.move_to_bank(user_id, value)
            return {
                "action": "deposit",
                "amount": value,
                "wallet_balance": account.wallet_balance,
                "bank_balance": account.bank_balance,
            }

        return self.ledger.run([user_id], _deposit, request_id=request_id, now=now)

    def withdraw(
        self,
        user_id: str,
        amount: Amount,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        def _withdraw(session: LedgerSession) -> Dict[str, Any]:
            account = session.account(user_id)
            value = account.bank_balance if amount == "all" else amount
            session.move_to_wallet(user_id, value)
            return {
                "action": "withdraw",
                "amount": value,
                "wallet_balance": account.wallet_balance,
                "bank_balance": account.bank_balance,
            }

        return self.ledger.run([user_id], _withdraw, request_id=request_id, now=now)

    # -- reads -------------------------------------------------------------

    def profile(self, user_id: str) -> Dict[str, Any]:
        return account_view(self.store.get_or_create(user_id))

    def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        accounts = [a for a in self._repo.get_all_accounts() if a.total_wealth > 0]
        accounts.sort(key=lambda a: (-a.total_wealth, a.user_id))
        return [
            {"position": index, **account_view(account)}
            for index, account in enumerate(accounts[:limit], start=1)
        ]

    def history(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        return [record_view(r) for r in self.ledger.history(user_id, limit)]

    def stats(self) -> Dict[str, Any]:
        """Economy-wide totals plus the tunables currently in force."""

        accounts = self._repo.get_all_accounts()
        clans = self._repo.get_all_clans()
        settings = self.settings
        wallets = sum(a.wallet_balance for a in accounts)
        banks = sum(a.bank_balance for a in accounts)
        return {
            "users": len(accounts),
            "clans": len(clans),
            "total_wallet": wallets,
            "total_bank": banks,
            "total_clan_bank": sum(c.bank for c in clans),
            "total_wealth": wallets + banks,
            "currency": settings.currency,
            "starting_balance": settings.starting_balance,
            "daily_min": settings.daily_min,
            "daily_max": settings.daily_max,
            "work_cooldown_minutes": int(settings.work_cooldown.total_seconds() // 60),
            "rob_cooldown_minutes": int(settings.rob_cooldown.total_seconds() // 60),
            "rob_success_rate": settings.rob_success_rate,
            "gamble_min_bet": settings.gamble_min_bet,
            "gamble_max_bet": settings.gamble_max_bet,
            "clan_creation_cost": settings.clan_creation_cost,
            "timezone": settings.timezone,
        }

    # -- admin -------------------------------------------------------------

    def set_balance(
        self,
        admin_id: str,
        target_id: str,
        amount: int,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        def _set(session: LedgerSession) -> Dict[str, Any]:
            previous = session.account(target_id).wallet_balance
            account = session.set_wallet(target_id, amount, counterparty_id=admin_id)
            logger.info("%s set wallet of %s from %d to %d", admin_id, target_id, previous, amount)
            return {
                "action": "ecosetbalance",
                "target_id": target_id,
                "previous_balance": previous,
                **account_view(account),
            }

        return self.ledger.run([target_id], _set, request_id=request_id, now=now)

    def reset_economy(
        self,
        admin_id: str,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        """
        Put every known account back to the starting balances in one commit.

        Statistics, streaks and cooldowns are cleared too. Clan membership
        and clan banks are left alone, and the transaction history is kept:
        each account gets an `admin_reset` record instead.
        """

        settings = self.settings
        user_ids = sorted(a.user_id for a in self._repo.get_all_accounts())

        def _reset(session: LedgerSession) -> Dict[str, Any]:
            for user_id in user_ids:
                session.reset_account(
                    user_id,
                    settings.starting_balance,
                    settings.starting_bank_balance,
                    counterparty_id=admin_id,
                )
            logger.warning("Economy reset by %s (%d accounts)", admin_id, len(user_ids))
            return {
                "action": "ecoreset",
                "accounts": len(user_ids),
                "wallet_balance": settings.starting_balance,
                "bank_balance": settings.starting_bank_balance,
            }

        return self.ledger.run(user_ids, _reset, request_id=request_id, now=now)

    # -- command handlers ------------------------------------------------

    def _balance(self, command: Command) -> Outcome[Dict[str, Any]]:
        view = self.profile(command.context.user_id)
        return Outcome({"action": "balance", **view})

    def _profile(self, command: Command) -> Outcome[Dict[str, Any]]:
        if not command.args:
            return Outcome({"action": "profile", **self.profile(command.context.user_id)})
        target = command.args[0].strip()
        account = self.store.get(target)
        if account is None:
            raise TargetNotFound("that user has no account yet", user_id=target)
        return Outcome({"action": "profile", **account_view(account)})

    def _rob(self, command: Command) -> Outcome[Dict[str, Any]]:
        target = _arg(command.args, 0, "target user")
        return self.actions.rob(
            command.context.user_id, target, request_id=command.request_id, now=command.now
        )

    def _gamble(self, command: Command) -> Outcome[Dict[str, Any]]:
        bet = parse_amount(_arg(command.args, 0, "bet amount"))
        return self.actions.gamble(
            command.context.user_id, bet, request_id=command.request_id, now=command.now
        )

    def _transfer(self, command: Command) -> Outcome[Dict[str, Any]]:
        amount = parse_amount(_arg(command.args, 0, "amount"))
        target = _arg(command.args, 1, "target user")
        return self.transfer(
            command.context.user_id, target, amount, request_id=command.request_id, now=command.now
        )

    def _deposit(self, command: Command) -> Outcome[Dict[str, Any]]:
        amount = parse_amount(_arg(command.args, 0, "amount"), allow_all=True)
        return self.deposit(
            command.context.user_id, amount, request_id=command.request_id, now=command.now
        )

    def _withdraw(self, command: Command) -> Outcome[Dict[str, Any]]:
        amount = parse_amount(_arg(command.args, 0, "amount"), allow_all=True)
        return self.withdraw(
            command.context.user_id, amount, request_id=command.request_id, now=command.now
        )

    def _leaderboard(self, command: Command) -> Outcome[Dict[str, Any]]:
        return Outcome({"action": "leaderboard", "entries": self.leaderboard()})

    def _history(self, command: Command) -> Outcome[Dict[str, Any]]:
        return Outcome({"action": "history", "entries": self.history(command.context.user_id)})

    def _clan(self, command: Command) -> Outcome[Dict[str, Any]]:
        user_id = command.context.user_id
        sub = _arg(command.args, 0, "clan subcommand").lower()
        rest = " ".join(command.args[1:])
        kwargs = {"request_id": command.request_id, "now": command.now}

        if sub == "create":
            return self.clans.create(user_id, rest, **kwargs)
        if sub == "join":
            return self.clans.join(user_id, rest, **kwargs)
        if sub == "leave":
            return self.clans.leave(user_id, **kwargs)
        if sub == "disband":
            return self.clans.disband(user_id, **kwargs)
        if sub in ("deposit", "donate"):
            amount = parse_amount(_arg(command.args, 1, "amount"))
            return self.clans.contribute(user_id, amount, **kwargs)
        if sub == "info":
            return Outcome({"action": "clan_info", **self.clans.info(rest or None, user_id)})
        raise UnknownAction(f"unknown clan subcommand {sub!r}", action=f"clan {sub}")

    def _admin_give(self, command: Command) -> Outcome[Dict[str, Any]]:
        # Admin checks belong to the dispatcher; this only moves the money.
        amount = parse_whole_number(_arg(command.args, 0, "amount"))
        target = _arg(command.args, 1, "target user")
        account = self.ledger.admin_adjust(target, amount, command.context.user_id)
        return Outcome({"action": "ecogive", "amount": amount, "target_id": target, **account_view(account)})

    def _admin_set_balance(self, command: Command) -> Outcome[Dict[str, Any]]:
        amount = parse_whole_number(_arg(command.args, 0, "amount"))
        target = _arg(command.args, 1, "target user")
        return self.set_balance(
            command.context.user_id, target, amount, request_id=command.request_id, now=command.now
        )

    def _admin_reset(self, command: Command) -> Outcome[Dict[str, Any]]:
        if not command.args or command.args[0].strip().lower() != "confirm":
            raise ConfirmationRequired(
                "resetting the economy needs confirmation",
                action="ecoreset",
                starting_balance=self.settings.starting_balance,
                starting_bank_balance=self.settings.starting_bank_balance,
            )
        return self.reset_economy(
            command.context.user_id, request_id=command.request_id, now=command.now
        )

    def _admin_stats(self, command: Command) -> Outcome[Dict[str, Any]]:
        return Outcome({"action": "ecosettings", **self.stats()})
