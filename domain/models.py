from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

RANK_TIERS = (
    (1_000_000, "Millionaire"),
    (500_000, "Diamond"),
    (100_000, "Gold"),
    (50_000, "Silver"),
    (10_000, "Bronze"),
    (5_000, "Rising"),
)
DEFAULT_RANK = "Newbie"


def rank_for_wealth(wealth: int) -> str:
    for threshold, name in RANK_TIERS:
        if wealth >= threshold:
            return name
    return DEFAULT_RANK


@dataclass
class Account:
    """
    Economic state of a single chat user.

    The model is independent of any transport (WhatsApp, Telegram, Discord)
    or storage schema. Balance fields are only ever changed through a
    ledger session; everything else here is bookkeeping for cooldowns,
    streaks and statistics.
    """

    user_id: str
    wallet_balance: int = 0
    bank_balance: int = 0
    total_earned: int = 0
    total_spent: int = 0
    work_count: int = 0
    rob_count: int = 0
    daily_count: int = 0
    last_work_at: Optional[datetime] = None
    last_rob_at: Optional[datetime] = None
    last_daily_on: Optional[str] = None
    streak: int = 0
    longest_streak: int = 0
    clan_id: Optional[str] = None
    display_name: Optional[str] = None
    created_at: Optional[datetime] = None
    version: int = 0

    @property
    def total_wealth(self) -> int:
        return self.wallet_balance + self.bank_balance

    @property
    def rank(self) -> str:
        return rank_for_wealth(self.total_wealth)

    def violations(self) -> List[str]:
        """Return the names of counters that have gone negative."""

        names = (
            "wallet_balance",
            "bank_balance",
            "total_earned",
            "total_spent",
            "work_count",
            "rob_count",
            "daily_count",
            "streak",
            "longest_streak",
        )
        return [name for name in names if getattr(self, name) < 0]


@dataclass
class TransactionRecord:
    """Append-only audit entry for a single balance movement."""

    id: str
    user_id: str
    kind: str
    amount: int
    timestamp: datetime
    counterparty_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Clan:
    """
    A named group of accounts with one leader and a shared bank.

    `members` always contains `leader_id`.
    """

    id: str
    name: str
    leader_id: str
    members: Set[str] = field(default_factory=set)
    bank: int = 0
    level: int = 1
    created_at: Optional[datetime] = None
    version: int = 0

    @property
    def key(self) -> str:
        return clan_key(self.name)


def clan_key(name: str) -> str:
    """Case-insensitive lookup key for clan names."""

    return name.strip().casefold()


@dataclass
class Changeset:
    """
    Everything a ledger session wants to write, committed as one unit.

    `accounts` and `clans` carry the version they were loaded with; the
    repository bumps it on write and rejects the commit when the stored
    version has moved on.
    """

    accounts: List[Account] = field(default_factory=list)
    records: List[TransactionRecord] = field(default_factory=list)
    clans: List[Clan] = field(default_factory=list)
    new_clans: List[Clan] = field(default_factory=list)
    deleted_clans: List[Clan] = field(default_factory=list)
    request_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    def is_empty(self) -> bool:
        return not (
            self.accounts
            or self.records
            or self.clans
            or self.new_clans
            or self.deleted_clans
            or self.request_id
        )
