from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from domain.errors import ConfigurationError


@dataclass(frozen=True)
class Job:
    name: str
    min_payout: int
    max_payout: int


DEFAULT_JOBS: Tuple[Job, ...] = (
    Job("Uber Driver", 200, 800),
    Job("Food Delivery", 150, 600),
    Job("Freelancer", 300, 1200),
    Job("Content Creator", 250, 900),
    Job("Tech Support", 180, 700),
    Job("Online Tutor", 400, 1000),
)


@dataclass(frozen=True)
class EconomySettings:
    """
    Every tunable number of the economy, validated once at startup.

    Usage:
        settings = EconomySettings(work_cooldown=timedelta(minutes=30))
        settings.validate()
    """

    currency: str = "₦"
    starting_balance: int = 1000
    starting_bank_balance: int = 0

    daily_min: int = 500
    daily_max: int = 1500
    timezone: str = "Africa/Lagos"

    work_cooldown: timedelta = timedelta(minutes=60)
    jobs: Tuple[Job, ...] = DEFAULT_JOBS

    rob_cooldown: timedelta = timedelta(minutes=120)
    rob_success_rate: float = 0.7
    rob_max_steal_percent: float = 0.3
    rob_min_target_balance: int = 500
    rob_min_robber_balance: int = 200
    rob_min_steal: int = 100
    rob_fail_penalty: int = 150

    gamble_min_bet: int = 100
    gamble_max_bet: int = 10000
    gamble_win_chance: float = 0.45
    gamble_win_multiplier: float = 1.8

    clan_creation_cost: int = 5000
    clan_level_step: int = 10000

    lock_timeout: float = 5.0
    max_commit_attempts: int = 3

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def issues(self) -> List[str]:
        """Return a list of problems; empty when the settings are usable."""

        problems: List[str] = []

        for name in (
            "starting_balance",
            "starting_bank_balance",
            "rob_min_target_balance",
            "rob_min_robber_balance",
            "rob_fail_penalty",
            "clan_creation_cost",
        ):
            if getattr(self, name) < 0:
                problems.append(f"{name} must not be negative")

        if self.daily_min <= 0 or self.daily_max < self.daily_min:
            problems.append("daily_min must be positive and not above daily_max")

        if not self.jobs:
            problems.append("at least one job is required")
        for job in self.jobs:
            if job.min_payout <= 0 or job.max_payout < job.min_payout:
                problems.append(f"job {job.name!r} has an invalid payout range")

        for name in ("work_cooldown", "rob_cooldown"):
            if getattr(self, name) < timedelta(0):
                problems.append(f"{name} must not be negative")

        for name in ("rob_success_rate", "rob_max_steal_percent", "gamble_win_chance"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                problems.append(f"{name} must be between 0 and 1")

        if self.rob_min_steal <= 0:
            problems.append("rob_min_steal must be positive")
        if self.gamble_min_bet <= 0 or self.gamble_max_bet < self.gamble_min_bet:
            problems.append("gamble bet range is invalid")
        if self.gamble_win_multiplier < 1.0:
            problems.append("gamble_win_multiplier must be at least 1")
        if self.clan_level_step <= 0:
            problems.append("clan_level_step must be positive")
        if self.lock_timeout <= 0:
            problems.append("lock_timeout must be positive")
        if self.max_commit_attempts < 1:
            problems.append("max_commit_attempts must be at least 1")

        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            problems.append(f"unknown timezone {self.timezone!r}")

        return problems

    def validate(self) -> "EconomySettings":
        problems = self.issues()
        if problems:
            raise ConfigurationError("; ".join(problems))
        return self


@dataclass(frozen=True)
class StorageSettings:
    backend: str = "sqlite"
    sqlite_path: str = "economy.db"
    json_path: str = "data/economy.json"
    postgres_params: dict = field(default_factory=dict)
    timeout_seconds: float = 5.0
