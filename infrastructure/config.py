"""
Configuration loading.

All settings come from environment variables (optionally via a `.env`
file). Anything not set falls back to the defaults on `EconomySettings`;
the result is validated once, at startup.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import timedelta
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple

from dotenv import load_dotenv

from domain.errors import ConfigurationError
from domain.settings import EconomySettings, Job, StorageSettings

logger = logging.getLogger(__name__)

# env var -> (field, parser)
_ECONOMY_ENV: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "ECONOMY_CURRENCY": ("currency", str),
    "ECONOMY_STARTING_BALANCE": ("starting_balance", int),
    "ECONOMY_STARTING_BANK_BALANCE": ("starting_bank_balance", int),
    "ECONOMY_DAILY_MIN": ("daily_min", int),
    "ECONOMY_DAILY_MAX": ("daily_max", int),
    "ECONOMY_WORK_COOLDOWN_MINUTES": ("work_cooldown", lambda v: timedelta(minutes=float(v))),
    "ECONOMY_ROB_COOLDOWN_MINUTES": ("rob_cooldown", lambda v: timedelta(minutes=float(v))),
    "ECONOMY_ROB_SUCCESS_RATE": ("rob_success_rate", float),
    "ECONOMY_ROB_MAX_STEAL_PERCENT": ("rob_max_steal_percent", float),
    "ECONOMY_ROB_MIN_TARGET_BALANCE": ("rob_min_target_balance", int),
    "ECONOMY_ROB_MIN_ROBBER_BALANCE": ("rob_min_robber_balance", int),
    "ECONOMY_ROB_MIN_STEAL": ("rob_min_steal", int),
    "ECONOMY_ROB_FAIL_PENALTY": ("rob_fail_penalty", int),
    "ECONOMY_GAMBLE_MIN_BET": ("gamble_min_bet", int),
    "ECONOMY_GAMBLE_MAX_BET": ("gamble_max_bet", int),
    "ECONOMY_GAMBLE_WIN_CHANCE": ("gamble_win_chance", float),
    "ECONOMY_GAMBLE_WIN_MULTIPLIER": ("gamble_win_multiplier", float),
    "ECONOMY_CLAN_CREATION_COST": ("clan_creation_cost", int),
    "ECONOMY_CLAN_LEVEL_STEP": ("clan_level_step", int),
    "ECONOMY_LOCK_TIMEOUT_SECONDS": ("lock_timeout", float),
    "ECONOMY_MAX_COMMIT_ATTEMPTS": ("max_commit_attempts", int),
    "TIMEZONE": ("timezone", str),
}


def parse_jobs(raw: str) -> Tuple[Job, ...]:
    """
    Parse a job table such as
    `[{"name": "Chef", "min": 80, "max": 230}, ...]`.
    """

    try:
        entries = json.loads(raw)
        return tuple(Job(str(e["name"]), int(e["min"]), int(e["max"])) for e in entries)
    except (ValueError, TypeError, KeyError) as exc:
        raise ConfigurationError(f"ECONOMY_WORK_JOBS is not a valid job table: {exc}") from exc


def load_settings(env: Optional[Mapping[str, str]] = None) -> EconomySettings:
    if env is None:
        load_dotenv()
        env = os.environ

    overrides: Dict[str, Any] = {}
    for name, (field_name, parse) in _ECONOMY_ENV.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            overrides[field_name] = parse(raw)
        except ValueError as exc:
            raise ConfigurationError(f"{name}={raw!r} is not valid: {exc}") from exc

    if env.get("ECONOMY_WORK_JOBS"):
        overrides["jobs"] = parse_jobs(env["ECONOMY_WORK_JOBS"])

    settings = EconomySettings(**overrides).validate()
    logger.info("Economy settings loaded (%d overrides)", len(overrides))
    return settings


def load_storage_settings(env: Optional[Mapping[str, str]] = None) -> StorageSettings:
    if env is None:
        load_dotenv()
        env = os.environ

    backend = env.get("STORAGE_BACKEND", "sqlite").strip().lower()
    if backend not in ("sqlite", "postgres", "json"):
        raise ConfigurationError(f"unknown STORAGE_BACKEND {backend!r}")

    postgres_params: Dict[str, Any] = {}
    if env.get("DATABASE_URL"):
        postgres_params["dsn"] = env["DATABASE_URL"]
    else:
        for key in ("host", "port", "dbname", "user", "password"):
            value = env.get(f"POSTGRES_{key.upper()}")
            if value:
                postgres_params[key] = value
    if backend == "postgres" and not postgres_params:
        raise ConfigurationError("STORAGE_BACKEND=postgres needs DATABASE_URL or POSTGRES_* variables")

    try:
        timeout = float(env.get("STORAGE_TIMEOUT_SECONDS", "5"))
    except ValueError as exc:
        raise ConfigurationError(f"STORAGE_TIMEOUT_SECONDS is not a number: {exc}") from exc

    return StorageSettings(
        backend=backend,
        sqlite_path=env.get("DB_PATH", "economy.db"),
        json_path=env.get("JSON_DB_PATH", "data/economy.json"),
        postgres_params=postgres_params,
        timeout_seconds=timeout,
    )


def load_admin_ids(env: Optional[Mapping[str, str]] = None) -> FrozenSet[str]:
    """Platform user IDs allowed to run admin commands (`ADMIN_IDS=1,2,3`)."""

    if env is None:
        load_dotenv()
        env = os.environ

    raw = env.get("ADMIN_IDS", "")
    return frozenset(part.strip() for part in raw.split(",") if part.strip())
