from __future__ import annotations

import logging
import math
import random
from datetime import datetime
from typing import Any, Dict, Optional

from domain import cooldown
from domain.errors import (
    BetOutOfRange,
    CooldownActive,
    InsufficientFunds,
    RobberTooPoor,
    SelfTargetNotAllowed,
    TargetTooPoor,
)
from domain.models import Account

from application.ledger import LedgerEngine, LedgerSession, Outcome, require_positive

logger = logging.getLogger(__name__)


def _balances(account: Account) -> Dict[str, int]:
    return {
        "wallet_balance": account.wallet_balance,
        "bank_balance": account.bank_balance,
    }


class ActionResolvers:
    """
    Work, daily, rob and gamble.

    Every action follows the same three steps inside one ledger session:
    the gate (cooldown and preconditions) may reject, the evaluation draws
    from `rng`, and settlement goes through the session's ledger primitives.
    """

    def __init__(self, engine: LedgerEngine, rng: Optional[random.Random] = None) -> None:
        self._engine = engine
        self._settings = engine.settings
        self._rng = rng or random.Random()

    def work(
        self,
        user_id: str,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        settings = self._settings

        def _work(session: LedgerSession) -> Dict[str, Any]:
            account = session.account(user_id)
            if not cooldown.is_ready(account.last_work_at, settings.work_cooldown, session.now):
                raise CooldownActive(
                    cooldown.remaining(account.last_work_at, settings.work_cooldown, session.now),
                    action="work",
                )

            job = self._rng.choice(settings.jobs)
            payout = self._rng.randint(job.min_payout, job.max_payout)

            session.credit(user_id, payout, "work", job=job.name)
            session.stamp(
                user_id,
                last_work_at=session.now,
                work_count=account.work_count + 1,
            )
            return {
                "action": "work",
                "job": job.name,
                "amount": payout,
                "work_count": account.work_count,
                "cooldown_seconds": int(settings.work_cooldown.total_seconds()),
                **_balances(account),
            }

        return self._engine.run([user_id], _work, request_id=request_id, now=now)

    def daily(
        self,
        user_id: str,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        settings = self._settings
        tz = settings.tzinfo

        def _daily(session: LedgerSession) -> Dict[str, Any]:
            account = session.account(user_id)
            today = cooldown.date_key(session.now, tz)
            if account.last_daily_on == today:
                raise CooldownActive(cooldown.until_next_day(session.now, tz), action="daily")

            amount = self._rng.randint(settings.daily_min, settings.daily_max)
            streak = cooldown.next_streak(account.last_daily_on, today, account.streak)

            session.credit(user_id, amount, "daily", streak=streak)
            session.stamp(
                user_id,
                last_daily_on=today,
                streak=streak,
                longest_streak=max(account.longest_streak, streak),
                daily_count=account.daily_count + 1,
            )
            return {
                "action": "daily",
                "amount": amount,
                "streak": account.streak,
                "longest_streak": account.longest_streak,
                **_balances(account),
            }

        return self._engine.run([user_id], _daily, request_id=request_id, now=now)

    def rob(
        self,
        user_id: str,
        target_id: str,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        settings = self._settings

        def _rob(session: LedgerSession) -> Dict[str, Any]:
            robber = session.account(user_id)
            if not cooldown.is_ready(robber.last_rob_at, settings.rob_cooldown, session.now):
                raise CooldownActive(
                    cooldown.remaining(robber.last_rob_at, settings.rob_cooldown, session.now),
                    action="rob",
                )
            if target_id == user_id:
                raise SelfTargetNotAllowed("cannot rob yourself", user_id=user_id)

            victim = session.existing_account(target_id)
            if victim.wallet_balance < max(settings.rob_min_target_balance, 1):
                raise TargetTooPoor(
                    "target does not have enough money to rob",
                    required=settings.rob_min_target_balance,
                )
            if robber.wallet_balance < settings.rob_min_robber_balance:
                raise RobberTooPoor(
                    "not enough money to post bail",
                    required=settings.rob_min_robber_balance,
                )

            result: Dict[str, Any] = {"action": "rob", "target_id": target_id}
            if self._rng.random() < settings.rob_success_rate:
                cap = math.floor(victim.wallet_balance * settings.rob_max_steal_percent)
                upper = min(max(cap, settings.rob_min_steal), victim.wallet_balance)
                lower = min(settings.rob_min_steal, upper)
                stolen = self._rng.randint(lower, upper)

                session.debit(target_id, stolen, "robbed", counterparty_id=user_id)
                session.credit(user_id, stolen, "rob_success", counterparty_id=target_id)
                session.increment(user_id, "rob_count")
                result.update(success=True, amount=stolen)
            else:
                # Clamped so a failed rob never drives the robber negative.
                penalty = min(settings.rob_fail_penalty, robber.wallet_balance)
                if penalty > 0:
                    session.debit(user_id, penalty, "rob_fail", counterparty_id=target_id)
                    session.credit(target_id, penalty, "rob_compensation", counterparty_id=user_id)
                result.update(success=False, amount=penalty)

            session.stamp(user_id, last_rob_at=session.now)
            result.update(
                _balances(robber),
                target_wallet_balance=victim.wallet_balance,
                rob_count=robber.rob_count,
            )
            return result

        return self._engine.run(
            [user_id, target_id], _rob, request_id=request_id, now=now
        )

    def gamble(
        self,
        user_id: str,
        bet: int,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        settings = self._settings
        bet = require_positive(bet)
        if not settings.gamble_min_bet <= bet <= settings.gamble_max_bet:
            raise BetOutOfRange(
                "bet is outside the allowed range",
                minimum=settings.gamble_min_bet,
                maximum=settings.gamble_max_bet,
            )

        def _gamble(session: LedgerSession) -> Dict[str, Any]:
            account = session.account(user_id)
            if account.wallet_balance < bet:
                raise InsufficientFunds(
                    "not enough money to cover the bet",
                    balance=account.wallet_balance,
                    required=bet,
                )

            if self._rng.random() < settings.gamble_win_chance:
                winnings = math.floor(bet * settings.gamble_win_multiplier)
                profit = winnings - bet
                if profit > 0:
                    session.credit(user_id, profit, "gamble_win", bet=bet, winnings=winnings)
                outcome = {"won": True, "winnings": winnings, "profit": profit}
            else:
                session.debit(user_id, bet, "gamble_loss", bet=bet)
                outcome = {"won": False, "winnings": 0, "profit": -bet}

            return {"action": "gamble", "bet": bet, **outcome, **_balances(account)}

        return self._engine.run([user_id], _gamble, request_id=request_id, now=now)
