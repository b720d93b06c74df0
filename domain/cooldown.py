"""
Cooldown gate.

Work and rob are anti-spam rolling windows measured from the exact moment of
the last use. Daily is a calendar reset: it compares local date keys in the
configured timezone, so a user can claim once per local day regardless of
what time the previous claim happened.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional

ZERO = timedelta(0)


def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def remaining(
    last_used_at: Optional[datetime],
    cooldown: timedelta,
    now: datetime,
) -> timedelta:
    """Time left before the action may run again; never negative."""

    if last_used_at is None:
        return ZERO
    ready_at = _aware(last_used_at) + cooldown
    left = ready_at - _aware(now)
    return left if left > ZERO else ZERO


def is_ready(
    last_used_at: Optional[datetime],
    cooldown: timedelta,
    now: datetime,
) -> bool:
    return remaining(last_used_at, cooldown, now) == ZERO


def date_key(now: datetime, tz: tzinfo) -> str:
    """Local calendar day of `now` as `YYYY-MM-DD`."""

    return _aware(now).astimezone(tz).date().isoformat()


def is_new_day(last_key: Optional[str], now: datetime, tz: tzinfo) -> bool:
    return last_key != date_key(now, tz)


def until_next_day(now: datetime, tz: tzinfo) -> timedelta:
    local = _aware(now).astimezone(tz)
    tomorrow = datetime.combine(local.date() + timedelta(days=1), datetime.min.time(), tzinfo=tz)
    return tomorrow - local


def next_streak(last_key: Optional[str], today_key: str, streak: int) -> int:
    """
    Streak after claiming on `today_key`.

    Claiming the day after `last_key` extends the streak; anything else
    (first claim, skipped days) starts over at 1.
    """

    if last_key is None:
        return 1
    yesterday = date.fromisoformat(today_key) - timedelta(days=1)
    if last_key == yesterday.isoformat():
        return streak + 1
    return 1
